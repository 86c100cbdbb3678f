"""Link engine: realizes skill and rule linkage on the filesystem.

Skills are exposed as directory links inside a platform's skills directory.
Rules are merged into the platform's rules file as marker-delimited blocks,
so any number of rules can share one file.

The filesystem change happens first and the config record is updated
afterwards; the two steps are not atomic.
"""

import logging
import re
from pathlib import Path
from typing import Optional

from . import symlinks
from .errors import NotFoundError, StorageIOError
from .indexer import SkillIndexer
from .models import FileStatus, PlatformDefinition, Skill
from .platforms import PlatformRegistry
from .repositories import RepositoryManager, url_path_segments
from .rules import RuleCatalog

logger = logging.getLogger(__name__)

RULE_START = "<!-- SKILLS_MANAGER_RULE_START:{id} -->"
RULE_END = "<!-- SKILLS_MANAGER_RULE_END:{id} -->"


def rule_block(rule_id: str, content: str) -> str:
    """Wrap rule content in its start/end markers."""
    body = content if content.endswith("\n") or not content else content + "\n"
    return f"{RULE_START.format(id=rule_id)}\n{body}{RULE_END.format(id=rule_id)}"


def _block_pattern(rule_id: str) -> re.Pattern:
    start = re.escape(RULE_START.format(id=rule_id))
    end = re.escape(RULE_END.format(id=rule_id))
    return re.compile(f"{start}.*?{end}\n?", re.DOTALL)


def strip_rule_block(text: str, rule_id: str) -> str:
    """Remove every block belonging to ``rule_id``.

    Everything outside the block is kept byte for byte, except at the
    splice point: a block at the end of the text also takes the newline
    that ``append_rule_block`` put in front of it, and a block in the
    middle (or at the very start) does not leave extra blank lines behind.
    """
    pattern = _block_pattern(rule_id)
    while True:
        match = pattern.search(text)
        if match is None:
            return text

        before, after = text[: match.start()], text[match.end():]
        if not after:
            if before.endswith("\n"):
                before = before[:-1]
        elif not before or before.endswith("\n\n"):
            after = after.lstrip("\n")
        text = before + after


def append_rule_block(text: str, rule_id: str, content: str) -> str:
    """Add (or move to the end) the block for ``rule_id``."""
    text = strip_rule_block(text, rule_id)
    block = rule_block(rule_id, content) + "\n"
    if not text:
        return block
    return text + "\n" + block


def org_from_url(url: str) -> Optional[str]:
    """Extract the owning organization from a repository URL.

    Handles ``https://host/org/repo``, ``git@host:org/repo`` and, as a
    fallback, any path whose second-to-last segment names the owner.
    """
    segments = url_path_segments(url)
    if len(segments) < 2:
        return None
    return segments[-2]


class LinkEngine:
    """Keeps platform linkage records and filesystem artifacts in step."""

    def __init__(
        self,
        platforms: PlatformRegistry,
        repositories: RepositoryManager,
        indexer: SkillIndexer,
        rules: RuleCatalog,
    ):
        self.platforms = platforms
        self.repositories = repositories
        self.indexer = indexer
        self.rules = rules

    # -- skills --------------------------------------------------------

    def link(self, skill_id: str, platform_id: str) -> Path:
        """Expose a skill in a platform's skills directory.

        The link is named after the skill. If that name is taken by anything
        other than a link to this skill, ``{org}-{name}`` is used instead.

        Returns:
            Path of the link.

        Raises:
            NotFoundError: If the skill or platform does not exist.
            ConflictError: If the chosen path holds an unmanaged entry.
            PermissionDeniedError: If the host refuses to create the link.
        """
        skill = self._require_skill(skill_id)
        platform = self.platforms.require(platform_id)
        skills_dir = self._skills_dir(platform)

        target = Path(skill.local_path)
        link_path = skills_dir / skill.name
        if symlinks.occupied(link_path) and not symlinks.points_to(link_path, target):
            scoped = self._scoped_name(skill)
            logger.info("%s is taken, linking %s as %s", link_path, skill_id, scoped)
            link_path = skills_dir / scoped

        if symlinks.create_dir_link(target, link_path):
            logger.info("Linked %s to %s", skill_id, link_path)

        if skill_id not in platform.linked_skills:
            self.platforms.update(
                {"id": platform.id, "linked_skills": platform.linked_skills + [skill_id]}
            )
        return link_path

    def unlink(self, skill_id: str, platform_id: str) -> None:
        """Remove a skill's link from a platform and forget the linkage.

        Both possible link names are probed; only a link resolving to the
        skill is removed. If the skill can no longer be resolved (its
        repository was deleted), only the record is cleaned up.

        Raises:
            NotFoundError: If the platform does not exist.
        """
        platform = self.platforms.require(platform_id)
        skill = self.indexer.get(skill_id)

        if skill is None:
            logger.warning(
                "Skill %s no longer exists; removing the record only. "
                "Any leftover link in %s must be removed manually.",
                skill_id,
                platform.skills_dir,
            )
        else:
            link_path = self.find_skill_link(skill_id, platform_id, skill=skill)
            if link_path is not None:
                symlinks.remove_link(link_path)
                logger.info("Unlinked %s from %s", skill_id, link_path)

        if skill_id in platform.linked_skills:
            self.platforms.update(
                {
                    "id": platform.id,
                    "linked_skills": [s for s in platform.linked_skills if s != skill_id],
                }
            )

    def find_skill_link(
        self, skill_id: str, platform_id: str, skill: Optional[Skill] = None
    ) -> Optional[Path]:
        """Return the link exposing a skill in a platform, if there is one."""
        skill = skill or self._require_skill(skill_id)
        platform = self.platforms.require(platform_id)
        if not platform.skills_dir:
            return None

        skills_dir = Path(platform.skills_dir)
        target = Path(skill.local_path)
        for name in (skill.name, self._scoped_name(skill)):
            candidate = skills_dir / name
            if symlinks.points_to(candidate, target):
                return candidate
        return None

    # -- rules ---------------------------------------------------------

    def deploy(self, rule_id: str, platform_id: str) -> None:
        """Write a rule's block into the platform rules file.

        Re-deploying replaces the existing block instead of adding a second.

        Raises:
            NotFoundError: If the rule or platform does not exist, or the
                platform has no rules file.
        """
        self.rules.require(rule_id)
        platform = self.platforms.require(platform_id)
        rules_file = self._rules_file(platform)

        content = self.rules.get_content(rule_id)
        current = self._read(rules_file)
        self._write(rules_file, append_rule_block(current, rule_id, content))
        logger.info("Deployed rule %s to %s", rule_id, rules_file)

        self._record_rule_link(rule_id, platform, linked=True, rule_exists=True)

    def undeploy(self, rule_id: str, platform_id: str) -> None:
        """Remove a rule's block from the platform rules file.

        Works for rules that have since been deleted from the catalog, since
        the block is found by id alone.

        Raises:
            NotFoundError: If the platform does not exist or has no rules file.
        """
        platform = self.platforms.require(platform_id)
        rules_file = self._rules_file(platform)
        rule_exists = self.rules.get(rule_id) is not None
        if not rule_exists:
            logger.warning("Rule %s no longer exists; removing its block by id", rule_id)

        if rules_file.exists():
            current = self._read(rules_file)
            updated = strip_rule_block(current, rule_id)
            if updated != current:
                self._write(rules_file, updated)
                logger.info("Undeployed rule %s from %s", rule_id, rules_file)

        self._record_rule_link(rule_id, platform, linked=False, rule_exists=rule_exists)

    def check_file_status(self, platform_id: str, rule_id: str) -> FileStatus:
        """Classify a platform rules file for one rule.

        Returns:
            ``missing`` if the platform or its rules file is not configured,
            ``clean`` if the file does not exist, ``linked`` if it holds the
            rule's block and ``conflict`` if it holds anything else.
        """
        platform = self.platforms.get(platform_id)
        if platform is None or not platform.rules_file:
            return FileStatus.MISSING

        rules_file = Path(platform.rules_file)
        if not rules_file.exists():
            return FileStatus.CLEAN
        if _block_pattern(rule_id).search(self._read(rules_file)):
            return FileStatus.LINKED
        return FileStatus.CONFLICT

    def sync_rules(self, platform_id: str) -> list[str]:
        """Re-deploy every rule linked to a platform.

        Returns:
            Ids of the rules that were written.
        """
        platform = self.platforms.require(platform_id)
        deployed = []
        for rule_id in platform.linked_rules:
            if self.rules.get(rule_id) is None:
                logger.warning("Skipping missing rule %s on platform %s", rule_id, platform_id)
                continue
            self.deploy(rule_id, platform_id)
            deployed.append(rule_id)
        return deployed

    # -- helpers -------------------------------------------------------

    def _require_skill(self, skill_id: str) -> Skill:
        skill = self.indexer.get(skill_id)
        if skill is None:
            raise NotFoundError(f"Skill not found: {skill_id}")
        return skill

    def _scoped_name(self, skill: Skill) -> str:
        repo = self.repositories.get(skill.repo_id)
        org = org_from_url(repo.url) if repo else None
        return f"{org or skill.repo_id}-{skill.name}"

    @staticmethod
    def _skills_dir(platform: PlatformDefinition) -> Path:
        if not platform.skills_dir:
            raise NotFoundError(f"Platform {platform.id} has no skills directory")
        return Path(platform.skills_dir)

    @staticmethod
    def _rules_file(platform: PlatformDefinition) -> Path:
        if not platform.rules_file:
            raise NotFoundError(f"Platform {platform.id} has no rules file")
        return Path(platform.rules_file)

    def _record_rule_link(
        self, rule_id: str, platform: PlatformDefinition, linked: bool, rule_exists: bool
    ) -> None:
        linked_rules = [r for r in platform.linked_rules if r != rule_id]
        if linked:
            linked_rules.append(rule_id)
        if linked_rules != platform.linked_rules:
            self.platforms.update({"id": platform.id, "linked_rules": linked_rules})

        if rule_exists:
            rule = self.rules.require(rule_id)
            platform_ids = [p for p in rule.linked_platforms if p != platform.id]
            if linked:
                platform_ids.append(platform.id)
            self.rules.set_linked_platforms(rule_id, platform_ids)

    @staticmethod
    def _read(path: Path) -> str:
        if not path.exists():
            return ""
        try:
            with open(path, "r", encoding="utf-8", newline="") as f:
                return f.read()
        except OSError as e:
            raise StorageIOError(f"Failed to read {path}: {e}") from e

    @staticmethod
    def _write(path: Path, content: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as e:
            raise StorageIOError(f"Failed to write {path}: {e}") from e
