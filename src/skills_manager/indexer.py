"""Discovery of skill bundles inside cloned repositories."""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Iterator, Optional

import frontmatter

from .config import ConfigStore
from .models import Skill

logger = logging.getLogger(__name__)

DESCRIPTION_PATTERN = re.compile(r"^description:\s*(.+)$", re.MULTILINE)

# YAML block scalar indicators: the description continues on the next lines
BLOCK_INDICATORS = {">", "|", ">-", "|-", ">+", "|+"}


def extract_description(content: str) -> str:
    """Pull the description out of a manifest.

    The first ``description:`` line wins. When it only opens a YAML block
    scalar, the frontmatter is parsed to get the full text.
    """
    match = DESCRIPTION_PATTERN.search(content)
    if not match:
        return ""

    value = match.group(1).strip()
    if value not in BLOCK_INDICATORS:
        return value

    try:
        parsed = frontmatter.loads(content)
    except Exception as e:
        logger.debug("Manifest frontmatter is not valid YAML: %s", e)
        return ""
    description = parsed.metadata.get("description")
    return description.strip() if isinstance(description, str) else ""


class SkillIndexer:
    """Finds skills by walking repository working trees.

    Nothing is cached: every call rescans the disk, so the result always
    reflects the current working trees and platform links.
    """

    MANIFEST = "SKILL.MD"
    MAX_DEPTH = 3

    def __init__(self, config_store: ConfigStore):
        """Initialize the indexer.

        Args:
            config_store: Shared configuration store.
        """
        self.config_store = config_store

    def scan_skills(self, repo_path: Path, repo_id: str) -> list[Skill]:
        """Return every skill inside ``repo_path``.

        Args:
            repo_path: Root of a repository working tree.
            repo_id: Id of the owning repository, used to build skill ids.

        Returns:
            Skills sorted by id. Empty if the path does not exist.
        """
        repo_path = Path(repo_path)
        if not repo_path.is_dir():
            return []

        skills = []
        for skill_dir in self._walk(repo_path):
            relative = skill_dir.relative_to(repo_path).as_posix()
            skills.append(
                Skill(
                    id=f"{repo_id}/{relative}",
                    repo_id=repo_id,
                    name=skill_dir.name,
                    local_path=str(skill_dir),
                    description=self._read_description(skill_dir / self.MANIFEST),
                )
            )

        return sorted(skills, key=lambda s: s.id)

    def list_all(self) -> list[Skill]:
        """Scan every registered repository and attach platform links."""
        user_config = self.config_store.get_user_config()

        skills = []
        for repo in user_config.repositories:
            skills.extend(self.scan_skills(Path(repo.local_path), repo.id))

        for skill in skills:
            skill.linked_platforms = [
                p.id for p in user_config.platforms if skill.id in p.linked_skills
            ]

        return skills

    def get(self, skill_id: str) -> Optional[Skill]:
        """Find a skill by id, or None if its repository or directory is gone."""
        return next((s for s in self.list_all() if s.id == skill_id), None)

    def _walk(self, root: Path) -> Iterator[Path]:
        """Yield skill directories below ``root``, depth-first in name order.

        ``root`` is depth 0. Directories up to ``MAX_DEPTH`` are listed and
        their children classified; nothing deeper is read.
        """
        stack = [(root, 0)]
        while stack:
            current, depth = stack.pop()
            if depth > self.MAX_DEPTH:
                continue

            try:
                children = sorted(
                    (c for c in current.iterdir() if c.is_dir() and not c.name.startswith(".")),
                    key=lambda c: c.name,
                )
            except OSError as e:
                logger.warning("Error scanning directory %s: %s", current, e)
                continue

            descend = []
            for child in children:
                if (child / self.MANIFEST).is_file():
                    yield child
                else:
                    descend.append((child, depth + 1))
            stack.extend(reversed(descend))

    @staticmethod
    def _read_description(manifest: Path) -> str:
        try:
            content = manifest.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning("Could not read manifest %s: %s", manifest, e)
            return ""
        return extract_description(content)
