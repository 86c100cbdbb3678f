"""The rule catalog: user-authored instruction files."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

from .config import ConfigStore
from .errors import AlreadyExistsError, BaseDirNotSetError, ConflictError, NotFoundError
from .models import Rule, slugify

logger = logging.getLogger(__name__)


class RuleCatalog:
    """Manages rule records and the content files they own."""

    RULES_DIR = "rules"

    def __init__(self, config_store: ConfigStore):
        """Initialize the catalog.

        Args:
            config_store: Shared configuration store.
        """
        self.config_store = config_store

    def list(self) -> list[Rule]:
        """Return all rules, with ``linked_platforms`` taken from the platforms."""
        user_config = self.config_store.get_user_config()
        for rule in user_config.rules:
            rule.linked_platforms = [
                p.id for p in user_config.platforms if rule.id in p.linked_rules
            ]
        return user_config.rules

    def get(self, rule_id: str) -> Optional[Rule]:
        """Return a rule, or None."""
        return next((r for r in self.list() if r.id == rule_id), None)

    def require(self, rule_id: str) -> Rule:
        """Like ``get`` but raise NotFoundError for an unknown id."""
        rule = self.get(rule_id)
        if rule is None:
            raise NotFoundError(f"Rule not found: {rule_id}")
        return rule

    def create(self, name: str, description: str = "", content: str = "") -> Rule:
        """Create a rule and write its content file.

        Raises:
            AlreadyExistsError: If a rule with the derived id exists.
            BaseDirNotSetError: If no base directory is configured.
        """
        base_dir = self.config_store.base_dir
        if base_dir is None:
            raise BaseDirNotSetError("Set a base directory before creating rules")

        rule_id = slugify(name)
        rules = self.config_store.get_user_config().rules
        if any(r.id == rule_id for r in rules):
            raise AlreadyExistsError(f"Rule with ID {rule_id} already exists")

        local_path = base_dir / self.RULES_DIR / f"{rule_id}.md"
        local_path.parent.mkdir(parents=True, exist_ok=True)
        local_path.write_text(content, encoding="utf-8")

        rule = Rule(
            id=rule_id,
            name=name,
            description=description,
            local_path=str(local_path),
            created_at=datetime.now(),
        )
        rules.append(rule)
        self.config_store.set_user_config({"rules": rules})
        logger.info("Created rule %s", rule_id)

        return rule

    def update(
        self,
        rule_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Rule:
        """Change a rule's display name or description. The id never changes."""
        fields = {}
        if name is not None:
            fields["name"] = name
        if description is not None:
            fields["description"] = description
        return self._update_record(rule_id, **fields)

    def get_content(self, rule_id: str) -> str:
        """Return the rule text; empty if its file has gone missing."""
        path = Path(self.require(rule_id).local_path)
        if not path.exists():
            return ""
        return path.read_text(encoding="utf-8")

    def set_content(self, rule_id: str, content: str) -> None:
        """Replace the rule text."""
        path = Path(self.require(rule_id).local_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    def delete(self, rule_id: str) -> None:
        """Delete a rule and its content file.

        Raises:
            NotFoundError: If the rule does not exist.
            ConflictError: If the rule is still deployed to a platform.
        """
        rule = self.require(rule_id)
        if rule.linked_platforms:
            raise ConflictError(
                f"Rule {rule_id} is still deployed to: {', '.join(rule.linked_platforms)}. "
                "Undeploy it first."
            )

        Path(rule.local_path).unlink(missing_ok=True)
        rules = [r for r in self.config_store.get_user_config().rules if r.id != rule_id]
        self.config_store.set_user_config({"rules": rules})
        logger.info("Deleted rule %s", rule_id)

    def set_linked_platforms(self, rule_id: str, platform_ids: list[str]) -> Rule:
        """Store the platforms a rule is deployed to on the rule record."""
        return self._update_record(rule_id, linked_platforms=platform_ids)

    def _update_record(self, rule_id: str, **fields) -> Rule:
        rules = self.config_store.get_user_config().rules
        for index, rule in enumerate(rules):
            if rule.id == rule_id:
                break
        else:
            raise NotFoundError(f"Rule not found: {rule_id}")

        rules[index] = rule.model_copy(update=fields)
        self.config_store.set_user_config({"rules": rules})
        return rules[index]
