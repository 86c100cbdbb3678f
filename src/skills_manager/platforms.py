"""Platform definitions: where skills and rules get deployed."""

from __future__ import annotations

import logging
from typing import Optional, Union

from .config import ConfigStore, resolve_path_variables
from .errors import AlreadyExistsError, NotFoundError
from .models import PlatformDefinition, PlatformPreset, slugify

logger = logging.getLogger(__name__)


class PlatformRegistry:
    """CRUD over the platform definitions stored in user config.

    Paths are stored as entered (possibly with ``${HOME}``-style tokens) and
    resolved on the way out.
    """

    def __init__(self, config_store: ConfigStore):
        """Initialize the registry.

        Args:
            config_store: Shared configuration store.
        """
        self.config_store = config_store

    def list(self) -> list[PlatformDefinition]:
        """Return all platforms with resolved paths."""
        return [self._resolved(p) for p in self._stored()]

    def get(self, platform_id: str) -> Optional[PlatformDefinition]:
        """Return one platform with resolved paths, or None."""
        stored = self._find(platform_id)
        return self._resolved(stored) if stored else None

    def require(self, platform_id: str) -> PlatformDefinition:
        """Like ``get`` but raise NotFoundError for an unknown id."""
        platform = self.get(platform_id)
        if platform is None:
            raise NotFoundError(f"Platform not found: {platform_id}")
        return platform

    def create(self, definition: Union[PlatformDefinition, dict]) -> PlatformDefinition:
        """Register a new platform.

        The id is derived from the name.

        Raises:
            AlreadyExistsError: If a platform with the same id exists.
            ValueError: If no id can be derived from the name.
        """
        if isinstance(definition, dict):
            definition = PlatformDefinition.model_validate(definition)

        platform_id = slugify(definition.name)
        platforms = self._stored()
        if any(p.id == platform_id for p in platforms):
            raise AlreadyExistsError(f"Platform with ID {platform_id} already exists")

        record = definition.model_copy(update={"id": platform_id})
        platforms.append(record)
        self.config_store.set_user_config({"platforms": platforms})
        logger.info("Created platform %s", platform_id)

        return self._resolved(record)

    def create_from_preset(self, preset: PlatformPreset) -> PlatformDefinition:
        """Register a platform from a preset."""
        return self.create(
            PlatformDefinition(
                name=preset.name,
                skills_dir=preset.skills_dir,
                rules_file=preset.rules_file,
            )
        )

    def update(self, definition: Union[PlatformDefinition, dict]) -> PlatformDefinition:
        """Merge the fields present on ``definition`` into the stored record.

        Raises:
            NotFoundError: If the platform does not exist.
        """
        if isinstance(definition, PlatformDefinition):
            platform_id = definition.id
        else:
            platform_id = definition.get("id", "")

        platforms = self._stored()
        for index, platform in enumerate(platforms):
            if platform.id == platform_id:
                break
        else:
            raise NotFoundError(f"Platform with ID {platform_id} does not exist")

        if isinstance(definition, PlatformDefinition):
            updated = platform.model_copy(update=definition.model_dump(exclude_unset=True))
        else:
            updated = PlatformDefinition.model_validate({**platform.model_dump(), **definition})
        # ids are immutable
        updated.id = platform.id
        platforms[index] = updated
        self.config_store.set_user_config({"platforms": platforms})

        return self._resolved(updated)

    def delete(self, platform_id: str) -> None:
        """Remove a platform. Unknown ids are ignored."""
        platforms = self._stored()
        remaining = [p for p in platforms if p.id != platform_id]
        if len(remaining) != len(platforms):
            self.config_store.set_user_config({"platforms": remaining})
            logger.info("Deleted platform %s", platform_id)

    def _stored(self) -> list[PlatformDefinition]:
        return self.config_store.get_user_config().platforms

    def _find(self, platform_id: str) -> Optional[PlatformDefinition]:
        return next((p for p in self._stored() if p.id == platform_id), None)

    @staticmethod
    def _resolved(platform: PlatformDefinition) -> PlatformDefinition:
        return platform.model_copy(
            update={
                "skills_dir": resolve_path_variables(platform.skills_dir),
                "rules_file": resolve_path_variables(platform.rules_file),
            }
        )
