"""Data models for Skills Manager."""

import re
from datetime import datetime
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def slugify(name: str) -> str:
    """Derive an id from a display name.

    Lowercases, collapses every run of non-alphanumeric characters into a
    single hyphen and trims hyphens from both ends.

    Raises:
        ValueError: If nothing usable is left of the name.
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    if not slug:
        raise ValueError(f"Cannot derive an id from name: {name!r}")
    return slug


class RecordModel(BaseModel):
    """Base model that reads and writes camelCase keys on disk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_yaml_dict(self) -> dict:
        """Return the JSON-compatible dict stored in the YAML files."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PlatformPreset(RecordModel):
    """A ready-made platform template shipped with the tool or added by the user."""

    name: str
    skills_dir: str = ""
    rules_file: str = ""
    description: str = ""


class SystemConfig(RecordModel):
    """Process-wide settings stored at the application data path."""

    version: int = 1
    base_dir: Optional[str] = None
    theme: Literal["light", "dark", "system"] = "system"
    language: str = "en-US"
    git_path: Optional[str] = None
    presets: list[PlatformPreset] = Field(default_factory=list)


class PlatformDefinition(RecordModel):
    """A target installation with its own skills directory and rules file."""

    id: str = ""
    name: str
    skills_dir: str = ""
    rules_file: str = ""
    enabled: bool = True
    linked_skills: list[str] = Field(default_factory=list)
    linked_rules: list[str] = Field(default_factory=list)

    @field_validator("linked_skills", "linked_rules", mode="before")
    @classmethod
    def none_to_empty(cls, v: Optional[list[str]]) -> list[str]:
        """Treat a missing link list in the YAML file as empty."""
        return v or []


class UpdateStatus(str, Enum):
    """Result of the last remote comparison of a repository."""

    CHECKING = "checking"
    UP_TO_DATE = "up-to-date"
    BEHIND = "behind"
    ERROR = "error"


class FileStatus(str, Enum):
    """State of a platform rules file with respect to one rule."""

    LINKED = "linked"
    CONFLICT = "conflict"
    CLEAN = "clean"
    MISSING = "missing"


class SkillRepository(RecordModel):
    """A cloned git repository holding skills."""

    id: str
    name: str
    url: str
    local_path: str
    last_updated: datetime
    update_status: Optional[UpdateStatus] = None
    behind_count: Optional[int] = None
    check_error: Optional[str] = None


class Rule(RecordModel):
    """User-authored instruction text owned by the tool."""

    id: str
    name: str
    description: str = ""
    local_path: str
    linked_platforms: list[str] = Field(default_factory=list)
    created_at: datetime


class UserConfig(RecordModel):
    """Everything stored under ``{baseDir}/config``."""

    platforms: list[PlatformDefinition] = Field(default_factory=list)
    repositories: list[SkillRepository] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)


class Skill(RecordModel):
    """A skill bundle discovered in a repository. Never persisted."""

    id: str
    repo_id: str
    name: str
    local_path: str
    description: str = ""
    linked_platforms: list[str] = Field(default_factory=list)


class UpdateCheckResult(RecordModel):
    """Outcome of comparing a repository with its remote."""

    repo_id: str
    has_updates: bool = False
    behind_count: int = 0
    ahead_count: int = 0
    error: Optional[str] = None
