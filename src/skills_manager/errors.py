"""Exceptions raised by Skills Manager operations."""


class SkillsManagerError(Exception):
    """Base class for all Skills Manager errors."""

    pass


class NotFoundError(SkillsManagerError):
    """A referenced platform, skill, rule or repository does not exist."""

    pass


class AlreadyExistsError(SkillsManagerError):
    """An entity with the same id (or URL) is already registered."""

    pass


class ConflictError(SkillsManagerError):
    """A filesystem path is occupied by an entry this tool does not manage."""

    pass


class PermissionDeniedError(SkillsManagerError):
    """The host refused to create a symbolic link."""

    pass


class StorageIOError(SkillsManagerError):
    """A filesystem or git operation failed."""

    pass


class BaseDirNotSetError(SkillsManagerError):
    """The operation needs a base directory, but none is configured."""

    pass
