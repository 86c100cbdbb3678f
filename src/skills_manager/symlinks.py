"""Directory link primitives used to expose skills to platforms."""

import errno
import logging
import os
import sys
from pathlib import Path

from .errors import ConflictError, PermissionDeniedError, StorageIOError

logger = logging.getLogger(__name__)


def is_link(path: Path) -> bool:
    """Return True for a symbolic link or (on Windows) a directory junction."""
    if path.is_symlink():
        return True
    isjunction = getattr(os.path, "isjunction", None)
    return bool(isjunction and isjunction(path))


def points_to(link_path: Path, target: Path) -> bool:
    """Check whether ``link_path`` is a link resolving to ``target``."""
    if not is_link(link_path):
        return False
    return os.path.realpath(link_path) == os.path.realpath(target)


def occupied(path: Path) -> bool:
    """Return True if anything, including a dangling link, sits at ``path``."""
    return os.path.lexists(path)


def create_dir_link(target: Path, link_path: Path) -> bool:
    """Create a directory link at ``link_path`` pointing to ``target``.

    A junction is used on Windows, where plain symlinks need elevated
    privileges; a directory symlink everywhere else.

    Returns:
        True if a link was created, False if the correct link already existed.

    Raises:
        ConflictError: If the path is taken by anything other than the correct link.
        PermissionDeniedError: If the host refuses to create the link.
        StorageIOError: On any other filesystem failure.
    """
    if occupied(link_path):
        if points_to(link_path, target):
            return False
        raise ConflictError(f"Path {link_path} exists and is not a link to {target}")

    try:
        link_path.parent.mkdir(parents=True, exist_ok=True)
        if sys.platform == "win32":
            import _winapi

            _winapi.CreateJunction(str(target), str(link_path))
        else:
            os.symlink(target, link_path, target_is_directory=True)
    except PermissionError as e:
        raise PermissionDeniedError(
            "Permission denied. Administrator rights might be required "
            f"to create symbolic links: {link_path}"
        ) from e
    except OSError as e:
        if e.errno == errno.EPERM:
            raise PermissionDeniedError(f"Not permitted to create link {link_path}") from e
        raise StorageIOError(f"Failed to create link {link_path}: {e}") from e

    logger.debug("Linked %s -> %s", link_path, target)
    return True


def remove_link(link_path: Path) -> bool:
    """Remove a link without touching what it points to.

    Returns:
        True if removed, False if nothing was there.

    Raises:
        ConflictError: If the path is a real file or directory.
    """
    if not occupied(link_path):
        return False
    if not is_link(link_path):
        raise ConflictError(f"Path {link_path} is not a symbolic link")

    try:
        if link_path.is_symlink():
            link_path.unlink()
        else:
            # junctions are removed like empty directories
            os.rmdir(link_path)
    except OSError as e:
        raise StorageIOError(f"Failed to remove link {link_path}: {e}") from e

    logger.debug("Removed link %s", link_path)
    return True
