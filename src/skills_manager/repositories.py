"""Git repositories that hold skills."""

from __future__ import annotations

import logging
import os
import re
import shutil
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterator, Optional

# Defer "git binary not found" to first use instead of failing the import.
os.environ.setdefault("GIT_PYTHON_REFRESH", "quiet")

import git  # noqa: E402
from git import (  # noqa: E402
    InvalidGitRepositoryError,
    NoSuchPathError,
    RemoteProgress,
    Repo,
)
from git.exc import CommandError  # noqa: E402

from .config import ConfigStore  # noqa: E402
from .errors import (  # noqa: E402
    AlreadyExistsError,
    BaseDirNotSetError,
    NotFoundError,
    StorageIOError,
)
from .models import SkillRepository, UpdateCheckResult, UpdateStatus  # noqa: E402

logger = logging.getLogger(__name__)

BARE_REPO_PATTERN = re.compile(r"^[\w-]+/[\w.-]+$")
SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
SCP_PATTERN = re.compile(r"^[\w.-]+@[\w.-]+:")

# Upper bound on git child processes running at the same time.
MAX_CONCURRENT_GIT = 4
_git_slots = threading.BoundedSemaphore(MAX_CONCURRENT_GIT)

_git_executable: Optional[str] = None
_git_executable_lock = threading.Lock()

ProgressObserver = Callable[[str], None]


def normalize_url(url: str) -> str:
    """Expand a bare ``owner/repo`` into a GitHub clone URL.

    Anything else, including URLs with an explicit scheme or scp-style
    ``git@host:`` prefix, is returned unchanged (apart from whitespace).
    """
    url = url.strip()
    if BARE_REPO_PATTERN.match(url):
        owner, repo = url.split("/")
        if repo.endswith(".git"):
            repo = repo[: -len(".git")]
        return f"https://github.com/{owner}/{repo}.git"
    return url


def url_path_segments(url: str) -> list[str]:
    """Split a clone URL into its path segments, without scheme, host or ``.git``."""
    path = url.strip()
    if SCHEME_PATTERN.match(path):
        path = SCHEME_PATTERN.sub("", path, count=1)
        # drop user@host[:port]
        path = path.split("/", 1)[1] if "/" in path else ""
    elif SCP_PATTERN.match(path):
        path = SCP_PATTERN.sub("", path, count=1)

    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]

    return [segment for segment in re.split(r"[/\\:]", path) if segment]


def parse_repo_id(url: str) -> tuple[str, str, str]:
    """Return ``(owner, repo, id)`` for a clone URL.

    Raises:
        ValueError: If the URL does not have an owner and repository segment.
    """
    segments = url_path_segments(url)
    if len(segments) < 2:
        raise ValueError(f"Cannot determine owner/repo from URL: {url}")
    owner, repo = segments[-2], segments[-1]
    return owner, repo, f"{owner}_{repo}"


def resolve_git_executable(git_path: Optional[str] = None) -> str:
    """Locate the git binary once per process and point GitPython at it.

    The configured ``git_path`` wins, then the search path. If neither
    works, GitPython keeps its default of invoking ``git`` by name.
    """
    global _git_executable

    with _git_executable_lock:
        if _git_executable is not None:
            return _git_executable

        candidate = git_path or shutil.which("git")
        try:
            if not candidate:
                raise FileNotFoundError("git not found on PATH")
            git.refresh(candidate)
            _git_executable = candidate
        except Exception as e:
            logger.warning("Could not use git at %s (%s); falling back to 'git'", candidate, e)
            _git_executable = "git"

        return _git_executable


@contextmanager
def git_slot() -> Iterator[None]:
    """Hold one of the ``MAX_CONCURRENT_GIT`` git process slots."""
    with _git_slots:
        yield


class _ObserverProgress(RemoteProgress):
    """Forwards git progress output to the registered observers."""

    def __init__(self, observers: list[ProgressObserver]):
        super().__init__()
        self._observers = observers

    def update(self, op_code, cur_count, max_count=None, message=""):
        self._emit(self._cur_line)

    def line_dropped(self, line: str) -> None:
        self._emit(line)

    def _emit(self, line: Optional[str]) -> None:
        if not line:
            return
        for observer in list(self._observers):
            observer(line)


class RepositoryManager:
    """Clones, updates and removes skill repositories."""

    SKILLS_DIR = "skills"

    def __init__(self, config_store: ConfigStore):
        """Initialize the manager.

        Args:
            config_store: Shared configuration store.
        """
        self.config_store = config_store
        self._observers: list[ProgressObserver] = []
        self._records_lock = threading.RLock()

    # -- observers -----------------------------------------------------

    def add_observer(self, observer: ProgressObserver) -> None:
        """Receive progress and log lines from git operations."""
        self._observers.append(observer)

    def remove_observer(self, observer: ProgressObserver) -> None:
        """Stop sending lines to ``observer``."""
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, line: str) -> None:
        for observer in list(self._observers):
            observer(line)

    # -- queries -------------------------------------------------------

    normalize_url = staticmethod(normalize_url)

    def list(self) -> list[SkillRepository]:
        """Return all registered repositories."""
        return self.config_store.get_user_config().repositories

    def get(self, repo_id: str) -> Optional[SkillRepository]:
        """Return one repository record, or None."""
        return next((r for r in self.list() if r.id == repo_id), None)

    def check_git_installed(self) -> bool:
        """Check whether a usable git binary is available."""
        self._ensure_git()
        try:
            git.Git().version_info
            return True
        except Exception as e:
            logger.debug("git is not available: %s", e)
            return False

    # -- operations ----------------------------------------------------

    def clone(self, url: str) -> SkillRepository:
        """Shallow-clone a repository into ``{baseDir}/skills/{id}`` and register it.

        Args:
            url: Clone URL or bare ``owner/repo``.

        Returns:
            The new repository record.

        Raises:
            AlreadyExistsError: If the id or URL is already registered, or the
                target directory exists.
            BaseDirNotSetError: If no base directory is configured.
            StorageIOError: If git fails.
        """
        url = normalize_url(url)
        _, repo_name, repo_id = parse_repo_id(url)

        base_dir = self.config_store.base_dir
        if base_dir is None:
            raise BaseDirNotSetError("Set a base directory before adding repositories")

        for existing in self.list():
            if existing.id == repo_id or existing.url == url:
                raise AlreadyExistsError(f"Repository already added: {existing.id} ({existing.url})")

        local_path = base_dir / self.SKILLS_DIR / repo_id
        if local_path.exists():
            raise AlreadyExistsError(f"Target directory {local_path} already exists")
        local_path.parent.mkdir(parents=True, exist_ok=True)

        self._ensure_git()
        self._notify(f"Cloning {url} into {local_path}")
        try:
            with git_slot():
                Repo.clone_from(
                    url,
                    local_path,
                    progress=_ObserverProgress(self._observers),
                    depth=1,
                )
        except CommandError as e:
            shutil.rmtree(local_path, ignore_errors=True)
            raise StorageIOError(f"Failed to clone {url}: {_git_message(e)}") from e

        record = SkillRepository(
            id=repo_id,
            name=repo_name,
            url=url,
            local_path=str(local_path),
            last_updated=datetime.now(),
            update_status=UpdateStatus.UP_TO_DATE,
            behind_count=0,
        )
        with self._records_lock:
            repositories = self.list()
            repositories.append(record)
            self.config_store.set_user_config({"repositories": repositories})

        self._notify(f"Cloned {url}")
        logger.info("Cloned %s as %s", url, repo_id)
        return record

    def pull(self, repo_id: str) -> SkillRepository:
        """Pull the latest changes for a repository.

        Raises:
            NotFoundError: If the record or its working tree is missing.
            StorageIOError: If git fails.
        """
        record = self._require_checkout(repo_id)

        self._ensure_git()
        try:
            with git_slot(), Repo(record.local_path) as repo:
                repo.remotes.origin.pull(progress=_ObserverProgress(self._observers))
        except CommandError as e:
            raise StorageIOError(f"Failed to pull {repo_id}: {_git_message(e)}") from e

        logger.info("Pulled %s", repo_id)
        return self._update_record(
            repo_id,
            last_updated=datetime.now(),
            update_status=UpdateStatus.UP_TO_DATE,
            behind_count=0,
            check_error=None,
        )

    def check_updates(self, repo_id: str) -> UpdateCheckResult:
        """Fetch and compare with the remote, recording the outcome.

        Git failures do not raise: they are stored on the record as
        ``update_status=error`` with a ``check_error`` message, and returned
        in the result.

        Raises:
            NotFoundError: If the record or its working tree is missing.
        """
        record = self._require_checkout(repo_id)
        result = self._probe(record)
        self._record_result(result)
        return result

    def check_all_updates(self) -> list[UpdateCheckResult]:
        """Check every repository whose working tree exists.

        Probes run in parallel, bounded by ``MAX_CONCURRENT_GIT``; results
        are written back one at a time.
        """
        records = [r for r in self.list() if Path(r.local_path).is_dir()]
        if not records:
            return []

        with ThreadPoolExecutor(max_workers=MAX_CONCURRENT_GIT) as executor:
            results = list(executor.map(self._probe, records))

        for result in results:
            self._record_result(result)
        return results

    def delete(self, repo_id: str) -> None:
        """Remove the working tree and the record of a repository.

        Raises:
            NotFoundError: If no repository has this id.
            StorageIOError: If the working tree cannot be removed.
        """
        record = self.get(repo_id)
        if record is None:
            raise NotFoundError(f"Repository not found: {repo_id}")

        try:
            shutil.rmtree(record.local_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageIOError(f"Failed to remove {record.local_path}: {e}") from e

        with self._records_lock:
            remaining = [r for r in self.list() if r.id != repo_id]
            self.config_store.set_user_config({"repositories": remaining})
        logger.info("Deleted repository %s", repo_id)

    # -- helpers -------------------------------------------------------

    def _ensure_git(self) -> None:
        resolve_git_executable(self.config_store.get_system_config().git_path)

    def _require_checkout(self, repo_id: str) -> SkillRepository:
        record = self.get(repo_id)
        if record is None:
            raise NotFoundError(f"Repository not found: {repo_id}")
        if not Path(record.local_path).is_dir():
            raise NotFoundError(f"Target directory {record.local_path} does not exist")
        return record

    def _probe(self, record: SkillRepository) -> UpdateCheckResult:
        self._ensure_git()
        try:
            with git_slot(), Repo(record.local_path) as repo:
                repo.remotes.origin.fetch()
                counts = repo.git.rev_list("--left-right", "--count", "HEAD...@{upstream}")
            ahead, behind = (int(n) for n in counts.split())
        except (
            CommandError,
            InvalidGitRepositoryError,
            NoSuchPathError,
            AttributeError,
            ValueError,
        ) as e:
            message = _git_message(e) if isinstance(e, CommandError) else str(e)
            logger.warning("Update check failed for %s: %s", record.id, message)
            return UpdateCheckResult(repo_id=record.id, error=message)

        return UpdateCheckResult(
            repo_id=record.id,
            has_updates=behind > 0,
            behind_count=behind,
            ahead_count=ahead,
        )

    def _record_result(self, result: UpdateCheckResult) -> None:
        if result.error:
            self._update_record(
                result.repo_id,
                update_status=UpdateStatus.ERROR,
                check_error=result.error,
            )
        else:
            self._update_record(
                result.repo_id,
                update_status=UpdateStatus.BEHIND if result.has_updates else UpdateStatus.UP_TO_DATE,
                behind_count=result.behind_count,
                check_error=None,
            )

    def _update_record(self, repo_id: str, **fields) -> SkillRepository:
        with self._records_lock:
            repositories = self.list()
            for index, record in enumerate(repositories):
                if record.id == repo_id:
                    break
            else:
                raise NotFoundError(f"Repository not found: {repo_id}")

            repositories[index] = record.model_copy(update=fields)
            self.config_store.set_user_config({"repositories": repositories})
            return repositories[index]


def _git_message(error: CommandError) -> str:
    """Human-readable text of a git failure."""
    stderr = (error.stderr or "").strip()
    if stderr.startswith("stderr:"):
        stderr = stderr[len("stderr:"):].strip()
    return stderr.strip("'").strip() or str(error)
