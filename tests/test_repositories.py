"""Tests for repository management."""

import shutil
from datetime import datetime
from pathlib import Path

import git
import pytest
from git import Actor, Repo

from skills_manager.errors import AlreadyExistsError, NotFoundError, StorageIOError
from skills_manager.models import SkillRepository, UpdateStatus
from skills_manager.repositories import normalize_url, parse_repo_id, url_path_segments

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

AUTHOR = Actor("Test", "test@example.com")


def make_upstream(root, owner, name, skills):
    """Create a local git repository with one commit containing ``skills``."""
    path = root / "remote" / owner / name
    repo = Repo.init(path)
    for relative, description in skills.items():
        skill_dir = path / relative
        skill_dir.mkdir(parents=True)
        (skill_dir / "SKILL.MD").write_text(f"description: {description}\n")
        repo.index.add([f"{relative}/SKILL.MD"])
    repo.index.commit("initial", author=AUTHOR, committer=AUTHOR)
    return repo


def commit_file(repo, name, content):
    path = Path(repo.working_tree_dir) / name
    path.write_text(content)
    repo.index.add([name])
    repo.index.commit(f"add {name}", author=AUTHOR, committer=AUTHOR)


class TestUrls:
    """Tests for URL normalization and id extraction."""

    @pytest.mark.parametrize("bare", ["owner/repo", "acme/toolkit", "my-org/repo.name", "a_b/c-d"])
    def test_bare_owner_repo(self, bare):
        """Test bare owner/repo expands to a GitHub URL."""
        assert normalize_url(bare) == f"https://github.com/{bare}.git"

    @pytest.mark.parametrize(
        "url",
        [
            "https://example.com/foo.git",
            "https://github.com/user/repo",
            "ssh://git@host/org/repo.git",
            "git@github.com:org/repo.git",
        ],
    )
    def test_explicit_scheme_unchanged(self, url):
        """Test URLs with an explicit scheme pass through."""
        assert normalize_url(url) == url

    def test_bare_with_git_suffix(self):
        """Test a trailing .git on a bare name is not doubled."""
        assert normalize_url("owner/repo.git") == "https://github.com/owner/repo.git"

    @pytest.mark.parametrize(
        "url, expected",
        [
            ("https://github.com/acme/toolkit.git", ("acme", "toolkit", "acme_toolkit")),
            ("https://gitlab.com/group/sub/tools/", ("sub", "tools", "sub_tools")),
            ("git@github.com:acme/toolkit.git", ("acme", "toolkit", "acme_toolkit")),
            ("ssh://git@host:22/org/repo.git", ("org", "repo", "org_repo")),
            ("file:///tmp/remote/acme/toolkit", ("acme", "toolkit", "acme_toolkit")),
        ],
    )
    def test_parse_repo_id(self, url, expected):
        """Test owner, repo and id extraction."""
        assert parse_repo_id(url) == expected

    def test_parse_repo_id_invalid(self):
        """Test URLs without owner/repo are rejected."""
        with pytest.raises(ValueError):
            parse_repo_id("https://example.com/")

    def test_segments_strip_host(self):
        """Test the host never appears in the segments."""
        assert url_path_segments("https://github.com/a/b.git") == ["a", "b"]


class TestRepositoryRecords:
    """Tests that need no git binary."""

    def _register(self, store, local_path):
        record = SkillRepository(
            id="acme_toolkit",
            name="toolkit",
            url="https://github.com/acme/toolkit.git",
            local_path=str(local_path),
            last_updated=datetime.now(),
        )
        store.set_user_config({"repositories": [record]})
        return record

    def test_check_updates_failure_is_recorded(self, store, repositories, workspace):
        """Test a failed check is stored on the record instead of raised."""
        not_a_repo = workspace / "plain"
        not_a_repo.mkdir()
        self._register(store, not_a_repo)

        result = repositories.check_updates("acme_toolkit")

        assert result.error
        record = repositories.get("acme_toolkit")
        assert record.update_status == UpdateStatus.ERROR
        assert record.check_error == result.error

    def test_check_updates_missing_checkout(self, store, repositories, workspace):
        """Test checking a repository whose directory is gone raises."""
        self._register(store, workspace / "missing")

        with pytest.raises(NotFoundError):
            repositories.check_updates("acme_toolkit")

    def test_pull_unknown_repository(self, repositories):
        """Test pulling an unknown repository raises."""
        with pytest.raises(NotFoundError):
            repositories.pull("nope")

    def test_delete_tolerates_missing_directory(self, store, repositories, workspace):
        """Test deleting a repository whose directory is already gone."""
        self._register(store, workspace / "missing")

        repositories.delete("acme_toolkit")

        assert repositories.list() == []

    def test_delete_unknown_repository(self, repositories):
        """Test deleting an unknown repository raises."""
        with pytest.raises(NotFoundError):
            repositories.delete("nope")

    def test_clone_duplicate_url(self, store, repositories, workspace):
        """Test cloning an already registered repository fails before git runs."""
        self._register(store, workspace / "x")

        with pytest.raises(AlreadyExistsError):
            repositories.clone("acme/toolkit")


@requires_git
class TestGitOperations:
    """Tests against real local git repositories."""

    def test_clone_registers_repository(self, workspace, data_dir, repositories):
        """Test cloning creates the working tree and the record."""
        make_upstream(workspace, "acme", "toolkit", {"formatter": "formats code"})
        url = (workspace / "remote" / "acme" / "toolkit").as_uri()
        lines = []
        repositories.add_observer(lines.append)

        record = repositories.clone(url)

        assert record.id == "acme_toolkit"
        assert record.url == url
        assert Path(record.local_path) == data_dir / "skills" / "acme_toolkit"
        assert (Path(record.local_path) / "formatter" / "SKILL.MD").exists()
        assert repositories.get("acme_toolkit") is not None
        assert any("Cloning" in line for line in lines)

    def test_clone_is_shallow(self, workspace, repositories):
        """Test only the latest commit is fetched."""
        upstream = make_upstream(workspace, "acme", "toolkit", {"a": "a"})
        commit_file(upstream, "second.txt", "2")

        record = repositories.clone((workspace / "remote" / "acme" / "toolkit").as_uri())

        assert len(list(Repo(record.local_path).iter_commits())) == 1

    def test_clone_twice_raises(self, workspace, repositories):
        """Test the same repository cannot be cloned twice."""
        make_upstream(workspace, "acme", "toolkit", {"a": "a"})
        url = (workspace / "remote" / "acme" / "toolkit").as_uri()
        repositories.clone(url)

        with pytest.raises(AlreadyExistsError):
            repositories.clone(url)

    def test_clone_failure_cleans_up(self, workspace, data_dir, repositories):
        """Test a failed clone leaves no directory or record behind."""
        url = (workspace / "remote" / "ghost" / "repo").as_uri()

        with pytest.raises(StorageIOError):
            repositories.clone(url)

        assert not (data_dir / "skills" / "ghost_repo").exists()
        assert repositories.list() == []

    def test_check_updates_and_pull(self, workspace, repositories):
        """Test detecting upstream commits and pulling them."""
        upstream = make_upstream(workspace, "acme", "toolkit", {"a": "a"})
        record = repositories.clone((workspace / "remote" / "acme" / "toolkit").as_uri())

        result = repositories.check_updates(record.id)
        assert not result.has_updates
        assert repositories.get(record.id).update_status == UpdateStatus.UP_TO_DATE

        commit_file(upstream, "new.txt", "new")
        result = repositories.check_updates(record.id)
        assert result.has_updates
        assert result.behind_count == 1
        assert result.ahead_count == 0
        stored = repositories.get(record.id)
        assert stored.update_status == UpdateStatus.BEHIND
        assert stored.behind_count == 1

        repositories.pull(record.id)
        assert (Path(record.local_path) / "new.txt").exists()
        assert repositories.get(record.id).update_status == UpdateStatus.UP_TO_DATE

    def test_check_all_updates(self, workspace, repositories):
        """Test checking every repository at once."""
        for owner in ("acme", "other"):
            make_upstream(workspace, owner, "toolkit", {"a": "a"})
            repositories.clone((workspace / "remote" / owner / "toolkit").as_uri())

        results = repositories.check_all_updates()

        assert sorted(r.repo_id for r in results) == ["acme_toolkit", "other_toolkit"]
        assert all(r.error is None for r in results)
        assert all(r.update_status == UpdateStatus.UP_TO_DATE for r in repositories.list())

    def test_delete_removes_working_tree(self, workspace, repositories):
        """Test deleting removes files and record."""
        make_upstream(workspace, "acme", "toolkit", {"a": "a"})
        record = repositories.clone((workspace / "remote" / "acme" / "toolkit").as_uri())

        repositories.delete(record.id)

        assert not Path(record.local_path).exists()
        assert repositories.list() == []

    def test_clone_index_link_unlink(self, workspace, platforms, repositories, indexer, linker):
        """Test the full flow from platform creation to unlinking."""
        platform = platforms.create(
            {
                "name": "P",
                "skills_dir": str(workspace / "p" / "skills"),
                "rules_file": str(workspace / "p" / "RULES.md"),
            }
        )
        make_upstream(workspace, "acme", "toolkit", {"formatter": "formats code"})
        repositories.clone((workspace / "remote" / "acme" / "toolkit").as_uri())

        skills = indexer.list_all()
        assert [(s.id, s.description) for s in skills] == [("acme_toolkit/formatter", "formats code")]

        link_path = linker.link("acme_toolkit/formatter", platform.id)
        assert link_path == workspace / "p" / "skills" / "formatter"
        assert link_path.is_symlink()
        assert (link_path / "SKILL.MD").exists()

        linker.unlink("acme_toolkit/formatter", platform.id)
        assert not link_path.exists()
        assert platforms.get(platform.id).linked_skills == []

    def test_git_installed(self, repositories):
        """Test git detection."""
        assert repositories.check_git_installed()

    def test_check_updates_without_git_binary(self, workspace, repositories, monkeypatch):
        """Test a missing git binary is recorded as a failed check."""
        make_upstream(workspace, "acme", "toolkit", {"a": "a"})
        record = repositories.clone((workspace / "remote" / "acme" / "toolkit").as_uri())
        monkeypatch.setattr(git.Git, "GIT_PYTHON_GIT_EXECUTABLE", str(workspace / "no-git"))

        result = repositories.check_updates(record.id)
        results = repositories.check_all_updates()

        assert result.error
        assert [r.error is not None for r in results] == [True]
        stored = repositories.get(record.id)
        assert stored.update_status == UpdateStatus.ERROR
        assert stored.check_error

    def test_clone_without_git_binary(self, workspace, data_dir, repositories, monkeypatch):
        """Test a missing git binary fails the clone and cleans up."""
        make_upstream(workspace, "acme", "toolkit", {"a": "a"})
        repositories.check_git_installed()
        monkeypatch.setattr(git.Git, "GIT_PYTHON_GIT_EXECUTABLE", str(workspace / "no-git"))

        with pytest.raises(StorageIOError):
            repositories.clone((workspace / "remote" / "acme" / "toolkit").as_uri())

        assert not (data_dir / "skills" / "acme_toolkit").exists()
        assert repositories.list() == []
