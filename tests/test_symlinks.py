"""Tests for directory link primitives."""

import os

import pytest

from skills_manager import symlinks
from skills_manager.errors import ConflictError


@pytest.fixture
def target(workspace):
    path = workspace / "target"
    path.mkdir()
    return path


class TestCreateDirLink:
    """Tests for create_dir_link."""

    def test_creates_link_and_parents(self, workspace, target):
        """Test a link is created, including missing parent directories."""
        link = workspace / "a" / "b" / "link"

        assert symlinks.create_dir_link(target, link)
        assert symlinks.points_to(link, target)

    def test_existing_correct_link_is_noop(self, workspace, target):
        """Test an already correct link is left alone."""
        link = workspace / "link"
        symlinks.create_dir_link(target, link)

        assert not symlinks.create_dir_link(target, link)

    def test_link_to_elsewhere_conflicts(self, workspace, target):
        """Test a link to another directory is not replaced."""
        other = workspace / "other"
        other.mkdir()
        link = workspace / "link"
        os.symlink(other, link)

        with pytest.raises(ConflictError):
            symlinks.create_dir_link(target, link)
        assert symlinks.points_to(link, other)

    def test_dangling_link_conflicts(self, workspace, target):
        """Test a broken link still counts as occupied."""
        link = workspace / "link"
        os.symlink(workspace / "gone", link)

        assert symlinks.occupied(link)
        with pytest.raises(ConflictError):
            symlinks.create_dir_link(target, link)


class TestRemoveLink:
    """Tests for remove_link."""

    def test_removes_link_only(self, workspace, target):
        """Test removing a link keeps its target."""
        (target / "file.txt").write_text("x")
        link = workspace / "link"
        symlinks.create_dir_link(target, link)

        assert symlinks.remove_link(link)
        assert not os.path.lexists(link)
        assert (target / "file.txt").exists()

    def test_missing_path(self, workspace):
        """Test removing nothing returns False."""
        assert not symlinks.remove_link(workspace / "nothing")

    def test_real_directory_raises(self, target):
        """Test real directories are never removed."""
        with pytest.raises(ConflictError, match="not a symbolic link"):
            symlinks.remove_link(target)
        assert target.exists()
