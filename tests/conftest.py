"""Shared fixtures for Skills Manager tests."""

import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from skills_manager.config import ConfigStore
from skills_manager.indexer import SkillIndexer
from skills_manager.linker import LinkEngine
from skills_manager.models import SkillRepository
from skills_manager.platforms import PlatformRegistry
from skills_manager.repositories import RepositoryManager
from skills_manager.rules import RuleCatalog


@pytest.fixture
def workspace():
    """Create a temporary directory for config, data and platforms."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def data_dir(workspace):
    """The base directory used by the store."""
    return workspace / "data"


@pytest.fixture
def store(workspace, data_dir):
    """A config store with a base directory and a short debounce window."""
    store = ConfigStore(workspace / "app" / "config.yaml", debounce_seconds=0.05)
    store.set_system_config({"base_dir": str(data_dir)})
    yield store
    store.close()


@pytest.fixture
def platforms(store):
    """A platform registry backed by the test store."""
    return PlatformRegistry(store)


@pytest.fixture
def repositories(store):
    """A repository manager backed by the test store."""
    return RepositoryManager(store)


@pytest.fixture
def indexer(store):
    """A skill indexer backed by the test store."""
    return SkillIndexer(store)


@pytest.fixture
def rules(store):
    """A rule catalog backed by the test store."""
    return RuleCatalog(store)


@pytest.fixture
def linker(platforms, repositories, indexer, rules):
    """A link engine wired to the other test components."""
    return LinkEngine(platforms, repositories, indexer, rules)


@pytest.fixture
def add_repo(store, data_dir):
    """Register a repository record backed by a plain directory (no git).

    Returns a factory: ``add_repo(owner, name, {relative_path: description})``.
    """

    def factory(owner, name, skills):
        repo_id = f"{owner}_{name}"
        local_path = data_dir / "skills" / repo_id
        for relative, description in skills.items():
            skill_dir = local_path / relative
            skill_dir.mkdir(parents=True)
            (skill_dir / "SKILL.MD").write_text(f"# {skill_dir.name}\ndescription: {description}\n")

        repositories = store.get_user_config().repositories
        repositories.append(
            SkillRepository(
                id=repo_id,
                name=name,
                url=f"https://github.com/{owner}/{name}.git",
                local_path=str(local_path),
                last_updated=datetime.now(),
            )
        )
        store.set_user_config({"repositories": repositories})
        return local_path

    return factory
