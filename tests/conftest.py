"""Pytest configuration and fixtures for teamwork tests."""

import pytest
from pathlib import Path

from teamwork.mailbox import Mailbox
from teamwork.projects import ProjectStore
from teamwork.tasks import TaskStore

PROJECT = "demo"
TEAM = "core"


@pytest.fixture
def base_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Create a temporary storage root for tests."""
    return tmp_path_factory.mktemp("teamwork")


@pytest.fixture(autouse=True)
def isolated_base_dir(base_dir: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep every test away from the real ~/.teamwork."""
    monkeypatch.setenv("TEAMWORK_BASE_DIR", str(base_dir))


@pytest.fixture
def project_store(base_dir: Path) -> ProjectStore:
    return ProjectStore(base_dir)


@pytest.fixture
def mailbox(base_dir: Path) -> Mailbox:
    return Mailbox(base_dir)


@pytest.fixture
def task_store(base_dir: Path, mailbox: Mailbox) -> TaskStore:
    return TaskStore(base_dir, mailbox=mailbox)


@pytest.fixture
def project(project_store: ProjectStore, tmp_path: Path):
    """Create the demo/core project used by most tests."""
    workdir = tmp_path / "repo"
    workdir.mkdir()
    return project_store.create(PROJECT, TEAM, "Ship the login flow", workdir)
