"""Shared fixtures for repodeck tests."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from repodeck.core.config import RepoDeckConfig
from repodeck.core.events import EventBus
from repodeck.git.models import CommandResult, Repository
from repodeck.git.runner import ProcessRunner
from repodeck.git.service import GitService


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Prevent .env file and shell env from leaking into tests.

    RepoDeckConfig.model_config has env_file=".env" which loads
    the project .env relative to cwd. Nullify it at the source.
    """
    monkeypatch.setitem(RepoDeckConfig.model_config, "env_file", None)
    for key in list(os.environ):
        if key.startswith("REPODECK_"):
            monkeypatch.delenv(key, raising=False)


def make_result(stdout: str = "", stderr: str = "", exit_code: int = 0) -> CommandResult:
    return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)


@pytest.fixture
def mock_runner():
    """A ProcessRunner whose run() returns a clean, empty success by default."""
    runner = AsyncMock(spec=ProcessRunner)
    runner.run = AsyncMock(return_value=make_result())
    return runner


@pytest.fixture
def service(mock_runner):
    return GitService(mock_runner, git_path="/usr/bin/git")


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def repo_dir(tmp_path) -> Path:
    path = tmp_path / "project"
    path.mkdir()
    return path


@pytest.fixture
def repository(repo_dir) -> Repository:
    return Repository(id="repo-1", name="project", path=repo_dir)
