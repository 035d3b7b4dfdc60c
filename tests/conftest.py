from __future__ import annotations

from pathlib import Path

import pytest

from repodocs.stores import LocalStore
from tests._fixtures.doubles import RecordingCompletion
from tests._fixtures.repo_builder import RepoBuilder


@pytest.fixture
def repo_builder(tmp_path: Path) -> RepoBuilder:
    """Provide a reusable repo builder rooted at the pytest tmp_path."""
    return RepoBuilder(tmp_path)


@pytest.fixture
def store() -> LocalStore:
    return LocalStore()


@pytest.fixture
def completion() -> RecordingCompletion:
    return RecordingCompletion()
