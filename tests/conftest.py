"""Shared pytest fixtures for the mediarelay test suite."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest

from mediarelay.config import Settings
from mediarelay.shared.models import Candidate, QueueItem, Video


@pytest.fixture()
def settings(tmp_path) -> Settings:
    """Return a Settings instance with test defaults."""
    return Settings(
        data_dir=str(tmp_path / "DATA"),
        video_dir=str(tmp_path / "VIDEOS"),
        redis_url="redis://localhost:6379/1",
    )


@pytest.fixture()
def sample_candidate() -> Candidate:
    return Candidate(
        url="https://prehrajto.cz/some-video/abc123",
        title="[  2.76 GB  ] - Some video",
        size=2_963_527_434,
    )


@pytest.fixture()
def sample_video() -> Video:
    return Video(
        id=uuid.UUID("00000000-0000-0000-0000-000000000010"),
        title="[  1.00 GB  ] - Test video",
        url="https://prehrajto.cz/test-video/abc123",
        size=1024**3,
    )


@pytest.fixture()
def sample_item(sample_video: Video) -> QueueItem:
    return QueueItem(
        id=uuid.UUID("00000000-0000-0000-0000-000000000100"),
        video=sample_video,
        account_id="user@example.com",
    )


@pytest.fixture()
def mock_redis() -> AsyncMock:
    """Mock async Redis client."""
    mock = AsyncMock()
    mock.get = AsyncMock(return_value=None)
    mock.set = AsyncMock(return_value=True)
    mock.sadd = AsyncMock(return_value=1)
    mock.smembers = AsyncMock(return_value=set())
    mock.sismember = AsyncMock(return_value=False)
    return mock


@pytest.fixture()
def events() -> list:
    """Collects engine events emitted through an ``emit`` callback."""
    return []


@pytest.fixture()
def emit(events: list):
    async def _emit(event) -> None:
        events.append(event)

    return _emit
