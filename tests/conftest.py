"""
Pytest Configuration and Fixtures for the once-drop test suite
===============================================================

Purpose
-------
Shared fixtures for unit and integration tests: deterministic randomness
and clocks, config managers, mocked collaborators, and real database wiring
against a temporary SQLite file. Host fakes live in `tests/fakes.py`.

Architecture Notes
------------------
- Unit tests mock the repository (fast, isolated)
- Database tests use aiosqlite on a per-test file; NullPool means every
  session opens its own connection, so an in-memory database would not be
  shared
- PostgreSQL tests use testcontainers and are skipped without Docker
- Environment is forced to `testing` before anything from `oncedrop` is
  imported, because `Config` and logging read it at import time
"""

from __future__ import annotations

import os

os.environ["ENVIRONMENT"] = "testing"
os.environ["LOG_TO_FILE"] = "false"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import random
from pathlib import Path
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from oncedrop.core.config.manager import ConfigManager
from oncedrop.core.database.circuit_breaker import CircuitBreaker
from oncedrop.core.database.service import DatabaseService
from oncedrop.core.event.bus import EventBus
from oncedrop.modules.once_drop.record import RewardRecord
from oncedrop.modules.once_drop.repository import OnceDropRepository
from oncedrop.modules.once_drop.settings import OnceDropSettings
from tests.fakes import FIXED_NOW, FakeBroadcaster

# ============================================================================
# PRIMITIVE FIXTURES
# ============================================================================


@pytest.fixture
def seeded_rng() -> random.Random:
    return random.Random(1337)


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def broadcaster() -> FakeBroadcaster:
    return FakeBroadcaster()


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def sure_settings() -> OnceDropSettings:
    """Defaults with a guaranteed roll."""
    return OnceDropSettings(chance_percent=100.0)


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    directory = tmp_path / "config"
    directory.mkdir()
    return directory


@pytest.fixture
def config_manager(config_dir: Path) -> ConfigManager:
    manager = ConfigManager(config_dir)
    manager.load()
    return manager


# ============================================================================
# MOCK FIXTURES (Unit Tests)
# ============================================================================


@pytest.fixture
def mock_repository(mocker):
    """OnceDropRepository with every coroutine mocked; storage reads ungranted."""
    repo = mocker.MagicMock(spec=OnceDropRepository)
    repo.ensure_schema = mocker.AsyncMock()
    repo.load = mocker.AsyncMock(side_effect=RewardRecord.ungranted)
    repo.reset_to_ungranted = mocker.AsyncMock()
    repo.record_grant = mocker.AsyncMock()
    repo.record_collection_metadata = mocker.AsyncMock()
    return repo


@pytest.fixture
def mock_event_bus(mocker):
    bus = mocker.MagicMock(spec=EventBus)
    bus.publish = mocker.AsyncMock(return_value=[])
    return bus


# ============================================================================
# DATABASE FIXTURES (SQLite file)
# ============================================================================


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'world.db'}"


@pytest_asyncio.fixture
async def database(sqlite_url: str) -> AsyncGenerator[DatabaseService, None]:
    service = DatabaseService(
        sqlite_url,
        echo=False,
        circuit_breaker=CircuitBreaker(failure_threshold=5, recovery_timeout_ms=30_000),
    )
    await service.initialize()
    yield service
    await service.shutdown()


@pytest.fixture
def repository(database: DatabaseService) -> OnceDropRepository:
    return OnceDropRepository(database)
