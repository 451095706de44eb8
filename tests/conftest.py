"""Pytest configuration and fixtures."""

from collections.abc import AsyncGenerator
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import pytest
import pytest_asyncio

from molexa.core.config import Settings
from molexa.core.database import Database
from molexa.services.aggregator import ConnectedAggregator
from molexa.services.analytics import AnalyticsService
from molexa.services.events import RequestEvent

SALT = "test-salt"


def make_settings(tmp_path: Path, database_url: str = "", **overrides) -> Settings:
    values = dict(
        database_url=database_url,
        archive_dir=str(tmp_path / "archives"),
        hash_salt=SALT,
        scheduler_enabled=False,
        stream_interval_seconds=30.0,
        admin_token="",
    )
    values.update(overrides)
    return Settings(**values)


def make_event(
    endpoint: str = "/api/pubchem/compound/name/aspirin/JSON",
    method: str = "GET",
    status_code: Optional[int] = 200,
    duration_ms: Optional[float] = 12.5,
    when: Optional[datetime] = None,
) -> RequestEvent:
    return RequestEvent.create(
        method=method,
        endpoint=endpoint,
        client_ip="203.0.113.7",
        user_agent="pytest-agent/1.0",
        status_code=status_code,
        duration_ms=duration_ms,
        salt=SALT,
        now=when,
    )


def utc(year: int, month: int, day: int = 15, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    return f"sqlite:///{tmp_path / 'analytics.db'}"


@pytest.fixture
def memory_settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def db_settings(tmp_path: Path, sqlite_url: str) -> Settings:
    return make_settings(tmp_path, database_url=sqlite_url)


@pytest_asyncio.fixture
async def aggregator(sqlite_url: str) -> AsyncGenerator[ConnectedAggregator, None]:
    """Connected aggregator on a fresh SQLite file, tables created."""
    database = Database(sqlite_url)
    database.create_all()
    agg = ConnectedAggregator(database)
    yield agg
    await agg.close()


@pytest_asyncio.fixture
async def memory_service(memory_settings: Settings) -> AsyncGenerator[AnalyticsService, None]:
    service = AnalyticsService(memory_settings)
    await service.initialize()
    yield service
    await service.shutdown()


@pytest_asyncio.fixture
async def db_service(db_settings: Settings) -> AsyncGenerator[AnalyticsService, None]:
    service = AnalyticsService(db_settings)
    await service.initialize()
    yield service
    await service.shutdown()
