"""
Durable aggregation of request events.

Two variants share the ``Aggregator`` contract and are selected once at
startup:

  - ``ConnectedAggregator``  → SQLAlchemy-backed event log + monthly summaries
  - ``MemoryOnlyAggregator`` → degraded mode, nothing is persisted

The blocking database work runs in worker threads so the event loop never
waits on it. Summary rows are only ever written from this module.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from molexa.core.database import Database
from molexa.models.analytics import APIRequest, MonthlySummary
from molexa.services.classifier import Category, EndpointGroup
from molexa.services.errors import NotConfigured
from molexa.services.event_store import EventStore
from molexa.services.events import (
    PeriodSummary,
    RequestEvent,
    as_utc,
    period_key,
    utcnow,
    validate_period_key,
    zero_category_counts,
    zero_group_counts,
)

logger = logging.getLogger("molexa.aggregator")


@dataclass(frozen=True)
class PersistResult:
    """Outcome of one background write."""

    event_id: str
    ok: bool
    error: Optional[str] = None
    skipped: bool = False


# ─── Row mapping ───


def event_to_row(event: RequestEvent) -> APIRequest:
    return APIRequest(
        id=event.id,
        timestamp=event.timestamp,
        method=event.method,
        endpoint=event.endpoint,
        request_type=event.category.value,
        endpoint_group=event.endpoint_group.value,
        response_status=event.status_code,
        response_time_ms=event.duration_ms,
        ip_hash=event.ip_fingerprint,
        user_agent_hash=event.agent_fingerprint,
        month_year=event.period_key,
    )


def _enum_or(enum_cls, value, default):
    try:
        return enum_cls(value)
    except ValueError:
        return default


def row_to_event(row: APIRequest) -> RequestEvent:
    return RequestEvent(
        id=row.id,
        timestamp=as_utc(row.timestamp),
        method=row.method,
        endpoint=row.endpoint,
        category=_enum_or(Category, row.request_type, Category.OTHER_API),
        endpoint_group=_enum_or(EndpointGroup, row.endpoint_group, EndpointGroup.OTHER),
        status_code=row.response_status,
        duration_ms=row.response_time_ms,
        ip_fingerprint=row.ip_hash,
        agent_fingerprint=row.user_agent_hash,
        period_key=row.month_year,
    )


def row_to_summary(row: MonthlySummary) -> PeriodSummary:
    by_type = zero_category_counts()
    by_type.update(row.requests_by_type or {})
    by_group = zero_group_counts()
    by_group.update(row.requests_by_endpoint or {})
    return PeriodSummary(
        period_key=row.month_year,
        total_count=row.total_requests or 0,
        counts_by_category=by_type,
        counts_by_endpoint_group=by_group,
        average_duration_ms=round(row.average_response_time or 0.0, 2),
        created_at=as_utc(row.created_at),
        archived_at=as_utc(row.archived_at),
    )


# ─── Contract ───


class Aggregator(ABC):
    mode: str = "abstract"

    @property
    @abstractmethod
    def connected(self) -> bool:
        ...

    @abstractmethod
    async def initialize(self, store: EventStore, hydrate_limit: int = 50) -> None:
        ...

    @abstractmethod
    async def persist(self, event: RequestEvent) -> PersistResult:
        ...

    @abstractmethod
    async def metrics_for_period(self, key: str) -> Optional[PeriodSummary]:
        ...

    @abstractmethod
    async def events_for_period(self, key: str) -> List[RequestEvent]:
        ...

    @abstractmethod
    async def recent_events(self, limit: int = 50) -> List[RequestEvent]:
        ...

    @abstractmethod
    async def open_periods_before(self, key: str) -> List[str]:
        ...

    async def close(self) -> None:
        return None


class MemoryOnlyAggregator(Aggregator):
    """Degraded mode: writes are skipped, durable reads are unavailable."""

    mode = "memory-only"

    def __init__(self, reason: str = "no database configured") -> None:
        self.reason = reason

    @property
    def connected(self) -> bool:
        return False

    async def initialize(self, store: EventStore, hydrate_limit: int = 50) -> None:
        logger.info("Analytics running in memory-only mode (%s)", self.reason)

    async def persist(self, event: RequestEvent) -> PersistResult:
        return PersistResult(event_id=event.id, ok=False, error="not configured", skipped=True)

    async def metrics_for_period(self, key: str) -> Optional[PeriodSummary]:
        raise NotConfigured()

    async def events_for_period(self, key: str) -> List[RequestEvent]:
        raise NotConfigured()

    async def recent_events(self, limit: int = 50) -> List[RequestEvent]:
        raise NotConfigured()

    async def open_periods_before(self, key: str) -> List[str]:
        return []


class ConnectedAggregator(Aggregator):
    """Persists events and keeps one additive summary row per period."""

    mode = "database"

    def __init__(self, database: Database) -> None:
        self.database = database

    @property
    def connected(self) -> bool:
        return True

    # ─── Startup ───

    async def initialize(self, store: EventStore, hydrate_limit: int = 50) -> None:
        """Ensure the current period row exists, reconcile it, warm the store.

        Raises if the backend is unreachable; the caller decides to degrade.
        """
        tail = await asyncio.to_thread(self._initialize_sync, period_key(), hydrate_limit)
        # Oldest first so the store ends up newest-first
        for event in reversed(tail):
            store.record(event)
        logger.info("Analytics database ready, %d recent events loaded", len(tail))

    def _initialize_sync(self, current: str, hydrate_limit: int) -> List[RequestEvent]:
        self.database.ping()
        self.database.create_all()
        with self.database.write_lock, self.database.session() as db:
            row = self.get_or_create_summary(db, current)
            count = self._count_events(db, current)
            if row.archived_at is None and count != (row.total_requests or 0):
                logger.warning(
                    "Summary for %s out of sync (summary=%s, events=%d), reconciling",
                    current, row.total_requests, count,
                )
                self.reconcile(db, current, self.load_events(db, current))
            else:
                logger.info("Found summary for %s: %s requests", current, row.total_requests)

            if hydrate_limit <= 0:
                return []
            rows = db.execute(
                select(APIRequest).order_by(APIRequest.timestamp.desc()).limit(hydrate_limit)
            ).scalars().all()
            return [row_to_event(r) for r in rows]

    # ─── Writes ───

    async def persist(self, event: RequestEvent) -> PersistResult:
        try:
            await asyncio.to_thread(self._persist_sync, event)
        except Exception as exc:
            logger.warning("Failed to persist event %s: %s", event.id, exc)
            return PersistResult(event_id=event.id, ok=False, error=str(exc))
        return PersistResult(event_id=event.id, ok=True)

    def _persist_sync(self, event: RequestEvent) -> None:
        with self.database.write_lock, self.database.session() as db:
            db.add(event_to_row(event))
            row = self.get_or_create_summary(db, event.period_key)
            self.apply_event(row, event)

    @staticmethod
    def apply_event(row: MonthlySummary, event: RequestEvent) -> None:
        """Additive update. JSON columns are reassigned so changes are tracked."""
        previous = row.total_requests or 0
        row.total_requests = previous + 1

        by_type = dict(row.requests_by_type or {})
        by_type[event.category.value] = by_type.get(event.category.value, 0) + 1
        row.requests_by_type = by_type

        by_group = dict(row.requests_by_endpoint or {})
        by_group[event.endpoint_group.value] = by_group.get(event.endpoint_group.value, 0) + 1
        row.requests_by_endpoint = by_group

        if event.duration_ms is not None:
            timed = row.timed_requests or 0
            avg = row.average_response_time or 0.0
            row.average_response_time = (avg * timed + event.duration_ms) / (timed + 1)
            row.timed_requests = timed + 1

    def get_or_create_summary(self, db: Session, key: str) -> MonthlySummary:
        row = db.execute(
            select(MonthlySummary).where(MonthlySummary.month_year == key)
        ).scalar_one_or_none()
        if row is None:
            row = MonthlySummary(
                month_year=key,
                total_requests=0,
                requests_by_type=zero_category_counts(),
                requests_by_endpoint=zero_group_counts(),
                average_response_time=0.0,
                timed_requests=0,
                created_at=utcnow(),
            )
            db.add(row)
            db.flush()
            logger.info("Created initial summary for %s", key)
        return row

    def reconcile(self, db: Session, key: str, events: Iterable[RequestEvent]) -> MonthlySummary:
        """Rebuild a summary row from the raw events of its period."""
        events = list(events)
        row = self.get_or_create_summary(db, key)
        by_type = zero_category_counts()
        by_group = zero_group_counts()
        durations = []
        for e in events:
            by_type[e.category.value] += 1
            by_group[e.endpoint_group.value] += 1
            if e.duration_ms is not None:
                durations.append(e.duration_ms)
        row.total_requests = len(events)
        row.requests_by_type = by_type
        row.requests_by_endpoint = by_group
        row.average_response_time = sum(durations) / len(durations) if durations else 0.0
        row.timed_requests = len(durations)
        db.flush()
        return row

    def mark_archived(self, db: Session, key: str, when: datetime) -> MonthlySummary:
        row = self.get_or_create_summary(db, key)
        row.archived_at = when
        db.flush()
        return row

    # ─── Reads ───

    def load_summary(self, db: Session, key: str) -> Optional[MonthlySummary]:
        return db.execute(
            select(MonthlySummary).where(MonthlySummary.month_year == key)
        ).scalar_one_or_none()

    def load_events(self, db: Session, key: str) -> List[RequestEvent]:
        rows = db.execute(
            select(APIRequest)
            .where(APIRequest.month_year == key)
            .order_by(APIRequest.timestamp.asc(), APIRequest.id.asc())
        ).scalars().all()
        return [row_to_event(r) for r in rows]

    def _count_events(self, db: Session, key: str) -> int:
        return db.execute(
            select(func.count(APIRequest.id)).where(APIRequest.month_year == key)
        ).scalar() or 0

    async def metrics_for_period(self, key: str) -> Optional[PeriodSummary]:
        validate_period_key(key)

        def _read() -> Optional[PeriodSummary]:
            with self.database.session() as db:
                row = self.load_summary(db, key)
                return row_to_summary(row) if row is not None else None

        return await asyncio.to_thread(_read)

    async def events_for_period(self, key: str) -> List[RequestEvent]:
        validate_period_key(key)

        def _read() -> List[RequestEvent]:
            with self.database.session() as db:
                return self.load_events(db, key)

        return await asyncio.to_thread(_read)

    async def recent_events(self, limit: int = 50) -> List[RequestEvent]:
        def _read() -> List[RequestEvent]:
            with self.database.session() as db:
                rows = db.execute(
                    select(APIRequest).order_by(APIRequest.timestamp.desc()).limit(limit)
                ).scalars().all()
                return [row_to_event(r) for r in rows]

        return await asyncio.to_thread(_read)

    async def open_periods_before(self, key: str) -> List[str]:
        def _read() -> List[str]:
            with self.database.session() as db:
                return list(db.execute(
                    select(MonthlySummary.month_year)
                    .where(MonthlySummary.archived_at.is_(None), MonthlySummary.month_year < key)
                    .order_by(MonthlySummary.month_year.asc())
                ).scalars().all())

        return await asyncio.to_thread(_read)

    async def close(self) -> None:
        await asyncio.to_thread(self.database.dispose)
