"""
Analytics service, the explicitly owned entry point of the pipeline.

    track() → classify → EventStore.record()      (inline, no I/O)
            → Aggregator.persist()                (background task)
            → LivePublisher.notify()              (background task)

One instance is created per application and stored on ``app.state``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from molexa.core.config import Settings
from molexa.core.database import Database
from molexa.schemas.analytics import AnalyticsSummary, MonthlyReport, RecentRequest
from molexa.services.aggregator import (
    Aggregator,
    ConnectedAggregator,
    MemoryOnlyAggregator,
    PersistResult,
)
from molexa.services.archiver import ArchiveResult, Archiver
from molexa.services.classifier import classify
from molexa.services.errors import PeriodNotFound
from molexa.services.event_store import EventStore
from molexa.services.events import PeriodSummary, RequestEvent, validate_period_key
from molexa.services.live_publisher import LivePublisher
from molexa.services.reporting import build_report

logger = logging.getLogger("molexa.analytics")

STREAM_RECENT_LIMIT = 10


def build_aggregator(settings: Settings) -> Aggregator:
    """Pick the aggregator variant once, from configuration."""
    if not settings.database_configured:
        return MemoryOnlyAggregator("no database configured")
    try:
        return ConnectedAggregator(Database(settings.database_url))
    except Exception as exc:
        logger.error("Could not create database engine: %s", exc)
        return MemoryOnlyAggregator(f"invalid database configuration: {exc}")


class AnalyticsService:
    def __init__(self, settings: Settings, aggregator: Optional[Aggregator] = None) -> None:
        self.settings = settings
        self.store = EventStore(settings.recent_capacity)
        self.aggregator: Aggregator = aggregator or build_aggregator(settings)
        self.archiver = Archiver(self.aggregator, settings.archive_dir, settings.prune_after_archive)
        self.publisher = LivePublisher(self.snapshot, settings.stream_interval_seconds)
        self._pending: Set[asyncio.Task] = set()
        self._initialized = False

    # ─── Lifecycle ───

    async def initialize(self) -> None:
        if self._initialized:
            return
        try:
            await self.aggregator.initialize(self.store, self.settings.hydrate_limit)
        except Exception as exc:
            logger.error("Analytics database unavailable, falling back to memory-only mode: %s", exc)
            await self._safe_close(self.aggregator)
            self.aggregator = MemoryOnlyAggregator(f"database unavailable: {exc}")
            await self.aggregator.initialize(self.store, self.settings.hydrate_limit)
        self.archiver.aggregator = self.aggregator
        self._initialized = True

    async def shutdown(self) -> None:
        await self.publisher.stop()
        await self.drain()
        await self._safe_close(self.aggregator)

    @staticmethod
    async def _safe_close(aggregator: Aggregator) -> None:
        try:
            await aggregator.close()
        except Exception as exc:
            logger.warning("Error closing aggregator: %s", exc)

    @property
    def database_connected(self) -> bool:
        return self.aggregator.connected

    # ─── Inbound ───

    def track(
        self,
        method: str,
        endpoint: str,
        client_ip: Optional[str],
        user_agent: Optional[str],
        status_code: Optional[int],
        duration_ms: Optional[float],
        now: Optional[datetime] = None,
    ) -> Optional[RequestEvent]:
        """Record one completed request. Never raises, never awaits I/O.

        Returns the event, or None when the request is not trackable.
        """
        try:
            result = classify(method, endpoint)
            if not result.trackable:
                return None

            event = RequestEvent.create(
                method=method,
                endpoint=endpoint,
                client_ip=client_ip,
                user_agent=user_agent,
                status_code=status_code,
                duration_ms=duration_ms,
                salt=self.settings.hash_salt,
                category=result.category,
                now=now,
            )
            total = self.store.record(event)
            logger.info(
                "[%d] %s %s - %s (%sms)",
                total, event.method, event.endpoint, event.category.value, event.duration_ms,
            )
        except Exception:
            logger.exception("Analytics tracking failed for %s %s", method, endpoint)
            return None

        self._schedule_persist(event)
        self.publisher.notify("new_request")
        return event

    def _schedule_persist(self, event: RequestEvent) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, event %s kept in memory only", event.id)
            return
        task = loop.create_task(self.persist(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def persist(self, event: RequestEvent) -> PersistResult:
        try:
            result = await self.aggregator.persist(event)
        except Exception as exc:
            result = PersistResult(event_id=event.id, ok=False, error=str(exc))

        if result.skipped:
            logger.debug("Event %s not persisted: %s", event.id, result.error)
        elif not result.ok:
            logger.warning("Event %s not persisted: %s", event.id, result.error)
        return result

    async def drain(self) -> None:
        """Wait for outstanding background writes."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # ─── Queries ───

    def summary(self) -> AnalyticsSummary:
        s = self.store.summary()
        return AnalyticsSummary(
            total_requests=s.total_count,
            recent_requests_count=s.recent_count,
            top_endpoints=s.top_endpoint_groups,
            top_types=s.top_categories,
            requests_this_hour=s.requests_this_hour,
            uptime_minutes=s.uptime_minutes,
            current_period=s.current_period,
            database_connected=self.database_connected,
            requests_by_endpoint=s.counts_by_endpoint_group,
            requests_by_hour=s.counts_by_hour,
            start_time=s.start_time,
        )

    def recent(self, limit: int = 20) -> List[RequestEvent]:
        return self.store.recent(limit)

    def snapshot(self) -> Dict[str, Any]:
        """Summary + recent tail, JSON-ready, for live subscribers."""
        return {
            "analytics": self.summary().model_dump(by_alias=True, mode="json"),
            "recentRequests": [
                RecentRequest.from_event(e).model_dump(by_alias=True, mode="json")
                for e in self.store.recent(STREAM_RECENT_LIMIT)
            ],
        }

    async def monthly_summary(self, period_key: str) -> PeriodSummary:
        validate_period_key(period_key)
        summary = await self.aggregator.metrics_for_period(period_key)
        if summary is None:
            raise PeriodNotFound(period_key)
        return summary

    async def monthly_report(self, period_key: str) -> MonthlyReport:
        summary = await self.monthly_summary(period_key)
        events = await self.aggregator.events_for_period(period_key)
        return build_report(summary, events)

    # ─── Archival ───

    async def archive(self, period_key: str) -> ArchiveResult:
        # Let in-flight writes for this period land before the snapshot
        await self.drain()
        return await self.archiver.archive(period_key)

    async def archive_previous_period_if_rolled(self, now: Optional[datetime] = None) -> List[ArchiveResult]:
        return await self.archiver.archive_previous_period_if_rolled(now)

    def health(self) -> Dict[str, Any]:
        return {
            "mode": self.aggregator.mode,
            "database_connected": self.database_connected,
            "buffer": {"size": len(self.store), "capacity": self.store.capacity},
            "pending_writes": len(self._pending),
            "live": self.publisher.stats(),
        }
