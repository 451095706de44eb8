"""
Monthly archival. Exports a closed period's events and summary to an
immutable JSON file, marks the summary archived and optionally prunes the
raw events of that period.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional

from sqlalchemy import delete

from molexa.models.analytics import APIRequest
from molexa.services.aggregator import Aggregator, ConnectedAggregator, row_to_summary
from molexa.services.errors import AnalyticsError, NotConfigured, PeriodNotClosed, PeriodNotFound
from molexa.services.events import RequestEvent, as_utc, period_key, utcnow, validate_period_key

logger = logging.getLogger("molexa.archiver")


@dataclass(frozen=True)
class ArchiveResult:
    period_key: str
    location: str
    total_requests: int
    archived_at: datetime
    pruned: int = 0


def archive_filename(key: str) -> str:
    return f"molexa-analytics-{key}.json"


def merge_events(previous: Optional[dict], events: Iterable[RequestEvent]) -> List[RequestEvent]:
    """Union of an earlier archive record's requests and live rows, by id, oldest first."""
    merged = {}
    for item in (previous or {}).get("requests", []):
        event = RequestEvent.from_dict(item)
        merged[event.id] = event
    for event in events:
        merged[event.id] = event
    return sorted(merged.values(), key=lambda e: (e.timestamp, e.id))


def _write_atomic(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class Archiver:
    """Only component that writes archive files or deletes raw events."""

    def __init__(self, aggregator: Aggregator, archive_dir: str, prune_after_archive: bool = False) -> None:
        self.aggregator = aggregator
        self.archive_dir = Path(archive_dir)
        self.prune_after_archive = prune_after_archive
        self._last_period: Optional[str] = None

    def path_for(self, key: str) -> Path:
        return self.archive_dir / archive_filename(key)

    async def archive(self, key: str, now: Optional[datetime] = None) -> ArchiveResult:
        validate_period_key(key)
        if key >= period_key(now):
            raise PeriodNotClosed(key)
        if not isinstance(self.aggregator, ConnectedAggregator):
            raise NotConfigured()
        logger.info("Starting archival for %s…", key)
        result = await asyncio.to_thread(self._archive_sync, self.aggregator, key)
        logger.info(
            "Archived %d requests for %s to %s (pruned %d)",
            result.total_requests, key, result.location, result.pruned,
        )
        return result

    def _read_record(self, path: Path) -> Optional[dict]:
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as fh:
            return json.load(fh)

    def _archive_sync(self, aggregator: ConnectedAggregator, key: str) -> ArchiveResult:
        database = aggregator.database
        target = self.path_for(key)

        # Held for snapshot → file → mark → prune so no persist interleaves
        with database.write_lock, database.session() as db:
            summary_row = aggregator.load_summary(db, key)
            events = aggregator.load_events(db, key)

            if summary_row is None and not events:
                raise PeriodNotFound(key)

            archived = summary_row is not None and summary_row.archived_at is not None

            if archived and not events:
                # Already archived and pruned: the existing file is authoritative
                if not target.exists():
                    raise PeriodNotFound(key)
                logger.info("%s already archived and pruned, keeping %s", key, target)
                return ArchiveResult(
                    period_key=key,
                    location=str(target),
                    total_requests=summary_row.total_requests or 0,
                    archived_at=as_utc(summary_row.archived_at),
                )

            if archived:
                # Late events land on top of what was exported before, never replace it
                events = merge_events(self._read_record(target), events)
                recorded = summary_row.total_requests or 0
                if len(events) > recorded:
                    logger.warning(
                        "Archived summary for %s behind its events (%d vs %d), reconciling",
                        key, recorded, len(events),
                    )
                    summary_row = aggregator.reconcile(db, key, events)
                elif len(events) < recorded:
                    logger.warning(
                        "Archive of %s holds %d of %d summarised requests, keeping summary",
                        key, len(events), recorded,
                    )
            elif summary_row is None or (summary_row.total_requests or 0) != len(events):
                logger.warning(
                    "Summary for %s disagrees with event log (%s vs %d), reconciling",
                    key, summary_row.total_requests if summary_row is not None else None, len(events),
                )
                summary_row = aggregator.reconcile(db, key, events)

            summary = row_to_summary(summary_row)
            archived_at = utcnow()
            record = {
                "periodKey": key,
                "summary": summary.snapshot(),
                "requests": [e.to_dict() for e in events],
                "totalRequests": len(events),
                "archivedAt": archived_at.isoformat(),
            }
            _write_atomic(target, record)
            aggregator.mark_archived(db, key, archived_at)

            pruned = 0
            if self.prune_after_archive:
                pruned = db.execute(
                    delete(APIRequest).where(APIRequest.month_year == key)
                ).rowcount or 0

        return ArchiveResult(
            period_key=key,
            location=str(target),
            total_requests=len(events),
            archived_at=archived_at,
            pruned=pruned,
        )

    async def archive_previous_period_if_rolled(self, now: Optional[datetime] = None) -> List[ArchiveResult]:
        """Best-effort catch-up; safe to run repeatedly."""
        current = period_key(now)
        last, self._last_period = self._last_period, current

        if not self.aggregator.connected:
            logger.debug("Skipping archival check (memory-only mode)")
            return []

        if last is None:
            try:
                candidates = await self.aggregator.open_periods_before(current)
            except Exception as exc:
                logger.error("Could not list open periods: %s", exc)
                return []
        elif last != current:
            candidates = [last]
        else:
            return []

        results = []
        for key in candidates:
            try:
                results.append(await self.archive(key, now))
            except PeriodNotFound:
                logger.info("Nothing to archive for %s", key)
            except AnalyticsError as exc:
                logger.error("Auto-archival of %s failed: %s", key, exc)
            except Exception as exc:
                logger.error("Auto-archival of %s failed: %s", key, exc, exc_info=True)
        return results
