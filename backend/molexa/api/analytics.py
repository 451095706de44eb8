"""
Analytics API
─────────────
Endpoints:
  GET  /analytics                        Live summary (in-memory view)
  GET  /analytics/recent                 Most recent tracked requests
  GET  /analytics/monthly/{period_key}   Durable monthly summary
  GET  /analytics/report/{period_key}    Monthly summary + insights
  GET  /analytics/stream                 Server-Sent Events snapshot stream
  POST /analytics/archive/{period_key}   Archive a month (admin token)
"""

import asyncio
import json
import logging
from typing import AsyncIterator, Awaitable, Callable, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse

from molexa.core.security import require_admin
from molexa.schemas.analytics import (
    AnalyticsSummary,
    ArchiveResponse,
    MonthlyReport,
    PeriodSummaryOut,
    RecentRequest,
)
from molexa.services.analytics import AnalyticsService
from molexa.services.errors import InvalidPeriod, NotConfigured, PeriodNotClosed, PeriodNotFound
from molexa.services.live_publisher import LivePublisher, QueueSubscriber

logger = logging.getLogger("molexa.api.analytics")
router = APIRouter(prefix="/analytics", tags=["analytics"])


def get_analytics(request: Request) -> AnalyticsService:
    return request.app.state.analytics


def _translate(exc: Exception) -> HTTPException:
    if isinstance(exc, InvalidPeriod):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, PeriodNotFound):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, PeriodNotClosed):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, NotConfigured):
        return HTTPException(status_code=503, detail=str(exc))
    logger.error("Analytics backend error: %s", exc)
    return HTTPException(status_code=502, detail="Analytics backend error")


# ── Live view ─────────────────────────────────────────────────────

@router.get("", response_model=AnalyticsSummary)
def get_summary(service: AnalyticsService = Depends(get_analytics)):
    """Live summary computed from in-memory state."""
    return service.summary()


@router.get("/recent", response_model=List[RecentRequest])
def get_recent(
    limit: int = Query(20, ge=1, le=100),
    service: AnalyticsService = Depends(get_analytics),
):
    """Most recent tracked requests, newest first."""
    return [RecentRequest.from_event(e) for e in service.recent(limit)]


# ── Durable view ──────────────────────────────────────────────────

@router.get("/monthly/{period_key}", response_model=PeriodSummaryOut)
async def get_monthly(period_key: str, service: AnalyticsService = Depends(get_analytics)):
    """Durable summary for one YYYY-MM period."""
    try:
        summary = await service.monthly_summary(period_key)
    except Exception as exc:
        raise _translate(exc)
    return PeriodSummaryOut.from_summary(summary)


@router.get("/report/{period_key}", response_model=MonthlyReport)
async def get_report(period_key: str, service: AnalyticsService = Depends(get_analytics)):
    """Monthly summary with success rate, error codes and daily average."""
    try:
        return await service.monthly_report(period_key)
    except Exception as exc:
        raise _translate(exc)


# ── Archive command ───────────────────────────────────────────────

@router.post(
    "/archive/{period_key}",
    response_model=ArchiveResponse,
    dependencies=[Depends(require_admin)],
)
async def archive_period(period_key: str, service: AnalyticsService = Depends(get_analytics)):
    """Export a month to an archive file and mark it archived."""
    try:
        result = await service.archive(period_key)
    except Exception as exc:
        raise _translate(exc)
    return ArchiveResponse(
        period_key=result.period_key,
        location=result.location,
        total_requests=result.total_requests,
        archived_at=result.archived_at,
        pruned=result.pruned,
    )


# ── Stream ────────────────────────────────────────────────────────

def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload)}\n\n"


async def event_stream(
    publisher: LivePublisher,
    subscriber: QueueSubscriber,
    is_disconnected: Callable[[], Awaitable[bool]],
    keepalive: float,
) -> AsyncIterator[str]:
    """SSE body for one reader. Ends when the client leaves or the publisher drops it."""
    await publisher.subscribe(subscriber)
    try:
        while True:
            # A dropped reader still gets what was queued before the drop
            if subscriber.closed and subscriber.queue.empty():
                break
            if await is_disconnected():
                break
            try:
                payload = await asyncio.wait_for(subscriber.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                if subscriber.closed:
                    break
                yield ": keepalive\n\n"
                continue
            yield _sse(payload)
    finally:
        await publisher.unsubscribe(subscriber.subscriber_id)


@router.get("/stream")
async def stream(request: Request, service: AnalyticsService = Depends(get_analytics)):
    """Server-Sent Events: initial snapshot, then one per tracked request."""
    publisher = service.publisher
    keepalive = max(1.0, min(publisher.interval_seconds, 30.0))
    return StreamingResponse(
        event_stream(publisher, QueueSubscriber(), request.is_disconnected, keepalive),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )
