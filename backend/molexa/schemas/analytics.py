"""Pydantic schemas for the analytics query / command surface (camelCase on the wire)."""

from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from molexa.services.events import PeriodSummary, RequestEvent


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Live summary ─────────────────────────────────────────────────────────

class AnalyticsSummary(CamelModel):
    total_requests: int
    recent_requests_count: int
    top_endpoints: List[Tuple[str, int]]
    top_types: List[Tuple[str, int]]
    requests_this_hour: int
    uptime_minutes: int
    current_period: str
    database_connected: bool
    requests_by_endpoint: Dict[str, int]
    requests_by_hour: Dict[int, int]
    start_time: datetime


class RecentRequest(CamelModel):
    id: str
    type: str
    category: str
    endpoint: str
    method: str
    timestamp: datetime
    response_status: Optional[int]
    response_time_ms: Optional[float]

    @classmethod
    def from_event(cls, event: RequestEvent) -> "RecentRequest":
        return cls(
            id=event.id,
            type=event.category.value,
            category=event.category.value,
            endpoint=event.endpoint,
            method=event.method,
            timestamp=event.timestamp,
            response_status=event.status_code,
            response_time_ms=event.duration_ms,
        )


# ── Monthly summaries ────────────────────────────────────────────────────

class PeriodSummaryOut(CamelModel):
    period_key: str
    total_count: int
    counts_by_category: Dict[str, int]
    counts_by_endpoint_group: Dict[str, int]
    average_duration_ms: float
    created_at: Optional[datetime]
    archived_at: Optional[datetime]

    @classmethod
    def from_summary(cls, summary: PeriodSummary) -> "PeriodSummaryOut":
        return cls(
            period_key=summary.period_key,
            total_count=summary.total_count,
            counts_by_category=summary.counts_by_category,
            counts_by_endpoint_group=summary.counts_by_endpoint_group,
            average_duration_ms=summary.average_duration_ms,
            created_at=summary.created_at,
            archived_at=summary.archived_at,
        )


class ReportInsights(CamelModel):
    most_popular_type: Optional[Tuple[str, int]]
    average_response_time: float
    success_rate: int                      # percentage of 2xx/3xx
    daily_average: int
    top_error_codes: List[Tuple[int, int]]


class MonthlyReport(CamelModel):
    period_key: str
    summary: PeriodSummaryOut
    insights: ReportInsights
    generated_at: datetime


# ── Archive command ──────────────────────────────────────────────────────

class ArchiveResponse(CamelModel):
    period_key: str
    location: str
    total_requests: int
    archived_at: datetime
    pruned: int = 0
