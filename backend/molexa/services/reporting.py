"""Monthly report insights derived from a period summary and its raw events."""

import calendar
from collections import Counter
from typing import List, Optional, Sequence, Tuple

from molexa.schemas.analytics import MonthlyReport, PeriodSummaryOut, ReportInsights
from molexa.services.events import PeriodSummary, RequestEvent, utcnow


def success_rate(events: Sequence[RequestEvent]) -> int:
    """Share of 2xx/3xx responses, as a rounded percentage (100 when empty)."""
    statuses = [e.status_code for e in events if e.status_code is not None]
    if not statuses:
        return 100
    ok = sum(1 for s in statuses if 200 <= s < 400)
    return round(ok / len(statuses) * 100)


def top_error_codes(events: Sequence[RequestEvent], limit: int = 5) -> List[Tuple[int, int]]:
    codes = Counter(e.status_code for e in events if e.status_code is not None and e.status_code >= 400)
    return codes.most_common(limit)


def most_popular_type(summary: PeriodSummary) -> Optional[Tuple[str, int]]:
    ranked = sorted(
        ((k, v) for k, v in summary.counts_by_category.items() if v > 0),
        key=lambda kv: kv[1],
        reverse=True,
    )
    return ranked[0] if ranked else None


def build_report(summary: PeriodSummary, events: Sequence[RequestEvent]) -> MonthlyReport:
    year, month = (int(p) for p in summary.period_key.split("-"))
    days = calendar.monthrange(year, month)[1]
    return MonthlyReport(
        period_key=summary.period_key,
        summary=PeriodSummaryOut.from_summary(summary),
        insights=ReportInsights(
            most_popular_type=most_popular_type(summary),
            average_response_time=summary.average_duration_ms,
            success_rate=success_rate(events),
            daily_average=round(summary.total_count / days),
            top_error_codes=top_error_codes(events),
        ),
        generated_at=utcnow(),
    )
