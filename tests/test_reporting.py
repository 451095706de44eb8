"""Tests for monthly report insights."""

from conftest import make_event, utc
from molexa.services.events import PeriodSummary, zero_category_counts, zero_group_counts
from molexa.services.reporting import (
    build_report,
    most_popular_type,
    success_rate,
    top_error_codes,
)


def _summary(key="2025-02", total=56, **counts):
    by_type = zero_category_counts()
    by_type.update(counts)
    return PeriodSummary(
        period_key=key,
        total_count=total,
        counts_by_category=by_type,
        counts_by_endpoint_group=zero_group_counts(),
        average_duration_ms=42.5,
        created_at=utc(2025, 2, 1),
    )


def test_success_rate():
    events = [make_event(status_code=s) for s in (200, 200, 304, 404)]
    assert success_rate(events) == 75
    assert success_rate([]) == 100
    assert success_rate([make_event(status_code=None)]) == 100


def test_top_error_codes():
    events = [make_event(status_code=s) for s in (500, 404, 404, 200, 502, 404)]
    assert top_error_codes(events) == [(404, 3), (500, 1), (502, 1)]
    assert top_error_codes(events, limit=1) == [(404, 3)]


def test_most_popular_type():
    assert most_popular_type(_summary(**{"Autocomplete": 3, "Safety Data": 9})) == ("Safety Data", 9)
    assert most_popular_type(_summary()) is None


def test_build_report_uses_days_in_month():
    report = build_report(_summary(total=56, **{"Name Search": 56}), [])
    assert report.period_key == "2025-02"
    assert report.insights.daily_average == 2
    assert report.insights.average_response_time == 42.5
    assert report.insights.success_rate == 100
    assert report.summary.total_count == 56

    payload = report.model_dump(by_alias=True)
    assert payload["insights"]["mostPopularType"] == ("Name Search", 56)
