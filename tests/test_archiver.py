"""Tests for monthly archival."""

import json

import pytest

from conftest import make_event, utc
from molexa.services.aggregator import MemoryOnlyAggregator
from molexa.services.archiver import Archiver, archive_filename
from molexa.services.errors import InvalidPeriod, NotConfigured, PeriodNotClosed, PeriodNotFound
from molexa.services.events import period_key


@pytest.fixture
def archive_dir(tmp_path):
    return tmp_path / "archives"


async def _seed(aggregator, year, month, count, status_code=200):
    events = []
    for i in range(count):
        event = make_event(
            f"/api/autocomplete/q{i}",
            status_code=status_code,
            when=utc(year, month, 1 + i % 28),
        )
        await aggregator.persist(event)
        events.append(event)
    return events


def _read(path):
    with open(path, encoding="utf-8") as fh:
        return json.load(fh)


@pytest.mark.asyncio
async def test_archive_writes_record_and_marks_summary(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 3)
    archiver = Archiver(aggregator, str(archive_dir))

    result = await archiver.archive("2025-01")
    assert result.total_requests == 3
    assert result.location.endswith(archive_filename("2025-01"))
    assert result.pruned == 0

    record = _read(result.location)
    assert record["periodKey"] == "2025-01"
    assert record["totalRequests"] == 3
    assert len(record["requests"]) == 3
    assert record["summary"]["totalCount"] == 3
    assert "archivedAt" not in record["summary"]

    summary = await aggregator.metrics_for_period("2025-01")
    assert summary.archived_at is not None
    # Raw events are kept unless pruning is enabled
    assert len(await aggregator.events_for_period("2025-01")) == 3


@pytest.mark.asyncio
async def test_archive_is_idempotent(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 4)
    archiver = Archiver(aggregator, str(archive_dir))

    first = _read((await archiver.archive("2025-01")).location)
    second = _read((await archiver.archive("2025-01")).location)
    assert first["summary"] == second["summary"]
    assert first["requests"] == second["requests"]
    assert list(archive_dir.iterdir()) == [archiver.path_for("2025-01")]


@pytest.mark.asyncio
async def test_archive_reconciles_drifted_summary(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 2)
    with aggregator.database.session() as db:
        aggregator.load_summary(db, "2025-01").total_requests = 7

    result = await Archiver(aggregator, str(archive_dir)).archive("2025-01")
    record = _read(result.location)
    assert record["summary"]["totalCount"] == 2
    assert (await aggregator.metrics_for_period("2025-01")).total_count == 2


@pytest.mark.asyncio
async def test_prune_deletes_only_target_period(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 3)
    await _seed(aggregator, 2025, 2, 2)
    archiver = Archiver(aggregator, str(archive_dir), prune_after_archive=True)

    result = await archiver.archive("2025-01")
    assert result.pruned == 3
    assert await aggregator.events_for_period("2025-01") == []
    assert len(await aggregator.events_for_period("2025-02")) == 2
    assert (await aggregator.metrics_for_period("2025-02")).total_count == 2
    # Summary survives the prune
    assert (await aggregator.metrics_for_period("2025-01")).total_count == 3


@pytest.mark.asyncio
async def test_rearchive_after_prune_keeps_existing_file(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 3)
    archiver = Archiver(aggregator, str(archive_dir), prune_after_archive=True)
    first = await archiver.archive("2025-01")
    before = _read(first.location)

    second = await archiver.archive("2025-01")
    assert second.total_requests == 3
    assert second.pruned == 0
    assert _read(second.location) == before


@pytest.mark.asyncio
async def test_rearchive_after_prune_without_file(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 1)
    archiver = Archiver(aggregator, str(archive_dir), prune_after_archive=True)
    result = await archiver.archive("2025-01")
    archiver.path_for("2025-01").unlink()
    assert result.total_requests == 1

    with pytest.raises(PeriodNotFound):
        await archiver.archive("2025-01")


@pytest.mark.asyncio
async def test_archive_unknown_period(aggregator, archive_dir):
    with pytest.raises(PeriodNotFound):
        await Archiver(aggregator, str(archive_dir)).archive("1999-01")
    assert not archive_dir.exists() or not any(archive_dir.iterdir())


@pytest.mark.asyncio
async def test_archive_rejects_bad_key(aggregator, archive_dir):
    with pytest.raises(InvalidPeriod):
        await Archiver(aggregator, str(archive_dir)).archive("2025-13")


@pytest.mark.asyncio
async def test_archive_requires_database(archive_dir):
    archiver = Archiver(MemoryOnlyAggregator(), str(archive_dir))
    with pytest.raises(NotConfigured):
        await archiver.archive("2025-01")
    assert await archiver.archive_previous_period_if_rolled(utc(2025, 2, 1)) == []


@pytest.mark.asyncio
async def test_rollover_catches_up_then_tracks_month_changes(aggregator, archive_dir):
    await _seed(aggregator, 2024, 12, 1)
    await _seed(aggregator, 2025, 1, 2)
    await _seed(aggregator, 2025, 2, 2)
    archiver = Archiver(aggregator, str(archive_dir))

    # First check archives every open period before the current one
    results = await archiver.archive_previous_period_if_rolled(utc(2025, 2, 1, hour=0))
    assert [r.period_key for r in results] == ["2024-12", "2025-01"]

    # Same month again: nothing to do
    assert await archiver.archive_previous_period_if_rolled(utc(2025, 2, 20)) == []

    # Month changed: the previous month gets archived
    results = await archiver.archive_previous_period_if_rolled(utc(2025, 3, 1))
    assert [r.period_key for r in results] == ["2025-02"]
    assert (await aggregator.metrics_for_period("2025-02")).archived_at is not None


@pytest.mark.asyncio
async def test_rollover_with_empty_previous_month_does_not_raise(aggregator, archive_dir):
    archiver = Archiver(aggregator, str(archive_dir))
    assert await archiver.archive_previous_period_if_rolled(utc(2025, 2, 1)) == []
    assert await archiver.archive_previous_period_if_rolled(utc(2025, 3, 1)) == []


@pytest.mark.asyncio
async def test_service_archive_drains_pending_writes(db_service):
    when = utc(2025, 1, 9)
    for _ in range(5):
        db_service.track("GET", "/api/autocomplete/asp", "1.1.1.1", "ua", 200, 3.0, now=when)

    result = await db_service.archive("2025-01")
    assert result.total_requests == 5


@pytest.mark.asyncio
async def test_late_event_after_prune_is_merged_into_archive(aggregator, archive_dir):
    original = await _seed(aggregator, 2025, 1, 3)
    archiver = Archiver(aggregator, str(archive_dir), prune_after_archive=True)
    await archiver.archive("2025-01")

    late = make_event("/api/pugview/compound/2244/safety", when=utc(2025, 1, 31, hour=23))
    await aggregator.persist(late)

    result = await archiver.archive("2025-01")
    assert result.total_requests == 4
    assert result.pruned == 1

    record = _read(result.location)
    assert record["totalRequests"] == 4
    assert [r["id"] for r in record["requests"]] == [e.id for e in original] + [late.id]
    assert record["summary"]["totalCount"] == 4

    summary = await aggregator.metrics_for_period("2025-01")
    assert summary.total_count == 4
    assert summary.counts_by_category["Safety Data"] == 1


@pytest.mark.asyncio
async def test_late_event_without_prune_extends_archive(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 2)
    archiver = Archiver(aggregator, str(archive_dir))
    await archiver.archive("2025-01")

    await aggregator.persist(make_event(when=utc(2025, 1, 30)))
    record = _read((await archiver.archive("2025-01")).location)
    assert record["totalRequests"] == 3
    assert (await aggregator.metrics_for_period("2025-01")).total_count == 3


@pytest.mark.asyncio
async def test_archived_summary_is_never_reduced(aggregator, archive_dir):
    await _seed(aggregator, 2025, 1, 3)
    archiver = Archiver(aggregator, str(archive_dir), prune_after_archive=True)
    await archiver.archive("2025-01")

    # Archive file lost, one late row arrives
    archiver.path_for("2025-01").unlink()
    await aggregator.persist(make_event(when=utc(2025, 1, 30)))

    result = await archiver.archive("2025-01")
    assert result.total_requests == 1
    assert (await aggregator.metrics_for_period("2025-01")).total_count == 4


@pytest.mark.asyncio
@pytest.mark.parametrize("key, now", [
    ("2025-03", utc(2025, 3, 10)),
    ("2025-04", utc(2025, 3, 10)),
    ("2999-01", None),
])
async def test_open_or_future_period_is_refused(aggregator, archive_dir, key, now):
    await _seed(aggregator, 2025, 3, 1)
    archiver = Archiver(aggregator, str(archive_dir))
    with pytest.raises(PeriodNotClosed):
        await archiver.archive(key, now=now)
    assert (await aggregator.metrics_for_period("2025-03")).archived_at is None


@pytest.mark.asyncio
async def test_current_period_is_refused(aggregator, archive_dir):
    await aggregator.persist(make_event())
    with pytest.raises(PeriodNotClosed):
        await Archiver(aggregator, str(archive_dir)).archive(period_key())
