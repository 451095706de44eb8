"""
In-memory event store: a bounded, newest-first buffer of recent request
events plus running counters.

record() is the only mutator. Everything else reads copies.
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple

from molexa.services.events import RequestEvent, as_utc, period_key, utcnow


@dataclass(frozen=True)
class EventStoreSummary:
    total_count: int
    recent_count: int
    top_categories: List[Tuple[str, int]]
    top_endpoint_groups: List[Tuple[str, int]]
    requests_this_hour: int
    uptime_minutes: int
    current_period: str
    counts_by_endpoint_group: Dict[str, int]
    counts_by_hour: Dict[int, int]
    start_time: datetime


class EventStore:
    DEFAULT_CAPACITY = 50

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        # appendleft + maxlen: newest first, oldest evicted from the right
        self._buffer: Deque[RequestEvent] = deque(maxlen=capacity)
        self._total = 0
        self._by_category: Counter = Counter()
        self._by_endpoint_group: Counter = Counter()
        self._by_hour: Counter = Counter()
        self._started = time.monotonic()
        self._started_at = utcnow()

    def record(self, event: RequestEvent) -> int:
        """Add one event. Returns the running total."""
        self._buffer.appendleft(event)
        self._total += 1
        self._by_category[event.category.value] += 1
        self._by_endpoint_group[event.endpoint_group.value] += 1
        self._by_hour[event.timestamp.hour] += 1
        return self._total

    def recent(self, limit: Optional[int] = None) -> List[RequestEvent]:
        if limit is None:
            limit = self.capacity
        if limit <= 0:
            return []
        events = list(self._buffer)
        return events[:limit]

    def __len__(self) -> int:
        return len(self._buffer)

    @property
    def total_count(self) -> int:
        return self._total

    def summary(self, top_k: int = 5, now: Optional[datetime] = None) -> EventStoreSummary:
        now = as_utc(now) or utcnow()
        return EventStoreSummary(
            total_count=self._total,
            recent_count=len(self._buffer),
            top_categories=self._by_category.most_common(top_k),
            top_endpoint_groups=self._by_endpoint_group.most_common(top_k),
            requests_this_hour=self._by_hour.get(now.hour, 0),
            uptime_minutes=int((time.monotonic() - self._started) // 60),
            current_period=period_key(now),
            counts_by_endpoint_group=dict(self._by_endpoint_group),
            counts_by_hour=dict(sorted(self._by_hour.items())),
            start_time=self._started_at,
        )
