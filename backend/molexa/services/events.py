"""Request events and the small helpers used to build them."""

from __future__ import annotations

import hashlib
import re
import secrets
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from molexa.services.classifier import Category, EndpointGroup, categorize, endpoint_group
from molexa.services.errors import InvalidPeriod

PERIOD_RE = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def period_key(when: Optional[datetime] = None) -> str:
    when = as_utc(when) or utcnow()
    return f"{when.year:04d}-{when.month:02d}"


def validate_period_key(key: str) -> str:
    if not isinstance(key, str) or not PERIOD_RE.match(key):
        raise InvalidPeriod(str(key))
    return key


def previous_period(key: str) -> str:
    year, month = (int(p) for p in validate_period_key(key).split("-"))
    if month == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month - 1:02d}"


def fingerprint(value: Optional[str], salt: str) -> Optional[str]:
    """One-way salted hash, first 16 hex chars. None for a missing value."""
    if not value:
        return None
    digest = hashlib.sha256((salt + value).encode("utf-8")).hexdigest()
    return digest[:16]


def new_event_id() -> str:
    return f"{int(time.time() * 1000):x}-{secrets.token_hex(5)}"


@dataclass(frozen=True)
class RequestEvent:
    """One tracked API call. Immutable once created."""

    id: str
    timestamp: datetime
    method: str
    endpoint: str
    category: Category
    endpoint_group: EndpointGroup
    status_code: Optional[int]
    duration_ms: Optional[float]
    ip_fingerprint: Optional[str]
    agent_fingerprint: Optional[str]
    period_key: str

    @classmethod
    def create(
        cls,
        method: str,
        endpoint: str,
        client_ip: Optional[str],
        user_agent: Optional[str],
        status_code: Optional[int],
        duration_ms: Optional[float],
        salt: str,
        category: Optional[Category] = None,
        now: Optional[datetime] = None,
    ) -> "RequestEvent":
        ts = as_utc(now) or utcnow()
        return cls(
            id=new_event_id(),
            timestamp=ts,
            method=(method or "").upper(),
            endpoint=endpoint,
            category=category or categorize(endpoint),
            endpoint_group=endpoint_group(endpoint),
            status_code=status_code,
            duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
            ip_fingerprint=fingerprint(client_ip, salt),
            agent_fingerprint=fingerprint(user_agent, salt),
            period_key=period_key(ts),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        data["category"] = self.category.value
        data["endpoint_group"] = self.endpoint_group.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RequestEvent":
        """Inverse of ``to_dict``; used when re-reading archive files."""
        return cls(
            id=data["id"],
            timestamp=as_utc(datetime.fromisoformat(data["timestamp"])),
            method=data["method"],
            endpoint=data["endpoint"],
            category=Category(data["category"]),
            endpoint_group=EndpointGroup(data["endpoint_group"]),
            status_code=data.get("status_code"),
            duration_ms=data.get("duration_ms"),
            ip_fingerprint=data.get("ip_fingerprint"),
            agent_fingerprint=data.get("agent_fingerprint"),
            period_key=data["period_key"],
        )


@dataclass(frozen=True)
class PeriodSummary:
    """Durable aggregate for one period."""

    period_key: str
    total_count: int
    counts_by_category: Dict[str, int]
    counts_by_endpoint_group: Dict[str, int]
    average_duration_ms: float
    created_at: Optional[datetime]
    archived_at: Optional[datetime] = None

    def snapshot(self) -> Dict[str, Any]:
        """Archive form: excludes archived_at so repeated archives match."""
        return {
            "periodKey": self.period_key,
            "totalCount": self.total_count,
            "countsByCategory": dict(self.counts_by_category),
            "countsByEndpointGroup": dict(self.counts_by_endpoint_group),
            "averageDurationMs": self.average_duration_ms,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


def zero_category_counts() -> Dict[str, int]:
    return {c.value: 0 for c in Category}


def zero_group_counts() -> Dict[str, int]:
    return {g.value: 0 for g in EndpointGroup}
