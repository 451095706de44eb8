"""Typed failures surfaced by the analytics query / command surface."""


class AnalyticsError(Exception):
    """Base class for analytics failures."""


class NotConfigured(AnalyticsError):
    """No durable backend is available (memory-only mode)."""

    def __init__(self, message: str = "Analytics database is not configured") -> None:
        super().__init__(message)


class PeriodNotFound(AnalyticsError):
    """No data exists for the requested period."""

    def __init__(self, period_key: str) -> None:
        super().__init__(f"No analytics data for {period_key}")
        self.period_key = period_key


class InvalidPeriod(AnalyticsError, ValueError):
    """Period key is not in YYYY-MM form."""

    def __init__(self, period_key: str) -> None:
        super().__init__(f"Invalid period '{period_key}', expected YYYY-MM")
        self.period_key = period_key


class PeriodNotClosed(AnalyticsError):
    """The period is the current month or later and may still receive events."""

    def __init__(self, period_key: str) -> None:
        super().__init__(f"Period {period_key} is still open and cannot be archived")
        self.period_key = period_key
