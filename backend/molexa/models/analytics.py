"""
Analytics persistence models.

One row per tracked API request, plus one aggregate row per calendar month.
Raw client IPs and user agents are never stored, only salted fingerprints.
"""

from sqlalchemy import Column, Integer, String, Float, DateTime, JSON

from molexa.core.database import Base


class APIRequest(Base):
    """Append-only log of tracked requests."""
    __tablename__ = "api_requests"

    id = Column(String(40), primary_key=True)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)
    method = Column(String(10), nullable=False)
    endpoint = Column(String(2000), nullable=False)
    request_type = Column(String(40), nullable=False)
    endpoint_group = Column(String(40), nullable=False)
    response_status = Column(Integer, nullable=True)
    response_time_ms = Column(Float, nullable=True)
    ip_hash = Column(String(16), nullable=True)
    user_agent_hash = Column(String(16), nullable=True)
    month_year = Column(String(7), nullable=False, index=True)          # 'YYYY-MM'


class MonthlySummary(Base):
    """Running totals for one period. Never deleted, only marked archived."""
    __tablename__ = "monthly_summaries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    month_year = Column(String(7), nullable=False, unique=True, index=True)
    total_requests = Column(Integer, nullable=False, default=0)
    requests_by_type = Column(JSON, nullable=False, default=dict)
    requests_by_endpoint = Column(JSON, nullable=False, default=dict)
    average_response_time = Column(Float, nullable=False, default=0.0)
    timed_requests = Column(Integer, nullable=False, default=0)          # requests with a duration
    created_at = Column(DateTime(timezone=True), nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)       # null = open period
