"""
Analytics middleware. Hands every completed request to the analytics service.
"""

import time
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("molexa.usage")


class AnalyticsMiddleware(BaseHTTPMiddleware):
    """Time the request, then record it. Tracking never affects the response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000

        service = getattr(request.app.state, "analytics", None)
        if service is None:
            return response

        try:
            endpoint = request.url.path
            if request.url.query:
                endpoint = f"{endpoint}?{request.url.query}"

            # track() classifies, records in memory and schedules persistence
            service.track(
                method=request.method,
                endpoint=endpoint,
                client_ip=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
                status_code=response.status_code,
                duration_ms=round(elapsed_ms, 2),
            )
        except Exception:
            logger.exception("Usage tracking failed for %s", request.url.path)

        return response
