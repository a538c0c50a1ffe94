"""Request context and access logging for the FormBank API"""

import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from formbank.infrastructure.observability.metrics import request_duration_histogram

logger = logging.getLogger("formbank.access")


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attach a request id and the caller identity to request.state.

    An upstream X-Request-ID is kept so one id follows a request through the
    front end, this service and the wallet rail.
    """

    async def dispatch(self, request: Request, call_next):
        request.state.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.user_id = request.headers.get("X-User-Id")

        response = await call_next(request)
        response.headers["X-Request-ID"] = request.state.request_id
        return response


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Request latency histogram plus one structured access log line per request"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        duration = time.time() - start_time

        # Route template keeps label cardinality bounded (/v1/checks/{check_id})
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        request_duration_histogram.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).observe(duration)

        if endpoint not in ("/health", "/metrics"):
            logger.log(
                logging.WARNING if response.status_code >= 500 else logging.INFO,
                "Request completed",
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "user_id": getattr(request.state, "user_id", None),
                    "method": request.method,
                    "endpoint": endpoint,
                    "status": response.status_code,
                    "duration_ms": round(duration * 1000, 2),
                },
            )
        return response
