"""
DocGate Backend - Request Logging Middleware
============================================

What:  One access-log line per request: method, path, status, duration,
       request ID and client address.
How:   Sits inside RequestIDMiddleware and outside the error translator, so
       the logged status is the one the client actually receives.

Log level follows the status: 5xx → ERROR, 4xx → WARNING, else INFO.
Request bodies and file contents are never logged.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from docgate.middleware.request_context import client_ip, request_id_var
from docgate.routing import LIVENESS_PATHS

logger = logging.getLogger("docgate.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        # Probes hit liveness endpoints every few seconds; only failures are interesting
        if request.url.path in LIVENESS_PATHS and status < 400:
            return response

        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        rid = request_id_var.get("")
        ip = client_ip(request)
        logger.log(
            log_level,
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            request.url.path,
            status,
            duration_ms,
            rid,
            ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": request.url.path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": ip,
            },
        )
        return response
