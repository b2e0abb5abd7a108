"""
DocGate Backend - Rate Limiting Middleware
==========================================

What:  Admits or rejects each request against the budget of its route class.
How:   Classifies the path (docgate.routing.classify), asks the injected
       RateLimiter to count the hit for the client IP, and raises
       RateLimitedError when the window is spent. Nothing downstream runs
       for a rejected request.

Route classes:
    upload   /api/upload
    heavy    /api/summarize, /api/pdf
    general  every other /api path
    other    non-API paths, never limited

Liveness endpoints (/ and /api/health) are exempt so probes keep answering
while a client is throttled.

Headers (on every limited response, success or rejection):
    RateLimit-Limit, RateLimit-Remaining, RateLimit-Reset
    Retry-After (rejections only, set by the error translator)
"""

import logging
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from docgate.exceptions import RateLimitedError
from docgate.middleware.request_context import client_ip, defer_response_headers
from docgate.routing import LIVENESS_PATHS, classify
from docgate.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: RateLimiter, exempt_paths: Iterable[str] = LIVENESS_PATHS):
        super().__init__(app)
        self.limiter = limiter
        self.exempt_paths = frozenset(exempt_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.exempt_paths:
            return await call_next(request)

        route_class = classify(path)
        ip = client_ip(request)
        decision = self.limiter.admit(route_class, ip)

        if decision.limit is not None:
            defer_response_headers(
                request,
                {
                    "RateLimit-Limit": str(decision.limit),
                    "RateLimit-Remaining": str(decision.remaining),
                    "RateLimit-Reset": str(decision.retry_after),
                },
            )

        if not decision.allowed:
            logger.warning(
                "Rate limit exceeded for IP %s on %s (%s): %d requests per window",
                ip,
                path,
                route_class.value,
                decision.limit,
            )
            raise RateLimitedError(route_class.value, decision.retry_after, decision.limit)

        return await call_next(request)
