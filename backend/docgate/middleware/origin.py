"""
DocGate Backend - Origin Policy
===============================

What:  Decides whether a request's Origin may talk to the API, and answers
       CORS preflights.
How:   OriginPolicy.evaluate() is a pure decision over the Allowed-Origin
       Set. OriginPolicyMiddleware raises OriginRejectedError for a rejected
       origin (the error translator turns it into a 403) and defers the CORS
       response headers for allowed ones, so they also appear on rejections
       produced by later stages.

Rules:
    no Origin header           → allowed, no CORS headers (curl, server-to-server)
    Origin in the allowed set  → allowed, echoed with credentials support
    any other Origin           → OriginRejectedError
"""

import logging
from enum import Enum
from typing import Dict, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from docgate.exceptions import OriginRejectedError
from docgate.middleware.request_context import defer_response_headers

logger = logging.getLogger(__name__)

PREFLIGHT_METHODS = "GET, HEAD, PUT, PATCH, POST, DELETE"
PREFLIGHT_MAX_AGE = "600"


class OriginDecision(str, Enum):
    ALLOW = "allow"
    ALLOW_WITH_CREDENTIALS = "allow_with_credentials"
    REJECT = "reject"


class OriginPolicy:
    def __init__(self, allowed_origins: Iterable[str]):
        self.allowed_origins = tuple(allowed_origins)
        self._lookup = frozenset(self.allowed_origins)

    def evaluate(self, origin: Optional[str]) -> OriginDecision:
        if not origin:
            return OriginDecision.ALLOW
        if origin in self._lookup:
            return OriginDecision.ALLOW_WITH_CREDENTIALS
        return OriginDecision.REJECT

    @staticmethod
    def cors_headers(origin: str) -> Dict[str, str]:
        return {
            "Access-Control-Allow-Origin": origin,
            "Access-Control-Allow-Credentials": "true",
            "Access-Control-Expose-Headers": "X-Request-ID, Retry-After, RateLimit-Limit, RateLimit-Remaining",
            "Vary": "Origin",
        }


def is_preflight(request: Request) -> bool:
    return request.method == "OPTIONS" and "access-control-request-method" in request.headers


class OriginPolicyMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, policy: OriginPolicy):
        super().__init__(app)
        self.policy = policy

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        origin = request.headers.get("origin")
        decision = self.policy.evaluate(origin)

        if decision is OriginDecision.REJECT:
            raise OriginRejectedError(origin)
        if decision is OriginDecision.ALLOW:
            return await call_next(request)

        defer_response_headers(request, self.policy.cors_headers(origin))

        # Preflights end here and never count against a rate limit
        if is_preflight(request):
            requested_headers = request.headers.get("access-control-request-headers")
            headers = {
                "Access-Control-Allow-Methods": PREFLIGHT_METHODS,
                "Access-Control-Max-Age": PREFLIGHT_MAX_AGE,
            }
            if requested_headers:
                headers["Access-Control-Allow-Headers"] = requested_headers
                headers["Vary"] = "Origin, Access-Control-Request-Headers"
            return Response(status_code=204, headers=headers)

        return await call_next(request)
