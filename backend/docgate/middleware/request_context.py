"""
DocGate Backend - Request Context Middleware
============================================

What:  Gives each request an ID and resolves who sent it.
How:   The ID comes from the client's X-Request-ID header when present,
       otherwise a short UUID. It is stored in a ContextVar (for log lines
       anywhere in the request) and on request.state, and echoed back in the
       X-Request-ID response header.
"""

import uuid
from contextvars import ContextVar
from typing import Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

request_id_var: ContextVar[str] = ContextVar("request_id", default="")


def client_ip(request: Request) -> str:
    """Source address of the connection; "unknown" when the transport has none."""
    return request.client.host if request.client else "unknown"


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def defer_response_headers(request: Request, headers: Dict[str, str]) -> None:
    """
    Ask for headers on the final response, whichever stage produces it.

    Used by stages whose headers must survive a later rejection: CORS
    headers on a 429, rate-limit counters on a collaborator failure.
    Applied by ErrorTranslationMiddleware.
    """
    pending = getattr(request.state, "deferred_headers", None)
    if pending is None:
        pending = {}
        request.state.deferred_headers = pending
    pending.update(headers)


def apply_deferred_headers(request: Request, response: Response) -> Response:
    for name, value in getattr(request.state, "deferred_headers", {}).items():
        existing = response.headers.get(name)
        if name.lower() == "vary" and existing and value.lower() not in existing.lower():
            response.headers[name] = f"{existing}, {value}"
        elif existing is None or name.lower() != "vary":
            response.headers[name] = value
    return response


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(REQUEST_ID_HEADER) or new_request_id()
        token = request_id_var.set(rid)
        request.state.request_id = rid
        try:
            response = await call_next(request)
        finally:
            request_id_var.reset(token)
        response.headers[REQUEST_ID_HEADER] = rid
        return response
