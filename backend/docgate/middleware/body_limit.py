"""
DocGate Backend - Body Admission Guard
======================================

What:  Rejects request bodies above the configured ceiling before any route
       code can read them.
How:   Pure ASGI middleware (it has to see the raw receive channel):
       - a declared Content-Length above the ceiling is rejected at once;
       - a body without Content-Length (chunked) is read here, counting
         bytes, and rejected as soon as the count passes the ceiling;
         an admitted body is replayed to the application unchanged.
       The server enforces Content-Length framing, so a declared body is
       never longer than its header says.

Ceilings:
    multipart/form-data  max_multipart_size (file parts are policed one by
                         one by the upload guard; this only bounds the total)
    everything else      max_body_size (JSON, url-encoded forms, raw bodies)

A body of exactly the ceiling is admitted.
"""

import logging
from typing import Optional

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from docgate.exceptions import BodyTooLargeError

logger = logging.getLogger(__name__)


def is_multipart(content_type: Optional[str]) -> bool:
    return bool(content_type) and content_type.lower().startswith("multipart/")


class BodySizeLimitMiddleware:
    def __init__(self, app: ASGIApp, max_body_size: int, max_multipart_size: Optional[int] = None):
        self.app = app
        self.max_body_size = max_body_size
        self.max_multipart_size = max_multipart_size or max_body_size

    def limit_for(self, content_type: Optional[str]) -> int:
        return self.max_multipart_size if is_multipart(content_type) else self.max_body_size

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        limit = self.limit_for(headers.get("content-type"))

        declared = headers.get("content-length")
        if declared is not None:
            try:
                declared_size = int(declared)
            except ValueError:
                declared_size = None
            if declared_size is not None:
                if declared_size > limit:
                    raise BodyTooLargeError(limit, received=declared_size)
                await self.app(scope, receive, send)
                return

        if "transfer-encoding" not in headers:
            # No body at all
            await self.app(scope, receive, send)
            return

        body = bytearray()
        while True:
            message = await receive()
            if message["type"] != "http.request":
                # Client went away mid-body; let the app observe the disconnect
                break
            body.extend(message.get("body", b""))
            if len(body) > limit:
                raise BodyTooLargeError(limit, received=len(body))
            if not message.get("more_body", False):
                break

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": bytes(body), "more_body": False}
            return await receive()

        await self.app(scope, replay, send)
