"""
DocGate Backend - Error Translator
==================================

What:  The single place where failures become HTTP responses.
How:   ErrorTranslator.classify() maps an exception to (status, envelope,
       headers) by type; translate() logs it and builds the JSONResponse.
       Two entry points feed it:
       - ErrorTranslationMiddleware catches anything raised by the admission
         stages, the router or a collaborator;
       - FastAPI's HTTPException / RequestValidationError handlers, which
         fire inside the router, delegate here too.

Error Envelope:
    {"error": "<stable message>"}                       4xx
    {"error": "An unexpected error occurred. ...",      5xx
     "details": "<original message>"}                   (development only)

Mapping:
    FileTooLargeError / InvalidFileTypeError /
    InvalidUploadError                  → 400, their message
    OriginRejectedError                 → 403, "Not allowed by CORS"
    RouteNotFoundError, HTTP 404        → 404, "Endpoint not found"
    HTTP 405                            → 405, "Method not allowed"
    BodyTooLargeError                   → 413
    RateLimitedError                    → 429 + Retry-After
    RequestValidationError              → 400, "Invalid request payload"
    CollaboratorError, anything else    → 500, generic message
"""

import logging
from typing import Any, Dict, Optional, Tuple

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from docgate.exceptions import DocGateError, RateLimitedError, RouteNotFoundError
from docgate.middleware.request_context import apply_deferred_headers, request_id_var

logger = logging.getLogger(__name__)

GENERIC_ERROR = "An unexpected error occurred. Please try again."
NOT_FOUND_ERROR = RouteNotFoundError().message
METHOD_NOT_ALLOWED_ERROR = "Method not allowed"
INVALID_PAYLOAD_ERROR = "Invalid request payload"

Classified = Tuple[int, Dict[str, Any], Dict[str, str]]


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)


class ErrorTranslator:
    """
    Stateless translator. `expose_details` is true only in development, and
    is the only switch that lets an internal message reach a client.
    """

    def __init__(self, expose_details: bool = False):
        self.expose_details = expose_details

    def _server_error(self, details: Optional[str]) -> Classified:
        envelope: Dict[str, Any] = {"error": GENERIC_ERROR}
        if self.expose_details and details:
            envelope["details"] = details
        return 500, envelope, {}

    def classify(self, exc: BaseException) -> Classified:
        if isinstance(exc, RateLimitedError):
            return exc.status_code, {"error": exc.public_message}, {"Retry-After": str(exc.retry_after)}

        if isinstance(exc, DocGateError):
            if exc.status_code >= 500:
                return self._server_error(exc.message)
            return exc.status_code, {"error": exc.public_message}, {}

        if isinstance(exc, StarletteHTTPException):
            headers = dict(exc.headers or {})
            if exc.status_code == 404:
                return 404, {"error": NOT_FOUND_ERROR}, headers
            if exc.status_code == 405:
                return 405, {"error": METHOD_NOT_ALLOWED_ERROR}, headers
            if exc.status_code >= 500:
                return self._server_error(str(exc.detail))
            return exc.status_code, {"error": str(exc.detail)}, headers

        if isinstance(exc, RequestValidationError):
            envelope: Dict[str, Any] = {"error": INVALID_PAYLOAD_ERROR}
            if self.expose_details:
                envelope["details"] = _describe_validation_errors(exc)
            return 400, envelope, {}

        return self._server_error(str(exc) or type(exc).__name__)

    def translate(self, request: Request, exc: BaseException) -> JSONResponse:
        status, envelope, headers = self.classify(exc)
        rid = request_id_var.get("")
        context = exc.context if isinstance(exc, DocGateError) else {}

        if status >= 500:
            logger.error(
                "[%s] %s %s failed: %s | Context: %s",
                rid,
                request.method,
                request.url.path,
                exc,
                context,
                exc_info=exc,
            )
        else:
            logger.warning(
                "[%s] %s %s rejected with %d: %s | Context: %s",
                rid,
                request.method,
                request.url.path,
                status,
                envelope["error"],
                context,
            )

        return JSONResponse(status_code=status, content=envelope, headers=headers)


class ErrorTranslationMiddleware(BaseHTTPMiddleware):
    """
    Turns anything raised further down the pipeline into an Error Envelope,
    then applies the headers earlier stages deferred (CORS, rate-limit
    counters) to whichever response is going out.
    """

    def __init__(self, app, translator: ErrorTranslator):
        super().__init__(app)
        self.translator = translator

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            response = await call_next(request)
        except Exception as exc:
            response = self.translator.translate(request, exc)
        return apply_deferred_headers(request, response)


def register_exception_handlers(app: FastAPI, translator: ErrorTranslator) -> None:
    """
    Route FastAPI's own HTTP and validation errors through the translator so
    they share the envelope. Everything else propagates to
    ErrorTranslationMiddleware untouched.
    """

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        return translator.translate(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        return translator.translate(request, exc)
