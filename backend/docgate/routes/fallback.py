"""
DocGate Backend - Not-Found Responder
=====================================

What:  Catch-all route answering every unmatched method+path with
       404 {"error": "Endpoint not found"}.
How:   Must be the last router included by the app factory; the router
       tries routes in registration order, so anything registered before it
       always wins.
"""

from fastapi import APIRouter
from starlette.requests import Request

from docgate.exceptions import RouteNotFoundError

router = APIRouter(include_in_schema=False)

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


@router.api_route("/{path:path}", methods=ALL_METHODS)
async def endpoint_not_found(request: Request):
    raise RouteNotFoundError(request.method, request.url.path)
