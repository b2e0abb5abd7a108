"""
DocGate Backend - Route Groups
==============================

What:  One router per document route group (upload, summarize, share, pdf,
       templates, version-history, export). Each forwards every method on its
       prefix and any sub-path to the group's collaborator.
How:   The handler builds a CollaboratorCall from the request body:
         multipart/form-data             → fields + admitted files (UploadGuard)
         application/x-www-form-urlencoded → fields
         JSON                            → parsed value
         anything else                   → raw bytes
       awaits the collaborator, and renders its reply. Deeper routing below
       the prefix is the collaborator's business.

Failures are raised, never rendered here; the error translator owns the
response.
"""

import json
import logging
from typing import List

from fastapi import APIRouter
from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from docgate.middleware.request_context import request_id_var
from docgate.routing import ROUTE_GROUPS, RouteGroup
from docgate.schemas.responses import ErrorResponse
from docgate.services.collaborator_base import CollaboratorCall, CollaboratorReply
from docgate.services.upload_guard import UploadGuard, normalize_media_type

logger = logging.getLogger(__name__)

FORWARDED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]

ERROR_RESPONSES = {
    400: {"description": "Invalid file type, file too large or malformed payload", "model": ErrorResponse},
    403: {"description": "Origin not allowed", "model": ErrorResponse},
    413: {"description": "Request body too large", "model": ErrorResponse},
    429: {"description": "Rate limit exceeded", "model": ErrorResponse},
    500: {"description": "Collaborator failure", "model": ErrorResponse},
}


def _is_json(media_type: str) -> bool:
    return media_type == "application/json" or media_type.endswith("+json")


async def build_call(request: Request, group: RouteGroup, guard: UploadGuard) -> CollaboratorCall:
    """Turn an admitted request into the Request Context for `group`."""
    call = CollaboratorCall(
        group=group.name,
        method=request.method,
        subpath=request.path_params.get("subpath", ""),
        query=request.url.query,
        headers={key: value for key, value in request.headers.items()},
        request_id=request_id_var.get(""),
    )

    media_type = normalize_media_type(request.headers.get("content-type"))
    if media_type in ("multipart/form-data", "application/x-www-form-urlencoded"):
        form = await request.form()
        call.form, call.files = await guard.admit_form(form)
        return call

    body = await request.body()
    if not body:
        return call
    if _is_json(media_type):
        try:
            call.json = json.loads(body)
        except ValueError as e:
            raise RequestValidationError(
                [{"loc": ("body",), "msg": f"Malformed JSON: {e}", "type": "json_invalid"}]
            ) from e
    else:
        call.body = body
    return call


def render_reply(reply: CollaboratorReply) -> Response:
    if isinstance(reply.content, (bytes, bytearray)):
        return Response(
            content=bytes(reply.content),
            status_code=reply.status_code,
            media_type=reply.media_type or "application/octet-stream",
            headers=reply.headers,
        )
    if reply.content is None and reply.status_code in (204, 304):
        return Response(status_code=reply.status_code, headers=reply.headers)
    return JSONResponse(content=reply.content, status_code=reply.status_code, headers=reply.headers)


def build_group_router(group: RouteGroup) -> APIRouter:
    router = APIRouter(prefix=group.prefix, tags=[group.name])

    async def forward(request: Request) -> Response:
        collaborator = request.app.state.collaborators[group.name]
        call = await build_call(request, group, request.app.state.upload_guard)
        logger.debug(
            "[%s] Forwarding %s %s to %s (%d files)",
            call.request_id,
            call.method,
            call.subpath or "/",
            group.name,
            len(call.files),
        )
        reply = await collaborator.handle(call)
        return render_reply(reply)

    for path in ("", "/{subpath:path}"):
        router.add_api_route(
            path,
            forward,
            methods=FORWARDED_METHODS,
            name=f"{group.name}_root" if not path else f"{group.name}_subpath",
            responses=ERROR_RESPONSES,
            summary=f"Forward to the {group.name} service",
        )
    return router


def build_group_routers() -> List[APIRouter]:
    return [build_group_router(group) for group in ROUTE_GROUPS]
