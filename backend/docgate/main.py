"""
DocGate Backend - FastAPI Application Factory
=============================================

What:  Builds the gateway: the admission pipeline, the route groups and the
       collaborators behind them.
How:   create_app() returns a configured FastAPI instance. Every stateful
       component (settings, rate limiter, collaborators) can be passed in,
       which is how tests get isolated apps; otherwise they are built from
       settings.
Who:   uvicorn (`uvicorn docgate.main:app`) or `python -m docgate.main`.

Pipeline (outermost first; each stage may end the request):

    ┌──────────────────────────────────────────────────────────┐
    │ SecurityHeaders      every response, including errors    │
    │ RequestID            X-Request-ID in and out             │
    │ RequestLogging       one access line per request         │
    │ ErrorTranslation     exception → Error Envelope          │
    │ GZip                                                     │
    │ OriginPolicy         403 / CORS headers / preflight 204  │
    │ RateLimit            429 per route class                 │
    │ BodySizeLimit        413                                 │
    ├──────────────────────────────────────────────────────────┤
    │ Router: route groups (UploadGuard) → liveness → 404      │
    └──────────────────────────────────────────────────────────┘
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, List, Optional

from fastapi import FastAPI
from starlette.middleware import Middleware
from starlette.middleware.gzip import GZipMiddleware

from docgate import __version__
from docgate.config import Settings, settings as default_settings
from docgate.middleware.body_limit import BodySizeLimitMiddleware
from docgate.middleware.error_handler import (
    ErrorTranslationMiddleware,
    ErrorTranslator,
    register_exception_handlers,
)
from docgate.middleware.logging import RequestLoggingMiddleware
from docgate.middleware.origin import OriginPolicy, OriginPolicyMiddleware
from docgate.middleware.rate_limit import RateLimitMiddleware
from docgate.middleware.request_context import RequestIDMiddleware
from docgate.middleware.security_headers import SecurityHeadersMiddleware
from docgate.routes import fallback, health
from docgate.routes.groups import build_group_routers
from docgate.routing import ROUTE_GROUPS
from docgate.services.collaborator_base import Collaborator, UnconfiguredCollaborator
from docgate.services.http_collaborator import build_collaborators
from docgate.services.rate_limiter import RateLimiter
from docgate.services.upload_guard import UploadGuard

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(level: str) -> None:
    """Configure root logging once; stdout so container runtimes collect it."""
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    config: Settings = app.state.settings
    setup_logging(config.log_level)

    logger.info("=" * 60)
    logger.info("DocGate Backend %s starting up...", __version__)
    try:
        config.validate_required_for_production()
    except ValueError as e:
        # Keep serving: liveness must answer so operators can see the process
        logger.error("%s", e)

    logger.info("Server running on port %d", config.port)
    logger.info("Environment: %s", config.environment)
    logger.info("Frontend URL: %s", config.frontend_url)
    logger.info("Allowed origins: %s", ", ".join(config.allowed_origins) or "(none)")
    logger.info("=" * 60)

    yield

    logger.info("DocGate Backend shutting down...")
    closed = set()
    for collaborator in app.state.collaborators.values():
        if id(collaborator) in closed:
            continue
        closed.add(id(collaborator))
        await collaborator.aclose()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Pipeline
# ══════════════════════════════════════════════════════════════════════════

def build_pipeline(
    config: Settings,
    rate_limiter: RateLimiter,
    translator: ErrorTranslator,
) -> List[Middleware]:
    """
    The admission pipeline as an ordered list, outermost stage first.

    Starlette wraps the list in order, so list position is execution order
    on the way in and reverse order on the way out.
    """
    max_multipart_size = config.max_file_size * config.max_upload_files + config.max_body_size
    return [
        Middleware(SecurityHeadersMiddleware),
        Middleware(RequestIDMiddleware),
        Middleware(RequestLoggingMiddleware),
        Middleware(ErrorTranslationMiddleware, translator=translator),
        Middleware(GZipMiddleware, minimum_size=500),
        Middleware(OriginPolicyMiddleware, policy=OriginPolicy(config.allowed_origins)),
        Middleware(RateLimitMiddleware, limiter=rate_limiter),
        Middleware(
            BodySizeLimitMiddleware,
            max_body_size=config.max_body_size,
            max_multipart_size=max_multipart_size,
        ),
    ]


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    rate_limiter: Optional[RateLimiter] = None,
    collaborators: Optional[Dict[str, Collaborator]] = None,
) -> FastAPI:
    config = settings or default_settings
    limiter = rate_limiter or RateLimiter.from_settings(config)
    translator = ErrorTranslator(expose_details=config.is_development)

    app = FastAPI(
        title="DocGate API",
        description=(
            "Admission gateway for the document API: upload, summarize, share, "
            "PDF, templates, version history and export."
        ),
        version=__version__,
        docs_url="/docs" if config.is_development else None,
        redoc_url=None,
        openapi_url="/openapi.json" if config.is_development else None,
        middleware=build_pipeline(config, limiter, translator),
        lifespan=lifespan,
    )

    app.state.settings = config
    app.state.rate_limiter = limiter
    app.state.upload_guard = UploadGuard.from_settings(config)
    if collaborators is None:
        collaborators = build_collaborators(config)
    app.state.collaborators = {
        group.name: collaborators.get(group.name) or UnconfiguredCollaborator(group.name)
        for group in ROUTE_GROUPS
    }

    register_exception_handlers(app, translator)

    for router in build_group_routers():
        app.include_router(router)
    app.include_router(health.router)
    # Must stay last: it matches every path
    app.include_router(fallback.router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=default_settings.host, port=default_settings.port)
