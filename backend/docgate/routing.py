"""
DocGate Backend - Route Table
=============================

What:  The static map from path prefix to route group and route class.
Who:   Read by the rate limit middleware (classification) and by the app
       factory (mounting one router per group).

    Prefix                Group             Route class
    /api/upload           upload            upload
    /api/summarize        summarize         heavy
    /api/share            share             general
    /api/pdf              pdf               heavy
    /api/templates        templates         general
    /api/version-history  version-history   general
    /api/export           export            general
    /api/health, /        liveness          general (exempt from limiting)
    anything else         not-found         other   (not limited)
"""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Tuple


class RouteClass(str, Enum):
    GENERAL = "general"
    UPLOAD = "upload"
    HEAVY = "heavy"
    OTHER = "other"


@dataclass(frozen=True)
class RouteGroup:
    name: str
    prefix: str
    route_class: RouteClass

    def matches(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


API_PREFIX = "/api"
HEALTH_PATH = "/api/health"
ROOT_PATH = "/"

ROUTE_GROUPS: Tuple[RouteGroup, ...] = (
    RouteGroup("upload", "/api/upload", RouteClass.UPLOAD),
    RouteGroup("summarize", "/api/summarize", RouteClass.HEAVY),
    RouteGroup("share", "/api/share", RouteClass.GENERAL),
    RouteGroup("pdf", "/api/pdf", RouteClass.HEAVY),
    RouteGroup("templates", "/api/templates", RouteClass.GENERAL),
    RouteGroup("version-history", "/api/version-history", RouteClass.GENERAL),
    RouteGroup("export", "/api/export", RouteClass.GENERAL),
)

LIVENESS_PATHS: FrozenSet[str] = frozenset({HEALTH_PATH, ROOT_PATH})


def find_group(path: str):
    """Return the RouteGroup owning `path`, or None."""
    for group in ROUTE_GROUPS:
        if group.matches(path):
            return group
    return None


def classify(path: str) -> RouteClass:
    """Route class used for rate limiting `path`."""
    group = find_group(path)
    if group is not None:
        return group.route_class
    if path == ROOT_PATH or path == API_PREFIX or path.startswith(API_PREFIX + "/"):
        return RouteClass.GENERAL
    return RouteClass.OTHER
