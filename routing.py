"""
Maps a request's method and path to the handler that serves it.
"""

from enum import Enum
from typing import NamedTuple, Optional


class Route(Enum):
    ROOT = "root"
    ECHO = "echo"
    USER_AGENT = "user-agent"
    FILE_GET = "file-get"
    FILE_POST = "file-post"
    NOT_FOUND = "not-found"


class RouteMatch(NamedTuple):
    route: Route
    param: Optional[str] = None


# Exact paths are checked before prefixes; the first match wins.
EXACT_ROUTES = {
    ("GET", "/"): Route.ROOT,
    ("GET", "/user-agent"): Route.USER_AGENT,
}

PREFIX_ROUTES = [
    ("GET", "/echo/", Route.ECHO),
    ("GET", "/files/", Route.FILE_GET),
    ("POST", "/files/", Route.FILE_POST),
]


def route(method: str, path: str) -> RouteMatch:
    """
    Resolve a request target.

    Matching is case-sensitive. For prefix routes everything after the
    prefix, further slashes included, becomes the route parameter.

    Args:
        method: Request method token
        path: Raw request path

    Returns:
        The matching route and its extracted parameter
    """
    exact = EXACT_ROUTES.get((method, path))
    if exact is not None:
        return RouteMatch(exact)

    for route_method, prefix, prefix_route in PREFIX_ROUTES:
        if method == route_method and path.startswith(prefix):
            return RouteMatch(prefix_route, path[len(prefix):])

    return RouteMatch(Route.NOT_FOUND)
