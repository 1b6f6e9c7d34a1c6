"""
Request handlers.

Each handler takes a HandlerContext and returns a Response. Handlers are
registered in HANDLERS by the route they serve.
"""

import logging
import os
from typing import Callable, Dict, Optional

from routing import Route
from wire import HEAD_ENCODING, Request, Response, make_response, make_stream_response

logger = logging.getLogger("tinyhttpd.handlers")


class HandlerContext:
    def __init__(self, request: Request, param: Optional[str], directory: Optional[str]):
        self.request = request
        self.param = param
        self.directory = directory

    def param_bytes(self) -> bytes:
        # path text came from Latin-1, re-encoding restores the raw bytes
        return (self.param or "").encode(HEAD_ENCODING)


class InvalidFileName(ValueError):
    """Raised when a file name would resolve outside the serving directory."""


HANDLERS: Dict[Route, Callable[[HandlerContext], Response]] = {}


def register(route: Route):
    def decorator(fn):
        HANDLERS[route] = fn
        return fn
    return decorator


def resolve_file(directory: str, name: str) -> str:
    """
    Resolve a file name against the serving directory.

    Args:
        directory: Serving directory
        name: File name taken from the request path

    Returns:
        Absolute path inside the serving directory

    Raises:
        InvalidFileName: If the name contains '..' or escapes the directory
    """
    if ".." in name:
        raise InvalidFileName(f"Parent directory reference in {name!r}")

    root = os.path.abspath(directory)
    file_path = os.path.normpath(os.path.join(root, name))

    if os.path.commonpath([file_path, root]) != root:
        raise InvalidFileName(f"{name!r} resolves outside {root}")

    return file_path


@register(Route.ROOT)
def handle_root(ctx: HandlerContext) -> Response:
    return make_response(200)


@register(Route.ECHO)
def handle_echo(ctx: HandlerContext) -> Response:
    return make_response(200, ctx.param_bytes(), "text/plain")


@register(Route.USER_AGENT)
def handle_user_agent(ctx: HandlerContext) -> Response:
    user_agent = ctx.request.get_header("User-Agent")
    if user_agent is None:
        logger.warning("User-Agent header missing")
        return make_response(400)
    return make_response(200, user_agent.encode(HEAD_ENCODING), "text/plain")


@register(Route.FILE_GET)
def handle_file_get(ctx: HandlerContext) -> Response:
    """
    Serve a file from the serving directory.

    The file is opened here and streamed by the writer, so it is never read
    into memory as a whole.
    """
    if not ctx.directory or not ctx.param:
        return make_response(404)

    try:
        file_path = resolve_file(ctx.directory, ctx.param)
    except InvalidFileName as e:
        logger.warning(f"Security violation - {e}")
        return make_response(400)

    if not os.path.isfile(file_path):
        logger.warning(f"File not found: {file_path}")
        return make_response(404)

    try:
        stream = open(file_path, "rb")
    except OSError as e:
        logger.warning(f"Cannot open {file_path}: {e}")
        return make_response(404)

    file_size = os.fstat(stream.fileno()).st_size
    logger.info(f"Serving file: {file_path} ({file_size} bytes)")
    return make_stream_response(200, stream, file_size, "application/octet-stream")


@register(Route.FILE_POST)
def handle_file_post(ctx: HandlerContext) -> Response:
    """
    Store the request body under the given name.

    Existing files are truncated. Concurrent writers to the same name are
    not serialized.
    """
    if not ctx.directory or not ctx.param:
        return make_response(404)

    try:
        file_path = resolve_file(ctx.directory, ctx.param)
    except InvalidFileName as e:
        logger.warning(f"Security violation - {e}")
        return make_response(400)

    body = ctx.request.body or b""
    try:
        with open(file_path, "wb") as f:
            f.write(body)
    except OSError as e:
        logger.error(f"Error saving upload {file_path}: {e}")
        return make_response(500)

    logger.info(f"Upload saved: {file_path} ({len(body)} bytes)")
    return make_response(201)


@register(Route.NOT_FOUND)
def handle_not_found(ctx: HandlerContext) -> Response:
    return make_response(404)
