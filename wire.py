"""
HTTP/1.1 wire codec.

Turns the bytes read from a client socket into a Request and turns a
Response into the bytes written back. Parsing is done by hand: the request
line and header block are split on CRLF, spaces and tabs, the body is kept
as raw bytes.
"""

import logging
import re
import socket
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import BinaryIO, Dict, Optional

logger = logging.getLogger("tinyhttpd.wire")

HTTP_VERSION = "HTTP/1.1"
HEAD_TERMINATOR = b"\r\n\r\n"
RECV_BUFFER_SIZE = 4096
MAX_HEAD_BYTES = 8192
CHUNK_SIZE = 64 * 1024
BODY_METHODS = ("POST", "PUT", "PATCH")

# Latin-1 maps every byte to one code point, so text taken from the head
# encodes back to the exact bytes the client sent.
HEAD_ENCODING = "iso-8859-1"

# Tokens are separated by SP and HTAB only; 0x85 and 0xA0 are ordinary bytes.
HEAD_WHITESPACE = " \t"
REQUEST_LINE_SEPARATOR = re.compile(r"[ \t]+")


class MalformedRequestError(ValueError):
    """Raised when the request line or header block cannot be parsed."""


@dataclass
class Request:
    method: str
    path: str
    version: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    def get_header(self, key: str) -> Optional[str]:
        return self.headers.get(key)


@dataclass
class Response:
    """
    Status, headers and body of one HTTP response.

    The body is either held in memory (``body``) or read from an open binary
    file (``stream``) whose size is already known and recorded in the
    Content-Length header.
    """
    status: int
    reason: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    stream: Optional[BinaryIO] = None

    def set_header(self, key: str, value: str) -> None:
        self.headers[key] = value

    def get_header(self, key: str) -> Optional[str]:
        return self.headers.get(key)

    def close(self) -> None:
        if self.stream is not None:
            self.stream.close()
            self.stream = None


def reason_phrase(status: int) -> str:
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return "Unknown"


def make_response(status: int, body: bytes = b"", content_type: Optional[str] = None) -> Response:
    """
    Build an in-memory response.

    Args:
        status: HTTP status code
        body: Response body bytes
        content_type: Value of the Content-Type header, if any

    Returns:
        Response with Content-Length set whenever a body or content type is given
    """
    response = Response(status=status, reason=reason_phrase(status))
    if content_type is not None:
        response.set_header("Content-Type", content_type)
    if body or content_type is not None:
        response.set_header("Content-Length", str(len(body)))
    response.body = body
    return response


def make_stream_response(status: int, stream: BinaryIO, length: int, content_type: str) -> Response:
    response = Response(status=status, reason=reason_phrase(status), stream=stream)
    response.set_header("Content-Type", content_type)
    response.set_header("Content-Length", str(length))
    return response


def parse_head(head: bytes) -> Request:
    """
    Parse a request line and header block.

    Header lines without a colon are skipped with a warning rather than
    rejecting the whole request.

    Args:
        head: Raw bytes up to, but not including, the blank line

    Returns:
        Request with an empty body

    Raises:
        MalformedRequestError: If the request line is not exactly three tokens
    """
    lines = head.decode(HEAD_ENCODING).split("\r\n")

    request_line = REQUEST_LINE_SEPARATOR.split(lines[0].strip(HEAD_WHITESPACE))
    if len(request_line) != 3:
        raise MalformedRequestError(f"Malformed request line: {lines[0]!r}")

    method, path, version = request_line

    headers = {}
    for line in lines[1:]:
        if line == "":
            break

        if ":" not in line:
            logger.warning(f"Skipping header line without colon: {line!r}")
            continue

        key, value = line.split(":", 1)
        key = key.strip(HEAD_WHITESPACE)
        if not key:
            logger.warning(f"Skipping header line with empty name: {line!r}")
            continue
        headers[key] = value.strip(HEAD_WHITESPACE)

    return Request(method=method, path=path, version=version, headers=headers)


def content_length(request: Request) -> Optional[int]:
    value = request.get_header("Content-Length")
    if value is None:
        return None
    if not (value.isascii() and value.isdigit()):
        raise MalformedRequestError(f"Invalid Content-Length: {value!r}")
    return int(value)


def read_request(conn: socket.socket) -> Optional[Request]:
    """
    Read one request from a connected socket.

    Blocks until the header block and any announced body have arrived.

    Args:
        conn: Client socket connection

    Returns:
        Parsed request, or None if the peer closed the connection first

    Raises:
        MalformedRequestError: If the request cannot be parsed
        OSError: On socket failures
    """
    buffer = b""
    while HEAD_TERMINATOR not in buffer:
        if len(buffer) >= MAX_HEAD_BYTES + len(HEAD_TERMINATOR):
            raise MalformedRequestError(f"Header block exceeds {MAX_HEAD_BYTES} bytes")
        chunk = conn.recv(RECV_BUFFER_SIZE)
        if not chunk:
            return None
        buffer += chunk

    head, rest = buffer.split(HEAD_TERMINATOR, 1)
    if len(head) > MAX_HEAD_BYTES:
        raise MalformedRequestError(f"Header block exceeds {MAX_HEAD_BYTES} bytes")

    request = parse_head(head)

    length = content_length(request)
    if length is None or request.method not in BODY_METHODS:
        return request

    chunks = [rest[:length]]
    remaining = length - len(chunks[0])
    while remaining > 0:
        chunk = conn.recv(min(remaining, CHUNK_SIZE))
        if not chunk:
            return None
        chunks.append(chunk)
        remaining -= len(chunk)

    request.body = b"".join(chunks)
    return request


def encode_head(response: Response) -> bytes:
    status_line = f"{HTTP_VERSION} {response.status} {response.reason}\r\n"
    header_lines = "".join(f"{key}: {value}\r\n" for key, value in response.headers.items())
    return (status_line + header_lines + "\r\n").encode(HEAD_ENCODING)


def encode_response(response: Response) -> bytes:
    """Serialize a response whose body is held in memory."""
    return encode_head(response) + response.body


def write_response(conn: socket.socket, response: Response) -> None:
    """
    Send a response, copying a streamed body to the socket chunk by chunk.

    Args:
        conn: Client socket connection
        response: Response to send
    """
    if response.stream is None:
        conn.sendall(encode_response(response))
        return

    conn.sendall(encode_head(response))
    while True:
        chunk = response.stream.read(CHUNK_SIZE)
        if not chunk:
            break
        conn.sendall(chunk)
