#!/usr/bin/env python3
"""
Multi-threaded HTTP/1.1 Server Using Socket Programming

Accepts TCP connections on a single address and hands each one to a fixed
pool of worker threads. A worker reads one request, routes it, runs the
handler and writes the response before closing the connection:

- GET  /               -> 200
- GET  /echo/<msg>     -> 200 with <msg> as body
- GET  /user-agent     -> 200 with the User-Agent header as body
- GET  /files/<name>   -> file contents from the serving directory
- POST /files/<name>   -> stores the request body in the serving directory
"""

import logging
import queue
import signal
import socket
import sys
import threading
from enum import Enum
from typing import List, Optional, Tuple

from handlers import HANDLERS, HandlerContext
from routing import Route, route
from wire import MalformedRequestError, Request, Response, make_response, read_request, write_response

logger = logging.getLogger("tinyhttpd.server")

DEFAULT_ADDRESS = "127.0.0.1:4221"
DEFAULT_WORKERS = 8
ACCEPT_POLL_INTERVAL = 0.5

LOG_FORMAT = "%(asctime)s [%(levelname)s] [%(threadName)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure console and optional file logging for the server.

    Args:
        level: Logging level
        log_file: Path of a log file to append to (default: console only)

    Returns:
        The configured package logger
    """
    formatter = logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT)

    root = logging.getLogger("tinyhttpd")
    root.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Prevent duplicate logs
    root.propagate = False
    return root


def parse_address(address: str) -> Tuple[str, int]:
    """
    Split a "host:port" bind address.

    Raises:
        ValueError: If the port is missing, not a number or out of range
    """
    host, sep, port = address.rpartition(':')
    if not sep or not host:
        raise ValueError(f"Address must be host:port, got {address!r}")

    port = int(port)
    if not (0 <= port <= 65535):
        raise ValueError(f"Port must be between 0 and 65535, got {port}")

    return host, port


class ConnectionState(Enum):
    READING = "reading"
    ROUTING = "routing"
    HANDLING = "handling"
    WRITING = "writing"
    CLOSED = "closed"


class ConnectionWorker:
    """
    Processes exactly one request on one client connection.

    Moves linearly through READING, ROUTING, HANDLING and WRITING to CLOSED.
    A peer disconnect or socket error jumps straight to CLOSED. Nothing
    raised while handling the connection escapes run().
    """

    def __init__(self, client_socket: socket.socket, client_address: Tuple[str, int], directory: Optional[str]):
        self.client_socket = client_socket
        self.client_address = client_address
        self.directory = directory
        self.connection_id = f"{client_address[0]}:{client_address[1]}"
        self.state = ConnectionState.READING

    def _transition(self, state: ConnectionState) -> None:
        logger.debug(f"{self.connection_id}: {self.state.value} -> {state.value}")
        self.state = state

    def run(self) -> None:
        try:
            self._process()
        except OSError as e:
            logger.error(f"I/O error on connection {self.connection_id} while {self.state.value}: {e}")
        except Exception:
            logger.exception(f"Unexpected error on connection {self.connection_id}")
        finally:
            self._close()

    def _process(self) -> None:
        try:
            request = read_request(self.client_socket)
        except MalformedRequestError as e:
            logger.warning(f"Invalid request from {self.connection_id}: {e}")
            self._write(make_response(400))
            return

        if request is None:
            logger.info(f"Connection closed by client: {self.connection_id}")
            return

        logger.info(f"{request.method} {request.path} {request.version} from {self.connection_id}")

        self._transition(ConnectionState.ROUTING)
        match = route(request.method, request.path)

        self._transition(ConnectionState.HANDLING)
        response = self._handle(request, match.route, match.param)

        self._write(response)

    def _handle(self, request: Request, matched_route: Route, param: Optional[str]) -> Response:
        handler = HANDLERS[matched_route]
        try:
            return handler(HandlerContext(request, param, self.directory))
        except Exception:
            logger.exception(f"Handler for {matched_route.value} failed on {self.connection_id}")
            return make_response(500)

    def _write(self, response: Response) -> None:
        self._transition(ConnectionState.WRITING)
        try:
            write_response(self.client_socket, response)
        finally:
            response.close()
        logger.info(f"Response {response.status} {response.reason} sent to {self.connection_id}")

    def _close(self) -> None:
        try:
            self.client_socket.close()
        except OSError as e:
            logger.error(f"Error closing connection {self.connection_id}: {e}")
        self._transition(ConnectionState.CLOSED)


class HTTPServer:
    """
    Multi-threaded HTTP Server with a fixed pool of worker threads.

    The accept loop queues connections; workers take them off the queue and
    handle each one from start to finish. When every worker is busy and the
    queue is full, the accept loop waits before queueing the next connection.
    """

    def __init__(self, address: str = DEFAULT_ADDRESS, directory: Optional[str] = None,
                 max_workers: int = DEFAULT_WORKERS):
        """
        Initialize the HTTP server with configuration parameters.

        Args:
            address: Bind address as "host:port" (default: 127.0.0.1:4221)
            directory: Serving directory for /files/ routes (default: disabled)
            max_workers: Number of worker threads (default: 8)
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")

        self.host, self.port = parse_address(address)
        self.directory = directory
        self.max_workers = max_workers
        self.server_socket: Optional[socket.socket] = None
        self.running = False
        self.thread_pool: List[threading.Thread] = []
        self.connection_queue: queue.Queue = queue.Queue(maxsize=max_workers)

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def bind(self) -> None:
        """Create the listening socket. Binding port 0 picks a free port."""
        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.server_socket.bind((self.host, self.port))
        self.server_socket.listen(50)
        self.server_socket.settimeout(ACCEPT_POLL_INTERVAL)
        self.port = self.server_socket.getsockname()[1]
        self.running = True
        logger.info(f"Server listening on {self.address}, serving directory: {self.directory}")

    def start(self) -> None:
        """Bind and serve until stopped."""
        self.bind()
        self.serve_forever()

    def serve_forever(self) -> None:
        if self.server_socket is None:
            raise RuntimeError("bind() must be called before serve_forever()")

        for i in range(self.max_workers):
            thread = threading.Thread(target=self._worker_thread, name=f"Worker-{i+1}")
            thread.daemon = True
            thread.start()
            self.thread_pool.append(thread)
        logger.info(f"Thread pool size: {self.max_workers}")

        try:
            while self.running:
                try:
                    client_socket, client_address = self.server_socket.accept()
                except socket.timeout:
                    continue
                except OSError as e:
                    if self.running:
                        logger.error(f"Error accepting connection: {e}")
                    break

                # accepted sockets may inherit the listener's timeout
                client_socket.settimeout(None)
                logger.info(f"New connection from {client_address[0]}:{client_address[1]}")
                self._enqueue(client_socket, client_address)
        finally:
            self.stop()

    def _enqueue(self, client_socket: socket.socket, client_address: Tuple[str, int]) -> None:
        while self.running:
            try:
                self.connection_queue.put((client_socket, client_address), timeout=ACCEPT_POLL_INTERVAL)
                return
            except queue.Full:
                continue
        client_socket.close()

    def _worker_thread(self) -> None:
        """Worker thread that processes connections from the queue."""
        while self.running:
            try:
                client_socket, client_address = self.connection_queue.get(timeout=ACCEPT_POLL_INTERVAL)
            except queue.Empty:
                continue

            try:
                ConnectionWorker(client_socket, client_address, self.directory).run()
            finally:
                self.connection_queue.task_done()

    def stop(self) -> None:
        """Stop accepting connections and wait for the workers to finish."""
        if not self.running and not self.thread_pool:
            return

        logger.info("Stopping HTTP server...")
        self.running = False

        if self.server_socket:
            try:
                self.server_socket.close()
            except OSError as e:
                logger.error(f"Error closing server socket: {e}")

        current = threading.current_thread()
        for thread in self.thread_pool:
            if thread is not current:
                thread.join(timeout=2 * ACCEPT_POLL_INTERVAL)
        self.thread_pool = []

        while True:
            try:
                client_socket, _ = self.connection_queue.get_nowait()
            except queue.Empty:
                break
            client_socket.close()

        logger.info("Server stopped")


USAGE = "usage: server.py [--directory DIR] [--address HOST:PORT] [--workers N] [--log-file PATH]"
OPTIONS = {"--directory": "directory", "--address": "address", "--workers": "workers", "--log-file": "log_file"}


def parse_args(argv: List[str]) -> dict:
    """
    Parse command line options.

    Args:
        argv: Arguments without the program name

    Returns:
        Option values keyed by name

    Raises:
        ValueError: On unknown options, missing values or bad numbers
    """
    options = {"directory": None, "address": DEFAULT_ADDRESS, "workers": DEFAULT_WORKERS, "log_file": None}

    args = iter(argv)
    for arg in args:
        if arg not in OPTIONS:
            raise ValueError(f"Unknown option: {arg}")
        value = next(args, None)
        if value is None:
            raise ValueError(f"Option {arg} requires a value")
        options[OPTIONS[arg]] = value

    options["workers"] = int(options["workers"])
    if options["workers"] < 1:
        raise ValueError("Workers must be at least 1")
    parse_address(options["address"])

    return options


def main(argv: Optional[List[str]] = None) -> None:
    """
    Main entry point for the HTTP server.
    Parses command line arguments and starts the server.
    """
    try:
        options = parse_args(sys.argv[1:] if argv is None else argv)
    except ValueError as e:
        print(f"Error: {e}")
        print(USAGE)
        sys.exit(1)

    setup_logging(log_file=options["log_file"])

    server = HTTPServer(options["address"], options["directory"], options["workers"])

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down...")
        server.running = False

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        server.start()
    except OSError as e:
        print(f"Error starting server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
