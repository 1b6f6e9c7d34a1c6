import threading

import pytest

from server import HTTPServer
from tests.helpers import send_raw, split_response


@pytest.fixture
def serving_dir(tmp_path):
    directory = tmp_path / "files"
    directory.mkdir()
    return directory


@pytest.fixture
def running_server(serving_dir):
    server = HTTPServer("127.0.0.1:0", str(serving_dir), max_workers=4)
    server.bind()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.stop()
    thread.join(timeout=5)


@pytest.fixture
def request_server(running_server):
    address = (running_server.host, running_server.port)

    def _request(payload, chunks=None):
        return split_response(send_raw(address, payload, chunks))

    return _request
