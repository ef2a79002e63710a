import logging
import threading
import urllib.request

from werkzeug.test import Client

from trendstream.httpserver import ServerConfig, create_server, recover_middleware

LOGGER = logging.getLogger("tests.httpserver")


def _ok_app(environ, start_response):
    start_response("200 OK", [("Content-Type", "text/plain")])
    return [b"ok"]


def _broken_app(environ, start_response):
    raise RuntimeError("boom")


def test_recover_middleware_passes_responses_through():
    client = Client(recover_middleware(LOGGER, _ok_app))
    response = client.get("/")
    assert response.status_code == 200
    assert response.data == b"ok"


def test_recover_middleware_turns_exceptions_into_500(caplog):
    caplog.set_level(logging.ERROR, logger="tests.httpserver")
    client = Client(recover_middleware(LOGGER, _broken_app))

    response = client.get("/boom")

    assert response.status_code == 500
    assert response.data == b"Internal Server Error\n"
    (record,) = [r for r in caplog.records if r.name == "tests.httpserver"]
    assert record.getMessage() == "panic recovered from HTTP handler"
    assert record.path == "/boom"
    assert record.method == "GET"
    assert record.panic == "boom"


def test_create_server_serves_requests():
    server = create_server(ServerConfig(addr="127.0.0.1:0", name="public"), _ok_app, LOGGER)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        assert server.server_address[0] == "127.0.0.1"
        assert server.server_port > 0
        url = f"http://127.0.0.1:{server.server_port}/"
        with urllib.request.urlopen(url, timeout=5) as response:
            assert response.status == 200
            assert response.read() == b"ok"
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=5)