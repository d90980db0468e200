"""Tests for the HTTP helper and the requests/aiohttp transports."""
import asyncio
import threading
from unittest.mock import MagicMock

import pytest
import requests
from aiohttp import web

from common import http_client
from common.errors import TransportError
from common.http_client import robust_get
from constants import Constants
from metadata.transport import AiohttpTransport, RequestsTransport


def _response(status, content=b""):
    resp = MagicMock()
    resp.status_code = status
    resp.content = content
    return resp


@pytest.fixture(autouse=True)
def no_backoff():
    Constants.HTTP_RETRY_BASE_DELAY_SEC = 0


@pytest.fixture
def local_server():
    """Serve a couple of fixed routes on 127.0.0.1 from a background loop."""
    async def ok(request):
        return web.Response(body=b"payload:" + request.path.encode())

    async def missing(request):
        return web.Response(status=404)

    app = web.Application()
    app.router.add_get("/ok/{name}", ok)
    app.router.add_get("/missing", missing)
    loop = asyncio.new_event_loop()
    runner = web.AppRunner(app)
    loop.run_until_complete(runner.setup())
    site = web.TCPSite(runner, "127.0.0.1", 0)
    loop.run_until_complete(site.start())
    port = runner.addresses[0][1]
    thread = threading.Thread(target=loop.run_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{port}"
    loop.call_soon_threadsafe(loop.stop)
    thread.join(5)
    loop.run_until_complete(runner.cleanup())
    loop.close()


class TestRobustGet:
    def test_success(self):
        session = MagicMock()
        session.get.return_value = _response(200, b"body")
        assert robust_get("https://h/x", timeout=1, session=session) == b"body"
        session.get.assert_called_once()

    def test_retries_server_errors(self):
        session = MagicMock()
        session.get.side_effect = [_response(503), requests.ConnectionError("reset"), _response(200, b"ok")]
        assert robust_get("https://h/x", timeout=1, session=session) == b"ok"
        assert session.get.call_count == 3

    def test_client_error_not_retried(self):
        session = MagicMock()
        session.get.return_value = _response(404)
        with pytest.raises(TransportError) as info:
            robust_get("https://h/x", timeout=1, session=session)
        assert info.value.cause == "HTTP 404"
        assert session.get.call_count == 1

    def test_timeout(self):
        session = MagicMock()
        session.get.side_effect = requests.Timeout()
        with pytest.raises(TransportError) as info:
            robust_get("https://h/x", timeout=2, session=session)
        assert "timed out" in info.value.cause
        assert session.get.call_count == Constants.HTTP_RETRY_MAX

    def test_timeout_bounds_all_attempts(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(http_client.time, "monotonic", lambda: clock[0])

        def hang(url, timeout=None, **kwargs):
            clock[0] += timeout
            raise requests.Timeout()

        session = MagicMock()
        session.get.side_effect = hang
        with pytest.raises(TransportError):
            robust_get("https://h/x", timeout=0.2, session=session)
        assert session.get.call_count == 1
        assert clock[0] == pytest.approx(1000.2)

    def test_retry_gets_remaining_time(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(http_client.time, "monotonic", lambda: clock[0])

        def reset_then_ok(url, timeout=None, **kwargs):
            if session.get.call_count == 1:
                clock[0] += 0.5
                raise requests.ConnectionError("reset")
            return _response(200, b"ok")

        session = MagicMock()
        session.get.side_effect = reset_then_ok
        assert robust_get("https://h/x", timeout=2, session=session) == b"ok"
        timeouts = [call.kwargs["timeout"] for call in session.get.call_args_list]
        assert timeouts == [pytest.approx(2), pytest.approx(1.5)]

    def test_credentials_not_in_error(self):
        session = MagicMock()
        session.get.return_value = _response(403)
        with pytest.raises(TransportError) as info:
            robust_get("https://user:pw@h/x?token=abc", timeout=1, session=session)
        assert "pw" not in str(info.value)
        assert "abc" not in str(info.value)


class TestRequestsTransport:
    def test_local_file(self, tmp_path):
        path = tmp_path / "blob.bin"
        path.write_bytes(b"\x00data")
        transport = RequestsTransport(session=MagicMock())
        assert transport.fetch(str(path), 1) == b"\x00data"
        assert transport.fetch("file://" + str(path), 1) == b"\x00data"

    def test_missing_local_file(self, tmp_path):
        with pytest.raises(TransportError):
            RequestsTransport(session=MagicMock()).fetch(str(tmp_path / "nope"), 1)

    def test_fetch_many_collects_errors(self):
        session = MagicMock()
        session.get.side_effect = lambda url, **kw: _response(200, b"A") if url.endswith("/a") else _response(404)
        results = RequestsTransport(session=session, max_workers=2).fetch_many(
            ["https://h/a", "https://h/b", "https://h/a"], 1)
        assert list(results) == ["https://h/a", "https://h/b"]
        assert results["https://h/a"] == b"A"
        assert isinstance(results["https://h/b"], TransportError)

    def test_against_local_server(self, local_server):
        transport = RequestsTransport()
        try:
            assert transport.fetch(local_server + "/ok/one", 5) == b"payload:/ok/one"
            with pytest.raises(TransportError):
                transport.fetch(local_server + "/missing", 5)
        finally:
            transport.close()


class TestAiohttpTransport:
    def test_fetch_many(self, local_server):
        urls = [f"{local_server}/ok/{n}" for n in ("a", "b", "c")] + [local_server + "/missing"]
        results = AiohttpTransport(max_concurrency=2).fetch_many(urls, 5)
        assert list(results) == urls
        assert results[urls[1]] == b"payload:/ok/b"
        assert results[urls[3]].cause == "HTTP 404"

    def test_fetch_raises(self, local_server):
        with pytest.raises(TransportError):
            AiohttpTransport().fetch(local_server + "/missing", 5)

    def test_connection_refused(self):
        results = AiohttpTransport().fetch_many(["http://127.0.0.1:9/x"], 2)
        assert isinstance(results["http://127.0.0.1:9/x"], TransportError)

    def test_local_paths_skip_network(self, tmp_path):
        path = tmp_path / "w.whl"
        path.write_bytes(b"wheel")
        assert AiohttpTransport().fetch(str(path), 1) == b"wheel"
