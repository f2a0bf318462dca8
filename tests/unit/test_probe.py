from __future__ import annotations

import asyncio
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from sbx_server.app.workspaces.probe import ReadinessProber


class _NotFoundHandler(BaseHTTPRequestHandler):
    def do_HEAD(self) -> None:  # noqa: N802
        self.send_response(404)
        self.end_headers()

    def log_message(self, *args) -> None:
        pass


@pytest.fixture
def http_port():
    server = HTTPServer(("127.0.0.1", 0), _NotFoundHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server.server_address[1]
    finally:
        server.shutdown()
        server.server_close()


def _closed_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _prober(port: int) -> ReadinessProber:
    return ReadinessProber({"agent": port, "preview": port}, timeout=0.5, grace=0.25, host_for=lambda name: "127.0.0.1")


@pytest.mark.unit
def test_any_http_response_counts_as_ready(http_port) -> None:
    assert asyncio.run(_prober(http_port).probe("w1", "agent")) is True


@pytest.mark.unit
def test_no_listener_is_not_ready_within_bound() -> None:
    prober = _prober(_closed_port())
    started = time.monotonic()
    assert asyncio.run(prober.probe("w1", "agent")) is False
    assert time.monotonic() - started < prober.timeout + prober.grace + 0.5


@pytest.mark.unit
def test_probe_url_targets_service_container() -> None:
    prober = ReadinessProber({"agent": 3001, "preview": 5173, "editor": 8443})
    assert prober.probe_url("w1", "agent") == "http://agent-w1:3001/"
    assert prober.probe_url("w1", "preview") == "http://agent-w1:5173/"
    assert prober.probe_url("w1", "editor") == "http://editor-w1:8443/"


@pytest.mark.unit
def test_unknown_service_is_rejected() -> None:
    with pytest.raises(ValueError):
        asyncio.run(_prober(1).probe("w1", "database"))


@pytest.mark.unit
def test_from_settings_uses_configured_ports(settings) -> None:
    prober = ReadinessProber.from_settings(settings)
    assert prober.ports == {"agent": 3001, "preview": 5173, "editor": 8443}
    assert prober.timeout == settings.probe_timeout_seconds


@pytest.mark.unit
def test_silent_listener_times_out_as_not_ready() -> None:
    # Connections complete in the kernel backlog but nothing ever answers.
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        prober = _prober(s.getsockname()[1])
        started = time.monotonic()
        assert asyncio.run(prober.probe("w1", "agent")) is False
        assert time.monotonic() - started < prober.timeout + prober.grace + 0.5
