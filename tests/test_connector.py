import logging
import socket
import threading
import time

from tcs.core import connector
from tcs.core.connector import close_quietly, connect_all, connect_endpoint
from tcs.model import RemoteEndpoint


def test_connect_endpoint(log, remotes):
    stub = remotes()
    sock = connect_endpoint(RemoteEndpoint("127.0.0.1", stub.port), 2.0, threading.Event(), log)
    try:
        assert sock is not None
        assert sock.gettimeout() == 2.0
        sock.sendall(b"hi")
        assert stub.connection().recv(2) == b"hi"
    finally:
        close_quietly(sock)


def test_refused_connection_is_logged_with_address(log, caplog, refused_port):
    sock = connect_endpoint(RemoteEndpoint("127.0.0.1", refused_port), 2.0, threading.Event(), log)

    assert sock is None
    warnings = [r.getMessage() for r in caplog.records if r.levelname == "WARNING"]
    assert any(f"127.0.0.1:{refused_port}" in msg for msg in warnings)


def test_cancelled_connect_never_dials(log, monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("connect must not be attempted")

    monkeypatch.setattr(connector, "open_connection", fail)
    cancel = threading.Event()
    cancel.set()

    assert connect_endpoint(RemoteEndpoint("127.0.0.1", 9), 1.0, cancel, log) is None


def test_connect_all_keeps_successes_in_order(log, remotes, refused_port):
    a, b = remotes(), remotes()
    endpoints = [
        RemoteEndpoint("127.0.0.1", a.port),
        RemoteEndpoint("127.0.0.1", refused_port),
        RemoteEndpoint("127.0.0.1", b.port),
    ]

    connected = connect_all(endpoints, 2.0, threading.Event(), log)
    try:
        assert [ep for ep, _ in connected] == [endpoints[0], endpoints[2]]
    finally:
        for _, sock in connected:
            close_quietly(sock)


def test_connect_all_without_endpoints(log):
    assert connect_all([], 1.0, threading.Event(), log) == []


def test_close_quietly_is_idempotent():
    a, b = socket.socketpair()
    close_quietly(a)
    close_quietly(a)
    close_quietly(None)
    assert a.fileno() == -1
    b.close()


def test_cancel_interrupts_connect_in_flight(log, caplog, stalled_port):
    cancel = threading.Event()
    timer = threading.Timer(0.3, cancel.set)
    timer.start()

    started = time.monotonic()
    sock = connect_endpoint(RemoteEndpoint("127.0.0.1", stalled_port), 5.0, cancel, log)
    elapsed = time.monotonic() - started
    timer.cancel()

    assert sock is None
    assert elapsed < 1.5
    assert not [r for r in caplog.records if r.levelname == "WARNING"]


def test_connect_timeout_is_a_connect_failure(log, caplog, stalled_port):
    started = time.monotonic()
    sock = connect_endpoint(RemoteEndpoint("127.0.0.1", stalled_port), 0.5, threading.Event(), log)

    assert sock is None
    assert time.monotonic() - started < 3.0
    warnings = [r.getMessage() for r in caplog.records if r.levelname == "WARNING"]
    assert any(f"127.0.0.1:{stalled_port}" in msg and "timed out" in msg for msg in warnings)
    assert not [r for r in caplog.records if r.levelno >= logging.ERROR]
