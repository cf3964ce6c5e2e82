import logging
import socket
import threading
import time

import pytest

from tcs.logger import DATA_LOGGER_NAME, LOGGER_NAME, Log

IO_TIMEOUT = 5.0


class RemoteStub:
    """Loopback TCP server standing in for a remote endpoint."""

    def __init__(self):
        self.listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self.listener.bind(("127.0.0.1", 0))
        self.listener.listen(5)
        self.listener.settimeout(IO_TIMEOUT)
        self.conn = None
        self.accepted = threading.Event()
        threading.Thread(target=self._accept, daemon=True).start()

    def _accept(self):
        try:
            self.conn, _ = self.listener.accept()
            self.conn.settimeout(IO_TIMEOUT)
        except OSError:
            pass
        finally:
            self.accepted.set()

    @property
    def port(self) -> int:
        return self.listener.getsockname()[1]

    def connection(self) -> socket.socket:
        assert self.accepted.wait(IO_TIMEOUT), "relay never connected"
        assert self.conn is not None
        return self.conn

    def close(self):
        for sock in (self.conn, self.listener):
            if sock is not None:
                sock.close()


def recv_exactly(sock: socket.socket, n: int) -> bytes:
    data = b""
    while len(data) < n:
        chunk = sock.recv(n - len(data))
        if not chunk:
            break
        data += chunk
    return data


def assert_peer_closed(sock: socket.socket):
    """The other side of ``sock`` has been closed."""
    sock.settimeout(IO_TIMEOUT)
    try:
        assert sock.recv(1024) == b""
    except ConnectionResetError:
        pass


def wait_until(predicate, timeout: float = IO_TIMEOUT) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def log(caplog):
    caplog.set_level(logging.DEBUG, logger=LOGGER_NAME)
    caplog.set_level(logging.DEBUG, logger=DATA_LOGGER_NAME)
    return Log(logging.getLogger(LOGGER_NAME), logging.getLogger(DATA_LOGGER_NAME))


@pytest.fixture
def remotes():
    created = []

    def make():
        stub = RemoteStub()
        created.append(stub)
        return stub

    yield make
    for stub in created:
        stub.close()


@pytest.fixture
def refused_port() -> int:
    """A loopback port with nothing listening on it."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture
def client_pair():
    """(test side, relay side) of a connected client."""
    client, proxy_side = socket.socketpair()
    client.settimeout(IO_TIMEOUT)
    yield client, proxy_side
    client.close()
    proxy_side.close()


@pytest.fixture
def restore_handlers():
    """Undo handler changes made by configure_logging."""
    loggers = [logging.getLogger(LOGGER_NAME), logging.getLogger(DATA_LOGGER_NAME)]
    saved = [(lg, list(lg.handlers), lg.level) for lg in loggers]
    yield
    for lg, handlers, level in saved:
        for handler in list(lg.handlers):
            lg.removeHandler(handler)
            handler.close()
        for handler in handlers:
            lg.addHandler(handler)
        lg.setLevel(level)


@pytest.fixture
def stalled_port():
    """A loopback port whose accept backlog is full, so new connects hang."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(0)
    address = listener.getsockname()
    fillers = []
    for _ in range(4):
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setblocking(False)
        sock.connect_ex(address)
        fillers.append(sock)
    time.sleep(0.2)
    yield address[1]
    for sock in fillers + [listener]:
        sock.close()
