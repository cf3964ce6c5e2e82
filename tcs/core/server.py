"""
Accept loop of the transparent relay.

Listens on the local port and hands every client to its own
ConnectionSession thread. A session failing never stops the listener;
only a broken listening socket or the shutdown signal does.
"""

import errno
import socket
import threading
from typing import List, Optional, Tuple

from .. import constants
from ..logger import Log
from ..model import ProxyConfiguration
from .session import ConnectionSession

ACCEPT_TIMEOUT = 1.0
SHUTDOWN_JOIN_TIMEOUT = 1.0
RESOURCE_BACKOFF = 0.1

# Out of descriptors or buffers: the listener is fine, retry after a pause.
RESOURCE_ERRNOS = {errno.EMFILE, errno.ENFILE, errno.ENOBUFS, errno.ENOMEM}
# Per-connection failures reported by accept().
TRANSIENT_ACCEPT_ERRNOS = RESOURCE_ERRNOS | {errno.EPROTO, errno.EPERM, errno.EINTR}


class ProxyServerError(Exception):
    """The listener could not be set up or failed beyond recovery."""


class ProxyServer:
    """
    Accept loop of the relay.

    Every accepted client gets its own ConnectionSession on a detached
    thread; the loop never waits for a session and never sees its outcome.

    Attributes:
        config: Resolved configuration, read only
        cancel: Process-wide shutdown signal
        listening_addr: Address the listener binds
        server_socket: The listening socket once started
        session_threads: Session threads still alive
    """

    def __init__(
        self,
        config: ProxyConfiguration,
        cancel: Optional[threading.Event] = None,
        log: Optional[Log] = None,
        listening_addr: str = constants.LISTEN_HOST,
    ):
        self.config = config
        self.cancel = cancel or threading.Event()
        self.log = log or Log(log_payload=config.log_data_payload)
        self.listening_addr = listening_addr
        self.server_socket: Optional[socket.socket] = None
        self.session_threads: List[threading.Thread] = []

    @property
    def address(self) -> Tuple[str, int]:
        if self.server_socket is None:
            raise ProxyServerError("Server is not started")
        return self.server_socket.getsockname()[:2]

    def start(self):
        """Bind and listen. Raises ProxyServerError on failure."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.listening_addr, self.config.local_port))
            sock.listen(constants.LISTEN_BACKLOG)
            sock.settimeout(ACCEPT_TIMEOUT)
        except OSError as e:
            sock.close()
            raise ProxyServerError(
                f"Failed to listen on {self.listening_addr}:{self.config.local_port}: {e}"
            ) from e
        self.server_socket = sock

    def serve(self):
        """Accept clients until ``cancel`` is set."""
        listener = self.server_socket
        if listener is None:
            raise ProxyServerError("Server is not started")

        while not self.cancel.is_set():
            try:
                client, addr = listener.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.cancel.is_set():
                    break
                if isinstance(e, ConnectionError) or e.errno in TRANSIENT_ACCEPT_ERRNOS:
                    self.log.warn(f"Connection error: {e}")
                    if e.errno in RESOURCE_ERRNOS:
                        self.cancel.wait(RESOURCE_BACKOFF)
                    continue
                raise ProxyServerError(f"Accept failed: {e}") from e

            self.log.info(f"Client connected: {addr[0]}:{addr[1]}")
            try:
                self._spawn_session(client, addr)
            except Exception as e:
                self.log.error(f"Could not start session for {addr[0]}:{addr[1]}", e)
                client.close()

    def _spawn_session(self, client: socket.socket, addr: Tuple[str, int]):
        client.settimeout(self.config.socket_timeout)
        client.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        session = ConnectionSession(client, addr, self.config, self.cancel, self.log)

        thread = threading.Thread(target=session.run, name=f"tcs-session {addr[0]}:{addr[1]}", daemon=True)
        thread.start()
        self.session_threads.append(thread)

        # Clean up finished threads
        self.session_threads = [t for t in self.session_threads if t.is_alive()]

    def stop(self):
        """Stop accepting and give live sessions a moment to unwind."""
        self.cancel.set()
        self.cleanup()
        for thread in self.session_threads:
            thread.join(SHUTDOWN_JOIN_TIMEOUT)
        self.session_threads = [t for t in self.session_threads if t.is_alive()]

    def cleanup(self):
        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None

    def run(self, on_started=None):
        """Start, serve until cancelled, stop."""
        self.start()
        try:
            if on_started is not None:
                on_started(self)
            self.serve()
        finally:
            self.stop()
            self.log.info("Proxy stopped.")


def run_proxy_server(
    config: ProxyConfiguration,
    cancel: threading.Event,
    log: Optional[Log] = None,
    on_started=None,
):
    """
    Run the relay until ``cancel`` is set.

    Args:
        config: Resolved configuration
        cancel: Process-wide shutdown signal
        log: Logging sink
        on_started: Called with the running ProxyServer once it listens

    Raises:
        ProxyServerError: The listener could not be started or failed
    """
    log = log or Log(log_payload=config.log_data_payload)

    if not config.remote_endpoints:
        log.warn("Configuration error: at least one remote endpoint is required, not starting the proxy")
        return

    ProxyServer(config, cancel, log).run(on_started)
