"""
One accepted client and the remote connections serving it.
"""

import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import List, Optional, Tuple

from .. import constants
from ..logger import Log
from ..model import ProxyConfiguration, RemoteEndpoint
from .connector import close_quietly, connect_all
from .pumps import PumpExit, fanout_pump, relay_pump

# How often a session waiting on its pumps looks at the process-wide signal.
CANCEL_POLL_INTERVAL = 0.25
PUMP_JOIN_TIMEOUT = 2.0


class SessionState(Enum):
    CONNECTING = "connecting"
    RELAYING = "relaying"
    DRAINING = "draining"
    CLOSED = "closed"


class ConnectionSession:
    """
    Lifecycle of one accepted client: connect to the remotes, pump bytes
    both ways, tear everything down on the first terminal event.

    The client-side pump ending always drains the session. A remote leg
    ending retires that leg only while another remote leg is still live;
    the last live leg ending drains the session.

    Attributes:
        client: Accepted client socket, owned by the session
        remotes: Connected remote sockets, in configured order
        state: Current lifecycle state
        stopped: Session-wide stop signal shared by every pump
        pumps: Pump threads started for this session
    """

    def __init__(
        self,
        client: socket.socket,
        client_addr: Tuple[str, int],
        config: ProxyConfiguration,
        cancel: threading.Event,
        log: Log,
    ):
        self.client = client
        self.client_addr = client_addr
        self.config = config
        self.cancel = cancel
        self.log = log

        self.remotes: List[Tuple[RemoteEndpoint, socket.socket]] = []
        self.state = SessionState.CONNECTING
        self.stopped = threading.Event()
        self.pumps: List[threading.Thread] = []
        self.exits: List[Tuple[str, PumpExit]] = []

        self._lock = threading.Lock()
        self._client_write_lock = threading.Lock()
        self._live_legs = 0
        self._closed = False
        self._writers: Optional[ThreadPoolExecutor] = None

    @property
    def name(self) -> str:
        return f"{self.client_addr[0]}:{self.client_addr[1]}"

    def run(self):
        """Run the session to completion. Never raises."""
        try:
            if not self.config.remote_endpoints:
                self.log.warn(f"Session {self.name}: at least one remote endpoint is required, closing client")
                return

            self.remotes = connect_all(
                self.config.remote_endpoints,
                self.config.socket_timeout,
                self.cancel,
                self.log,
            )
            if not self.remotes:
                if not self.cancel.is_set():
                    self.log.warn(f"Session {self.name}: no remote endpoint reachable, closing client")
                return

            self.log.info(
                f"Session {self.name}: relaying to {', '.join(str(ep) for ep, _ in self.remotes)}"
            )
            self._relay()
        except OSError as e:
            self.log.info(f"Session {self.name}: connection error - {e}")
        except Exception as e:
            self.log.error(f"Session {self.name}: unexpected error", e)
        finally:
            self.close()

    def _relay(self):
        self.state = SessionState.RELAYING
        self._live_legs = len(self.remotes)
        self._writers = ThreadPoolExecutor(
            max_workers=len(self.remotes), thread_name_prefix=f"tcs-fanout-{self.name}"
        )

        fanout_label = constants.CLIENT_TO_REMOTE
        if len(self.remotes) > 1:
            fanout_label = f"Client => {len(self.remotes)} remotes"

        self._start_pump(
            fanout_label,
            fanout_pump,
            self.client,
            self.remotes,
            fanout_label,
            self.config.buffer_size,
            self.stopped,
            self.log,
            self._writers,
            leg=False,
        )

        for endpoint, sock in self.remotes:
            label = constants.REMOTE_TO_CLIENT
            if len(self.remotes) > 1:
                label = f"Remote {endpoint} => Client"
            self._start_pump(
                label,
                relay_pump,
                sock,
                self.client,
                label,
                self.config.buffer_size,
                self.stopped,
                self.log,
                self._client_write_lock,
                leg=True,
            )

        while not self.stopped.wait(CANCEL_POLL_INTERVAL):
            if self.cancel.is_set():
                self.log.debug(f"Session {self.name}: cancelled")
                self.stopped.set()

    def _start_pump(self, label, target, *args, leg: bool):
        def run():
            result = PumpExit.ERROR
            try:
                result = target(*args)
            finally:
                self._pump_finished(label, result, leg)

        thread = threading.Thread(target=run, name=f"tcs-pump {label}", daemon=True)
        self.pumps.append(thread)
        thread.start()

    def _pump_finished(self, label: str, result: PumpExit, leg: bool):
        with self._lock:
            self.exits.append((label, result))
            if self.stopped.is_set():
                return
            if leg:
                self._live_legs -= 1
                if self._live_legs > 0:
                    self.log.info(f"Session {self.name}: {label} ended ({result.value}), other remotes still live")
                    return
            self.state = SessionState.DRAINING
            self.log.debug(f"Session {self.name}: {label} ended ({result.value}), draining")
            self.stopped.set()

    def close(self):
        """Close every socket of the session. Idempotent and never raises."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self.state is SessionState.RELAYING:
                self.state = SessionState.DRAINING
            self.stopped.set()

        for _, sock in self.remotes:
            close_quietly(sock)
        close_quietly(self.client)

        current = threading.current_thread()
        for thread in self.pumps:
            if thread is not current:
                thread.join(PUMP_JOIN_TIMEOUT)

        if self._writers is not None:
            self._writers.shutdown(wait=False)

        self.state = SessionState.CLOSED
        self.log.info(f"Connection closed: {self.name}")
