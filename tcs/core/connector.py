"""
Outbound side of a session: dialling remote endpoints.

Connects are non-blocking and polled, so a shutdown request is noticed
while an attempt is still in flight rather than only after it times out.
"""

import errno
import os
import select
import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence, Tuple

from ..logger import Log
from ..model import RemoteEndpoint

# How often an in-flight connect looks at the shutdown signal.
CONNECT_POLL_INTERVAL = 0.25

_IN_PROGRESS = (0, errno.EINPROGRESS, errno.EWOULDBLOCK, errno.EALREADY)


def open_connection(
    endpoint: RemoteEndpoint,
    timeout: Optional[float],
    cancel: threading.Event,
) -> Optional[socket.socket]:
    """
    Dial ``endpoint``, giving up after ``timeout`` seconds (None waits forever).

    Returns:
        The connected socket in blocking mode, or None when ``cancel`` was
        set before the connection completed

    Raises:
        OSError: Refused, unreachable or timed out
    """
    family = socket.AF_INET6 if ":" in endpoint.address else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setblocking(False)
        err = sock.connect_ex((endpoint.address, endpoint.port))
        if err not in _IN_PROGRESS:
            raise OSError(err, os.strerror(err))

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            if cancel.is_set():
                sock.close()
                return None

            wait = CONNECT_POLL_INTERVAL
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise socket.timeout("timed out")
                wait = min(wait, remaining)

            _, writable, failed = select.select([], [sock], [sock], wait)
            if writable or failed:
                err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
                if err:
                    raise OSError(err, os.strerror(err))
                break
    except OSError:
        sock.close()
        raise

    sock.settimeout(timeout)
    return sock


def connect_endpoint(
    endpoint: RemoteEndpoint,
    timeout: Optional[float],
    cancel: threading.Event,
    log: Log,
) -> Optional[socket.socket]:
    """
    Open one outbound connection. Never retries.

    Args:
        endpoint: Destination to reach
        timeout: Connect timeout in seconds, also kept as the socket's
            read/write timeout; None blocks indefinitely
        cancel: Polled for the whole attempt
        log: Receives the failure, tagged with ``address:port``

    Returns:
        The connected socket, or None when the attempt failed or was cancelled
    """
    if cancel.is_set():
        return None

    try:
        sock = open_connection(endpoint, timeout, cancel)
    except OSError as e:
        if cancel.is_set():
            log.debug(f"Connect to {endpoint} cancelled")
        else:
            log.warn(f"Failed to connect to remote {endpoint}: {e}")
        return None

    if sock is None:
        log.debug(f"Connect to {endpoint} cancelled")
        return None

    sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    log.info(f"Connected to remote {endpoint}")
    return sock


def connect_all(
    endpoints: Sequence[RemoteEndpoint],
    timeout: Optional[float],
    cancel: threading.Event,
    log: Log,
) -> List[Tuple[RemoteEndpoint, socket.socket]]:
    """Connect to every endpoint concurrently; keep the successes in configured order."""
    if not endpoints:
        return []

    with ThreadPoolExecutor(max_workers=len(endpoints), thread_name_prefix="tcs-connect") as pool:
        socks = list(pool.map(lambda ep: connect_endpoint(ep, timeout, cancel, log), endpoints))

    return [(ep, sock) for ep, sock in zip(endpoints, socks) if sock is not None]


def close_quietly(sock: Optional[socket.socket]):
    """Shut down and close ``sock``; safe to call on an already closed socket."""
    if sock is None:
        return
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        pass
    try:
        sock.close()
    except OSError:
        pass
