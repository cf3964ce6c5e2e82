"""
Byte pumps moving data between sockets.

A pump never raises; how it ended is returned as a PumpExit so the
session can decide whether to drain.
"""

import socket
import threading
from concurrent.futures import Executor, as_completed
from contextlib import nullcontext
from enum import Enum
from typing import ContextManager, Optional, Sequence, Tuple

from ..logger import Log
from ..model import RemoteEndpoint


class PumpExit(Enum):
    EOF = "eof"
    ERROR = "error"
    CANCELLED = "cancelled"


# Errors that mean the peer went away rather than something going wrong.
CLOSED_ERRORS = (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)


def _classify(exc: BaseException, direction: str, stop: threading.Event, log: Log) -> PumpExit:
    if stop.is_set():
        log.debug(f"{direction}: stopped")
        return PumpExit.CANCELLED
    if isinstance(exc, CLOSED_ERRORS):
        log.info(f"{direction}: connection closed ({exc})")
        return PumpExit.EOF
    if isinstance(exc, OSError):
        log.info(f"{direction}: relay ended - {exc}")
        return PumpExit.ERROR
    log.error(f"Unexpected error relaying {direction}", exc)
    return PumpExit.ERROR


def relay_pump(
    source: socket.socket,
    destination: socket.socket,
    direction: str,
    buffer_size: int,
    stop: threading.Event,
    log: Log,
    write_lock: Optional[threading.Lock] = None,
) -> PumpExit:
    """
    Copy ``source`` into ``destination`` until EOF, an error or ``stop``.

    Each chunk is fully written before the next read. Nothing is raised
    past this function; the way it ended is the return value.
    """
    buf = bytearray(buffer_size)
    view = memoryview(buf)
    guard: ContextManager = write_lock if write_lock is not None else nullcontext()

    try:
        while not stop.is_set():
            n = source.recv_into(buf)
            if n == 0:
                if stop.is_set():
                    return PumpExit.CANCELLED
                log.info(f"{direction}: connection closed by peer")
                return PumpExit.EOF
            chunk = view[:n]
            with guard:
                destination.sendall(chunk)
            log.data(direction, chunk)
    except Exception as e:
        return _classify(e, direction, stop, log)

    return PumpExit.CANCELLED


def fanout_pump(
    source: socket.socket,
    destinations: Sequence[Tuple[RemoteEndpoint, socket.socket]],
    direction: str,
    buffer_size: int,
    stop: threading.Event,
    log: Log,
    executor: Executor,
) -> PumpExit:
    """
    Copy ``source`` into every destination concurrently.

    A failed write is logged and skipped for that chunk only; the
    destination stays in the set and is tried again with the next chunk.
    All writes of a chunk complete before the next read.
    """
    buf = bytearray(buffer_size)
    view = memoryview(buf)

    try:
        while not stop.is_set():
            n = source.recv_into(buf)
            if n == 0:
                if stop.is_set():
                    return PumpExit.CANCELLED
                log.info(f"{direction}: connection closed by peer")
                return PumpExit.EOF
            chunk = view[:n]

            futures = {executor.submit(sock.sendall, chunk): endpoint for endpoint, sock in destinations}
            for future in as_completed(futures):
                exc = future.exception()
                if exc is not None and not stop.is_set():
                    log.warn(f"{direction}: write to {futures[future]} failed - {exc}")

            log.data(direction, chunk)
    except Exception as e:
        return _classify(e, direction, stop, log)

    return PumpExit.CANCELLED
