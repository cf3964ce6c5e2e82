"""Relay core: connector, pumps, sessions and the accept loop."""

from .connector import close_quietly, connect_all, connect_endpoint, open_connection
from .pumps import PumpExit, fanout_pump, relay_pump
from .server import ProxyServer, ProxyServerError, run_proxy_server
from .session import ConnectionSession, SessionState

__all__ = [
    "ConnectionSession",
    "ProxyServer",
    "ProxyServerError",
    "PumpExit",
    "SessionState",
    "close_quietly",
    "connect_all",
    "connect_endpoint",
    "fanout_pump",
    "open_connection",
    "relay_pump",
    "run_proxy_server",
]
