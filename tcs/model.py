import ipaddress
import os
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from . import constants


def is_port(value: int) -> bool:
    return 1 <= value <= 65535


@dataclass(frozen=True)
class RemoteEndpoint:
    """One forwarding destination, an IP literal and a TCP port."""

    address: str
    port: int

    def __str__(self) -> str:
        if ":" in self.address:
            return f"[{self.address}]:{self.port}"
        return f"{self.address}:{self.port}"

    @classmethod
    def parse(cls, text: str, default_port: Optional[int] = None) -> "RemoteEndpoint":
        """
        Parse ``ip``, ``ip:port`` or ``[ipv6]:port``.

        Args:
            text: Endpoint text
            default_port: Port used when ``text`` carries none

        Returns:
            The parsed endpoint

        Raises:
            ValueError: Malformed address or port out of range
        """
        text = text.strip()
        host, port = text, None

        if text.startswith("["):
            host, _, rest = text[1:].partition("]")
            if rest.startswith(":"):
                port = rest[1:]
        elif text.count(":") == 1:
            host, port = text.split(":")

        address = str(ipaddress.ip_address(host))

        if port is None or port == "":
            if default_port is None:
                raise ValueError(f"Missing port for endpoint {text}")
            port_number = default_port
        else:
            port_number = int(port)

        if not is_port(port_number):
            raise ValueError(f"Port must be between 1 and 65535: {port_number}")

        return cls(address, port_number)


@dataclass
class ProxyConfiguration:
    """
    Resolved relay settings. The relay core only ever reads it.

    Attributes:
        remote_endpoints: Forwarding destinations, in configured order
        local_port: Port the listener binds (0 picks a free one)
        buffer_size: Maximum bytes moved per read
        timeout: Connect/read/write timeout in seconds, 0 disables it
    """

    remote_endpoints: List[RemoteEndpoint] = field(default_factory=list)
    local_port: int = constants.DEFAULT_LOCAL_PORT
    buffer_size: int = constants.DEFAULT_BUFFER_SIZE
    timeout: int = constants.DEFAULT_TIMEOUT

    enable_file_logging: bool = constants.DEFAULT_ENABLE_FILE_LOGGING
    separate_data_logs: bool = constants.DEFAULT_SEPARATE_DATA_LOGS
    log_data_payload: bool = constants.DEFAULT_LOG_DATA_PAYLOAD

    def __post_init__(self):
        self.remote_endpoints = list(self.remote_endpoints)
        if self.buffer_size <= 0:
            raise ValueError(f"Buffer size must be a positive integer: {self.buffer_size}")
        if self.timeout < 0:
            raise ValueError(f"Timeout must be a non-negative integer: {self.timeout}")

    @property
    def socket_timeout(self) -> Optional[float]:
        return float(self.timeout) if self.timeout > 0 else None

    def _log_name(self, prefix: str) -> str:
        if len(self.remote_endpoints) > 1:
            return f"{prefix.replace('tcs', 'tcs_multi_endpoint')}.log"
        if not self.remote_endpoints:
            return f"{prefix}.log"
        first = self.remote_endpoints[0]
        safe_ip = first.address.replace(".", "-").replace(":", "-")
        return f"{prefix}_{safe_ip}_{first.port}.log"

    @property
    def log_file_path(self) -> str:
        return os.path.join(constants.LOGS_DIR, self._log_name("tcs"))

    @property
    def data_log_file_path(self) -> str:
        if not self.separate_data_logs:
            return self.log_file_path
        return os.path.join(constants.LOGS_DIR, self._log_name("tcs_data"))


@dataclass
class SettingsFile:
    """On-disk shape of ``tcs-settings.json``. Every field is optional."""

    endpoint: Optional[str] = None
    port: Optional[int] = None
    localPort: Optional[int] = None
    bufferSize: Optional[int] = None
    timeout: Optional[int] = None
    enableFileLogging: Optional[bool] = None
    separateDataLogs: Optional[bool] = None
    logDataPayload: Optional[bool] = None
    endpoints: Optional[List[str]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SettingsFile":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def from_config(cls, config: ProxyConfiguration) -> "SettingsFile":
        first = config.remote_endpoints[0] if config.remote_endpoints else None
        return cls(
            endpoint=first.address if first else None,
            port=first.port if first else None,
            localPort=config.local_port,
            bufferSize=config.buffer_size,
            timeout=config.timeout,
            enableFileLogging=config.enable_file_logging,
            separateDataLogs=config.separate_data_logs,
            logDataPayload=config.log_data_payload,
            endpoints=[str(ep) for ep in config.remote_endpoints] if len(config.remote_endpoints) > 1 else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}
