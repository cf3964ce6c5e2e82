"""
Configuration resolution: command-line arguments, settings file and
interactive prompts, in that order of priority.
"""

import ipaddress
import json
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from rich.prompt import Confirm, Prompt
from rich.table import Table

from . import constants
from .display import console
from .logger import Log
from .model import ProxyConfiguration, RemoteEndpoint, SettingsFile, is_port


class ConfigurationError(ValueError):
    pass


# ========== Value parsers ==========

def parse_int(value: str) -> int:
    return int(value.strip())


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("true", "false"):
        return lowered == "true"
    raise ValueError(f"Not a boolean: {value}")


def parse_address(value: str) -> str:
    return str(ipaddress.ip_address(value.strip()))


def parse_endpoint_list(value: str) -> List[Tuple[str, Optional[int]]]:
    """
    Parse ``ip[:port][,ip[:port]...]``. Entries without a port keep None
    and pick up the ``port`` option later.
    """
    entries = []
    for item in value.split(","):
        item = item.strip()
        if not item:
            continue
        try:
            endpoint = RemoteEndpoint.parse(item)
            entries.append((endpoint.address, endpoint.port))
        except ValueError:
            entries.append((parse_address(item.strip("[]")), None))
    if not entries:
        raise ValueError("empty endpoint list")
    return entries


# ========== Option schema ==========

@dataclass(frozen=True)
class OptionSpec:
    name: str
    target: str
    parse: Callable[[str], Any]
    valid: Callable[[Any], bool]
    error: str
    help: str


OPTIONS: Dict[str, OptionSpec] = {
    spec.name: spec
    for spec in (
        OptionSpec(
            constants.ENDPOINT, "endpoints", parse_endpoint_list, bool,
            "Invalid remote IP address format: {0}",
            "IP address of the target modem, or a comma separated list of ip[:port] for fan-out",
        ),
        OptionSpec(
            constants.PORT, "remote_port", parse_int, is_port,
            "Remote port must be between 1 and 65535: {0}",
            "Port of the modem to forward traffic to",
        ),
        OptionSpec(
            constants.LOCAL_PORT, "local_port", parse_int, is_port,
            "Local port must be between 1 and 65535: {0}",
            f"(Optional) Local port to listen on (default: {constants.DEFAULT_LOCAL_PORT})",
        ),
        OptionSpec(
            constants.BUFFER_SIZE, "buffer_size", parse_int, lambda v: v > 0,
            "Buffer size must be a positive integer: {0}",
            f"(Optional) Buffer size for data transmission (default: {constants.DEFAULT_BUFFER_SIZE})",
        ),
        OptionSpec(
            constants.TIMEOUT, "timeout", parse_int, lambda v: v >= 0,
            "Timeout must be a non-negative integer: {0}",
            f"(Optional) Timeout in seconds, 0 disables it (default: {constants.DEFAULT_TIMEOUT})",
        ),
        OptionSpec(
            constants.ENABLE_FILE_LOGGING, "enable_file_logging", parse_bool, lambda v: True,
            "EnableFileLogging must be true or false: {0}",
            f"(Optional) Enable file logging (default: {str(constants.DEFAULT_ENABLE_FILE_LOGGING).lower()})",
        ),
        OptionSpec(
            constants.SEPARATE_DATA_LOGS, "separate_data_logs", parse_bool, lambda v: True,
            "SeparateDataLogs must be true or false: {0}",
            f"(Optional) Separate data logs (default: {str(constants.DEFAULT_SEPARATE_DATA_LOGS).lower()})",
        ),
        OptionSpec(
            constants.LOG_DATA_PAYLOAD, "log_data_payload", parse_bool, lambda v: True,
            "LogDataPayload must be true or false: {0}",
            f"(Optional) Log data payload (default: {str(constants.DEFAULT_LOG_DATA_PAYLOAD).lower()})",
        ),
    )
}


@dataclass
class ConfigDraft:
    """Mutable configuration while sources are being merged."""

    endpoints: List[Tuple[str, Optional[int]]] = field(default_factory=list)
    remote_port: Optional[int] = None
    local_port: int = constants.DEFAULT_LOCAL_PORT
    buffer_size: int = constants.DEFAULT_BUFFER_SIZE
    timeout: int = constants.DEFAULT_TIMEOUT
    enable_file_logging: bool = constants.DEFAULT_ENABLE_FILE_LOGGING
    separate_data_logs: bool = constants.DEFAULT_SEPARATE_DATA_LOGS
    log_data_payload: bool = constants.DEFAULT_LOG_DATA_PAYLOAD

    @property
    def missing_port(self) -> bool:
        return self.remote_port is None and any(port is None for _, port in self.endpoints)

    @property
    def is_complete(self) -> bool:
        return bool(self.endpoints) and not self.missing_port

    def resolved_endpoints(self) -> List[RemoteEndpoint]:
        resolved = []
        for address, port in self.endpoints:
            port = port if port is not None else self.remote_port
            if port is not None:
                resolved.append(RemoteEndpoint(address, port))
        return resolved

    def build(self) -> ProxyConfiguration:
        try:
            return ProxyConfiguration(
                remote_endpoints=self.resolved_endpoints(),
                local_port=self.local_port,
                buffer_size=self.buffer_size,
                timeout=self.timeout,
                enable_file_logging=self.enable_file_logging,
                separate_data_logs=self.separate_data_logs,
                log_data_payload=self.log_data_payload,
            )
        except ValueError as e:
            raise ConfigurationError(str(e)) from e


# ========== Command line ==========

def apply_option(draft: ConfigDraft, name: str, value: str, log: Log) -> bool:
    """
    Set one ``name=value`` option on ``draft``.

    Returns:
        True when the value was parsed and applied
    """
    spec = OPTIONS[name]
    try:
        parsed = spec.parse(value)
        ok = spec.valid(parsed)
    except ValueError:
        ok = False

    if not ok:
        log.warn(f"Warning: {spec.error.format(value)}")
        return False

    setattr(draft, spec.target, parsed)
    return True


def _try_port(value: str) -> Optional[int]:
    try:
        port = parse_int(value)
    except ValueError:
        return None
    return port if is_port(port) else None


def _try_address(value: str) -> Optional[str]:
    try:
        return parse_address(value)
    except ValueError:
        return None


def parse_arguments(args: Sequence[str], draft: ConfigDraft, log: Log):
    """Apply command-line tokens, named (``name=value``) or legacy positional."""
    # legacy format: tcs <ip> <port>
    if len(args) >= 2 and "=" not in args[0] and "=" not in args[1]:
        address = _try_address(args[0])
        if address is not None:
            draft.endpoints = [(address, None)]
        port = _try_port(args[1])
        if port is not None:
            draft.remote_port = port
        return

    for arg in args:
        name, sep, value = arg.partition("=")
        name = name.strip().lower()

        if sep and name in OPTIONS:
            apply_option(draft, name, value, log)
            continue

        if not sep:
            address = _try_address(arg)
            if not draft.endpoints and address is not None:
                draft.endpoints = [(address, None)]
                continue
            port = _try_port(arg)
            if draft.remote_port is None and port is not None:
                draft.remote_port = port
                continue

        log.warn(f"Warning: Unrecognized parameter: {arg}")


# ========== Settings file ==========

def load_settings_file(path: str, draft: ConfigDraft, log: Log) -> bool:
    """
    Merge ``path`` into ``draft``. Out-of-range values are ignored.

    Returns:
        True when the file was read
    """
    if not os.path.exists(path):
        log.info(f"Settings file not found: {path}")
        return False

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
    except (OSError, ValueError) as e:
        log.warn(f"Error reading settings file: {e}")
        return False

    if not isinstance(raw, dict):
        log.warn("Settings file is empty or invalid")
        return False

    settings = SettingsFile.from_dict(raw)

    if settings.endpoints:
        entries = []
        for text in settings.endpoints:
            try:
                endpoint = RemoteEndpoint.parse(str(text))
            except ValueError:
                log.warn(f"Ignoring invalid endpoint in settings file: {text}")
                continue
            entries.append((endpoint.address, endpoint.port))
        if entries:
            draft.endpoints = entries
    elif settings.endpoint:
        address = _try_address(str(settings.endpoint))
        if address is not None:
            draft.endpoints = [(address, None)]

    if isinstance(settings.port, int) and is_port(settings.port):
        draft.remote_port = settings.port
    if isinstance(settings.localPort, int) and is_port(settings.localPort):
        draft.local_port = settings.localPort
    if isinstance(settings.bufferSize, int) and settings.bufferSize > 0:
        draft.buffer_size = settings.bufferSize
    if isinstance(settings.timeout, int) and settings.timeout >= 0:
        draft.timeout = settings.timeout
    if isinstance(settings.enableFileLogging, bool):
        draft.enable_file_logging = settings.enableFileLogging
    if isinstance(settings.separateDataLogs, bool):
        draft.separate_data_logs = settings.separateDataLogs
    if isinstance(settings.logDataPayload, bool):
        draft.log_data_payload = settings.logDataPayload

    log.info(f"Configuration loaded from settings file: {path}")
    return True


def save_settings_file(config: ProxyConfiguration, path: str, log: Log) -> bool:
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(SettingsFile.from_config(config).to_dict(), f, indent=2)
    except OSError as e:
        log.error(f"Error saving settings file: {e}")
        return False
    log.info(f"Configuration saved to: {path}")
    return True


# ========== Prompts ==========

def _show_current(draft: ConfigDraft):
    table = Table(title="Current Configuration", show_header=False, box=None)
    table.add_column(style="bold")
    table.add_column()
    addresses = ", ".join(a if p is None else str(RemoteEndpoint(a, p)) for a, p in draft.endpoints)
    table.add_row("Remote Endpoint(s):", addresses or "-")
    table.add_row("Remote Port:", str(draft.remote_port or "-"))
    table.add_row("Local Port:", f"{draft.local_port} (default: {constants.DEFAULT_LOCAL_PORT})")
    table.add_row("Buffer Size:", f"{draft.buffer_size} bytes (default: {constants.DEFAULT_BUFFER_SIZE})")
    table.add_row("Timeout:", f"{draft.timeout} seconds (default: {constants.DEFAULT_TIMEOUT})")
    table.add_row("File Logging:", "Enabled" if draft.enable_file_logging else "Disabled")
    if draft.enable_file_logging:
        table.add_row("Separate Data Logs:", "Enabled" if draft.separate_data_logs else "Disabled")
        table.add_row("Log Data Payload:", "Enabled" if draft.log_data_payload else "Disabled")
    console.print(table)


def _ask_address() -> str:
    while True:
        value = Prompt.ask("Enter remote IP address", default="", show_default=False)
        if not value.strip():
            console.print("Remote IP address is required.")
            continue
        address = _try_address(value)
        if address is not None:
            return address
        console.print("Invalid IP address format. Please try again.")


def _ask_port() -> int:
    while True:
        value = Prompt.ask("Enter remote port", default="", show_default=False)
        if not value.strip():
            console.print("Remote port is required.")
            continue
        port = _try_port(value)
        if port is not None:
            return port
        console.print("Invalid port. Port must be between 1 and 65535.")


def prompt_for_missing_values(draft: ConfigDraft, settings_path: str, log: Log):
    """Ask for whatever is still needed to reach at least one endpoint."""
    _show_current(draft)
    changed = False

    if draft.is_complete:
        if Confirm.ask("Would you like to use it with a new remote point?", default=False):
            draft.endpoints = []
            draft.remote_port = None

    if not draft.endpoints:
        draft.endpoints.append((_ask_address(), None))
        changed = True

    if draft.missing_port:
        draft.remote_port = _ask_port()
        changed = True

    if changed:
        while Confirm.ask("Add another remote endpoint for fan-out?", default=False):
            draft.endpoints.append((_ask_address(), _ask_port()))

    if not changed:
        return

    if os.path.exists(settings_path):
        question = "Remote point has changed. Would you like to update the settings file with current configuration?"
    else:
        question = "Save this configuration to settings file?"

    if Confirm.ask(question, default=False):
        save_settings_file(draft.build(), settings_path, log)


def load_configuration(
    args: Sequence[str],
    settings_path: str = constants.DEFAULT_SETTINGS_FILE,
    interactive: bool = True,
    log: Optional[Log] = None,
) -> ProxyConfiguration:
    """
    Resolve the configuration from every source.

    Args:
        args: ``name=value`` tokens or the legacy ``<ip> <port>`` pair
        settings_path: JSON settings file, read only when ``args`` is empty
        interactive: Prompt for missing values on the console
        log: Sink for warnings about rejected values

    Returns:
        The resolved configuration. Its endpoint list may be empty when
        prompting is disabled and no source provided one.
    """
    log = log or Log()
    draft = ConfigDraft()

    if not args:
        load_settings_file(settings_path, draft, log)
    else:
        parse_arguments(args, draft, log)

    if interactive and (not args or not draft.is_complete):
        prompt_for_missing_values(draft, settings_path, log)
    elif draft.missing_port:
        log.warn("Warning: no remote port given for " + ", ".join(a for a, p in draft.endpoints if p is None))

    return draft.build()


def usage_epilog() -> str:
    lines = ["parameters:"]
    for spec in OPTIONS.values():
        lines.append(f"  {spec.name}=<value>".ljust(28) + spec.help)
    lines += [
        "",
        "example:",
        "  tcs endpoint=192.168.1.45 port=4545 localport=1209 timeout=60 buffer=16384",
        "  tcs endpoint=10.0.0.5:1000,10.0.0.6:2000 localport=1209",
        "",
        "configuration sources (in priority order):",
        "  1. Command-line arguments (highest priority)",
        f"  2. Settings file ({constants.DEFAULT_SETTINGS_FILE} in the current directory)",
        "  3. Console input prompts (if required parameters are missing)",
        "",
        "also supports legacy format:",
        "  tcs <RemoteIPAddress> <RemotePort>",
    ]
    return "\n".join(lines)
