import os
from typing import Optional

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .model import ProxyConfiguration

console = Console()


def show_welcome():
    console.print(
        Panel(
            "[bold]Transparent TCP Proxy[/bold] - Virtual Modem Relay",
            border_style="cyan",
            box=box.ROUNDED,
        )
    )


def build_start_info(config: ProxyConfiguration, listen_port: Optional[int] = None) -> Panel:
    """Panel with the active configuration, shown once the listener is up."""
    port = listen_port or config.local_port

    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column()
    table.add_row("Listening on:", f"localhost:{port}")
    for idx, endpoint in enumerate(config.remote_endpoints):
        table.add_row("Forwarding to:" if idx == 0 else "", str(endpoint))
    table.add_row("Buffer Size:", f"{config.buffer_size} bytes")
    table.add_row("Timeout:", f"{config.timeout} seconds" if config.timeout else "disabled")
    table.add_row("File Logging:", "Enabled" if config.enable_file_logging else "Disabled")

    if config.enable_file_logging:
        table.add_row("Log File:", os.path.abspath(config.log_file_path))
        if config.separate_data_logs:
            table.add_row("Data Log File:", os.path.abspath(config.data_log_file_path))
        table.add_row("Log Data Payload:", "Enabled" if config.log_data_payload else "Disabled")

    return Panel(
        table,
        title="🌐 [bold cyan]Transparent Communication Service Started[/bold cyan]",
        subtitle="Press Ctrl+C to exit",
        border_style="green",
        padding=(1, 2),
    )


def show_start_info(config: ProxyConfiguration, listen_port: Optional[int] = None):
    console.print(build_start_info(config, listen_port))
