import argparse
import logging
import signal
import sys
import threading
from typing import Optional, Sequence

from . import __version__, constants
from .config import ConfigurationError, load_configuration, usage_epilog
from .core import ProxyServerError, run_proxy_server
from .display import console, show_start_info, show_welcome
from .logger import Log, configure_logging, setup_console_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tcs",
        description="Transparent TCP proxy: relays a local port to one or more remote endpoints.",
        epilog=usage_epilog(),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("params", nargs="*", metavar="name=value", help="Configuration parameters (see below)")
    parser.add_argument(
        "--settings",
        default=constants.DEFAULT_SETTINGS_FILE,
        help=f"Settings file (default: {constants.DEFAULT_SETTINGS_FILE})",
    )
    parser.add_argument("--no-prompt", action="store_true", help="Never prompt for missing values")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def install_signal_handlers(cancel: threading.Event, log: Log):
    def shutdown(signum=None, frame=None):
        if not cancel.is_set():
            log.info("Shutting down...")
        cancel.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    level = logging.DEBUG if args.verbose else logging.INFO

    show_welcome()
    setup_console_logging(level)
    cancel = threading.Event()

    try:
        config = load_configuration(args.params, args.settings, interactive=not args.no_prompt, log=Log())
        log = configure_logging(config, level=level)
        install_signal_handlers(cancel, log)
        run_proxy_server(
            config,
            cancel,
            log,
            on_started=lambda server: show_start_info(config, server.address[1]),
        )
    except (ConfigurationError, ProxyServerError) as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        parser.print_help()
        return 1
    except (KeyboardInterrupt, EOFError):
        console.print("\nAborted.")
        return 130

    return 0


if __name__ == "__main__":
    sys.exit(main())
