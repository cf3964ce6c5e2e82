"""
Logging sink for the relay.

Events go to the ``tcs`` logger, chunk dumps to ``tcs.data``. Every
``logging.Handler`` serializes its own writes, so concurrent sessions
writing to the same console or file never interleave within a record.
"""

import logging
import os
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional, Union

from rich.logging import RichHandler

from .model import ProxyConfiguration

LOGGER_NAME = "tcs"
DATA_LOGGER_NAME = "tcs.data"

FILE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 3

BYTES_PER_LINE = 16


def format_chunk(direction: str, data: Union[bytes, bytearray, memoryview], log_payload: bool = True) -> str:
    """
    Render one relayed chunk as a hex dump.

    Args:
        direction: Label such as ``Client => Remote``
        data: The bytes that were relayed
        log_payload: When False only the header line is rendered

    Returns:
        Multi-line string, 16 uppercase hex bytes per line
    """
    data = bytes(data)
    header = f"{direction} [{len(data)} bytes]:"
    if not log_payload:
        return f"{header} <payload logging disabled>"

    indent = " " * (len(header) + 1)
    lines = []
    for offset in range(0, len(data), BYTES_PER_LINE):
        row = data[offset:offset + BYTES_PER_LINE]
        lines.append(" ".join(f"{b:02X}" for b in row))

    return f"{header} " + f"\n{indent}".join(lines)


class Log:
    """
    Thread-safe sink handed to the relay core.

    Attributes:
        logger: Event logger
        data_logger: Logger receiving chunk dumps
        log_payload: Whether chunk dumps include the hex payload
    """

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        data_logger: Optional[logging.Logger] = None,
        log_payload: bool = True,
    ):
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.data_logger = data_logger or logging.getLogger(DATA_LOGGER_NAME)
        self.log_payload = log_payload

    def debug(self, msg: str):
        self.logger.debug(msg)

    def info(self, msg: str):
        self.logger.info(msg)

    def warn(self, msg: str):
        self.logger.warning(msg)

    def error(self, msg: str, exc: Optional[BaseException] = None):
        if exc is None:
            self.logger.error(msg)
        else:
            self.logger.error(f"{msg} - {exc}", exc_info=exc)

    def data(self, direction: str, chunk: Union[bytes, bytearray, memoryview]):
        if not self.data_logger.isEnabledFor(logging.INFO):
            return
        self.data_logger.info(format_chunk(direction, chunk, self.log_payload))


def _file_handler(path: str) -> RotatingFileHandler:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    handler = RotatingFileHandler(path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS, encoding="utf-8")
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def configure_logging(config: ProxyConfiguration, level: int = logging.INFO, console: bool = True) -> Log:
    """
    Attach console and file handlers according to ``config``.

    Calling it again replaces the handlers installed by the previous call.
    """
    logger = logging.getLogger(LOGGER_NAME)
    data_logger = logging.getLogger(DATA_LOGGER_NAME)

    for lg in (logger, data_logger):
        for handler in list(lg.handlers):
            lg.removeHandler(handler)
            handler.close()

    logger.setLevel(level)
    data_logger.setLevel(level)

    if console:
        logger.addHandler(RichHandler(show_path=False, markup=False, rich_tracebacks=True))

    if config.enable_file_logging:
        # tcs.data propagates, so chunk dumps always reach the main file too
        logger.addHandler(_file_handler(config.log_file_path))
        if config.separate_data_logs:
            data_logger.addHandler(_file_handler(config.data_log_file_path))

    log = Log(logger, data_logger, log_payload=config.log_data_payload)
    timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    log.info(f"=== Transparent Communication Service log started at {timestamp} ===")
    if config.enable_file_logging and config.separate_data_logs:
        data_logger.info(f"=== Transparent Communication Service data log started at {timestamp} ===")
    return log


def setup_console_logging(level: int = logging.INFO):
    """Console output for the time before the configuration is known."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        logger.addHandler(RichHandler(show_path=False, markup=False))
    logger.setLevel(level)
