"""Logging configuration for the launcher.

Console output plus a rotating log file in the state directory.
"""

import logging
import logging.handlers
import sys
from pathlib import Path

# Detailed format for the log file
_FILE_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | "
    "%(module)s.%(funcName)s:%(lineno)d | %(message)s"
)

# Simplified format for console
_CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

LOG_FILE_NAME = "launcher.log"
MAX_FILE_BYTES = 1024 * 1024
BACKUP_COUNT = 3

# Third-party loggers that are too chatty at INFO
_QUIET_LOGGERS = ("httpx", "httpcore", "opentelemetry.exporter.otlp.proto.grpc")


def configure_logging(verbose: bool = False, log_dir: Path | None = None) -> None:
    """Configure console and file logging.

    Args:
        verbose: Show DEBUG output (including every engine command) on console
        log_dir: Directory for launcher.log; console only if None
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Clear existing handlers to avoid duplicates if reconfigured
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / LOG_FILE_NAME,
            maxBytes=MAX_FILE_BYTES,
            backupCount=BACKUP_COUNT,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_FILE_FORMAT))
        root_logger.addHandler(file_handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.getLogger("opentelemetry.exporter.otlp.proto.grpc").setLevel(logging.ERROR)

    logging.getLogger("launcher").debug(
        f"Logging initialized (verbose={verbose}, log_dir={log_dir})"
    )
