"""
Process-wide logging for the engine, the scheduler and the CLI.

Every handler carries a filter that masks the Polygon ``apiKey`` query
parameter, because httpx and error messages include full request URLs.
An optional rotating file keeps scheduler runs inspectable after the
console is gone.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUPS = 3

QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler", "urllib3", "mlflow")

_API_KEY_PATTERN = re.compile(r"(apiKey=)[^&\s'\"]+", re.IGNORECASE)


def redact(text: str) -> str:
    """Mask API keys embedded in URLs."""
    return _API_KEY_PATTERN.sub(r"\1***", text)


class RedactingFilter(logging.Filter):
    """Rewrites records so secrets never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = ()
        return True


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """Configure logging for the process.

    Args:
        level: The log level string (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path of a size-rotated log file written next to
            the console stream.
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(
            RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RedactingFilter())

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        handlers=handlers,
        force=True,
    )

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
