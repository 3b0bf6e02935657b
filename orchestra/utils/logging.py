"""Logging configuration for ORCHESTRA.

Logging is controlled by environment variables so that the engine stays
silent when embedded in another application.

Environment Variables:
    ORCHESTRA_LOG: Set to "true" to enable logging (default: "false")
    ORCHESTRA_LOG_FILE: Path to log file (default: ~/.orchestra.log)
    ORCHESTRA_LOG_LEVEL: Level name for the file handler (default: "INFO")
"""

import logging
import os
from pathlib import Path

# Environment variable configuration
LOG_ENABLED = os.environ.get("ORCHESTRA_LOG", "false").lower() == "true"
LOG_FILE = Path(os.environ.get("ORCHESTRA_LOG_FILE", str(Path.home() / ".orchestra.log")))
LOG_LEVEL = os.environ.get("ORCHESTRA_LOG_LEVEL", "INFO").upper()

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ProviderContextFormatter(logging.Formatter):
    """Formatter that tags records carrying provider context.

    Provider code logs with ``extra={"provider": ..., "provider_id": ...}``.
    Records that carry those attributes get a ``[Jira:work]`` style tag so
    interleaved output from concurrent fetches stays attributable.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        provider = getattr(record, "provider", None)
        provider_id = getattr(record, "provider_id", None)
        if provider is None and provider_id is None:
            return message
        tag = ":".join(str(part) for part in (provider, provider_id) if part is not None)
        return f"{message} [{tag}]"


# Module-level logger instance
_logger: logging.Logger | None = None


def setup_logging() -> logging.Logger:
    """Configure the package logger based on environment variables.

    Creates a logger that writes to the configured log file when
    ORCHESTRA_LOG is set to "true". Otherwise, uses a NullHandler
    to suppress all log output. Child loggers created with
    ``logging.getLogger(__name__)`` inherit this configuration.

    Returns:
        Configured logger instance
    """
    global _logger

    if _logger is not None:
        return _logger

    logger = logging.getLogger("orchestra")

    # Clear any existing handlers
    logger.handlers.clear()

    if LOG_ENABLED:
        LOG_FILE.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.FileHandler(LOG_FILE)
        handler.setFormatter(ProviderContextFormatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    else:
        logger.addHandler(logging.NullHandler())

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Get the configured logger instance.

    Returns:
        The configured logger, creating it if necessary
    """
    if _logger is None:
        return setup_logging()
    return _logger


def log_message(message: str) -> None:
    """Log a message if logging is enabled.

    Args:
        message: Message to log
    """
    get_logger().info(message)


__all__ = [
    "LOG_ENABLED",
    "LOG_FILE",
    "ProviderContextFormatter",
    "setup_logging",
    "get_logger",
    "log_message",
]
