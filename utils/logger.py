"""Logging setup for the application."""

import logging
import sys

# Third-party loggers that are too chatty at DEBUG for a long-running poller
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack")


def setup_logger(log_level: str = "INFO", name: str = "pr_monitor") -> logging.Logger:
    """
    Set up and configure application logger.

    Creates a logger with a simple, readable format suitable for CLI output
    and keeps HTTP client libraries at WARNING so per-request noise does not
    drown out poll cycle logs.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        name: Logger name (default: pr_monitor)

    Returns:
        logging.Logger: Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(
        level=numeric_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        stream=sys.stdout,
        force=True,  # Override any existing configuration
    )

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))

    logger = logging.getLogger(name)
    logger.setLevel(numeric_level)

    return logger
