"""Shared utility functions."""

import logging
import sys
import urllib.request

from rich.console import Console
from rich.logging import RichHandler

logger = logging.getLogger("pgvm")

CHECKIP_URL = "https://checkip.amazonaws.com"


def setup_logging(level: int | str = logging.INFO) -> None:
    """Set up logging with Rich handler to stderr."""
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    rich_handler = RichHandler(
        console=Console(stderr=True),
        log_time_format="[%X]",
        show_path=False,
        markup=True,
    )
    rich_handler.setLevel(level)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        handler.close()
        root_logger.removeHandler(handler)
    root_logger.addHandler(rich_handler)

    for name, lvl in [
        ("boto3", logging.INFO),
        ("botocore", logging.WARNING),
        ("urllib3", logging.WARNING),
    ]:
        lg = logging.getLogger(name)
        for h in lg.handlers[:]:
            lg.removeHandler(h)
        lg.setLevel(lvl)
        lg.propagate = True


def log(msg: str) -> None:
    """Log info message."""
    logger.info(msg)


def warn(msg: str) -> None:
    """Log warning message."""
    logger.warning(msg)


def error(msg: str, code: int = 1) -> None:
    """Log error message and exit."""
    logger.error(msg)
    sys.exit(code)


def get_my_ip(timeout: float = 5) -> str | None:
    """Get the current public IP address for ingress restriction.

    :param timeout: Request timeout in seconds
    :return: Public IP address string, or None if detection fails
    """
    try:
        with urllib.request.urlopen(CHECKIP_URL, timeout=timeout) as response:
            ip = response.read().decode("utf8").strip()
    except OSError as e:
        logger.debug(f"Public IP lookup failed: {e}")
        return None
    return ip or None
