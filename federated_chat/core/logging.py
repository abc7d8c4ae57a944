"""
Logging utilities for the FastAPI application and the callback Lambda.

Provides a consistent logging format and configuration.
"""

import logging
import sys

_NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "httpx", "httpcore")


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )
    # SDK wire logging at DEBUG would print request bodies carrying tokens.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.INFO, logging.getLogger().level))


__all__ = ["configure_logging"]
