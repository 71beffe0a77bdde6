"""Logging helpers for the Ordering domain.

Handlers and renderers are configured once by the submissions domain (both
contexts run in the same process); ordering only names its loggers and
keeps the framework quiet.
"""

import logging

import structlog

# Suppress noisy library loggers
logging.getLogger("protean").setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
