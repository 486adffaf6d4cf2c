"""
Centralized logging for the workshop app backend.

Usage:
    from workshop.shared.logger import get_logger

    logger = get_logger(__name__)
    logger.info("Server starting on port %d", port)
    logger.warning("Failed to build app in %s: %s", path, err)
"""

import logging
import os
import sys

_configured = False


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for the workshop backend.

    Call once at startup (main.py). Subsequent calls are no-ops.
    The level defaults to ``KCDSHOP_LOG_LEVEL`` or ``INFO``.
    """
    global _configured
    if _configured:
        return

    level = level or os.environ.get("KCDSHOP_LOG_LEVEL", "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger scoped to the workshop namespace.

    Args:
        name: Module name (typically ``__name__``).
    """
    return logging.getLogger(name)
