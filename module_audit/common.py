"""
Common utilities shared across module_audit modules.
"""

from __future__ import annotations

import os

from .logging_config import get_logger


def debug_enabled() -> bool:
    """Whether MODULE_AUDIT_DEBUG forces verbose logging."""
    return os.environ.get("MODULE_AUDIT_DEBUG", "0") == "1"


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log a verbose message.

    Emitted at INFO level when verbose mode is on or MODULE_AUDIT_DEBUG=1,
    otherwise at DEBUG so it still reaches a configured log file.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    logger = get_logger()
    if verbose or debug_enabled():
        logger.info(msg)
    else:
        logger.debug(msg)
