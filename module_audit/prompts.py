"""
Interactive operator confirmation.
"""

from __future__ import annotations

import sys
from typing import Sequence, TextIO

from .inventory import PackageRecord


AFFIRMATIVE = ("y", "yes")


def confirm(message: str, stream: TextIO | None = None) -> bool:
    """
    Ask the operator a yes/no question.

    Only an explicit "y"/"yes" counts as consent. A non-interactive stdin,
    end of input or any other answer is a decline.

    Args:
        message: Prompt text
        stream: Input stream (defaults to sys.stdin)

    Returns:
        True if the operator confirmed, False otherwise
    """
    stream = stream or sys.stdin
    if not stream.isatty():
        return False

    print(message, end="", flush=True)
    try:
        response = stream.readline()
    except (OSError, KeyboardInterrupt):
        print()
        return False

    return response.strip().lower() in AFFIRMATIVE


def format_upgrade_prompt(candidates: Sequence[PackageRecord]) -> str:
    """Prompt for the initial upgrade phase."""
    majors = sum(1 for c in candidates if c.breaking_change)
    note = f" ({majors} major version jump(s))" if majors else ""
    return f"\nUpgrade {len(candidates)} package(s){note}? [y/N]: "


def format_retry_prompt(retry_set: Sequence[PackageRecord]) -> str:
    """Prompt for the publisher-check retry phase."""
    return (
        f"\n{len(retry_set)} package(s) failed the publisher/trust verification check.\n"
        "Retrying skips that verification. Only continue if you trust the new publisher.\n"
        "Retry with verification skipped? [y/N]: "
    )
