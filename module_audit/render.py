"""
Console output rendering and formatting.
"""

from __future__ import annotations

import json
import os
import sys
from typing import Sequence

from .inventory import PackageRecord
from .versions import PackageStatus


# Environment options
USE_EMOJI = os.environ.get("MODULE_AUDIT_EMOJI", "1") == "1"
USE_COLOR = os.environ.get("MODULE_AUDIT_COLOR", "1") == "1"

# ANSI color codes
GREEN = "\033[32m"
BOLD_GREEN = "\033[1;32m"
YELLOW = "\033[33m"
BLUE = "\033[34m"
RED = "\033[31m"
RESET = "\033[0m"

HEADERS = ("state", "package", "installed", "latest", "status")


def status_icon(status: PackageStatus) -> str:
    """Get status icon for a package record."""
    if not USE_EMOJI:
        return {
            PackageStatus.UP_TO_DATE: "✓",
            PackageStatus.UPDATE_AVAILABLE: "↑",
            PackageStatus.INSTALLED_NEWER: "+",
            PackageStatus.NOT_FOUND: "?",
        }.get(status, "x")

    return {
        PackageStatus.UP_TO_DATE: "✅",
        PackageStatus.UPDATE_AVAILABLE: "⬆",
        PackageStatus.INSTALLED_NEWER: "➕",
        PackageStatus.NOT_FOUND: "❓",
    }.get(status, "❌")


def colorize(text: str, color: str) -> str:
    """Apply color to text, or return it unchanged when colors are disabled."""
    if not USE_COLOR or not text:
        return text
    return f"{color}{text}{RESET}"


def _status_colors(status: PackageStatus) -> tuple[str, str]:
    if status == PackageStatus.UP_TO_DATE:
        return GREEN, GREEN
    if status == PackageStatus.UPDATE_AVAILABLE:
        return YELLOW, BOLD_GREEN
    if status == PackageStatus.INSTALLED_NEWER:
        return BOLD_GREEN, YELLOW
    if status == PackageStatus.ERROR_CHECKING:
        return RED, RED
    return BLUE, BLUE


def print_progress(index: int, total: int, name: str) -> None:
    """Progress line for the resolution loop."""
    print(f"# [{index}/{total}] Checking {name}...", file=sys.stderr, flush=True)


def render_table(records: Sequence[PackageRecord]) -> None:
    """Render package records as an aligned table on stdout.

    Columns are padded on the plain text, colors are applied afterwards so
    escape codes don't distort the widths.
    """
    rows = [
        (
            status_icon(r.status),
            r.name,
            r.installed_version,
            r.latest_version or "n/a",
            r.status.label,
        )
        for r in records
    ]
    widths = [len(h) for h in HEADERS]
    for row in rows:
        for i, cell in enumerate(row[1:], start=1):
            widths[i] = max(widths[i], len(cell))

    def line(cells: Sequence[str]) -> str:
        return "  ".join(cells).rstrip()

    print(line([HEADERS[0].ljust(5)] + [h.ljust(widths[i]) for i, h in enumerate(HEADERS) if i > 0]))
    print(line(["-" * 5] + ["-" * widths[i] for i in range(1, len(HEADERS))]))

    for record, row in zip(records, rows):
        inst_color, latest_color = _status_colors(record.status)
        icon, name, installed, latest, label = row
        print(line([
            icon.ljust(4),
            name.ljust(widths[1]),
            colorize(installed.ljust(widths[2]), inst_color),
            colorize(latest.ljust(widths[3]), latest_color),
            label,
        ]))


def print_summary(records: Sequence[PackageRecord]) -> None:
    """Print the one-line inventory summary to stderr."""
    counts = {status: 0 for status in PackageStatus}
    for record in records:
        counts[record.status] += 1

    parts = [
        f"{len(records)} packages",
        f"{counts[PackageStatus.UPDATE_AVAILABLE]} updates available",
        f"{counts[PackageStatus.UP_TO_DATE]} up to date",
    ]
    if counts[PackageStatus.INSTALLED_NEWER]:
        parts.append(f"{counts[PackageStatus.INSTALLED_NEWER]} newer than registry")
    if counts[PackageStatus.NOT_FOUND]:
        parts.append(f"{counts[PackageStatus.NOT_FOUND]} not found")
    if counts[PackageStatus.ERROR_CHECKING]:
        parts.append(f"{counts[PackageStatus.ERROR_CHECKING]} errors")

    print(f"\nSummary: {', '.join(parts)}", file=sys.stderr)


def render_candidates(title: str, records: Sequence[PackageRecord]) -> None:
    """List packages with their version jump."""
    print(f"\n{title}")
    for record in records:
        print(f"  • {record.name}: {record.version_jump_description()}")


def render_errors(records: Sequence[PackageRecord]) -> None:
    """List lookup errors so none of them stay silent."""
    failed = [r for r in records if r.status == PackageStatus.ERROR_CHECKING]
    if not failed:
        return
    print("\nLookup errors:", file=sys.stderr)
    for record in failed:
        print(f"  ✗ {record.name}: {record.detail}", file=sys.stderr)


def render_outcome(name: str, success: bool, detail: str | None = None, note: str = "") -> None:
    """Print the result of one upgrade attempt."""
    suffix = f" ({note})" if note else ""
    if success:
        print(f"  {colorize('✓', GREEN)} {name}: upgraded{suffix}")
    else:
        print(f"  {colorize('✗', RED)} {name}: {detail or 'failed'}{suffix}")


def records_to_json(records: Sequence[PackageRecord]) -> str:
    """Serialize records for --json output."""
    return json.dumps([r.to_dict() for r in records], indent=2, ensure_ascii=False)
