#!/usr/bin/env python3
"""
module-audit - Installed package audit and upgrade.

Lists installed packages, compares them with the latest stable registry
release, and upgrades outdated ones after confirmation. Upgrades rejected
by a publisher/trust check can be retried with that check skipped.

Usage:
    audit.py                        # Audit PowerShell Gallery modules, offer upgrades
    audit.py --backend pip          # Same for the current Python environment
    audit.py --report-only          # Comparison table only
    audit.py --json                 # Comparison records as JSON
    audit.py Az.Accounts Pester     # Restrict to specific packages
"""

from __future__ import annotations

import argparse
import sys
from typing import Sequence

from module_audit import __version__
from module_audit.backends import InventoryError, PackageBackend, get_backend
from module_audit.config import BACKENDS, Config, load_config, validate_config
from module_audit.inventory import filter_installed, resolve_packages
from module_audit.logging_config import get_logger, setup_logging
from module_audit.prompts import confirm
from module_audit.render import records_to_json
from module_audit.upgrade import run_update_workflow


def cmd_json(backend: PackageBackend, config: Config, args: argparse.Namespace) -> int:
    """Print comparison records as JSON, never upgrading anything."""
    logger = get_logger()
    try:
        installed = backend.list_installed()
    except InventoryError as e:
        logger.error(f"Could not retrieve installed packages from {backend.display_name}: {e.message}")
        return 1

    installed = filter_installed(installed, args.packages, config.exclude)
    records = resolve_packages(installed, backend, verbose=args.verbose)
    print(records_to_json(records))
    return 0


def cmd_update(backend: PackageBackend, config: Config, args: argparse.Namespace) -> int:
    """Interactive audit and upgrade."""
    print("=" * 80, file=sys.stderr)
    print(f"module-audit {__version__} - {backend.display_name}", file=sys.stderr)
    print("=" * 80, file=sys.stderr)

    result = run_update_workflow(
        backend,
        confirm=confirm,
        selected=args.packages,
        exclude=config.exclude,
        report_only=args.report_only,
        show_progress=not args.quiet,
        verbose=args.verbose,
    )
    return result.exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="module-audit",
        description="Audit installed packages against their registry and upgrade outdated ones",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument(
        "--backend", "-b",
        choices=BACKENDS,
        help="Package ecosystem to audit (default: from config, else psgallery)",
    )
    parser.add_argument(
        "--config", "-c",
        help="Path to a YAML or JSON configuration file",
    )
    parser.add_argument(
        "--report-only",
        action="store_true",
        help="Show the comparison report without offering upgrades",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print comparison records as JSON (implies --report-only)",
    )
    parser.add_argument(
        "--log-file",
        help="Write a DEBUG log to this file",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output",
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Only log warnings and errors, no progress lines",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "packages",
        nargs="*",
        help="Specific packages to operate on",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, verbose=args.verbose)
    except ValueError as e:
        print(f"✗ {e}", file=sys.stderr)
        return 2

    logger = setup_logging(
        level=config.logging.level,
        log_file=args.log_file or config.logging.file,
        verbose=args.verbose,
        quiet=args.quiet,
    )
    for warning in validate_config(config):
        logger.warning(f"Config: {warning}")

    backend = get_backend(args.backend or config.backend, config, verbose=args.verbose)
    if not backend.is_available():
        logger.error(f"{backend.display_name} is not available: {backend.describe_tool()} could not be run")
        return 1

    try:
        if args.json:
            return cmd_json(backend, config, args)
        return cmd_update(backend, config, args)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
