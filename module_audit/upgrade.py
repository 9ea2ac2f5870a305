"""
Upgrade orchestration with a publisher-check retry phase.

The workflow runs four sequential stages:

1. Inventory: list installed packages
2. Resolution: look up the latest stable version of each and classify it
3. Initial upgrade: after confirmation, upgrade every outdated package in
   force mode, collecting publisher/trust verification failures
4. Retry: after a second confirmation, retry those failures once with
   verification skipped

Every per-package failure is converted into an outcome value; only an
inventory failure ends a run early.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Callable, Sequence

from . import render
from .backends import InventoryError, UpgradeError
from .common import vlog
from .inventory import PackageRecord, filter_installed, resolve_packages
from .logging_config import get_logger
from .prompts import confirm as confirm_prompt
from .prompts import format_retry_prompt, format_upgrade_prompt
from .versions import PackageStatus

if TYPE_CHECKING:
    from .backends import PackageBackend


ConfirmCallback = Callable[[str], bool]

# FullyQualifiedErrorId fragments / error identifiers of verification failures
PUBLISHER_CHECK_ERROR_IDS = (
    "PublishersMismatch",
    "AuthenticodeIssuerMismatch",
    "ModuleIsNotCatalogSigned",
    "InvalidAuthenticodeSignature",
    "CERTIFICATE_VERIFY_FAILED",
)

# Message fragments of verification failures (compared case-insensitively)
PUBLISHER_CHECK_MARKERS = (
    "skippublishercheck",
    "authenticode",
    "publisher",
    "certificate verify failed",
    "certificate_verify_failed",
)


class UpgradeStatus(str, Enum):
    """Result of a single upgrade attempt."""

    SUCCESS = "success"
    FAILED_PUBLISHER_CHECK = "failed_publisher_check"
    FAILED_OTHER = "failed"


@dataclass(frozen=True)
class UpgradeOutcome:
    """
    Result of upgrading a single package.

    Attributes:
        record: Package that was upgraded
        status: Attempt result
        detail: Error message if failed
        skip_verification: Whether verification was bypassed for this attempt
        duration_seconds: Time taken by the attempt
    """
    record: PackageRecord
    status: UpgradeStatus
    detail: str | None = None
    skip_verification: bool = False
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return self.status == UpgradeStatus.SUCCESS

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.record.name,
            "from_version": self.record.installed_version,
            "to_version": self.record.latest_version,
            "status": self.status.value,
            "detail": self.detail,
            "skip_verification": self.skip_verification,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class UpdateRunResult:
    """
    Everything a workflow run produced.

    Attributes:
        records: Comparison records, inventory order
        candidates: Records with an update available
        outcomes: Initial upgrade outcomes
        retry_set: Records whose initial attempt failed the publisher check
        retry_outcomes: Outcomes of the verification-skipping retry
        upgrade_declined: Operator declined the initial upgrade
        retry_declined: Operator declined the retry
        exit_code: Process exit code
        duration_seconds: Total run time
    """
    records: list[PackageRecord] = field(default_factory=list)
    candidates: list[PackageRecord] = field(default_factory=list)
    outcomes: list[UpgradeOutcome] = field(default_factory=list)
    retry_set: list[PackageRecord] = field(default_factory=list)
    retry_outcomes: list[UpgradeOutcome] = field(default_factory=list)
    upgrade_declined: bool = False
    retry_declined: bool = False
    exit_code: int = 0
    duration_seconds: float = 0.0

    @property
    def upgraded(self) -> list[UpgradeOutcome]:
        return [o for o in self.outcomes + self.retry_outcomes if o.success]

    @property
    def failures(self) -> list[UpgradeOutcome]:
        """Terminal failures: initial non-publisher failures and failed retries."""
        initial = [o for o in self.outcomes if o.status == UpgradeStatus.FAILED_OTHER]
        retried = [o for o in self.retry_outcomes if not o.success]
        return initial + retried

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "records": [r.to_dict() for r in self.records],
            "outcomes": [o.to_dict() for o in self.outcomes],
            "retry_set": [r.name for r in self.retry_set],
            "retry_outcomes": [o.to_dict() for o in self.retry_outcomes],
            "upgrade_declined": self.upgrade_declined,
            "retry_declined": self.retry_declined,
            "exit_code": self.exit_code,
            "duration_seconds": self.duration_seconds,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        not_retried = len(self.retry_set) if self.retry_declined else 0
        return f"""
Upgrade Summary:
  ✅ Upgraded: {len(self.upgraded)}
  ❌ Failed: {len(self.failures)}
  🔐 Publisher check retries: {len(self.retry_outcomes)}
  ⏭️  Not retried: {not_retried}
  ⏱️  Duration: {self.duration_seconds:.1f}s
"""


def is_publisher_check_failure(error: BaseException) -> bool:
    """
    Whether an upgrade error was caused by publisher/trust verification.

    Matches the error identifier against PUBLISHER_CHECK_ERROR_IDS and the
    message and captured stderr against PUBLISHER_CHECK_MARKERS. Only
    UpgradeError values can qualify.
    """
    if not isinstance(error, UpgradeError):
        return False

    if error.error_id and any(known in error.error_id for known in PUBLISHER_CHECK_ERROR_IDS):
        return True

    text = f"{error.message}\n{error.stderr}".lower()
    return any(marker in text for marker in PUBLISHER_CHECK_MARKERS)


def get_upgrade_candidates(records: Sequence[PackageRecord]) -> list[PackageRecord]:
    """Records that have a newer stable release, in inventory order."""
    return [r for r in records if r.status == PackageStatus.UPDATE_AVAILABLE]


def upgrade_package(
    record: PackageRecord,
    backend: PackageBackend,
    skip_verification: bool = False,
    verbose: bool = False,
) -> UpgradeOutcome:
    """
    Attempt one upgrade in force mode.

    Never raises: errors are classified into the outcome.

    Args:
        record: Package to upgrade
        backend: Backend performing the upgrade
        skip_verification: Bypass publisher/trust verification
        verbose: Enable verbose logging

    Returns:
        UpgradeOutcome for the attempt
    """
    logger = get_logger()
    start_time = time.time()
    vlog(
        f"Upgrading {record.name} {record.version_jump_description()}"
        f"{' (verification skipped)' if skip_verification else ''}",
        verbose,
    )

    try:
        backend.upgrade(record.name, force=True, skip_verification=skip_verification)
    except UpgradeError as e:
        status = (
            UpgradeStatus.FAILED_PUBLISHER_CHECK
            if is_publisher_check_failure(e)
            else UpgradeStatus.FAILED_OTHER
        )
        logger.warning(f"Upgrade of {record.name} failed ({status.value}): {e.message}")
        return UpgradeOutcome(
            record=record,
            status=status,
            detail=e.message,
            skip_verification=skip_verification,
            duration_seconds=time.time() - start_time,
        )
    except Exception as e:
        logger.warning(f"Unexpected error upgrading {record.name}: {e}")
        return UpgradeOutcome(
            record=record,
            status=UpgradeStatus.FAILED_OTHER,
            detail=str(e) or type(e).__name__,
            skip_verification=skip_verification,
            duration_seconds=time.time() - start_time,
        )

    return UpgradeOutcome(
        record=record,
        status=UpgradeStatus.SUCCESS,
        skip_verification=skip_verification,
        duration_seconds=time.time() - start_time,
    )


def run_initial_upgrades(
    candidates: Sequence[PackageRecord],
    backend: PackageBackend,
    verbose: bool = False,
) -> tuple[list[UpgradeOutcome], list[PackageRecord]]:
    """
    Upgrade every candidate with verification enforced.

    Returns:
        (outcomes, retry_set) where retry_set holds exactly the packages
        whose attempt failed the publisher check
    """
    outcomes: list[UpgradeOutcome] = []
    retry_set: list[PackageRecord] = []

    for record in candidates:
        outcome = upgrade_package(record, backend, skip_verification=False, verbose=verbose)
        outcomes.append(outcome)

        if outcome.status == UpgradeStatus.FAILED_PUBLISHER_CHECK:
            retry_set.append(record)
            render.render_outcome(record.name, False, outcome.detail, "publisher check, queued for retry")
        else:
            render.render_outcome(record.name, outcome.success, outcome.detail)

    return outcomes, retry_set


def run_publisher_retry(
    retry_set: Sequence[PackageRecord],
    backend: PackageBackend,
    verbose: bool = False,
) -> list[UpgradeOutcome]:
    """
    Retry publisher-check failures once with verification skipped.

    A second failure is terminal and only reported.
    """
    outcomes: list[UpgradeOutcome] = []
    for record in retry_set:
        outcome = upgrade_package(record, backend, skip_verification=True, verbose=verbose)
        outcomes.append(outcome)
        render.render_outcome(record.name, outcome.success, outcome.detail, "verification skipped")
    return outcomes


def run_update_workflow(
    backend: PackageBackend,
    confirm: ConfirmCallback = confirm_prompt,
    selected: Sequence[str] = (),
    exclude: Sequence[str] = (),
    report_only: bool = False,
    show_progress: bool = True,
    verbose: bool = False,
) -> UpdateRunResult:
    """
    Inventory, compare and optionally upgrade installed packages.

    Args:
        backend: Package backend to use
        confirm: Callback asking the operator a yes/no question
        selected: Only consider these package names (empty = all)
        exclude: Never consider these package names
        report_only: Stop after the comparison report
        show_progress: Print per-package progress while resolving
        verbose: Enable verbose logging

    Returns:
        UpdateRunResult describing the run
    """
    logger = get_logger()
    start_time = time.time()
    result = UpdateRunResult()

    # 1. Inventory
    try:
        installed = backend.list_installed()
    except InventoryError as e:
        logger.error(f"Could not retrieve installed packages from {backend.display_name}: {e.message}")
        result.exit_code = 1
        result.duration_seconds = time.time() - start_time
        return result

    installed = filter_installed(installed, selected, exclude)
    if not installed:
        print(f"No installed {backend.display_name} packages found. Nothing to do.")
        result.duration_seconds = time.time() - start_time
        return result

    # 2. Resolution
    print(f"# Checking {len(installed)} package(s) against {backend.display_name}...", flush=True)
    progress = render.print_progress if show_progress else None
    result.records = resolve_packages(installed, backend, progress=progress, verbose=verbose)

    render.render_table(result.records)
    render.render_errors(result.records)
    render.print_summary(result.records)

    # 3. Decision & initial upgrade
    result.candidates = get_upgrade_candidates(result.records)
    if not result.candidates:
        print("\nAll packages are up to date.")
        result.duration_seconds = time.time() - start_time
        return result

    render.render_candidates("Packages with updates available:", result.candidates)

    if report_only:
        result.duration_seconds = time.time() - start_time
        return result

    if not confirm(format_upgrade_prompt(result.candidates)):
        print("Upgrade skipped by user.")
        result.upgrade_declined = True
        result.duration_seconds = time.time() - start_time
        return result

    print("\nUpgrading packages...")
    result.outcomes, result.retry_set = run_initial_upgrades(result.candidates, backend, verbose)

    # 4. Publisher-check retry
    if result.retry_set:
        render.render_candidates("Packages that failed the publisher check:", result.retry_set)
        if confirm(format_retry_prompt(result.retry_set)):
            print("\nRetrying with verification skipped...")
            result.retry_outcomes = run_publisher_retry(result.retry_set, backend, verbose)
        else:
            print("Retry skipped by user.")
            result.retry_declined = True

    result.duration_seconds = time.time() - start_time
    print(result.summary())
    return result
