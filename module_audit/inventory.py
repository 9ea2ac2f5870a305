"""
Installed package inventory and registry resolution.

Builds one PackageRecord per installed package by asking the backend for
the latest stable release and classifying the result.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Iterable, Sequence

from .common import vlog
from .logging_config import get_logger
from .versions import LookupResult, PackageStatus, classify_status, is_major_upgrade

if TYPE_CHECKING:
    from .backends import PackageBackend


ProgressCallback = Callable[[int, int, str], None]


@dataclass(frozen=True)
class InstalledPackage:
    """
    Package reported by the inventory provider.

    Attributes:
        name: Package identifier
        installed_version: Locally installed version
        installed_path: Install location (informational)
    """
    name: str
    installed_version: str
    installed_path: str = ""


@dataclass(frozen=True)
class PackageRecord:
    """
    Comparison of an installed package against the registry.

    Attributes:
        name: Package identifier
        installed_version: Locally installed version
        latest_version: Latest stable registry version, None when unresolved
        status: Classification of installed vs latest
        installed_path: Install location (informational)
        detail: Lookup error detail for ERROR_CHECKING records
    """
    name: str
    installed_version: str
    latest_version: str | None
    status: PackageStatus
    installed_path: str = ""
    detail: str | None = None

    @property
    def breaking_change(self) -> bool:
        if self.latest_version is None:
            return False
        return is_major_upgrade(self.installed_version, self.latest_version)

    def version_jump_description(self) -> str:
        """Human-readable version jump description."""
        latest = self.latest_version or "?"
        if self.breaking_change:
            return f"{self.installed_version} → {latest} (MAJOR)"
        return f"{self.installed_version} → {latest}"

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "name": self.name,
            "installed_version": self.installed_version,
            "latest_version": self.latest_version,
            "status": self.status.value,
            "installed_path": self.installed_path,
            "detail": self.detail,
        }


def filter_installed(
    installed: Iterable[InstalledPackage],
    selected: Sequence[str] = (),
    exclude: Sequence[str] = (),
) -> list[InstalledPackage]:
    """
    Restrict the inventory to selected names and drop excluded ones.

    Names compare case-insensitively. An empty selection keeps everything.
    """
    wanted = {name.lower() for name in selected}
    skipped = {name.lower() for name in exclude}

    result = []
    for package in installed:
        key = package.name.lower()
        if wanted and key not in wanted:
            continue
        if key in skipped:
            continue
        result.append(package)
    return result


def build_record(package: InstalledPackage, lookup: LookupResult) -> PackageRecord:
    """Combine an inventory row with its lookup result."""
    status = classify_status(package.installed_version, lookup)
    detail = lookup.error
    if status == PackageStatus.ERROR_CHECKING and detail is None:
        detail = f"Unparseable version ({package.installed_version} / {lookup.version})"

    return PackageRecord(
        name=package.name,
        installed_version=package.installed_version,
        latest_version=lookup.version if lookup.found else None,
        status=status,
        installed_path=package.installed_path,
        detail=detail,
    )


def resolve_packages(
    installed: Sequence[InstalledPackage],
    backend: PackageBackend,
    progress: ProgressCallback | None = None,
    verbose: bool = False,
) -> list[PackageRecord]:
    """
    Look up the latest stable version of every installed package.

    Lookups run one at a time in inventory order. A failing lookup degrades
    only its own record to ERROR_CHECKING.

    Args:
        installed: Inventory rows
        backend: Backend providing find_latest_stable()
        progress: Optional callback(index, total, name), 1-indexed
        verbose: Enable verbose logging

    Returns:
        One PackageRecord per installed package, same order
    """
    logger = get_logger()
    records: list[PackageRecord] = []
    total = len(installed)

    for index, package in enumerate(installed, start=1):
        if progress is not None:
            progress(index, total, package.name)

        try:
            lookup = backend.find_latest_stable(package.name)
        except Exception as e:
            logger.warning(f"Lookup failed for {package.name}: {e}")
            lookup = LookupResult.failed(str(e))

        record = build_record(package, lookup)
        vlog(f"{record.name}: {record.installed_version} vs {record.latest_version} → {record.status.value}", verbose)
        records.append(record)

    return records
