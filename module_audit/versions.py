"""
Version comparison and package status classification.

Versions are dotted numeric strings ("1.10.0", "2.4"). Components compare
numerically and missing trailing components count as zero, so "1.2" equals
"1.2.0" and "1.10.0" is newer than "1.9.0". Anything that is not a plain
dotted number (pre-release suffixes, build tags, empty strings) is treated
as malformed.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from packaging.version import Version


_NUMERIC_VERSION_RE = re.compile(r"^\d+(?:\.\d+)*$")


class MalformedVersionError(ValueError):
    """Raised when a version string is not a dotted numeric version."""

    def __init__(self, version: str):
        self.version = version
        super().__init__(f"Malformed version: {version!r}")


class PackageStatus(str, Enum):
    """Outcome of comparing an installed package against the registry."""

    UP_TO_DATE = "UP-TO-DATE"
    UPDATE_AVAILABLE = "UPDATE-AVAILABLE"
    INSTALLED_NEWER = "INSTALLED-NEWER"
    NOT_FOUND = "NOT-FOUND"
    ERROR_CHECKING = "ERROR"

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]


_STATUS_LABELS = {
    PackageStatus.UP_TO_DATE: "Up to date",
    PackageStatus.UPDATE_AVAILABLE: "Update available",
    PackageStatus.INSTALLED_NEWER: "Installed newer or different",
    PackageStatus.NOT_FOUND: "Not found in registry",
    PackageStatus.ERROR_CHECKING: "Error checking",
}


@dataclass(frozen=True)
class LookupResult:
    """
    Answer of a registry lookup for one package.

    Attributes:
        version: Latest stable version (None unless found)
        found: Whether the registry knows the package
        error: Error detail if the lookup itself failed
    """
    version: str | None = None
    found: bool = False
    error: str | None = None

    @classmethod
    def found_version(cls, version: str) -> LookupResult:
        return cls(version=version, found=True)

    @classmethod
    def not_found(cls) -> LookupResult:
        return cls(found=False)

    @classmethod
    def failed(cls, detail: str) -> LookupResult:
        return cls(found=False, error=detail or "lookup failed")

    @property
    def is_error(self) -> bool:
        return self.error is not None


def parse_version(version: str) -> Version:
    """
    Parse a dotted numeric version.

    Args:
        version: Version string (e.g., "1.10.0", "v2.4")

    Returns:
        packaging Version usable for comparison

    Raises:
        MalformedVersionError: If the string is not purely numeric components
    """
    if version is None:
        raise MalformedVersionError("")
    text = str(version).strip()
    if text[:1] in ("v", "V"):
        text = text[1:]
    if not _NUMERIC_VERSION_RE.match(text):
        raise MalformedVersionError(str(version))
    return Version(text)


def compare_versions(v1: str, v2: str) -> int:
    """
    Compare two dotted numeric versions.

    Args:
        v1: First version
        v2: Second version

    Returns:
        -1 if v1 < v2, 0 if v1 == v2, 1 if v1 > v2

    Raises:
        MalformedVersionError: If either version is malformed
    """
    ver1 = parse_version(v1)
    ver2 = parse_version(v2)

    if ver1 < ver2:
        return -1
    elif ver1 > ver2:
        return 1
    return 0


def classify_status(installed_version: str, lookup: LookupResult) -> PackageStatus:
    """
    Classify an installed package from its registry lookup result.

    Pure function: no I/O, no logging.

    Args:
        installed_version: Locally installed version
        lookup: Result of the registry lookup

    Returns:
        PackageStatus for the package
    """
    if lookup.is_error:
        return PackageStatus.ERROR_CHECKING
    if not lookup.found or lookup.version is None:
        return PackageStatus.NOT_FOUND

    try:
        cmp = compare_versions(installed_version, lookup.version)
    except MalformedVersionError:
        return PackageStatus.ERROR_CHECKING

    if cmp < 0:
        return PackageStatus.UPDATE_AVAILABLE
    elif cmp == 0:
        return PackageStatus.UP_TO_DATE
    return PackageStatus.INSTALLED_NEWER


def is_major_upgrade(v1: str, v2: str) -> bool:
    """
    Check if upgrade from v1 to v2 is a major version bump.

    Args:
        v1: Current version
        v2: Target version

    Returns:
        True if v2 is a major version ahead of v1, False when either is malformed
    """
    try:
        return parse_version(v2).major > parse_version(v1).major
    except MalformedVersionError:
        return False
