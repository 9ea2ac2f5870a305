"""
Shared fixtures: an in-memory backend and quiet logging.
"""

from __future__ import annotations

import pytest

from module_audit.backends import InventoryError, PackageBackend, UpgradeError
from module_audit.inventory import InstalledPackage
from module_audit.logging_config import setup_logging
from module_audit.versions import LookupResult


class FakeBackend(PackageBackend):
    """
    Backend driven by dictionaries.

    Args:
        installed: name -> installed version, in inventory order
        registry: name -> latest stable version (missing = not found)
        lookup_errors: name -> error detail, or an exception to raise
        upgrade_errors: name -> list of errors consumed per call (None = success)
        inventory_error: raise InventoryError from list_installed()
        available: value returned by is_available()
    """
    name = "fake"
    display_name = "Fake Registry"

    def __init__(
        self,
        installed: dict[str, str] | None = None,
        registry: dict[str, str] | None = None,
        lookup_errors: dict | None = None,
        upgrade_errors: dict | None = None,
        inventory_error: bool = False,
        available: bool = True,
    ):
        self.installed = installed or {}
        self.registry = registry or {}
        self.lookup_errors = lookup_errors or {}
        self.upgrade_errors = {k: list(v) for k, v in (upgrade_errors or {}).items()}
        self.inventory_error = inventory_error
        self.available = available
        self.lookup_calls: list[str] = []
        self.upgrade_calls: list[tuple[str, bool, bool]] = []

    def is_available(self) -> bool:
        return self.available

    def list_installed(self) -> list[InstalledPackage]:
        if self.inventory_error:
            raise InventoryError("inventory unavailable")
        return [
            InstalledPackage(name=name, installed_version=version, installed_path=f"/modules/{name}")
            for name, version in self.installed.items()
        ]

    def find_latest_stable(self, name: str) -> LookupResult:
        self.lookup_calls.append(name)
        error = self.lookup_errors.get(name)
        if isinstance(error, BaseException):
            raise error
        if error is not None:
            return LookupResult.failed(error)
        if name not in self.registry:
            return LookupResult.not_found()
        return LookupResult.found_version(self.registry[name])

    def upgrade(self, name: str, force: bool = True, skip_verification: bool = False) -> None:
        self.upgrade_calls.append((name, force, skip_verification))
        queued = self.upgrade_errors.get(name)
        if queued:
            error = queued.pop(0)
            if error is not None:
                raise error


def publisher_error(name: str = "A") -> UpgradeError:
    return UpgradeError(
        f"Authenticode issuer of the new module '{name}' is not matching with the previously-installed module. "
        "If you still want to install or update, use -SkipPublisherCheck parameter.",
        error_id="AuthenticodeIssuerMismatch,Microsoft.PowerShell.PackageManagement.Cmdlets.InstallPackage",
    )


@pytest.fixture(autouse=True)
def quiet_logging():
    """Keep log output out of captured stdout/stderr."""
    setup_logging(quiet=True, propagate=True)
    yield


@pytest.fixture
def fake_backend_factory():
    return FakeBackend
