"""
module-audit - Installed package auditing and in-place upgrades.

Core Modules:
- Versions: numeric version comparison and status classification
- Inventory: installed packages and registry resolution
- Backends: PowerShell Gallery (pwsh) and PyPI (pip) collaborators
- Upgrade: confirmation-gated upgrades with a publisher-check retry phase
"""

__version__ = "1.0.0"

from .versions import (
    LookupResult,
    MalformedVersionError,
    PackageStatus,
    classify_status,
    compare_versions,
    is_major_upgrade,
    parse_version,
)
from .inventory import InstalledPackage, PackageRecord, filter_installed, resolve_packages
from .config import Config, LoggingConfig, Preferences, load_config, load_config_file, validate_config
from .backends import (
    BackendError,
    InventoryError,
    PackageBackend,
    PipBackend,
    PowerShellGalleryBackend,
    RegistryError,
    UpgradeError,
    get_backend,
)
from .upgrade import (
    UpdateRunResult,
    UpgradeOutcome,
    UpgradeStatus,
    get_upgrade_candidates,
    is_publisher_check_failure,
    run_initial_upgrades,
    run_publisher_retry,
    run_update_workflow,
    upgrade_package,
)
from .prompts import confirm
from .logging_config import setup_logging, get_logger

__all__ = [
    "__version__",
    # Versions
    "LookupResult",
    "MalformedVersionError",
    "PackageStatus",
    "classify_status",
    "compare_versions",
    "is_major_upgrade",
    "parse_version",
    # Inventory
    "InstalledPackage",
    "PackageRecord",
    "filter_installed",
    "resolve_packages",
    # Configuration
    "Config",
    "LoggingConfig",
    "Preferences",
    "load_config",
    "load_config_file",
    "validate_config",
    # Backends
    "BackendError",
    "InventoryError",
    "PackageBackend",
    "PipBackend",
    "PowerShellGalleryBackend",
    "RegistryError",
    "UpgradeError",
    "get_backend",
    # Upgrade
    "UpdateRunResult",
    "UpgradeOutcome",
    "UpgradeStatus",
    "get_upgrade_candidates",
    "is_publisher_check_failure",
    "run_initial_upgrades",
    "run_publisher_retry",
    "run_update_workflow",
    "upgrade_package",
    # Prompts / logging
    "confirm",
    "setup_logging",
    "get_logger",
]
