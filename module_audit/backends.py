"""
Package ecosystem backends.

A backend provides the three operations the update workflow needs:
list installed packages, look up the latest stable release in the
registry, and upgrade a package in place.

- psgallery: PowerShellGet modules, driven through a pwsh subprocess
- pip: Python distributions, inventory/upgrade via pip, lookups via the PyPI JSON API
"""

from __future__ import annotations

import json
import re
import shutil
import subprocess
import sys
import urllib.error
import urllib.request
from typing import Any

from packaging.version import InvalidVersion, Version

from .common import vlog
from .config import Config
from .inventory import InstalledPackage
from .logging_config import get_logger
from .versions import LookupResult


USER_AGENT_HEADERS = {"User-Agent": "module-audit/1.0"}

# Module names accepted by the psgallery backend before they are put into a script
_MODULE_NAME_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")

PYPI_TRUSTED_HOSTS = ("pypi.org", "files.pythonhosted.org")


class BackendError(Exception):
    """
    Base exception for backend operations.

    Attributes:
        message: Human-readable error message
        error_id: Machine-readable error identifier, if the tool reported one
    """
    def __init__(self, message: str, error_id: str | None = None):
        self.message = message
        self.error_id = error_id
        super().__init__(message)


class InventoryError(BackendError):
    """Raised when installed packages cannot be listed."""


class RegistryError(BackendError):
    """Raised when a registry query fails."""


class NetworkError(RegistryError):
    """Raised when HTTP requests fail."""


class NotFoundError(NetworkError):
    """Raised when the registry answers 404."""


class UpgradeError(BackendError):
    """
    Raised when an upgrade command fails.

    Attributes:
        stderr: Raw error output of the upgrade command
    """
    def __init__(self, message: str, error_id: str | None = None, stderr: str = ""):
        super().__init__(message, error_id)
        self.stderr = stderr


def http_get(url: str, timeout: int | None = None, headers: dict[str, str] | None = None) -> bytes:
    """Perform HTTP GET request.

    Args:
        url: URL to fetch
        timeout: Timeout in seconds (None blocks)
        headers: Optional HTTP headers

    Returns:
        Response body as bytes

    Raises:
        NotFoundError: If the server answers 404
        NetworkError: If the request fails otherwise
    """
    request_headers = dict(USER_AGENT_HEADERS)
    if headers:
        request_headers.update(headers)

    req = urllib.request.Request(url, headers=request_headers)
    try:
        if timeout is None:
            response = urllib.request.urlopen(req)
        else:
            response = urllib.request.urlopen(req, timeout=timeout)
        with response:
            return response.read()
    except urllib.error.HTTPError as e:
        if e.code == 404:
            raise NotFoundError(f"Not found: {url}", error_id="404") from e
        raise NetworkError(f"Failed to fetch {url}: HTTP {e.code}", error_id=str(e.code)) from e
    except Exception as e:
        raise NetworkError(f"Failed to fetch {url}: {e}") from e


class PackageBackend:
    """
    Interface every backend implements.

    Attributes:
        name: Backend identifier used in configuration
        display_name: Human-readable name
    """
    name = ""
    display_name = ""

    def is_available(self) -> bool:
        """Whether the external tool this backend drives can be run."""
        raise NotImplementedError

    def describe_tool(self) -> str:
        """Name of that tool for error messages."""
        return self.name

    def list_installed(self) -> list[InstalledPackage]:
        """List installed packages. Raises InventoryError."""
        raise NotImplementedError

    def find_latest_stable(self, name: str) -> LookupResult:
        """Latest stable registry release of a package."""
        raise NotImplementedError

    def upgrade(self, name: str, force: bool = True, skip_verification: bool = False) -> None:
        """Upgrade a package in place. Raises UpgradeError."""
        raise NotImplementedError


def _ps_quote(value: str) -> str:
    """Single-quote a value for a PowerShell script."""
    return "'" + value.replace("'", "''") + "'"


_PS_PREFIX = r"""
$ErrorActionPreference = 'Stop'
$ProgressPreference = 'SilentlyContinue'
[Console]::OutputEncoding = [System.Text.UTF8Encoding]::new()
"""


def run_powershell(
    script: str,
    pwsh: str = "pwsh",
    timeout: int | None = None,
    verbose: bool = False,
) -> Any:
    """
    Run a PowerShell script that prints one JSON document.

    Args:
        script: Script body (the UTF-8/error preference prefix is added)
        pwsh: PowerShell executable
        timeout: Timeout in seconds (None blocks)
        verbose: Enable verbose logging

    Returns:
        Parsed JSON value from the last non-empty stdout line

    Raises:
        BackendError: If PowerShell cannot run, fails, or prints no JSON
    """
    cmd = [pwsh, "-NoLogo", "-NoProfile", "-NonInteractive", "-Command", _PS_PREFIX + script]
    vlog(f"Running PowerShell ({pwsh}): {script.strip().splitlines()[0]}", verbose)

    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError as e:
        raise BackendError(f"PowerShell executable not found: {pwsh}", error_id="PwshNotFound") from e
    except OSError as e:
        raise BackendError(f"Could not start PowerShell ({pwsh}): {e}", error_id="PwshLaunchFailed") from e
    except subprocess.TimeoutExpired as e:
        raise BackendError(f"PowerShell timed out after {timeout}s", error_id="Timeout") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise BackendError(
            f"PowerShell exited with code {result.returncode}: {stderr or 'no error output'}",
            error_id=f"ExitCode{result.returncode}",
        )

    lines = [line for line in (result.stdout or "").splitlines() if line.strip()]
    if not lines:
        raise BackendError("PowerShell produced no output", error_id="NoOutput")

    try:
        return json.loads(lines[-1])
    except json.JSONDecodeError as e:
        raise BackendError(f"Invalid JSON from PowerShell: {lines[-1][:200]}", error_id="InvalidJson") from e


class PowerShellGalleryBackend(PackageBackend):
    """
    PowerShellGet modules installed from a PowerShell repository.

    Attributes:
        pwsh: PowerShell executable
        repository: Repository name (e.g., "PSGallery")
        scope: Install-Module scope
        timeout: Command timeout in seconds (None = no timeout)
    """
    name = "psgallery"
    display_name = "PowerShell Gallery"

    def __init__(
        self,
        pwsh: str = "pwsh",
        repository: str = "PSGallery",
        scope: str = "CurrentUser",
        timeout: int | None = None,
        verbose: bool = False,
    ):
        self.pwsh = pwsh
        self.repository = repository
        self.scope = scope
        self.timeout = timeout
        self.verbose = verbose

    def is_available(self) -> bool:
        return shutil.which(self.pwsh) is not None

    def describe_tool(self) -> str:
        return f"PowerShell executable '{self.pwsh}'"

    def _run(self, script: str) -> Any:
        return run_powershell(script, self.pwsh, self.timeout, self.verbose)

    def list_installed(self) -> list[InstalledPackage]:
        script = """
$modules = @(Get-InstalledModule | Select-Object Name, @{Name='Version'; Expression={$_.Version.ToString()}}, InstalledLocation)
ConvertTo-Json -InputObject $modules -Compress -Depth 3
"""
        try:
            data = self._run(script)
        except BackendError as e:
            raise InventoryError(f"Could not list installed modules: {e.message}", e.error_id) from e

        # ConvertTo-Json collapses single-element arrays on older PowerShell
        if isinstance(data, dict):
            data = [data]
        if not isinstance(data, list):
            raise InventoryError("Unexpected inventory output from Get-InstalledModule")

        return [
            InstalledPackage(
                name=str(item.get("Name", "")),
                installed_version=str(item.get("Version", "")),
                installed_path=str(item.get("InstalledLocation") or ""),
            )
            for item in data
            if isinstance(item, dict) and item.get("Name")
        ]

    def find_latest_stable(self, name: str) -> LookupResult:
        if not _MODULE_NAME_RE.match(name):
            return LookupResult.failed(f"Invalid module name: {name!r}")

        # Find-Module returns the newest non-prerelease version unless -AllowPrerelease is given
        script = f"""
try {{
    $found = Find-Module -Name {_ps_quote(name)} -Repository {_ps_quote(self.repository)} -ErrorAction Stop | Select-Object -First 1
    ConvertTo-Json -InputObject @{{ found = $true; version = $found.Version.ToString() }} -Compress
}} catch {{
    if ([string]$_.FullyQualifiedErrorId -like 'NoMatchFoundForCriteria*') {{
        ConvertTo-Json -InputObject @{{ found = $false }} -Compress
    }} else {{
        ConvertTo-Json -InputObject @{{ found = $false; error = $_.Exception.Message; error_id = [string]$_.FullyQualifiedErrorId }} -Compress
    }}
}}
"""
        try:
            data = self._run(script)
        except BackendError as e:
            return LookupResult.failed(e.message)

        if not isinstance(data, dict):
            return LookupResult.failed("Unexpected output from Find-Module")
        if data.get("error"):
            return LookupResult.failed(str(data["error"]))
        if data.get("found") and data.get("version"):
            return LookupResult.found_version(str(data["version"]))
        return LookupResult.not_found()

    def build_upgrade_script(self, name: str, force: bool, skip_verification: bool) -> str:
        """PowerShell script installing the newest version of a module."""
        flags = [f"-Scope {self.scope}"]
        if force:
            flags.extend(["-Force", "-AllowClobber"])
        if skip_verification:
            flags.append("-SkipPublisherCheck")

        return f"""
try {{
    Install-Module -Name {_ps_quote(name)} -Repository {_ps_quote(self.repository)} {' '.join(flags)} -ErrorAction Stop
    ConvertTo-Json -InputObject @{{ success = $true }} -Compress
}} catch {{
    ConvertTo-Json -InputObject @{{ success = $false; message = $_.Exception.Message; error_id = [string]$_.FullyQualifiedErrorId }} -Compress
}}
"""

    def upgrade(self, name: str, force: bool = True, skip_verification: bool = False) -> None:
        if not _MODULE_NAME_RE.match(name):
            raise UpgradeError(f"Invalid module name: {name!r}", error_id="InvalidName")

        try:
            data = self._run(self.build_upgrade_script(name, force, skip_verification))
        except BackendError as e:
            raise UpgradeError(e.message, error_id=e.error_id) from e

        if not isinstance(data, dict):
            raise UpgradeError("Unexpected output from Install-Module", error_id="InvalidJson")
        if not data.get("success"):
            raise UpgradeError(
                str(data.get("message") or "Install-Module failed"),
                error_id=data.get("error_id") or None,
            )


def select_latest_stable(releases: dict[str, Any]) -> str | None:
    """
    Pick the highest stable release from a PyPI "releases" mapping.

    Pre-releases, dev releases, unparseable versions, releases without files
    and releases whose files are all yanked are ignored.

    Returns:
        Version string as published, or None if no stable release exists
    """
    best: tuple[Version, str] | None = None
    for version_str, files in releases.items():
        try:
            parsed = Version(version_str)
        except InvalidVersion:
            continue
        if parsed.is_prerelease:
            continue
        if not files or all(f.get("yanked", False) for f in files):
            continue
        if best is None or parsed > best[0]:
            best = (parsed, version_str)
    return best[1] if best else None


class PipBackend(PackageBackend):
    """
    Python distributions managed by pip.

    Attributes:
        python: Interpreter whose pip is used
        index_url: Base URL of the PyPI JSON API
        timeout: Network and command timeout in seconds (None = no timeout)
    """
    name = "pip"
    display_name = "PyPI (pip)"

    def __init__(
        self,
        python: str | None = None,
        index_url: str = "https://pypi.org/pypi",
        timeout: int | None = None,
        verbose: bool = False,
    ):
        self.python = python or sys.executable
        self.index_url = index_url.rstrip("/")
        self.timeout = timeout
        self.verbose = verbose

    def is_available(self) -> bool:
        try:
            result = subprocess.run(
                [self.python, "-m", "pip", "--version"],
                capture_output=True,
                text=True,
                timeout=10,
            )
            return result.returncode == 0
        except (OSError, subprocess.TimeoutExpired):
            return False

    def describe_tool(self) -> str:
        return f"pip for '{self.python}'"

    def _pip(self, *args: str) -> subprocess.CompletedProcess:
        cmd = [self.python, "-m", "pip", *args]
        vlog(f"Running: {' '.join(cmd)}", self.verbose)
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=self.timeout,
            check=False,
        )

    def list_installed(self) -> list[InstalledPackage]:
        try:
            result = self._pip("list", "--verbose", "--format=json", "--disable-pip-version-check")
        except OSError as e:
            raise InventoryError(f"Could not run {self.python}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise InventoryError(f"pip list timed out after {self.timeout}s", error_id="Timeout") from e

        if result.returncode != 0:
            raise InventoryError(
                f"pip list failed: {(result.stderr or '').strip() or result.returncode}",
                error_id=f"ExitCode{result.returncode}",
            )

        try:
            data = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as e:
            raise InventoryError("Invalid JSON from pip list") from e

        return [
            InstalledPackage(
                name=str(item["name"]),
                installed_version=str(item.get("version", "")),
                installed_path=str(item.get("location", "")),
            )
            for item in data
            if isinstance(item, dict) and item.get("name")
        ]

    def find_latest_stable(self, name: str) -> LookupResult:
        url = f"{self.index_url}/{name}/json"
        try:
            data = json.loads(http_get(url, timeout=self.timeout))
        except NotFoundError:
            return LookupResult.not_found()
        except NetworkError as e:
            return LookupResult.failed(e.message)
        except json.JSONDecodeError as e:
            return LookupResult.failed(f"Invalid JSON from {url}: {e}")

        version = select_latest_stable(data.get("releases") or {})
        if version is None:
            get_logger().debug(f"PyPI {name}: no stable release")
            return LookupResult.not_found()
        return LookupResult.found_version(version)

    def upgrade(self, name: str, force: bool = True, skip_verification: bool = False) -> None:
        args = ["install", "--upgrade"]
        if force:
            args.extend(["--no-input", "--disable-pip-version-check"])
        if skip_verification:
            for host in PYPI_TRUSTED_HOSTS:
                args.extend(["--trusted-host", host])
        args.append(name)

        try:
            result = self._pip(*args)
        except OSError as e:
            raise UpgradeError(f"Could not run {self.python}: {e}") from e
        except subprocess.TimeoutExpired as e:
            raise UpgradeError(f"pip install timed out after {self.timeout}s", error_id="Timeout") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            tail = [line for line in stderr.splitlines() if line.strip()][-3:]
            error_id = "CERTIFICATE_VERIFY_FAILED" if "CERTIFICATE_VERIFY_FAILED" in stderr else None
            raise UpgradeError(
                " ".join(line.strip() for line in tail) or f"pip exited with code {result.returncode}",
                error_id=error_id,
                stderr=stderr,
            )


def get_backend(name: str, config: Config | None = None, verbose: bool = False) -> PackageBackend:
    """
    Create a backend by name using configured preferences.

    Raises:
        ValueError: If the backend name is unknown
    """
    config = config or Config()
    prefs = config.preferences

    if name == "psgallery":
        return PowerShellGalleryBackend(
            pwsh=prefs.pwsh,
            repository=prefs.repository,
            scope=prefs.scope,
            timeout=prefs.timeout_seconds,
            verbose=verbose,
        )
    if name == "pip":
        return PipBackend(
            python=prefs.python,
            index_url=prefs.index_url,
            timeout=prefs.timeout_seconds,
            verbose=verbose,
        )
    raise ValueError(f"Unknown backend: {name}")
