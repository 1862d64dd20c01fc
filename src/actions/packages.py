"""Package manager initialization for the guest (pacman)."""

import logging
import shlex
import time
from dataclasses import dataclass, field

from common import ActionResult, ProvisionError
from config import WorkflowConfig
from executor import CommandExecutor
from probe import StateProbe

logger = logging.getLogger(__name__)

KEYRING_INIT = 'pacman-key --init && pacman-key --populate archlinux'
SYSTEM_UPDATE = 'pacman -Syu --noconfirm'


@dataclass
class PackageStatus:
    """Read-only package manager status for one guest and user."""
    sudo_available: bool = False
    keyring_initialized: bool = False
    all_packages_installed: bool = False
    missing_packages: list[str] = field(default_factory=list)

    @property
    def needs_full_initialize(self) -> bool:
        return not (self.sudo_available and self.keyring_initialized)


class PackageManagerInitializer:
    """Bring pacman from unconfigured to keyring-ready, updated and stocked."""

    def __init__(self, executor: CommandExecutor, probe: StateProbe):
        self.executor = executor
        self.probe = probe

    def initialize(self, name: str, required: list[str]) -> bool:
        """Initialize keyring, update, install missing packages.

        Raises:
            ProvisionError: keyring initialization failed

        Returns:
            True if every required package ended up installed.
        """
        if self.probe.package_manager_keyring_initialized(name):
            logger.info("Package manager keyring already initialized")
        else:
            logger.info("Initializing package manager keyring...")
            rc, out = self.executor.run(name, KEYRING_INIT, quiet=True)
            if rc != 0:
                raise ProvisionError(f"Keyring initialization failed: {out}")
            logger.info("Package manager keyring initialized")

        logger.info("Updating system packages...")
        rc, out = self.executor.run(name, SYSTEM_UPDATE, quiet=True)
        if rc != 0:
            logger.warning(f"System update failed, continuing: {out[-200:]}")

        return self.install_missing(name, required)

    def install_missing(self, name: str, required: list[str]) -> bool:
        """Install each package not already present; keep going past failures."""
        missing = self.probe.missing_packages(name, required)
        if not missing:
            logger.info("All required packages already installed")
            return True

        logger.info(f"Installing {len(missing)} package(s): {', '.join(missing)}")
        failed = []
        for package in missing:
            rc, out = self.executor.run(
                name, f'pacman -S --noconfirm --needed {shlex.quote(package)}', quiet=True
            )
            if rc == 0:
                logger.info(f"Installed {package}")
            else:
                logger.error(f"Failed to install {package}: {out[-200:]}")
                failed.append(package)

        if failed:
            logger.warning(f"Packages not installed: {', '.join(failed)}")
            return False
        return True

    def check_status(self, name: str, username: str, required: list[str]) -> PackageStatus:
        """Composite read-only status; stops at the first unmet precondition."""
        status = PackageStatus()
        status.sudo_available = self.probe.user_has_passwordless_sudo(name, username)
        if not status.sudo_available:
            return status
        status.keyring_initialized = self.probe.package_manager_keyring_initialized(name)
        if not status.keyring_initialized:
            return status
        status.missing_packages = self.probe.missing_packages(name, required)
        status.all_packages_installed = not status.missing_packages
        return status


@dataclass
class InitializePackagesAction:
    """Run full package manager initialization."""
    name: str
    packages: PackageManagerInitializer

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        logger.info(f"[{self.name}] Initializing package manager in '{config.name}'...")
        ok = self.packages.initialize(config.name, list(config.packages))
        return _packages_result(ok, start)


@dataclass
class ConvergePackagesAction:
    """Initialize fully, top up missing packages, or skip, based on status."""
    name: str
    packages: PackageManagerInitializer

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        required = list(config.packages)
        status = self.packages.check_status(config.name, config.username, required)

        if status.needs_full_initialize:
            logger.info(
                f"[{self.name}] sudo={status.sudo_available} keyring={status.keyring_initialized}: "
                f"running full initialization"
            )
            ok = self.packages.initialize(config.name, required)
        elif status.missing_packages:
            logger.info(f"[{self.name}] Topping up: {', '.join(status.missing_packages)}")
            ok = self.packages.install_missing(config.name, required)
        else:
            logger.info(f"[{self.name}] Package manager already converged")
            ok = True
        return _packages_result(ok, start)


def _packages_result(ok: bool, start: float) -> ActionResult:
    if ok:
        return ActionResult(
            success=True,
            message="Package manager ready",
            duration=time.time() - start,
            context_updates={'state': 'PackageManagerReady'},
        )
    return ActionResult(
        success=False,
        message="Some packages failed to install",
        duration=time.time() - start,
        context_updates={'state': 'PackageManagerReady'},
        continue_on_failure=True,
    )
