"""Guest environment lifecycle: import, unregister, readiness, terminate."""

import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

import requests

from common import ActionResult, ProvisionError
from config import WorkflowConfig
from executor import CommandExecutor
from probe import StateProbe

logger = logging.getLogger(__name__)


def is_url(image: str) -> bool:
    return urlparse(image).scheme in ('http', 'https')


def download_image(url: str, cache_dir: Path, timeout: int = 60) -> Path:
    """Download a rootfs tarball into ``cache_dir``, reusing a cached copy."""
    filename = urlparse(url).path.rstrip('/').split('/')[-1] or 'rootfs.tar'
    destination = cache_dir / filename
    if destination.exists() and destination.stat().st_size > 0:
        logger.info(f"Using cached image {destination}")
        return destination

    cache_dir.mkdir(parents=True, exist_ok=True)
    partial = destination.with_name(destination.name + '.part')
    logger.info(f"Downloading {url}...")
    try:
        with requests.get(url, stream=True, timeout=timeout) as response:
            response.raise_for_status()
            with partial.open(mode='wb') as f:
                for chunk in response.iter_content(chunk_size=1024 * 1024):
                    f.write(chunk)
    except requests.exceptions.RequestException as e:
        partial.unlink(missing_ok=True)
        raise ProvisionError(f"Failed to download image from {url}: {e}") from e
    partial.replace(destination)
    logger.info(f"Downloaded image to {destination}")
    return destination


class DistributionLifecycle:
    """Create, remove, wait for and terminate one named guest.

    Failures raise ProvisionError: every later step depends on these.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        probe: StateProbe,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.executor = executor
        self.probe = probe
        self.sleep = sleep
        self._ready: set[str] = set()

    def install(self, image: str, name: str, install_dir: Path, cache_dir: Optional[Path] = None) -> None:
        """Import ``image`` as ``name``, replacing any existing guest of that name."""
        if self.probe.environment_exists(name):
            logger.info(f"Environment '{name}' already exists, removing it first")
            self.remove(name)

        if is_url(image):
            tarball = download_image(image, cache_dir or install_dir.parent / 'images')
        else:
            tarball = Path(image).expanduser()
            if not tarball.exists():
                raise ProvisionError(f"Image {tarball} not found")

        target = install_dir / name
        created = not target.exists()
        target.mkdir(parents=True, exist_ok=True)
        logger.info(f"Importing '{name}' from {tarball} into {target}...")
        rc, out = self.executor.manage('--import', name, str(target), str(tarball), '--version', '2')
        if rc != 0:
            logger.error(f"wsl --import failed: {out}")

        if not self.probe.environment_exists(name):
            if created:
                shutil.rmtree(target, ignore_errors=True)
            raise ProvisionError(f"Environment '{name}' is not registered after import: {out or 'no output'}")
        logger.info(f"Environment '{name}' registered")

    def remove(self, name: str) -> None:
        """Unregister ``name``; its virtual disk is deleted by wsl.exe."""
        self._ready.discard(name)
        rc, out = self.executor.manage('--unregister', name)
        if rc != 0:
            raise ProvisionError(f"Failed to unregister '{name}': {out}")
        logger.info(f"Environment '{name}' unregistered")

    def wait_until_ready(
        self,
        name: str,
        max_attempts: int = 30,
        delay: float = 5,
        initial_delay: float = 5,
    ) -> bool:
        """Poll until the guest answers at both management and shell level.

        Returns:
            True when ready, False once ``max_attempts`` are exhausted. The
            caller decides whether exhaustion is fatal.
        """
        if name in self._ready:
            if self._check(name):
                logger.info(f"Environment '{name}' is ready")
                return True
            self._ready.discard(name)

        if initial_delay:
            self.sleep(initial_delay)

        for attempt in range(1, max_attempts + 1):
            if self._check(name):
                self._ready.add(name)
                logger.info(f"Environment '{name}' is ready (attempt {attempt}/{max_attempts})")
                return True

            remaining = (max_attempts - attempt) * delay
            logger.info(
                f"Waiting for '{name}': attempt {attempt}/{max_attempts}, "
                f"~{remaining:.0f}s remaining"
            )
            if attempt < max_attempts:
                self.sleep(delay)

        logger.error(f"Environment '{name}' not ready after {max_attempts} attempts")
        return False

    def _check(self, name: str) -> bool:
        return self.probe.environment_ready(name) and self.probe.shell_responds(name)

    def terminate(self, name: str) -> None:
        """Stop the guest so configuration read at boot takes effect."""
        self._ready.discard(name)
        rc, out = self.executor.manage('--terminate', name)
        if rc != 0:
            raise ProvisionError(f"Failed to terminate '{name}': {out}")
        logger.info(f"Environment '{name}' terminated")


@dataclass
class InstallEnvironmentAction:
    """Destructively (re)create the guest from the configured image."""
    name: str
    lifecycle: DistributionLifecycle

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        logger.info(f"[{self.name}] Installing '{config.name}' from {config.image}")
        self.lifecycle.install(config.image, config.name, config.install_dir, config.image_cache_dir)
        return ActionResult(
            success=True,
            message=f"Environment '{config.name}' installed",
            duration=time.time() - start,
        )


@dataclass
class RequireEnvironmentAction:
    """Abort unless the guest is already registered."""
    name: str
    probe: StateProbe

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        if not self.probe.environment_exists(config.name):
            return ActionResult(
                success=False,
                message=(
                    f"Environment '{config.name}' does not exist. "
                    f"Use 'wsl-driver run fresh --image ...' to create it."
                ),
                duration=time.time() - start,
            )
        return ActionResult(
            success=True,
            message=f"Environment '{config.name}' exists",
            duration=time.time() - start,
        )


@dataclass
class WaitForEnvironmentAction:
    """Wait for the guest to answer; exhaustion is fatal."""
    name: str
    lifecycle: DistributionLifecycle

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        logger.info(f"[{self.name}] Waiting for '{config.name}' to become ready...")
        ready = self.lifecycle.wait_until_ready(
            config.name,
            max_attempts=config.max_attempts,
            delay=config.delay,
            initial_delay=config.initial_delay,
        )
        if not ready:
            return ActionResult(
                success=False,
                message=f"Environment '{config.name}' never became ready",
                duration=time.time() - start,
            )
        return ActionResult(
            success=True,
            message=f"Environment '{config.name}' ready",
            duration=time.time() - start,
            context_updates={'state': 'EnvironmentReady'},
        )


@dataclass
class RestartEnvironmentAction:
    """Terminate and wait again so boot-time settings (systemd) apply."""
    name: str
    lifecycle: DistributionLifecycle
    probe: StateProbe

    def run(self, config: WorkflowConfig, context: dict) -> ActionResult:
        start = time.time()
        logger.info(f"[{self.name}] Restarting '{config.name}' to apply boot configuration...")
        self.lifecycle.terminate(config.name)
        if not self.lifecycle.wait_until_ready(
            config.name,
            max_attempts=config.max_attempts,
            delay=config.delay,
            initial_delay=config.initial_delay,
        ):
            return ActionResult(
                success=False,
                message=f"Environment '{config.name}' did not come back after restart",
                duration=time.time() - start,
            )

        sudo_ok = self.probe.user_has_passwordless_sudo(config.name, config.username)
        if not sudo_ok:
            logger.warning(f"[{self.name}] {config.username} still has no passwordless sudo after restart")
        elif context.get('sudo_pending_restart'):
            logger.info(f"[{self.name}] Passwordless sudo active for {config.username} after restart")

        return ActionResult(
            success=True,
            message=f"Environment '{config.name}' restarted",
            duration=time.time() - start,
            context_updates={'sudo_verified': sudo_ok, 'sudo_pending_restart': False},
        )
