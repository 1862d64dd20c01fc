"""Pre-flight readiness checks for provisioning workflows.

Validates prerequisites before any guest is touched:
- WSL platform features on the control host
- Image source availability
- Dotfile repository reachability
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path

import requests

from actions.lifecycle import is_url
from common import ActionResult, ProvisionError
from config import WorkflowConfig
from executor import CommandExecutor

logger = logging.getLogger(__name__)


def ensure_wsl_features(executor: CommandExecutor, install: bool = True) -> tuple[bool, str]:
    """Make sure WSL is installed and defaults to version 2.

    Args:
        executor: Runs wsl.exe management commands
        install: When False only query status; the host is left unchanged

    Raises:
        ProvisionError: WSL is unavailable and could not be installed

    Returns:
        (ready, message) tuple; ready is False when a reboot is pending
    """
    rc, out = executor.manage('--status')
    if rc != 0 and not install:
        return False, f"WSL not available: {out or 'no output'}"
    if rc != 0:
        logger.warning(f"WSL not available ({out or 'no output'}), installing platform features...")
        rc, out = executor.manage('--install', '--no-distribution', timeout=1800)
        if rc != 0:
            raise ProvisionError(
                f"WSL feature installation failed: {out}\n"
                f"  Run 'wsl --install --no-distribution' from an elevated prompt"
            )
        return False, "WSL features installed; reboot the host before provisioning"
    if not install:
        return True, "WSL available"

    rc, out = executor.manage('--set-default-version', '2')
    if rc != 0:
        logger.warning(f"Could not set WSL default version 2: {out}")
    return True, "WSL available"


def validate_image_source(image: str) -> tuple[bool, str]:
    """Check that a local image exists or a remote one answers.

    Args:
        image: Local tarball path or http(s) URL

    Returns:
        (success, message) tuple
    """
    if not image:
        return False, "No image configured"

    if not is_url(image):
        path = Path(image).expanduser()
        if path.is_file():
            return True, f"Image {path} found"
        return False, f"Image {path} not found"

    try:
        resp = requests.head(image, allow_redirects=True, timeout=10)
        if resp.status_code < 400:
            return True, f"Image URL reachable ({resp.status_code})"
        return False, f"Image URL returned {resp.status_code}: {image}"
    except requests.exceptions.ConnectionError as e:
        return False, f"Cannot connect to {image}: {e}"
    except requests.exceptions.Timeout:
        return False, f"Timeout connecting to {image}"
    except requests.exceptions.RequestException as e:
        return False, f"Error checking image URL: {e}"


def repo_url(repo: str) -> str:
    """Expand GitHub ``owner/name`` shorthand the way chezmoi does."""
    if '://' in repo or repo.startswith('git@'):
        return repo
    if repo.count('/') == 1:
        return f'https://github.com/{repo}'
    return f'https://github.com/{repo}/dotfiles'


def validate_dotfiles_repo(repo: str) -> tuple[bool, str]:
    """Check the dotfile repository answers over HTTPS.

    SSH-style remotes cannot be checked here and are assumed reachable.
    """
    url = repo_url(repo)
    if not url.startswith(('http://', 'https://')):
        return True, f"Skipping reachability check for {url}"
    try:
        resp = requests.get(url, timeout=10)
        if resp.status_code == 200:
            return True, f"Dotfiles repository {url} reachable"
        return False, f"Dotfiles repository {url} returned {resp.status_code}"
    except requests.exceptions.ConnectionError as e:
        return False, f"Cannot connect to {url}: {e}"
    except requests.exceptions.Timeout:
        return False, f"Timeout connecting to {url}"
    except requests.exceptions.RequestException as e:
        return False, f"Error checking dotfiles repository: {e}"


@dataclass
class PreflightAction:
    """FeaturesReady: WSL present, image source usable, dotfiles reachable."""
    name: str
    executor: CommandExecutor
    check_image: bool = False
    install_features: bool = True

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()

        ready, message = ensure_wsl_features(self.executor, install=self.install_features)
        if not ready:
            return ActionResult(success=False, message=message, duration=time.time() - start)
        logger.info(f"[{self.name}] {message}")

        if self.check_image:
            ok, message = validate_image_source(config.image)
            if not ok:
                return ActionResult(success=False, message=message, duration=time.time() - start)
            logger.info(f"[{self.name}] {message}")

        if config.dotfiles_enabled:
            ok, message = validate_dotfiles_repo(config.dotfiles_repo)
            if ok:
                logger.info(f"[{self.name}] {message}")
            else:
                logger.warning(f"[{self.name}] {message}")

        return ActionResult(
            success=True,
            message="Preflight passed",
            duration=time.time() - start,
            context_updates={'state': 'FeaturesReady'},
        )
