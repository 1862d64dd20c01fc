"""Workflow configuration.

Configuration is built once, before any side effect, from:
- built-in defaults
- a YAML file (``workflow:`` mapping)
- CLI overrides

Resolution order for the YAML file:
1. --config PATH (must exist)
2. $WSL_DRIVER_CONFIG (must exist)
3. ~/.config/wsl-driver/config.yaml (optional)

The result is an immutable WorkflowConfig passed explicitly to every
component; nothing reads ambient defaults after this point.
"""

import getpass
import os
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

import yaml

DEFAULT_PACKAGES = ('sudo', 'base-devel', 'git', 'curl', 'openssh', 'zsh', 'neovim')
DEFAULT_DOTFILES_REPO = 'rigerc/dotfiles'

_USERNAME_RE = re.compile(r'^[a-z_][a-z0-9_-]{0,31}$')


class ConfigError(Exception):
    """Configuration error."""


def get_base_dir() -> Path:
    """Get the per-user wsl-driver data directory."""
    if local_app_data := os.environ.get('LOCALAPPDATA'):
        return Path(local_app_data) / 'wsl-driver'
    return Path.home() / '.local' / 'share' / 'wsl-driver'


def _default_username() -> str:
    return os.environ.get('USER') or os.environ.get('USERNAME') or getpass.getuser()


@dataclass(frozen=True)
class WorkflowConfig:
    """Parameters for one provisioning run of one guest environment."""
    name: str = 'archlinux'
    image: str = ''
    username: str = ''
    packages: tuple = DEFAULT_PACKAGES
    fresh: bool = False
    use_defaults: bool = False

    # Dotfile bootstrap (chezmoi)
    dotfiles_enabled: bool = False
    dotfiles_repo: str = DEFAULT_DOTFILES_REPO
    identity_name: str = ''
    identity_email: str = ''

    # Remote access
    network_enabled: bool = False
    ssh_host_port: int = 4444
    ssh_default_port: int = 22
    ssh_fallback_port: int = 4444
    listen_address: str = '0.0.0.0'

    # Readiness polling
    max_attempts: int = 30
    delay: int = 5
    initial_delay: int = 5
    command_timeout: int = 600

    install_dir: Path = field(default_factory=lambda: get_base_dir() / 'distros')
    image_cache_dir: Path = field(default_factory=lambda: get_base_dir() / 'images')

    def __post_init__(self):
        # frozen: normalise through object.__setattr__
        if isinstance(self.install_dir, str):
            object.__setattr__(self, 'install_dir', Path(self.install_dir).expanduser())
        if isinstance(self.image_cache_dir, str):
            object.__setattr__(self, 'image_cache_dir', Path(self.image_cache_dir).expanduser())
        if isinstance(self.packages, (list, str)):
            packages = self.packages.split() if isinstance(self.packages, str) else self.packages
            object.__setattr__(self, 'packages', tuple(packages))

    def type_errors(self) -> list[str]:
        """Fields whose value does not have the declared type (e.g. quoted YAML numbers)."""
        errors = []
        for f in fields(self):
            value = getattr(self, f.name)
            # bool is an int subclass; a port of `true` is still wrong
            if f.type is int and isinstance(value, bool):
                ok = False
            else:
                ok = isinstance(value, f.type)
            if ok and f.type is tuple:
                ok = all(isinstance(item, str) for item in value)
            if not ok:
                errors.append(f"{f.name} must be of type {f.type.__name__} (got {value!r})")
        return errors

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty if valid)."""
        errors = self.type_errors()
        if errors:
            return errors
        if not self.name or not re.match(r'^[A-Za-z0-9._-]+$', self.name):
            errors.append(f"Invalid environment name '{self.name}'")
        if not _USERNAME_RE.match(self.username or ''):
            errors.append(
                f"Invalid username '{self.username}'\n"
                f"  Must be a lowercase POSIX login name (e.g., 'dev')"
            )
        if self.username == 'root':
            errors.append("Username must not be 'root'")
        if self.fresh and not self.image:
            errors.append("Fresh provisioning needs an image (--image PATH|URL)")
        for port_field in ('ssh_host_port', 'ssh_default_port', 'ssh_fallback_port'):
            port = getattr(self, port_field)
            if not 1 <= port <= 65535:
                errors.append(f"{port_field} must be between 1 and 65535 (got {port})")
        if self.max_attempts < 1:
            errors.append(f"max_attempts must be >= 1 (got {self.max_attempts})")
        if self.delay < 0 or self.initial_delay < 0:
            errors.append("delay and initial_delay must be >= 0")
        if self.dotfiles_enabled and not self.dotfiles_repo:
            errors.append("Dotfile bootstrap enabled without dotfiles_repo")
        return errors


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    return data


def find_config_file(explicit: Optional[Path] = None) -> Optional[Path]:
    """Locate the YAML config file, or None when only defaults apply."""
    if explicit:
        if not explicit.exists():
            raise ConfigError(f"Config file {explicit} does not exist")
        return explicit

    if env_path := os.environ.get('WSL_DRIVER_CONFIG'):
        path = Path(env_path)
        if path.exists():
            return path
        raise ConfigError(f"WSL_DRIVER_CONFIG={env_path} does not exist")

    default = Path.home() / '.config' / 'wsl-driver' / 'config.yaml'
    if default.exists():
        return default
    return None


def _file_values(path: Optional[Path]) -> dict[str, Any]:
    if path is None:
        return {}
    data = _parse_yaml(path)
    values = data.get('workflow', data)
    if not isinstance(values, dict):
        raise ConfigError(f"{path}: 'workflow' must be a mapping")

    known = {f.name for f in fields(WorkflowConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigError(f"{path}: unknown settings: {', '.join(unknown)}")
    return values


def load_workflow_config(
    path: Optional[Path] = None,
    overrides: Optional[dict[str, Any]] = None,
    prompter=None,
) -> WorkflowConfig:
    """Build the immutable workflow configuration.

    Args:
        path: Explicit config file (--config)
        overrides: CLI values; None entries are ignored
        prompter: Asks for missing values when not running with defaults

    Returns:
        Validated WorkflowConfig

    Raises:
        ConfigError: on unreadable files or invalid values
    """
    values = _file_values(find_config_file(path))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        config = WorkflowConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e

    if not config.username:
        if config.use_defaults or prompter is None:
            username = _default_username().lower()
        else:
            username = prompter.ask("Username for the guest account", default=_default_username().lower())
        config = replace(config, username=username)

    if config.fresh and not config.image and not config.use_defaults and prompter is not None:
        config = replace(config, image=prompter.ask("Image tarball path or URL"))

    if config.dotfiles_enabled and not config.use_defaults and prompter is not None:
        if not config.identity_name:
            config = replace(config, identity_name=prompter.ask("Name for dotfiles", default=config.username))
        if not config.identity_email:
            config = replace(config, identity_email=prompter.ask("Email for dotfiles", default=''))

    errors = config.validate()
    if errors:
        raise ConfigError('\n'.join(errors))
    return config
