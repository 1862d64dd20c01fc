"""Read-only state checks against a WSL guest.

Every probe fails closed: if the check cannot be executed, or raises, the
negative answer is returned. Probes only decide whether remedial action is
needed, so an inability to prove a state counts as "not in that state".
"""

import functools
import logging
import shlex

from executor import CommandExecutor

logger = logging.getLogger(__name__)

KEYRING_TRUSTDB = '/etc/pacman.d/gnupg/trustdb.gpg'


def fail_closed(default):
    """Return ``default`` when the wrapped probe raises."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.debug(f"Probe {func.__name__} failed closed: {e}")
                return default
        return wrapper
    return decorator


class StateProbe:
    """Idempotent status queries, independently callable and side-effect free."""

    def __init__(self, executor: CommandExecutor):
        self.executor = executor

    @fail_closed(False)
    def environment_exists(self, name: str) -> bool:
        rc, out = self.executor.manage('--list', '--quiet')
        if rc != 0:
            return False
        registered = {line.strip().lower() for line in out.splitlines() if line.strip()}
        return name.lower() in registered

    @fail_closed(False)
    def environment_ready(self, name: str) -> bool:
        """True only if a command executes and the shell answers."""
        rc, out = self.executor.run(name, 'echo ready', quiet=True, timeout=60)
        return rc == 0 and out == 'ready'

    @fail_closed(False)
    def shell_responds(self, name: str) -> bool:
        """Baseline login shell check, one level deeper than environment_ready."""
        rc, out = self.executor.run(name, 'echo "shell:$((20 + 22))"', quiet=True, login=True, timeout=60)
        return rc == 0 and out.endswith('shell:42')

    @fail_closed(False)
    def user_exists(self, name: str, username: str) -> bool:
        rc, _ = self.executor.run(name, f'id -u {shlex.quote(username)}', quiet=True)
        return rc == 0

    @fail_closed(False)
    def user_has_passwordless_sudo(self, name: str, username: str) -> bool:
        rc, _ = self.executor.run(name, 'sudo -n true', identity=username, quiet=True)
        return rc == 0

    @fail_closed(False)
    def package_manager_keyring_initialized(self, name: str) -> bool:
        rc, _ = self.executor.run(
            name,
            f'test -s {KEYRING_TRUSTDB} && pacman-key --list-keys >/dev/null 2>&1',
            quiet=True,
        )
        return rc == 0

    def missing_packages(self, name: str, required: list[str]) -> list[str]:
        """Return the subset of ``required`` that is not installed.

        Issues a single query for the whole installed set. When the query
        cannot be run, every package is reported missing.
        """
        required = list(required)
        if not required:
            return []
        try:
            rc, out = self.executor.run(name, 'pacman -Qq', quiet=True)
        except Exception as e:
            logger.debug(f"Probe missing_packages failed closed: {e}")
            return required
        if rc != 0:
            return required
        installed = {line.strip() for line in out.splitlines() if line.strip()}
        return [pkg for pkg in required if pkg not in installed]

    @fail_closed(False)
    def dotfile_manager_configured(self, name: str, username: str) -> bool:
        rc, _ = self.executor.run(
            name,
            'PATH="$HOME/.local/bin:$PATH"; src="$(chezmoi source-path 2>/dev/null)" && test -d "$src"',
            identity=username,
            quiet=True,
        )
        return rc == 0

    @fail_closed(False)
    def service_active(self, name: str, service: str) -> bool:
        rc, _ = self.executor.run(name, f'systemctl is-active --quiet {shlex.quote(service)}', quiet=True)
        return rc == 0

    @fail_closed(False)
    def port_listening(self, name: str, port: int) -> bool:
        rc, out = self.executor.run(name, 'ss -tln 2>/dev/null || netstat -tln 2>/dev/null', quiet=True)
        if rc != 0:
            return False
        suffix = f':{port}'
        for line in out.splitlines():
            fields = line.split()
            if 'LISTEN' not in line or len(fields) < 4:
                continue
            if any(field.endswith(suffix) for field in fields):
                return True
        return False
