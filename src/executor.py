"""Command execution against a WSL guest and the wsl.exe management CLI."""

import logging
import subprocess
from typing import Optional

from common import ROOT, looks_like_failure, normalize_output, run_command

logger = logging.getLogger(__name__)

WSL = 'wsl.exe'


class CommandExecutor:
    """Runs commands inside a named guest as a given identity.

    Output from ``run`` and ``manage`` is normalized (NUL bytes and
    surrounding whitespace stripped). No retries happen at this layer.

    In quiet mode output is only surfaced when it looks like a failure
    report (see ``common.FAILURE_PATTERNS``). This is a heuristic: callers
    that have an exit status should still check it.
    """

    def __init__(self, wsl: str = WSL, timeout: int = 600):
        self.wsl = wsl
        self.timeout = timeout

    def guest_argv(self, name: str, identity: str, command: str, login: bool = False) -> list[str]:
        """Build the wsl.exe argv for a shell command inside the guest."""
        shell_flag = '-lc' if login else '-c'
        return [self.wsl, '-d', name, '-u', identity, '--', 'bash', shell_flag, command]

    def run(
        self,
        name: str,
        command: str,
        identity: str = ROOT,
        quiet: bool = False,
        login: bool = False,
        timeout: Optional[int] = None,
    ) -> tuple[int, str]:
        """Run a command in the guest and return (exit_status, output)."""
        argv = self.guest_argv(name, identity, command, login=login)
        rc, out, err = run_command(argv, timeout=timeout or self.timeout)
        output = normalize_output('\n'.join(part for part in (out, err) if part))
        self._emit(name, identity, output, quiet)
        return rc, output

    def run_interactive(self, name: str, command: str, identity: str = ROOT) -> int:
        """Run a command attached to the caller's terminal and return its exit status.

        Used for steps where a human answers prompts, so output is not captured.
        """
        argv = self.guest_argv(name, identity, command, login=True)
        logger.debug(f"Running interactively: {' '.join(argv)}")
        try:
            return subprocess.run(argv, check=False).returncode
        except OSError as e:
            logger.error(f"Cannot start {self.wsl}: {e}")
            return -1

    def manage(self, *args: str, timeout: Optional[int] = None) -> tuple[int, str]:
        """Run a wsl.exe management command and return (exit_status, output)."""
        rc, out, err = run_command([self.wsl, *args], timeout=timeout or self.timeout)
        return rc, normalize_output('\n'.join(part for part in (out, err) if part))

    def _emit(self, name: str, identity: str, output: str, quiet: bool) -> None:
        if not output:
            return
        if quiet:
            if looks_like_failure(output):
                logger.warning(f"[{name}:{identity}] {output}")
            return
        logger.info(f"[{name}:{identity}] {output}")
