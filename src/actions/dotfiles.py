"""Dotfile bootstrap via chezmoi.

The bootstrap itself is interactive (chezmoi templates may prompt), so it
runs attached to the terminal. Only its verification result feeds back
into the workflow.
"""

import logging
import shlex
import time
from dataclasses import dataclass
from typing import Optional

from common import ActionResult
from config import WorkflowConfig
from executor import CommandExecutor
from probe import StateProbe

logger = logging.getLogger(__name__)

CHEZMOI_INSTALLER = 'https://get.chezmoi.io'

RETRY = 'retry'
PROCEED = 'proceed'
ABORT = 'abort'

FAILURE_POLICIES = [
    (RETRY, 'Retry the bootstrap once'),
    (PROCEED, 'Continue without verification'),
    (ABORT, 'Abort provisioning'),
]


class ChezmoiBootstrap:
    """Run ``chezmoi init --apply`` for a user and report whether it took."""

    def __init__(self, executor: CommandExecutor, probe: StateProbe):
        self.executor = executor
        self.probe = probe

    def command(self, repo: str, identity_name: str = '', identity_email: str = '') -> str:
        prompts = []
        if identity_name:
            prompts.append(f'name={identity_name}')
        if identity_email:
            prompts.append(f'email={identity_email}')
        prompt_arg = f' --promptString {shlex.quote(",".join(prompts))}' if prompts else ''
        return (
            'export PATH="$HOME/.local/bin:$PATH"; '
            'command -v chezmoi >/dev/null 2>&1 || '
            f'sh -c "$(curl -fsLS {CHEZMOI_INSTALLER})" -- -b "$HOME/.local/bin"; '
            f'chezmoi init --apply{prompt_arg} {shlex.quote(repo)}'
        )

    def bootstrap(self, name: str, username: str, repo: str, identity_name: str = '', identity_email: str = '') -> bool:
        """Run the bootstrap as ``username``; True when verification passes."""
        logger.info(f"Bootstrapping dotfiles from {repo} for {username}...")
        rc = self.executor.run_interactive(
            name, self.command(repo, identity_name, identity_email), identity=username
        )
        if rc != 0:
            logger.warning(f"chezmoi exited with status {rc}")
        return self.verify(name, username)

    def verify(self, name: str, username: str) -> bool:
        return self.probe.dotfile_manager_configured(name, username)


@dataclass
class BootstrapDotfilesAction:
    """Bootstrap dotfiles; on failed verification ask: retry, proceed or abort."""
    name: str
    dotfiles: ChezmoiBootstrap
    prompter: Optional[object] = None

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        if self.dotfiles.verify(config.name, config.username):
            logger.info(f"[{self.name}] Dotfiles already configured for {config.username}")
            return self._done(start, "Dotfiles already configured")

        if self._bootstrap(config):
            return self._done(start, "Dotfiles configured")

        choice = self._choose(config)
        if choice == RETRY:
            logger.info(f"[{self.name}] Retrying dotfile bootstrap")
            if self._bootstrap(config):
                return self._done(start, "Dotfiles configured on retry")
            choice = self._choose(config, allow_retry=False)

        if choice == ABORT:
            return ActionResult(
                success=False,
                message="Dotfile verification failed; aborted by operator",
                duration=time.time() - start,
            )

        logger.warning(f"[{self.name}] Continuing without dotfile verification")
        return ActionResult(
            success=False,
            message="Dotfiles not verified",
            duration=time.time() - start,
            continue_on_failure=True,
        )

    def _bootstrap(self, config: WorkflowConfig) -> bool:
        return self.dotfiles.bootstrap(
            config.name,
            config.username,
            config.dotfiles_repo,
            identity_name=config.identity_name,
            identity_email=config.identity_email,
        )

    def _choose(self, config: WorkflowConfig, allow_retry: bool = True) -> str:
        # Non-interactive runs never block: proceed without verification
        if config.use_defaults or self.prompter is None or not getattr(self.prompter, 'interactive', False):
            return PROCEED
        options = FAILURE_POLICIES if allow_retry else [o for o in FAILURE_POLICIES if o[0] != RETRY]
        return self.prompter.choose(
            "Dotfile verification failed. How do you want to continue?",
            options,
            default=RETRY if allow_retry else PROCEED,
        )

    def _done(self, start: float, message: str) -> ActionResult:
        return ActionResult(
            success=True,
            message=message,
            duration=time.time() - start,
            context_updates={'state': 'DotfilesConfigured'},
        )
