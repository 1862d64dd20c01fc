"""Primary user account, sudo policy and boot configuration."""

import logging
import shlex
import time
from dataclasses import dataclass

from common import ActionResult
from config import WorkflowConfig
from executor import CommandExecutor
from probe import StateProbe

logger = logging.getLogger(__name__)

ADMIN_GROUP = 'wheel'
DEFAULT_SHELL = '/bin/bash'
SUDOERS_FRAGMENT = f'/etc/sudoers.d/{ADMIN_GROUP}'
SUDOERS_POLICY = f'%{ADMIN_GROUP} ALL=(ALL:ALL) NOPASSWD: ALL'
WSL_CONF = '/etc/wsl.conf'


def render_wsl_conf(username: str) -> str:
    """Boot configuration: systemd on, ``username`` as default login."""
    return (
        "[boot]\n"
        "systemd=true\n"
        "\n"
        "[user]\n"
        f"default={username}\n"
    )


def _write_file(path: str, content: str, mode: str) -> str:
    """Shell snippet that replaces ``path`` atomically with ``content``."""
    tmp = f'{path}.tmp'
    return (
        f"printf '%s' {shlex.quote(content)} > {tmp} && "
        f"chmod {mode} {tmp} && mv -f {tmp} {path}"
    )


class UserProvisioner:
    """Create the non-root account and grant passwordless administration."""

    def __init__(self, executor: CommandExecutor, probe: StateProbe):
        self.executor = executor
        self.probe = probe

    def create_user(self, name: str, username: str) -> bool:
        """Create ``username`` with a home directory and default shell."""
        if self.probe.user_exists(name, username):
            logger.info(f"User {username} already exists")
            return True

        user = shlex.quote(username)
        rc, out = self.executor.run(name, f'useradd -m -s {DEFAULT_SHELL} {user}', quiet=True)
        if rc != 0:
            logger.error(f"useradd failed for {username}: {out}")

        if not self.probe.user_exists(name, username):
            logger.error(f"User {username} does not exist after creation")
            return False
        logger.info(f"Created user {username}")
        return True

    def grant_administrative_privileges(self, name: str, username: str) -> bool:
        """Add to the admin group, write the group sudo policy, enable systemd.

        Safe to repeat: group membership is a set and both files are
        rewritten, never appended to.

        Returns:
            True if passwordless sudo verified. False is expected before the
            guest restarts and is reported as a warning.
        """
        user = shlex.quote(username)
        steps = [
            ('group membership', f'usermod -aG {ADMIN_GROUP} {user}'),
            ('sudo policy', _write_file(SUDOERS_FRAGMENT, SUDOERS_POLICY + '\n', '440')
                + f' && visudo -cf {SUDOERS_FRAGMENT} >/dev/null'),
            ('boot configuration', _write_file(WSL_CONF, render_wsl_conf(username), '644')),
        ]
        for label, command in steps:
            rc, out = self.executor.run(name, command, quiet=True)
            if rc != 0:
                logger.error(f"Failed to configure {label} for {username}: {out}")
            else:
                logger.debug(f"Configured {label} for {username}")

        if self.probe.user_has_passwordless_sudo(name, username):
            logger.info(f"Passwordless sudo verified for {username}")
            return True
        logger.warning(
            f"Passwordless sudo not yet effective for {username}; "
            f"expected to apply after the environment restarts"
        )
        return False

    def verify_configuration(self, name: str, username: str) -> list[str]:
        """Advisory checks; logs and returns problems, never raises."""
        problems = []
        user = shlex.quote(username)

        rc, out = self.executor.run(name, f'id {user}', quiet=True)
        if rc == 0:
            logger.info(f"Identity: {out}")
        else:
            problems.append(f"user {username} not found")

        rc, out = self.executor.run(name, f'id -nG {user}', quiet=True)
        if rc != 0 or ADMIN_GROUP not in out.split():
            problems.append(f"user {username} is not in group {ADMIN_GROUP}")

        if not self.probe.user_has_passwordless_sudo(name, username):
            problems.append(f"user {username} has no passwordless sudo")

        for problem in problems:
            logger.warning(f"Verification: {problem}")
        if not problems:
            logger.info(f"Verification passed for {username}")
        return problems


@dataclass
class ProvisionUserAction:
    """Create the user and grant privileges (fresh flow)."""
    name: str
    users: UserProvisioner

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        if not self.users.create_user(config.name, config.username):
            return ActionResult(
                success=False,
                message=f"Could not create user {config.username}",
                duration=time.time() - start,
            )
        sudo_ok = self.users.grant_administrative_privileges(config.name, config.username)
        return _user_result(config, sudo_ok, start)


@dataclass
class ConvergeUserAction:
    """Create the user if missing, or re-grant privileges if sudo fails."""
    name: str
    users: UserProvisioner
    probe: StateProbe

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        if not self.probe.user_exists(config.name, config.username):
            logger.info(f"[{self.name}] User {config.username} missing, creating")
            if not self.users.create_user(config.name, config.username):
                return ActionResult(
                    success=False,
                    message=f"Could not create user {config.username}",
                    duration=time.time() - start,
                )
        elif self.probe.user_has_passwordless_sudo(config.name, config.username):
            logger.info(f"[{self.name}] User {config.username} already converged")
            return _user_result(config, True, start)

        sudo_ok = self.users.grant_administrative_privileges(config.name, config.username)
        return _user_result(config, sudo_ok, start)


@dataclass
class VerifyUserAction:
    """Advisory verification pass; never fails the run."""
    name: str
    users: UserProvisioner

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        problems = self.users.verify_configuration(config.name, config.username)
        return ActionResult(
            success=True,
            message='; '.join(problems) if problems else f"{config.username} verified",
            duration=time.time() - start,
            context_updates={'verification_problems': problems},
        )


def _user_result(config: WorkflowConfig, sudo_ok: bool, start: float) -> ActionResult:
    message = f"User {config.username} ready"
    if not sudo_ok:
        message += " (sudo pending restart)"
    return ActionResult(
        success=True,
        message=message,
        duration=time.time() - start,
        context_updates={
            'state': 'UserReady',
            'sudo_verified': sudo_ok,
            'sudo_pending_restart': not sudo_ok,
        },
    )
