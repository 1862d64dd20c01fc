"""Provisioning scenarios.

fresh:    destroy and recreate the guest, then converge it.
converge: repair an existing guest, running only the steps still needed.

Both share one tail (packages, user, verify, restart, network, dotfiles);
only the "environment exists and is ready" prefix differs.
"""

from actions import (
    BootstrapDotfilesAction,
    ConfigureNetworkAction,
    ConvergePackagesAction,
    ConvergeUserAction,
    InitializePackagesAction,
    InstallEnvironmentAction,
    ProvisionUserAction,
    RequireEnvironmentAction,
    RestartEnvironmentAction,
    Services,
    VerifyUserAction,
    WaitForEnvironmentAction,
)
from config import WorkflowConfig
from readiness import PreflightAction
from scenarios import register_scenario


def tail_phases(config: WorkflowConfig, services: Services, converge: bool) -> list[tuple[str, object, str]]:
    """Phases shared by both workflows, after the environment is ready."""
    if converge:
        packages = ConvergePackagesAction(name='packages', packages=services.packages)
        user = ConvergeUserAction(name='user', users=services.users, probe=services.probe)
    else:
        packages = InitializePackagesAction(name='packages', packages=services.packages)
        user = ProvisionUserAction(name='user', users=services.users)

    phases = [
        ('packages', packages, 'Initialize keyring, update, install packages'),
        ('user', user, f'Create {config.username} with passwordless sudo'),
        ('verify', VerifyUserAction(name='verify', users=services.users), 'Verify user configuration'),
        ('restart', RestartEnvironmentAction(
            name='restart',
            lifecycle=services.lifecycle,
            probe=services.probe,
        ), 'Restart environment to enable systemd'),
    ]

    if config.network_enabled:
        phases.append(('network', ConfigureNetworkAction(
            name='network',
            network=services.network,
        ), f'Forward host port {config.ssh_host_port} to guest SSH'))

    if config.dotfiles_enabled:
        phases.append(('dotfiles', BootstrapDotfilesAction(
            name='dotfiles',
            dotfiles=services.dotfiles,
            prompter=services.prompter,
        ), f'Bootstrap dotfiles from {config.dotfiles_repo}'))

    return phases


@register_scenario
class FreshProvision:
    """Create the guest from an image and provision it from scratch."""

    name = 'fresh'
    description = 'Recreate environment from image and provision it'
    requires_confirmation = True

    def get_phases(self, config: WorkflowConfig, services: Services) -> list[tuple[str, object, str]]:
        return [
            ('preflight', PreflightAction(
                name='preflight',
                executor=services.executor,
                check_image=True,
            ), 'Check WSL features and image source'),
            ('install', InstallEnvironmentAction(
                name='install',
                lifecycle=services.lifecycle,
            ), f'Import {config.name} (replaces existing)'),
            ('wait_ready', WaitForEnvironmentAction(
                name='wait-ready',
                lifecycle=services.lifecycle,
            ), 'Wait for environment to answer'),
        ] + tail_phases(config, services, converge=False)


@register_scenario
class ConvergeExisting:
    """Bring an existing guest back to the provisioned state."""

    name = 'converge'
    description = 'Repair an existing environment, applying only missing steps'
    requires_confirmation = False

    def get_phases(self, config: WorkflowConfig, services: Services) -> list[tuple[str, object, str]]:
        # nothing may touch the host before the environment is known to exist
        return [
            ('require_environment', RequireEnvironmentAction(
                name='require-environment',
                probe=services.probe,
            ), f'Require existing environment {config.name}'),
            ('preflight', PreflightAction(
                name='preflight',
                executor=services.executor,
                install_features=False,
            ), 'Check WSL features'),
            ('wait_ready', WaitForEnvironmentAction(
                name='wait-ready',
                lifecycle=services.lifecycle,
            ), 'Wait for environment to answer'),
        ] + tail_phases(config, services, converge=True)
