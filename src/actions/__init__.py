"""Provisioning components and the phase actions built on them."""

from dataclasses import dataclass
from typing import Optional

from actions.dotfiles import BootstrapDotfilesAction, ChezmoiBootstrap
from actions.lifecycle import (
    DistributionLifecycle,
    InstallEnvironmentAction,
    RequireEnvironmentAction,
    RestartEnvironmentAction,
    WaitForEnvironmentAction,
)
from actions.network import ConfigureNetworkAction, HostNetwork, NetworkConfigurator
from actions.packages import (
    ConvergePackagesAction,
    InitializePackagesAction,
    PackageManagerInitializer,
    PackageStatus,
)
from actions.user import ConvergeUserAction, ProvisionUserAction, UserProvisioner, VerifyUserAction
from config import WorkflowConfig
from executor import CommandExecutor
from probe import StateProbe
from prompt import ConsolePrompter, DefaultsPrompter


@dataclass
class Services:
    """Components wired to one executor, shared by all phases of a run."""
    executor: CommandExecutor
    probe: StateProbe
    lifecycle: DistributionLifecycle
    packages: PackageManagerInitializer
    users: UserProvisioner
    network: NetworkConfigurator
    dotfiles: ChezmoiBootstrap
    prompter: object

    @classmethod
    def build(
        cls,
        config: WorkflowConfig,
        executor: Optional[CommandExecutor] = None,
        host: Optional[HostNetwork] = None,
        prompter=None,
    ) -> 'Services':
        executor = executor or CommandExecutor(timeout=config.command_timeout)
        if prompter is None:
            prompter = DefaultsPrompter() if config.use_defaults else ConsolePrompter()
        probe = StateProbe(executor)
        return cls(
            executor=executor,
            probe=probe,
            lifecycle=DistributionLifecycle(executor, probe),
            packages=PackageManagerInitializer(executor, probe),
            users=UserProvisioner(executor, probe),
            network=NetworkConfigurator(executor, probe, host=host, prompter=prompter),
            dotfiles=ChezmoiBootstrap(executor, probe),
            prompter=prompter,
        )


__all__ = [
    'Services',
    'DistributionLifecycle',
    'PackageManagerInitializer',
    'PackageStatus',
    'UserProvisioner',
    'NetworkConfigurator',
    'HostNetwork',
    'ChezmoiBootstrap',
    'InstallEnvironmentAction',
    'RequireEnvironmentAction',
    'WaitForEnvironmentAction',
    'RestartEnvironmentAction',
    'InitializePackagesAction',
    'ConvergePackagesAction',
    'ProvisionUserAction',
    'ConvergeUserAction',
    'VerifyUserAction',
    'ConfigureNetworkAction',
    'BootstrapDotfilesAction',
]
