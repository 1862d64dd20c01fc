#!/usr/bin/env python3
"""Tests for actions/packages.py - pacman initialization and top-up."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from actions.packages import (
    KEYRING_INIT,
    SYSTEM_UPDATE,
    ConvergePackagesAction,
    InitializePackagesAction,
    PackageManagerInitializer,
    PackageStatus,
)
from common import ProvisionError
from conftest import FakeExecutor, converged_guest_rules
from probe import StateProbe


def _initializer(executor):
    return PackageManagerInitializer(executor, StateProbe(executor))


def _installs(executor):
    return [c for c in executor.commands('run') if c.startswith('pacman -S --noconfirm --needed')]


class TestInitialize:
    """Test PackageManagerInitializer.initialize."""

    def test_full_initialization(self):
        executor = FakeExecutor(guest={'trustdb.gpg': (1, ''), 'pacman -Qq': (0, 'sudo')})
        assert _initializer(executor).initialize('arch', ['sudo', 'git']) is True

        commands = executor.commands('run')
        assert KEYRING_INIT in commands
        assert SYSTEM_UPDATE in commands
        assert commands.index(KEYRING_INIT) < commands.index(SYSTEM_UPDATE)
        assert _installs(executor) == ['pacman -S --noconfirm --needed git']

    def test_keyring_already_initialized(self):
        executor = FakeExecutor(guest={'trustdb.gpg': (0, ''), 'pacman -Qq': (0, 'sudo')})
        _initializer(executor).initialize('arch', ['sudo'])
        assert KEYRING_INIT not in executor.commands('run')
        assert SYSTEM_UPDATE in executor.commands('run')

    def test_keyring_failure_is_fatal(self):
        executor = FakeExecutor(guest={'trustdb.gpg': (1, ''), 'pacman-key --init': (1, 'gpg: error')})
        with pytest.raises(ProvisionError, match='Keyring'):
            _initializer(executor).initialize('arch', ['sudo'])
        assert SYSTEM_UPDATE not in executor.commands('run')

    def test_update_failure_continues(self):
        executor = FakeExecutor(guest={
            'trustdb.gpg': (0, ''),
            'pacman -Syu': (1, 'error: failed retrieving file'),
            'pacman -Qq': (0, ''),
        })
        assert _initializer(executor).initialize('arch', ['git']) is True
        assert _installs(executor) == ['pacman -S --noconfirm --needed git']


class TestInstallMissing:
    """Test PackageManagerInitializer.install_missing."""

    def test_failures_are_aggregated(self):
        """One failed package does not stop the others."""
        executor = FakeExecutor(guest={
            'pacman -Qq': (0, ''),
            '--needed git': (1, 'error: target not found: git'),
        })
        assert _initializer(executor).install_missing('arch', ['git', 'zsh', 'curl']) is False
        assert len(_installs(executor)) == 3

    def test_nothing_missing(self):
        executor = FakeExecutor(guest={'pacman -Qq': (0, 'git\nzsh')})
        assert _initializer(executor).install_missing('arch', ['git', 'zsh']) is True
        assert _installs(executor) == []

    def test_package_names_are_quoted(self):
        executor = FakeExecutor(guest={'pacman -Qq': (0, '')})
        _initializer(executor).install_missing('arch', ['bad;name'])
        assert _installs(executor) == ["pacman -S --noconfirm --needed 'bad;name'"]


class TestCheckStatus:
    """Test the composite read-only status."""

    def test_no_sudo_stops_early(self):
        executor = FakeExecutor(guest={'sudo -n true': (1, '')})
        status = _initializer(executor).check_status('arch', 'dev', ['git'])
        assert status == PackageStatus()
        assert status.needs_full_initialize is True
        assert not executor.ran('trustdb.gpg')
        assert not executor.ran('pacman -Qq')

    def test_no_keyring_stops_early(self):
        executor = FakeExecutor(guest={'sudo -n true': (0, ''), 'trustdb.gpg': (1, '')})
        status = _initializer(executor).check_status('arch', 'dev', ['git'])
        assert status.sudo_available is True
        assert status.keyring_initialized is False
        assert not executor.ran('pacman -Qq')

    def test_reports_missing_packages(self):
        executor = FakeExecutor(guest=converged_guest_rules())
        status = _initializer(executor).check_status('arch', 'dev', ['git', 'htop'])
        assert status.needs_full_initialize is False
        assert status.missing_packages == ['htop']
        assert status.all_packages_installed is False

    def test_all_installed(self):
        executor = FakeExecutor(guest=converged_guest_rules())
        status = _initializer(executor).check_status('arch', 'dev', ['git'])
        assert status.all_packages_installed is True


class TestPackageActions:
    """Test package phase actions."""

    def test_converged_guest_is_left_alone(self, workflow_config):
        executor = FakeExecutor(guest=converged_guest_rules())
        result = ConvergePackagesAction(name='packages', packages=_initializer(executor)).run(workflow_config, {})
        assert result.success is True
        assert result.context_updates['state'] == 'PackageManagerReady'
        assert SYSTEM_UPDATE not in executor.commands('run')
        assert _installs(executor) == []

    def test_converge_tops_up_without_update(self, workflow_config):
        rules = converged_guest_rules()
        rules['pacman -Qq'] = (0, 'sudo\ngit')
        executor = FakeExecutor(guest=rules)
        result = ConvergePackagesAction(name='packages', packages=_initializer(executor)).run(workflow_config, {})
        assert result.success is True
        assert SYSTEM_UPDATE not in executor.commands('run')
        assert len(_installs(executor)) == len(workflow_config.packages) - 2

    def test_converge_without_sudo_runs_full_initialization(self, workflow_config):
        rules = converged_guest_rules()
        rules['sudo -n true'] = (1, '')
        executor = FakeExecutor(guest=rules)
        ConvergePackagesAction(name='packages', packages=_initializer(executor)).run(workflow_config, {})
        assert SYSTEM_UPDATE in executor.commands('run')

    def test_install_failure_is_warning(self, workflow_config):
        executor = FakeExecutor(guest={
            'trustdb.gpg': (0, ''),
            'pacman -Qq': (0, ''),
            'pacman -S --noconfirm': (1, 'error: failed to commit transaction'),
        })
        result = InitializePackagesAction(name='packages', packages=_initializer(executor)).run(workflow_config, {})
        assert result.success is False
        assert result.continue_on_failure is True
        assert result.context_updates['state'] == 'PackageManagerReady'
