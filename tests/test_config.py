#!/usr/bin/env python3
"""Tests for config.py - workflow configuration loading and validation."""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import (
    DEFAULT_PACKAGES,
    ConfigError,
    WorkflowConfig,
    find_config_file,
    get_base_dir,
    load_workflow_config,
)
from conftest import ScriptedPrompter


class TestWorkflowConfig:
    """Test WorkflowConfig defaults and normalization."""

    def test_defaults(self):
        config = WorkflowConfig(username='dev')
        assert config.name == 'archlinux'
        assert config.packages == DEFAULT_PACKAGES
        assert config.ssh_host_port == 4444
        assert config.validate() == []

    def test_is_immutable(self):
        config = WorkflowConfig(username='dev')
        with pytest.raises(AttributeError):
            config.username = 'other'

    def test_packages_list_becomes_tuple(self):
        assert WorkflowConfig(packages=['git', 'zsh']).packages == ('git', 'zsh')

    def test_packages_string_is_split(self):
        assert WorkflowConfig(packages='git zsh').packages == ('git', 'zsh')

    def test_paths_are_coerced(self, tmp_path):
        config = WorkflowConfig(install_dir=str(tmp_path / 'distros'), name='arch')
        assert config.install_dir == tmp_path / 'distros'


class TestValidate:
    """Test WorkflowConfig.validate."""

    def test_invalid_username(self):
        errors = WorkflowConfig(username='Dev User').validate()
        assert any('Invalid username' in e for e in errors)

    def test_root_username_rejected(self):
        errors = WorkflowConfig(username='root').validate()
        assert any("must not be 'root'" in e for e in errors)

    def test_fresh_requires_image(self):
        errors = WorkflowConfig(username='dev', fresh=True).validate()
        assert any('needs an image' in e for e in errors)

    def test_port_out_of_range(self):
        errors = WorkflowConfig(username='dev', ssh_host_port=70000).validate()
        assert any('ssh_host_port' in e for e in errors)

    def test_attempts_must_be_positive(self):
        errors = WorkflowConfig(username='dev', max_attempts=0).validate()
        assert any('max_attempts' in e for e in errors)

    def test_invalid_environment_name(self):
        errors = WorkflowConfig(username='dev', name='arch linux').validate()
        assert any('environment name' in e for e in errors)

    def test_wrong_types_reported_per_field(self):
        errors = WorkflowConfig(username='dev', ssh_host_port='4444', max_attempts=True, name=7).validate()
        assert len(errors) == 3
        assert any(e.startswith('ssh_host_port must be of type int') for e in errors)
        assert any(e.startswith('max_attempts must be of type int') for e in errors)
        assert any(e.startswith('name must be of type str') for e in errors)

    def test_non_string_packages_rejected(self):
        errors = WorkflowConfig(username='dev', packages=['git', 3]).validate()
        assert any('packages' in e for e in errors)


class TestBaseDir:
    """Test get_base_dir."""

    def test_uses_localappdata(self, monkeypatch, tmp_path):
        monkeypatch.setenv('LOCALAPPDATA', str(tmp_path))
        assert get_base_dir() == tmp_path / 'wsl-driver'

    def test_falls_back_to_home(self, isolated_home):
        assert get_base_dir() == isolated_home / '.local' / 'share' / 'wsl-driver'


class TestFindConfigFile:
    """Test config file discovery order."""

    def test_explicit_path(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text('workflow: {}\n')
        assert find_config_file(path) == path

    def test_explicit_missing_is_error(self, tmp_path):
        with pytest.raises(ConfigError, match='does not exist'):
            find_config_file(tmp_path / 'missing.yaml')

    def test_environment_variable(self, tmp_path, monkeypatch):
        path = tmp_path / 'env.yaml'
        path.write_text('workflow: {}\n')
        monkeypatch.setenv('WSL_DRIVER_CONFIG', str(path))
        assert find_config_file() == path

    def test_environment_variable_missing_is_error(self, tmp_path, monkeypatch):
        monkeypatch.setenv('WSL_DRIVER_CONFIG', str(tmp_path / 'missing.yaml'))
        with pytest.raises(ConfigError):
            find_config_file()

    def test_default_location(self, isolated_home):
        path = isolated_home / '.config' / 'wsl-driver' / 'config.yaml'
        path.parent.mkdir(parents=True)
        path.write_text('workflow: {}\n')
        assert find_config_file() == path

    def test_no_file_is_fine(self):
        assert find_config_file() is None


class TestLoadWorkflowConfig:
    """Test load_workflow_config."""

    def test_reads_workflow_mapping(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text("""
workflow:
  name: devbox
  username: dev
  packages: [git, zsh]
  network_enabled: true
  ssh_host_port: 2222
""")
        config = load_workflow_config(path)
        assert config.name == 'devbox'
        assert config.packages == ('git', 'zsh')
        assert config.network_enabled is True
        assert config.ssh_host_port == 2222

    def test_overrides_win_over_file(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text('workflow:\n  name: devbox\n  username: dev\n')
        config = load_workflow_config(path, overrides={'name': 'other', 'username': None})
        assert config.name == 'other'
        assert config.username == 'dev'

    def test_unknown_setting_rejected(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text('workflow:\n  usernam: dev\n')
        with pytest.raises(ConfigError, match='unknown settings: usernam'):
            load_workflow_config(path)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text('workflow: [unclosed\n')
        with pytest.raises(ConfigError, match='Invalid YAML'):
            load_workflow_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text('- a\n- b\n')
        with pytest.raises(ConfigError, match='mapping'):
            load_workflow_config(path)

    def test_defaults_take_host_username(self, monkeypatch):
        monkeypatch.setenv('USER', 'Alice')
        config = load_workflow_config(overrides={'use_defaults': True})
        assert config.username == 'alice'

    def test_prompts_for_username(self, monkeypatch):
        monkeypatch.setenv('USER', 'alice')
        prompter = ScriptedPrompter(['dev'])
        config = load_workflow_config(prompter=prompter)
        assert config.username == 'dev'
        assert prompter.questions == ['Username for the guest account']

    def test_prompts_for_image_in_fresh_mode(self):
        prompter = ScriptedPrompter(['/tmp/arch.tar'])
        config = load_workflow_config(overrides={'username': 'dev', 'fresh': True}, prompter=prompter)
        assert config.image == '/tmp/arch.tar'

    def test_fresh_with_defaults_and_no_image_fails(self):
        with pytest.raises(ConfigError, match='needs an image'):
            load_workflow_config(overrides={'username': 'dev', 'fresh': True, 'use_defaults': True})

    def test_prompts_for_dotfile_identity(self):
        prompter = ScriptedPrompter(['Dev Person', 'dev@example.com'])
        config = load_workflow_config(
            overrides={'username': 'dev', 'dotfiles_enabled': True},
            prompter=prompter,
        )
        assert config.identity_name == 'Dev Person'
        assert config.identity_email == 'dev@example.com'

    def test_no_prompts_with_defaults(self):
        prompter = ScriptedPrompter()
        load_workflow_config(
            overrides={'username': 'dev', 'dotfiles_enabled': True, 'use_defaults': True},
            prompter=prompter,
        )
        assert prompter.questions == []

    def test_invalid_values_raise(self):
        with pytest.raises(ConfigError, match='Invalid username'):
            load_workflow_config(overrides={'username': 'Not Valid'})

    def test_quoted_port_is_config_error(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text("workflow:\n  username: dev\n  ssh_host_port: '4444'\n")
        with pytest.raises(ConfigError, match='ssh_host_port must be of type int'):
            load_workflow_config(path)

    def test_wrong_bool_type_is_config_error(self, tmp_path):
        path = tmp_path / 'wsl.yaml'
        path.write_text("workflow:\n  username: dev\n  network_enabled: 'maybe'\n")
        with pytest.raises(ConfigError, match='network_enabled'):
            load_workflow_config(path)
