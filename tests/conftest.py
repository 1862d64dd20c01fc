"""Shared pytest fixtures for wsl-driver tests."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from actions import Services  # noqa: E402
from config import WorkflowConfig  # noqa: E402


class FakeExecutor:
    """Scripted stand-in for CommandExecutor.

    ``guest`` (commands run inside the guest) and ``host`` (wsl.exe
    management arguments, space-joined) map a substring to a response:
    - an ``(rc, output)`` tuple
    - a list of tuples returned in turn, the last one repeating
    - an exception instance to raise

    The first matching substring wins. Unmatched commands succeed with no
    output. Every call is recorded in ``calls`` as (kind, name, identity, command).
    """

    def __init__(self, guest=None, host=None, interactive_rc=0):
        self.guest = dict(guest or {})
        self.host = dict(host or {})
        self.interactive_rc = interactive_rc
        self.calls = []

    def _respond(self, rules, text):
        for pattern, response in rules.items():
            if pattern not in text:
                continue
            if isinstance(response, list):
                value = response.pop(0) if len(response) > 1 else response[0]
            else:
                value = response
            if isinstance(value, Exception):
                raise value
            return value
        return 0, ''

    def run(self, name, command, identity='root', quiet=False, login=False, timeout=None):
        self.calls.append(('run', name, identity, command))
        return self._respond(self.guest, command)

    def run_interactive(self, name, command, identity='root'):
        self.calls.append(('interactive', name, identity, command))
        return self.interactive_rc

    def manage(self, *args, timeout=None):
        command = ' '.join(args)
        self.calls.append(('manage', None, None, command))
        return self._respond(self.host, command)

    def commands(self, kind=None):
        return [c[3] for c in self.calls if kind is None or c[0] == kind]

    def ran(self, substring, kind=None):
        return any(substring in c for c in self.commands(kind))


class FakeHostNetwork:
    """In-memory port proxy table and firewall rule set."""

    def __init__(self, add_ok=True, firewall_ok=True, firewall_rules=None):
        self.add_ok = add_ok
        self.firewall_ok = firewall_ok
        self.proxies = {}
        self.firewall_rules = set(firewall_rules or [])
        self.calls = []

    def delete_port_proxy(self, listen_port, listen_address):
        self.calls.append(('delete', listen_port, listen_address))
        self.proxies.pop((listen_address, listen_port), None)
        return True

    def port_proxy_listen_addresses(self, listen_port):
        return [address for address, port in self.proxies if port == listen_port]

    def add_port_proxy(self, listen_port, listen_address, connect_address, connect_port):
        self.calls.append(('add', listen_port, listen_address, connect_address, connect_port))
        if not self.add_ok:
            return False
        self.proxies[(listen_address, listen_port)] = (connect_address, connect_port)
        return True

    def firewall_rule_exists(self, rule_name):
        return rule_name in self.firewall_rules

    def add_firewall_rule(self, rule_name, port):
        self.calls.append(('firewall', rule_name, port))
        if not self.firewall_ok:
            return False
        self.firewall_rules.add(rule_name)
        return True


class ScriptedPrompter:
    """Interactive prompter answering from a list, then with defaults."""

    interactive = True

    def __init__(self, answers=None):
        self.answers = list(answers or [])
        self.questions = []
        self.options = []

    def _next(self, question, default):
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else default

    def ask(self, question, default=None):
        return self._next(question, default or '')

    def confirm(self, question, default=False):
        return self._next(question, default)

    def choose(self, question, options, default):
        self.options.append([key for key, _ in options])
        return self._next(question, default)


def converged_guest_rules():
    """Guest responses for an environment that is already fully provisioned."""
    return {
        'echo ready': (0, 'ready'),
        'shell:': (0, 'shell:42'),
        'id -u': (0, '1000'),
        'id -nG': (0, 'dev wheel'),
        'sudo -n true': (0, ''),
        'trustdb.gpg': (0, ''),
        'pacman -Qq': (0, 'sudo\nbase-devel\ngit\ncurl\nopenssh\nzsh\nneovim'),
        'chezmoi source-path': (0, ''),
        'systemctl is-active': (0, ''),
    }


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config discovery away from the real home directory."""
    home = tmp_path / 'home'
    home.mkdir()
    monkeypatch.setenv('HOME', str(home))
    monkeypatch.delenv('WSL_DRIVER_CONFIG', raising=False)
    monkeypatch.delenv('LOCALAPPDATA', raising=False)
    return home


@pytest.fixture
def image_file(tmp_path):
    """A local rootfs tarball."""
    path = tmp_path / 'archlinux.tar'
    path.write_bytes(b'rootfs')
    return path


@pytest.fixture
def workflow_config(tmp_path, image_file):
    """Config for a guest named arch-test with fast polling."""
    return WorkflowConfig(
        name='arch-test',
        image=str(image_file),
        username='dev',
        install_dir=tmp_path / 'distros',
        image_cache_dir=tmp_path / 'images',
        max_attempts=3,
        delay=0,
        initial_delay=0,
    )


@pytest.fixture
def fake_executor():
    return FakeExecutor(guest=converged_guest_rules(), host={'--list': (0, 'arch-test')})


@pytest.fixture
def fake_host():
    return FakeHostNetwork()


@pytest.fixture
def make_services(workflow_config, fake_host):
    """Build Services around a given FakeExecutor."""
    def build(executor, config=None, prompter=None):
        return Services.build(config or workflow_config, executor=executor, host=fake_host, prompter=prompter)
    return build
