"""Guest address and SSH port discovery, host port forwarding and firewall.

Address and port detection are ordered strategy chains: each strategy
returns ``(found, value)`` and the first hit wins. New fallbacks are added
by appending to the chain.
"""

import ipaddress
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional

from common import ActionResult, run_command
from config import WorkflowConfig
from executor import CommandExecutor
from probe import StateProbe

logger = logging.getLogger(__name__)

SSHD_CONFIG = '/etc/ssh/sshd_config'
SSH_SERVICE = 'sshd'

Strategy = Callable[[CommandExecutor, str], tuple[bool, Optional[str]]]

_PORT_LINE_RE = re.compile(r'^\s*Port\s+(\d+)\s*$', re.IGNORECASE | re.MULTILINE)


def valid_ipv4(value: str) -> bool:
    try:
        address = ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return not address.is_loopback and not address.is_unspecified


def _valid_port(text: str) -> tuple[bool, Optional[str]]:
    text = text.strip()
    if text.isdigit() and 1 <= int(text) <= 65535:
        return True, text
    return False, None


# -----------------------------------------------------------------------------
# Guest address strategies
# -----------------------------------------------------------------------------

def address_from_hostname(executor: CommandExecutor, name: str) -> tuple[bool, Optional[str]]:
    rc, out = executor.run(name, 'hostname -I', quiet=True)
    if rc != 0 or not out:
        return False, None
    # hostname -I prints addresses only; the first token must be one
    first = out.split()[0]
    return (True, first) if valid_ipv4(first) else (False, None)


def address_from_eth0(executor: CommandExecutor, name: str) -> tuple[bool, Optional[str]]:
    rc, out = executor.run(name, 'ip -4 addr show eth0', quiet=True)
    if rc != 0:
        return False, None
    match = re.search(r'inet\s+(\d{1,3}(?:\.\d{1,3}){3})', out)
    if match and valid_ipv4(match.group(1)):
        return True, match.group(1)
    return False, None


def address_from_any_interface(executor: CommandExecutor, name: str) -> tuple[bool, Optional[str]]:
    rc, out = executor.run(name, "ip -4 -o addr show | grep -v ' lo '", quiet=True)
    if rc != 0:
        return False, None
    for line in out.splitlines():
        match = re.search(r'inet\s+(\d{1,3}(?:\.\d{1,3}){3})', line)
        if match and valid_ipv4(match.group(1)):
            return True, match.group(1)
    return False, None


ADDRESS_STRATEGIES: list[Strategy] = [
    address_from_hostname,
    address_from_eth0,
    address_from_any_interface,
]


# -----------------------------------------------------------------------------
# SSH port strategies (against sshd_config)
# -----------------------------------------------------------------------------

def port_from_config_line(executor: CommandExecutor, name: str) -> tuple[bool, Optional[str]]:
    rc, out = executor.run(name, f'cat {SSHD_CONFIG}', quiet=True)
    if rc != 0:
        return False, None
    match = _PORT_LINE_RE.search(out)
    return _valid_port(match.group(1)) if match else (False, None)


def port_from_grep(executor: CommandExecutor, name: str) -> tuple[bool, Optional[str]]:
    rc, out = executor.run(
        name, f"grep -iE '^[[:space:]]*Port[[:space:]]+[0-9]+' {SSHD_CONFIG} | awk '{{print $2}}' | head -n1",
        quiet=True,
    )
    if rc != 0:
        return False, None
    return _valid_port(out)


def port_from_effective_config(executor: CommandExecutor, name: str) -> tuple[bool, Optional[str]]:
    rc, out = executor.run(name, "sshd -T 2>/dev/null | awk '/^port /{print $2; exit}'", quiet=True)
    if rc != 0:
        return False, None
    return _valid_port(out)


PORT_STRATEGIES: list[Strategy] = [
    port_from_config_line,
    port_from_grep,
    port_from_effective_config,
]


def first_success(strategies: list[Strategy], executor: CommandExecutor, name: str) -> Optional[str]:
    """Run strategies in order and return the first found value."""
    for strategy in strategies:
        try:
            found, value = strategy(executor, name)
        except Exception as e:
            logger.debug(f"Strategy {strategy.__name__} raised: {e}")
            continue
        if found:
            logger.debug(f"Strategy {strategy.__name__} found {value}")
            return value
        logger.debug(f"Strategy {strategy.__name__} found nothing")
    return None


# -----------------------------------------------------------------------------
# Host network control (Windows netsh)
# -----------------------------------------------------------------------------

class HostNetwork:
    """Port proxy and inbound firewall rules on the control host."""

    def __init__(self, netsh: str = 'netsh.exe', timeout: int = 60):
        self.netsh = netsh
        self.timeout = timeout

    def _netsh(self, *args: str) -> tuple[int, str]:
        rc, out, err = run_command([self.netsh, *args], timeout=self.timeout)
        return rc, (out + err).strip()

    def delete_port_proxy(self, listen_port: int, listen_address: str) -> bool:
        rc, _ = self._netsh(
            'interface', 'portproxy', 'delete', 'v4tov4',
            f'listenport={listen_port}', f'listenaddress={listen_address}',
        )
        return rc == 0

    def port_proxy_listen_addresses(self, listen_port: int) -> list[str]:
        """Listen addresses of existing v4tov4 rules on ``listen_port``."""
        rc, out = self._netsh('interface', 'portproxy', 'show', 'v4tov4')
        if rc != 0:
            return []
        addresses = []
        for line in out.splitlines():
            parts = line.split()
            if len(parts) == 4 and parts[1] == str(listen_port):
                addresses.append(parts[0])
        return addresses

    def add_port_proxy(self, listen_port: int, listen_address: str, connect_address: str, connect_port: int) -> bool:
        rc, out = self._netsh(
            'interface', 'portproxy', 'add', 'v4tov4',
            f'listenport={listen_port}', f'listenaddress={listen_address}',
            f'connectport={connect_port}', f'connectaddress={connect_address}',
        )
        if rc != 0:
            logger.error(f"netsh portproxy add failed: {out}")
        return rc == 0

    def firewall_rule_exists(self, rule_name: str) -> bool:
        rc, _ = self._netsh('advfirewall', 'firewall', 'show', 'rule', f'name={rule_name}')
        return rc == 0

    def add_firewall_rule(self, rule_name: str, port: int) -> bool:
        rc, out = self._netsh(
            'advfirewall', 'firewall', 'add', 'rule', f'name={rule_name}',
            'dir=in', 'action=allow', 'protocol=TCP', f'localport={port}',
        )
        if rc != 0:
            logger.error(f"netsh firewall add failed: {out}")
        return rc == 0


def firewall_rule_name(name: str, port: int) -> str:
    return f'WSL {name} SSH {port}'


class NetworkConfigurator:
    """Optional SSH reachability for the guest. Failures are warnings only."""

    def __init__(
        self,
        executor: CommandExecutor,
        probe: StateProbe,
        host: Optional[HostNetwork] = None,
        prompter=None,
        address_strategies: Optional[list[Strategy]] = None,
        port_strategies: Optional[list[Strategy]] = None,
    ):
        self.executor = executor
        self.probe = probe
        self.host = host or HostNetwork()
        self.prompter = prompter
        self.address_strategies = address_strategies or ADDRESS_STRATEGIES
        self.port_strategies = port_strategies or PORT_STRATEGIES

    def detect_guest_address(self, name: str) -> Optional[str]:
        address = first_success(self.address_strategies, self.executor, name)
        if address:
            logger.info(f"Guest address for '{name}': {address}")
        else:
            logger.warning(f"Could not detect an IPv4 address for '{name}'")
        return address

    def detect_service_port(self, name: str, default_port: int = 22, fallback_port: int = 4444) -> int:
        """Configured SSH port, else the default port if listening, else ``fallback_port``."""
        port = first_success(self.port_strategies, self.executor, name)
        if port:
            logger.info(f"SSH port from {SSHD_CONFIG}: {port}")
            return int(port)
        if self.probe.port_listening(name, default_port):
            logger.info(f"SSH listening on default port {default_port}")
            return default_port
        logger.warning(f"Could not determine SSH port, assuming {fallback_port}")
        return fallback_port

    def configure_forwarding(
        self,
        host_port: int,
        name: str,
        listen_address: str,
        guest_port: int,
        guest_address: Optional[str] = None,
    ) -> bool:
        """Replace any forwarding rule for ``host_port`` with one to the guest."""
        address = guest_address or self.detect_guest_address(name)
        if not address:
            return False
        # delete-then-add keeps one rule per host port, whatever address it listens on
        stale = self.host.port_proxy_listen_addresses(host_port)
        for address_in_use in dict.fromkeys([*stale, listen_address]):
            self.host.delete_port_proxy(host_port, address_in_use)
        if not self.host.add_port_proxy(host_port, listen_address, address, guest_port):
            return False
        logger.info(f"Forwarding {listen_address}:{host_port} -> {address}:{guest_port}")
        return True

    def configure_firewall_admission(self, host_port: int, name: str) -> bool:
        rule = firewall_rule_name(name, host_port)
        if self.host.firewall_rule_exists(rule):
            logger.info(f"Firewall rule '{rule}' already present")
            return True
        if not self.host.add_firewall_rule(rule, host_port):
            return False
        logger.info(f"Added firewall rule '{rule}'")
        return True

    def ensure_service(self, name: str) -> bool:
        """Make sure sshd is active, offering to start it when it is not."""
        if self.probe.service_active(name, SSH_SERVICE):
            return True
        logger.warning(f"SSH service is not active in '{name}'")
        if self.prompter is not None and not self.prompter.confirm("Start the SSH service now?", default=True):
            return False
        return self.start_service(name)

    def start_service(self, name: str) -> bool:
        rc, out = self.executor.run(name, 'ssh-keygen -A', quiet=True)
        if rc != 0:
            logger.warning(f"SSH host key generation had issues: {out}")
        rc, out = self.executor.run(name, 'sshd -t', quiet=True)
        if rc != 0:
            logger.error(f"SSH configuration is invalid: {out}")
            return False
        rc, out = self.executor.run(name, f'systemctl enable --now {SSH_SERVICE}', quiet=True)
        if rc != 0:
            logger.error(f"Failed to start SSH service: {out}")
            return False
        if not self.probe.service_active(name, SSH_SERVICE):
            logger.error("SSH service is not running after start")
            return False
        logger.info("SSH service started")
        return True

    def configure(
        self,
        name: str,
        host_port: int = 4444,
        listen_address: str = '0.0.0.0',
        default_port: int = 22,
        fallback_port: int = 4444,
    ) -> bool:
        """Service check, address/port detection, forwarding and firewall."""
        if not self.ensure_service(name):
            logger.warning("Skipping network configuration: SSH service not active")
            return False

        address = self.detect_guest_address(name)
        if not address:
            return False
        guest_port = self.detect_service_port(name, default_port, fallback_port)

        forwarded = self.configure_forwarding(host_port, name, listen_address, guest_port, guest_address=address)
        if not forwarded:
            logger.warning("Port forwarding could not be configured")
        admitted = self.configure_firewall_admission(host_port, name)
        if not admitted:
            logger.warning("Firewall rule could not be configured")
        return forwarded and admitted


@dataclass
class ConfigureNetworkAction:
    """Optional SSH forwarding; failures downgrade to warnings."""
    name: str
    network: NetworkConfigurator

    def run(self, config: WorkflowConfig, _context: dict) -> ActionResult:
        start = time.time()
        ok = self.network.configure(
            config.name,
            host_port=config.ssh_host_port,
            listen_address=config.listen_address,
            default_port=config.ssh_default_port,
            fallback_port=config.ssh_fallback_port,
        )
        if not ok:
            return ActionResult(
                success=False,
                message="Network configuration incomplete",
                duration=time.time() - start,
                continue_on_failure=True,
            )
        return ActionResult(
            success=True,
            message=f"SSH reachable on host port {config.ssh_host_port}",
            duration=time.time() - start,
            context_updates={'state': 'NetworkConfigured', 'ssh_host_port': config.ssh_host_port},
        )
