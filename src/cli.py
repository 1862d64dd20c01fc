#!/usr/bin/env python3
"""CLI entry point for wsl-driver.

Commands:
- run:    Provision a guest (fresh) or repair an existing one (converge)
- list:   List available workflows
- status: Read-only status of an existing guest
"""

import argparse
import json
import logging
import subprocess
import sys
from pathlib import Path

from actions import Services
from config import ConfigError, load_workflow_config
from prompt import ConsolePrompter, DefaultsPrompter
from scenarios import Orchestrator, get_scenario, list_scenarios

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130

logger = logging.getLogger(__name__)


def get_version():
    """Get version from git tags."""
    try:
        result = subprocess.run(
            ['git', 'describe', '--tags', '--abbrev=0'],
            capture_output=True, text=True,
            cwd=Path(__file__).parent,
            check=False,
        )
        return result.stdout.strip() if result.returncode == 0 else 'dev'
    except Exception:
        return 'dev'


def configure_logging(verbose: bool = False, json_output: bool = False):
    """Configure root logging; JSON mode keeps stdout for the report."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr if json_output else sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='wsl-driver',
        description='Provision and converge a WSL guest environment',
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'wsl-driver {get_version()}'
    )
    sub = parser.add_subparsers(dest='command')

    run = sub.add_parser('run', help='Run a provisioning workflow')
    run.add_argument('scenario', choices=list_scenarios(), help='Workflow to run')
    run.add_argument('--config', '-c', type=Path, help='YAML config file')
    run.add_argument('--name', '-n', help='Environment name (default: archlinux)')
    run.add_argument('--image', '-i', help='Rootfs tarball path or http(s) URL (fresh only)')
    run.add_argument('--user', '-u', dest='username', help='Primary account to create')
    run.add_argument(
        '--package', '-p',
        action='append',
        dest='packages',
        help='Package to install (repeatable, replaces the default set)'
    )
    run.add_argument(
        '--dotfiles',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Bootstrap dotfiles with chezmoi'
    )
    run.add_argument('--dotfiles-repo', help='Dotfile repository (owner/name or URL)')
    run.add_argument('--git-name', help='Name passed to the dotfile templates')
    run.add_argument('--git-email', help='Email passed to the dotfile templates')
    run.add_argument(
        '--network',
        action=argparse.BooleanOptionalAction,
        default=None,
        help='Forward a host port to the guest SSH service'
    )
    run.add_argument('--ssh-port', type=int, help='Host port forwarded to guest SSH (default: 4444)')
    run.add_argument(
        '--defaults',
        action='store_true',
        default=None,
        help='Never prompt; use defaults for every question'
    )
    run.add_argument(
        '--yes', '-y',
        action='store_true',
        help='Skip confirmation before replacing an existing environment'
    )
    run.add_argument(
        '--skip', '-s',
        action='append',
        default=[],
        help='Phases to skip (can be repeated)'
    )
    run.add_argument(
        '--timeout', '-t',
        type=int,
        help='Overall workflow timeout in seconds. Checked between phases (does not interrupt running phases).'
    )
    run.add_argument(
        '--dry-run',
        action='store_true',
        help='Show what would be executed without running actions'
    )
    run.add_argument(
        '--report-dir', '-r',
        type=Path,
        default=Path('reports'),
        help='Directory for run reports'
    )
    run.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs go to stderr)'
    )
    run.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    sub.add_parser('list', help='List available workflows')

    status = sub.add_parser('status', help='Show read-only status of an environment')
    status.add_argument('--config', '-c', type=Path, help='YAML config file')
    status.add_argument('--name', '-n', help='Environment name (default: archlinux)')
    status.add_argument('--user', '-u', dest='username', help='Account to check')
    status.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')

    return parser


def _overrides(args) -> dict:
    """CLI values that override the config file; None means not given."""
    return {
        'name': args.name,
        'image': args.image,
        'username': args.username,
        'packages': tuple(args.packages) if args.packages else None,
        'fresh': args.scenario == 'fresh',
        'use_defaults': args.defaults,
        'dotfiles_enabled': args.dotfiles,
        'dotfiles_repo': args.dotfiles_repo,
        'identity_name': args.git_name,
        'identity_email': args.git_email,
        'network_enabled': args.network,
        'ssh_host_port': args.ssh_port,
    }


def _confirm_replace(config, services) -> bool:
    """Ask before a fresh run destroys an existing environment."""
    if not services.probe.environment_exists(config.name):
        return True
    print(f"\nWARNING: environment '{config.name}' exists and will be unregistered.")
    print("Its virtual disk and all data in it will be deleted.")
    if services.prompter.confirm("Continue?", default=False):
        return True
    print("Aborted.")
    return False


def _connection_hint(config, context: dict):
    if context.get('state') == 'Done' and 'ssh_host_port' in context:
        logger.info(f"Connect with: ssh -p {context['ssh_host_port']} {config.username}@localhost")


def cmd_run(args) -> int:
    prompter = DefaultsPrompter() if args.defaults else ConsolePrompter()
    config = load_workflow_config(args.config, overrides=_overrides(args), prompter=prompter)
    scenario = get_scenario(args.scenario)
    services = Services.build(config, prompter=prompter)

    orchestrator = Orchestrator(
        scenario=scenario,
        config=config,
        services=services,
        report_dir=args.report_dir,
        skip_phases=args.skip,
        timeout=args.timeout,
        dry_run=args.dry_run,
    )

    if (
        getattr(scenario, 'requires_confirmation', False)
        and not args.dry_run
        and not args.yes
        and not config.use_defaults
        and not _confirm_replace(config, services)
    ):
        return EXIT_FAILURE

    success = orchestrator.run()

    if args.json_output and not args.dry_run:
        print(json.dumps(orchestrator.report.to_dict(orchestrator.context), indent=2))
    if success:
        _connection_hint(config, orchestrator.context)
    return EXIT_OK if success else EXIT_FAILURE


def cmd_list() -> int:
    print("Available workflows:")
    for name in list_scenarios():
        scenario = get_scenario(name)
        print(f"  {name:12} {scenario.description}")
    return EXIT_OK


def cmd_status(args) -> int:
    """Probe-only summary: nothing in the guest is changed."""
    config = load_workflow_config(
        args.config,
        overrides={'name': args.name, 'username': args.username, 'use_defaults': True},
    )
    services = Services.build(config, prompter=DefaultsPrompter())

    if not services.probe.environment_exists(config.name):
        print(f"Environment '{config.name}': not registered")
        return EXIT_FAILURE

    status = services.packages.check_status(config.name, config.username, list(config.packages))
    problems = services.users.verify_configuration(config.name, config.username)

    print(f"Environment '{config.name}': registered")
    print(f"  passwordless sudo ({config.username}): {'yes' if status.sudo_available else 'no'}")
    if status.sudo_available:
        print(f"  keyring initialized:  {'yes' if status.keyring_initialized else 'no'}")
    if status.missing_packages:
        print(f"  missing packages:     {', '.join(status.missing_packages)}")
    elif status.all_packages_installed:
        print("  packages:             all installed")
    for problem in problems:
        print(f"  ✗ {problem}")
    return EXIT_OK if status.all_packages_installed and not problems else EXIT_FAILURE


def main(argv=None):
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return EXIT_OK
    if args.command == 'list':
        return cmd_list()

    configure_logging(verbose=args.verbose, json_output=getattr(args, 'json_output', False))

    try:
        if args.command == 'status':
            return cmd_status(args)
        return cmd_run(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return EXIT_CONFIG
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return EXIT_INTERRUPTED


if __name__ == '__main__':
    sys.exit(main())
