"""Workflow definitions and orchestration."""

import logging
import time
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from actions import Services
from config import WorkflowConfig
from reporting import RunReport

logger = logging.getLogger(__name__)

# Workflow states in the order a successful run passes through them
STATES = (
    'Start',
    'FeaturesReady',
    'EnvironmentReady',
    'PackageManagerReady',
    'UserReady',
    'NetworkConfigured',
    'DotfilesConfigured',
    'Done',
)


@runtime_checkable
class Scenario(Protocol):
    """Protocol for workflow definitions.

    Class attributes:
        name: Scenario identifier (e.g., 'fresh')
        description: Human-readable description
        requires_confirmation: Destroys an existing environment (default: False)
    """
    name: str
    description: str

    def get_phases(self, config: WorkflowConfig, services: Services) -> list[tuple[str, Any, str]]:
        """Return list of (phase_name, action, description) tuples."""
        ...


class Orchestrator:
    """Runs a scenario's phases in order against one guest environment.

    A failed phase stops the run unless its result sets
    ``continue_on_failure``, in which case it is recorded as a warning.
    Exceptions raised by a phase (ProvisionError) are fatal.
    """

    def __init__(
        self,
        scenario: Scenario,
        config: WorkflowConfig,
        services: Services,
        report_dir: Path,
        skip_phases: Optional[list[str]] = None,
        timeout: Optional[int] = None,
        dry_run: bool = False,
        write_report: bool = True,
    ):
        self.scenario = scenario
        self.config = config
        self.services = services
        self.report_dir = report_dir
        self.skip_phases = skip_phases or []
        self.timeout = timeout  # Overall run timeout in seconds
        self.dry_run = dry_run
        self.write_report = write_report
        self.report = RunReport(environment=config.name, report_dir=report_dir, scenario=scenario.name)
        self.context: dict[str, Any] = {'state': 'Start'}

    def preview(self) -> bool:
        """Show what would be executed without running. Returns True."""
        phases = self.scenario.get_phases(self.config, self.services)

        print("")
        print("═══════════════════════════════════════════════════════════════")
        print(f"  DRY-RUN: {self.scenario.name}")
        print(f"  Environment: {self.config.name}")
        print(f"  User: {self.config.username}")
        print("═══════════════════════════════════════════════════════════════")
        print("")

        print("Phases to execute:")
        phase_count = 0
        skip_count = 0

        for phase_name, action, description in phases:
            action_type = type(action).__name__
            if phase_name in self.skip_phases:
                print(f"  [SKIP] {phase_name}: {description}")
                skip_count += 1
            else:
                print(f"  [ OK ] {phase_name}: {description}")
                phase_count += 1
            print(f"         Action: {action_type}")
            print("")

        print("═══════════════════════════════════════════════════════════════")
        print(f"  Summary: {phase_count} phases to execute, {skip_count} to skip")
        if self.timeout:
            print(f"  Timeout: {self.timeout}s")
        print("  Mode: DRY-RUN (no changes made)")
        print("═══════════════════════════════════════════════════════════════")
        print("")

        return True

    def run(self) -> bool:
        """Run all phases. Returns True unless a fatal phase failed."""
        if self.dry_run:
            return self.preview()

        timeout_msg = f" (timeout: {self.timeout}s)" if self.timeout else ""
        logger.info(f"Starting '{self.scenario.name}' for environment: {self.config.name}{timeout_msg}")
        self.report.start()

        phases = self.scenario.get_phases(self.config, self.services)
        all_passed = True
        start_time = time.time()

        for phase_name, action, description in phases:
            if self.timeout:
                elapsed = time.time() - start_time
                if elapsed >= self.timeout:
                    logger.error(f"Workflow timeout ({self.timeout}s) exceeded after {elapsed:.1f}s")
                    self.report.fail_phase(phase_name, f"Timeout exceeded ({elapsed:.1f}s >= {self.timeout}s)", 0)
                    all_passed = False
                    break

            if phase_name in self.skip_phases:
                logger.info(f"Skipping phase: {phase_name}")
                self.report.skip_phase(phase_name, description)
                continue

            logger.info(f"Running phase: {phase_name} - {description}")
            self.report.start_phase(phase_name, description)

            try:
                result = action.run(self.config, self.context)
            except Exception as e:
                logger.error(f"Phase {phase_name} failed: {e}")
                logger.debug(f"Phase {phase_name} raised", exc_info=True)
                self.report.fail_phase(phase_name, str(e), 0)
                all_passed = False
                break

            if result.success:
                logger.info(f"Phase {phase_name} passed")
                self.report.pass_phase(phase_name, result.message, result.duration)
                self.context.update(result.context_updates or {})
            elif result.continue_on_failure:
                logger.warning(f"Phase {phase_name} incomplete, continuing: {result.message}")
                self.report.warn_phase(phase_name, result.message, result.duration)
                self.context.update(result.context_updates or {})
            else:
                logger.error(f"Phase {phase_name} failed: {result.message}")
                self.report.fail_phase(phase_name, result.message, result.duration)
                all_passed = False
                break

        if all_passed:
            self.context['state'] = 'Done'

        total_time = time.time() - start_time
        logger.info(f"Workflow finished in {total_time:.1f}s (state: {self.context['state']})")
        for warning in self.report.warnings:
            logger.warning(f"Warning from {warning.name}: {warning.message}")
        self.report.finish(all_passed, final_state=self.context['state'], write=self.write_report)
        return all_passed


# Registry of available scenarios
_scenarios: dict[str, type[Scenario]] = {}


def register_scenario(cls: type[Scenario]) -> type[Scenario]:
    """Decorator to register a scenario class."""
    _scenarios[cls.name] = cls
    return cls


def get_scenario(name: str) -> Scenario:
    """Get a scenario instance by name."""
    if name not in _scenarios:
        available = list(_scenarios.keys())
        raise ValueError(f"Unknown scenario: {name}. Available: {available}")
    return _scenarios[name]()


def list_scenarios() -> list[str]:
    """List available scenario names."""
    return sorted(_scenarios.keys())


# Import scenarios to trigger registration
from scenarios import provision  # noqa: E402, F401
