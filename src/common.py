"""Common utilities and types for guest provisioning."""

import logging
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# Case-insensitive substrings that mark command output as a failure report
FAILURE_PATTERNS = ('error:', 'failed', 'exception')

ROOT = 'root'


class ProvisionError(RuntimeError):
    """Raised when a prerequisite step fails and the workflow cannot continue."""


@dataclass
class ActionResult:
    """Result returned by an action."""
    success: bool
    message: str = ''
    duration: float = 0.0
    context_updates: dict = field(default_factory=dict)
    continue_on_failure: bool = False


def normalize_output(text: Optional[str]) -> str:
    """Strip NUL bytes and surrounding whitespace.

    wsl.exe writes UTF-16 text; decoded as UTF-8 every other byte is NUL.
    """
    if not text:
        return ''
    return text.replace('\x00', '').strip()


def looks_like_failure(text: str) -> bool:
    """Best-effort classifier for diagnostic text in command output."""
    lowered = text.lower()
    return any(pattern in lowered for pattern in FAILURE_PATTERNS)


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            errors='replace',  # undecodable bytes must not mask the exit status
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout or '', result.stderr or ''
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except Exception as e:
        return -1, '', str(e)
