"""Operator prompts.

ConsolePrompter asks on the terminal; DefaultsPrompter answers every
question with its default so the workflow never blocks on input.
"""

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class ConsolePrompter:
    """Ask the operator on stdin/stdout."""

    interactive = True

    def ask(self, question: str, default: Optional[str] = None) -> str:
        suffix = f" [{default}]" if default else ""
        answer = input(f"{question}{suffix}: ").strip()
        return answer or (default or '')

    def confirm(self, question: str, default: bool = False) -> bool:
        hint = "[Y/n]" if default else "[y/N]"
        answer = input(f"{question} {hint} ").strip().lower()
        if not answer:
            return default
        return answer in ('y', 'yes')

    def choose(self, question: str, options: list[tuple[str, str]], default: str) -> str:
        """Ask for one of ``options`` ((key, label) pairs) and return its key."""
        keys = [key for key, _ in options]
        print(question)
        for key, label in options:
            marker = '*' if key == default else ' '
            print(f"  {marker} [{key}] {label}")
        while True:
            answer = input(f"Choice ({'/'.join(keys)}) [{default}]: ").strip().lower()
            if not answer:
                return default
            if answer in keys:
                return answer
            print(f"Please answer one of: {', '.join(keys)}")


class DefaultsPrompter:
    """Answer every prompt with its default (non-interactive runs)."""

    interactive = False

    def ask(self, question: str, default: Optional[str] = None) -> str:
        logger.debug(f"Using default for '{question}': {default!r}")
        return default or ''

    def confirm(self, question: str, default: bool = False) -> bool:
        logger.debug(f"Using default for '{question}': {default}")
        return default

    def choose(self, question: str, options: list[tuple[str, str]], default: str) -> str:
        logger.debug(f"Using default for '{question}': {default}")
        return default
