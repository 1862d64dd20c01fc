"""Run reports (JSON and Markdown)."""

from reporting.report import PhaseResult, RunReport

__all__ = ['PhaseResult', 'RunReport']
