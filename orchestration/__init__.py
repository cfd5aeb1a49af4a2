"""
Orchestration layer for pipeline execution.

Sequential stage runner with outcome-keyed post-run hooks.
"""

from .outcome import Outcome
from .context import RunContext
from .stage_runner import ALWAYS, StageRunner, run

__all__ = [
    "ALWAYS",
    "Outcome",
    "RunContext",
    "StageRunner",
    "run",
]
