"""
Error taxonomy for pipeline execution.

Configuration errors abort before any stage or hook runs. Stage failures
are classified by the runner and never escape it.
"""

from typing import Optional

from .stage import FailurePolicy


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PipelineError):
    """Malformed stage list, hook mapping or pipeline configuration."""


class StageFailure(PipelineError):
    """
    A stage action failed.

    Carries the failure policy of the stage so callers can tell a fatal
    stop from a logged, non-fatal failure.
    """

    def __init__(self, stage_name: str, policy: FailurePolicy, message: str):
        super().__init__(f"Stage '{stage_name}' failed ({policy}): {message}")
        self.stage_name = stage_name
        self.policy = policy
        self.message = message


class StageTimeoutError(StageFailure):
    """Injected by the runner once the wall-clock budget is exceeded."""

    def __init__(self, stage_name: str, timeout_sec: float):
        super().__init__(
            stage_name,
            FailurePolicy.FATAL,
            f"pipeline timed out after {timeout_sec:.1f}s",
        )
        self.timeout_sec = timeout_sec


class ToolError(PipelineError):
    """An external command could not be run or exited non-zero."""

    def __init__(self, command: list[str], message: str, returncode: Optional[int] = None):
        super().__init__(f"{' '.join(command)}: {message}")
        self.command = command
        self.returncode = returncode


class ArchiveError(PipelineError):
    """Artifacts could not be archived."""
