"""
Stage domain models.

Immutable descriptions of pipeline work units and their results.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional


class FailurePolicy(Enum):
    """How a failing stage affects the rest of the run."""

    FATAL = "fatal"
    LOGGED = "logged"

    def __str__(self) -> str:
        return self.name


class StageStatus(Enum):
    """Recorded status of a stage after the runner visited it."""

    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    FAILED_NONFATAL = "failed_nonfatal"

    def __str__(self) -> str:
        return self.name


def always(context: Any) -> bool:
    """Default stage condition."""
    return True


@dataclass(frozen=True)
class ArtifactArchiveRequest:
    """Declarative request to archive files matching a glob after the run."""

    glob_pattern: str
    allow_empty: bool = False

    def __post_init__(self):
        if not self.glob_pattern:
            raise ValueError("glob_pattern cannot be empty")


@dataclass(frozen=True)
class StageResult:
    """
    Explicit result an action may return instead of raising.

    Returning ``None`` from an action is the same as ``StageResult.ok()``.
    """

    succeeded: bool = True
    error: Optional[str] = None
    archives: tuple[ArtifactArchiveRequest, ...] = field(default_factory=tuple)

    @classmethod
    def ok(cls, *archives: ArtifactArchiveRequest) -> 'StageResult':
        return cls(succeeded=True, archives=tuple(archives))

    @classmethod
    def failed(cls, error: str, *archives: ArtifactArchiveRequest) -> 'StageResult':
        return cls(succeeded=False, error=error, archives=tuple(archives))


@dataclass(frozen=True)
class Stage:
    """
    A named unit of pipeline work.

    Attributes:
        name: Unique name within the pipeline
        action: Callable receiving the run context; may return a StageResult
        condition: Predicate over the run context, the stage is skipped when False
        failure_policy: FATAL stops the run, LOGGED records and continues
        archives: Artifacts to archive once the action has been invoked
    """

    name: str
    action: Callable[[Any], Optional[StageResult]]
    condition: Callable[[Any], bool] = always
    failure_policy: FailurePolicy = FailurePolicy.FATAL
    archives: tuple[ArtifactArchiveRequest, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class StageRecord:
    """What happened to one stage during a run."""

    name: str
    status: StageStatus
    error_message: Optional[str] = None
    duration_sec: float = 0.0

    def __post_init__(self):
        if self.duration_sec < 0:
            raise ValueError(f"duration_sec must be non-negative, got {self.duration_sec}")

    @property
    def is_failure(self) -> bool:
        return self.status in (StageStatus.FAILED, StageStatus.FAILED_NONFATAL)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "status": str(self.status),
            "error_message": self.error_message,
            "duration_sec": round(self.duration_sec, 3),
        }
