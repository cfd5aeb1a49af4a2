"""
Run context.

Immutable context object threaded through every stage of a run.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from types import MappingProxyType
from typing import Mapping, Optional

from domain.stage import ArtifactArchiveRequest, StageRecord, StageStatus
from .outcome import Outcome, is_valid_transition


def _frozen_env(environment: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return MappingProxyType(dict(environment or {}))


@dataclass(frozen=True)
class RunContext:
    """
    Immutable context for one pipeline run.

    Each step of the runner returns a new context with updated fields.
    Stage records and archive requests are only ever appended.
    """

    # Read-only snapshot of the environment for the whole run
    environment: Mapping[str, str] = field(default_factory=lambda: _frozen_env(None))

    # Final classification, fixed once at run end
    outcome: Outcome = Outcome.PENDING

    # Execution history
    executed_stages: tuple[StageRecord, ...] = field(default_factory=tuple)
    archive_requests: tuple[ArtifactArchiveRequest, ...] = field(default_factory=tuple)

    # Execution metadata
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    timed_out: bool = False

    @classmethod
    def create(cls, environment: Optional[Mapping[str, str]] = None) -> 'RunContext':
        """
        Create a fresh context with a snapshot of the given environment.

        Args:
            environment: Name to value mapping, copied so later changes are not seen

        Returns:
            New PENDING RunContext
        """
        return cls(environment=_frozen_env(environment))

    def with_record(self, record: StageRecord) -> 'RunContext':
        """Return new context with one more stage record appended."""
        return replace(self, executed_stages=self.executed_stages + (record,))

    def with_archives(self, requests: tuple[ArtifactArchiveRequest, ...]) -> 'RunContext':
        """Return new context with archive requests appended."""
        if not requests:
            return self
        return replace(self, archive_requests=self.archive_requests + tuple(requests))

    def with_timeout(self) -> 'RunContext':
        """Return new context flagged as timed out."""
        return replace(self, timed_out=True)

    def finalized(self, outcome: Outcome) -> 'RunContext':
        """
        Return new context with the terminal outcome set.

        Raises:
            ValueError: If the outcome was already fixed or is not terminal
        """
        if not is_valid_transition(self.outcome, outcome):
            raise ValueError(f"Invalid outcome transition: {self.outcome} → {outcome}")
        return replace(self, outcome=outcome, end_time=datetime.now())

    def env(self, name: str, default: str = "") -> str:
        """Look up an environment value from the snapshot."""
        return self.environment.get(name, default)

    def status_of(self, stage_name: str) -> Optional[StageStatus]:
        """Recorded status of a stage, or None if it was never reached."""
        for record in self.executed_stages:
            if record.name == stage_name:
                return record.status
        return None

    @property
    def has_failures(self) -> bool:
        return any(r.status is StageStatus.FAILED for r in self.executed_stages)

    @property
    def is_degraded(self) -> bool:
        """True once any stage failed, fatal or not."""
        return any(r.is_failure for r in self.executed_stages)

    @property
    def is_finalized(self) -> bool:
        return self.outcome.is_terminal()

    @property
    def elapsed_time(self) -> float:
        """Get elapsed time in seconds."""
        end = self.end_time or datetime.now()
        return (end - self.start_time).total_seconds()

    def get_summary(self) -> dict:
        """
        Get summary of the run.

        Returns:
            Dict with execution summary
        """
        return {
            "outcome": str(self.outcome),
            "elapsed_time_sec": self.elapsed_time,
            "start_time": self.start_time.isoformat(),
            "stages": [r.to_dict() for r in self.executed_stages],
            "archive_patterns": [a.glob_pattern for a in self.archive_requests],
            "timed_out": self.timed_out,
        }
