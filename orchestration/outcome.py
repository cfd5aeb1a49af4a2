"""
Run outcomes.

Explicit outcome enumeration and the transitions allowed between them.
"""

from enum import Enum, auto


class Outcome(Enum):
    """
    Terminal classification of a pipeline run.

    A run starts PENDING and moves to exactly one terminal outcome when it
    is finalized.
    """

    PENDING = auto()
    SUCCESS = auto()
    UNSTABLE = auto()
    FAILURE = auto()

    def is_terminal(self) -> bool:
        """Check if this is a terminal outcome."""
        return self is not Outcome.PENDING

    def worst(self, other: 'Outcome') -> 'Outcome':
        """Return the more severe of two outcomes."""
        return self if _SEVERITY[self] >= _SEVERITY[other] else other

    def __str__(self) -> str:
        return self.name


_SEVERITY = {
    Outcome.PENDING: 0,
    Outcome.SUCCESS: 1,
    Outcome.UNSTABLE: 2,
    Outcome.FAILURE: 3,
}


# Valid outcome transitions
VALID_TRANSITIONS = {
    Outcome.PENDING: {
        Outcome.SUCCESS,
        Outcome.UNSTABLE,
        Outcome.FAILURE,
    },
    Outcome.SUCCESS: set(),   # Terminal
    Outcome.UNSTABLE: set(),  # Terminal
    Outcome.FAILURE: set(),   # Terminal
}


def is_valid_transition(from_outcome: Outcome, to_outcome: Outcome) -> bool:
    """
    Check if an outcome transition is valid.

    Args:
        from_outcome: Current outcome
        to_outcome: Target outcome

    Returns:
        True if transition is valid
    """
    return to_outcome in VALID_TRANSITIONS.get(from_outcome, set())
