from __future__ import annotations

from enum import Enum

"""RunState enum for one processor invocation.

State transitions:
    registered -> validating -> (validation_failed | validated)
    validated -> processing -> (processing_failed | processed)
    processed -> post_processed

``validation_failed``, ``processing_failed`` and ``post_processed`` are terminal.
When validation is explicitly skipped the run moves registered -> validated
directly.
"""

__all__ = [
    "RunState",
    "RunStateMachine",
    "InvalidTransitionError",
]


class InvalidTransitionError(Exception):
    """Raised when a run tries to move to a state not reachable from the current one."""


class RunState(Enum):
    REGISTERED = "registered"
    VALIDATING = "validating"
    VALIDATION_FAILED = "validation_failed"
    VALIDATED = "validated"
    PROCESSING = "processing"
    PROCESSING_FAILED = "processing_failed"
    PROCESSED = "processed"
    POST_PROCESSED = "post_processed"

    @property
    def is_terminal(self) -> bool:
        return not _TRANSITIONS[self]


_TRANSITIONS: dict[RunState, frozenset[RunState]] = {
    RunState.REGISTERED: frozenset({RunState.VALIDATING, RunState.VALIDATED}),
    RunState.VALIDATING: frozenset({RunState.VALIDATION_FAILED, RunState.VALIDATED}),
    RunState.VALIDATION_FAILED: frozenset(),
    RunState.VALIDATED: frozenset({RunState.PROCESSING}),
    RunState.PROCESSING: frozenset({RunState.PROCESSING_FAILED, RunState.PROCESSED}),
    RunState.PROCESSING_FAILED: frozenset(),
    RunState.PROCESSED: frozenset({RunState.POST_PROCESSED}),
    RunState.POST_PROCESSED: frozenset(),
}


class RunStateMachine:
    """Tracks the state of a single run and rejects illegal transitions."""

    def __init__(self) -> None:
        self.state = RunState.REGISTERED
        self.history: list[RunState] = [RunState.REGISTERED]

    def advance(self, new_state: RunState) -> RunState:
        if new_state not in _TRANSITIONS[self.state]:
            raise InvalidTransitionError(f"{self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)
        return new_state

    def fail(self) -> RunState:
        """Move to the failure terminal matching the current phase."""
        if self.state in (RunState.REGISTERED, RunState.VALIDATING):
            if self.state is RunState.REGISTERED:
                self.advance(RunState.VALIDATING)
            return self.advance(RunState.VALIDATION_FAILED)
        if self.state is RunState.VALIDATED:
            self.advance(RunState.PROCESSING)
        if self.state is RunState.PROCESSING:
            return self.advance(RunState.PROCESSING_FAILED)
        # already terminal or past processing; nothing to fail into
        return self.state
