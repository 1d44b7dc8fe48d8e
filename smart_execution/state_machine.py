"""
Smart Execution - Run State Machine.

============================================================
PURPOSE
============================================================
Manages the execution run lifecycle with strict transitions.

STATE MACHINE:

    IDLE
      │
      ▼
    VALIDATING ──────────────► REJECTED
      │                           ▲
      ▼                           │
    PLANNING ─────────────────────┘
      │
      ▼
    SUBMITTING(i) ───────────► PARTIALLY_FAILED
      │                           ▲
      ▼                           │
    CONFIRMING(i) ────────────────┘
      │
      ├──► SUBMITTING(i+1)
      └──► COMPLETED

INVARIANTS:
- Terminal states are final
- The child index only moves forward
- All transitions are logged and broadcast

============================================================
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from core.clock import ClockProtocol

from .types import ChildExecution, ChildOrderState, ExecutionState


logger = logging.getLogger(__name__)


# ============================================================
# STATE TRANSITION RULES
# ============================================================

VALID_TRANSITIONS: Dict[ExecutionState, Set[ExecutionState]] = {
    ExecutionState.IDLE: {
        ExecutionState.VALIDATING,
        ExecutionState.REJECTED,
    },
    ExecutionState.VALIDATING: {
        ExecutionState.PLANNING,
        ExecutionState.REJECTED,
    },
    ExecutionState.PLANNING: {
        ExecutionState.SUBMITTING,
        ExecutionState.REJECTED,
    },
    ExecutionState.SUBMITTING: {
        ExecutionState.CONFIRMING,
        ExecutionState.PARTIALLY_FAILED,
    },
    ExecutionState.CONFIRMING: {
        ExecutionState.SUBMITTING,
        ExecutionState.COMPLETED,
        ExecutionState.PARTIALLY_FAILED,
    },
    # Terminal states - no transitions out
    ExecutionState.COMPLETED: set(),
    ExecutionState.PARTIALLY_FAILED: set(),
    ExecutionState.REJECTED: set(),
}


CHILD_TRANSITIONS: Dict[ChildOrderState, Set[ChildOrderState]] = {
    ChildOrderState.PLANNED: {ChildOrderState.SUBMITTED, ChildOrderState.FAILED},
    ChildOrderState.SUBMITTED: {ChildOrderState.CONFIRMED, ChildOrderState.FAILED},
    ChildOrderState.CONFIRMED: set(),
    ChildOrderState.FAILED: set(),
}


def advance_child(child: ChildExecution, target: ChildOrderState) -> None:
    """
    Move a child order along planned -> submitted -> confirmed | failed.

    Raises:
        ValueError: If the transition is not allowed
    """
    if target not in CHILD_TRANSITIONS[child.state]:
        raise ValueError(
            f"Child order {child.sequence}: cannot move "
            f"{child.state.value} -> {target.value}"
        )
    child.state = target


# ============================================================
# STATE TRANSITION EVENT
# ============================================================

@dataclass
class StateTransitionEvent:
    """Event representing a run state transition."""

    execution_id: str
    """Execution run ID."""

    account_id: str
    """Account owning the run."""

    from_state: ExecutionState
    """Previous state."""

    to_state: ExecutionState
    """New state."""

    child_index: Optional[int] = None
    """Run-wide child sequence number for SUBMITTING/CONFIRMING."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    """When transition occurred."""

    reason: str = ""
    """Reason for transition."""

    details: Dict[str, Any] = field(default_factory=dict)
    """Additional details."""


StateListener = Callable[[StateTransitionEvent], None]


# ============================================================
# STATE TRANSITION GUARD
# ============================================================

class TransitionGuard:
    """
    Guard for state transitions.

    Ensures transitions are valid and provides reason for denial.
    """

    @staticmethod
    def can_transition(
        from_state: ExecutionState,
        to_state: ExecutionState,
        from_index: Optional[int] = None,
        to_index: Optional[int] = None,
    ) -> Tuple[bool, str]:
        """
        Check if transition is allowed.

        Returns:
            Tuple of (allowed, reason)
        """
        if from_state.is_terminal():
            return False, f"Cannot transition from terminal state {from_state.value}"

        if to_state not in VALID_TRANSITIONS.get(from_state, set()):
            return False, f"Invalid transition: {from_state.value} -> {to_state.value}"

        if to_state in (ExecutionState.SUBMITTING, ExecutionState.CONFIRMING):
            if to_index is None:
                return False, f"{to_state.value} requires a child index"

        if to_state == ExecutionState.CONFIRMING and from_index != to_index:
            return False, f"Confirming child {to_index} but submitted child {from_index}"

        if from_state == ExecutionState.CONFIRMING and to_state == ExecutionState.SUBMITTING:
            if to_index != (from_index or 0) + 1:
                return False, f"Child index must advance by one, got {from_index} -> {to_index}"

        return True, "Valid transition"


# ============================================================
# RUN STATE MACHINE
# ============================================================

class ExecutionStateMachine:
    """
    State machine for one execution run.

    Manages state transitions with:
    - Guard checks
    - Event emission
    - History tracking
    """

    def __init__(
        self,
        execution_id: str,
        account_id: str,
        listeners: Optional[List[StateListener]] = None,
        clock: Optional[ClockProtocol] = None,
    ):
        self._execution_id = execution_id
        self._clock = clock
        self._account_id = account_id
        self._state = ExecutionState.IDLE
        self._child_index: Optional[int] = None
        self._history: List[StateTransitionEvent] = []
        self._listeners: List[StateListener] = list(listeners or [])

    @property
    def current_state(self) -> ExecutionState:
        return self._state

    @property
    def child_index(self) -> Optional[int]:
        """Child being submitted or confirmed."""
        return self._child_index

    @property
    def history(self) -> List[StateTransitionEvent]:
        return list(self._history)

    def add_listener(self, listener: StateListener) -> None:
        """Add a transition listener."""
        self._listeners.append(listener)

    def transition_to(
        self,
        target_state: ExecutionState,
        reason: str = "",
        child_index: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> StateTransitionEvent:
        """
        Transition to a new state.

        Raises:
            ValueError: If transition is not allowed
        """
        allowed, why = TransitionGuard.can_transition(
            self._state,
            target_state,
            self._child_index,
            child_index,
        )
        if not allowed:
            raise ValueError(
                f"Cannot transition {self._execution_id} from "
                f"{self._state.value} to {target_state.value}: {why}"
            )

        event = StateTransitionEvent(
            execution_id=self._execution_id,
            account_id=self._account_id,
            from_state=self._state,
            to_state=target_state,
            child_index=child_index,
            timestamp=self._clock.now() if self._clock else datetime.now(timezone.utc),
            reason=reason,
            details=details or {},
        )

        self._state = target_state
        if child_index is not None:
            self._child_index = child_index
        self._history.append(event)

        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"State listener error: {e}")

        suffix = f"({child_index})" if child_index is not None else ""
        logger.info(
            f"Execution {self._execution_id}: "
            f"{event.from_state.value} -> {event.to_state.value}{suffix} "
            f"({reason})"
        )

        return event

    # --------------------------------------------------------
    # CONVENIENCE METHODS
    # --------------------------------------------------------

    def mark_validating(self) -> StateTransitionEvent:
        return self.transition_to(ExecutionState.VALIDATING, "Request received")

    def mark_planning(self) -> StateTransitionEvent:
        return self.transition_to(ExecutionState.PLANNING, "Risk check passed")

    def mark_submitting(self, child_index: int) -> StateTransitionEvent:
        return self.transition_to(
            ExecutionState.SUBMITTING,
            f"Submitting child order {child_index}",
            child_index=child_index,
        )

    def mark_confirming(self, child_index: int) -> StateTransitionEvent:
        return self.transition_to(
            ExecutionState.CONFIRMING,
            f"Awaiting confirmation of child order {child_index}",
            child_index=child_index,
        )

    def mark_completed(self) -> StateTransitionEvent:
        return self.transition_to(ExecutionState.COMPLETED, "All child orders confirmed")

    def mark_partially_failed(self, reason: str, code: Optional[str] = None) -> StateTransitionEvent:
        return self.transition_to(
            ExecutionState.PARTIALLY_FAILED,
            reason,
            details={"reason_code": code} if code else {},
        )

    def mark_rejected(self, reason: str, code: Optional[str] = None) -> StateTransitionEvent:
        return self.transition_to(
            ExecutionState.REJECTED,
            reason,
            details={"reason_code": code} if code else {},
        )

    def is_terminal(self) -> bool:
        return self._state.is_terminal()

    def has_submitted(self) -> bool:
        """Whether the run has reached the submission phase."""
        return any(e.to_state == ExecutionState.SUBMITTING for e in self._history)
