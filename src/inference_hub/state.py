"""Per-conversation turn state machine."""

from __future__ import annotations

from enum import Enum
import logging

LOGGER = logging.getLogger(__name__)


class TurnState(str, Enum):
    """Lifecycle of one submitted turn: Composing -> Dispatched -> Completed | Failed."""

    COMPOSING = "COMPOSING"
    DISPATCHED = "DISPATCHED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


_ALLOWED: dict[TurnState, frozenset[TurnState]] = {
    TurnState.COMPOSING: frozenset({TurnState.DISPATCHED}),
    TurnState.DISPATCHED: frozenset({TurnState.COMPLETED, TurnState.FAILED}),
    TurnState.COMPLETED: frozenset({TurnState.DISPATCHED, TurnState.COMPOSING}),
    TurnState.FAILED: frozenset({TurnState.DISPATCHED, TurnState.COMPOSING}),
}


class TurnStateMachine:
    """Guard turn transitions for one conversation.

    Transitions are synchronous: on a single event loop there is no
    suspension point between the check and the update, so no lock is needed.
    """

    def __init__(self) -> None:
        self._state = TurnState.COMPOSING

    @property
    def state(self) -> TurnState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is TurnState.DISPATCHED

    def can_submit(self) -> bool:
        """Return True when a new turn may be dispatched."""
        return not self.busy

    def transition_to(self, new_state: TurnState) -> TurnState:
        if new_state not in _ALLOWED[self._state]:
            raise ValueError(f"Illegal turn transition {self._state.value} -> {new_state.value}")
        LOGGER.debug(
            "turn.state.transition",
            extra={
                "event": "turn.state.transition",
                "from_state": self._state.value,
                "to_state": new_state.value,
            },
        )
        self._state = new_state
        return self._state

    def transition_if(self, expected_state: TurnState, new_state: TurnState) -> bool:
        """Transition only when the current state matches ``expected_state``."""
        if self._state is not expected_state:
            return False
        self.transition_to(new_state)
        return True

    def try_dispatch(self) -> bool:
        """Enter ``DISPATCHED`` unless a turn is already in flight."""
        if self.busy:
            return False
        self.transition_to(TurnState.DISPATCHED)
        return True
