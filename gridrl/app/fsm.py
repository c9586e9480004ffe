"""Finite State Machine for episode scheduler states."""

from enum import Enum, auto
from typing import Dict, Callable, Optional


class SchedulerState(Enum):
    """States of the tick-driven episode scheduler."""
    RUNNING = auto()
    RESET_COOLDOWN = auto()
    STOPPED = auto()


class SchedulerStateMachine:
    """State machine for managing scheduler execution."""

    def __init__(self):
        self.current_state = SchedulerState.RUNNING
        self._enter_callbacks: Dict[SchedulerState, Callable[[Optional[Dict]], None]] = {}

        # Define valid state transitions
        self._valid_transitions = {
            SchedulerState.RUNNING: {SchedulerState.RESET_COOLDOWN, SchedulerState.STOPPED},
            SchedulerState.RESET_COOLDOWN: {SchedulerState.RUNNING, SchedulerState.STOPPED},
            SchedulerState.STOPPED: set(),
        }

    def on_state_enter(self, state: SchedulerState, callback: Callable[[Optional[Dict]], None]):
        """Register callback for state entry."""
        self._enter_callbacks[state] = callback

    def can_transition(self, to_state: SchedulerState) -> bool:
        """Check if transition to target state is valid."""
        return to_state in self._valid_transitions.get(self.current_state, set())

    def transition(self, to_state: SchedulerState, context: Optional[Dict] = None) -> bool:
        """Attempt to transition to target state."""
        if not self.can_transition(to_state):
            return False

        self.current_state = to_state

        if to_state in self._enter_callbacks:
            self._enter_callbacks[to_state](context)

        return True

    # Convenience methods for common transitions

    def begin_cooldown(self, context: Optional[Dict] = None) -> bool:
        """Episode finished, wait before resetting."""
        return self.transition(SchedulerState.RESET_COOLDOWN, context)

    def resume(self, context: Optional[Dict] = None) -> bool:
        """Cooldown over, step again."""
        return self.transition(SchedulerState.RUNNING, context)

    def stop(self, context: Optional[Dict] = None) -> bool:
        """Stop for good. Returns False if already stopped."""
        return self.transition(SchedulerState.STOPPED, context)

    # State checking methods

    def is_running(self) -> bool:
        return self.current_state == SchedulerState.RUNNING

    def is_cooling_down(self) -> bool:
        return self.current_state == SchedulerState.RESET_COOLDOWN

    def is_stopped(self) -> bool:
        return self.current_state == SchedulerState.STOPPED

