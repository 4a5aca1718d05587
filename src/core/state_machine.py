"""
Finite State Machine

Table-driven state machine with enter/exit/transition callbacks.
The transition table is given at construction, so the same engine
drives any controller (see navigation.path_follower).

Events that have no transition from the current state are ignored,
which keeps controllers free of "is this allowed?" checks.
"""

from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, DefaultDict, Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class StateTransition:
    """One row of the transition table."""
    from_state: Enum
    event: Enum
    to_state: Enum
    condition: Optional[Callable[[], bool]] = None  # Guard, evaluated on each event


class StateMachine:
    """
    Finite state machine.

    Usage:
        sm = StateMachine(FollowerState.ROTATE, [
            StateTransition(FollowerState.ROTATE, FollowerEvent.ALIGNED, FollowerState.DRIVE),
            StateTransition(FollowerState.DRIVE, FollowerEvent.MISALIGNED, FollowerState.ROTATE),
        ])

        sm.on_enter(FollowerState.DRIVE, start_motors)
        sm.handle_event(FollowerEvent.ALIGNED)
        print(sm.state)  # FollowerState.DRIVE
    """

    def __init__(self, initial_state: Enum, transitions: Iterable[StateTransition]):
        self._initial_state = initial_state
        self._state = initial_state
        self._previous_state: Optional[Enum] = None

        self._enter_callbacks: DefaultDict[Enum, List[Callable[[], None]]] = defaultdict(list)
        self._exit_callbacks: DefaultDict[Enum, List[Callable[[], None]]] = defaultdict(list)
        self._transition_callbacks: List[Callable[[Enum, Enum, Enum], None]] = []

        self._table: Dict[Tuple[Enum, Enum], StateTransition] = {}
        for rule in transitions:
            if (rule.from_state, rule.event) in self._table:
                raise ValueError(f"Duplicate transition for {rule.from_state.name} on {rule.event.name}")
            self._table[(rule.from_state, rule.event)] = rule

    @property
    def state(self) -> Enum:
        return self._state

    @property
    def previous_state(self) -> Optional[Enum]:
        """State before the last transition, None after construction or reset."""
        return self._previous_state

    def can_handle(self, event: Enum) -> bool:
        """True if event has a transition from the current state."""
        return (self._state, event) in self._table

    def handle_event(self, event: Enum) -> bool:
        """
        Apply event to the current state.

        Callbacks run in the order exit, transition, enter.

        Returns:
            True if the state changed, False if the event was ignored
            or its guard refused it
        """
        rule = self._table.get((self._state, event))
        if rule is None or (rule.condition is not None and not rule.condition()):
            return False

        leaving, entering = self._state, rule.to_state

        for callback in self._exit_callbacks[leaving]:
            callback()
        self._previous_state, self._state = leaving, entering
        for listener in self._transition_callbacks:
            listener(leaving, event, entering)
        for callback in self._enter_callbacks[entering]:
            callback()

        return True

    def reset(self):
        """Return to the initial state without firing callbacks."""
        self._state = self._initial_state
        self._previous_state = None

    def on_enter(self, state: Enum, callback: Callable[[], None]):
        self._enter_callbacks[state].append(callback)

    def on_exit(self, state: Enum, callback: Callable[[], None]):
        self._exit_callbacks[state].append(callback)

    def on_transition(self, callback: Callable[[Enum, Enum, Enum], None]):
        """Register a listener called with (old_state, event, new_state)."""
        self._transition_callbacks.append(callback)

    def get_status(self) -> dict:
        """Current and previous state names."""
        previous = self._previous_state
        return {"state": self._state.name, "previous": previous.name if previous is not None else "N/A"}
