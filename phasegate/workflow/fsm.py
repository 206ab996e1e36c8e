"""Phase state machine using the transitions library.

One instance per (feature, role). The machine never loads or saves a status
field: its initial state is derived by replaying the workspace log (see
state_machine.derive_phase_state), so it cannot drift from history.

Usage:
    from phasegate.workflow.fsm import PhaseFSM

    fsm = PhaseFSM(ws, initial="awaiting_work")
    fsm.fire("submit_iteration")
    fsm.fire("reject")
"""

import logging
from typing import Callable

from transitions import Machine, MachineError

from phasegate.lib.errors import InvalidTransitionError
from phasegate.lib.types import WorkspaceRef

logger = logging.getLogger(__name__)


# State values must match PhaseState enum
STATES = [
    "not_started",
    "awaiting_work",
    "submitted_for_review",
    "rejected",
    "approved",
]

# Each trigger becomes a method on the FSM. There is deliberately no path
# from awaiting_work or rejected to approved: every approval passes review.
TRANSITIONS = [
    {"trigger": "issue_request", "source": "not_started", "dest": "awaiting_work"},

    {"trigger": "submit_iteration", "source": "awaiting_work", "dest": "submitted_for_review"},
    {"trigger": "submit_iteration", "source": "rejected", "dest": "submitted_for_review"},

    # Dual sign-off: first approving sub-verdict leaves the phase under review
    {"trigger": "record_check", "source": "submitted_for_review", "dest": None},

    {"trigger": "approve", "source": "submitted_for_review", "dest": "approved"},
    {"trigger": "reject", "source": "submitted_for_review", "dest": "rejected"},
]


def _build_trigger_lookup() -> dict[tuple[str, str], str]:
    """Build lookup from (source, dest) -> trigger name."""
    lookup: dict[tuple[str, str], str] = {}
    for t in TRANSITIONS:
        if t["dest"] is None:
            continue
        key = (t["source"], t["dest"])
        if key not in lookup:
            lookup[key] = t["trigger"]
    return lookup


TRIGGER_FOR = _build_trigger_lookup()

TransitionCallback = Callable[[str, str, str], None]


class PhaseFSM:
    """State machine for one role's phase in one feature.

    Wraps the transitions library with phase-specific logic:
    - Starts from a state derived from the append-only log
    - Converts MachineError into InvalidTransitionError
    - Logs all transitions and reports them to an optional callback
    """

    def __init__(self, ws: WorkspaceRef, initial: str, on_transition: TransitionCallback | None = None):
        """
        Args:
            ws: Workspace the phase belongs to
            initial: Derived current state
            on_transition: Optional callback(from_state, to_state, trigger)
        """
        if initial not in STATES:
            raise ValueError(f"Unknown phase state '{initial}'")
        self.ws = ws
        self.on_transition = on_transition

        self.machine = Machine(
            model=self,
            states=STATES,
            transitions=TRANSITIONS,
            initial=initial,
            auto_transitions=False,  # Only explicit transitions
            send_event=True,
            after_state_change="on_state_change",
        )

    def on_state_change(self, event) -> None:
        """Callback after any transition, including internal ones."""
        from_state = event.transition.source
        # Internal transitions have no dest; the state is unchanged
        to_state = event.transition.dest or from_state
        trigger = event.event.name

        logger.info(f"[FSM] {self.ws.key}: {from_state} -> {to_state} ({trigger})")

        if self.on_transition:
            self.on_transition(from_state, to_state, trigger)

    def can(self, trigger: str) -> bool:
        """Check if a trigger can be executed in current state."""
        return trigger in self.machine.get_triggers(self.state)

    def get_available_triggers(self) -> list[str]:
        """Get list of triggers available in current state."""
        return self.machine.get_triggers(self.state)

    def require(self, trigger: str) -> None:
        """Raise InvalidTransitionError unless trigger is legal now."""
        if not self.can(trigger):
            raise InvalidTransitionError(self.state, trigger, self.ws.key)

    def fire(self, trigger: str) -> str:
        """Execute trigger and return the resulting state.

        Raises:
            InvalidTransitionError: if the trigger is illegal in the current state
        """
        self.require(trigger)
        try:
            getattr(self, trigger)()
        except MachineError as e:
            raise InvalidTransitionError(self.state, trigger, self.ws.key) from e
        return self.state
