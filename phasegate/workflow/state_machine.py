"""Phase state derivation.

A phase's state is never stored. It is computed from the presence of the
request, iterations and verdicts in the workspace:

    not_started          no request
    awaiting_work        request, no iteration
    submitted_for_review latest iteration has no decisive verdict
    rejected             latest iteration's verdict rejected it
    approved             latest iteration's verdict approved it (terminal)

Usage:
    from phasegate.workflow.state_machine import derive_phase_state, PhaseState

    state = derive_phase_state(store, ws, review_mode="dual")
"""

import logging
from enum import Enum

from phasegate import notifications
from phasegate.lib.constants import (
    CHECK_AUTOMATED,
    CHECK_HUMAN,
    KIND_ITERATION,
    KIND_REQUEST,
    OUTCOME_APPROVED,
    OUTCOME_REJECTED,
    REVIEW_MODE_DUAL,
)
from phasegate.lib.types import ReviewVerdict, WorkspaceRef
from phasegate.notifications import NotificationHub, PhaseEvent
from phasegate.store.documents import DocumentStore
from phasegate.workflow.fsm import PhaseFSM

logger = logging.getLogger(__name__)


class PhaseState(Enum):
    """All phase states. Values match FSM state strings."""

    NOT_STARTED = "not_started"
    AWAITING_WORK = "awaiting_work"
    SUBMITTED_FOR_REVIEW = "submitted_for_review"
    REJECTED = "rejected"
    APPROVED = "approved"


def parse_state(status_str: str | None) -> PhaseState | None:
    """Parse a status string into PhaseState. Returns None if unknown."""
    if status_str is None:
        return None
    for state in PhaseState:
        if state.value == status_str:
            return state
    return None


def required_checks(review_mode: str) -> set[str] | None:
    """Checks that must all approve. None means the first verdict decides."""
    if review_mode == REVIEW_MODE_DUAL:
        return {CHECK_AUTOMATED, CHECK_HUMAN}
    return None


def effective_outcome(verdicts: list[ReviewVerdict], review_mode: str) -> str | None:
    """Combine the sub-verdicts recorded on one iteration.

    Any rejection rejects. Otherwise the iteration is approved once every
    required check has approved. Returns None while review is still open.
    """
    if not verdicts:
        return None
    if any(v.outcome == OUTCOME_REJECTED for v in verdicts):
        return OUTCOME_REJECTED

    needed = required_checks(review_mode)
    if needed is None:
        return OUTCOME_APPROVED
    approved = {v.check for v in verdicts if v.outcome == OUTCOME_APPROVED}
    if needed <= approved:
        return OUTCOME_APPROVED
    return None


def derive_phase_state(store: DocumentStore, ws: WorkspaceRef, review_mode: str) -> PhaseState:
    """Replay the workspace log into its current PhaseState."""
    if not store.workspace_exists(ws) or store.latest_sequence(ws, KIND_REQUEST) == 0:
        return PhaseState.NOT_STARTED

    latest = store.latest_sequence(ws, KIND_ITERATION)
    if latest == 0:
        return PhaseState.AWAITING_WORK

    outcome = effective_outcome(store.verdicts(ws, latest), review_mode)
    if outcome == OUTCOME_APPROVED:
        return PhaseState.APPROVED
    if outcome == OUTCOME_REJECTED:
        return PhaseState.REJECTED
    return PhaseState.SUBMITTED_FOR_REVIEW


EVENT_FOR_TRIGGER = {
    "issue_request": notifications.PHASE_OPENED,
    "submit_iteration": notifications.SUBMITTED_FOR_REVIEW,
    "record_check": notifications.CHECK_RECORDED,
    "approve": notifications.PHASE_APPROVED,
    "reject": notifications.PHASE_REJECTED,
}


def load_fsm(
    store: DocumentStore,
    ws: WorkspaceRef,
    review_mode: str,
    hub: NotificationHub | None = None,
) -> PhaseFSM:
    """Build the FSM for ws at its derived state, publishing transitions to hub."""
    state = derive_phase_state(store, ws, review_mode)

    def publish(from_state: str, to_state: str, trigger: str) -> None:
        if hub is None:
            return
        hub.publish(PhaseEvent(
            event_type=EVENT_FOR_TRIGGER.get(trigger, trigger),
            feature_id=ws.feature_id,
            role=ws.role,
            from_state=from_state,
            to_state=to_state,
        ))

    return PhaseFSM(ws, state.value, on_transition=publish)
