"""
Review gate.

Records verdicts against a workspace's latest iteration and drives the phase
transition. Enforces:
- only the coordinator records verdicts (a role never approves its own work)
- at most one verdict per iteration per check
- verdicts target the latest iteration (StaleIterationError otherwise)
- rejections carry at least one structured feedback item
- dual sign-off: automated and human checks must both approve

Callers hold the workspace lock.
"""

import logging
from typing import Iterable

from phasegate.lib import validate
from phasegate.lib.constants import (
    CHECK_HUMAN,
    CHECKS,
    COORDINATOR,
    KIND_ITERATION,
    OUTCOME_APPROVED,
    OUTCOME_REJECTED,
    OUTCOMES,
    SEVERITIES,
)
from phasegate.lib.errors import (
    AccessDeniedError,
    InvalidVerdictError,
    NotFoundError,
    StaleIterationError,
)
from phasegate.lib.types import Feature, FeedbackItem, ReviewVerdict, WorkspaceRef
from phasegate.notifications import NotificationHub
from phasegate.store.documents import DocumentStore, timestamp
from phasegate.workflow.state_machine import (
    PhaseState,
    effective_outcome,
    load_fsm,
)

logger = logging.getLogger(__name__)

FEEDBACK_FIELDS = ("severity", "location", "problem", "required_fix")


def parse_feedback_items(raw: Iterable, ws_key: str = "") -> tuple[FeedbackItem, ...]:
    """Normalize feedback input into FeedbackItems.

    Accepts FeedbackItem instances or dicts. Keys may use requiredFix as an
    alias for required_fix. Severity is case-insensitive.

    Raises:
        InvalidVerdictError: missing or empty field, or unknown severity
    """
    items = []
    for index, entry in enumerate(raw or (), 1):
        if isinstance(entry, FeedbackItem):
            entry = entry.to_dict()
        if not isinstance(entry, dict):
            raise InvalidVerdictError(f"Feedback item {index} must be an object", ws_key)

        data = dict(entry)
        if "required_fix" not in data and "requiredFix" in data:
            data["required_fix"] = data.pop("requiredFix")

        missing = [f for f in FEEDBACK_FIELDS if not str(data.get(f) or "").strip()]
        if missing:
            raise InvalidVerdictError(
                f"Feedback item {index} is missing {', '.join(missing)}; "
                "rejections must name a location, the problem and the required fix",
                ws_key,
            )

        severity = str(data["severity"]).strip().upper()
        if severity not in SEVERITIES:
            raise InvalidVerdictError(
                f"Feedback item {index} has unknown severity '{data['severity']}' "
                f"(expected one of {', '.join(SEVERITIES)})",
                ws_key,
            )

        items.append(FeedbackItem(
            severity=severity,
            location=str(data["location"]).strip(),
            problem=str(data["problem"]).strip(),
            required_fix=str(data["required_fix"]).strip(),
        ))
    return tuple(items)


class ReviewGate:
    """Records verdicts and moves the phase to approved or rejected."""

    def __init__(self, store: DocumentStore, hub: NotificationHub | None = None):
        self.store = store
        self.hub = hub

    def record(
        self,
        actor: str,
        feature: Feature,
        ws: WorkspaceRef,
        outcome: str,
        reviewer: str,
        feedback_items: Iterable = (),
        iteration: int | None = None,
        check: str = CHECK_HUMAN,
        notes: str = "",
    ) -> tuple[ReviewVerdict, PhaseState]:
        """Record a (sub-)verdict on the latest iteration of ws.

        Args:
            actor: Acting role; must be the coordinator
            feature: Feature ws belongs to (supplies review_mode)
            ws: Workspace under review
            outcome: "approved" or "rejected"
            reviewer: Opaque id of the external human or tool
            feedback_items: Structured feedback; mandatory when rejecting
            iteration: Iteration being judged; defaults to the latest
            check: "human" or "automated"
            notes: Optional free text kept alongside the verdict

        Returns:
            (recorded verdict, resulting phase state)

        Raises:
            AccessDeniedError: actor is not the coordinator
            NotFoundError: iteration doesn't exist
            StaleIterationError: iteration is not the latest
            InvalidTransitionError: phase is not submitted_for_review
            InvalidVerdictError: malformed outcome, check or feedback
            ConflictError: this check was already recorded on the iteration
        """
        if actor != COORDINATOR:
            raise AccessDeniedError(actor, ws.key, "record verdicts for")

        outcome = (outcome or "").lower()
        if outcome not in OUTCOMES:
            raise InvalidVerdictError(f"Unknown outcome '{outcome}' (expected approved or rejected)", ws.key)
        if check not in CHECKS:
            raise InvalidVerdictError(f"Unknown check '{check}' (expected one of {', '.join(CHECKS)})", ws.key)
        if not (reviewer or "").strip():
            raise InvalidVerdictError("A reviewer id is required", ws.key)

        latest = self.store.latest_sequence(ws, KIND_ITERATION)
        if iteration is None:
            iteration = latest
        elif iteration > latest or iteration < 1:
            raise NotFoundError(f"Iteration {iteration:02d} not found in '{ws.key}'")
        elif iteration != latest:
            raise StaleIterationError(iteration, latest, ws.key)

        fsm = load_fsm(self.store, ws, feature.review_mode, self.hub)
        fsm.require("record_check")

        items = parse_feedback_items(feedback_items, ws.key)
        if outcome == OUTCOME_REJECTED and not items:
            raise InvalidVerdictError(
                "Rejection requires at least one feedback item (severity, location, problem, required fix)",
                ws.key,
            )

        verdict = ReviewVerdict(
            feature_id=ws.feature_id,
            role=ws.role,
            iteration=iteration,
            outcome=outcome,
            check=check,
            reviewer_role=COORDINATOR,
            reviewer=reviewer.strip(),
            timestamp=timestamp(),
            feedback_items=items,
            notes=notes,
        )
        try:
            self.store.append_verdict(ws, verdict)
        except validate.ValidationError as e:
            raise InvalidVerdictError(str(e), ws.key) from None

        combined = effective_outcome(self.store.verdicts(ws, iteration), feature.review_mode)
        if combined == OUTCOME_APPROVED:
            fsm.fire("approve")
        elif combined == OUTCOME_REJECTED:
            fsm.fire("reject")
        else:
            fsm.fire("record_check")

        logger.info(
            f"[GATE] {ws.key}: iteration {iteration:02d} {check} {outcome} by {verdict.reviewer} -> {fsm.state}"
        )
        return verdict, PhaseState(fsm.state)
