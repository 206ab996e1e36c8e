"""
Handoff manager.

A handoff exposes a named, stable subset of one role's iteration to a
downstream role before the upstream phase is approved. Handoff documents live
in the source workspace; the target only gains read access to them through
the registry.

Revisions never edit or retract: a new handoff document supersedes the old
one in the same lineage, and the target's visible pointer moves to it. The
revision is published as an event so downstream work is reconciled
explicitly. How to reconcile (discard or patch) is left to the coordinator;
reissue_request() is the mechanism for telling the downstream role.

Callers hold the source workspace lock.
"""

import logging

from phasegate import notifications
from phasegate.lib.constants import (
    COORDINATOR,
    KIND_HANDOFF,
    KIND_ITERATION,
    KIND_REQUEST,
)
from phasegate.lib.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidGrantError,
    InvalidTransitionError,
)
from phasegate.lib.types import DocumentRef, Feature, WorkspaceRef
from phasegate.notifications import NotificationHub, PhaseEvent
from phasegate.store.documents import DocumentStore
from phasegate.store.registry import WorkspaceRegistry
from phasegate.workflow.state_machine import PhaseState, derive_phase_state

logger = logging.getLogger(__name__)


def merge_interface(previous: dict, changes: dict) -> dict:
    """Apply changes to an exposed interface. A None value removes the entry."""
    merged = dict(previous)
    for key, value in changes.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


class HandoffManager:
    """Opens and revises handoffs, and authorizes request re-issues."""

    def __init__(
        self,
        store: DocumentStore,
        registry: WorkspaceRegistry,
        hub: NotificationHub | None = None,
    ):
        self.store = store
        self.registry = registry
        self.hub = hub

    def _publish(self, event: PhaseEvent) -> None:
        if self.hub is not None:
            self.hub.publish(event)

    def _require_coordinator(self, actor: str) -> None:
        if actor != COORDINATOR:
            raise InvalidGrantError(f"Only the {COORDINATOR} may manage handoffs (got '{actor}')")

    def open_handoff(
        self,
        actor: str,
        feature: Feature,
        source: WorkspaceRef,
        source_iteration: int,
        target_role: str,
        exposed_interface: dict,
    ) -> DocumentRef:
        """Expose part of source's iteration to target_role.

        Legal in every source phase state, including submitted_for_review
        and rejected.

        Raises:
            InvalidGrantError: non-coordinator, unknown/self target, empty interface
            NotFoundError: source workspace or iteration doesn't exist
        """
        self._require_coordinator(actor)
        if target_role not in feature.phase_sequence:
            raise InvalidGrantError(f"Role '{target_role}' is not part of feature '{feature.feature_id}'")
        if target_role == source.role:
            raise InvalidGrantError(f"Cannot hand off '{source.key}' to itself")
        if not isinstance(exposed_interface, dict) or not exposed_interface:
            raise InvalidGrantError("Exposed interface must name at least one entry")

        self.registry.get_workspace(source.feature_id, source.role)
        self.store.read(source, KIND_ITERATION, source_iteration)

        target = self.registry.ensure_workspace(source.feature_id, target_role)

        lineage = self.store.latest_sequence(source, KIND_HANDOFF) + 1
        ref = self.store.append(source, KIND_HANDOFF, {
            "source_iteration": source_iteration,
            "target_role": target_role,
            "exposed_interface": exposed_interface,
            "lineage": lineage,
            "supersedes": None,
        }, author=actor)
        if ref.sequence != lineage:
            raise ConflictError(f"Handoff sequence moved while opening {ref}; is the source lock held?")

        self.registry.grant_handoff(actor, source, target, ref, lineage)
        logger.info(f"[HANDOFF] opened {ref.label} {source.key} iteration {source_iteration:02d} -> {target_role}")

        self._publish(PhaseEvent(
            event_type=notifications.HANDOFF_OPENED,
            feature_id=source.feature_id,
            role=target_role,
            details={"source_role": source.role, "handoff": ref.sequence, "source_iteration": source_iteration},
        ))
        return ref

    def revise_handoff(
        self,
        actor: str,
        feature: Feature,
        previous_ref: DocumentRef,
        new_source_iteration: int,
        changes: dict,
    ) -> DocumentRef:
        """Supersede previous_ref with a new handoff in the same lineage.

        The previous document stays in history; only the target's visible
        pointer moves.

        Raises:
            ConflictError: previous_ref was already superseded
            NotFoundError: previous handoff or new iteration doesn't exist
        """
        self._require_coordinator(actor)
        if previous_ref.kind != KIND_HANDOFF or previous_ref.feature_id != feature.feature_id:
            raise InvalidGrantError(f"{previous_ref} is not a handoff of '{feature.feature_id}'")
        if not isinstance(changes, dict):
            raise InvalidGrantError("Handoff changes must be an object")

        source = previous_ref.workspace
        previous = self.store.read(source, KIND_HANDOFF, previous_ref.sequence)
        for doc in self.store.documents(source, KIND_HANDOFF):
            if doc.payload.get("supersedes") == previous_ref.sequence:
                raise ConflictError(f"{previous_ref.label} was already superseded by {doc.ref.label}")

        self.store.read(source, KIND_ITERATION, new_source_iteration)

        exposed = merge_interface(previous.payload["exposed_interface"], changes)
        if not exposed:
            raise InvalidGrantError("Revision would leave the handoff with an empty interface")

        target_role = previous.payload["target_role"]
        lineage = previous.payload["lineage"]
        ref = self.store.append(source, KIND_HANDOFF, {
            "source_iteration": new_source_iteration,
            "target_role": target_role,
            "exposed_interface": exposed,
            "lineage": lineage,
            "supersedes": previous_ref.sequence,
            "changes": changes,
        }, author=actor)

        target = WorkspaceRef(source.feature_id, target_role)
        self.registry.grant_handoff(actor, source, target, ref, lineage)
        logger.info(f"[HANDOFF] {previous_ref.label} superseded by {ref.label} for {target.key}")

        self._publish(PhaseEvent(
            event_type=notifications.HANDOFF_REVISED,
            feature_id=source.feature_id,
            role=target_role,
            details={
                "source_role": source.role,
                "superseded": previous_ref.sequence,
                "handoff": ref.sequence,
                "source_iteration": new_source_iteration,
                "changed_keys": sorted(changes),
            },
        ))
        return ref

    def reissue_request(
        self,
        actor: str,
        feature: Feature,
        ws: WorkspaceRef,
        body: str,
        handoff_ref: DocumentRef,
    ) -> DocumentRef:
        """Write a new request into ws, authorized by a handoff visible to it.

        Each handoff authorizes at most one re-issue per workspace. Callers
        hold the lock of ws.

        Raises:
            AccessDeniedError: actor is not the coordinator
            InvalidTransitionError: phase not opened yet, or already approved
            InvalidGrantError: handoff is not currently visible to ws
            ConflictError: handoff already authorized a re-issue here
        """
        if actor != COORDINATOR:
            raise AccessDeniedError(actor, ws.key, "issue requests to")

        state = derive_phase_state(self.store, ws, feature.review_mode)
        if state in (PhaseState.NOT_STARTED, PhaseState.APPROVED):
            raise InvalidTransitionError(state.value, "reissue_request", ws.key)

        if handoff_ref not in self.registry.visible_handoffs(ws):
            raise InvalidGrantError(f"{handoff_ref} is not a current handoff of '{ws.key}'")

        authorization = {"role": handoff_ref.role, "sequence": handoff_ref.sequence}
        for doc in self.store.documents(ws, KIND_REQUEST):
            if doc.payload.get("reissue_of") == authorization:
                raise ConflictError(f"{handoff_ref.label} already authorized {doc.ref.label} in '{ws.key}'")

        ref = self.store.append(ws, KIND_REQUEST, {"body": body}, author=actor, reissue_of=handoff_ref)
        logger.info(f"[HANDOFF] re-issued {ref.label} to {ws.key} after {handoff_ref}")

        self._publish(PhaseEvent(
            event_type=notifications.REQUEST_REISSUED,
            feature_id=ws.feature_id,
            role=ws.role,
            from_state=state.value,
            to_state=state.value,
            details={"request": ref.sequence, "handoff": str(handoff_ref)},
        ))
        return ref
