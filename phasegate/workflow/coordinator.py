"""
Coordinator facade.

The single entry point used by the CLI and by embedding code. It wires the
store, registry, review gate and handoff manager together, takes the right
lock around every mutation and refuses work on abandoned features.

Lock discipline:
- workspace lock: issue_request, submit_iteration, record_verdict,
  reissue_request (target workspace), open/revise_handoff (source workspace)
- feature lock: create_feature, abandon_feature, archive_feature

Usage:
    from phasegate.lib.config import load_engine_config
    from phasegate.workflow.coordinator import Coordinator

    coordinator = Coordinator(load_engine_config(root))
    coordinator.create_feature("tasks-001", ["spec", "build"], title="Task list")
    coordinator.issue_request("tasks-001", "spec", "Write the failing tests")
"""

import logging
from datetime import datetime
from typing import Iterable

from phasegate import notifications
from phasegate.lib import validate
from phasegate.lib.config import EngineConfig
from phasegate.lib.constants import (
    CHECK_HUMAN,
    COORDINATOR,
    KIND_HANDOFF,
    KIND_ITERATION,
    KIND_REQUEST,
)
from phasegate.lib.errors import (
    AccessDeniedError,
    ConflictError,
    FeatureAbandonedError,
    InvalidTransitionError,
    NotFoundError,
)
from phasegate.lib.roles import RoleCatalog, load_role_catalog
from phasegate.lib.timeline import TimelineEvent, get_feature_timeline
from phasegate.lib.types import (
    Document,
    DocumentRef,
    Feature,
    FeatureStatus,
    PhaseStatus,
    ReviewVerdict,
    WorkspaceRef,
)
from phasegate.notifications import NotificationHub, PhaseEvent, desktop_subscriber
from phasegate.store.documents import DocumentStore, timestamp
from phasegate.store.locking import feature_lock, workspace_lock
from phasegate.store.registry import WorkspaceRegistry
from phasegate.workflow.gate import ReviewGate
from phasegate.workflow.handoff import HandoffManager
from phasegate.workflow.state_machine import PhaseState, derive_phase_state, load_fsm

logger = logging.getLogger(__name__)

# Derived feature status values
FEATURE_NOT_STARTED = "not_started"
FEATURE_IN_PROGRESS = "in_progress"
FEATURE_COMPLETE = "complete"
FEATURE_ABANDONED = "abandoned"


class Coordinator:
    """Facade over the engine. All calls name the acting role explicitly."""

    def __init__(self, config: EngineConfig, hub: NotificationHub | None = None):
        self.config = config
        self.root = config.root
        self.store = DocumentStore(config.root)
        self.registry = WorkspaceRegistry(self.store)
        self.hub = hub if hub is not None else NotificationHub()
        if config.notify_desktop:
            self.hub.subscribe(desktop_subscriber)
        self.gate = ReviewGate(self.store, self.hub)
        self.handoffs = HandoffManager(self.store, self.registry, self.hub)
        self.catalog: RoleCatalog = load_role_catalog(config.root)

    # -- helpers -------------------------------------------------------------

    def _ws_lock(self, feature_id: str, role: str):
        # Lock paths are built from these names, so they must name a real workspace first
        self._require_role(self.store.load_feature(feature_id), role)
        return workspace_lock(self.root, feature_id, role, self.config.lock_timeout)

    def _feature_lock(self, feature_id: str, must_exist: bool = True):
        if must_exist:
            self.store.load_feature(feature_id)
        return feature_lock(self.root, feature_id, self.config.lock_timeout)

    def _active_feature(self, feature_id: str) -> Feature:
        """Load a feature that still accepts work.

        Raises:
            NotFoundError: unknown feature
            FeatureAbandonedError: feature was abandoned
        """
        feature = self.store.load_feature(feature_id)
        if self.store.read_marker(feature_id, "abandoned"):
            raise FeatureAbandonedError(feature_id)
        return feature

    @staticmethod
    def _require_role(feature: Feature, role: str) -> None:
        if role not in feature.phase_sequence:
            raise NotFoundError(f"Role '{role}' is not part of feature '{feature.feature_id}'")

    @staticmethod
    def _require_coordinator(actor: str, target: str, action: str) -> None:
        if actor != COORDINATOR:
            raise AccessDeniedError(actor, target, action)

    def _publish(self, event: PhaseEvent) -> None:
        self.hub.publish(event)

    # -- features ------------------------------------------------------------

    def create_feature(
        self,
        feature_id: str,
        phase_sequence: Iterable[str],
        title: str = "",
        review_mode: str | None = None,
        actor: str = COORDINATOR,
    ) -> Feature:
        """Create a feature with a fixed phase sequence. No workspace is opened yet.

        review_mode defaults to the engine configuration and is frozen into
        the feature record.

        Raises:
            AccessDeniedError: actor is not the coordinator
            AlreadyExistsError: feature id already used
            ValidationError: bad id, empty/duplicate sequence, coordinator in sequence
        """
        self._require_coordinator(actor, feature_id, "create")
        feature = Feature(
            feature_id=feature_id,
            title=title or feature_id,
            phase_sequence=tuple(phase_sequence),
            review_mode=review_mode or self.config.review_mode,
            created_at=timestamp(),
        )
        validate.validate(feature.to_dict(), "feature")
        with self._feature_lock(feature_id, must_exist=False):
            self.store.create_feature(feature)
        logger.info(
            f"[COORD] created {feature_id} ({' -> '.join(feature.phase_sequence)}, {feature.review_mode} review)"
        )
        return feature

    def abandon_feature(self, feature_id: str, reason: str = "", actor: str = COORDINATOR) -> dict:
        """Mark a feature abandoned. Its history stays readable.

        Raises:
            InvalidTransitionError: feature is already complete
            ConflictError: feature is already abandoned
        """
        self._require_coordinator(actor, feature_id, "abandon")
        with self._feature_lock(feature_id):
            status = self.status(feature_id)
            if status.status == FEATURE_COMPLETE:
                raise InvalidTransitionError(status.status, "abandon", feature_id)
            record = self.store.mark_feature(feature_id, "abandoned", actor, reason)

        self._publish(PhaseEvent(
            event_type=notifications.FEATURE_ABANDONED,
            feature_id=feature_id,
            details={"reason": reason} if reason else {},
        ))
        return record

    def archive_feature(self, feature_id: str, actor: str = COORDINATOR) -> dict:
        """Hide a finished feature from list(). Nothing is deleted.

        Raises:
            InvalidTransitionError: feature is neither complete nor abandoned
            ConflictError: feature is already archived
        """
        self._require_coordinator(actor, feature_id, "archive")
        with self._feature_lock(feature_id):
            status = self.status(feature_id)
            if status.status not in (FEATURE_COMPLETE, FEATURE_ABANDONED):
                raise InvalidTransitionError(
                    status.status, "archive", feature_id,
                    message=f"Only complete or abandoned features can be archived ('{feature_id}' is {status.status})",
                )
            return self.store.mark_feature(feature_id, "archived", actor)

    # -- phases --------------------------------------------------------------

    def issue_request(self, feature_id: str, role: str, body: str, actor: str = COORDINATOR) -> DocumentRef:
        """Open role's phase by writing its request (not_started -> awaiting_work).

        Raises:
            AccessDeniedError: actor is not the coordinator
            InvalidTransitionError: phase already opened
        """
        self._require_coordinator(actor, f"{feature_id}/{role}", "issue requests to")
        with self._ws_lock(feature_id, role):
            feature = self._active_feature(feature_id)
            self._require_role(feature, role)
            ws = self.registry.ensure_workspace(feature_id, role)

            fsm = load_fsm(self.store, ws, feature.review_mode, self.hub)
            fsm.require("issue_request")
            ref = self.store.append(ws, KIND_REQUEST, {"body": body}, author=actor)
            fsm.fire("issue_request")
        return ref

    def advance(self, feature_id: str, body: str, actor: str = COORDINATOR) -> tuple[str, DocumentRef]:
        """Issue the request for the next role once every predecessor is approved.

        Returns:
            (role opened, request ref)

        Raises:
            InvalidTransitionError: the current phase isn't approved yet
            ConflictError: every phase is already approved
        """
        self._require_coordinator(actor, feature_id, "advance")
        feature = self._active_feature(feature_id)

        for role in feature.phase_sequence:
            state = derive_phase_state(self.store, WorkspaceRef(feature_id, role), feature.review_mode)
            if state == PhaseState.APPROVED:
                continue
            if state != PhaseState.NOT_STARTED:
                raise InvalidTransitionError(
                    state.value, "advance", f"{feature_id}/{role}",
                    message=f"Cannot advance: phase '{role}' is {state.value}, not approved",
                )
            return role, self.issue_request(feature_id, role, body, actor=actor)

        raise ConflictError(f"Every phase of '{feature_id}' is already approved")

    def submit_iteration(
        self,
        feature_id: str,
        role: str,
        body: str,
        actor: str,
        evidence: Iterable[dict] = (),
    ) -> DocumentRef:
        """Record a new iteration written by role (-> submitted_for_review).

        Args:
            evidence: Validator results as {tool, passed, output}; recorded, never run

        Raises:
            AccessDeniedError: actor doesn't own the workspace (includes the coordinator)
            InvalidTransitionError: phase not awaiting work or rejected
        """
        if actor != role:
            raise AccessDeniedError(actor, f"{feature_id}/{role}", "submit iterations to")

        with self._ws_lock(feature_id, role):
            feature = self._active_feature(feature_id)
            self._require_role(feature, role)
            ws = WorkspaceRef(feature_id, role)

            fsm = load_fsm(self.store, ws, feature.review_mode, self.hub)
            fsm.require("submit_iteration")

            payload = {"body": body}
            evidence = [dict(e) for e in evidence]
            if evidence:
                payload["evidence"] = evidence
            ref = self.store.append(ws, KIND_ITERATION, payload, author=actor)
            fsm.fire("submit_iteration")
        return ref

    def record_verdict(
        self,
        feature_id: str,
        role: str,
        outcome: str,
        reviewer: str | None = None,
        feedback_items: Iterable = (),
        iteration: int | None = None,
        check: str = CHECK_HUMAN,
        notes: str = "",
        actor: str = COORDINATOR,
    ) -> tuple[ReviewVerdict, PhaseState]:
        """Record a verdict on role's latest iteration via the review gate.

        The reviewer falls back to DEFAULT_REVIEWER, then to the acting identity.
        Publishes feature_complete once the last phase is approved.
        """
        with self._ws_lock(feature_id, role):
            feature = self._active_feature(feature_id)
            self._require_role(feature, role)
            verdict, state = self.gate.record(
                actor=actor,
                feature=feature,
                ws=WorkspaceRef(feature_id, role),
                outcome=outcome,
                reviewer=reviewer or self.config.default_reviewer or actor,
                feedback_items=feedback_items,
                iteration=iteration,
                check=check,
                notes=notes,
            )

        if state == PhaseState.APPROVED and self.status(feature_id).status == FEATURE_COMPLETE:
            logger.info(f"[COORD] {feature_id}: all phases approved")
            self._publish(PhaseEvent(event_type=notifications.FEATURE_COMPLETE, feature_id=feature_id))
        return verdict, state

    # -- handoffs ------------------------------------------------------------

    def open_handoff(
        self,
        feature_id: str,
        source_role: str,
        source_iteration: int,
        target_role: str,
        exposed_interface: dict,
        actor: str = COORDINATOR,
    ) -> DocumentRef:
        with self._ws_lock(feature_id, source_role):
            feature = self._active_feature(feature_id)
            self._require_role(feature, source_role)
            return self.handoffs.open_handoff(
                actor, feature, WorkspaceRef(feature_id, source_role),
                source_iteration, target_role, exposed_interface,
            )

    def revise_handoff(
        self,
        feature_id: str,
        source_role: str,
        handoff: int,
        new_source_iteration: int,
        changes: dict,
        actor: str = COORDINATOR,
    ) -> DocumentRef:
        with self._ws_lock(feature_id, source_role):
            feature = self._active_feature(feature_id)
            self._require_role(feature, source_role)
            previous = DocumentRef(feature_id, source_role, KIND_HANDOFF, handoff)
            return self.handoffs.revise_handoff(actor, feature, previous, new_source_iteration, changes)

    def reissue_request(
        self,
        feature_id: str,
        role: str,
        body: str,
        handoff_role: str,
        handoff: int,
        actor: str = COORDINATOR,
    ) -> DocumentRef:
        """Re-issue role's request, authorized by a handoff visible to role."""
        with self._ws_lock(feature_id, role):
            feature = self._active_feature(feature_id)
            self._require_role(feature, role)
            return self.handoffs.reissue_request(
                actor, feature, WorkspaceRef(feature_id, role), body,
                DocumentRef(feature_id, handoff_role, KIND_HANDOFF, handoff),
            )

    # -- queries -------------------------------------------------------------

    def phase_status(self, feature: Feature, role: str) -> PhaseStatus:
        ws = WorkspaceRef(feature.feature_id, role)
        state = derive_phase_state(self.store, ws, feature.review_mode)
        if not self.store.workspace_exists(ws):
            return PhaseStatus(role=role, state=state.value)

        latest = self.store.latest_sequence(ws, KIND_ITERATION)
        return PhaseStatus(
            role=role,
            state=state.value,
            request_count=self.store.latest_sequence(ws, KIND_REQUEST),
            latest_iteration=latest or None,
            latest_verdicts=self.store.verdicts(ws, latest) if latest else [],
            visible_handoffs=self.registry.visible_handoffs(ws),
        )

    def status(self, feature_id: str, role: str | None = None) -> FeatureStatus:
        """Derive the feature's status and its phases (or just one phase).

        Raises:
            NotFoundError: unknown feature or role
        """
        feature = self.store.load_feature(feature_id)
        if role is not None:
            self._require_role(feature, role)

        phases = [self.phase_status(feature, r) for r in feature.phase_sequence]

        if self.store.read_marker(feature_id, "abandoned"):
            derived = FEATURE_ABANDONED
        elif all(p.state == PhaseState.APPROVED.value for p in phases):
            derived = FEATURE_COMPLETE
        elif any(p.request_count for p in phases):
            derived = FEATURE_IN_PROGRESS
        else:
            derived = FEATURE_NOT_STARTED

        if role is not None:
            phases = [p for p in phases if p.role == role]

        return FeatureStatus(
            feature=feature,
            status=derived,
            archived=self.store.read_marker(feature_id, "archived") is not None,
            phases=phases,
        )

    def list_features(self, include_archived: bool = False) -> list[FeatureStatus]:
        statuses = [self.status(fid) for fid in self.store.feature_ids()]
        if include_archived:
            return statuses
        return [s for s in statuses if not s.archived]

    def read_document(self, actor: str, feature_id: str, role: str, kind: str, sequence: int) -> Document:
        """Read one document on behalf of actor. Access is checked before existence.

        Raises:
            AccessDeniedError: actor may not read the document
            NotFoundError: unknown feature or document
        """
        self.store.load_feature(feature_id)
        ws = WorkspaceRef(feature_id, role)
        ref = DocumentRef(feature_id, role, kind, sequence)
        self.registry.check_read(actor, ws, ref)
        return self.store.read(ws, kind, sequence)

    def list_documents(self, actor: str, feature_id: str, role: str, kind: str) -> list[DocumentRef]:
        """Enumerate a workspace's documents. Only the owner and the coordinator may.

        Raises:
            AccessDeniedError: actor may not enumerate the workspace
        """
        self.store.load_feature(feature_id)
        ws = WorkspaceRef(feature_id, role)
        self.registry.check_read(actor, ws)
        return self.store.refs(ws, kind)

    def history(
        self,
        feature_id: str,
        role: str | None = None,
        since: datetime | None = None,
        limit: int | None = None,
        actor: str = COORDINATOR,
    ) -> list[TimelineEvent]:
        """Ordered history of the feature as actor may see it.

        The coordinator sees every workspace. Any other role sees feature
        events, its own workspace and the handoffs currently visible to it.
        Rejected iterations and their feedback are included.

        Raises:
            NotFoundError: unknown feature
            AccessDeniedError: role names a workspace actor may not read
        """
        self.store.load_feature(feature_id)
        if actor == COORDINATOR:
            return get_feature_timeline(self.store, feature_id, role=role, since=since, limit=limit)

        own = WorkspaceRef(feature_id, actor)
        if role is not None:
            self.registry.check_read(actor, WorkspaceRef(feature_id, role))

        granted = self.registry.visible_handoffs(own) if self.store.workspace_exists(own) else []
        logger.debug(f"[COORD] history of {feature_id} for {actor}: {len(granted)} visible handoff(s)")
        return get_feature_timeline(
            self.store, feature_id, role=actor, since=since, limit=limit, handoffs=granted,
        )
