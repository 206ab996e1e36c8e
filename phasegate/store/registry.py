"""
Workspace registry and read isolation.

Maps each (feature, role) pair to its workspace and owns the visibility rule:
a role may read its own workspace plus the handoff documents currently
granted to it. can_read() is the single enforcement point; every read path
goes through check_read(), which fails closed.

Visibility is derived from append-only grant records. Each open_handoff starts
a lineage; revisions append a new grant in the same lineage, and the visible
pointer for a lineage is always its newest grant.
"""

import logging

from phasegate.lib.constants import COORDINATOR, KIND_HANDOFF
from phasegate.lib.errors import (
    AccessDeniedError,
    AlreadyExistsError,
    InvalidGrantError,
    NotFoundError,
)
from phasegate.lib.types import DocumentRef, WorkspaceRef
from phasegate.store.documents import DocumentStore, timestamp

logger = logging.getLogger(__name__)


class WorkspaceRegistry:
    """Creates workspaces, records handoff grants and answers can_read."""

    def __init__(self, store: DocumentStore):
        self.store = store

    def create_workspace(self, feature_id: str, role: str) -> WorkspaceRef:
        """Create the workspace for (feature, role).

        Raises:
            NotFoundError: feature unknown or role not in its phase sequence
            AlreadyExistsError: workspace already created
        """
        feature = self.store.load_feature(feature_id)
        if role not in feature.phase_sequence:
            raise NotFoundError(f"Role '{role}' is not part of feature '{feature_id}'")
        ws = WorkspaceRef(feature_id, role)
        self.store.create_workspace_record(ws)
        logger.info(f"[REGISTRY] created workspace {ws.key}")
        return ws

    def get_workspace(self, feature_id: str, role: str) -> WorkspaceRef:
        """Raises NotFoundError if the workspace was never created."""
        ws = WorkspaceRef(feature_id, role)
        if not self.store.workspace_exists(ws):
            raise NotFoundError(f"Workspace '{ws.key}' not found")
        return ws

    def ensure_workspace(self, feature_id: str, role: str) -> WorkspaceRef:
        """Return the workspace, creating it on first use."""
        ws = WorkspaceRef(feature_id, role)
        if self.store.workspace_exists(ws):
            return ws
        try:
            return self.create_workspace(feature_id, role)
        except AlreadyExistsError:
            # Lost a creation race; the workspace exists now
            return ws

    def workspaces(self, feature_id: str) -> list[WorkspaceRef]:
        return [WorkspaceRef(feature_id, r) for r in self.store.workspace_roles(feature_id)]

    def grant_handoff(
        self,
        grantor: str,
        source: WorkspaceRef,
        target: WorkspaceRef,
        handoff_ref: DocumentRef,
        lineage: int,
    ) -> None:
        """Grant target read access to one handoff document of source.

        Raises:
            InvalidGrantError: cross-feature, self-grant, wrong document, or
                non-coordinator grantor
        """
        if grantor != COORDINATOR:
            raise InvalidGrantError(f"Only the {COORDINATOR} may grant handoffs (got '{grantor}')")
        if source.feature_id != target.feature_id:
            raise InvalidGrantError(
                f"Cannot grant across features: {source.feature_id} -> {target.feature_id}"
            )
        if source == target:
            raise InvalidGrantError(f"Workspace '{source.key}' cannot be granted to itself")
        if handoff_ref.kind != KIND_HANDOFF or handoff_ref.workspace != source:
            raise InvalidGrantError(f"{handoff_ref} is not a handoff of '{source.key}'")
        if not self.store.workspace_exists(target):
            raise NotFoundError(f"Workspace '{target.key}' not found")

        self.store.append_grant(target, {
            "feature_id": source.feature_id,
            "source_role": source.role,
            "target_role": target.role,
            "handoff": handoff_ref.sequence,
            "lineage": lineage,
            "grantor": grantor,
            "timestamp": timestamp(),
        })
        logger.info(f"[REGISTRY] granted {handoff_ref} to {target.key} (lineage {lineage})")

    def visible_handoffs(self, ws: WorkspaceRef) -> list[DocumentRef]:
        """Newest granted handoff of every lineage visible to ws."""
        newest: dict[tuple[str, int], int] = {}
        for grant in self.store.grants(ws):
            newest[(grant["source_role"], grant["lineage"])] = grant["handoff"]
        return [
            DocumentRef(ws.feature_id, source_role, KIND_HANDOFF, seq)
            for (source_role, _lineage), seq in sorted(newest.items())
        ]

    def can_read(self, acting_role: str, ws: WorkspaceRef, ref: DocumentRef | None = None) -> bool:
        """Whether acting_role may read ws (or the single document ref within it).

        True iff the acting role owns ws, is the coordinator, or ref is a
        handoff currently visible to the acting role's own workspace in the
        same feature. Total and side-effect free: any lookup failure means no.
        """
        if ref is not None and ref.workspace != ws:
            return False
        if acting_role == ws.role or acting_role == COORDINATOR:
            return True
        if ref is None or ref.kind != KIND_HANDOFF:
            return False

        reader = WorkspaceRef(ws.feature_id, acting_role)
        try:
            if not self.store.workspace_exists(reader):
                return False
            return ref in self.visible_handoffs(reader)
        except (OSError, ValueError, KeyError):
            return False

    def check_read(self, acting_role: str, ws: WorkspaceRef, ref: DocumentRef | None = None) -> None:
        """Raise AccessDeniedError unless can_read allows the access."""
        if not self.can_read(acting_role, ws, ref):
            raise AccessDeniedError(acting_role, str(ref) if ref else ws.key)
