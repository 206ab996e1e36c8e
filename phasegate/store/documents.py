"""
Filesystem document store.

Persistent, append-only storage for features, documents, verdicts and
handoff grants. There is no update and no delete: every record is written
once with exclusive creation and then frozen.

Layout under <root>/features/<feature_id>/:

    feature.json
    abandoned.json, archived.json          (optional markers)
    workspaces/<role>/workspace.json
    workspaces/<role>/requests/0001.json
    workspaces/<role>/iterations/0001.json
    workspaces/<role>/handoffs/0001.json
    workspaces/<role>/verdicts/0001-human.json
    workspaces/<role>/grants/0001.json

Writes go to a temp file in the target directory, are fsynced, and are then
hard-linked into place. os.link fails if the name exists, which makes
"allocate next sequence and append" a single atomic step: a racing writer
that loses simply observes the next free number.
"""

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from phasegate.lib import validate
from phasegate.lib.constants import (
    DOCUMENT_KINDS,
    FEATURE_ID_PATTERN,
    KIND_HANDOFF,
    KIND_ITERATION,
    KIND_REQUEST,
)
from phasegate.lib.errors import (
    AlreadyExistsError,
    ConflictError,
    CorruptDocumentError,
    NotFoundError,
)
from phasegate.lib.types import (
    Document,
    DocumentRef,
    Feature,
    ReviewVerdict,
    WorkspaceRef,
)

logger = logging.getLogger(__name__)

KIND_DIRS = {
    KIND_REQUEST: "requests",
    KIND_ITERATION: "iterations",
    KIND_HANDOFF: "handoffs",
}

MARKERS = ("abandoned", "archived")

# Bounded so a pathological directory can't spin forever
MAX_ALLOCATION_ATTEMPTS = 1000


def timestamp() -> str:
    """UTC ISO-8601 timestamp used on every record."""
    return datetime.now(timezone.utc).isoformat()


def payload_digest(payload: dict) -> str:
    """SHA-256 over the canonical JSON encoding of a payload."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _seq_name(sequence: int) -> str:
    return f"{sequence:04d}.json"


def _write_exclusive(path: Path, data: dict) -> None:
    """Durably create path with data. Raises FileExistsError if path exists."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=".tmp-", suffix=".json")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.link(tmp_name, path)
    finally:
        os.unlink(tmp_name)

    dir_fd = os.open(str(path.parent), os.O_RDONLY)
    try:
        os.fsync(dir_fd)
    finally:
        os.close(dir_fd)


def _read_json(path: Path) -> dict:
    return json.loads(path.read_text())


class DocumentStore:
    """Append-only store rooted at a directory."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.features_dir = self.root / "features"

    # -- paths ---------------------------------------------------------------

    def feature_dir(self, feature_id: str) -> Path:
        return self.features_dir / feature_id

    def workspace_dir(self, ws: WorkspaceRef) -> Path:
        return self.feature_dir(ws.feature_id) / "workspaces" / ws.role

    def _kind_dir(self, ws: WorkspaceRef, kind: str) -> Path:
        if kind not in KIND_DIRS:
            raise ValueError(f"Unknown document kind: {kind}")
        return self.workspace_dir(ws) / KIND_DIRS[kind]

    @staticmethod
    def _sequences(directory: Path) -> list[int]:
        if not directory.exists():
            return []
        seqs = []
        for p in directory.glob("[0-9]*.json"):
            try:
                seqs.append(int(p.stem))
            except ValueError:
                continue
        return sorted(seqs)

    # -- features ------------------------------------------------------------

    def create_feature(self, feature: Feature) -> None:
        """Persist a new feature record.

        Raises:
            AlreadyExistsError: if the feature id was ever used
        """
        record = feature.to_dict()
        feature_dir = self.feature_dir(feature.feature_id)
        validate.validate_before_write(record, "feature", feature_dir / "feature.json")

        self.features_dir.mkdir(parents=True, exist_ok=True)
        try:
            feature_dir.mkdir()
        except FileExistsError:
            raise AlreadyExistsError(f"Feature '{feature.feature_id}' already exists") from None

        _write_exclusive(feature_dir / "feature.json", record)
        logger.info(f"[STORE] created feature {feature.feature_id}")

    def load_feature(self, feature_id: str) -> Feature:
        if not FEATURE_ID_PATTERN.fullmatch(feature_id or ""):
            raise NotFoundError(f"Feature '{feature_id}' not found")
        path = self.feature_dir(feature_id) / "feature.json"
        if not path.exists():
            raise NotFoundError(f"Feature '{feature_id}' not found")
        return Feature.from_dict(_read_json(path))

    def feature_exists(self, feature_id: str) -> bool:
        if not FEATURE_ID_PATTERN.fullmatch(feature_id or ""):
            return False
        return (self.feature_dir(feature_id) / "feature.json").exists()

    def feature_ids(self) -> list[str]:
        if not self.features_dir.exists():
            return []
        return sorted(
            d.name for d in self.features_dir.iterdir()
            if d.is_dir() and (d / "feature.json").exists()
        )

    def mark_feature(self, feature_id: str, marker: str, actor: str, reason: str = "") -> dict:
        """Write a one-time feature marker (abandoned / archived).

        Raises:
            ConflictError: if the marker was already written
        """
        if marker not in MARKERS:
            raise ValueError(f"Unknown marker: {marker}")
        path = self.feature_dir(feature_id) / f"{marker}.json"
        record = {
            "feature_id": feature_id,
            "marker": marker,
            "timestamp": timestamp(),
            "actor": actor,
        }
        if reason:
            record["reason"] = reason
        validate.validate_before_write(record, "marker", path)
        try:
            _write_exclusive(path, record)
        except FileExistsError:
            raise ConflictError(f"Feature '{feature_id}' is already {marker}") from None
        logger.info(f"[STORE] feature {feature_id} marked {marker}")
        return record

    def read_marker(self, feature_id: str, marker: str) -> dict | None:
        path = self.feature_dir(feature_id) / f"{marker}.json"
        if not path.exists():
            return None
        return _read_json(path)

    # -- workspaces ----------------------------------------------------------

    def create_workspace_record(self, ws: WorkspaceRef) -> dict:
        """Raises AlreadyExistsError if the workspace was created before."""
        record = {"feature_id": ws.feature_id, "role": ws.role, "created_at": timestamp()}
        try:
            _write_exclusive(self.workspace_dir(ws) / "workspace.json", record)
        except FileExistsError:
            raise AlreadyExistsError(f"Workspace '{ws.key}' already exists") from None
        return record

    def workspace_exists(self, ws: WorkspaceRef) -> bool:
        return (self.workspace_dir(ws) / "workspace.json").exists()

    def workspace_record(self, ws: WorkspaceRef) -> dict:
        path = self.workspace_dir(ws) / "workspace.json"
        if not path.exists():
            raise NotFoundError(f"Workspace '{ws.key}' not found")
        return _read_json(path)

    def workspace_roles(self, feature_id: str) -> list[str]:
        ws_root = self.feature_dir(feature_id) / "workspaces"
        if not ws_root.exists():
            return []
        return sorted(d.name for d in ws_root.iterdir() if (d / "workspace.json").exists())

    # -- documents -----------------------------------------------------------

    def _envelope(self, ref: DocumentRef, payload: dict, author: str) -> dict:
        return {
            "feature_id": ref.feature_id,
            "role": ref.role,
            "kind": ref.kind,
            "sequence": ref.sequence,
            "created_at": timestamp(),
            "author": author,
            "digest": payload_digest(payload),
            "payload": payload,
        }

    def append(
        self,
        ws: WorkspaceRef,
        kind: str,
        payload: dict,
        author: str,
        reissue_of: DocumentRef | None = None,
    ) -> DocumentRef:
        """Append a document at the next free sequence number.

        A request may only be appended once per workspace unless reissue_of
        names the handoff revision that authorized a re-issue.

        Raises:
            ConflictError: duplicate request without authorization
            ValidationError: payload doesn't match the kind's schema
        """
        if kind not in DOCUMENT_KINDS:
            raise ValueError(f"Unknown document kind: {kind}")
        if not self.workspace_exists(ws):
            raise NotFoundError(f"Workspace '{ws.key}' not found")

        directory = self._kind_dir(ws, kind)

        if kind == KIND_REQUEST:
            payload = dict(payload)
            if reissue_of is not None:
                payload["reissue_of"] = {"role": reissue_of.role, "sequence": reissue_of.sequence}
            existing = self._sequences(directory)
            if existing and reissue_of is None:
                raise ConflictError(f"Request already issued for '{ws.key}'")
            # Requests never roll forward on collision: a lost race is a conflict
            sequence = (existing[-1] + 1) if existing else 1
            return self.append_at(ws, kind, sequence, payload, author)

        validate.validate(payload, kind)
        for _ in range(MAX_ALLOCATION_ATTEMPTS):
            existing = self._sequences(directory)
            sequence = (existing[-1] + 1) if existing else 1
            try:
                return self.append_at(ws, kind, sequence, payload, author)
            except ConflictError:
                logger.debug(f"[STORE] {ws.key}: {kind} {sequence} taken, retrying")
        raise ConflictError(f"Could not allocate a {kind} sequence for '{ws.key}'")

    def append_at(
        self,
        ws: WorkspaceRef,
        kind: str,
        sequence: int,
        payload: dict,
        author: str,
    ) -> DocumentRef:
        """Append a document at an explicit sequence number.

        Raises:
            ConflictError: if the sequence number is already used
        """
        if sequence < 1:
            raise ValueError(f"Sequence numbers start at 1, got {sequence}")
        validate.validate(payload, kind)

        ref = DocumentRef(ws.feature_id, ws.role, kind, sequence)
        path = self._kind_dir(ws, kind) / _seq_name(sequence)
        envelope = self._envelope(ref, payload, author)
        validate.validate_before_write(envelope, "document", path)

        try:
            _write_exclusive(path, envelope)
        except FileExistsError:
            raise ConflictError(f"{ref} already exists") from None

        logger.info(f"[STORE] appended {ref} by {author}")
        return ref

    def read(self, ws: WorkspaceRef, kind: str, sequence: int) -> Document:
        """Read one document, verifying its digest.

        Raises:
            NotFoundError: unknown document
            CorruptDocumentError: stored payload doesn't match its digest
        """
        path = self._kind_dir(ws, kind) / _seq_name(sequence)
        if not path.exists():
            ref = DocumentRef(ws.feature_id, ws.role, kind, sequence)
            raise NotFoundError(f"Document {ref} not found")

        data = _read_json(path)
        if payload_digest(data["payload"]) != data["digest"]:
            raise CorruptDocumentError(f"Digest mismatch for {path}")

        return Document(
            ref=DocumentRef(data["feature_id"], data["role"], data["kind"], data["sequence"]),
            payload=data["payload"],
            digest=data["digest"],
            created_at=data["created_at"],
            author=data["author"],
        )

    def refs(self, ws: WorkspaceRef, kind: str) -> list[DocumentRef]:
        return [
            DocumentRef(ws.feature_id, ws.role, kind, seq)
            for seq in self._sequences(self._kind_dir(ws, kind))
        ]

    def documents(self, ws: WorkspaceRef, kind: str) -> list[Document]:
        return [self.read(ws, kind, ref.sequence) for ref in self.refs(ws, kind)]

    def latest(self, ws: WorkspaceRef, kind: str) -> Document | None:
        seqs = self._sequences(self._kind_dir(ws, kind))
        if not seqs:
            return None
        return self.read(ws, kind, seqs[-1])

    def latest_sequence(self, ws: WorkspaceRef, kind: str) -> int:
        """Highest sequence number of kind in ws, 0 if none."""
        seqs = self._sequences(self._kind_dir(ws, kind))
        return seqs[-1] if seqs else 0

    # -- verdicts ------------------------------------------------------------

    def append_verdict(self, ws: WorkspaceRef, verdict: ReviewVerdict) -> None:
        """Record a verdict; at most one per (iteration, check).

        Raises:
            ConflictError: if this check was already recorded for the iteration
        """
        path = self.workspace_dir(ws) / "verdicts" / f"{verdict.iteration:04d}-{verdict.check}.json"
        record = verdict.to_dict()
        validate.validate_before_write(record, "verdict", path)
        try:
            _write_exclusive(path, record)
        except FileExistsError:
            raise ConflictError(
                f"{verdict.check} verdict already recorded for {ws.key} iteration {verdict.iteration:02d}"
            ) from None
        logger.info(f"[STORE] {ws.key}: {verdict.check} verdict {verdict.outcome} on iteration {verdict.iteration:02d}")

    def verdicts(self, ws: WorkspaceRef, iteration: int | None = None) -> list[ReviewVerdict]:
        """Verdicts in ws (optionally for one iteration), oldest first."""
        directory = self.workspace_dir(ws) / "verdicts"
        if not directory.exists():
            return []
        pattern = f"{iteration:04d}-*.json" if iteration is not None else "[0-9]*-*.json"
        verdicts = [ReviewVerdict.from_dict(_read_json(p)) for p in directory.glob(pattern)]
        verdicts.sort(key=lambda v: (v.iteration, v.timestamp))
        return verdicts

    # -- grants --------------------------------------------------------------

    def append_grant(self, target: WorkspaceRef, record: dict) -> int:
        """Append a handoff grant record to the target workspace."""
        directory = self.workspace_dir(target) / "grants"
        validate.validate_before_write(record, "grant", directory)
        for _ in range(MAX_ALLOCATION_ATTEMPTS):
            existing = self._sequences(directory)
            sequence = (existing[-1] + 1) if existing else 1
            try:
                _write_exclusive(directory / _seq_name(sequence), record)
                return sequence
            except FileExistsError:
                continue
        raise ConflictError(f"Could not allocate a grant sequence for '{target.key}'")

    def grants(self, target: WorkspaceRef) -> list[dict]:
        """Grant records for target, in the order they were written."""
        directory = self.workspace_dir(target) / "grants"
        return [_read_json(directory / _seq_name(seq)) for seq in self._sequences(directory)]
