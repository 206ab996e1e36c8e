"""
Shared data types for phasegate.

This module contains dataclasses used across store, workflow and commands
to avoid circular imports.
"""

from dataclasses import dataclass, field
from typing import Any

from phasegate.lib.constants import SEQUENCE_WIDTH


@dataclass(frozen=True)
class WorkspaceRef:
    """Identity of the workspace owned by one (feature, role) pair."""
    feature_id: str
    role: str

    @property
    def key(self) -> str:
        return f"{self.feature_id}/{self.role}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True)
class DocumentRef:
    """Identity tuple of a stored document. Never reused."""
    feature_id: str
    role: str
    kind: str
    sequence: int

    @property
    def workspace(self) -> WorkspaceRef:
        return WorkspaceRef(self.feature_id, self.role)

    @property
    def label(self) -> str:
        """Human form, e.g. iteration-02 or handoff-001."""
        width = SEQUENCE_WIDTH.get(self.kind, 3)
        return f"{self.kind}-{self.sequence:0{width}d}"

    def __str__(self) -> str:
        return f"{self.feature_id}/{self.role}/{self.label}"


@dataclass(frozen=True)
class Document:
    """An immutable stored artifact."""
    ref: DocumentRef
    payload: dict[str, Any]
    digest: str
    created_at: str
    author: str


@dataclass(frozen=True)
class FeedbackItem:
    """One actionable item of rejection feedback."""
    severity: str  # CRITICAL, HIGH, MEDIUM, LOW
    location: str  # e.g. "tests/test_tasks.py:120"
    problem: str
    required_fix: str

    def to_dict(self) -> dict:
        return {
            "severity": self.severity,
            "location": self.location,
            "problem": self.problem,
            "required_fix": self.required_fix,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "FeedbackItem":
        return cls(
            severity=data["severity"],
            location=data["location"],
            problem=data["problem"],
            required_fix=data["required_fix"],
        )


@dataclass(frozen=True)
class ReviewVerdict:
    """A recorded (sub-)verdict against one iteration."""
    feature_id: str
    role: str
    iteration: int
    outcome: str  # approved | rejected
    check: str  # human | automated
    reviewer_role: str
    reviewer: str
    timestamp: str
    feedback_items: tuple[FeedbackItem, ...] = ()
    notes: str = ""

    def to_dict(self) -> dict:
        data = {
            "feature_id": self.feature_id,
            "role": self.role,
            "iteration": self.iteration,
            "outcome": self.outcome,
            "check": self.check,
            "reviewer_role": self.reviewer_role,
            "reviewer": self.reviewer,
            "timestamp": self.timestamp,
            "feedback_items": [item.to_dict() for item in self.feedback_items],
        }
        if self.notes:
            data["notes"] = self.notes
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ReviewVerdict":
        return cls(
            feature_id=data["feature_id"],
            role=data["role"],
            iteration=data["iteration"],
            outcome=data["outcome"],
            check=data["check"],
            reviewer_role=data["reviewer_role"],
            reviewer=data["reviewer"],
            timestamp=data["timestamp"],
            feedback_items=tuple(FeedbackItem.from_dict(i) for i in data.get("feedback_items", [])),
            notes=data.get("notes", ""),
        )


@dataclass(frozen=True)
class Feature:
    """Immutable feature record as written at creation."""
    feature_id: str
    title: str
    phase_sequence: tuple[str, ...]
    review_mode: str
    created_at: str

    def to_dict(self) -> dict:
        return {
            "feature_id": self.feature_id,
            "title": self.title,
            "phase_sequence": list(self.phase_sequence),
            "review_mode": self.review_mode,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Feature":
        return cls(
            feature_id=data["feature_id"],
            title=data["title"],
            phase_sequence=tuple(data["phase_sequence"]),
            review_mode=data["review_mode"],
            created_at=data["created_at"],
        )


@dataclass
class PhaseStatus:
    """Snapshot of one role's phase, derived from the log."""
    role: str
    state: str
    request_count: int = 0
    latest_iteration: int | None = None
    latest_verdicts: list[ReviewVerdict] = field(default_factory=list)
    visible_handoffs: list[DocumentRef] = field(default_factory=list)


@dataclass
class FeatureStatus:
    """Snapshot of a feature and all of its phases."""
    feature: Feature
    status: str
    archived: bool
    phases: list[PhaseStatus] = field(default_factory=list)

    def phase(self, role: str) -> PhaseStatus | None:
        for p in self.phases:
            if p.role == role:
                return p
        return None
