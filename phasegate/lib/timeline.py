"""
Timeline event extraction for features.

Provides a unified, ordered view of a feature's history by replaying its
append-only records:
- feature.json, abandoned.json, archived.json
- requests, iterations and handoffs of every workspace (or of one role,
  plus the handoffs granted to it)
- verdicts of every workspace

Rejected iterations and their feedback stay in the timeline forever.
Used by: pg log, Coordinator.history
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional

from phasegate.lib.constants import KIND_HANDOFF, KIND_ITERATION, KIND_REQUEST
from phasegate.lib.types import Document, DocumentRef, Feature, WorkspaceRef
from phasegate.store.documents import DocumentStore


@dataclass
class TimelineEvent:
    """A single event in a feature's timeline."""
    timestamp: datetime
    event_type: str
    summary: str
    role: Optional[str] = None
    details: dict = field(default_factory=dict)

    def __lt__(self, other):
        """Sort by timestamp (oldest first)."""
        return self.timestamp < other.timestamp


# ANSI color codes
COLORS = {
    "reset": "\033[0m",
    "dim": "\033[2m",
    "bold": "\033[1m",
    "green": "\033[32m",
    "red": "\033[31m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "cyan": "\033[36m",
}

EVENT_COLORS = {
    "created": "cyan",
    "request": "blue",
    "request_reissued": "yellow",
    "iteration": "bold",
    "approved": "green",
    "rejected": "red",
    "handoff_opened": "cyan",
    "handoff_revised": "yellow",
    "abandoned": "dim",
    "archived": "dim",
}

EVENT_SYMBOLS = {
    "created": "+",
    "request": ">",
    "request_reissued": ">",
    "iteration": "#",
    "approved": "*",
    "rejected": "x",
    "handoff_opened": "~",
    "handoff_revised": "~",
    "abandoned": "-",
    "archived": "A",
}


def get_feature_timeline(
    store: DocumentStore,
    feature_id: str,
    role: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: Optional[int] = None,
    handoffs: Iterable[DocumentRef] = (),
) -> list[TimelineEvent]:
    """
    Extract all timeline events for a feature.

    Args:
        store: Document store holding the feature
        feature_id: Feature to replay
        role: Only include events of this role's workspace (feature events are kept)
        since: Only return events at or after this (timezone-aware) timestamp
        limit: Maximum number of events to return (most recent)
        handoffs: Handoffs from other workspaces to include on their own,
            e.g. those granted to role

    Returns:
        List of TimelineEvents, sorted by timestamp (oldest first)

    Raises:
        NotFoundError: if the feature doesn't exist
    """
    feature = store.load_feature(feature_id)
    events = _extract_feature_events(store, feature)

    for ws_role in store.workspace_roles(feature_id):
        if role and ws_role != role:
            continue
        events.extend(_extract_workspace_events(store, feature_id, ws_role))

    for ref in handoffs:
        if role and ref.role == role:
            continue
        doc = store.read(ref.workspace, KIND_HANDOFF, ref.sequence)
        events.append(_handoff_event(doc))

    events.sort()

    if since:
        events = [e for e in events if e.timestamp >= since]

    if limit:
        events = events[-limit:]

    return events


def _extract_feature_events(store: DocumentStore, feature: Feature) -> list[TimelineEvent]:
    feature_id = feature.feature_id
    events = [TimelineEvent(
        timestamp=datetime.fromisoformat(feature.created_at),
        event_type="created",
        summary=f"Created: {feature.title}",
        details={"phases": " -> ".join(feature.phase_sequence), "review_mode": feature.review_mode},
    )]

    for marker in ("abandoned", "archived"):
        record = store.read_marker(feature_id, marker)
        if record:
            events.append(TimelineEvent(
                timestamp=datetime.fromisoformat(record["timestamp"]),
                event_type=marker,
                summary=f"Feature {marker}" + (f": {record['reason']}" if record.get("reason") else ""),
                details={"actor": record["actor"]},
            ))
    return events


def _extract_workspace_events(store: DocumentStore, feature_id: str, role: str) -> list[TimelineEvent]:
    ws = WorkspaceRef(feature_id, role)
    events = []

    for doc in store.documents(ws, KIND_REQUEST):
        reissue = doc.payload.get("reissue_of")
        events.append(TimelineEvent(
            timestamp=datetime.fromisoformat(doc.created_at),
            event_type="request_reissued" if reissue else "request",
            summary=f"{doc.ref.label}: {_first_line(doc.payload['body'])}",
            role=role,
            details={"after_handoff": f"{reissue['role']}/handoff-{reissue['sequence']:03d}"} if reissue else {},
        ))

    for doc in store.documents(ws, KIND_ITERATION):
        evidence = doc.payload.get("evidence", [])
        details = {}
        if evidence:
            details["evidence"] = ", ".join(
                f"{e['tool']}:{'pass' if e['passed'] else 'fail'}" for e in evidence
            )
        events.append(TimelineEvent(
            timestamp=datetime.fromisoformat(doc.created_at),
            event_type="iteration",
            summary=f"{doc.ref.label}: {_first_line(doc.payload['body'])}",
            role=role,
            details=details,
        ))

    for doc in store.documents(ws, KIND_HANDOFF):
        events.append(_handoff_event(doc))

    for verdict in store.verdicts(ws):
        details = {"check": verdict.check, "reviewer": verdict.reviewer}
        for index, item in enumerate(verdict.feedback_items, 1):
            details[f"feedback_{index}"] = (
                f"[{item.severity}] {item.location}: {item.problem} -> {item.required_fix}"
            )
        events.append(TimelineEvent(
            timestamp=datetime.fromisoformat(verdict.timestamp),
            event_type=verdict.outcome,
            summary=f"iteration-{verdict.iteration:02d} {verdict.outcome} ({verdict.check})",
            role=role,
            details=details,
        ))

    return events


def _handoff_event(doc: Document) -> TimelineEvent:
    payload = doc.payload
    revised = payload.get("supersedes") is not None
    summary = (
        f"{doc.ref.label} -> {payload['target_role']} "
        f"(iteration-{payload['source_iteration']:02d}"
        + (f", supersedes handoff-{payload['supersedes']:03d})" if revised else ")")
    )
    return TimelineEvent(
        timestamp=datetime.fromisoformat(doc.created_at),
        event_type="handoff_revised" if revised else "handoff_opened",
        summary=summary,
        role=doc.ref.role,
        details={"interface": ", ".join(sorted(payload["exposed_interface"]))},
    )


def _first_line(text: str, width: int = 60) -> str:
    line = text.strip().splitlines()[0] if text.strip() else ""
    return line if len(line) <= width else line[:width - 3] + "..."


def format_event_oneline(event: TimelineEvent, colorize: bool = True) -> str:
    """Format an event as a single log line: time, symbol, role, summary."""
    symbol = EVENT_SYMBOLS.get(event.event_type, "?")
    when = event.timestamp.strftime("%Y-%m-%d %H:%M")
    role = f"{event.role:<14}" if event.role else f"{'-':<14}"

    if not colorize:
        return f"{when}  {symbol} {role} {event.summary}"

    color = COLORS.get(EVENT_COLORS.get(event.event_type, "reset"), "")
    reset = COLORS["reset"]
    dim = COLORS["dim"]
    return f"{dim}{when}{reset}  {color}{symbol}{reset} {role} {event.summary}"
