"""
Phase event notifications.

Every phase transition and handoff revision is published as a PhaseEvent to
in-process subscribers. Optionally, events that need a human (review needed,
phase approved, handoff revised) are also sent as desktop notifications via
notify-send (freedesktop compliant: mako, dunst, GNOME, KDE).
"""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


VALID_URGENCIES = ("low", "normal", "critical")
MAX_NOTIFICATION_LENGTH = 200

# Event types
SUBMITTED_FOR_REVIEW = "submitted_for_review"
PHASE_APPROVED = "phase_approved"
PHASE_REJECTED = "phase_rejected"
PHASE_OPENED = "phase_opened"
CHECK_RECORDED = "check_recorded"
HANDOFF_OPENED = "handoff_opened"
HANDOFF_REVISED = "handoff_revised"
REQUEST_REISSUED = "request_reissued"
FEATURE_COMPLETE = "feature_complete"
FEATURE_ABANDONED = "feature_abandoned"


@dataclass(frozen=True)
class PhaseEvent:
    """Something observable happened to a feature."""
    event_type: str
    feature_id: str
    role: str | None = None
    from_state: str | None = None
    to_state: str | None = None
    details: dict = field(default_factory=dict)


Subscriber = Callable[[PhaseEvent], None]


def notify(title: str, message: str, urgency: str = "normal"):
    """
    Send desktop notification.

    Args:
        title: Notification title
        message: Notification body
        urgency: One of "low", "normal", "critical"
    """
    if urgency not in VALID_URGENCIES:
        logger.warning(f"Invalid urgency '{urgency}', using 'normal'")
        urgency = "normal"

    if not shutil.which("notify-send"):
        logger.debug("notify-send not found, skipping notification")
        return

    if len(message) > MAX_NOTIFICATION_LENGTH:
        message = message[:MAX_NOTIFICATION_LENGTH] + "..."

    try:
        result = subprocess.run([
            "notify-send",
            "--urgency", urgency,
            "--app-name", "phasegate",
            title,
            message
        ], capture_output=True, text=True, timeout=5)

        if result.returncode != 0:
            logger.warning(f"notify-send failed (exit {result.returncode}): {result.stderr}")
    except subprocess.TimeoutExpired:
        logger.warning("notify-send timed out")
    except OSError as e:
        logger.warning(f"Failed to run notify-send: {e}")


DESKTOP_MESSAGES = {
    SUBMITTED_FOR_REVIEW: ("Ready for review", "normal"),
    PHASE_APPROVED: ("Phase approved, ready to advance", "low"),
    PHASE_REJECTED: ("Iteration rejected", "normal"),
    HANDOFF_REVISED: ("Handoff revised, reconcile downstream work", "critical"),
    REQUEST_REISSUED: ("Request re-issued after a handoff revision", "normal"),
    FEATURE_COMPLETE: ("All phases approved", "low"),
}


def desktop_subscriber(event: PhaseEvent) -> None:
    """Subscriber that forwards human-relevant events to notify-send."""
    if event.event_type not in DESKTOP_MESSAGES:
        return
    message, urgency = DESKTOP_MESSAGES[event.event_type]
    subject = f"{event.feature_id}/{event.role}" if event.role else event.feature_id
    notify(f"phasegate: {subject}", message, urgency)


class NotificationHub:
    """Fan-out of PhaseEvents to subscribers.

    Events are published after the triggering record is durable, so a failing
    subscriber cannot undo the operation. Failures are logged, not raised.
    """

    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> None:
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, event: PhaseEvent) -> None:
        logger.debug(f"[NOTIFY] {event.event_type} {event.feature_id}/{event.role or '-'}")
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed on {event.event_type} for {event.feature_id}")
