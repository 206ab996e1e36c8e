"""
pg log - Show feature timeline.

Displays chronological history of a feature, including:
- Creation, abandonment and archival
- Requests (and re-issues), iterations with their evidence
- Verdicts with their feedback items
- Handoffs and their revisions

Similar to `git log --oneline` but for the feature lifecycle.
"""

import sys
from datetime import datetime, timedelta, timezone

from phasegate.lib.timeline import COLORS, format_event_oneline
from phasegate.workflow.coordinator import Coordinator


def cmd_log(args, coordinator: Coordinator) -> int:
    """Show feature timeline."""
    since = None
    if args.since:
        since = _parse_since(args.since)
        if since is None:
            print(f"ERROR: Invalid --since value: {args.since}", file=sys.stderr)
            print("  Use: 1h, 1d, 1w, or ISO timestamp", file=sys.stderr)
            return 2

    events = coordinator.history(
        args.feature, role=args.role, since=since, limit=args.limit, actor=args.actor,
    )
    if not events:
        print("No events found.")
        return 0

    status = coordinator.status(args.feature)

    colorize = not args.no_color and sys.stdout.isatty()
    dim = COLORS["dim"] if colorize else ""
    reset = COLORS["reset"] if colorize else ""

    print(f"{dim}Feature:{reset} {status.feature.feature_id}")
    print(f"{dim}Title:{reset}   {status.feature.title}")
    print(f"{dim}Status:{reset}  {status.status}")
    print()

    # Newest first for log view, unless --reverse
    if not args.reverse:
        events = list(reversed(events))

    for event in events:
        print(format_event_oneline(event, colorize=colorize))
        if args.verbose and event.details:
            for key, value in event.details.items():
                if value:
                    print(f"         {dim}{key}: {value}{reset}")

    print()
    print(f"{dim}{len(events)} event(s){reset}")
    return 0


def _parse_since(value: str) -> datetime | None:
    """Parse --since value into a timezone-aware datetime."""
    now = datetime.now(timezone.utc)

    units = {"h": "hours", "d": "days", "w": "weeks"}
    if value[-1:] in units:
        try:
            return now - timedelta(**{units[value[-1]]: int(value[:-1])})
        except ValueError:
            pass

    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
