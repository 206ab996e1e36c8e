"""
pg status - Show a feature's phases, latest verdicts and visible handoffs.
"""

from phasegate.workflow.coordinator import Coordinator


def cmd_status(args, coordinator: Coordinator) -> int:
    """Show detailed status of a feature (or one of its phases)."""
    status = coordinator.status(args.feature, role=args.role)
    feature = status.feature

    print(f"Feature: {feature.feature_id}")
    print("=" * 60)
    print()
    print(f"Title:          {feature.title}")
    print(f"Status:         {status.status}" + (" (archived)" if status.archived else ""))
    print(f"Review mode:    {feature.review_mode}")
    print(f"Phases:         {' -> '.join(feature.phase_sequence)}")
    print()

    for phase in status.phases:
        print(f"[{phase.role}] {phase.state}")
        if phase.request_count > 1:
            print(f"  Requests:     {phase.request_count} (re-issued {phase.request_count - 1}x)")
        if phase.latest_iteration:
            print(f"  Iteration:    {phase.latest_iteration:02d}")
        for verdict in phase.latest_verdicts:
            items = f", {len(verdict.feedback_items)} feedback item(s)" if verdict.feedback_items else ""
            print(f"  Verdict:      {verdict.check} {verdict.outcome} by {verdict.reviewer}{items}")
        for ref in phase.visible_handoffs:
            print(f"  Handoff in:   {ref.role}/{ref.label}")
    return 0
