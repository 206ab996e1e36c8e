"""
pg record-verdict - Approve or reject a role's latest iteration.

Rejections need at least one feedback item, given either inline:

    pg record-verdict tasks-001 build rejected \\
        --item HIGH tests/test_tasks.py:120 "missing pagination" "add limit/offset"

or from a JSON/YAML file with --feedback.
"""

from phasegate.lib.payload import parse_feedback
from phasegate.workflow.coordinator import Coordinator


def cmd_record_verdict(args, coordinator: Coordinator) -> int:
    feedback = parse_feedback(args.item, args.feedback)
    verdict, state = coordinator.record_verdict(
        args.feature,
        args.role,
        args.outcome,
        reviewer=args.reviewer,
        feedback_items=feedback,
        iteration=args.iteration,
        check=args.check,
        notes=args.notes or "",
        actor=args.actor,
    )

    print(
        f"Recorded {verdict.check} verdict '{verdict.outcome}' on "
        f"{args.feature}/{args.role} iteration-{verdict.iteration:02d}"
    )
    for item in verdict.feedback_items:
        print(f"  [{item.severity}] {item.location}: {item.problem}")
        print(f"      fix: {item.required_fix}")
    print(f"Phase is now: {state.value}")

    if state.value == "submitted_for_review":
        print("  Waiting for the remaining check before the phase is decided.")
    return 0
