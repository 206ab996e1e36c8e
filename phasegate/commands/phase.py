"""
pg issue-request / advance / submit-iteration / reissue-request

Commands that write requests and iterations into a role's workspace.
"""

from phasegate.lib.payload import parse_evidence, parse_handoff_ref, read_payload
from phasegate.workflow.coordinator import Coordinator


def cmd_issue_request(args, coordinator: Coordinator) -> int:
    body = read_payload(args.payload)
    ref = coordinator.issue_request(args.feature, args.role, body, actor=args.actor)
    print(f"Issued {ref.label} to {args.feature}/{args.role} (awaiting work)")
    return 0


def cmd_advance(args, coordinator: Coordinator) -> int:
    """Open the next phase once the current one is approved."""
    body = read_payload(args.payload)
    role, ref = coordinator.advance(args.feature, body, actor=args.actor)
    print(f"Advanced {args.feature}: issued {ref.label} to {role}")
    return 0


def cmd_submit_iteration(args, coordinator: Coordinator) -> int:
    body = read_payload(args.payload)
    evidence = parse_evidence(args.evidence)
    ref = coordinator.submit_iteration(args.feature, args.role, body, actor=args.actor, evidence=evidence)

    print(f"Submitted {ref.label} for {args.feature}/{args.role} (awaiting review)")
    failed = [e["tool"] for e in evidence if not e["passed"]]
    if failed:
        print(f"  Note: evidence reports failures: {', '.join(failed)}")
    return 0


def cmd_reissue_request(args, coordinator: Coordinator) -> int:
    body = read_payload(args.payload)
    source_role, handoff = parse_handoff_ref(args.handoff)
    ref = coordinator.reissue_request(
        args.feature, args.role, body, source_role, handoff, actor=args.actor,
    )
    print(f"Re-issued {ref.label} to {args.feature}/{args.role} (after {source_role}/handoff-{handoff:03d})")
    return 0
