"""
pg open-handoff / revise-handoff - Expose part of an iteration downstream.
"""

from phasegate.lib.payload import parse_json_object
from phasegate.workflow.coordinator import Coordinator


def cmd_open_handoff(args, coordinator: Coordinator) -> int:
    interface = parse_json_object(args.interface, "interface")
    ref = coordinator.open_handoff(
        args.feature, args.source, args.iteration, args.target, interface, actor=args.actor,
    )
    print(f"Opened {ref.label}: {args.source} iteration-{args.iteration:02d} -> {args.target}")
    print(f"  Exposes: {', '.join(sorted(interface))}")
    return 0


def cmd_revise_handoff(args, coordinator: Coordinator) -> int:
    changes = parse_json_object(args.changes, "changes")
    ref = coordinator.revise_handoff(
        args.feature, args.source, args.handoff, args.iteration, changes, actor=args.actor,
    )
    print(f"Revised {args.source}/handoff-{args.handoff:03d} -> {ref.label} (iteration-{args.iteration:02d})")
    if changes:
        print(f"  Changed: {', '.join(sorted(changes))}")
    print("  Downstream work may need reconciling; see 'pg reissue-request'.")
    return 0
