"""
pg create-feature / list / abandon / archive - Feature lifecycle commands.
"""

import sys

from phasegate.lib.config import clear_current_feature, get_current_feature, set_current_feature
from phasegate.workflow.coordinator import Coordinator


def cmd_create_feature(args, coordinator: Coordinator) -> int:
    """Create a feature from an explicit role list or a named pipeline."""
    if args.pipeline:
        try:
            roles = coordinator.catalog.pipeline(args.pipeline)
        except KeyError as e:
            print(f"ERROR: {e.args[0]}", file=sys.stderr)
            return 2
    elif args.roles:
        roles = [r.strip() for r in args.roles.split(",") if r.strip()]
    else:
        print("ERROR: Give a comma-separated role list or --pipeline NAME", file=sys.stderr)
        return 2

    unknown = [r for r in roles if r not in coordinator.catalog.roles]
    if unknown:
        print(f"Note: roles not in the catalogue: {', '.join(unknown)}")

    feature = coordinator.create_feature(args.id, roles, title=args.title or "", actor=args.actor)
    set_current_feature(coordinator.root, feature.feature_id)

    print(f"Created feature: {feature.feature_id}")
    print(f"  Title:  {feature.title}")
    print(f"  Phases: {' -> '.join(feature.phase_sequence)}")
    print(f"  Review: {feature.review_mode}")
    print()
    print("Next steps:")
    print(f"  pg issue-request {feature.feature_id} {feature.phase_sequence[0]} @request.md")
    return 0


def cmd_list(args, coordinator: Coordinator) -> int:
    """List features with their derived status."""
    statuses = coordinator.list_features(include_archived=args.all)
    if not statuses:
        print("No features.")
        return 0

    current = get_current_feature(coordinator.root)
    print(f"{'ID':<24} {'STATUS':<12} {'PHASES':<40} TITLE")
    for s in statuses:
        phases = " ".join(f"{p.role}:{_short(p.state)}" for p in s.phases)
        status = s.status + (" (archived)" if s.archived else "")
        marker = "*" if s.feature.feature_id == current else " "
        print(f"{marker}{s.feature.feature_id:<23} {status:<12} {phases:<40} {s.feature.title}")
    return 0


def _short(state: str) -> str:
    return {
        "not_started": "-",
        "awaiting_work": "open",
        "submitted_for_review": "review",
        "rejected": "rejected",
        "approved": "ok",
    }.get(state, state)


def cmd_abandon(args, coordinator: Coordinator) -> int:
    coordinator.abandon_feature(args.feature, reason=args.reason or "", actor=args.actor)
    if get_current_feature(coordinator.root) == args.feature:
        clear_current_feature(coordinator.root)
    print(f"Feature '{args.feature}' abandoned. History remains readable.")
    return 0


def cmd_archive(args, coordinator: Coordinator) -> int:
    coordinator.archive_feature(args.feature, actor=args.actor)
    print(f"Feature '{args.feature}' archived (hidden from 'pg list', shown with --all).")
    return 0


def cmd_use(args, coordinator: Coordinator) -> int:
    """Set, show, or clear the current feature context."""
    root = coordinator.root

    if args.clear:
        clear_current_feature(root)
        print("Cleared current feature context.")
        return 0

    if not args.feature:
        current = get_current_feature(root)
        if current:
            print(f"Current feature: {current}")
        else:
            print("No current feature set. Use 'pg use <id>' to set one.")
        return 0

    if not coordinator.store.feature_exists(args.feature):
        print(f"ERROR: Feature '{args.feature}' not found.", file=sys.stderr)
        return 2

    set_current_feature(root, args.feature)
    print(f"Now using feature: {args.feature}")
    return 0
