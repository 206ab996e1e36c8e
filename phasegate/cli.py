#!/usr/bin/env python3
"""phasegate CLI entrypoint."""

import argparse
import logging
import os
import sys

from phasegate import __version__
from phasegate.lib.config import (
    ACTOR_ENV_VAR,
    get_current_feature,
    load_engine_config,
    resolve_root,
)
from phasegate.lib.constants import CHECK_HUMAN, CHECKS, COORDINATOR, OUTCOMES
from phasegate.lib.errors import PhaseGateError
from phasegate.lib.payload import PayloadError
from phasegate.lib.validate import ValidationError
from phasegate.store.locking import LockTimeout
from phasegate.workflow.coordinator import Coordinator
from phasegate.commands import feature as cmd_feature_module
from phasegate.commands import handoff as cmd_handoff_module
from phasegate.commands import log as cmd_log_module
from phasegate.commands import phase as cmd_phase_module
from phasegate.commands import show as cmd_show_module
from phasegate.commands import status as cmd_status_module
from phasegate.commands import verdict as cmd_verdict_module

logger = logging.getLogger(__name__)


class UsageError(Exception):
    """Command line is incomplete (e.g. no feature and no current context)."""
    pass


def resolve_feature_id(args, coordinator: Coordinator) -> str:
    """Resolve feature ID from args or current context."""
    feature_id = getattr(args, "feature", None)
    if feature_id:
        return feature_id

    current = get_current_feature(coordinator.root)
    if current:
        return current

    raise UsageError("No feature specified. Use 'pg use <id>' to set current feature.")


def with_current_feature(handler):
    """Wrap a handler whose feature argument may fall back to the current context."""
    def run(args, coordinator: Coordinator) -> int:
        args.feature = resolve_feature_id(args, coordinator)
        return handler(args, coordinator)
    return run


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="pg", description="Phase-gated multi-role workflow engine")
    parser.add_argument("--root", help="Engine root (default: $PHASEGATE_ROOT or ./.phasegate)")
    parser.add_argument(
        "--as", dest="actor", metavar="ROLE",
        help=f"Acting role (default: ${ACTOR_ENV_VAR} or {COORDINATOR})",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging and detailed output")
    parser.add_argument("--version", action="version", version=f"pg {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # pg create-feature
    p_create = subparsers.add_parser("create-feature", help="Create a feature with a fixed phase sequence")
    p_create.add_argument("id", help="Feature ID, e.g. tasks-001")
    p_create.add_argument("roles", nargs="?", help="Comma-separated phase sequence, e.g. spec,build")
    p_create.add_argument("--title", "-t", help="Feature title (defaults to the ID)")
    p_create.add_argument("--pipeline", "-p", help="Use a named pipeline from roles.yaml instead of ROLES")
    p_create.set_defaults(func=cmd_feature_module.cmd_create_feature)

    # pg issue-request
    p_issue = subparsers.add_parser("issue-request", help="Open a role's phase with its request")
    p_issue.add_argument("feature", help="Feature ID")
    p_issue.add_argument("role", help="Role to open")
    p_issue.add_argument("payload", help="Request text, or @file")
    p_issue.set_defaults(func=cmd_phase_module.cmd_issue_request)

    # pg advance
    p_advance = subparsers.add_parser("advance", help="Open the next phase after an approval")
    p_advance.add_argument("feature", help="Feature ID")
    p_advance.add_argument("payload", help="Request text for the next role, or @file")
    p_advance.set_defaults(func=cmd_phase_module.cmd_advance)

    # pg submit-iteration
    p_submit = subparsers.add_parser("submit-iteration", help="Submit a new iteration (run as the role)")
    p_submit.add_argument("feature", help="Feature ID")
    p_submit.add_argument("role", help="Owning role")
    p_submit.add_argument("payload", help="Iteration text, or @file")
    p_submit.add_argument(
        "--evidence", "-e", action="append", metavar="TOOL=pass:note",
        help="Validator result to record (repeatable)",
    )
    p_submit.set_defaults(func=cmd_phase_module.cmd_submit_iteration)

    # pg record-verdict
    p_verdict = subparsers.add_parser("record-verdict", help="Approve or reject the latest iteration")
    p_verdict.add_argument("feature", help="Feature ID")
    p_verdict.add_argument("role", help="Role under review")
    p_verdict.add_argument("outcome", choices=OUTCOMES)
    p_verdict.add_argument(
        "--item", "-i", nargs=4, action="append", metavar=("SEV", "LOC", "PROBLEM", "FIX"),
        help="Feedback item (repeatable; required when rejecting)",
    )
    p_verdict.add_argument("--feedback", "-f", metavar="FILE", help="JSON/YAML file of feedback items")
    p_verdict.add_argument("--iteration", "-n", type=int, help="Iteration being judged (default: latest)")
    p_verdict.add_argument("--check", "-c", choices=CHECKS, default=CHECK_HUMAN)
    p_verdict.add_argument("--reviewer", "-r", help="Reviewer id (default: DEFAULT_REVIEWER)")
    p_verdict.add_argument("--notes", help="Free-text notes kept with the verdict")
    p_verdict.set_defaults(func=cmd_verdict_module.cmd_record_verdict)

    # pg open-handoff
    p_open = subparsers.add_parser("open-handoff", help="Expose part of an iteration to another role")
    p_open.add_argument("feature", help="Feature ID")
    p_open.add_argument("source", help="Source role")
    p_open.add_argument("iteration", type=int, help="Source iteration")
    p_open.add_argument("target", help="Target role")
    p_open.add_argument("interface", help="Exposed interface as a JSON object, or @file")
    p_open.set_defaults(func=cmd_handoff_module.cmd_open_handoff)

    # pg revise-handoff
    p_revise = subparsers.add_parser("revise-handoff", help="Supersede a handoff with a revised one")
    p_revise.add_argument("feature", help="Feature ID")
    p_revise.add_argument("source", help="Source role")
    p_revise.add_argument("handoff", type=int, help="Handoff number being superseded")
    p_revise.add_argument("iteration", type=int, help="Source iteration the revision is based on")
    p_revise.add_argument("changes", help="Interface changes as a JSON object (null removes), or @file")
    p_revise.set_defaults(func=cmd_handoff_module.cmd_revise_handoff)

    # pg reissue-request
    p_reissue = subparsers.add_parser("reissue-request", help="Re-issue a request after a handoff revision")
    p_reissue.add_argument("feature", help="Feature ID")
    p_reissue.add_argument("role", help="Role receiving the new request")
    p_reissue.add_argument("payload", help="Request text, or @file")
    p_reissue.add_argument("--handoff", required=True, metavar="SRC:N", help="Authorizing handoff, e.g. spec:2")
    p_reissue.set_defaults(func=cmd_phase_module.cmd_reissue_request)

    # pg status
    p_status = subparsers.add_parser("status", help="Show feature status")
    p_status.add_argument("feature", nargs="?", help="Feature ID (uses current if not specified)")
    p_status.add_argument("role", nargs="?", help="Only show this phase")
    p_status.set_defaults(func=with_current_feature(cmd_status_module.cmd_status))

    # pg show
    p_show = subparsers.add_parser("show", help="Show one document (access-checked)")
    p_show.add_argument("feature", help="Feature ID")
    p_show.add_argument("role", help="Workspace role")
    p_show.add_argument("kind", help="request, iteration or handoff")
    p_show.add_argument("seq", type=int, help="Sequence number")
    p_show.add_argument("--json", action="store_true", help="Print the raw record")
    p_show.set_defaults(func=cmd_show_module.cmd_show)

    # pg log
    p_log = subparsers.add_parser("log", help="Show feature timeline")
    p_log.add_argument("feature", nargs="?", help="Feature ID (uses current if not specified)")
    p_log.add_argument("--role", help="Only events of this role's workspace")
    p_log.add_argument("--since", "-s", help="Only events since (1h, 1d, 1w or ISO timestamp)")
    p_log.add_argument("--limit", "-n", type=int, help="Show at most N events")
    p_log.add_argument("--reverse", action="store_true", help="Oldest first")
    p_log.add_argument("--no-color", action="store_true", help="Disable colors")
    p_log.set_defaults(func=with_current_feature(cmd_log_module.cmd_log))

    # pg list
    p_list = subparsers.add_parser("list", help="List features")
    p_list.add_argument("--all", "-a", action="store_true", help="Include archived features")
    p_list.set_defaults(func=cmd_feature_module.cmd_list)

    # pg abandon
    p_abandon = subparsers.add_parser("abandon", help="Abandon a feature")
    p_abandon.add_argument("feature", help="Feature ID")
    p_abandon.add_argument("--reason", help="Why the feature was abandoned")
    p_abandon.set_defaults(func=cmd_feature_module.cmd_abandon)

    # pg archive
    p_archive = subparsers.add_parser("archive", help="Archive a complete or abandoned feature")
    p_archive.add_argument("feature", help="Feature ID")
    p_archive.set_defaults(func=cmd_feature_module.cmd_archive)

    # pg use
    p_use = subparsers.add_parser("use", help="Set/show current feature")
    p_use.add_argument("feature", nargs="?", help="Feature ID to use")
    p_use.add_argument("--clear", action="store_true", help="Clear current feature")
    p_use.set_defaults(func=cmd_feature_module.cmd_use)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    root = resolve_root(args.root)
    try:
        config = load_engine_config(root)
    except ValueError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.log_level, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if not args.actor:
        args.actor = os.environ.get(ACTOR_ENV_VAR) or COORDINATOR

    coordinator = Coordinator(config)
    try:
        return args.func(args, coordinator)
    except (PhaseGateError, ValidationError, PayloadError, LockTimeout, UsageError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2
    except OSError as e:
        logger.debug("I/O failure", exc_info=True)
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
