"""Tests for the review gate."""

import pytest

from phasegate import notifications
from phasegate.lib.errors import (
    AccessDeniedError,
    ConflictError,
    InvalidTransitionError,
    InvalidVerdictError,
    NotFoundError,
    StaleIterationError,
)
from phasegate.lib.types import FeedbackItem
from phasegate.workflow.gate import parse_feedback_items
from phasegate.workflow.state_machine import PhaseState


@pytest.fixture
def submitted(two_phase):
    """tasks-001/spec with iteration 01 under review."""
    two_phase.issue_request("tasks-001", "spec", "Write the failing tests")
    two_phase.submit_iteration("tasks-001", "spec", "tests v1", actor="spec")
    return two_phase


@pytest.fixture
def dual(coordinator):
    coordinator.create_feature("tasks-002", ["build"], review_mode="dual")
    coordinator.issue_request("tasks-002", "build", "Implement TaskService")
    coordinator.submit_iteration("tasks-002", "build", "impl v1", actor="build")
    return coordinator


class TestParseFeedbackItems:

    def test_normalizes_items(self):
        items = parse_feedback_items([
            {"severity": "high", "location": " a.py:1 ", "problem": "p", "requiredFix": "f"},
            FeedbackItem("LOW", "b.py:2", "q", "g"),
        ])
        assert items[0] == FeedbackItem("HIGH", "a.py:1", "p", "f")
        assert items[1].severity == "LOW"

    def test_empty_input(self):
        assert parse_feedback_items(None) == ()

    @pytest.mark.parametrize("missing", ["severity", "location", "problem", "required_fix"])
    def test_missing_field(self, feedback, missing):
        item = dict(feedback[0])
        item[missing] = "  "
        with pytest.raises(InvalidVerdictError, match=missing):
            parse_feedback_items([item])

    def test_unknown_severity(self, feedback):
        item = dict(feedback[0], severity="BLOCKER")
        with pytest.raises(InvalidVerdictError, match="unknown severity"):
            parse_feedback_items([item])

    def test_non_object(self):
        with pytest.raises(InvalidVerdictError):
            parse_feedback_items(["fix the tests"])


class TestSingleReview:

    def test_approve(self, submitted, events):
        verdict, state = submitted.record_verdict("tasks-001", "spec", "approved")
        assert state == PhaseState.APPROVED
        assert verdict.iteration == 1
        assert verdict.reviewer == "alice"
        assert verdict.reviewer_role == "coordinator"
        assert notifications.PHASE_APPROVED in [e.event_type for e in events]

    def test_reject_with_feedback(self, submitted, feedback):
        verdict, state = submitted.record_verdict("tasks-001", "spec", "rejected", feedback_items=feedback)
        assert state == PhaseState.REJECTED
        assert verdict.feedback_items[0].location == "tests/test_tasks.py:120"

    def test_reject_without_feedback(self, submitted):
        with pytest.raises(InvalidVerdictError) as exc:
            submitted.record_verdict("tasks-001", "spec", "rejected")
        assert isinstance(exc.value, InvalidTransitionError)
        assert submitted.status("tasks-001", "spec").phases[0].state == "submitted_for_review"

    def test_only_coordinator_records(self, submitted):
        with pytest.raises(AccessDeniedError):
            submitted.record_verdict("tasks-001", "spec", "approved", actor="spec")

    def test_reviewer_required(self, submitted):
        with pytest.raises(InvalidVerdictError, match="reviewer"):
            submitted.gate.record(
                "coordinator", submitted.store.load_feature("tasks-001"),
                submitted.registry.get_workspace("tasks-001", "spec"), "approved", reviewer="",
            )

    @pytest.mark.parametrize("outcome,check", [("maybe", "human"), ("approved", "linter")])
    def test_bad_outcome_or_check(self, submitted, outcome, check):
        with pytest.raises(InvalidVerdictError):
            submitted.record_verdict("tasks-001", "spec", outcome, check=check)

    def test_no_verdict_before_submission(self, two_phase):
        two_phase.issue_request("tasks-001", "spec", "Write the failing tests")
        with pytest.raises(InvalidTransitionError) as exc:
            two_phase.record_verdict("tasks-001", "spec", "approved")
        assert exc.value.from_state == "awaiting_work"

    def test_no_second_verdict_after_approval(self, submitted):
        submitted.record_verdict("tasks-001", "spec", "approved")
        with pytest.raises(InvalidTransitionError):
            submitted.record_verdict("tasks-001", "spec", "approved", check="automated")


class TestStaleIterations:

    def test_verdict_on_superseded_iteration(self, submitted, feedback):
        submitted.record_verdict("tasks-001", "spec", "rejected", feedback_items=feedback)
        submitted.submit_iteration("tasks-001", "spec", "tests v2", actor="spec")

        with pytest.raises(StaleIterationError) as exc:
            submitted.record_verdict("tasks-001", "spec", "approved", iteration=1)
        assert (exc.value.iteration, exc.value.latest) == (1, 2)

    def test_stale_reported_before_state(self, submitted, feedback):
        submitted.record_verdict("tasks-001", "spec", "rejected", feedback_items=feedback)
        submitted.submit_iteration("tasks-001", "spec", "tests v2", actor="spec")
        submitted.record_verdict("tasks-001", "spec", "approved", iteration=2)

        with pytest.raises(StaleIterationError):
            submitted.record_verdict("tasks-001", "spec", "approved", iteration=1)

    def test_future_iteration(self, submitted):
        with pytest.raises(NotFoundError):
            submitted.record_verdict("tasks-001", "spec", "approved", iteration=3)


class TestDualReview:

    def test_both_checks_required(self, dual, events):
        _, state = dual.record_verdict("tasks-002", "build", "approved", check="automated", reviewer="ci")
        assert state == PhaseState.SUBMITTED_FOR_REVIEW
        assert events[-1].event_type == notifications.CHECK_RECORDED

        _, state = dual.record_verdict("tasks-002", "build", "approved", check="human")
        assert state == PhaseState.APPROVED

    def test_either_check_rejects(self, dual, feedback):
        dual.record_verdict("tasks-002", "build", "approved", check="automated", reviewer="ci")
        _, state = dual.record_verdict("tasks-002", "build", "rejected", feedback_items=feedback)
        assert state == PhaseState.REJECTED

    def test_automated_rejection_is_immediate(self, dual, feedback):
        _, state = dual.record_verdict(
            "tasks-002", "build", "rejected", check="automated", reviewer="ci", feedback_items=feedback,
        )
        assert state == PhaseState.REJECTED

    def test_duplicate_check(self, dual):
        dual.record_verdict("tasks-002", "build", "approved", check="automated", reviewer="ci")
        with pytest.raises(ConflictError):
            dual.record_verdict("tasks-002", "build", "approved", check="automated", reviewer="ci")

    def test_new_iteration_resets_checks(self, dual, feedback):
        dual.record_verdict("tasks-002", "build", "approved", check="automated", reviewer="ci")
        dual.record_verdict("tasks-002", "build", "rejected", feedback_items=feedback)
        dual.submit_iteration("tasks-002", "build", "impl v2", actor="build")

        _, state = dual.record_verdict("tasks-002", "build", "approved", check="human")
        assert state == PhaseState.SUBMITTED_FOR_REVIEW
        _, state = dual.record_verdict("tasks-002", "build", "approved", check="automated", reviewer="ci")
        assert state == PhaseState.APPROVED
