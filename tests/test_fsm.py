"""Tests for phasegate.workflow.fsm module."""

import pytest

from phasegate.lib.errors import InvalidTransitionError
from phasegate.lib.types import WorkspaceRef
from phasegate.workflow.fsm import (
    PhaseFSM,
    STATES,
    TRANSITIONS,
    TRIGGER_FOR,
)

WS = WorkspaceRef("tasks-001", "build")


class TestFSMStates:
    """Tests for FSM state definitions."""

    def test_all_states_defined(self):
        expected = ["not_started", "awaiting_work", "submitted_for_review", "rejected", "approved"]
        assert set(STATES) == set(expected)

    def test_approval_only_from_review(self):
        """No transition may reach approved without passing review."""
        sources = {t["source"] for t in TRANSITIONS if t["dest"] == "approved"}
        assert sources == {"submitted_for_review"}

    def test_nothing_leaves_approved(self):
        assert not [t for t in TRANSITIONS if t["source"] == "approved"]

    def test_trigger_lookup(self):
        assert TRIGGER_FOR[("not_started", "awaiting_work")] == "issue_request"
        assert TRIGGER_FOR[("awaiting_work", "submitted_for_review")] == "submit_iteration"
        assert TRIGGER_FOR[("rejected", "submitted_for_review")] == "submit_iteration"
        assert TRIGGER_FOR[("submitted_for_review", "approved")] == "approve"

    def test_trigger_lookup_skips_internal_transitions(self):
        assert "record_check" not in TRIGGER_FOR.values()


class TestPhaseFSM:
    """Basic FSM functionality tests."""

    def test_initial_state(self):
        fsm = PhaseFSM(WS, "awaiting_work")
        assert fsm.state == "awaiting_work"

    def test_unknown_initial_state_raises(self):
        with pytest.raises(ValueError, match="Unknown phase state"):
            PhaseFSM(WS, "bogus_state")

    def test_full_happy_path(self):
        fsm = PhaseFSM(WS, "not_started")
        assert fsm.fire("issue_request") == "awaiting_work"
        assert fsm.fire("submit_iteration") == "submitted_for_review"
        assert fsm.fire("approve") == "approved"

    def test_rejection_loop_has_no_limit(self):
        fsm = PhaseFSM(WS, "awaiting_work")
        for _ in range(10):
            fsm.fire("submit_iteration")
            fsm.fire("reject")
        assert fsm.state == "rejected"
        fsm.fire("submit_iteration")
        assert fsm.fire("approve") == "approved"

    def test_approved_is_terminal(self):
        fsm = PhaseFSM(WS, "approved")
        assert fsm.get_available_triggers() == []
        with pytest.raises(InvalidTransitionError) as exc:
            fsm.fire("submit_iteration")
        assert exc.value.from_state == "approved"
        assert exc.value.trigger == "submit_iteration"
        assert exc.value.ws_key == "tasks-001/build"

    def test_cannot_approve_awaiting_work(self):
        fsm = PhaseFSM(WS, "awaiting_work")
        assert not fsm.can("approve")
        with pytest.raises(InvalidTransitionError):
            fsm.fire("approve")
        assert fsm.state == "awaiting_work"

    def test_request_issued_only_once(self):
        fsm = PhaseFSM(WS, "awaiting_work")
        with pytest.raises(InvalidTransitionError):
            fsm.require("issue_request")

    def test_record_check_keeps_state(self):
        fsm = PhaseFSM(WS, "submitted_for_review")
        assert fsm.fire("record_check") == "submitted_for_review"

    def test_available_triggers_under_review(self):
        fsm = PhaseFSM(WS, "submitted_for_review")
        assert set(fsm.get_available_triggers()) == {"record_check", "approve", "reject"}


class TestTransitionCallback:
    """on_transition receives (from_state, to_state, trigger)."""

    def test_callback_receives_transition(self):
        calls = []
        fsm = PhaseFSM(WS, "not_started", on_transition=lambda *a: calls.append(a))
        fsm.fire("issue_request")
        assert calls == [("not_started", "awaiting_work", "issue_request")]

    def test_callback_on_internal_transition(self):
        calls = []
        fsm = PhaseFSM(WS, "submitted_for_review", on_transition=lambda *a: calls.append(a))
        fsm.fire("record_check")
        assert calls == [("submitted_for_review", "submitted_for_review", "record_check")]

    def test_no_callback_on_refused_trigger(self):
        calls = []
        fsm = PhaseFSM(WS, "approved", on_transition=lambda *a: calls.append(a))
        with pytest.raises(InvalidTransitionError):
            fsm.fire("reject")
        assert calls == []
