"""Tests for the pg command line."""

import json

import pytest

from phasegate.cli import build_parser, main


@pytest.fixture
def pg(tmp_path, monkeypatch):
    """Run pg against a fresh root and return its exit code."""
    monkeypatch.delenv("PHASEGATE_ACTOR", raising=False)
    monkeypatch.delenv("PHASEGATE_ROOT", raising=False)
    root = tmp_path / "root"

    def run(*argv):
        return main(["--root", str(root), *argv])

    run.root = root
    return run


@pytest.fixture
def started(pg, capsys):
    assert pg("create-feature", "tasks-001", "spec,build", "--title", "Task list") == 0
    assert pg("issue-request", "tasks-001", "spec", "Write the failing tests") == 0
    assert pg("--as", "spec", "submit-iteration", "tasks-001", "spec", "tests v1", "--evidence", "pytest=fail:3 failed") == 0
    capsys.readouterr()
    return pg


class TestParser:

    def test_item_takes_four_values(self):
        args = build_parser().parse_args([
            "record-verdict", "tasks-001", "spec", "rejected",
            "--item", "HIGH", "a.py:1", "Broken", "Fix it",
            "--item", "LOW", "b.py:2", "Typo", "Fix",
        ])
        assert args.item == [["HIGH", "a.py:1", "Broken", "Fix it"], ["LOW", "b.py:2", "Typo", "Fix"]]
        assert args.check == "human"

    def test_outcome_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["record-verdict", "tasks-001", "spec", "maybe"])


class TestCommands:

    def test_create_feature(self, pg, capsys):
        assert pg("create-feature", "tasks-001", "spec,build") == 0
        out = capsys.readouterr().out
        assert "Created feature: tasks-001" in out
        assert "spec -> build" in out

    def test_create_from_pipeline(self, pg, capsys):
        assert pg("create-feature", "tasks-001", "--pipeline", "tdd") == 0
        assert "spec -> build" in capsys.readouterr().out

    def test_create_needs_roles(self, pg, capsys):
        assert pg("create-feature", "tasks-001") == 2
        assert capsys.readouterr().err.startswith("ERROR:")

    def test_rejection_needs_feedback(self, started, capsys):
        assert started("record-verdict", "tasks-001", "spec", "rejected", "--reviewer", "alice") == 2
        err = capsys.readouterr().err
        assert err.startswith("ERROR:")
        assert "feedback item" in err

    def test_reject_then_status(self, started, capsys):
        code = started(
            "record-verdict", "tasks-001", "spec", "rejected", "--reviewer", "alice",
            "--item", "HIGH", "tests/test_tasks.py:120", "Pagination untested", "Add a limit/offset test",
        )
        assert code == 0
        assert "Phase is now: rejected" in capsys.readouterr().out

        assert started("status", "tasks-001") == 0
        out = capsys.readouterr().out
        assert "[spec] rejected" in out
        assert "human rejected by alice, 1 feedback item(s)" in out

    def test_verdict_without_reviewer(self, started, capsys):
        assert started("record-verdict", "tasks-001", "spec", "approved") == 0
        assert started("status", "tasks-001", "spec") == 0
        assert "human approved by coordinator" in capsys.readouterr().out

    def test_coordinator_cannot_submit(self, started, capsys):
        assert started("submit-iteration", "tasks-001", "spec", "tests v2") == 2
        assert "Access denied" in capsys.readouterr().err

    def test_isolation_through_show(self, started, capsys):
        assert started("--as", "build", "show", "tasks-001", "spec", "iteration", "1") == 2
        assert "Access denied" in capsys.readouterr().err

        assert started("--as", "spec", "show", "tasks-001", "spec", "iteration", "1", "--json") == 0
        record = json.loads(capsys.readouterr().out)
        assert record["payload"]["evidence"][0]["passed"] is False

    def test_actor_from_environment(self, started, capsys, monkeypatch):
        monkeypatch.setenv("PHASEGATE_ACTOR", "build")
        assert started("show", "tasks-001", "spec", "request", "1") == 2

    def test_handoff_flow(self, started, capsys, tmp_path):
        interface = tmp_path / "interface.json"
        interface.write_text('{"TaskService.list": "(limit) -> list[Task]"}')
        assert started("open-handoff", "tasks-001", "spec", "1", "build", f"@{interface}") == 0
        assert started("--as", "build", "show", "tasks-001", "spec", "handoff", "1") == 0
        assert "TaskService.list" in capsys.readouterr().out

        assert started("revise-handoff", "tasks-001", "spec", "1", "1", '{"TaskService.list": null, "Task": "x"}') == 0
        assert started("issue-request", "tasks-001", "build", "Implement it") == 0
        assert started("reissue-request", "tasks-001", "build", "Adapt", "--handoff", "spec:2") == 0
        assert "Re-issued request-002" in capsys.readouterr().out

        assert started("reissue-request", "tasks-001", "build", "Again", "--handoff", "spec:1") == 2

    def test_advance_and_complete(self, started, capsys):
        assert started("record-verdict", "tasks-001", "spec", "approved", "--reviewer", "alice") == 0
        assert started("advance", "tasks-001", "Make the tests pass") == 0
        assert "issued request-001 to build" in capsys.readouterr().out
        assert started("--as", "build", "submit-iteration", "tasks-001", "build", "impl v1") == 0
        assert started("record-verdict", "tasks-001", "build", "approved", "-r", "alice") == 0
        assert started("archive", "tasks-001") == 0
        capsys.readouterr()

        assert started("list") == 0
        assert "No features." in capsys.readouterr().out
        assert started("list", "--all") == 0
        assert "complete (archived)" in capsys.readouterr().out

    def test_log(self, started, capsys):
        assert started("log", "tasks-001", "--reverse", "--no-color") == 0
        out = capsys.readouterr().out
        assert "Created: Task list" in out
        assert out.index("request-001") < out.index("iteration-01")

    def test_log_hides_other_workspaces(self, started, capsys):
        code = started(
            "record-verdict", "tasks-001", "spec", "rejected", "--reviewer", "alice",
            "--item", "HIGH", "src/tasks.py:9", "Hidden ordering bug", "Sort by id",
        )
        assert code == 0
        capsys.readouterr()

        assert started("--as", "build", "-v", "log", "tasks-001", "--no-color") == 0
        out = capsys.readouterr().out
        assert "Created: Task list" in out
        assert "tests v1" not in out
        assert "Hidden ordering bug" not in out

        assert started("--as", "build", "log", "tasks-001", "--role", "spec") == 2
        assert "Access denied" in capsys.readouterr().err

    def test_log_bad_since(self, started, capsys):
        assert started("log", "tasks-001", "--since", "yesterday") == 2

    def test_use_sets_context(self, started, capsys):
        assert started("use") == 0
        assert "Current feature: tasks-001" in capsys.readouterr().out
        assert started("status") == 0
        assert "Feature: tasks-001" in capsys.readouterr().out

        assert started("use", "--clear") == 0
        assert started("status") == 2

    def test_unknown_feature(self, pg, capsys):
        assert pg("status", "nope-001") == 2
        assert "not found" in capsys.readouterr().err

    def test_abandon(self, started, capsys):
        assert started("abandon", "tasks-001", "--reason", "descoped") == 0
        assert started("--as", "spec", "submit-iteration", "tasks-001", "spec", "tests v2") == 2
        assert "abandoned" in capsys.readouterr().err

    def test_bad_config(self, pg, capsys):
        pg.root.mkdir(parents=True)
        (pg.root / "phasegate.env").write_text("LOCK_TIMEOUT=$(sleep 10)\n")
        assert pg("list") == 2
        assert "Forbidden pattern" in capsys.readouterr().err
