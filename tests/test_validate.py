"""Tests for JSON Schema validation at write boundaries."""

from pathlib import Path

import pytest

from phasegate.lib.validate import ValidationError, validate, validate_before_write


class TestSchemas:

    def test_valid_feature(self):
        validate({
            "feature_id": "tasks-001",
            "title": "Task list",
            "phase_sequence": ["spec", "build"],
            "review_mode": "single",
            "created_at": "2026-01-01T00:00:00+00:00",
        }, "feature")

    def test_feature_unknown_field(self):
        with pytest.raises(ValidationError) as exc:
            validate({
                "feature_id": "tasks-001",
                "title": "Task list",
                "phase_sequence": ["spec"],
                "review_mode": "single",
                "created_at": "2026-01-01T00:00:00+00:00",
                "status": "complete",
            }, "feature")
        assert exc.value.schema_name == "feature"

    def test_handoff_needs_interface(self):
        with pytest.raises(ValidationError):
            validate({"source_iteration": 1, "target_role": "build", "exposed_interface": {}, "lineage": 1}, "handoff")

    def test_evidence_shape(self):
        validate({"body": "v1", "evidence": [{"tool": "pytest", "passed": True, "output": "12 passed"}]}, "iteration")
        with pytest.raises(ValidationError) as exc:
            validate({"body": "v1", "evidence": [{"tool": "pytest", "passed": "yes"}]}, "iteration")
        assert exc.value.path == "evidence.0.passed"

    def test_unknown_schema(self):
        with pytest.raises(ValidationError, match="Schema file not found"):
            validate({}, "nonexistent")


class TestValidateBeforeWrite:

    def test_message_names_target(self):
        with pytest.raises(ValidationError, match="Refusing to write invalid data to /tmp/x.json"):
            validate_before_write({"body": ""}, "request", Path("/tmp/x.json"))
