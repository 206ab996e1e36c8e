"""Shared fixtures for phasegate tests."""

import pytest

from phasegate.lib.config import EngineConfig
from phasegate.notifications import NotificationHub
from phasegate.workflow.coordinator import Coordinator


@pytest.fixture
def hub():
    return NotificationHub()


@pytest.fixture
def events(hub):
    """Every PhaseEvent published on hub, in order."""
    received = []
    hub.subscribe(received.append)
    return received


@pytest.fixture
def coordinator(tmp_path, hub):
    config = EngineConfig(root=tmp_path / "pg", lock_timeout=5.0, default_reviewer="alice")
    return Coordinator(config, hub=hub)


@pytest.fixture
def feedback():
    return [{
        "severity": "HIGH",
        "location": "tests/test_tasks.py:120",
        "problem": "Pagination is not covered",
        "required_fix": "Add a test for limit/offset",
    }]


@pytest.fixture
def two_phase(coordinator):
    """tasks-001 with phases spec -> build, nothing issued yet."""
    coordinator.create_feature("tasks-001", ["spec", "build"], title="Task list")
    return coordinator
