"""Tests for the append-only document store."""

import json
import threading

import pytest

from phasegate.lib.errors import (
    AlreadyExistsError,
    ConflictError,
    CorruptDocumentError,
    NotFoundError,
)
from phasegate.lib.types import DocumentRef, Feature, FeedbackItem, ReviewVerdict, WorkspaceRef
from phasegate.lib.validate import ValidationError
from phasegate.store.documents import DocumentStore, payload_digest, timestamp

WS = WorkspaceRef("tasks-001", "build")


@pytest.fixture
def store(tmp_path):
    store = DocumentStore(tmp_path)
    store.create_feature(Feature("tasks-001", "Tasks", ("spec", "build"), "single", timestamp()))
    store.create_workspace_record(WS)
    return store


def verdict(iteration, outcome="approved", check="human"):
    items = (FeedbackItem("LOW", "README.md:1", "Typo", "Fix it"),) if outcome == "rejected" else ()
    return ReviewVerdict("tasks-001", "build", iteration, outcome, check, "coordinator", "alice", timestamp(), items)


class TestFeatures:

    def test_create_and_load(self, store):
        feature = store.load_feature("tasks-001")
        assert feature.phase_sequence == ("spec", "build")
        assert store.feature_exists("tasks-001")
        assert store.feature_ids() == ["tasks-001"]

    def test_duplicate_feature_id(self, store):
        with pytest.raises(AlreadyExistsError):
            store.create_feature(Feature("tasks-001", "Again", ("spec",), "single", timestamp()))

    def test_unknown_feature(self, store):
        with pytest.raises(NotFoundError):
            store.load_feature("nope-001")

    @pytest.mark.parametrize("feature_id", ["../tasks-001", "tasks-001/..", "tasks-001\n", ""])
    def test_malformed_id_is_unknown(self, store, feature_id):
        with pytest.raises(NotFoundError):
            store.load_feature(feature_id)
        assert not store.feature_exists(feature_id)

    @pytest.mark.parametrize("feature_id", ["Tasks-001", "tasks", "tasks-01", "t" * 40 + "-001"])
    def test_invalid_feature_id(self, store, feature_id):
        with pytest.raises(ValidationError):
            store.create_feature(Feature(feature_id, "Bad", ("spec",), "single", timestamp()))
        assert not store.feature_dir(feature_id).exists()

    def test_markers_are_write_once(self, store):
        record = store.mark_feature("tasks-001", "abandoned", "coordinator", reason="descoped")
        assert store.read_marker("tasks-001", "abandoned") == record
        with pytest.raises(ConflictError):
            store.mark_feature("tasks-001", "abandoned", "coordinator")
        assert store.read_marker("tasks-001", "archived") is None


class TestAppend:

    def test_gapless_sequences(self, store):
        refs = [store.append(WS, "iteration", {"body": f"v{i}"}, author="build") for i in range(1, 4)]
        assert [r.sequence for r in refs] == [1, 2, 3]
        assert store.refs(WS, "iteration") == refs
        assert store.latest_sequence(WS, "iteration") == 3
        assert store.latest(WS, "iteration").payload["body"] == "v3"

    def test_empty_kind(self, store):
        assert store.latest(WS, "handoff") is None
        assert store.latest_sequence(WS, "handoff") == 0
        assert store.refs(WS, "handoff") == []

    def test_second_request_conflicts(self, store):
        store.append(WS, "request", {"body": "Build it"}, author="coordinator")
        with pytest.raises(ConflictError):
            store.append(WS, "request", {"body": "Build it again"}, author="coordinator")
        assert store.latest_sequence(WS, "request") == 1

    def test_authorized_reissue(self, store):
        store.append(WS, "request", {"body": "Build it"}, author="coordinator")
        handoff = DocumentRef("tasks-001", "spec", "handoff", 2)
        ref = store.append(WS, "request", {"body": "Rebuild"}, author="coordinator", reissue_of=handoff)
        assert ref.sequence == 2
        assert store.read(WS, "request", 2).payload["reissue_of"] == {"role": "spec", "sequence": 2}

    def test_append_at_taken_sequence(self, store):
        store.append(WS, "iteration", {"body": "v1"}, author="build")
        with pytest.raises(ConflictError):
            store.append_at(WS, "iteration", 1, {"body": "other"}, author="build")
        assert store.read(WS, "iteration", 1).payload["body"] == "v1"

    def test_missing_workspace(self, store):
        with pytest.raises(NotFoundError):
            store.append(WorkspaceRef("tasks-001", "spec"), "iteration", {"body": "v1"}, author="spec")

    def test_invalid_payload_not_written(self, store):
        with pytest.raises(ValidationError):
            store.append(WS, "iteration", {"body": ""}, author="build")
        with pytest.raises(ValidationError):
            store.append(WS, "iteration", {"body": "v1", "status": "done"}, author="build")
        assert store.refs(WS, "iteration") == []

    def test_unknown_kind(self, store):
        with pytest.raises(ValueError):
            store.append(WS, "memo", {"body": "x"}, author="build")

    def test_no_temp_files_left(self, store):
        store.append(WS, "iteration", {"body": "v1"}, author="build")
        leftovers = list(store.workspace_dir(WS).rglob(".tmp-*"))
        assert leftovers == []


class TestImmutability:

    def test_store_has_no_mutators(self, store):
        for name in ("update", "delete", "remove", "overwrite"):
            assert not hasattr(store, name)

    def test_earlier_documents_unchanged_by_later_appends(self, store):
        store.append(WS, "iteration", {"body": "v1"}, author="build")
        path = store.workspace_dir(WS) / "iterations" / "0001.json"
        before = path.read_bytes()

        store.append(WS, "iteration", {"body": "v2"}, author="build")
        store.append_verdict(WS, verdict(2))

        assert path.read_bytes() == before

    def test_digest_verified_on_read(self, store):
        store.append(WS, "iteration", {"body": "v1"}, author="build")
        doc = store.read(WS, "iteration", 1)
        assert doc.digest == payload_digest({"body": "v1"})

        path = store.workspace_dir(WS) / "iterations" / "0001.json"
        data = json.loads(path.read_text())
        data["payload"]["body"] = "tampered"
        path.write_text(json.dumps(data))

        with pytest.raises(CorruptDocumentError):
            store.read(WS, "iteration", 1)

    def test_unknown_document(self, store):
        with pytest.raises(NotFoundError):
            store.read(WS, "iteration", 7)


class TestConcurrentAppend:

    def test_racing_writers_get_distinct_sequences(self, store):
        """Unlocked writers still never share or skip a sequence number."""
        count = 8
        barrier = threading.Barrier(count)
        refs, errors = [], []

        def writer(n):
            barrier.wait()
            try:
                refs.append(store.append(WS, "iteration", {"body": f"from {n}"}, author="build"))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(count)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert sorted(r.sequence for r in refs) == list(range(1, count + 1))


class TestVerdicts:

    def test_one_verdict_per_iteration_and_check(self, store):
        store.append_verdict(WS, verdict(1, check="automated"))
        store.append_verdict(WS, verdict(1, check="human"))
        with pytest.raises(ConflictError):
            store.append_verdict(WS, verdict(1, outcome="rejected", check="human"))

    def test_verdicts_by_iteration(self, store):
        store.append_verdict(WS, verdict(1, outcome="rejected"))
        store.append_verdict(WS, verdict(2))
        assert [v.iteration for v in store.verdicts(WS)] == [1, 2]
        only_first = store.verdicts(WS, 1)
        assert len(only_first) == 1
        assert only_first[0].outcome == "rejected"
        assert only_first[0].feedback_items[0].severity == "LOW"

    def test_rejection_without_feedback_refused(self, store):
        bare = ReviewVerdict("tasks-001", "build", 1, "rejected", "human", "coordinator", "alice", timestamp())
        with pytest.raises(ValidationError):
            store.append_verdict(WS, bare)


class TestGrants:

    def test_grants_in_write_order(self, store):
        for seq in (1, 2):
            store.append_grant(WS, {
                "feature_id": "tasks-001",
                "source_role": "spec",
                "target_role": "build",
                "handoff": seq,
                "lineage": 1,
                "grantor": "coordinator",
                "timestamp": timestamp(),
            })
        assert [g["handoff"] for g in store.grants(WS)] == [1, 2]

    def test_grant_by_non_coordinator_refused(self, store):
        with pytest.raises(ValidationError):
            store.append_grant(WS, {
                "feature_id": "tasks-001",
                "source_role": "spec",
                "target_role": "build",
                "handoff": 1,
                "lineage": 1,
                "grantor": "spec",
                "timestamp": timestamp(),
            })
