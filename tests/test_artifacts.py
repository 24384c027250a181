"""Tests for issueflow.store.artifacts module."""

import json
import logging
import os
import time

import pytest

from issueflow.lib.constants import ArtifactKind
from issueflow.lib.errors import DuplicateArtifactError, IssueNotFoundError, StoreIOError
from issueflow.store.artifacts import ArtifactStore


@pytest.fixture
def store(tmp_path):
    return ArtifactStore(tmp_path / "issues", lock_timeout=5)


class TestPut:
    """Tests for ArtifactStore.put()."""

    def test_definition_creates_issue(self, store):
        artifact = store.put("foo", ArtifactKind.DEFINITION, "It crashes")

        assert artifact.kind is ArtifactKind.DEFINITION
        assert artifact.produced_by == "external"
        assert store.exists("foo")
        assert store.status("foo") == "open"
        assert (store.root / "foo" / "problem.md").read_text() == "It crashes"

    def test_meta_written_on_create(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")

        meta = store.read_meta("foo")
        assert meta["ID"] == "foo"
        assert meta["STATUS"] == "open"
        assert meta["CREATED_AT"]

    def test_accepts_kind_name(self, store):
        store.put("foo", "definition", "x")
        store.put("foo", "implementation-report", "done", produced_by="implementation")
        assert store.has("foo", ArtifactKind.IMPLEMENTATION_REPORT)

    def test_unknown_kind(self, store):
        with pytest.raises(ValueError, match="Unknown artifact kind"):
            store.put("foo", "bogus", "x")

    def test_duplicate_rejected(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "first")

        with pytest.raises(DuplicateArtifactError) as exc:
            store.put("foo", ArtifactKind.DEFINITION, "second")

        assert exc.value.issue_id == "foo"
        assert exc.value.kind == "definition"
        assert store.get("foo", ArtifactKind.DEFINITION).content == "first"

    def test_non_definition_needs_issue(self, store):
        with pytest.raises(IssueNotFoundError):
            store.put("ghost", ArtifactKind.VALIDATION, "x")
        assert not (store.root / "ghost").exists()

    def test_records_decision(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        store.put("foo", ArtifactKind.VALIDATION, "dup", produced_by="validation",
                  decision="short_circuit", reason="duplicate of #12")

        a = store.get("foo", ArtifactKind.VALIDATION)
        assert a.produced_by == "validation"
        assert a.decision == "short_circuit"
        assert a.reason == "duplicate of #12"

    def test_rejects_non_str_content(self, store):
        with pytest.raises(TypeError):
            store.put("foo", ArtifactKind.DEFINITION, b"bytes")

    def test_invalid_issue_id(self, store):
        for bad in ["", "../x", "_hidden", ".dot", "a/b", "x" * 129]:
            with pytest.raises(ValueError):
                store.put(bad, ArtifactKind.DEFINITION, "x")

    def test_no_temp_files_left(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        leftovers = [p.name for p in store.issue_dir("foo").iterdir() if p.name.endswith(".tmp")]
        assert leftovers == []

    def test_write_failure_is_store_error(self, store, monkeypatch):
        store.put("foo", ArtifactKind.DEFINITION, "x")

        def boom(*args, **kwargs):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr("issueflow.store.artifacts.atomic_write_text", boom)
        with pytest.raises(StoreIOError) as exc:
            store.put("foo", ArtifactKind.VALIDATION, "y")
        assert exc.value.issue_id == "foo"
        assert exc.value.kind == "validation"
        assert not store.has("foo", ArtifactKind.VALIDATION)

        monkeypatch.undo()
        store.put("foo", ArtifactKind.VALIDATION, "y")
        assert store.get("foo", ArtifactKind.VALIDATION).content == "y"


class TestManifestWriteFailure:
    """A failed manifest write leaves no artifact without its manifest entry."""

    def test_new_artifact_absent(self, store, monkeypatch):
        store.put("foo", ArtifactKind.DEFINITION, "x")

        def boom(self, issue_id, manifest):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(ArtifactStore, "_write_manifest", boom)
        with pytest.raises(StoreIOError):
            store.put("foo", ArtifactKind.VALIDATION, "dup", decision="short_circuit", reason="dup")

        assert not store.has("foo", ArtifactKind.VALIDATION)
        assert store.get("foo", ArtifactKind.VALIDATION) is None

    def test_superseded_version_restored(self, store, monkeypatch):
        store.put("foo", ArtifactKind.DEFINITION, "v1")

        def boom(self, issue_id, manifest):
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(ArtifactStore, "_write_manifest", boom)
        with pytest.raises(StoreIOError):
            store.put("foo", ArtifactKind.DEFINITION, "v2", allow_supersede=True)
        monkeypatch.undo()

        assert store.get("foo", ArtifactKind.DEFINITION).content == "v1"
        assert store.history("foo") == []
        assert list((store.issue_dir("foo") / "history").iterdir()) == []


class TestSupersede:
    """Tests for explicit overwrite with history."""

    def test_keeps_prior_version(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "v1")
        store.put("foo", ArtifactKind.DEFINITION, "v2", allow_supersede=True)

        assert store.get("foo", ArtifactKind.DEFINITION).content == "v2"
        history = store.history("foo", ArtifactKind.DEFINITION)
        assert [h.content for h in history] == ["v1"]
        assert history[0].superseded_at is not None

    def test_logs_warning(self, store, caplog):
        store.put("foo", ArtifactKind.DEFINITION, "v1")
        with caplog.at_level(logging.WARNING):
            store.put("foo", ArtifactKind.DEFINITION, "v2", allow_supersede=True)
        assert "superseding 'definition'" in caplog.text

    def test_repeated_supersede_keeps_all(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "v1")
        store.put("foo", ArtifactKind.DEFINITION, "v2", allow_supersede=True)
        store.put("foo", ArtifactKind.DEFINITION, "v3", allow_supersede=True)

        assert [h.content for h in store.history("foo")] == ["v1", "v2"]
        assert len(list((store.issue_dir("foo") / "history").iterdir())) == 2

    def test_history_filtered_by_kind(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "v1")
        store.put("foo", ArtifactKind.VALIDATION, "ok")
        store.put("foo", ArtifactKind.VALIDATION, "ok2", allow_supersede=True)

        assert store.history("foo", ArtifactKind.DEFINITION) == []
        assert [h.kind for h in store.history("foo")] == [ArtifactKind.VALIDATION]


class TestReads:
    """Tests for get(), list(), load_issue()."""

    def test_get_absent(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        assert store.get("foo", ArtifactKind.RESOLUTION) is None

    def test_list_ordered_by_production(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        store.put("foo", ArtifactKind.VALIDATION, "y")
        store.put("foo", ArtifactKind.PROPOSAL, "z")

        assert [a.kind for a in store.list("foo")] == [
            ArtifactKind.DEFINITION, ArtifactKind.VALIDATION, ArtifactKind.PROPOSAL,
        ]

    def test_list_ties_broken_by_kind_order(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        store.put("foo", ArtifactKind.VALIDATION, "y")
        manifest_path = store.issue_dir("foo") / "manifest.json"
        manifest = json.loads(manifest_path.read_text())
        stamp = manifest["artifacts"]["definition"]["produced_at"]
        manifest["artifacts"]["validation"]["produced_at"] = stamp
        manifest_path.write_text(json.dumps(manifest))

        assert [a.kind for a in store.list("foo")] == [ArtifactKind.DEFINITION, ArtifactKind.VALIDATION]

    def test_load_issue(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        issue = store.load_issue("foo")
        assert issue.id == "foo"
        assert issue.status == "open"
        assert issue.kinds == [ArtifactKind.DEFINITION]
        assert issue.dir == store.root / "foo"

    def test_load_unknown(self, store):
        with pytest.raises(IssueNotFoundError):
            store.load_issue("nope")

    def test_corrupt_manifest(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        (store.issue_dir("foo") / "manifest.json").write_text("{not json")
        with pytest.raises(StoreIOError, match="Corrupt manifest"):
            store.list("foo")

    def test_corrupt_meta(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        (store.issue_dir("foo") / "meta.env").write_text('STATUS="$(whoami)"\n')
        with pytest.raises(StoreIOError, match="Corrupt metadata"):
            store.status("foo")


class TestHandWrittenIssues:
    """A bare problem.md is a valid open issue."""

    def test_bare_definition(self, store):
        issue_dir = store.root / "manual"
        issue_dir.mkdir(parents=True)
        (issue_dir / "problem.md").write_text("Written by hand")
        old = time.time() - 3600
        os.utime(issue_dir / "problem.md", (old, old))

        assert store.exists("manual")
        assert store.status("manual") == "open"
        a = store.get("manual", ArtifactKind.DEFINITION)
        assert a.produced_by == "external"
        assert abs(a.produced_at.timestamp() - old) < 1
        assert store.load_issue("manual").created_at == a.produced_at

    def test_stage_output_added_to_bare_issue(self, store):
        issue_dir = store.root / "manual"
        issue_dir.mkdir(parents=True)
        (issue_dir / "problem.md").write_text("Written by hand")

        store.put("manual", ArtifactKind.VALIDATION, "valid", produced_by="validation")

        assert [a.kind for a in store.list("manual")] == [ArtifactKind.DEFINITION, ArtifactKind.VALIDATION]

    def test_update_meta_on_bare_issue(self, store):
        issue_dir = store.root / "manual"
        issue_dir.mkdir(parents=True)
        (issue_dir / "problem.md").write_text("Written by hand")

        meta = store.update_meta("manual", {"STATUS": "validating"})
        assert meta["ID"] == "manual"
        assert store.status("manual") == "validating"

    def test_bare_solved_issue_is_resolved(self, store):
        issue_dir = store.root / "old"
        issue_dir.mkdir(parents=True)
        (issue_dir / "problem.md").write_text("Crash on save")
        (issue_dir / "solution.md").write_text("Fixed the save path")

        assert store.status("old") == "resolved"
        assert store.load_issue("old").status == "resolved"

    def test_update_meta_keeps_implied_status(self, store):
        issue_dir = store.root / "old"
        issue_dir.mkdir(parents=True)
        (issue_dir / "problem.md").write_text("Crash on save")
        (issue_dir / "solution.md").write_text("Fixed the save path")

        meta = store.update_meta("old", {"ARCHIVE_TOKEN": "abc"})
        assert meta["STATUS"] == "resolved"
        assert 'STATUS="resolved"' in (issue_dir / "meta.env").read_text()


class TestIssueIds:
    """Tests for issue_ids()."""

    def test_missing_root_is_empty(self, tmp_path):
        assert ArtifactStore(tmp_path / "nowhere").issue_ids() == []

    def test_sorted_and_filtered(self, store):
        for issue_id in ["zeta", "alpha", "mid"]:
            store.put(issue_id, ArtifactKind.DEFINITION, "x")
        (store.root / "_archive" / "old").mkdir(parents=True)
        (store.root / "_archive" / "old" / "problem.md").write_text("x")
        (store.root / "no_definition").mkdir()

        assert store.issue_ids() == ["alpha", "mid", "zeta"]

    def test_unreadable_root(self, store, monkeypatch):
        store.root.mkdir(parents=True)

        def boom(self):
            raise PermissionError(13, "Permission denied")

        monkeypatch.setattr(type(store.root), "iterdir", boom)
        with pytest.raises(StoreIOError):
            store.issue_ids()


class TestUpdateMeta:
    """Tests for update_meta()."""

    def test_sets_and_removes(self, store):
        store.put("foo", ArtifactKind.DEFINITION, "x")
        store.update_meta("foo", {"ARCHIVE_TOKEN": "abc"})
        assert store.read_meta("foo")["ARCHIVE_TOKEN"] == "abc"

        store.update_meta("foo", {"ARCHIVE_TOKEN": None})
        assert "ARCHIVE_TOKEN" not in store.read_meta("foo")

    def test_refuses_invalid_status(self, store):
        from issueflow.lib.validate import ValidationError

        store.put("foo", ArtifactKind.DEFINITION, "x")
        with pytest.raises(ValidationError):
            store.update_meta("foo", {"STATUS": "failed"})
        assert store.status("foo") == "open"

    def test_unknown_issue(self, store):
        with pytest.raises(IssueNotFoundError):
            store.update_meta("ghost", {"STATUS": "open"})
