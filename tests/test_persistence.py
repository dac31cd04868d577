"""Tests for SQLite result persistence."""

from __future__ import annotations

import sqlite3

import pytest

from storyboard_mcp.models.generation import GenerationResult, ModelKind, ResultMetadata
from storyboard_mcp.persistence import ResultStore


@pytest.fixture()
def db_path(tmp_path):
    return str(tmp_path / "nested" / "results.db")


@pytest.fixture()
def store(db_path):
    s = ResultStore(db_path)
    yield s
    s.close()


def _result(shot_id: str, artifact: str = "img") -> GenerationResult:
    return GenerationResult(
        shot_id=shot_id,
        artifact=artifact,
        prompt=f"prompt for {shot_id}",
        metadata=ResultMetadata(model="m", kind=ModelKind.IMAGEN, size="1024x576", generation_time_ms=12),
    )


class TestResultStore:
    def test_roundtrip_save_load(self, store):
        """GIVEN saved results WHEN loaded THEN fields and metadata match."""
        assert store.save("p1", [_result("s2"), _result("s1")]) == 2

        loaded = store.load("p1")
        assert [r.shot_id for r in loaded] == ["s1", "s2"]
        assert loaded[0].prompt == "prompt for s1"
        assert loaded[0].metadata.kind == ModelKind.IMAGEN
        assert loaded[0].metadata.size == "1024x576"
        assert loaded[0].metadata.generation_time_ms == 12

    def test_load_missing_project_is_empty(self, store):
        assert store.load("nothing") == []

    def test_without_overwrite_keeps_existing_rows(self, store):
        """GIVEN a stored shot WHEN saved again without overwrite THEN only new ids are added."""
        store.save("p1", [_result("s1", "old")])

        written = store.save("p1", [_result("s1", "new"), _result("s2")])

        assert written == 1
        by_id = {r.shot_id: r for r in store.load("p1")}
        assert by_id["s1"].artifact == "old"
        assert "s2" in by_id

    def test_overwrite_replaces_project(self, store):
        """GIVEN stored shots WHEN saved with overwrite THEN the project holds only the new set."""
        store.save("p1", [_result("s1", "old"), _result("s2")])

        written = store.save("p1", [_result("s1", "new")], overwrite=True)

        assert written == 1
        loaded = store.load("p1")
        assert [(r.shot_id, r.artifact) for r in loaded] == [("s1", "new")]

    def test_overwrite_leaves_other_projects(self, store):
        store.save("p1", [_result("s1")])
        store.save("p2", [_result("s1")])
        store.save("p1", [_result("s9")], overwrite=True)
        assert len(store.load("p2")) == 1

    def test_extra_metadata_stored(self, store):
        store.save("p1", [_result("s1")], metadata={"scene": "opening"})
        assert store.load_extra("p1", "s1") == {"scene": "opening"}
        assert store.load_extra("p1", "missing") is None

    def test_delete(self, store):
        store.save("p1", [_result("s1"), _result("s2")])
        assert store.delete("p1") == 2
        assert store.load("p1") == []

    def test_wal_mode_enabled(self, store, db_path):
        """GIVEN a file-backed store THEN journal_mode is WAL."""
        conn = sqlite3.connect(db_path)
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode == "wal"

    def test_persists_across_instances(self, db_path):
        first = ResultStore(db_path)
        first.save("p1", [_result("s1")])
        first.close()

        second = ResultStore(db_path)
        assert [r.shot_id for r in second.load("p1")] == ["s1"]
        second.close()

    def test_empty_path_is_in_memory(self):
        store = ResultStore()
        store.save("p1", [_result("s1")])
        assert len(store.load("p1")) == 1
        store.close()
