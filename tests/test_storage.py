"""Tests for SQLite storage."""

import os
import sqlite3
from datetime import timedelta

import pytest

from td.errors import DatabaseError
from td.models import (
    ConflictRecord, Issue, IssueFilter, Status, SyncHistoryEntry, now_utc,
)
from td.storage import migrations
from td.storage.migrations import get_schema_version, run_migrations
from td.storage.schema import SCHEMA_VERSION
from td.storage.sqlite_store import SQLiteStore, close_store, open_store


def _make_issue(id: str, title: str = "Test", **kwargs) -> Issue:
    defaults = dict(id=id, title=title, status=Status.OPEN)
    defaults.update(kwargs)
    return Issue(**defaults)


class TestMigrations:
    def test_fresh_database_at_current_version(self, store: SQLiteStore):
        assert store.schema_version() == SCHEMA_VERSION

    def test_rerun_is_noop(self, store: SQLiteStore, tmp_path):
        conn = sqlite3.connect(str(tmp_path / "issues.db"), isolation_level=None)
        try:
            assert run_migrations(conn) == []
            assert get_schema_version(conn) == SCHEMA_VERSION
        finally:
            conn.close()

    def test_failing_python_step_rolls_back(self, store: SQLiteStore, tmp_path, monkeypatch):
        def explode(conn):
            conn.execute("CREATE TABLE half_done (id TEXT)")
            raise RuntimeError("step blew up")

        monkeypatch.setattr(migrations, "MIGRATIONS", migrations.MIGRATIONS + [
            (SCHEMA_VERSION + 1, "broken step", "python:explode")])
        monkeypatch.setitem(migrations.PYTHON_STEPS, "explode", explode)
        conn = sqlite3.connect(str(tmp_path / "issues.db"), isolation_level=None)
        try:
            with pytest.raises(RuntimeError):
                run_migrations(conn)
            assert not conn.in_transaction
            assert get_schema_version(conn) == SCHEMA_VERSION
            tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master")}
            assert "half_done" not in tables
        finally:
            conn.close()

    def test_newer_database_refused(self, tmp_path):
        path = str(tmp_path / "future.db")
        conn = sqlite3.connect(path, isolation_level=None)
        conn.execute("CREATE TABLE schema_info (key TEXT PRIMARY KEY, value TEXT)")
        conn.execute("INSERT INTO schema_info VALUES ('schema_version', ?)",
                     (str(SCHEMA_VERSION + 1),))
        conn.close()
        with pytest.raises(DatabaseError):
            SQLiteStore(path)

    def test_builtin_board_seeded(self, store: SQLiteStore):
        board = store.get_board("bd-all-issues")
        assert board is not None
        assert board.is_builtin
        assert board.name == "All Issues"


class TestIssueCRUD:
    def test_create_and_get(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-abc123", "My Issue"))
        got = store.get_issue("td-abc123")
        assert got is not None
        assert got.title == "My Issue"

    def test_get_nonexistent(self, store: SQLiteStore):
        assert store.get_issue("td-ffffff") is None

    def test_soft_deleted_hidden_from_lists(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-000001", deleted_at=now_utc()))
        store.create_issue(_make_issue("td-000002"))
        assert [i.id for i in store.list_issues(IssueFilter())] == ["td-000002"]
        assert store.get_issue("td-000001") is None
        assert store.get_issue("td-000001", include_deleted=True) is not None

    def test_resolve_id(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-abc123"))
        store.create_issue(_make_issue("td-abd456"))
        assert store.resolve_id("td-abc123") == "td-abc123"
        assert store.resolve_id("abc") == "td-abc123"
        assert store.resolve_id("td-ab") is None
        assert store.resolve_id("") is None

    def test_list_filters(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-000001", priority="P0", labels=["ui"]))
        store.create_issue(_make_issue("td-000002", status=Status.CLOSED))
        store.create_issue(_make_issue("td-000003", priority="P3"))
        assert [i.id for i in store.list_issues(IssueFilter(status=[Status.OPEN]))] == [
            "td-000001", "td-000003"]
        assert [i.id for i in store.list_issues(IssueFilter(labels=["ui"]))] == ["td-000001"]

    def test_count_by_status(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-000001"))
        store.create_issue(_make_issue("td-000002", status=Status.BLOCKED))
        counts = store.count_by_status()
        assert counts[Status.OPEN] == 1
        assert counts[Status.BLOCKED] == 1
        assert counts[Status.CLOSED] == 0


class TestHierarchy:
    def test_descendants_bounded_on_cycle(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-00000a", parent_id="td-00000b"))
        store.create_issue(_make_issue("td-00000b", parent_id="td-00000a"))
        found = store.get_descendants("td-00000a")
        assert [i.id for i in found] == ["td-00000b"]

    def test_parent_cycle_detection(self, store: SQLiteStore):
        store.create_issue(_make_issue("td-00000a"))
        store.create_issue(_make_issue("td-00000b", parent_id="td-00000a"))
        assert store.would_create_parent_cycle("td-00000a", "td-00000b")
        assert not store.would_create_parent_cycle("td-00000b", "td-00000a")


class TestTransactions:
    def test_rollback_on_error(self, store: SQLiteStore):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.create_issue(_make_issue("td-000001"))
                raise RuntimeError("boom")
        assert store.get_issue("td-000001") is None

    def test_nested_savepoint(self, store: SQLiteStore):
        with store.transaction():
            store.create_issue(_make_issue("td-000001"))
            with pytest.raises(RuntimeError):
                with store.transaction():
                    store.create_issue(_make_issue("td-000002"))
                    raise RuntimeError("inner")
        assert store.get_issue("td-000001") is not None
        assert store.get_issue("td-000002") is None


class TestPool:
    def test_open_store_reuses_connection(self, tmp_path):
        path = os.path.join(str(tmp_path), "pooled.db")
        try:
            assert open_store(path) is open_store(path)
        finally:
            close_store(path)


class TestSyncTables:
    def test_field_clocks(self, store: SQLiteStore):
        store.set_field_clock("issues", "td-000001", "title", "2026-01-01T00:00:00Z", "dev1")
        store.set_field_clock("issues", "td-000001", "title", "2026-01-02T00:00:00Z", "")
        assert store.get_field_clocks("issues", "td-000001") == {
            "title": ("2026-01-02T00:00:00Z", "")}

    def test_applied_events(self, store: SQLiteStore):
        assert not store.is_event_applied("dev1", 7)
        store.mark_event_applied("dev1", 7, 100)
        store.mark_event_applied("dev1", 7, 100)
        assert store.is_event_applied("dev1", 7)

    def test_pending_events_taken_once(self, store: SQLiteStore):
        store.add_pending_event(5, "issues", "td-000001", {"server_seq": 5})
        store.add_pending_event(3, "issues", "td-000001", {"server_seq": 3})
        assert store.count_pending_events() == 2
        taken = store.take_pending_events("issues", "td-000001")
        assert [e["server_seq"] for e in taken] == [3, 5]
        assert store.take_pending_events("issues", "td-000001") == []

    def test_sync_state(self, store: SQLiteStore):
        assert store.get_sync_state() is None
        store.set_sync_project("proj-1")
        store.update_sync_pulled(42)
        state = store.get_sync_state()
        assert state["project_id"] == "proj-1"
        assert state["last_pulled_server_seq"] == 42
        store.clear_sync_state()
        assert store.get_sync_state() is None

    def test_history_pruned_to_tail(self, store: SQLiteStore):
        store.add_sync_history([
            SyncHistoryEntry(direction="pull", action_type="create", entity_type="issues",
                             entity_id=f"td-00000{i}", server_seq=i)
            for i in range(5)
        ])
        store.prune_sync_history(2)
        assert [e.server_seq for e in store.get_sync_history_tail(10)] == [3, 4]

    def test_conflicts_pruned_by_age(self, store: SQLiteStore):
        store.add_conflict(ConflictRecord(entity_type="issues", entity_id="td-000001",
                                          field="title", local_value="a", remote_value="b",
                                          resolved_at=now_utc() - timedelta(days=40)))
        store.add_conflict(ConflictRecord(entity_type="issues", entity_id="td-000001",
                                          field="title", local_value="a", remote_value="c"))
        store.prune_conflicts(timedelta(days=30), 100)
        assert [c.remote_value for c in store.get_recent_conflicts()] == ["c"]
