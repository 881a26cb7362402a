"""Tests for sync: taxonomy, merge, push/pull/bootstrap and autosync."""

import json
import os
from datetime import timedelta

import httpx
import pytest

from td import ids, syncconfig
from td.errors import InvalidInput, SyncAPIError, Unauthorized
from td.gitstate import GitState
from td.models import ActionType
from td.mutations import Mutator
from td.operations import IssueOperations
from td.storage.sqlite_store import SQLiteStore, close_store, open_store
from td.sync import backfill, taxonomy
from td.sync.autosync import AutoSync
from td.sync.client import SyncClient
from td.sync.engine import BACKUP_SUFFIX, SyncEngine, connect, notes_filter
from td.sync.events import SyncEvent, count_pending, pending_events, settle_local_only
from td.sync.merge import Merger, remote_wins
from td.undo import undo

DEVICE = "dev_local"


def _ts(seconds):
    return f"2026-01-01T00:00:{seconds:02d}Z"


def _issue_row(issue_id, title, labels=(), seconds=10):
    return {
        "id": issue_id, "title": title, "status": "open", "type": "task",
        "priority": "P2", "labels": list(labels),
        "created_at": _ts(seconds), "updated_at": _ts(seconds),
    }


def _event(seq, action, entity_id, new=None, previous=None, device="dev_x",
           entity_type="issues", seconds=10, action_id=None):
    return SyncEvent(
        client_action_id=action_id if action_id is not None else seq,
        action_type=action,
        entity_type=entity_type,
        entity_id=entity_id,
        payload={"new_data": new or {}, "previous_data": previous or {}},
        client_timestamp=_ts(seconds),
        device_id=device,
        server_seq=seq,
    )


class FakeServer:
    """In-memory stand-in for the sync server behind an httpx.MockTransport."""

    def __init__(self):
        self.pushed = []
        self.pull_events = []
        self.pull_cursors = []
        self.last_server_seq = 0
        self.snapshot = None
        self.snapshot_seq = 0
        self.duplicates = set()

    def handler(self, request):
        path = request.url.path
        if path == "/healthz":
            return httpx.Response(200, json={"status": "ok"})
        if path.endswith("/sync/push"):
            body = json.loads(request.content)
            acks, rejected = [], []
            for event in body["events"]:
                self.last_server_seq += 1
                self.pushed.append(event)
                if event["client_action_id"] in self.duplicates:
                    rejected.append({"client_action_id": event["client_action_id"],
                                     "reason": "duplicate", "server_seq": self.last_server_seq})
                else:
                    acks.append({"client_action_id": event["client_action_id"],
                                 "server_seq": self.last_server_seq})
            return httpx.Response(200, json={"accepted": len(acks), "acks": acks,
                                             "rejected": rejected})
        if path.endswith("/sync/pull"):
            after = int(request.url.params["after_server_seq"])
            self.pull_cursors.append(after)
            events = [e for e in self.pull_events if e["server_seq"] > after]
            last = max([e["server_seq"] for e in events], default=after)
            return httpx.Response(200, json={"events": events, "last_server_seq": last,
                                             "has_more": False})
        if path.endswith("/sync/status"):
            return httpx.Response(200, json={"last_server_seq": self.last_server_seq})
        if path.endswith("/sync/snapshot"):
            if self.snapshot is None:
                return httpx.Response(404, json={"error": {"code": "not_found",
                                                           "message": "no snapshot"}})
            return httpx.Response(200, content=self.snapshot,
                                  headers={"X-Snapshot-Seq": str(self.snapshot_seq)})
        return httpx.Response(404)


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def client(server):
    c = SyncClient("http://sync.test", "key-123", DEVICE,
                   transport=httpx.MockTransport(server.handler))
    yield c
    c.close()


def _engine(store, client, threshold=100):
    store.set_sync_project("proj_1")
    return SyncEngine(store, client, DEVICE, "ses_alice", "proj_1",
                      snapshot_threshold=threshold)


# --- Taxonomy ---

class TestTaxonomy:
    def test_aliases(self):
        assert taxonomy.normalize_entity_type("issue") == "issues"
        assert taxonomy.normalize_entity_type("Dependency") == "issue_dependencies"
        assert taxonomy.normalize_entity_type("board_position") == "board_issue_positions"
        assert taxonomy.normalize_entity_type("widgets") is None

    def test_wire_action(self):
        assert taxonomy.wire_action(None, {"id": "x"}) == taxonomy.CREATE
        assert taxonomy.wire_action({"id": "x"}, None) == taxonomy.DELETE
        assert taxonomy.wire_action({"id": "x"}, {"id": "x", "title": "t"}) == taxonomy.UPDATE
        soft = taxonomy.wire_action({"id": "x"}, {"id": "x", "deleted_at": _ts(1)})
        assert soft == taxonomy.SOFT_DELETE

    def test_notes_filter(self):
        assert notes_filter(True) is None
        allow = notes_filter(False)
        assert not allow("notes")
        assert allow("issues")


# --- Merge ---

class TestRemoteWins:
    def test_newer_remote_wins(self):
        assert remote_wins((_ts(10), "dev_x"), {}, _ts(20), "dev_y", DEVICE)

    def test_older_remote_loses(self):
        assert not remote_wins((_ts(20), "dev_y"), {}, _ts(10), "dev_x", DEVICE)

    def test_tie_broken_by_device(self):
        assert remote_wins((_ts(10), "dev_a"), {}, _ts(10), "dev_b", DEVICE)
        assert not remote_wins((_ts(10), "dev_b"), {}, _ts(10), "dev_a", DEVICE)

    def test_falls_back_to_row_timestamp(self):
        assert remote_wins(None, {"updated_at": _ts(10)}, _ts(11), "dev_x", DEVICE)
        assert not remote_wins(None, {"updated_at": _ts(10)}, _ts(9), "dev_x", DEVICE)


class TestMerger:
    def test_per_field_last_writer_wins(self, store):
        merger = Merger(store, DEVICE)
        result = merger.apply_all([
            _event(1, taxonomy.CREATE, "td-aaa111",
                   new=_issue_row("td-aaa111", "A", labels=["x"]), seconds=10),
            _event(2, taxonomy.UPDATE, "td-aaa111", new={"title": "B"},
                   previous={"title": "A"}, device="dev_y", seconds=20),
        ])
        assert result.applied == 2
        issue = store.get_issue("td-aaa111")
        assert issue.title == "B"
        assert issue.labels == ["x"]

    def test_stale_update_is_recorded_as_conflict(self, store):
        merger = Merger(store, DEVICE)
        merger.apply_all([
            _event(1, taxonomy.CREATE, "td-aaa111", new=_issue_row("td-aaa111", "A")),
            _event(2, taxonomy.UPDATE, "td-aaa111", new={"title": "B"},
                   previous={"title": "A"}, device="dev_y", seconds=20),
        ])
        result = merger.apply_all([
            _event(3, taxonomy.UPDATE, "td-aaa111", new={"title": "A2"},
                   previous={"title": "A"}, seconds=15),
        ])
        assert store.get_issue("td-aaa111").title == "B"
        assert len(result.conflicts) == 1
        assert result.conflicts[0].field == "title"
        assert result.conflicts[0].remote_value == "A2"

    def test_local_write_beats_older_remote(self, ops, store):
        issue = ops.create("Local title")
        result = Merger(store, DEVICE).apply_all([
            _event(1, taxonomy.UPDATE, issue.id, new={"title": "Remote title"},
                   previous={"title": "Local title"}, seconds=1),
        ])
        assert store.get_issue(issue.id).title == "Local title"
        assert result.conflicts

    def test_replayed_event_is_skipped(self, store):
        merger = Merger(store, DEVICE)
        event = _event(1, taxonomy.CREATE, "td-aaa111", new=_issue_row("td-aaa111", "A"))
        assert merger.apply_all([event]).applied == 1
        again = merger.apply_all([event])
        assert again.applied == 0
        assert again.skipped == 1

    def test_update_before_create_is_buffered(self, store):
        merger = Merger(store, DEVICE)
        first = merger.apply_all([
            _event(1, taxonomy.UPDATE, "td-bbb222", new={"title": "Edited"},
                   previous={"title": "Original"}, seconds=30, action_id=7),
        ])
        assert first.buffered == 1
        assert store.count_pending_events() == 1

        merger.apply_all([
            _event(2, taxonomy.CREATE, "td-bbb222",
                   new=_issue_row("td-bbb222", "Original"), seconds=10, action_id=3),
        ])
        assert store.get_issue("td-bbb222").title == "Edited"
        assert store.count_pending_events() == 0

    def test_cyclic_dependency_is_skipped(self, ops, store):
        a = ops.create("Issue A")
        b = ops.create("Issue B")
        ops.add_dependency(a.id, b.id)
        dep_id = ids.dependency_id(b.id, a.id)
        result = Merger(store, DEVICE).apply_all([
            _event(1, taxonomy.CREATE, dep_id, entity_type="issue_dependencies",
                   new={"issue_id": b.id, "depends_on_id": a.id,
                        "relation_type": "depends_on"}),
        ])
        assert store.get_dependency_ids(b.id) == []
        assert result.skipped == 1
        assert result.conflicts[0].entity_type == "issue_dependencies"

    def test_soft_delete_and_restore(self, store):
        merger = Merger(store, DEVICE)
        merger.apply_all([_event(1, taxonomy.CREATE, "td-ccc333",
                                 new=_issue_row("td-ccc333", "Doomed"))])
        merger.apply_all([_event(2, taxonomy.SOFT_DELETE, "td-ccc333",
                                 new={"deleted_at": _ts(20)}, seconds=20)])
        assert store.get_issue("td-ccc333") is None
        assert store.get_issue("td-ccc333", include_deleted=True) is not None
        merger.apply_all([_event(3, taxonomy.RESTORE, "td-ccc333", seconds=30)])
        assert store.get_issue("td-ccc333") is not None

    def test_soft_delete_takes_remote_updated_at(self, store):
        merger = Merger(store, DEVICE)
        merger.apply_all([_event(1, taxonomy.CREATE, "td-ccc333",
                                 new=_issue_row("td-ccc333", "Doomed"))])
        merger.apply_all([_event(2, taxonomy.SOFT_DELETE, "td-ccc333",
                                 new={"deleted_at": _ts(20), "updated_at": _ts(20)},
                                 seconds=20)])
        row = store.get_row("issues", "td-ccc333")
        assert row["deleted_at"] == row["updated_at"]

    def test_unknown_entity_type_fails_event(self, store):
        result = Merger(store, DEVICE).apply_all([
            _event(4, taxonomy.CREATE, "x1", new={"id": "x1"}, entity_type="widgets"),
        ])
        assert result.failed == [(4, "unknown entity type: widgets")]

    def test_notes_are_filtered(self, store):
        result = Merger(store, DEVICE, allow=notes_filter(False)).apply_all([
            _event(1, taxonomy.CREATE, "nt-1", new={"title": "Hidden"}, entity_type="notes"),
        ])
        assert result.skipped == 1
        assert store.get_note("nt-1") is None


# --- Events and backfill ---

class TestPendingEvents:
    def test_unsynced_actions_become_events(self, ops, store):
        issue = ops.create("Pending push")
        events = pending_events(store, DEVICE)
        assert [e.entity_id for e in events] == [issue.id]
        assert events[0].entity_type == "issues"
        assert events[0].action_type == taxonomy.CREATE
        assert events[0].new_data["title"] == "Pending push"

    def test_undone_actions_are_skipped(self, ops, store, mutator):
        ops.create("Created then undone")
        undo(store, mutator)
        creates = [e for e in pending_events(store, DEVICE)
                   if e.action_type == taxonomy.CREATE]
        assert creates == []

    def test_local_only_rows_are_settled(self, ops, store, mutator):
        issue = ops.create("Started with a git snapshot")
        ops.start(issue.id, git_state=GitState("abc123", "main", 0))
        ops.create("Created then undone")
        undo(store, mutator)
        before = store.count_unsynced_actions()
        pending = count_pending(store)
        assert pending < before
        assert settle_local_only(store) == before - pending
        assert store.count_unsynced_actions() == pending
        assert settle_local_only(store) == 0


class TestBackfill:
    def test_rows_without_actions_get_creates(self, store):
        store.put_row("issues", {"id": "td-legacy", "title": "Predates the log",
                                 "created_at": _ts(5), "updated_at": _ts(5)})
        assert backfill.backfill(store, "ses_alice") == 1
        assert store.has_logged_action("issue", "td-legacy", (ActionType.CREATE,))
        assert backfill.backfill(store, "ses_alice") == 0

    def test_logged_rows_are_left_alone(self, ops, store):
        ops.create("Already logged")
        assert backfill.backfill(store, "ses_alice") == 0


# --- Engine ---

class TestPush:
    def test_push_marks_actions_synced(self, ops, store, client, server):
        ops.create("First push")
        ops.create("Second push")
        result = _engine(store, client).push()
        assert result.pushed == 2
        assert result.acked == 2
        assert store.count_unsynced_actions() == 0
        assert [h.direction for h in store.get_sync_history_tail()] == ["push", "push"]
        assert all(e["entity_type"] == "issues" for e in server.pushed)

    def test_duplicate_rejection_counts_as_ack(self, ops, store, client, server):
        ops.create("Already on server")
        server.duplicates = {store.get_unsynced_actions()[0].id}
        result = _engine(store, client).push()
        assert result.acked == 1
        assert result.rejected == []
        assert store.count_unsynced_actions() == 0

    def test_nothing_to_push(self, store, client, server):
        result = _engine(store, client).push()
        assert result.pushed == 0
        assert server.pushed == []


class TestPull:
    def test_pull_applies_and_advances_cursor(self, store, client, server):
        server.pull_events = [
            _event(5, taxonomy.CREATE, "td-ddd444",
                   new=_issue_row("td-ddd444", "From elsewhere")).to_wire()
            | {"server_seq": 5, "device_id": "dev_x"},
        ]
        engine = _engine(store, client)
        result = engine.pull()
        assert result.applied == 1
        assert result.last_server_seq == 5
        assert store.get_issue("td-ddd444").title == "From elsewhere"
        assert store.get_sync_state()["last_pulled_server_seq"] == 5

        again = engine.pull()
        assert again.received == 0
        assert server.pull_cursors == [0, 5]


class TestBootstrap:
    @pytest.fixture
    def snapshot_bytes(self, tmp_path):
        path = os.path.join(str(tmp_path), "snap", "issues.db")
        os.makedirs(os.path.dirname(path))
        remote = SQLiteStore(path)
        remote.put_row("issues", {"id": "td-snap01", "title": "From snapshot",
                                  "created_at": _ts(1), "updated_at": _ts(1)})
        remote.close()
        with open(path, "rb") as f:
            return f.read()

    @pytest.fixture
    def local_path(self, tmp_path):
        path = os.path.join(str(tmp_path), "local", ".todos", "issues.db")
        yield path
        close_store(path)

    def test_far_behind_replaces_database(self, local_path, snapshot_bytes, client, server):
        store = open_store(local_path)
        server.last_server_seq = 5000
        server.snapshot = snapshot_bytes
        server.snapshot_seq = 5000
        engine = _engine(store, client)

        result = engine.bootstrap()
        assert result.bootstrapped
        assert result.server_seq == 5000
        assert engine.store is not store
        assert engine.store.get_issue("td-snap01").title == "From snapshot"
        assert os.path.exists(local_path + BACKUP_SUFFIX)

        engine.pull()
        assert server.pull_cursors == [5000]

    def test_within_threshold(self, store, client, server):
        server.last_server_seq = 50
        result = _engine(store, client).bootstrap()
        assert not result.bootstrapped
        assert result.reason == "within threshold"

    def test_pending_local_changes_block_bootstrap(self, ops, store, client, server):
        ops.create("Unpushed work")
        server.last_server_seq = 5000
        result = _engine(store, client).bootstrap()
        assert result.reason == "local changes pending"

    def _serve_snapshot(self, server, snapshot_bytes):
        server.last_server_seq = 5000
        server.snapshot = snapshot_bytes
        server.snapshot_seq = 5000

    def test_bootstrap_after_git_snapshot(self, local_path, snapshot_bytes, client, server):
        store = open_store(local_path)
        ops = IssueOperations(store, Mutator(store, "ses_alice"))
        issue = ops.create("Started on a branch")
        ops.start(issue.id, git_state=GitState("abc123", "main", 0))
        engine = _engine(store, client)
        engine.push()
        assert store.count_unsynced_actions() == 0
        assert all(e["entity_type"] != "git_snapshot" for e in server.pushed)

        self._serve_snapshot(server, snapshot_bytes)
        result = engine.bootstrap()
        assert result.bootstrapped
        assert engine.store.get_issue("td-snap01") is not None

    def test_bootstrap_after_undo(self, local_path, snapshot_bytes, client, server):
        store = open_store(local_path)
        mutator = Mutator(store, "ses_alice")
        IssueOperations(store, mutator).create("Created by mistake")
        undo(store, mutator)
        engine = _engine(store, client)
        assert engine.push().pushed == 1
        assert store.count_unsynced_actions() == 0

        self._serve_snapshot(server, snapshot_bytes)
        result = engine.bootstrap()
        assert result.bootstrapped

    def test_not_a_sqlite_file(self, store, client, server):
        server.last_server_seq = 5000
        server.snapshot = b"definitely not sqlite"
        server.snapshot_seq = 5000
        with pytest.raises(SyncAPIError):
            _engine(store, client).bootstrap()

    def test_sync_round_survives_missing_snapshot(self, store, client, server):
        server.last_server_seq = 5000
        out = _engine(store, client).sync()
        assert out["bootstrap"]["reason"] == "no snapshot available"
        assert "push" in out and "pull" in out


class RelayServer:
    """Shared event log that relays every device's pushes to the others."""

    def __init__(self):
        self.events = []

    def handler(self, request):
        path = request.url.path
        if path.endswith("/sync/push"):
            body = json.loads(request.content)
            acks = []
            for event in body["events"]:
                seq = len(self.events) + 1
                self.events.append(event | {"server_seq": seq,
                                            "device_id": body["device_id"],
                                            "session_id": body["session_id"]})
                acks.append({"client_action_id": event["client_action_id"],
                             "server_seq": seq})
            return httpx.Response(200, json={"accepted": len(acks), "acks": acks,
                                             "rejected": []})
        if path.endswith("/sync/pull"):
            after = int(request.url.params["after_server_seq"])
            exclude = request.url.params.get("exclude_client", "")
            events = [e for e in self.events
                      if e["server_seq"] > after and e["device_id"] != exclude]
            return httpx.Response(200, json={"events": events,
                                             "last_server_seq": len(self.events),
                                             "has_more": False})
        if path.endswith("/sync/status"):
            return httpx.Response(200, json={"last_server_seq": len(self.events)})
        return httpx.Response(404)


class TestTwoDevices:
    @pytest.fixture
    def devices(self, tmp_path):
        relay = RelayServer()
        made = []
        for device, session in (("dev_a", "ses_alice"), ("dev_b", "ses_bob")):
            store = SQLiteStore(os.path.join(str(tmp_path), f"{device}.db"))
            client = SyncClient("http://sync.test", "key-123", device,
                                transport=httpx.MockTransport(relay.handler))
            store.set_sync_project("proj_1")
            engine = SyncEngine(store, client, device, session, "proj_1")
            made.append((IssueOperations(store, Mutator(store, session)), engine))
        yield made
        for _, engine in made:
            engine.client.close()
            engine.store.close()

    def _round(self, *engines):
        for engine in engines:
            engine.push()
        for engine in engines:
            engine.pull()

    def test_concurrent_edits_then_delete_converge(self, devices):
        (ops_a, a), (ops_b, b) = devices
        issue = ops_a.create("Shared across two laptops")
        self._round(a, b)
        assert b.store.get_issue(issue.id).title == "Shared across two laptops"

        ops_a.update(issue.id, {"title": "Renamed on the first laptop"})
        ops_b.update(issue.id, {"priority": "P0"})
        self._round(a, b)
        self._round(a, b)

        on_a = a.store.get_issue(issue.id)
        on_b = b.store.get_issue(issue.id)
        assert on_a.title == "Renamed on the first laptop"
        assert on_a.priority == "P0"
        assert on_a == on_b

        ops_b.delete(issue.id)
        self._round(b, a)
        assert a.store.get_issue(issue.id) is None
        assert (a.store.get_issue(issue.id, include_deleted=True)
                == b.store.get_issue(issue.id, include_deleted=True))
        assert a.store.count_unsynced_actions() == 0
        assert b.store.count_unsynced_actions() == 0


class TestClient:
    def test_error_mapping(self):
        def handler(request):
            return httpx.Response(401, json={"error": {"code": "unauthorized",
                                                       "message": "bad key"}})
        c = SyncClient("http://sync.test", "nope", DEVICE,
                       transport=httpx.MockTransport(handler))
        with pytest.raises(Unauthorized) as exc:
            c.status("proj_1")
        assert "bad key" in str(exc.value)

    def test_server_error(self):
        c = SyncClient("http://sync.test", "k", DEVICE,
                       transport=httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
        with pytest.raises(SyncAPIError):
            c.list_projects()

    def test_sends_bearer_token(self):
        seen = {}

        def handler(request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"last_server_seq": 3})
        c = SyncClient("http://sync.test/", "key-123", DEVICE,
                       transport=httpx.MockTransport(handler))
        assert c.status("proj_1") == {"last_server_seq": 3}
        assert seen["auth"] == "Bearer key-123"


class TestConnect:
    def test_requires_login(self, store, tmp_path):
        with pytest.raises(Unauthorized):
            connect(store, str(tmp_path), "ses_alice")

    def test_requires_linked_project(self, store, tmp_path):
        syncconfig.save_credentials(syncconfig.Credentials(api_key="key-123"))
        with pytest.raises(InvalidInput):
            connect(store, str(tmp_path), "ses_alice")

    def test_builds_engine(self, store, tmp_path, server):
        syncconfig.save_credentials(syncconfig.Credentials(api_key="key-123",
                                                           server_url="http://sync.test"))
        store.set_sync_project("proj_1")
        engine = connect(store, str(tmp_path), "ses_alice",
                         transport=httpx.MockTransport(server.handler))
        try:
            assert engine.project_id == "proj_1"
            assert engine.allow is not None
            assert engine.pull().received == 0
        finally:
            engine.client.close()


# --- Autosync ---

class FakeEngine:
    def __init__(self):
        self.pushes = 0
        self.pulls = 0

    def push(self):
        self.pushes += 1

    def pull(self):
        self.pulls += 1


class TestAutoSync:
    def test_flush_runs_pending_push(self):
        engine = FakeEngine()
        auto = AutoSync(lambda: engine, debounce=timedelta(seconds=60))
        auto.notify(["action"])
        auto.notify(["action"])
        assert auto.pending
        auto.flush()
        auto.stop()
        assert engine.pushes == 1
        assert not auto.pending

    def test_empty_notification_is_ignored(self):
        engine = FakeEngine()
        auto = AutoSync(lambda: engine, debounce=timedelta(seconds=60))
        auto.notify([])
        auto.flush()
        assert engine.pushes == 0

    def test_pull_on_start(self):
        engine = FakeEngine()
        auto = AutoSync(lambda: engine, debounce=timedelta(seconds=1))
        auto.start(on_start=True)
        auto.stop()
        assert engine.pulls == 1

    def test_failures_are_logged_not_raised(self, caplog):
        def factory():
            raise Unauthorized("not logged in")
        auto = AutoSync(factory, debounce=timedelta(seconds=60))
        auto.notify(["action"])
        auto.flush()
        assert "autosync push failed" in caplog.text

    def test_unexpected_errors_are_logged(self, caplog):
        def factory():
            raise RuntimeError("disk on fire")
        auto = AutoSync(factory, debounce=timedelta(seconds=60))
        auto.notify(["action"])
        auto.flush()
        assert "autosync push failed unexpectedly" in caplog.text
        assert "disk on fire" in caplog.text
