"""Tests for project-level plumbing: root resolution, sessions, config, features, webhooks."""

import hashlib
import hmac
import json
import os

import httpx
import pytest

from td import config, features, session, webhook
from td.config import ProjectConfig
from td.errors import InvalidInput
from td.models import ActionLog, now_utc
from td.workdir import TD_ROOT_FILE, TODOS_DIR, db_path, read_td_root, resolve_base_dir


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "proj"
    (root / TODOS_DIR).mkdir(parents=True)
    return str(root)


# --- Root resolution ---

class TestWorkdir:
    def test_todos_dir_marks_root(self, project):
        assert resolve_base_dir(project) == project

    def test_td_root_redirect(self, tmp_path, project):
        worktree = tmp_path / "worktree"
        worktree.mkdir()
        (worktree / TD_ROOT_FILE).write_text(project + "\n")
        assert resolve_base_dir(str(worktree)) == project

    def test_relative_td_root(self, tmp_path, project):
        worktree = tmp_path / "worktree"
        worktree.mkdir()
        (worktree / TD_ROOT_FILE).write_text("../proj")
        assert read_td_root(str(worktree)) == project

    def test_unmarked_directory_is_returned(self, tmp_path):
        plain = tmp_path / "plain"
        plain.mkdir()
        assert resolve_base_dir(str(plain)) == str(plain)

    def test_db_path(self, project):
        assert db_path(project) == os.path.join(project, TODOS_DIR, "issues.db")


# --- Sessions ---

class TestSession:
    def test_explicit_session_id(self, project, monkeypatch):
        monkeypatch.setenv("TD_SESSION_ID", "ses_explicit")
        sess = session.get_or_create(project)
        assert sess.id == "ses_explicit"
        assert sess.agent_type == "explicit"

    def test_same_fingerprint_reuses_session(self, project):
        first = session.get_or_create(project)
        second = session.get_or_create(project)
        assert first.is_new
        assert not second.is_new
        assert first.id == second.id
        assert first.id.startswith("ses_")

    def test_force_new_links_previous(self, project):
        first = session.get_or_create(project)
        fresh = session.get_or_create(project, force_new=True)
        assert fresh.id != first.id
        assert fresh.previous_session_id == first.id
        assert session.get_or_create(project).id == fresh.id

    def test_set_name_persists(self, project):
        session.get_or_create(project)
        session.set_name(project, "reviewer-bot")
        assert session.get_or_create(project).name == "reviewer-bot"
        assert [s.name for s in session.list_sessions(project)] == ["reviewer-bot"]

    def test_unreadable_cache_is_ignored(self, project):
        with open(os.path.join(project, TODOS_DIR, session.SESSION_FILE), "w") as f:
            f.write("{not json")
        assert session.get_or_create(project).is_new

    def test_branch_outside_git(self, tmp_path):
        assert session.current_branch(str(tmp_path)) == session.DEFAULT_BRANCH


# --- Config ---

class TestConfig:
    def test_defaults_without_file(self, project):
        cfg = ProjectConfig.load(project)
        assert cfg.title_min_length == config.DEFAULT_TITLE_MIN_LENGTH
        assert cfg.workflow_mode == "strict"
        assert cfg.feature_flags == {}

    def test_update_round_trip(self, project):
        config.update(project, lambda c: setattr(c, "title_min_length", 3))
        assert ProjectConfig.load(project).title_min_length == 3

    def test_unknown_keys_ignored(self, project):
        with open(config.config_path(project), "w") as f:
            json.dump({"title_max_length": 80, "legacy_thing": True}, f)
        assert ProjectConfig.load(project).title_max_length == 80

    def test_invalid_json(self, project):
        with open(config.config_path(project), "w") as f:
            f.write("{")
        with pytest.raises(InvalidInput):
            ProjectConfig.load(project)

    def test_focus(self, project):
        config.set_focus(project, "td-abc123")
        assert config.get_focus(project) == "td-abc123"
        assert not config.clear_focus_if(project, "td-other1")
        assert config.clear_focus_if(project, "td-abc123")
        assert config.get_focus(project) == ""

    def test_workflow_mode_validated(self, project):
        config.set_workflow_mode(project, "liberal")
        assert ProjectConfig.load(project).workflow_mode == "liberal"
        with pytest.raises(InvalidInput):
            config.set_workflow_mode(project, "chaotic")

    def test_secret_masked(self, project):
        config.set_webhook(project, "https://hooks.example.com/td", "s3cret")
        d = ProjectConfig.load(project).to_dict()
        assert d["webhook_url"] == "https://hooks.example.com/td"
        assert d["webhook_secret"] == "********"


# --- Feature flags ---

class TestFeatures:
    def test_default(self, project):
        assert features.resolve(project, "sync_cli") == (False, features.SOURCE_DEFAULT)

    def test_config_flag(self, project):
        config.set_feature_flag(project, "sync_cli", True)
        features.reset()
        assert features.resolve(project, "SYNC_CLI") == (True, features.SOURCE_CONFIG)

    def test_env_beats_config(self, project, monkeypatch):
        config.set_feature_flag(project, "sync_notes", True)
        monkeypatch.setenv("TD_FEATURE_SYNC_NOTES", "0")
        assert features.resolve(project, "sync_notes") == (False, features.SOURCE_ENV)

    def test_enable_list(self, project, monkeypatch):
        monkeypatch.setenv("TD_ENABLE_FEATURES", "sync_autosync, sync_cli")
        assert features.is_enabled(project, "sync_cli")
        assert features.is_enabled(project, "sync_autosync")

    def test_disable_experimental_wins(self, project, monkeypatch):
        monkeypatch.setenv("TD_FEATURE_SYNC_CLI", "1")
        monkeypatch.setenv("TD_DISABLE_EXPERIMENTAL", "true")
        assert not features.is_enabled(project, "sync_cli")

    def test_results_are_cached_until_reset(self, project):
        assert not features.is_enabled(project, "sync_cli")
        config.set_feature_flag(project, "sync_cli", True)
        assert not features.is_enabled(project, "sync_cli")
        features.reset()
        assert features.is_enabled(project, "sync_cli")

    def test_env_key(self):
        assert features.env_key("sync-notes") == "TD_FEATURE_SYNC_NOTES"
        assert features.is_known(" Sync_Notes ")
        assert not features.is_known("time_travel")


# --- Webhooks ---

def _action(entity_id="td-abc123"):
    return ActionLog(id=7, session_id="ses_alice", action_type="create", entity_type="issue",
                     entity_id=entity_id, previous_data="", new_data='{"title": "x"}',
                     timestamp=now_utc())


class TestWebhook:
    def test_signature(self):
        body = b'{"a": 1}'
        expected = hmac.new(b"key", b"1700000000." + body, hashlib.sha256).hexdigest()
        assert webhook.sign("key", "1700000000", body) == "sha256=" + expected

    def test_payload(self, project):
        payload = webhook.build_payload(project, [_action()])
        assert payload["project_dir"] == project
        assert payload["actions"][0]["id"] == "7"
        assert payload["actions"][0]["entity_id"] == "td-abc123"

    def test_dispatch_signs_request(self):
        seen = {}

        def handler(request):
            seen["signature"] = request.headers.get("X-TD-Signature")
            seen["timestamp"] = request.headers.get("X-TD-Timestamp")
            seen["body"] = request.content
            return httpx.Response(204)

        webhook.dispatch("https://hooks.example.com/td", "key", {"actions": []},
                         transport=httpx.MockTransport(handler))
        assert seen["signature"] == webhook.sign("key", seen["timestamp"], seen["body"])

    def test_dispatch_without_secret_is_unsigned(self):
        seen = {}

        def handler(request):
            seen["headers"] = request.headers
            return httpx.Response(200)

        webhook.dispatch("https://hooks.example.com/td", "", {"actions": []},
                         transport=httpx.MockTransport(handler))
        assert "X-TD-Signature" not in seen["headers"]

    def test_deliver_needs_url(self, project):
        assert not webhook.deliver(project, [_action()])

    def test_deliver_env_url(self, project, monkeypatch):
        monkeypatch.setenv("TD_WEBHOOK_URL", "https://hooks.example.com/td")
        calls = []

        def handler(request):
            calls.append(json.loads(request.content))
            return httpx.Response(200)

        assert webhook.deliver(project, [_action()], transport=httpx.MockTransport(handler))
        assert calls[0]["actions"][0]["action_type"] == "create"

    def test_deliver_failure_is_logged(self, project, caplog):
        config.set_webhook(project, "https://hooks.example.com/td")
        transport = httpx.MockTransport(lambda r: httpx.Response(500))
        assert not webhook.deliver(project, [_action()], transport=transport)
        assert "webhook delivery" in caplog.text
