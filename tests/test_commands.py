"""Tests for CLI commands using Click's test runner."""

import json
import os

import pytest
from click.testing import CliRunner

from td.cli import cli
from td.storage.sqlite_store import close_store
from td.workdir import db_path


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(tmp_path):
    """Create a temporary directory with td initialized."""
    root = str(tmp_path / "proj")
    os.makedirs(root)
    result = CliRunner().invoke(cli, ["init"],
                                env={"TD_WORK_DIR": root, "TD_SESSION_ID": "ses_alice"})
    assert result.exit_code == 0, result.output
    yield root
    close_store(db_path(root))


@pytest.fixture
def td(runner, project):
    """Invoke td inside the project as a given session."""
    def invoke(*args, session="ses_alice", input=None):
        return runner.invoke(cli, list(args), input=input,
                             env={"TD_WORK_DIR": project, "TD_SESSION_ID": session})
    return invoke


def _create(td, title, *extra):
    result = td("create", title, *extra)
    assert result.exit_code == 0, result.output
    return result.output.split()[1]


class TestInit:
    def test_init(self, runner: CliRunner):
        with runner.isolated_filesystem():
            result = runner.invoke(cli, ["init"])
            assert result.exit_code == 0, result.output
            assert "INITIALIZED" in result.output
            assert os.path.exists(".todos/issues.db")
            assert os.path.exists(".todos/config.json")
            assert os.path.exists(".todos/.gitignore")
            close_store(db_path(os.getcwd()))

    def test_init_twice(self, td):
        result = td("init")
        assert result.exit_code == 0
        assert "already initialized" in result.output

    def test_outside_project(self, runner: CliRunner, tmp_path):
        result = runner.invoke(cli, ["list"], env={"TD_WORK_DIR": str(tmp_path)})
        assert result.exit_code == 1
        assert "td init" in result.output


class TestCreate:
    def test_create_basic(self, td):
        result = td("create", "Add the login form", "--type", "feature", "-p", "P1")
        assert result.exit_code == 0, result.output
        assert result.output.startswith("CREATED td-")

    def test_create_with_title_option(self, td):
        issue_id = _create(td, "", "-t", "Title given as an option")
        shown = td("--json", "show", issue_id)
        assert json.loads(shown.output)["title"] == "Title given as an option"

    def test_title_too_short(self, td):
        result = td("create", "Fix it")
        assert result.exit_code == 1
        assert "ERROR: title too short" in result.output

    def test_configured_title_length(self, td):
        assert td("config", "set", "title_min_length", "3").exit_code == 0
        assert td("create", "Fix it").exit_code == 0

    def test_create_json(self, td):
        result = td("--json", "create", "Structured output please", "-l", "ui,api")
        data = json.loads(result.output)
        assert data["id"].startswith("td-")
        assert data["status"] == "open"
        assert data["labels"] == ["ui", "api"]

    def test_create_with_dependency(self, td):
        blocker = _create(td, "Schema migration first")
        blocked = _create(td, "Endpoint using the schema", "--depends-on", blocker)
        result = td("dep", "list", blocked)
        assert blocker in result.output


class TestList:
    def test_list_and_show(self, td):
        issue_id = _create(td, "Listed and shown issue")
        listed = td("list")
        assert issue_id in listed.output
        shown = td("show", issue_id)
        assert f"{issue_id}: Listed and shown issue" in shown.output
        assert "Status:   open" in shown.output

    def test_partial_id(self, td):
        issue_id = _create(td, "Resolved by a short prefix")
        result = td("show", issue_id[:6])
        assert issue_id in result.output

    def test_unknown_issue(self, td):
        result = td("show", "td-ffffff")
        assert result.exit_code == 1
        assert "ERROR: issue not found" in result.output


# --- Review workflow ---

class TestReviewWorkflow:
    def test_handoff_review_and_approval(self, td):
        issue_id = _create(td, "Add login form to the app")

        result = td("start", issue_id)
        assert result.exit_code == 0, result.output
        assert f"STARTED {issue_id} (session: ses_alice)" in result.output

        handoff = "done:\n  - form markup\nremaining: []\ndecision: use htmx\n"
        result = td("handoff", issue_id, input=handoff)
        assert result.exit_code == 0, result.output

        result = td("review", issue_id)
        assert result.exit_code == 0, result.output
        assert f"REVIEW REQUESTED {issue_id}" in result.output

        result = td("approve", issue_id)
        assert result.exit_code == 3
        assert "ERROR:" in result.output

        result = td("approve", issue_id, session="ses_bob")
        assert result.exit_code == 0, result.output
        assert f"APPROVED {issue_id} (reviewer: ses_bob)" in result.output

        data = json.loads(td("--json", "show", issue_id).output)
        assert data["status"] == "closed"
        assert data["implementer_session"] == "ses_alice"
        assert data["reviewer_session"] == "ses_bob"

    def test_review_requires_handoff(self, td):
        issue_id = _create(td, "Review without any handoff")
        td("start", issue_id)
        result = td("review", issue_id)
        assert result.exit_code == 3
        assert "ERROR:" in result.output
        data = json.loads(td("--json", "show", issue_id).output)
        assert data["status"] == "in_progress"

    def test_json_error_object(self, td):
        issue_id = _create(td, "Self approval is refused")
        td("start", issue_id)
        td("handoff", issue_id, "--done", "everything")
        td("review", issue_id)
        result = td("--json", "approve", issue_id)
        assert result.exit_code == 3
        error = json.loads(result.output)["error"]
        assert error["code"] == "cannot_self_approve"
        assert error["message"]

    def test_reject_returns_to_in_progress(self, td):
        issue_id = _create(td, "Sent back by the reviewer")
        td("start", issue_id)
        td("handoff", issue_id, "--done", "first pass")
        td("review", issue_id)
        result = td("reject", issue_id, "-r", "needs tests", session="ses_bob")
        assert result.exit_code == 0, result.output
        assert f"REJECTED {issue_id}" in result.output

    def test_start_sets_focus_and_status(self, td):
        issue_id = _create(td, "Focused by starting it")
        td("start", issue_id)
        assert td("focus").output.strip() == issue_id
        status = td("status")
        assert f"Focused: {issue_id}" in status.output
        assert "1 in_progress" in status.output

    def test_log_goes_to_focused_issue(self, td):
        issue_id = _create(td, "Receives focused logs")
        td("focus", issue_id)
        result = td("log", "halfway there")
        assert result.exit_code == 0, result.output
        assert f"LOGGED {issue_id}" in result.output
        assert "halfway there" in td("show", issue_id).output

    def test_close_and_reopen(self, td):
        issue_id = _create(td, "Closed then reopened")
        assert f"CLOSED {issue_id}" in td("close", issue_id).output
        assert f"REOPENED {issue_id}" in td("reopen", issue_id).output


# --- Queries and boards ---

class TestQuery:
    def test_query(self, td):
        urgent = _create(td, "Urgent production fix", "-p", "P0")
        _create(td, "Someday maybe idea", "-p", "P4")
        result = td("query", "status = open AND priority <= P1")
        assert result.exit_code == 0, result.output
        assert urgent in result.output
        assert "1 issue(s)" in result.output

    def test_query_parse_error(self, td):
        result = td("--json", "query", "status = (open")
        assert result.exit_code == 3
        assert json.loads(result.output)["error"]["code"] == "parse_error"

    def test_list_with_query(self, td):
        bug = _create(td, "Broken button on save", "--type", "bug")
        _create(td, "Plain chore for later")
        result = td("--json", "list", "-q", "type = bug")
        assert [i["id"] for i in json.loads(result.output)] == [bug]


class TestBoard:
    def test_board_show_and_move(self, td):
        first = _create(td, "Highest priority item", "-p", "P0")
        second = _create(td, "Lower priority item", "-p", "P3")
        result = td("board", "create", "Planning")
        assert result.output.startswith("CREATED bd-")

        result = td("board", "move", "Planning", second, "1")
        assert result.exit_code == 0, result.output

        data = json.loads(td("--json", "board", "show", "planning").output)
        assert [v["issue"]["id"] for v in data["issues"]] == [second, first]

    def test_invalid_board_query(self, td):
        result = td("board", "create", "Broken", "-q", "flavour = mint")
        assert result.exit_code == 3


class TestNotesAndWorkSessions:
    def test_note(self, td):
        result = td("note", "create", "Release checklist", "-c", "tag then publish")
        assert result.exit_code == 0, result.output
        note_id = result.output.split()[1]
        assert note_id in td("note", "list").output

    def test_work_session_tag_and_log(self, td):
        issue_id = _create(td, "Tagged in a work session")
        result = td("ws", "start", "Auth sprint")
        assert result.exit_code == 0, result.output
        result = td("ws", "tag", issue_id)
        assert f"TAGGED {issue_id} (started)" in result.output
        result = td("log", "paired on the middleware")
        assert f"LOGGED {issue_id}" in result.output
        assert "WORK SESSION ENDED" in td("ws", "end").output


# --- Settings ---

class TestConfigAndFeatures:
    def test_config_list_and_get(self, td):
        result = td("config", "list")
        assert "workflow_mode = strict" in result.output
        assert td("config", "get", "title_min_length").output.strip() == "15"

    def test_config_set_rejects_unknown(self, td):
        result = td("config", "set", "colour", "blue")
        assert result.exit_code == 1

    def test_feature_get_default(self, td):
        result = td("feature", "get", "sync_cli")
        assert "sync_cli = off (default)" in result.output

    def test_feature_set(self, td):
        assert "SET sync_cli = on" in td("feature", "set", "sync_cli", "true").output
        assert "on (config)" in td("feature", "get", "sync_cli").output

    def test_unknown_feature(self, td):
        result = td("feature", "get", "time_travel")
        assert result.exit_code == 1
        assert "unknown feature" in result.output

    def test_sync_is_gated(self, td):
        result = td("sync", "status")
        assert result.exit_code == 1
        assert "sync commands are disabled" in result.output


class TestUndo:
    def test_undo_create(self, td):
        issue_id = _create(td, "Created by mistake")
        result = td("undo")
        assert result.exit_code == 0, result.output
        assert f"UNDONE create issue {issue_id}" in result.output
        listed = json.loads(td("--json", "list").output)
        assert issue_id not in [i["id"] for i in listed]

    def test_undo_is_per_session(self, td):
        _create(td, "Belongs to alice only")
        result = td("--json", "undo", session="ses_bob")
        assert result.exit_code == 1
        assert json.loads(result.output)["error"]["code"] == "not_found"


class TestContext:
    def test_context_briefing(self, td):
        issue_id = _create(td, "Context for the agent")
        td("start", issue_id)
        td("handoff", issue_id, "--done", "scaffolding", "--remaining", "wire the api")
        result = td("context")
        assert result.exit_code == 0, result.output
        assert f"FOCUSED: {issue_id}" in result.output
        assert "- wire the api" in result.output
