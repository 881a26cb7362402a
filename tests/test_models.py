"""Tests for data models."""

from datetime import datetime, timezone

from td.models import (
    ConflictRecord, Handoff, Issue, IssueType, Priority, Status, format_timestamp, is_valid_points,
    parse_timestamp, split_labels,
)


def test_issue_defaults():
    issue = Issue()
    assert issue.status == Status.OPEN
    assert issue.type == IssueType.TASK
    assert issue.priority == Priority.P2


def test_status_normalize():
    assert Status.normalize("In-Review") == Status.IN_REVIEW
    assert Status.normalize("review") == Status.IN_REVIEW
    assert Status.normalize("OPEN") == Status.OPEN


def test_priority_normalize():
    assert Priority.normalize("p1") == Priority.P1
    assert Priority.normalize("critical") == Priority.P0
    assert Priority.normalize(3) == Priority.P3
    assert Priority.rank(Priority.P4) == 4
    assert Priority.rank("P9") == -1


def test_type_normalize():
    assert IssueType.normalize("Story") == IssueType.FEATURE
    assert IssueType.normalize("EPIC") == IssueType.EPIC


def test_points():
    assert is_valid_points(0)
    assert is_valid_points(13)
    assert not is_valid_points(4)


def test_split_labels_dedupes_and_trims():
    assert split_labels("a, b,,a") == ["a", "b"]
    assert split_labels(["x", " y "]) == ["x", "y"]
    assert split_labels(None) == []


def test_timestamp_round_trip():
    ts = datetime(2026, 1, 15, 10, 0, 0, 123456, tzinfo=timezone.utc)
    text = format_timestamp(ts)
    assert text == "2026-01-15T10:00:00.123456Z"
    assert parse_timestamp(text) == ts


def test_parse_timestamp_variants():
    assert parse_timestamp("2026-01-15") == datetime(2026, 1, 15, tzinfo=timezone.utc)
    assert parse_timestamp("2026-01-15 10:00:00") == datetime(2026, 1, 15, 10,
                                                              tzinfo=timezone.utc)
    assert parse_timestamp("") is None


def test_issue_to_dict_omits_empty():
    issue = Issue(id="td-abc123", title="Test Issue",
                  created_at=datetime(2026, 1, 15, tzinfo=timezone.utc),
                  updated_at=datetime(2026, 1, 15, tzinfo=timezone.utc))
    d = issue.to_dict()
    assert "description" not in d
    assert "labels" not in d
    assert "closed_at" not in d
    assert d["status"] == "open"


def test_issue_row_round_trip():
    issue = Issue(id="td-abc123", title="Round trip", labels=["a", "b"], minor=True,
                  due_at=datetime(2026, 2, 1, tzinfo=timezone.utc))
    row = issue.to_row()
    assert row["labels"] == "a,b"
    assert row["minor"] == 1
    assert Issue.from_row(row) == issue


def test_handoff_is_empty():
    assert Handoff(issue_id="td-abc123").is_empty()
    assert not Handoff(issue_id="td-abc123", uncertain=["?"]).is_empty()


def test_conflict_record_defaults():
    record = ConflictRecord(entity_type="issues", entity_id="td-abc123", field="title",
                            local_value="Old", remote_value="New")
    assert record.field == "title"
    assert record.resolved_at is not None
    assert record.to_dict()["field"] == "title"
    assert ConflictRecord().field == ""
