"""Tests for the TDQ lexer, parser, validator and executor."""

from datetime import datetime, timezone

import pytest

from td.errors import ExecutionError, ParseError, ValidationError
from td.models import IssueType, Priority, Status
from td.query import ExecuteOptions, ast, execute, parse, parse_query
from td.query.evaluator import EvalContext, compile_query
from td.query.lexer import TokenType, tokenize
from td.query.parser import MAX_QUERY_DEPTH

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


def _compile(text, session_id="ses_alice"):
    return compile_query(parse_query(text), EvalContext(session_id=session_id, now=NOW))


# --- Lexer ---

class TestLexer:
    def test_operators(self):
        types = [t.type for t in tokenize("a != b ~ c !~ d <= e")]
        assert TokenType.NEQ in types
        assert TokenType.CONTAINS in types
        assert TokenType.NOT_CONTAINS in types
        assert TokenType.LTE in types

    def test_quoted_string_escapes(self):
        tokens = [t for t in tokenize('title ~ "say \\"hi\\""') if t.type == TokenType.STRING]
        assert tokens[0].value == 'say "hi"'

    def test_unterminated_string(self):
        with pytest.raises(ParseError):
            tokenize('title ~ "oops')

    def test_invalid_sort_field(self):
        with pytest.raises(ParseError) as exc:
            tokenize("sort:nonsense")
        assert "invalid sort field" in str(exc.value)


# --- Parser ---

class TestParser:
    def test_empty_query(self):
        q = parse("   ")
        assert q.root is None
        assert q.sort is None

    def test_status_priority_labels_with_sort(self):
        q = parse("status = open AND (priority <= P1 OR labels ~ urgent) sort:-created")
        assert isinstance(q.root, ast.BinaryExpr)
        assert q.root.op == ast.AND
        assert isinstance(q.root.right, ast.BinaryExpr)
        assert q.root.right.op == ast.OR
        assert q.sort.field == "created"
        assert q.sort.descending
        assert q.sort.column == "created_at"

    def test_implicit_and(self):
        q = parse("status = open type = bug")
        assert isinstance(q.root, ast.BinaryExpr)
        assert q.root.op == ast.AND

    def test_or_binds_looser_than_and(self):
        q = parse("a = 1 OR b = 2 AND c = 3")
        assert q.root.op == ast.OR
        assert q.root.right.op == ast.AND

    def test_not(self):
        q = parse("NOT status = closed")
        assert isinstance(q.root, ast.UnaryExpr)
        assert isinstance(q.root.expr, ast.FieldExpr)

    def test_bare_word_is_text_search(self):
        q = parse("login")
        assert isinstance(q.root, ast.TextSearch)
        assert q.root.text == "login"

    def test_function_call(self):
        q = parse("descendant_of(td-abc123)")
        assert isinstance(q.root, ast.FunctionCall)
        assert q.root.name == "descendant_of"
        assert q.root.args == ["td-abc123"]

    def test_dotted_field(self):
        q = parse('log.message ~ "timeout"')
        assert q.root.field == "log.message"

    def test_special_values(self):
        assert parse("implementer = @me").root.value == ast.ME
        assert parse("sprint = EMPTY").root.value == ast.EMPTY

    def test_multiple_sort_clauses(self):
        with pytest.raises(ParseError):
            parse("status = open sort:created sort:-updated")

    def test_missing_close_paren_reports_position(self):
        with pytest.raises(ParseError) as exc:
            parse("(status = open")
        assert exc.value.expected == ")"
        assert exc.value.line == 1

    def test_depth_limit(self):
        ok = "(" * MAX_QUERY_DEPTH + "status = open" + ")" * MAX_QUERY_DEPTH
        assert parse(ok).root.field == "status"
        too_deep = "(" * (MAX_QUERY_DEPTH + 1) + "status = open" + ")" * (MAX_QUERY_DEPTH + 1)
        with pytest.raises(ParseError) as exc:
            parse(too_deep)
        assert "nesting depth" in str(exc.value)

    @pytest.mark.parametrize("text", [
        "status = open AND (priority <= P1 OR labels ~ urgent) sort:-created",
        'title ~ "two words" AND NOT type = bug',
        "any(labels, ui, api) OR child_of(td-abc123)",
        "created >= -7d AND implementer = @me",
        "status = (open, in_progress)",
    ])
    def test_string_form_reparses(self, text):
        once = str(parse(text))
        assert str(parse(once)) == once

    @pytest.mark.parametrize("joiner", [" ", " AND ", " OR "])
    def test_long_chain_reparses(self, joiner):
        text = joiner.join(f"title ~ t{i}" for i in range(60))
        once = str(parse(text))
        assert "(" not in once
        assert str(parse(once)) == once

    def test_string_form_keeps_needed_groups(self):
        grouped = str(parse("(status = open OR status = blocked) AND priority <= P1").root)
        assert grouped.startswith("(") and ") AND " in grouped
        assert parse(grouped).root.op == ast.AND
        assert "(" not in str(parse("status = open OR type = bug AND priority = P0").root)
        negated = str(parse("NOT (status = open OR type = bug)").root)
        assert negated.startswith("NOT (")
        assert parse(negated).root.expr.op == ast.OR


# --- Validation ---

class TestValidation:
    def test_enum_values_are_case_insensitive(self):
        q = parse_query("status = OPEN AND type = Bug AND priority = p0")
        fields = {n.field: n.value for n in ast.walk(q.root) if isinstance(n, ast.FieldExpr)}
        assert fields == {"status": Status.OPEN, "type": IssueType.BUG, "priority": Priority.P0}

    def test_collects_all_errors(self):
        with pytest.raises(ValidationError) as exc:
            parse_query("status = nope AND flavour = mint")
        assert len(exc.value.errors) == 2

    def test_unknown_function(self):
        with pytest.raises(ValidationError):
            parse_query("frobnicate(x)")

    def test_bool_field(self):
        q = parse_query("minor = true")
        assert q.root.value == 1

    def test_number_field(self):
        with pytest.raises(ValidationError):
            parse_query("points = lots")


# --- SQL generation ---

class TestCompile:
    def test_priority_ordering_uses_parameter(self):
        c = _compile("status = open AND (priority <= P1 OR labels ~ urgent)")
        assert c.exact
        assert "priority <= ?" in c.sql
        assert "P1" in c.params
        assert "open" in c.params

    def test_contains_escapes_wildcards(self):
        c = _compile('title ~ "100%_done"')
        assert c.params == ["%100\\%\\_done%"]
        assert "ESCAPE" in c.sql

    def test_labels_contains_matches_whole_label(self):
        c = _compile("labels ~ ui")
        assert c.params == ["%,ui,%"]
        assert c.match({"labels": "api,ui"})
        assert not c.match({"labels": "guide"})

    def test_me_resolves_to_session(self):
        c = _compile("implementer = @me", session_id="ses_carol")
        assert c.params == ["ses_carol"]

    def test_in_memory_function_is_not_exact(self):
        c = _compile("status = open AND is_ready()")
        assert not c.exact
        assert c.sql is not None

    def test_or_with_in_memory_branch_has_no_sql(self):
        c = _compile("status = open OR rework()")
        assert not c.exact
        assert c.sql is None

    def test_relative_date(self):
        c = _compile("created >= -7d")
        assert c.params == ["2026-03-08"]

    def test_empty_query_matches_everything(self):
        c = _compile("")
        assert c.sql is None
        assert c.match({})


# --- Execution ---

class TestExecute:
    def test_filters_and_sorts(self, ops, store):
        low = ops.create("Low priority chore", priority="P3")
        urgent = ops.create("Tagged urgent", priority="P3", labels=["urgent"])
        high = ops.create("High priority bug", priority="P1", type="bug")
        closed = ops.create("Already done", priority="P0")
        ops.close(closed.id)

        found = execute(store, "status = open AND (priority <= P1 OR labels ~ urgent) "
                               "sort:-created")
        ids = [i.id for i in found]
        assert set(ids) == {urgent.id, high.id}
        assert low.id not in ids

    def test_limit(self, ops, store):
        for n in range(3):
            ops.create(f"Issue number {n}")
        assert len(execute(store, "status = open", options=ExecuteOptions(limit=2))) == 2

    def test_deleted_excluded_by_default(self, ops, store):
        issue = ops.create("Soon deleted")
        ops.delete(issue.id)
        assert execute(store, "title ~ deleted") == []
        found = execute(store, "title ~ deleted",
                        options=ExecuteOptions(include_deleted=True))
        assert [i.id for i in found] == [issue.id]

    def test_me(self, ops, store):
        issue = ops.create("Mine to start")
        ops.start(issue.id)
        ops.create("Not started")
        found = execute(store, "implementer = @me", session_id="ses_alice")
        assert [i.id for i in found] == [issue.id]

    def test_descendant_of(self, ops, store):
        epic = ops.create("Epic root", type="epic")
        child = ops.create("Child task", parent_id=epic.id)
        grandchild = ops.create("Grandchild task", parent_id=child.id)
        ops.create("Unrelated")
        found = execute(store, f"descendant_of({epic.id})")
        assert {i.id for i in found} == {child.id, grandchild.id}

    def test_descendant_of_parent_cycle_is_bounded(self, ops, store):
        a = ops.create("Cycle member A")
        b = ops.create("Cycle member B", parent_id=a.id)
        row = store.get_row("issues", a.id)
        row["parent_id"] = b.id
        store.put_row("issues", row)
        with pytest.raises(ExecutionError) as exc:
            execute(store, f"descendant_of({a.id})")
        assert "max depth" in str(exc.value)

    def test_log_message(self, ops, store):
        issue = ops.create("Has a log entry")
        ops.create("No log entry")
        ops.add_log(issue.id, "connection timeout on retry")
        found = execute(store, 'log.message ~ "timeout"')
        assert [i.id for i in found] == [issue.id]

    def test_has_open_deps(self, ops, store):
        blocker = ops.create("Blocking work")
        blocked = ops.create("Blocked work", depends_on=[blocker.id])
        found = execute(store, "has_open_deps()")
        assert [i.id for i in found] == [blocked.id]
        ready = execute(store, "is_ready()")
        assert [i.id for i in ready] == [blocker.id]

    def test_parse_error_propagates(self, store):
        with pytest.raises(ParseError):
            execute(store, "status = (open")
