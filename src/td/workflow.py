"""Issue workflow state machine.

Transitions are plain data (from, to, guards) registered in a table. The
machine itself holds no state beyond its mode, and guards only read the
``TransitionContext`` they are given; callers gather facts such as handoff
presence or open child counts from the store before validating.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from td.errors import ValidationError
from td.models import Issue, IssueType, Status


class TransitionMode:
    LIBERAL = "liberal"
    ADVISORY = "advisory"
    STRICT = "strict"

    _VALID = {LIBERAL, ADVISORY, STRICT}

    @classmethod
    def is_valid(cls, m: str) -> bool:
        return m in cls._VALID


class ActionContext:
    CLI = "cli"
    MONITOR = "monitor"
    WORKSESSION = "worksession"
    ADMIN = "admin"


@dataclass
class GuardResult:
    passed: bool
    message: str = ""
    guard: str = ""


@dataclass
class TransitionContext:
    issue: Optional[Issue]
    from_status: str
    to_status: str
    session_id: str = ""
    force: bool = False
    minor: bool = False
    context: str = ActionContext.CLI
    was_involved: bool = False
    has_handoff: bool = False
    open_child_count: int = 0
    open_dependency_count: int = 0


class TransitionError(Exception):
    """The requested status change is not an edge of the transition graph."""

    def __init__(self, from_status: str = "", to_status: str = "",
                 issue_id: str = "", reason: str = "") -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.issue_id = issue_id
        self.reason = reason
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.from_status and not self.to_status:
            return f"invalid transition: {self.reason}"
        if self.issue_id:
            return (f"cannot transition {self.issue_id} from {self.from_status} "
                    f"to {self.to_status}: {self.reason}")
        return f"cannot transition from {self.from_status} to {self.to_status}: {self.reason}"


class GuardError(Exception):
    def __init__(self, guard_name: str, reason: str, issue_id: str = "") -> None:
        self.guard_name = guard_name
        self.reason = reason
        self.issue_id = issue_id
        super().__init__(str(self))

    def __str__(self) -> str:
        if self.issue_id:
            return f"guard {self.guard_name} failed for {self.issue_id}: {self.reason}"
        return f"guard {self.guard_name} failed: {self.reason}"


class WorkflowValidationError(ValidationError):
    """Aggregated guard failures from a strict-mode validation."""

    def __init__(self, guard_errors: list[GuardError]) -> None:
        self.guard_errors = list(guard_errors)
        super().__init__([str(e) for e in self.guard_errors])

    @property
    def guard_names(self) -> list[str]:
        return [e.guard_name for e in self.guard_errors]


# --- Guards ---

class BlockedGuard:
    """Leaving ``blocked`` for ``in_progress`` needs an explicit force."""

    name = "BlockedGuard"
    advisory = False

    def check(self, ctx: TransitionContext) -> GuardResult:
        if ctx.from_status == Status.BLOCKED and not ctx.force:
            return GuardResult(False, "cannot start blocked issue (use --force)")
        return GuardResult(True)


class DifferentReviewerGuard:
    """The approving session must not be the implementing session."""

    name = "DifferentReviewerGuard"
    advisory = False

    def check(self, ctx: TransitionContext) -> GuardResult:
        if ctx.context == ActionContext.ADMIN:
            return GuardResult(True)
        if ctx.minor or (ctx.issue is not None and ctx.issue.minor):
            return GuardResult(True)
        issue = ctx.issue
        implementer = issue.implementer_session if issue else ""
        if ctx.was_involved or (implementer and implementer == ctx.session_id):
            return GuardResult(False, "cannot approve own implementation")
        return GuardResult(True)


class HandoffRequiredGuard:
    name = "HandoffRequiredGuard"
    advisory = False

    def check(self, ctx: TransitionContext) -> GuardResult:
        if not ctx.has_handoff:
            return GuardResult(False, "handoff required before review")
        return GuardResult(True)


class EpicChildrenGuard:
    name = "EpicChildrenGuard"
    advisory = False

    def check(self, ctx: TransitionContext) -> GuardResult:
        if ctx.issue is None or ctx.issue.type != IssueType.EPIC:
            return GuardResult(True)
        if ctx.open_child_count > 0:
            return GuardResult(
                False, f"epic has {ctx.open_child_count} unclosed descendant(s)")
        return GuardResult(True)


class DependencyGuard:
    """Warns about unresolved dependencies; never blocks on its own."""

    name = "DependencyGuard"
    advisory = True

    def check(self, ctx: TransitionContext) -> GuardResult:
        if ctx.open_dependency_count > 0:
            return GuardResult(
                False, f"{ctx.open_dependency_count} unresolved dependencies")
        return GuardResult(True)


# --- Transition table ---

@dataclass
class Transition:
    from_status: str
    to_status: str
    guards: list = field(default_factory=list)


def all_transitions() -> list[Transition]:
    """The fixed transition graph with its guards."""
    blocked = BlockedGuard()
    reviewer = DifferentReviewerGuard()
    handoff = HandoffRequiredGuard()
    epic = EpicChildrenGuard()
    deps = DependencyGuard()
    return [
        Transition(Status.OPEN, Status.IN_PROGRESS, [deps]),
        Transition(Status.OPEN, Status.BLOCKED),
        Transition(Status.OPEN, Status.IN_REVIEW, [handoff]),
        Transition(Status.OPEN, Status.CLOSED, [epic, deps]),
        Transition(Status.IN_PROGRESS, Status.OPEN),
        Transition(Status.IN_PROGRESS, Status.BLOCKED),
        Transition(Status.IN_PROGRESS, Status.IN_REVIEW, [handoff]),
        Transition(Status.IN_PROGRESS, Status.CLOSED, [epic, deps]),
        Transition(Status.BLOCKED, Status.OPEN),
        Transition(Status.BLOCKED, Status.IN_PROGRESS, [blocked, deps]),
        Transition(Status.BLOCKED, Status.CLOSED, [epic, deps]),
        Transition(Status.IN_REVIEW, Status.OPEN),
        Transition(Status.IN_REVIEW, Status.IN_PROGRESS),
        Transition(Status.IN_REVIEW, Status.CLOSED, [reviewer, epic]),
        Transition(Status.CLOSED, Status.OPEN),
    ]


def all_statuses() -> list[str]:
    return list(Status.ORDER)


_TRANSITION_NAMES = {
    (Status.OPEN, Status.IN_PROGRESS): "start",
    (Status.IN_PROGRESS, Status.OPEN): "unstart",
    (Status.OPEN, Status.BLOCKED): "block",
    (Status.IN_PROGRESS, Status.BLOCKED): "block",
    (Status.BLOCKED, Status.OPEN): "unblock",
    (Status.BLOCKED, Status.IN_PROGRESS): "start",
    (Status.IN_PROGRESS, Status.IN_REVIEW): "review",
    (Status.OPEN, Status.IN_REVIEW): "review",
    (Status.IN_REVIEW, Status.IN_PROGRESS): "reject",
    (Status.IN_REVIEW, Status.OPEN): "reject",
    (Status.IN_REVIEW, Status.CLOSED): "approve",
    (Status.IN_PROGRESS, Status.CLOSED): "close",
    (Status.OPEN, Status.CLOSED): "close",
    (Status.BLOCKED, Status.CLOSED): "close",
    (Status.CLOSED, Status.OPEN): "reopen",
}


def transition_name(from_status: str, to_status: str) -> str:
    return _TRANSITION_NAMES.get((from_status, to_status), f"{from_status}->{to_status}")


class StateMachine:
    """Validates status changes against the transition table."""

    def __init__(self, mode: str = TransitionMode.STRICT) -> None:
        if not TransitionMode.is_valid(mode):
            raise ValueError(f"invalid workflow mode: {mode}")
        self.mode = mode
        self._transitions: dict[str, dict[str, Transition]] = {}
        for t in all_transitions():
            self._transitions.setdefault(t.from_status, {})[t.to_status] = t

    def is_valid_transition(self, from_status: str, to_status: str) -> bool:
        return to_status in self._transitions.get(from_status, {})

    def get_transition(self, from_status: str, to_status: str) -> Transition | None:
        return self._transitions.get(from_status, {}).get(to_status)

    def allowed_transitions(self, from_status: str) -> list[str]:
        targets = self._transitions.get(from_status, {})
        return [s for s in Status.ORDER if s in targets]

    def validate(self, ctx: TransitionContext | None) -> list[GuardResult]:
        """Run the guards of one transition.

        Liberal mode runs no guards. Advisory mode returns every result and
        never raises on guard failure. Strict mode raises a
        WorkflowValidationError naming each failed blocking guard; advisory
        guards (dependencies) only ever warn.
        """
        if ctx is None:
            raise TransitionError(reason="nil context")
        if ctx.issue is None:
            raise TransitionError(ctx.from_status, ctx.to_status,
                                  reason="nil issue in context")

        transition = self.get_transition(ctx.from_status, ctx.to_status)
        if transition is None:
            raise TransitionError(ctx.from_status, ctx.to_status,
                                  ctx.issue.id, "transition not allowed")

        if self.mode == TransitionMode.LIBERAL:
            return []

        results: list[GuardResult] = []
        failures: list[GuardError] = []
        for guard in transition.guards:
            result = guard.check(ctx)
            result.guard = guard.name
            results.append(result)
            if not result.passed and not guard.advisory:
                failures.append(GuardError(guard.name, result.message, ctx.issue.id))

        if self.mode == TransitionMode.STRICT and failures:
            raise WorkflowValidationError(failures)
        return results

    def can_transition(self, ctx: TransitionContext) -> tuple[bool, list[GuardResult]]:
        try:
            results = self.validate(ctx)
        except (TransitionError, WorkflowValidationError):
            return False, []
        return True, results


def warnings(results: list[GuardResult]) -> list[str]:
    """Messages of guards that did not pass."""
    return [f"{r.guard}: {r.message}" for r in results if not r.passed]
