"""
Cherry-pick session state machine.

A session replays the commits of a queue of pull requests onto a target
branch, one commit at a time, oldest first. This module holds the *pure* part:
an immutable ``CherryPickSession`` value and a ``transition`` function that
maps ``(session, event)`` to the next session value. No git, no network, no
clock. The effects live in ``gh_cherry.engine.orchestrator``, which performs
an operation and then feeds the observed result back in as an event.

States::

    IDLE ──SessionStarted──▶ RUNNING ──CommitConflicted──▶ CONFLICTED
                               ▲  │                           │
                               │  │               ResolutionRequested
                               │  │                           ▼
                               └──┼──CommitApplied/Skipped── RESOLVING
                                  ▼
                     DONE | ABORTED | FAILED   (terminal)

Rules enforced here:

* Commits are applied in order. ``CommitApplied`` must name the commit the
  session is waiting for, so the session can never advance past a conflict.
* ``applied_commits`` only grows while the session runs; abort moves it to
  ``reverted_commits`` wholesale.
* A pull request whose last commit applies is recorded as succeeded at once,
  and no commit of the next pull request is accepted until its label update
  has been recorded. A second record for the same pull request is refused.
* A merge-commit conflict can only be skipped or aborted.

Example:
    >>> session = new_session(queue, target_branch="main")
    >>> session = transition(session, SessionStarted("develop", "0a1b2c3d"))
    >>> session = transition(session, CommitApplied(sha=queue[0].commits[0].sha))
"""

import uuid
from dataclasses import dataclass, field, replace
from enum import Enum

from gh_cherry.exceptions import InvalidTransitionError
from gh_cherry.models.domain import (
    CommitRef,
    ConflictKind,
    ConflictState,
    LabelUpdateOutcome,
    LabelUpdateStatus,
    PullRequest,
    PullRequestOutcome,
    PullRequestResult,
)
from gh_cherry.utils.text import short_sha


class SessionState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    CONFLICTED = "conflicted"
    RESOLVING = "resolving"
    DONE = "done"
    ABORTED = "aborted"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionState.DONE, SessionState.ABORTED, SessionState.FAILED)


class ResolutionAction(str, Enum):
    """What the operator wants to do about a conflict."""

    CONTINUE = "continue"
    SKIP = "skip"
    ABORT = "abort"


@dataclass(frozen=True)
class FailureCause:
    """Why a session ended in ``FAILED``.

    Attributes:
        kind: Machine-readable cause, e.g. ``dirty_working_tree``.
        message: Human-readable description.
    """

    kind: str
    message: str


# Events ---------------------------------------------------------------------


@dataclass(frozen=True)
class SessionStarted:
    original_branch: str | None
    pre_session_ref: str


@dataclass(frozen=True)
class CommitApplied:
    sha: str
    new_sha: str | None = None


@dataclass(frozen=True)
class CommitConflicted:
    sha: str
    paths: tuple[str, ...] = ()
    detail: str = ""
    kind: ConflictKind = ConflictKind.MERGE_CONFLICT


@dataclass(frozen=True)
class ResolutionRequested:
    action: ResolutionAction


@dataclass(frozen=True)
class PullRequestSkipped:
    """The operator skipped the conflicted pull request."""

    detail: str = ""


@dataclass(frozen=True)
class PullRequestAbandoned:
    """The current pull request ended without operator input.

    Used for pull requests with no commits (``SKIPPED``) and for git timeouts
    (``FAILED``).
    """

    outcome: PullRequestOutcome
    detail: str = ""


@dataclass(frozen=True)
class LabelUpdateRecorded:
    number: int
    outcome: LabelUpdateOutcome
    pull_request: PullRequest | None = None


@dataclass(frozen=True)
class SessionAborted:
    detail: str = "Aborted by operator"


@dataclass(frozen=True)
class SessionFailed:
    kind: str
    message: str


SessionEvent = (
    SessionStarted
    | CommitApplied
    | CommitConflicted
    | ResolutionRequested
    | PullRequestSkipped
    | PullRequestAbandoned
    | LabelUpdateRecorded
    | SessionAborted
    | SessionFailed
)


@dataclass(frozen=True)
class CherryPickSession:
    """Immutable snapshot of a cherry-pick session.

    Attributes:
        session_id: Short random identifier used in logs and the lock file.
        target_branch: Branch commits are applied to.
        queue: Pull requests in the order the operator selected them.
        state: Current state.
        pr_index: Index into ``queue`` of the pull request being applied.
        commit_index: Index of the next commit of that pull request.
        applied_commits: Source hashes applied during the session, in order.
        created_commits: Hashes of the commits created on the target branch.
        reverted_commits: Source hashes undone by an abort.
        current_applied: Source hashes applied for the current pull request.
        current_created: Created hashes for the current pull request.
        conflict: Present only while ``CONFLICTED`` or ``RESOLVING``.
        pending_action: The resolution being carried out while ``RESOLVING``.
        original_branch: Branch checked out before the session started.
        pre_session_ref: Target branch head before the first commit applied.
        results: Per pull request results, in queue order.
        label_update_due: Number of the succeeded pull request whose label
            update has not been recorded yet.
        cause: Present only in ``FAILED``.
    """

    session_id: str
    target_branch: str
    queue: tuple[PullRequest, ...]
    state: SessionState = SessionState.IDLE
    pr_index: int = 0
    commit_index: int = 0
    applied_commits: tuple[str, ...] = ()
    created_commits: tuple[str, ...] = ()
    reverted_commits: tuple[str, ...] = ()
    current_applied: tuple[str, ...] = ()
    current_created: tuple[str, ...] = ()
    conflict: ConflictState | None = None
    pending_action: ResolutionAction | None = None
    original_branch: str | None = None
    pre_session_ref: str | None = None
    results: tuple[PullRequestResult, ...] = field(default_factory=tuple)
    label_update_due: int | None = None
    cause: FailureCause | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    @property
    def current_pull_request(self) -> PullRequest | None:
        if self.pr_index < len(self.queue):
            return self.queue[self.pr_index]
        return None

    @property
    def current_commit(self) -> CommitRef | None:
        pr = self.current_pull_request
        if pr is None or self.commit_index >= len(pr.commits):
            return None
        return pr.commits[self.commit_index]

    @property
    def queue_exhausted(self) -> bool:
        return self.pr_index >= len(self.queue)

    def result_for(self, number: int) -> PullRequestResult | None:
        for result in self.results:
            if result.number == number:
                return result
        return None


def new_session(
    queue: list[PullRequest] | tuple[PullRequest, ...],
    target_branch: str,
    session_id: str | None = None,
) -> CherryPickSession:
    """Create an ``IDLE`` session for ``queue``."""
    return CherryPickSession(
        session_id=session_id or uuid.uuid4().hex[:8],
        target_branch=target_branch,
        queue=tuple(queue),
    )


def transition(session: CherryPickSession, event: SessionEvent) -> CherryPickSession:
    """Return the session that results from applying ``event``.

    Args:
        session: Current session value. Never modified.
        event: What just happened.

    Returns:
        The next session value.

    Raises:
        InvalidTransitionError: If the event is not allowed in the current
            state, names the wrong commit, or would record a second label
            update for the same pull request.
    """
    if session.is_terminal:
        _reject(session, event, "session already finished")

    if isinstance(event, SessionStarted):
        return _on_started(session, event)
    if isinstance(event, CommitApplied):
        return _on_commit_applied(session, event)
    if isinstance(event, CommitConflicted):
        return _on_commit_conflicted(session, event)
    if isinstance(event, ResolutionRequested):
        return _on_resolution_requested(session, event)
    if isinstance(event, PullRequestSkipped):
        return _on_skipped(session, event)
    if isinstance(event, PullRequestAbandoned):
        return _on_abandoned(session, event)
    if isinstance(event, LabelUpdateRecorded):
        return _on_label_update(session, event)
    if isinstance(event, SessionAborted):
        return _on_aborted(session, event)
    if isinstance(event, SessionFailed):
        return _on_failed(session, event)

    raise TypeError(f"Unknown session event: {event!r}")


def _reject(session: CherryPickSession, event: object, reason: str | None = None) -> None:
    raise InvalidTransitionError(session.state.value, type(event).__name__, reason)


def _require(session: CherryPickSession, event: object, *states: SessionState) -> None:
    if session.state not in states:
        _reject(session, event)


def _on_started(session: CherryPickSession, event: SessionStarted) -> CherryPickSession:
    _require(session, event, SessionState.IDLE)
    started = replace(
        session,
        state=SessionState.RUNNING,
        original_branch=event.original_branch,
        pre_session_ref=event.pre_session_ref,
    )
    return _settle(started)


def _on_commit_applied(session: CherryPickSession, event: CommitApplied) -> CherryPickSession:
    _require(session, event, SessionState.RUNNING, SessionState.RESOLVING)
    if session.state is SessionState.RESOLVING and session.pending_action is not ResolutionAction.CONTINUE:
        _reject(session, event, "only a continue resolution can apply the conflicted commit")
    if session.label_update_due is not None:
        _reject(session, event, f"label update for #{session.label_update_due} not recorded yet")

    expected = session.current_commit
    if expected is None:
        _reject(session, event, "no commit is waiting to be applied")
    assert expected is not None
    if event.sha != expected.sha:
        _reject(
            session,
            event,
            f"expected commit {short_sha(expected.sha)}, got {short_sha(event.sha)}",
        )

    created = (event.new_sha,) if event.new_sha else ()
    advanced = replace(
        session,
        state=SessionState.RUNNING,
        commit_index=session.commit_index + 1,
        applied_commits=session.applied_commits + (event.sha,),
        created_commits=session.created_commits + created,
        current_applied=session.current_applied + (event.sha,),
        current_created=session.current_created + created,
        conflict=None,
        pending_action=None,
    )

    pr = advanced.current_pull_request
    assert pr is not None
    if advanced.commit_index < len(pr.commits):
        return advanced

    finished = _close_pull_request(advanced, PullRequestOutcome.SUCCEEDED)
    return _settle(replace(finished, label_update_due=pr.number))


def _on_commit_conflicted(session: CherryPickSession, event: CommitConflicted) -> CherryPickSession:
    _require(session, event, SessionState.RUNNING, SessionState.RESOLVING)
    if session.state is SessionState.RESOLVING and session.pending_action is not ResolutionAction.CONTINUE:
        _reject(session, event)

    expected = session.current_commit
    if expected is None or event.sha != expected.sha:
        _reject(session, event, "conflict reported for a commit that is not current")

    pr = session.current_pull_request
    assert pr is not None
    return replace(
        session,
        state=SessionState.CONFLICTED,
        conflict=ConflictState(
            pull_request=pr.number,
            commit=event.sha,
            paths=tuple(event.paths),
            detail=event.detail,
            kind=event.kind,
        ),
        pending_action=None,
    )


def _on_resolution_requested(session: CherryPickSession, event: ResolutionRequested) -> CherryPickSession:
    _require(session, event, SessionState.CONFLICTED)
    assert session.conflict is not None
    if event.action is ResolutionAction.CONTINUE and not session.conflict.resolvable_in_place:
        _reject(session, event, "merge commits cannot be continued, only skipped or aborted")
    return replace(session, state=SessionState.RESOLVING, pending_action=event.action)


def _on_skipped(session: CherryPickSession, event: PullRequestSkipped) -> CherryPickSession:
    _require(session, event, SessionState.RESOLVING)
    if session.pending_action is not ResolutionAction.SKIP:
        _reject(session, event, "no skip was requested")

    outcome = PullRequestOutcome.PARTIALLY_FAILED if session.current_applied else PullRequestOutcome.SKIPPED
    stopped_at = session.conflict.commit if session.conflict else None
    detail = event.detail or _conflict_detail(session.conflict)
    closed = _close_pull_request(session, outcome, stopped_at=stopped_at, detail=detail)
    return _settle(closed)


def _on_abandoned(session: CherryPickSession, event: PullRequestAbandoned) -> CherryPickSession:
    _require(session, event, SessionState.RUNNING, SessionState.RESOLVING)
    if session.queue_exhausted:
        _reject(session, event, "no pull request in progress")
    if session.label_update_due is not None:
        _reject(session, event, f"label update for #{session.label_update_due} not recorded yet")

    current = session.current_commit
    closed = _close_pull_request(
        session,
        event.outcome,
        stopped_at=current.sha if current else None,
        detail=event.detail,
    )
    return _settle(closed)


def _on_label_update(session: CherryPickSession, event: LabelUpdateRecorded) -> CherryPickSession:
    _require(session, event, SessionState.RUNNING)
    if session.label_update_due != event.number:
        _reject(session, event, f"no label update due for #{event.number}")

    results = tuple(
        replace(result, label_update=event.outcome) if result.number == event.number else result
        for result in session.results
    )
    queue = session.queue
    if event.pull_request is not None:
        queue = tuple(event.pull_request if pr.number == event.number else pr for pr in queue)

    return _settle(replace(session, results=results, queue=queue, label_update_due=None))


def _on_aborted(session: CherryPickSession, event: SessionAborted) -> CherryPickSession:
    results = []
    for result in session.results:
        if result.applied_commits:
            result = replace(result, outcome=PullRequestOutcome.ABORTED)
        results.append(result)

    pr = session.current_pull_request
    in_progress = bool(session.current_applied) or session.conflict is not None
    if pr is not None and in_progress:
        results.append(
            PullRequestResult(
                number=pr.number,
                title=pr.title,
                outcome=PullRequestOutcome.ABORTED,
                applied_commits=session.current_applied,
                stopped_at=session.conflict.commit if session.conflict else None,
                detail=event.detail,
                created_commits=session.current_created,
            )
        )
        remaining_from = session.pr_index + 1
    else:
        remaining_from = session.pr_index

    results.extend(_not_attempted(session.queue[remaining_from:]))

    return replace(
        session,
        state=SessionState.ABORTED,
        applied_commits=(),
        created_commits=(),
        reverted_commits=session.reverted_commits + session.applied_commits,
        current_applied=(),
        current_created=(),
        conflict=None,
        pending_action=None,
        results=tuple(results),
        label_update_due=None,
    )


def _on_failed(session: CherryPickSession, event: SessionFailed) -> CherryPickSession:
    results = list(session.results)
    remaining_from = session.pr_index

    if session.label_update_due is not None:
        failed_label = LabelUpdateOutcome(status=LabelUpdateStatus.FAILED, error=event.message)
        results = [
            replace(r, label_update=failed_label) if r.number == session.label_update_due else r for r in results
        ]
    elif session.state is not SessionState.IDLE and not session.queue_exhausted:
        pr = session.current_pull_request
        assert pr is not None
        current = session.current_commit
        results.append(
            PullRequestResult(
                number=pr.number,
                title=pr.title,
                outcome=PullRequestOutcome.FAILED,
                applied_commits=session.current_applied,
                stopped_at=current.sha if current else None,
                detail=event.message,
                created_commits=session.current_created,
            )
        )
        remaining_from += 1

    results.extend(_not_attempted(session.queue[remaining_from:]))

    return replace(
        session,
        state=SessionState.FAILED,
        conflict=None,
        pending_action=None,
        results=tuple(results),
        label_update_due=None,
        cause=FailureCause(kind=event.kind, message=event.message),
    )


def _close_pull_request(
    session: CherryPickSession,
    outcome: PullRequestOutcome,
    stopped_at: str | None = None,
    detail: str = "",
) -> CherryPickSession:
    pr = session.current_pull_request
    assert pr is not None
    result = PullRequestResult(
        number=pr.number,
        title=pr.title,
        outcome=outcome,
        applied_commits=session.current_applied,
        stopped_at=stopped_at,
        detail=detail,
        created_commits=session.current_created,
    )
    return replace(
        session,
        state=SessionState.RUNNING,
        pr_index=session.pr_index + 1,
        commit_index=0,
        current_applied=(),
        current_created=(),
        conflict=None,
        pending_action=None,
        results=session.results + (result,),
    )


def _settle(session: CherryPickSession) -> CherryPickSession:
    """Move a running session to ``DONE`` once nothing is left to do."""
    if session.state is SessionState.RUNNING and session.queue_exhausted and session.label_update_due is None:
        return replace(session, state=SessionState.DONE)
    return session


def _not_attempted(pull_requests: tuple[PullRequest, ...]) -> list[PullRequestResult]:
    return [
        PullRequestResult(number=pr.number, title=pr.title, outcome=PullRequestOutcome.NOT_ATTEMPTED)
        for pr in pull_requests
    ]


def _conflict_detail(conflict: ConflictState | None) -> str:
    if conflict is None:
        return "Skipped by operator"
    if conflict.kind is ConflictKind.UNSUPPORTED_MERGE_COMMIT:
        return f"Skipped at merge commit {short_sha(conflict.commit)}"
    paths = ", ".join(conflict.paths) if conflict.paths else "unknown paths"
    return f"Skipped at {short_sha(conflict.commit)} (conflicts in {paths})"
