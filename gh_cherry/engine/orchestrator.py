"""
Cherry-pick orchestrator: drives a session against git and the code host.

``gh_cherry.engine.session`` decides what may happen next; this module makes
it happen. The orchestrator performs one effect at a time (a cherry-pick, a
label update, a reset) and feeds the observed result back into the session as
an event. The session value it returns is the whole state of the run: there
is no hidden per-session state besides the working-tree lock.

Session Lifecycle:
    1. ``start`` takes the working-tree lock, checks that the tree is clean,
       remembers the original branch, optionally fetches, checks out the
       target branch and records its head as the pre-session ref.
    2. Commits are applied oldest first. A pull request whose last commit
       lands is recorded as succeeded and its labels are updated before the
       next pull request begins.
    3. On a conflict the session is returned ``CONFLICTED`` with the lock
       still held. The caller collects the operator's decision and passes it
       to ``resolve``.
    4. Any terminal state releases the lock.

Failure Handling:
    Fatal adapter errors end the session in ``FAILED`` with a structured
    cause; the working tree is left as the last git operation produced it. A
    git timeout fails only the pull request being applied; the next pull
    request's clean-tree check decides whether the run can continue.
    Cancelling the task that drives a session rolls it back like an abort
    before the cancellation propagates.

Example:
    >>> orchestrator = CherryPickOrchestrator(repository, label_updater)
    >>> session = await orchestrator.start(queue, target_branch="main")
    >>> while session.state is SessionState.CONFLICTED:
    ...     session = await orchestrator.resolve(session, ask_operator(session.conflict))
    >>> print(session.state)
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from gh_cherry.engine.label_updater import LabelUpdater
from gh_cherry.engine.session import (
    CherryPickSession,
    CommitApplied,
    CommitConflicted,
    LabelUpdateRecorded,
    PullRequestAbandoned,
    PullRequestSkipped,
    ResolutionAction,
    ResolutionRequested,
    SessionAborted,
    SessionEvent,
    SessionFailed,
    SessionStarted,
    SessionState,
    new_session,
    transition,
)
from gh_cherry.exceptions import (
    AuthenticationLostError,
    DirtyWorkingTreeError,
    GhCherryError,
    GitOperationError,
    GitTimeoutError,
    RepositoryOrBranchNotFoundError,
    WorkflowError,
)
from gh_cherry.git.lock import WorkingTreeLock
from gh_cherry.models.domain import CherryPickOutcome, ConflictKind, PullRequest, PullRequestOutcome
from gh_cherry.providers.base import GitRepository
from gh_cherry.utils.text import short_sha

log = structlog.get_logger(__name__)

# Most specific first
_FAILURE_KINDS: tuple[tuple[type[GhCherryError], str], ...] = (
    (DirtyWorkingTreeError, "dirty_working_tree"),
    (AuthenticationLostError, "authentication_lost"),
    (RepositoryOrBranchNotFoundError, "not_found"),
    (GitTimeoutError, "git_timeout"),
    (GitOperationError, "git_error"),
)


def failure_kind(error: GhCherryError) -> str:
    """Machine-readable failure cause for ``error``."""
    for error_type, kind in _FAILURE_KINDS:
        if isinstance(error, error_type):
            return kind
    return "error"


class CherryPickOrchestrator:
    """Drive cherry-pick sessions.

    Attributes:
        repository: Working tree the commits are applied to.
        label_updater: Flips labels of succeeded pull requests.
        fetch_before_start: Fetch the remote before checking out the target.
    """

    def __init__(
        self,
        repository: GitRepository,
        label_updater: LabelUpdater,
        fetch_before_start: bool = False,
    ) -> None:
        self.repository = repository
        self.label_updater = label_updater
        self.fetch_before_start = fetch_before_start
        self._locks: dict[str, WorkingTreeLock] = {}
        self._latest: dict[str, CherryPickSession] = {}

    async def start(
        self,
        queue: list[PullRequest] | tuple[PullRequest, ...],
        target_branch: str,
        start_point: str | None = None,
        session_id: str | None = None,
    ) -> CherryPickSession:
        """Start a session and drive it until it halts.

        Args:
            queue: Pull requests in the order their commits should be applied.
            target_branch: Branch to apply them to.
            start_point: Ref to create ``target_branch`` from if it does not
                exist yet.
            session_id: Optional identifier; generated when omitted.

        Returns:
            The session, either terminal or ``CONFLICTED``.

        Raises:
            WorkingTreeLockedError: If another session owns the working tree.
            NotGitRepositoryError: If the repository path is not a git clone.
        """
        session = new_session(queue, target_branch, session_id)
        lock = WorkingTreeLock(self.repository.lock_path(), session.session_id)
        lock.acquire()
        self._locks[session.session_id] = lock
        self._latest[session.session_id] = session

        log.info(
            "cherry_pick_session_started",
            session=session.session_id,
            target=target_branch,
            pull_requests=[pr.number for pr in session.queue],
        )

        async def _begin(current: CherryPickSession) -> CherryPickSession:
            if not await self.repository.is_clean():
                return self._advance(
                    current,
                    SessionFailed("dirty_working_tree", "Working tree has uncommitted changes; commit or stash them"),
                )
            original_branch = await self.repository.current_branch()
            if self.fetch_before_start:
                await self.repository.fetch()
            await self.repository.checkout(target_branch, start_point)
            pre_session_ref = await self.repository.head_sha()
            current = self._advance(current, SessionStarted(original_branch, pre_session_ref))
            return await self._drive(current)

        return await self._guarded(session, _begin)

    async def resolve(self, session: CherryPickSession, action: ResolutionAction | str) -> CherryPickSession:
        """Carry out the operator's decision about a conflict.

        Args:
            session: A ``CONFLICTED`` session.
            action: ``continue``, ``skip`` or ``abort``.

        Returns:
            The next halted session: ``CONFLICTED`` again if ``continue``
            found unresolved paths, otherwise whatever driving produced.

        Raises:
            InvalidTransitionError: If the session is not conflicted, or
                ``continue`` was requested for a merge commit.
        """
        action = ResolutionAction(action)
        session = self._advance(session, ResolutionRequested(action))
        log.info("conflict_resolution_requested", session=session.session_id, action=action.value)

        if action is ResolutionAction.ABORT:
            return await self.abort(session)

        async def _resolve(current: CherryPickSession) -> CherryPickSession:
            conflict = current.conflict
            assert conflict is not None

            if action is ResolutionAction.CONTINUE:
                try:
                    outcome = await self.repository.continue_cherry_pick()
                except GitTimeoutError as e:
                    current = self._advance(current, PullRequestAbandoned(PullRequestOutcome.FAILED, str(e)))
                    return await self._drive(current)
                current = self._record_outcome(current, conflict.commit, outcome)
                if current.state is SessionState.CONFLICTED:
                    return current
                return await self._drive(current)

            if conflict.kind is ConflictKind.MERGE_CONFLICT:
                await self.repository.abort_cherry_pick()
            current = self._advance(current, PullRequestSkipped())
            log.info("pull_request_skipped", session=current.session_id, pr=conflict.pull_request)
            return await self._drive(current)

        return await self._guarded(session, _resolve)

    async def abort(self, session: CherryPickSession, detail: str = "Aborted by operator") -> CherryPickSession:
        """Revert everything the session applied and end it.

        The in-progress cherry-pick (if any) is aborted, the target branch is
        reset to the pre-session ref and the original branch is checked out.
        Labels already flipped to completed are not restored; the summary
        reports them.
        """
        return await self._guarded(session, lambda current: self._rollback(current, detail))

    # Driving ----------------------------------------------------------------

    async def _drive(self, session: CherryPickSession) -> CherryPickSession:
        while session.state is SessionState.RUNNING:
            session = await self._step(session)
        return session

    async def _step(self, session: CherryPickSession) -> CherryPickSession:
        if session.label_update_due is not None:
            return await self._update_labels(session)

        pr = session.current_pull_request
        assert pr is not None

        if not pr.commits:
            log.warning("pull_request_has_no_commits", session=session.session_id, pr=pr.number)
            return self._advance(session, PullRequestAbandoned(PullRequestOutcome.SKIPPED, "Pull request has no commits"))

        if session.commit_index == 0 and not await self.repository.is_clean():
            return self._advance(
                session,
                SessionFailed("dirty_working_tree", f"Working tree is dirty before applying #{pr.number}"),
            )

        commit = session.current_commit
        assert commit is not None

        if commit.is_merge:
            log.warning("merge_commit_rejected", session=session.session_id, pr=pr.number, sha=commit.short_sha)
            return self._advance(
                session,
                CommitConflicted(
                    commit.sha,
                    detail=f"{commit.short_sha} is a merge commit and cannot be cherry-picked",
                    kind=ConflictKind.UNSUPPORTED_MERGE_COMMIT,
                ),
            )

        try:
            outcome = await self.repository.apply_cherry_pick(commit.sha)
        except GitTimeoutError as e:
            log.error("pull_request_failed", session=session.session_id, pr=pr.number, error=str(e))
            return self._advance(session, PullRequestAbandoned(PullRequestOutcome.FAILED, str(e)))

        return self._record_outcome(session, commit.sha, outcome)

    def _record_outcome(self, session: CherryPickSession, sha: str, outcome: CherryPickOutcome) -> CherryPickSession:
        if outcome.applied:
            return self._advance(session, CommitApplied(sha, outcome.new_sha))
        log.warning(
            "cherry_pick_halted_on_conflict",
            session=session.session_id,
            sha=short_sha(sha),
            paths=list(outcome.paths),
        )
        return self._advance(session, CommitConflicted(sha, outcome.paths, outcome.detail))

    async def _update_labels(self, session: CherryPickSession) -> CherryPickSession:
        number = session.label_update_due
        assert number is not None
        pr = next(p for p in session.queue if p.number == number)
        result = session.result_for(number)
        created = result.created_commits if result else ()

        outcome, updated = await self.label_updater.update(pr, session.target_branch, created)
        return self._advance(
            session,
            LabelUpdateRecorded(number, outcome, updated if outcome.succeeded else None),
        )

    async def _rollback(self, session: CherryPickSession, detail: str) -> CherryPickSession:
        await self.repository.abort_cherry_pick()
        if session.pre_session_ref is not None:
            await self.repository.reset_to_ref(session.pre_session_ref)
            if session.original_branch and session.original_branch != session.target_branch:
                await self.repository.checkout(session.original_branch)
        session = self._advance(session, SessionAborted(detail))
        log.info(
            "cherry_pick_session_aborted",
            session=session.session_id,
            reverted=[short_sha(sha) for sha in session.reverted_commits],
        )
        return session

    # Bookkeeping ------------------------------------------------------------

    def _advance(self, session: CherryPickSession, event: SessionEvent) -> CherryPickSession:
        session = transition(session, event)
        self._latest[session.session_id] = session
        return session

    async def _guarded(
        self,
        session: CherryPickSession,
        effect: Callable[[CherryPickSession], Awaitable[CherryPickSession]],
    ) -> CherryPickSession:
        """Run ``effect``, turning fatal errors into ``FAILED`` and releasing the lock at the end."""
        self._latest[session.session_id] = session
        try:
            result = await effect(session)
        except asyncio.CancelledError:
            latest = self._latest.get(session.session_id, session)
            log.warning("cherry_pick_session_cancelled", session=session.session_id)
            if not latest.is_terminal:
                try:
                    await asyncio.shield(self._rollback(latest, "Cancelled"))
                except GhCherryError as e:
                    log.error("cancel_rollback_failed", session=session.session_id, error=str(e))
            self._finish(self._latest.get(session.session_id, latest), force=True)
            raise
        except WorkflowError:
            self._finish(self._latest.get(session.session_id, session), force=True)
            raise
        except GhCherryError as e:
            latest = self._latest.get(session.session_id, session)
            log.error(
                "cherry_pick_session_failed",
                session=session.session_id,
                kind=failure_kind(e),
                error=str(e),
            )
            if latest.is_terminal:
                result = latest
            else:
                result = self._advance(latest, SessionFailed(failure_kind(e), str(e)))
        except Exception:
            log.error("cherry_pick_session_crashed", session=session.session_id, exc_info=True)
            self._finish(self._latest.get(session.session_id, session), force=True)
            raise
        return self._finish(result)

    def _finish(self, session: CherryPickSession, force: bool = False) -> CherryPickSession:
        if session.is_terminal or force:
            lock = self._locks.pop(session.session_id, None)
            if lock is not None:
                lock.release()
            self._latest.pop(session.session_id, None)
            if session.is_terminal:
                log.info(
                    "cherry_pick_session_finished",
                    session=session.session_id,
                    state=session.state.value,
                    applied=len(session.applied_commits),
                )
        return session


def describe_conflict(session: CherryPickSession) -> dict[str, Any]:
    """Key facts about a conflicted session, for prompts and logs."""
    conflict = session.conflict
    pr = session.current_pull_request
    if conflict is None or pr is None:
        return {}
    return {
        "pr": pr.number,
        "title": pr.title,
        "commit": short_sha(conflict.commit),
        "position": f"{session.commit_index + 1}/{len(pr.commits)}",
        "paths": list(conflict.paths),
        "kind": conflict.kind.value,
        "detail": conflict.detail,
    }
