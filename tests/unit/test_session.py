"""Tests for gh_cherry/engine/session.py - pure session state machine."""

import pytest

from gh_cherry.engine.session import (
    CommitApplied,
    CommitConflicted,
    LabelUpdateRecorded,
    PullRequestAbandoned,
    PullRequestSkipped,
    ResolutionAction,
    ResolutionRequested,
    SessionAborted,
    SessionFailed,
    SessionStarted,
    SessionState,
    new_session,
    transition,
)
from gh_cherry.exceptions import InvalidTransitionError
from gh_cherry.models.domain import (
    ConflictKind,
    LabelUpdateOutcome,
    LabelUpdateStatus,
    PullRequestOutcome,
)

UPDATED = LabelUpdateOutcome(status=LabelUpdateStatus.UPDATED, attempts=1)


@pytest.fixture
def queue(pr_factory):
    """Two pull requests: #1 with commits a1, a2 and #2 with commit b1."""
    return [pr_factory(1, ["a1", "a2"]), pr_factory(2, ["b1"])]


@pytest.fixture
def running(queue):
    """Session that has started on ``main``."""
    session = new_session(queue, "main", session_id="sess0001")
    return transition(session, SessionStarted("develop", "base"))


def _run_first_pr(session):
    session = transition(session, CommitApplied("a1", "n1"))
    return transition(session, CommitApplied("a2", "n2"))


class TestNewSession:
    def test_idle_with_generated_id(self, queue):
        """Should start IDLE with an 8 character id."""
        session = new_session(queue, "main")

        assert session.state is SessionState.IDLE
        assert len(session.session_id) == 8
        assert session.queue == tuple(queue)
        assert session.applied_commits == ()

    def test_started_records_refs(self, running):
        """Should record the original branch and pre-session ref."""
        assert running.state is SessionState.RUNNING
        assert running.original_branch == "develop"
        assert running.pre_session_ref == "base"
        assert running.current_commit.sha == "a1"

    def test_empty_queue_finishes_immediately(self):
        """Should go straight to DONE when there is nothing to apply."""
        session = transition(new_session([], "main"), SessionStarted("develop", "base"))

        assert session.state is SessionState.DONE
        assert session.results == ()

    def test_start_twice_rejected(self, running):
        """Should refuse a second SessionStarted."""
        with pytest.raises(InvalidTransitionError, match="SessionStarted"):
            transition(running, SessionStarted("develop", "base"))


class TestCommitApplied:
    def test_applies_in_order(self, running):
        """Should advance to the next commit of the same pull request."""
        session = transition(running, CommitApplied("a1", "n1"))

        assert session.state is SessionState.RUNNING
        assert session.applied_commits == ("a1",)
        assert session.created_commits == ("n1",)
        assert session.current_commit.sha == "a2"
        assert session.results == ()

    def test_out_of_order_rejected(self, running):
        """Should refuse to apply a commit that is not the current one."""
        with pytest.raises(InvalidTransitionError, match="expected commit a1"):
            transition(running, CommitApplied("a2", "n2"))

    def test_last_commit_records_success_and_label_due(self, running):
        """Should record SUCCEEDED and require a label update before moving on."""
        session = _run_first_pr(running)

        assert session.state is SessionState.RUNNING
        assert session.label_update_due == 1
        result = session.result_for(1)
        assert result.outcome is PullRequestOutcome.SUCCEEDED
        assert result.applied_commits == ("a1", "a2")
        assert result.created_commits == ("n1", "n2")
        assert result.label_update.status is LabelUpdateStatus.NOT_ATTEMPTED

    def test_next_pr_blocked_until_label_recorded(self, running):
        """Should refuse the next pull request's commit while a label update is due."""
        session = _run_first_pr(running)

        with pytest.raises(InvalidTransitionError, match="label update for #1"):
            transition(session, CommitApplied("b1", "n3"))

    def test_empty_pick_counts_as_applied(self, running):
        """Should count a commit with no created hash as applied."""
        session = transition(running, CommitApplied("a1", None))

        assert session.applied_commits == ("a1",)
        assert session.created_commits == ()


class TestLabelUpdateRecorded:
    def test_records_outcome_and_settles(self, running, rules):
        """Should store the label outcome and finish when the queue is empty."""
        session = _run_first_pr(running)
        updated_pr = session.queue[0].with_labels(["S28", "DEV", "cherry picked"], rules)
        session = transition(session, LabelUpdateRecorded(1, UPDATED, updated_pr))
        session = transition(session, CommitApplied("b1", "n3"))
        session = transition(session, LabelUpdateRecorded(2, UPDATED))

        assert session.state is SessionState.DONE
        assert session.queue[0].labels == ("S28", "DEV", "cherry picked")
        assert all(r.label_update.succeeded for r in session.results)
        assert session.applied_commits == ("a1", "a2", "b1")

    def test_second_record_rejected(self, running):
        """Should refuse to record a label update twice for one pull request."""
        session = transition(_run_first_pr(running), LabelUpdateRecorded(1, UPDATED))

        with pytest.raises(InvalidTransitionError, match="no label update due for #1"):
            transition(session, LabelUpdateRecorded(1, UPDATED))

    def test_failed_update_keeps_success(self, running):
        """Should keep SUCCEEDED and report labels pending after a failed update."""
        failed = LabelUpdateOutcome(status=LabelUpdateStatus.FAILED, attempts=3, error="HTTP 502")
        session = transition(_run_first_pr(running), LabelUpdateRecorded(1, failed))

        result = session.result_for(1)
        assert result.outcome is PullRequestOutcome.SUCCEEDED
        assert result.git_applied_labels_pending is True


class TestConflicts:
    def test_conflict_halts(self, running):
        """Should move to CONFLICTED with the conflict recorded."""
        session = transition(running, CommitConflicted("a1", ("app.py",), "CONFLICT"))

        assert session.state is SessionState.CONFLICTED
        assert session.conflict.pull_request == 1
        assert session.conflict.commit == "a1"
        assert session.conflict.paths == ("app.py",)

    def test_no_progress_while_conflicted(self, running):
        """Should refuse to apply anything while a conflict is unresolved."""
        session = transition(running, CommitConflicted("a1", ("app.py",)))

        with pytest.raises(InvalidTransitionError):
            transition(session, CommitApplied("a1", "n1"))

    def test_continue_applies_conflicted_commit(self, running):
        """Should accept the conflicted commit after a continue request."""
        session = transition(running, CommitConflicted("a1", ("app.py",)))
        session = transition(session, ResolutionRequested(ResolutionAction.CONTINUE))
        assert session.state is SessionState.RESOLVING

        session = transition(session, CommitApplied("a1", "n1"))

        assert session.state is SessionState.RUNNING
        assert session.conflict is None
        assert session.current_commit.sha == "a2"

    def test_continue_can_conflict_again(self, running):
        """Should return to CONFLICTED when paths remain unresolved."""
        session = transition(running, CommitConflicted("a1", ("app.py",)))
        session = transition(session, ResolutionRequested(ResolutionAction.CONTINUE))
        session = transition(session, CommitConflicted("a1", ("app.py",), "still unmerged"))

        assert session.state is SessionState.CONFLICTED
        assert session.conflict.detail == "still unmerged"

    def test_skip_after_partial_apply(self, running):
        """Should record PARTIALLY_FAILED when some commits already landed."""
        session = transition(running, CommitApplied("a1", "n1"))
        session = transition(session, CommitConflicted("a2", ("app.py",)))
        session = transition(session, ResolutionRequested(ResolutionAction.SKIP))
        session = transition(session, PullRequestSkipped())

        result = session.result_for(1)
        assert result.outcome is PullRequestOutcome.PARTIALLY_FAILED
        assert result.applied_commits == ("a1",)
        assert result.stopped_at == "a2"
        assert "app.py" in result.detail
        assert session.state is SessionState.RUNNING
        assert session.current_commit.sha == "b1"
        assert session.label_update_due is None

    def test_skip_without_applied_commits(self, running):
        """Should record SKIPPED when nothing of the pull request landed."""
        session = transition(running, CommitConflicted("a1", ("app.py",)))
        session = transition(session, ResolutionRequested(ResolutionAction.SKIP))
        session = transition(session, PullRequestSkipped())

        assert session.result_for(1).outcome is PullRequestOutcome.SKIPPED

    def test_skip_without_request_rejected(self, running):
        """Should refuse a skip event that was not requested."""
        session = transition(running, CommitConflicted("a1", ("app.py",)))
        session = transition(session, ResolutionRequested(ResolutionAction.CONTINUE))

        with pytest.raises(InvalidTransitionError, match="no skip was requested"):
            transition(session, PullRequestSkipped())

    def test_merge_commit_cannot_continue(self, running):
        """Should refuse continue for a merge-commit conflict."""
        session = transition(
            running,
            CommitConflicted("a1", detail="merge", kind=ConflictKind.UNSUPPORTED_MERGE_COMMIT),
        )

        with pytest.raises(InvalidTransitionError, match="merge commits cannot be continued"):
            transition(session, ResolutionRequested(ResolutionAction.CONTINUE))

    def test_resolution_outside_conflict_rejected(self, running):
        """Should refuse a resolution request when nothing is conflicted."""
        with pytest.raises(InvalidTransitionError, match="ResolutionRequested in state running"):
            transition(running, ResolutionRequested(ResolutionAction.SKIP))


class TestAbort:
    def test_abort_reverts_everything(self, running):
        """Should move applied commits to reverted and mark results ABORTED."""
        session = transition(_run_first_pr(running), LabelUpdateRecorded(1, UPDATED))
        session = transition(session, CommitConflicted("b1", ("app.py",)))
        session = transition(session, SessionAborted())

        assert session.state is SessionState.ABORTED
        assert session.applied_commits == ()
        assert session.created_commits == ()
        assert session.reverted_commits == ("a1", "a2")
        assert session.result_for(1).outcome is PullRequestOutcome.ABORTED
        assert session.result_for(1).labels_diverged is True
        assert session.result_for(2).outcome is PullRequestOutcome.ABORTED
        assert session.result_for(2).stopped_at == "b1"

    def test_abort_marks_unstarted_not_attempted(self, running):
        """Should mark pull requests that never started as NOT_ATTEMPTED."""
        session = transition(running, CommitConflicted("a1", ("x",)))
        session = transition(session, SessionAborted())

        assert session.result_for(1).outcome is PullRequestOutcome.ABORTED
        assert session.result_for(2).outcome is PullRequestOutcome.NOT_ATTEMPTED

    def test_nothing_after_terminal(self, running):
        """Should refuse any event once the session is terminal."""
        session = transition(running, SessionAborted())

        with pytest.raises(InvalidTransitionError, match="session already finished"):
            transition(session, CommitApplied("a1"))


class TestFailure:
    def test_failure_marks_current_and_rest(self, running):
        """Should fail the current pull request and mark the rest NOT_ATTEMPTED."""
        session = transition(running, CommitApplied("a1", "n1"))
        session = transition(session, SessionFailed("authentication_lost", "token revoked"))

        assert session.state is SessionState.FAILED
        assert session.cause.kind == "authentication_lost"
        assert session.applied_commits == ("a1",)
        result = session.result_for(1)
        assert result.outcome is PullRequestOutcome.FAILED
        assert result.applied_commits == ("a1",)
        assert result.stopped_at == "a2"
        assert session.result_for(2).outcome is PullRequestOutcome.NOT_ATTEMPTED

    def test_failure_during_label_update(self, running):
        """Should keep the succeeded result and record the label failure."""
        session = transition(_run_first_pr(running), SessionFailed("authentication_lost", "401"))

        result = session.result_for(1)
        assert result.outcome is PullRequestOutcome.SUCCEEDED
        assert result.label_update.status is LabelUpdateStatus.FAILED
        assert result.git_applied_labels_pending is True
        assert session.result_for(2).outcome is PullRequestOutcome.NOT_ATTEMPTED

    def test_failure_before_start(self, queue):
        """Should mark every pull request NOT_ATTEMPTED when failing from IDLE."""
        session = transition(new_session(queue, "main"), SessionFailed("dirty_working_tree", "dirty"))

        assert session.state is SessionState.FAILED
        assert [r.outcome for r in session.results] == [PullRequestOutcome.NOT_ATTEMPTED] * 2


class TestAbandoned:
    def test_timeout_fails_only_current(self, running):
        """Should record FAILED for the current pull request and keep running."""
        session = transition(running, PullRequestAbandoned(PullRequestOutcome.FAILED, "git timed out"))

        assert session.state is SessionState.RUNNING
        assert session.result_for(1).outcome is PullRequestOutcome.FAILED
        assert session.result_for(1).stopped_at == "a1"
        assert session.current_commit.sha == "b1"

    def test_abandon_while_label_due_rejected(self, running):
        """Should refuse to abandon while a label update is due."""
        session = _run_first_pr(running)

        with pytest.raises(InvalidTransitionError):
            transition(session, PullRequestAbandoned(PullRequestOutcome.SKIPPED))
