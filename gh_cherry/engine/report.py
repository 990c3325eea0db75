"""Human-readable summaries of finished (or halted) sessions."""

from gh_cherry.engine.session import CherryPickSession, SessionState
from gh_cherry.models.domain import LabelUpdateStatus, PullRequestOutcome, PullRequestResult
from gh_cherry.utils.text import short_sha

_HEADLINES = {
    SessionState.DONE: "Cherry-pick session finished",
    SessionState.ABORTED: "Cherry-pick session aborted; target branch reset",
    SessionState.FAILED: "Cherry-pick session failed",
    SessionState.CONFLICTED: "Cherry-pick session halted on a conflict",
}


def describe_result(result: PullRequestResult) -> str:
    """One line describing a pull request's result."""
    head = f"#{result.number} {result.title}"
    applied = len(result.applied_commits)

    if result.outcome is PullRequestOutcome.SUCCEEDED:
        if result.label_update.status is LabelUpdateStatus.UPDATED:
            return f"{head}: applied {applied} commit(s), labels updated"
        reason = f" ({result.label_update.error})" if result.label_update.error else ""
        return f"{head}: applied {applied} commit(s), labels still pending{reason}"

    if result.outcome is PullRequestOutcome.PARTIALLY_FAILED:
        stop = short_sha(result.stopped_at) if result.stopped_at else "?"
        return f"{head}: partially applied ({applied} commit(s)), stopped at {stop}"

    if result.outcome is PullRequestOutcome.ABORTED:
        line = f"{head}: reverted by abort ({applied} commit(s))"
        if result.labels_diverged:
            line += "; labels already say completed, fix them by hand"
        return line

    detail = f": {result.detail}" if result.detail else ""
    return f"{head}: {result.outcome.value.replace('_', ' ')}{detail}"


def summarize(session: CherryPickSession) -> str:
    """Multi-line summary: headline, cause, then one line per pull request."""
    lines = [f"{_HEADLINES.get(session.state, 'Cherry-pick session')} (session {session.session_id})"]
    if session.cause is not None:
        lines.append(f"Cause: {session.cause.message}")

    for result in session.results:
        lines.append(f"  {describe_result(result)}")

    pending_labels = [r.number for r in session.results if r.git_applied_labels_pending]
    if pending_labels:
        numbers = ", ".join(f"#{n}" for n in pending_labels)
        lines.append(f"Commits applied but labels pending for {numbers}; update them manually or re-run.")

    diverged = [r.number for r in session.results if r.labels_diverged]
    if diverged:
        numbers = ", ".join(f"#{n}" for n in diverged)
        lines.append(f"Labels were flipped for {numbers} but their commits were reverted.")

    if session.state is SessionState.FAILED:
        lines.append("The working tree was left as the last git operation produced it.")

    return "\n".join(lines)
