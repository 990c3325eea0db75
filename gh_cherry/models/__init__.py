"""Core domain models for gh-cherry.

Key Models:
    - PullRequest: Pull request with its ordered commits and labels
    - CommitRef: Commit recorded on a pull request
    - ConflictState: Where and why a session halted
    - CherryPickOutcome: Result of a single cherry-pick
    - RepositoryCandidate: Repository offered during auto-discovery
    - PullRequestResult: Per pull request session result

Example:
    >>> from gh_cherry.models import CommitRef, PullRequest
    >>> pr = PullRequest(number=42, title="Fix login", commits=(CommitRef("0a1b2c3d"),))
"""

from gh_cherry.models.domain import (
    CherryPickOutcome,
    CommitRef,
    ConflictKind,
    ConflictState,
    LabelUpdateOutcome,
    LabelUpdateStatus,
    PullRequest,
    PullRequestOutcome,
    PullRequestResult,
    RepositoryCandidate,
)

__all__ = [
    "CherryPickOutcome",
    "CommitRef",
    "ConflictKind",
    "ConflictState",
    "LabelUpdateOutcome",
    "LabelUpdateStatus",
    "PullRequest",
    "PullRequestOutcome",
    "PullRequestResult",
    "RepositoryCandidate",
]
