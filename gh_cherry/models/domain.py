"""
Domain models for gh-cherry.

This module contains the data classes and enums the orchestration engine works
with. They are the normalized internal representation, converted from the
code host's API objects (``gh_cherry.providers.github_rest``) and from git
command results (``gh_cherry.git.repository``).

Pull requests and commits are immutable values: they are fetched fresh for
every invocation and never mutated in place. The only "change" a pull request
ever sees is a confirmed remote label update, represented by a new value from
``PullRequest.with_labels``.

Example:
    Building a pull request from API data::

        pr = PullRequest(
            number=42,
            title="Fix login redirect",
            source_branch="feature/login",
            commits=(CommitRef(sha="0a1b2c3d4e5f", summary="Fix redirect"),),
            labels=("S28", "DEV", "pending cherrypick"),
        )
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from gh_cherry.utils.text import short_sha

if TYPE_CHECKING:
    from gh_cherry.engine.filters import TagRules


@dataclass(frozen=True)
class CommitRef:
    """A commit recorded on a pull request.

    Attributes:
        sha: Full commit hash.
        summary: First line of the commit message.
        parent_count: Number of parents. Merge commits (more than one parent)
            cannot be cherry-picked without choosing a mainline and are
            rejected by the session before any git command runs.
    """

    sha: str
    summary: str = ""
    parent_count: int = 1

    @property
    def short_sha(self) -> str:
        return short_sha(self.sha)

    @property
    def is_merge(self) -> bool:
        return self.parent_count > 1


@dataclass(frozen=True)
class PullRequest:
    """A pull request as seen by the orchestration engine.

    ``commits`` is ordered oldest first, the order in which commits must be
    replayed. ``matched_tags`` is the subset of ``labels`` that satisfied the
    discovery filter; it is recomputed by ``with_labels`` whenever the label
    set changes and never carried over stale.
    """

    number: int
    title: str
    source_branch: str = ""
    commits: tuple[CommitRef, ...] = ()
    labels: tuple[str, ...] = ()
    matched_tags: tuple[str, ...] = ()
    author: str = ""
    updated_at: datetime | None = None
    created_at: datetime | None = None
    url: str = ""

    def with_labels(self, labels: tuple[str, ...] | list[str], rules: TagRules) -> PullRequest:
        """Return a copy carrying ``labels`` and freshly computed matched tags."""
        from gh_cherry.engine.filters import evaluate

        new_labels = tuple(labels)
        return replace(self, labels=new_labels, matched_tags=evaluate(new_labels, rules).matched_tags)

    def with_commits(self, commits: tuple[CommitRef, ...] | list[CommitRef]) -> PullRequest:
        return replace(self, commits=tuple(commits))


class ConflictKind(str, Enum):
    """Why a session stopped at a commit."""

    MERGE_CONFLICT = "merge_conflict"
    """Git could not apply the commit cleanly."""

    UNSUPPORTED_MERGE_COMMIT = "unsupported_merge_commit"
    """The commit has several parents and was never attempted."""


@dataclass(frozen=True)
class ConflictState:
    """Where and why a session is halted.

    Exists only while the session is ``CONFLICTED`` or ``RESOLVING``; it is
    discarded as soon as the conflict is resolved, skipped or aborted.
    """

    pull_request: int
    commit: str
    paths: tuple[str, ...] = ()
    detail: str = ""
    kind: ConflictKind = ConflictKind.MERGE_CONFLICT

    @property
    def resolvable_in_place(self) -> bool:
        """Whether ``continue`` can ever succeed for this conflict."""
        return self.kind is ConflictKind.MERGE_CONFLICT


@dataclass(frozen=True)
class CherryPickOutcome:
    """Result of applying (or continuing) a single cherry-pick.

    Attributes:
        applied: True when the commit landed on the branch.
        new_sha: Hash of the commit created on the target branch. None when
            the change was already present and git produced nothing.
        paths: Conflicted paths when ``applied`` is False.
        detail: Free-form text reported by git.
        empty: True when the commit was already present on the branch.
    """

    applied: bool
    new_sha: str | None = None
    paths: tuple[str, ...] = ()
    detail: str = ""
    empty: bool = False

    @classmethod
    def success(cls, new_sha: str | None, empty: bool = False) -> CherryPickOutcome:
        return cls(applied=True, new_sha=new_sha, empty=empty)

    @classmethod
    def conflict(cls, paths: list[str] | tuple[str, ...], detail: str = "") -> CherryPickOutcome:
        return cls(applied=False, paths=tuple(paths), detail=detail)


@dataclass(frozen=True)
class RepositoryCandidate:
    """A repository offered during auto-discovery."""

    name: str
    owner: str
    visibility: str = "public"
    default_branch: str = "main"
    fork: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class PullRequestOutcome(str, Enum):
    """Final outcome of one pull request within a session."""

    SUCCEEDED = "succeeded"
    """Every commit applied."""

    PARTIALLY_FAILED = "partially_failed"
    """Some commits applied, then the operator skipped the rest."""

    SKIPPED = "skipped"
    """Nothing applied; the operator skipped it or it had no commits."""

    ABORTED = "aborted"
    """Reverted by a session-wide abort."""

    FAILED = "failed"
    """A fatal error or git timeout struck while applying it."""

    NOT_ATTEMPTED = "not_attempted"
    """Queued behind a pull request that ended the session."""


class LabelUpdateStatus(str, Enum):
    NOT_ATTEMPTED = "not_attempted"
    UPDATED = "updated"
    FAILED = "failed"


@dataclass(frozen=True)
class LabelUpdateOutcome:
    """What happened when the pending→completed label flip was attempted."""

    status: LabelUpdateStatus = LabelUpdateStatus.NOT_ATTEMPTED
    attempts: int = 0
    error: str | None = None
    labels: tuple[str, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status is LabelUpdateStatus.UPDATED


@dataclass(frozen=True)
class PullRequestResult:
    """Structured per pull request result reported to the CLI.

    Attributes:
        number: Pull request number.
        title: Pull request title.
        outcome: Final outcome.
        applied_commits: Source hashes that were applied, in order.
        stopped_at: Source hash of the commit where application stopped.
        label_update: Outcome of the label update.
        detail: Human readable reason for anything but success.
        created_commits: Hashes created on the target branch.
    """

    number: int
    title: str
    outcome: PullRequestOutcome
    applied_commits: tuple[str, ...] = ()
    stopped_at: str | None = None
    label_update: LabelUpdateOutcome = field(default_factory=LabelUpdateOutcome)
    detail: str = ""
    created_commits: tuple[str, ...] = ()

    @property
    def git_applied_labels_pending(self) -> bool:
        """Commits are on the branch but the labels still say pending."""
        return self.outcome is PullRequestOutcome.SUCCEEDED and not self.label_update.succeeded

    @property
    def labels_diverged(self) -> bool:
        """Labels say completed although the commits were reverted."""
        return self.outcome is PullRequestOutcome.ABORTED and self.label_update.succeeded
