"""
Abstract base classes for providers.

This module defines the two capability interfaces the orchestration engine is
written against:

* ``CodeHostProvider``: the code host's API (pull requests, commits, labels,
  accessible owners and repositories).
* ``GitRepository``: the local working tree the commits are applied to.

The engine never talks to PyGithub or GitPython directly, so both can be
replaced by fakes in tests.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from gh_cherry.models.domain import CherryPickOutcome, CommitRef, PullRequest, RepositoryCandidate


class CodeHostProvider(ABC):
    """Abstract base class for code host implementations.

    Implementations translate host-specific failures into the gh-cherry
    exception hierarchy:

    - Rejected credentials raise ``AuthenticationLostError``.
    - Timeouts, connection resets, 5xx responses and rate limits raise
      ``NetworkTransientError`` so callers can retry them.
    - Unknown repositories or pull requests raise
      ``RepositoryOrBranchNotFoundError``.

    All methods are async; implementations backed by a synchronous client run
    their calls in a worker thread.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Create the API client.

        Does not select a repository; see ``use_repository``.
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Release the API client. Safe to call when not connected."""
        pass

    @abstractmethod
    async def use_repository(self, owner: str, repo: str) -> None:
        """Select the repository that pull request operations apply to.

        Args:
            owner: User or organization login.
            repo: Repository name.

        Raises:
            RepositoryOrBranchNotFoundError: If the repository does not exist
                or is not visible with the current credentials.
        """
        pass

    @abstractmethod
    async def get_authenticated_identity(self) -> str:
        """Return the login the credentials belong to.

        Raises:
            AuthenticationLostError: If the credentials are rejected.
        """
        pass

    @abstractmethod
    async def list_accessible_owners(self) -> list[str]:
        """List owners the credentials can see repositories of.

        Returns:
            The authenticated login followed by the organizations it belongs
            to, without duplicates.
        """
        pass

    @abstractmethod
    async def list_repositories(self, owner: str) -> list[RepositoryCandidate]:
        """List repositories belonging to ``owner``.

        Args:
            owner: Login returned by ``list_accessible_owners``.

        Returns:
            Candidates whose owner is exactly ``owner``. Repositories the
            credentials can see through other owners are excluded.
        """
        pass

    @abstractmethod
    async def list_pull_requests(self, branch: str, since: datetime | None = None) -> list[PullRequest]:
        """List pull requests targeting ``branch``.

        Args:
            branch: Base branch the pull requests were opened against.
            since: Only pull requests updated at or after this moment. None
                means no lower bound.

        Returns:
            Pull requests in any state, with labels but without commits
            (see ``list_commits``).
        """
        pass

    @abstractmethod
    async def list_commits(self, number: int) -> list[CommitRef]:
        """List the commits of a pull request, oldest first."""
        pass

    @abstractmethod
    async def list_labels(self, number: int) -> list[str]:
        """Return the current labels of a pull request."""
        pass

    @abstractmethod
    async def set_labels(self, number: int, add: list[str], remove: list[str]) -> list[str]:
        """Remove then add labels on a pull request.

        Removing a label the pull request does not carry and adding one it
        already carries are both no-ops, so a retried call converges to the
        same label set.

        Args:
            number: Pull request number.
            add: Labels to add.
            remove: Labels to remove.

        Returns:
            The label set after the update.

        Raises:
            LabelUpdateError: If the host refuses the change.
            NetworkTransientError: On retryable failures.
            AuthenticationLostError: If the credentials are rejected.
        """
        pass

    @abstractmethod
    async def add_comment(self, number: int, body: str) -> None:
        """Post a comment on a pull request."""
        pass


class GitRepository(ABC):
    """Abstract base class for the local git working tree.

    Conflicts are not errors: ``apply_cherry_pick`` and ``continue_cherry_pick``
    report them through ``CherryPickOutcome``. Exceptions are reserved for
    conditions the session cannot resolve interactively:

    - ``RepositoryOrBranchNotFoundError`` for missing branches or commits
    - ``GitTimeoutError`` when a command exceeds the operation timeout
    - ``GitOperationError`` for any other git failure
    """

    @abstractmethod
    async def current_branch(self) -> str | None:
        """Return the checked-out branch, or None for a detached HEAD."""
        pass

    @abstractmethod
    async def head_sha(self) -> str:
        """Return the full hash HEAD points to."""
        pass

    @abstractmethod
    async def is_clean(self) -> bool:
        """True when there are no staged, unstaged or untracked changes."""
        pass

    @abstractmethod
    async def checkout(self, branch: str, start_point: str | None = None) -> None:
        """Check out ``branch``.

        Args:
            branch: Local branch to check out.
            start_point: Ref to create the branch from when it does not exist
                locally. Without it, a remote-tracking branch of the same name
                is used.

        Raises:
            RepositoryOrBranchNotFoundError: If the branch exists neither
                locally nor remotely and no usable start point was given.
        """
        pass

    @abstractmethod
    async def apply_cherry_pick(self, sha: str) -> CherryPickOutcome:
        """Cherry-pick one commit onto the checked-out branch.

        Returns:
            ``applied=True`` with the new hash, or ``applied=False`` with the
            conflicted paths. On conflict the cherry-pick is left in progress.

        Raises:
            RepositoryOrBranchNotFoundError: If the commit is unknown locally.
        """
        pass

    @abstractmethod
    async def continue_cherry_pick(self) -> CherryPickOutcome:
        """Commit the in-progress cherry-pick once the operator resolved it.

        Returns:
            ``applied=False`` with the remaining unmerged paths if any are
            left; otherwise ``applied=True`` with the new hash.
        """
        pass

    @abstractmethod
    async def abort_cherry_pick(self) -> None:
        """Abort the in-progress cherry-pick. No-op when none is in progress."""
        pass

    @abstractmethod
    async def reset_to_ref(self, ref: str) -> None:
        """Hard-reset the checked-out branch to ``ref``."""
        pass

    @abstractmethod
    async def fetch(self) -> None:
        """Fetch from the configured remote."""
        pass

    @abstractmethod
    def lock_path(self) -> Path:
        """Location of the working-tree lock file for this repository."""
        pass
