"""GitHub provider implementation using PyGithub and REST API."""

import asyncio
from collections.abc import Callable
from datetime import datetime, timezone
from typing import TypeVar

import requests
import structlog
from github import Auth, Github, GithubException  # type: ignore[import-not-found]
from github.Commit import Commit as GHCommit  # type: ignore[import-not-found]
from github.PullRequest import PullRequest as GHPullRequest  # type: ignore[import-not-found]
from github.Repository import Repository as GHRepository  # type: ignore[import-not-found]

from gh_cherry.exceptions import (
    AuthenticationLostError,
    ConfigurationError,
    ExternalServiceError,
    LabelUpdateError,
    NetworkTransientError,
    RepositoryOrBranchNotFoundError,
)
from gh_cherry.models.domain import CommitRef, PullRequest, RepositoryCandidate
from gh_cherry.providers.base import CodeHostProvider

log = structlog.get_logger(__name__)

T = TypeVar("T")


async def _run_sync(func: Callable[[], T]) -> T:
    """Run a synchronous function in a thread pool.

    This prevents blocking the event loop when calling synchronous
    PyGithub methods.
    """
    return await asyncio.to_thread(func)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def translate_github_error(
    error: Exception,
    operation: str,
    default: type[ExternalServiceError] = ExternalServiceError,
) -> Exception:
    """Map a PyGithub or transport failure onto the gh-cherry hierarchy.

    Args:
        error: The exception raised by PyGithub or requests.
        operation: Short description used in the message.
        default: Exception type for client errors without a specific mapping.

    Returns:
        The exception to raise in place of ``error``.
    """
    if isinstance(error, (requests.ConnectionError, requests.Timeout)):
        return NetworkTransientError(f"{operation}: {error}")

    if not isinstance(error, GithubException):
        return default(f"{operation}: {error}")

    status = error.status
    message = str(error.data.get("message", "")) if isinstance(error.data, dict) else ""
    message = message or str(error)

    if status == 401:
        return AuthenticationLostError(f"{operation}: GitHub rejected the token ({message})")
    if status == 403 and "rate limit" in message.lower():
        return NetworkTransientError(f"{operation}: rate limited ({message})", status)
    if status == 429 or (status is not None and status >= 500):
        return NetworkTransientError(f"{operation}: {message}", status)
    if status == 404:
        return RepositoryOrBranchNotFoundError(f"{operation}: not found ({message})")
    return default(f"{operation}: {message}", status)


class GitHubRestProvider(CodeHostProvider):
    """GitHub implementation using PyGithub library."""

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        page_size: int = 20,
        owner: str | None = None,
        repo: str | None = None,
    ):
        """Initialize GitHub provider.

        Args:
            token: GitHub personal access token, or one issued by ``gh auth token``
            base_url: GitHub API base URL (for GitHub Enterprise)
            page_size: Items requested per API page
            owner: Repository owner, if already known
            repo: Repository name, if already known
        """
        self.token = token.strip() if token else token
        # Normalize base_url by removing trailing slash
        self.base_url = base_url.rstrip("/")
        self.page_size = page_size
        self.owner = owner
        self.repo = repo
        self._client: Github | None = None
        self._repo: GHRepository | None = None

    async def _call(
        self,
        operation: str,
        func: Callable[[], T],
        default: type[ExternalServiceError] = ExternalServiceError,
    ) -> T:
        try:
            return await _run_sync(func)
        except (GithubException, requests.ConnectionError, requests.Timeout) as e:
            translated = translate_github_error(e, operation, default)
            log.error("github_call_failed", operation=operation, error=str(translated))
            raise translated from e

    def _require_client(self) -> Github:
        if self._client is None:
            raise ConfigurationError("GitHub provider is not connected")
        return self._client

    def _require_repo(self) -> GHRepository:
        if self._repo is None:
            raise ConfigurationError("No repository selected")
        return self._repo

    async def connect(self) -> None:
        """Initialize GitHub client."""
        self._client = Github(auth=Auth.Token(self.token), base_url=self.base_url, per_page=self.page_size)
        log.info("github_connected", base_url=self.base_url)
        if self.owner and self.repo:
            await self.use_repository(self.owner, self.repo)

    async def disconnect(self) -> None:
        """Close GitHub client."""
        if self._client:
            await _run_sync(self._client.close)
            self._client = None
            self._repo = None

    async def use_repository(self, owner: str, repo: str) -> None:
        client = self._require_client()
        self._repo = await self._call(
            f"get repository {owner}/{repo}",
            lambda: client.get_repo(f"{owner}/{repo}"),
        )
        self.owner = owner
        self.repo = repo
        log.info("github_repository_selected", owner=owner, repo=repo)

    async def get_authenticated_identity(self) -> str:
        client = self._require_client()
        return await self._call("get authenticated user", lambda: client.get_user().login)

    async def list_accessible_owners(self) -> list[str]:
        """Authenticated login first, then organizations in API order."""
        client = self._require_client()

        def _owners() -> list[str]:
            user = client.get_user()
            owners = [user.login]
            for org in user.get_orgs():
                if org.login not in owners:
                    owners.append(org.login)
            return owners

        owners = await self._call("list accessible owners", _owners)
        log.info("github_owners_listed", count=len(owners))
        return owners

    async def list_repositories(self, owner: str) -> list[RepositoryCandidate]:
        client = self._require_client()

        def _repos() -> list[RepositoryCandidate]:
            user = client.get_user()
            if user.login == owner:
                gh_repos = user.get_repos(affiliation="owner")
            else:
                gh_repos = client.get_organization(owner).get_repos()
            return [self._convert_repository(r) for r in gh_repos if r.owner.login == owner]

        candidates = await self._call(f"list repositories of {owner}", _repos)
        log.info("github_repositories_listed", owner=owner, count=len(candidates))
        return candidates

    async def list_pull_requests(self, branch: str, since: datetime | None = None) -> list[PullRequest]:
        """List pull requests into ``branch``, newest update first.

        Pagination stops at the first pull request older than ``since``;
        the API returns them sorted by update time.
        """
        gh_repo = self._require_repo()
        cutoff = _as_utc(since)

        def _pulls() -> list[PullRequest]:
            pulls = []
            for gh_pr in gh_repo.get_pulls(state="all", sort="updated", direction="desc", base=branch):
                updated = _as_utc(gh_pr.updated_at)
                if cutoff is not None and updated is not None and updated < cutoff:
                    break
                pulls.append(self._convert_pull_request(gh_pr))
            return pulls

        pulls = await self._call(f"list pull requests into {branch}", _pulls)
        log.info("github_pull_requests_listed", branch=branch, count=len(pulls), since=str(cutoff))
        return pulls

    async def list_commits(self, number: int) -> list[CommitRef]:
        gh_repo = self._require_repo()

        def _commits() -> list[CommitRef]:
            return [self._convert_commit(c) for c in gh_repo.get_pull(number).get_commits()]

        return await self._call(f"list commits of #{number}", _commits)

    async def list_labels(self, number: int) -> list[str]:
        gh_repo = self._require_repo()
        return await self._call(
            f"list labels of #{number}",
            lambda: [label.name for label in gh_repo.get_issue(number).get_labels()],
        )

    async def set_labels(self, number: int, add: list[str], remove: list[str]) -> list[str]:
        gh_repo = self._require_repo()

        def _set() -> list[str]:
            issue = gh_repo.get_issue(number)
            current = {label.name for label in issue.labels}
            for name in remove:
                if name in current:
                    issue.remove_from_labels(name)
            missing = [name for name in add if name not in current or name in remove]
            if missing:
                issue.add_to_labels(*missing)
            return [label.name for label in issue.get_labels()]

        labels = await self._call(f"update labels of #{number}", _set, default=LabelUpdateError)
        log.info("github_labels_updated", number=number, added=add, removed=remove)
        return labels

    async def add_comment(self, number: int, body: str) -> None:
        gh_repo = self._require_repo()
        await self._call(f"comment on #{number}", lambda: gh_repo.get_issue(number).create_comment(body))
        log.info("github_comment_added", number=number)

    def _convert_repository(self, gh_repo: GHRepository) -> RepositoryCandidate:
        """Convert GitHub Repository to our RepositoryCandidate model."""
        return RepositoryCandidate(
            name=gh_repo.name,
            owner=gh_repo.owner.login,
            visibility="private" if gh_repo.private else "public",
            default_branch=gh_repo.default_branch or "main",
            fork=bool(gh_repo.fork),
        )

    def _convert_pull_request(self, gh_pr: GHPullRequest) -> PullRequest:
        """Convert GitHub PullRequest to our PullRequest model."""
        return PullRequest(
            number=gh_pr.number,
            title=gh_pr.title,
            source_branch=gh_pr.head.ref,
            labels=tuple(label.name for label in gh_pr.labels),
            author=gh_pr.user.login if gh_pr.user else "",
            updated_at=_as_utc(gh_pr.updated_at),
            created_at=_as_utc(gh_pr.created_at),
            url=gh_pr.html_url,
        )

    def _convert_commit(self, gh_commit: GHCommit) -> CommitRef:
        """Convert GitHub Commit to our CommitRef model."""
        message = gh_commit.commit.message or ""
        return CommitRef(
            sha=gh_commit.sha,
            summary=message.splitlines()[0] if message else "",
            parent_count=len(gh_commit.parents),
        )
