"""Find the pull requests that are waiting to be cherry-picked."""

import asyncio
from datetime import datetime, timedelta, timezone

import structlog

from gh_cherry.engine.filters import TagRules, order_for_presentation, select_included
from gh_cherry.models.domain import PullRequest
from gh_cherry.providers.base import CodeHostProvider
from gh_cherry.utils.retry import RetryPolicy, async_retry, retry_async

log = structlog.get_logger(__name__)


class PullRequestDiscovery:
    """Lists candidate pull requests with their commits attached.

    Attributes:
        provider: Code host to query.
        rules: Tag configuration used by the filter.
        retry_policy: Applied to every read.
    """

    def __init__(
        self,
        provider: CodeHostProvider,
        rules: TagRules,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.provider = provider
        self.rules = rules
        self.retry_policy = retry_policy or RetryPolicy()

    async def discover(
        self,
        base_branch: str,
        days_back: int,
        now: datetime | None = None,
    ) -> list[PullRequest]:
        """Qualifying pull requests into ``base_branch``, newest first.

        Args:
            base_branch: Branch the pull requests were merged into.
            days_back: Only pull requests updated within this many days.
            now: Reference time; defaults to the current UTC time.

        Returns:
            Included pull requests, commits attached oldest first, ordered by
            most recent update then by number.
        """
        reference = now or datetime.now(timezone.utc)
        since = reference - timedelta(days=days_back)

        pulls = await retry_async(self.retry_policy, self.provider.list_pull_requests, base_branch, since)
        included = select_included(pulls, self.rules)
        log.info(
            "pull_requests_discovered",
            base_branch=base_branch,
            listed=len(pulls),
            included=len(included),
            since=since.isoformat(),
        )

        # Commits only for the pull requests that survived the filter
        @async_retry(self.retry_policy)
        async def _attach_commits(pr: PullRequest) -> PullRequest:
            return pr.with_commits(await self.provider.list_commits(pr.number))

        with_commits = await asyncio.gather(*(_attach_commits(pr) for pr in included))
        return order_for_presentation(list(with_commits))
