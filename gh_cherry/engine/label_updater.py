"""Flip a pull request's labels from pending to completed.

The label updater runs once for every pull request whose commits all landed
on the target branch. It removes the pending tag and adds the completed tag;
both halves are idempotent, so retrying after a network failure converges.

Transient failures are retried under the shared ``RetryPolicy``. When the
budget runs out the failure is *recorded*, not raised: the commits are on the
branch and stay there, and the result reports the pull request as
"git applied, labels pending". Lost credentials are the exception and
propagate, because no later API call can succeed either.
"""

import asyncio
from collections import defaultdict

import structlog

from gh_cherry.engine.filters import TagRules
from gh_cherry.exceptions import AuthenticationLostError, ExternalServiceError, RepositoryOrBranchNotFoundError
from gh_cherry.models.domain import LabelUpdateOutcome, LabelUpdateStatus, PullRequest
from gh_cherry.providers.base import CodeHostProvider
from gh_cherry.utils.retry import RetryPolicy, retry_async
from gh_cherry.utils.text import short_sha

log = structlog.get_logger(__name__)


class LabelUpdater:
    """Updates tracking labels after a pull request was fully applied.

    Attributes:
        provider: Code host the labels live on.
        rules: Tag configuration naming the pending and completed tags.
        retry_policy: Budget for transient failures.
        post_comment: Post a comment listing the cherry-picked commits after a
            successful update. Comment failures are logged and ignored.
    """

    def __init__(
        self,
        provider: CodeHostProvider,
        rules: TagRules,
        retry_policy: RetryPolicy | None = None,
        post_comment: bool = False,
    ) -> None:
        self.provider = provider
        self.rules = rules
        self.retry_policy = retry_policy or RetryPolicy()
        self.post_comment = post_comment
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def update(
        self,
        pull_request: PullRequest,
        target_branch: str,
        created_commits: tuple[str, ...] = (),
    ) -> tuple[LabelUpdateOutcome, PullRequest]:
        """Apply the completed tag to ``pull_request``.

        Args:
            pull_request: The pull request that just succeeded.
            target_branch: Branch its commits were applied to, for the comment.
            created_commits: Hashes created on the target branch.

        Returns:
            The outcome, and the pull request carrying the labels the host
            reported after the update (unchanged if the update failed).

        Raises:
            AuthenticationLostError: If the host rejects the credentials.
        """
        async with self._locks[pull_request.number]:
            attempts = 0

            async def _attempt() -> list[str]:
                nonlocal attempts
                attempts += 1
                return await self.provider.set_labels(
                    pull_request.number,
                    add=[self.rules.completed_tag],
                    remove=[self.rules.pending_tag],
                )

            try:
                labels = await retry_async(self.retry_policy, _attempt)
            except AuthenticationLostError:
                log.error("label_update_auth_lost", pr=pull_request.number)
                raise
            except (ExternalServiceError, RepositoryOrBranchNotFoundError) as e:
                log.warning("label_update_failed", pr=pull_request.number, attempts=attempts, error=str(e))
                outcome = LabelUpdateOutcome(status=LabelUpdateStatus.FAILED, attempts=attempts, error=str(e))
                return outcome, pull_request

            updated = pull_request.with_labels(labels, self.rules)
            log.info("label_update_succeeded", pr=pull_request.number, attempts=attempts, labels=labels)

        if self.post_comment:
            await self._comment(updated, target_branch, created_commits)

        outcome = LabelUpdateOutcome(status=LabelUpdateStatus.UPDATED, attempts=attempts, labels=updated.labels)
        return outcome, updated

    async def _comment(self, pull_request: PullRequest, target_branch: str, created_commits: tuple[str, ...]) -> None:
        body = format_cherry_pick_comment(pull_request, target_branch, created_commits)
        try:
            await self.provider.add_comment(pull_request.number, body)
        except (ExternalServiceError, RepositoryOrBranchNotFoundError) as e:
            log.warning("cherry_pick_comment_failed", pr=pull_request.number, error=str(e))


def format_cherry_pick_comment(pull_request: PullRequest, target_branch: str, created_commits: tuple[str, ...]) -> str:
    """Markdown comment listing the commits that were cherry-picked."""
    lines = [f"Cherry-picked to `{target_branch}`:", ""]
    lines.extend(f"- {short_sha(commit.sha)} {commit.summary}".rstrip() for commit in pull_request.commits)
    if created_commits:
        lines.append("")
        lines.append("New commits: " + ", ".join(short_sha(sha) for sha in created_commits))
    return "\n".join(lines)
