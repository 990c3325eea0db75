"""Tests for gh_cherry/engine/discovery.py."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from gh_cherry.engine.discovery import PullRequestDiscovery
from gh_cherry.exceptions import NetworkTransientError
from gh_cherry.models.domain import CommitRef
from gh_cherry.utils.retry import RetryPolicy

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0.0)


class TestPullRequestDiscovery:
    """Tests for PullRequestDiscovery.discover."""

    @pytest.mark.asyncio
    async def test_filters_and_orders(self, fake_host, rules, pr_factory, now):
        """Should keep qualifying pull requests, newest first, commits attached."""
        fake_host.add(pr_factory(1, ["a1"], updated_days_ago=5))
        fake_host.add(pr_factory(2, ["b1", "b2"], updated_days_ago=1))
        fake_host.add(pr_factory(3, ["c1"], labels=("S28", "DEV", "cherry picked")))
        discovery = PullRequestDiscovery(fake_host, rules, NO_WAIT)

        pulls = await discovery.discover("develop", days_back=28, now=now)

        assert [pr.number for pr in pulls] == [2, 1]
        assert [c.sha for c in pulls[0].commits] == ["b1", "b2"]
        assert pulls[0].matched_tags == ("S28", "DEV", "pending cherrypick")

    @pytest.mark.asyncio
    async def test_window_passed_to_provider(self, rules, now):
        """Should ask for pull requests updated within the lookback window."""
        provider = AsyncMock()
        provider.list_pull_requests = AsyncMock(return_value=[])
        discovery = PullRequestDiscovery(provider, rules, NO_WAIT)

        await discovery.discover("develop", days_back=7, now=now)

        provider.list_pull_requests.assert_awaited_once_with("develop", now - timedelta(days=7))

    @pytest.mark.asyncio
    async def test_old_pull_requests_excluded(self, fake_host, rules, pr_factory, now):
        """Should leave out pull requests updated before the window."""
        fake_host.add(pr_factory(1, updated_days_ago=40))
        fake_host.add(pr_factory(2, updated_days_ago=2))
        discovery = PullRequestDiscovery(fake_host, rules, NO_WAIT)

        pulls = await discovery.discover("develop", days_back=28, now=now)

        assert [pr.number for pr in pulls] == [2]

    @pytest.mark.asyncio
    async def test_commits_fetched_only_for_included(self, rules, pr_factory, now):
        """Should not list commits of pull requests the filter dropped."""
        provider = AsyncMock()
        provider.list_pull_requests = AsyncMock(
            return_value=[pr_factory(1, []), pr_factory(2, [], labels=("DEV",))]
        )
        provider.list_commits = AsyncMock(return_value=[CommitRef(sha="a1")])
        discovery = PullRequestDiscovery(provider, rules, NO_WAIT)

        pulls = await discovery.discover("develop", days_back=28, now=now)

        provider.list_commits.assert_awaited_once_with(1)
        assert pulls[0].commits == (CommitRef(sha="a1"),)

    @pytest.mark.asyncio
    async def test_retries_listing(self, rules, now):
        """Should retry a transient listing failure."""
        provider = AsyncMock()
        provider.list_pull_requests = AsyncMock(side_effect=[NetworkTransientError("timeout"), []])
        discovery = PullRequestDiscovery(provider, rules, NO_WAIT)

        pulls = await discovery.discover("develop", days_back=28, now=now)

        assert pulls == []
        assert provider.list_pull_requests.await_count == 2

    @pytest.mark.asyncio
    async def test_retries_commit_listing(self, rules, pr_factory, now):
        """Should retry a transient failure while listing a pull request's commits."""
        provider = AsyncMock()
        provider.list_pull_requests = AsyncMock(return_value=[pr_factory(1, [])])
        provider.list_commits = AsyncMock(
            side_effect=[NetworkTransientError("reset by peer"), [CommitRef(sha="a1")]]
        )
        discovery = PullRequestDiscovery(provider, rules, NO_WAIT)

        pulls = await discovery.discover("develop", days_back=28, now=now)

        assert provider.list_commits.await_count == 2
        assert pulls[0].commits == (CommitRef(sha="a1"),)

    @pytest.mark.asyncio
    async def test_nothing_pending(self, fake_host, rules, now):
        """Should return an empty list when nothing qualifies."""
        discovery = PullRequestDiscovery(fake_host, rules, NO_WAIT)

        assert await discovery.discover("develop", days_back=28, now=now) == []
