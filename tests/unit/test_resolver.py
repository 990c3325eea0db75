"""Tests for gh_cherry/engine/resolver.py - repository auto-discovery."""

from unittest.mock import AsyncMock

import pytest

from gh_cherry.engine.resolver import AutoDiscoveryResolver
from gh_cherry.exceptions import ConfigurationError, NoAccessibleResourceError
from gh_cherry.models.domain import RepositoryCandidate


def _repo(name: str, owner: str = "alice", fork: bool = False) -> RepositoryCandidate:
    return RepositoryCandidate(name=name, owner=owner, fork=fork, default_branch="develop")


@pytest.fixture
def chooser() -> AsyncMock:
    """Chooser that picks the last option."""
    return AsyncMock(side_effect=lambda kind, options: options[-1])


class TestAutoDiscoveryResolver:
    """Tests for AutoDiscoveryResolver.resolve."""

    @pytest.mark.asyncio
    async def test_configured_values_used_as_is(self, fake_host, chooser):
        """Should not query the host when owner and repo are configured."""
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve("acme", "widgets")

        assert target.full_name == "acme/widgets"
        chooser.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_single_candidates_auto_selected(self, fake_host, chooser):
        """Should pick the only owner and the only repository without asking."""
        fake_host.repositories["alice"] = [_repo("tool")]
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve()

        assert target.owner == "alice"
        assert target.repo == "tool"
        assert target.default_branch == "develop"
        chooser.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_several_candidates_offered_sorted(self, fake_host, chooser):
        """Should offer repositories in case-insensitive alphabetical order."""
        fake_host.repositories["alice"] = [_repo("zeta"), _repo("Alpha"), _repo("beta")]
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve(owner="alice")

        chooser.assert_awaited_once_with("repository", ["Alpha", "beta", "zeta"])
        assert target.repo == "zeta"

    @pytest.mark.asyncio
    async def test_owner_chosen_then_repository(self, fake_host, chooser):
        """Should ask for the owner first when several are accessible."""
        fake_host.owners = ["alice", "acme"]
        fake_host.repositories["alice"] = [_repo("tool")]
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve()

        chooser.assert_awaited_once_with("owner", ["acme", "alice"])
        assert target.full_name == "alice/tool"

    @pytest.mark.asyncio
    async def test_only_forks(self, fake_host, chooser):
        """Should offer only forks when asked to."""
        fake_host.repositories["alice"] = [_repo("upstream"), _repo("mine", fork=True)]
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve(owner="alice", only_forks=True)

        assert target.repo == "mine"
        chooser.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_foreign_owners_filtered(self, fake_host, chooser):
        """Should ignore repositories owned by someone else."""
        fake_host.repositories["alice"] = [_repo("tool"), _repo("shared", owner="bob")]
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve(owner="alice")

        assert target.repo == "tool"

    @pytest.mark.asyncio
    async def test_no_repositories(self, fake_host, chooser):
        """Should raise when the owner has no candidate repositories."""
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        with pytest.raises(NoAccessibleResourceError, match="No accessible repository found for alice"):
            await resolver.resolve(owner="alice")

    @pytest.mark.asyncio
    async def test_no_owners(self, fake_host, chooser):
        """Should raise when the credentials see no owner at all."""
        fake_host.owners = []
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        with pytest.raises(NoAccessibleResourceError) as exc_info:
            await resolver.resolve()

        assert exc_info.value.kind == "owner"

    @pytest.mark.asyncio
    async def test_choice_not_offered(self, fake_host):
        """Should reject an answer that was not one of the options."""
        fake_host.repositories["alice"] = [_repo("one"), _repo("two")]
        resolver = AutoDiscoveryResolver(fake_host, AsyncMock(return_value="three"))

        with pytest.raises(ConfigurationError, match="'three' is not one of the offered repository choices"):
            await resolver.resolve(owner="alice")

    @pytest.mark.asyncio
    async def test_configured_repo_with_discovered_owner(self, fake_host, chooser):
        """Should keep a configured repository name while discovering the owner."""
        fake_host.repositories["alice"] = [_repo("tool")]
        resolver = AutoDiscoveryResolver(fake_host, chooser)

        target = await resolver.resolve(repo="tool")

        assert target.full_name == "alice/tool"
        assert target.default_branch == "develop"
