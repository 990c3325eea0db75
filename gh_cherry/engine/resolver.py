"""Work out which repository to operate on when it is not configured.

When the owner or repository name is missing, the resolver asks the code
host what the credentials can see. A single candidate is taken without asking;
several are offered to the operator through an async ``chooser`` callback,
sorted alphabetically.

Example:
    >>> async def choose(kind: str, options: list[str]) -> str:
    ...     return options[0]
    >>> resolver = AutoDiscoveryResolver(provider, choose)
    >>> target = await resolver.resolve(owner="acme")
    >>> target.full_name
    'acme/widgets'
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import structlog

from gh_cherry.exceptions import ConfigurationError, NoAccessibleResourceError
from gh_cherry.models.domain import RepositoryCandidate
from gh_cherry.providers.base import CodeHostProvider

log = structlog.get_logger(__name__)

Chooser = Callable[[str, list[str]], Awaitable[str]]
"""Async callback ``(kind, options) -> choice`` used when there is more than one option."""


@dataclass(frozen=True)
class ResolvedTarget:
    owner: str
    repo: str
    default_branch: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class AutoDiscoveryResolver:
    """Resolve the owner and repository to work on.

    Attributes:
        provider: Code host to query.
        chooser: Asked to pick when several candidates exist.
    """

    def __init__(self, provider: CodeHostProvider, chooser: Chooser) -> None:
        self.provider = provider
        self.chooser = chooser

    async def resolve(
        self,
        owner: str | None = None,
        repo: str | None = None,
        only_forks: bool = False,
    ) -> ResolvedTarget:
        """Fill in whatever of ``owner``/``repo`` is missing.

        Args:
            owner: Configured owner, used as is when given.
            repo: Configured repository name, used as is when given.
            only_forks: Offer only repositories that are forks.

        Raises:
            NoAccessibleResourceError: If there is nothing to choose from.
            ConfigurationError: If the chooser answers with something that
                was not offered.
        """
        if owner and repo:
            return ResolvedTarget(owner=owner, repo=repo)

        if not owner:
            owners = await self.provider.list_accessible_owners()
            owner = await self._pick("owner", owners)

        candidates = await self.provider.list_repositories(owner)
        candidates = [c for c in candidates if c.owner == owner]
        if only_forks:
            candidates = [c for c in candidates if c.fork]

        if repo:
            match = _find(candidates, repo)
            return ResolvedTarget(owner=owner, repo=repo, default_branch=match.default_branch if match else None)

        if not candidates:
            raise NoAccessibleResourceError("repository", owner)
        name = await self._pick("repository", [c.name for c in candidates], scope=owner)
        chosen = _find(candidates, name)
        assert chosen is not None
        log.info("repository_resolved", owner=owner, repo=chosen.name, forks_only=only_forks)
        return ResolvedTarget(owner=owner, repo=chosen.name, default_branch=chosen.default_branch)

    async def _pick(self, kind: str, options: list[str], scope: str | None = None) -> str:
        unique = sorted(set(options), key=str.lower)
        if not unique:
            raise NoAccessibleResourceError(kind, scope)
        if len(unique) == 1:
            log.info("auto_selected", kind=kind, value=unique[0])
            return unique[0]

        choice = await self.chooser(kind, unique)
        if choice not in unique:
            raise ConfigurationError(f"'{choice}' is not one of the offered {kind} choices")
        return choice


def _find(candidates: list[RepositoryCandidate], name: str) -> RepositoryCandidate | None:
    for candidate in candidates:
        if candidate.name == name:
            return candidate
    return None
