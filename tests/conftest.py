"""Pytest configuration and shared fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from gh_cherry.engine.filters import TagRules
from gh_cherry.models.domain import CherryPickOutcome, CommitRef, PullRequest, RepositoryCandidate
from gh_cherry.exceptions import RepositoryOrBranchNotFoundError
from gh_cherry.providers.base import CodeHostProvider, GitRepository

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)

PENDING_LABELS = ("S28", "DEV", "pending cherrypick")


def make_pr(
    number: int,
    shas: list[str] | None = None,
    labels: tuple[str, ...] = PENDING_LABELS,
    updated_days_ago: float = 1,
    title: str | None = None,
    merge_shas: tuple[str, ...] = (),
) -> PullRequest:
    """Build a pull request with commits named after ``shas``."""
    shas = shas if shas is not None else [f"{number:04d}aaaa0000"]
    commits = tuple(
        CommitRef(sha=sha, summary=f"commit {sha}", parent_count=2 if sha in merge_shas else 1) for sha in shas
    )
    return PullRequest(
        number=number,
        title=title or f"Pull request {number}",
        source_branch=f"feature/{number}",
        commits=commits,
        labels=labels,
        updated_at=NOW - timedelta(days=updated_days_ago),
        created_at=NOW - timedelta(days=updated_days_ago + 1),
    )


class FakeGitRepository(GitRepository):
    """In-memory working tree.

    ``conflicts`` maps a sha to the paths it conflicts on; ``errors`` maps a
    sha to the exception its cherry-pick raises. ``continue_results`` are
    returned by successive ``continue_cherry_pick`` calls.
    """

    def __init__(self, lock_dir: Path, branch: str = "develop", head: str = "base0000sha") -> None:
        self.lock_dir = lock_dir
        self.branch: str | None = branch
        self.head = head
        self.clean = True
        self.conflicts: dict[str, tuple[str, ...]] = {}
        self.errors: dict[str, Exception] = {}
        self.continue_results: list[CherryPickOutcome] = []
        self.missing_branches: set[str] = set()
        self.in_progress: str | None = None
        self.picked: list[str] = []
        self.calls: list[tuple] = []
        self.dirty_after_pick: set[str] = set()

    async def current_branch(self) -> str | None:
        return self.branch

    async def head_sha(self) -> str:
        return self.head

    async def is_clean(self) -> bool:
        self.calls.append(("is_clean",))
        return self.clean

    async def checkout(self, branch: str, start_point: str | None = None) -> None:
        self.calls.append(("checkout", branch, start_point))
        if branch in self.missing_branches:
            raise RepositoryOrBranchNotFoundError(f"Branch '{branch}' not found")
        self.branch = branch

    async def apply_cherry_pick(self, sha: str) -> CherryPickOutcome:
        self.calls.append(("apply", sha))
        if sha in self.errors:
            raise self.errors[sha]
        if sha in self.conflicts:
            self.in_progress = sha
            return CherryPickOutcome.conflict(self.conflicts[sha], "CONFLICT (content)")
        self.picked.append(sha)
        self.head = f"new-{sha}"
        if sha in self.dirty_after_pick:
            self.clean = False
        return CherryPickOutcome.success(self.head)

    async def continue_cherry_pick(self) -> CherryPickOutcome:
        self.calls.append(("continue",))
        outcome = self.continue_results.pop(0) if self.continue_results else CherryPickOutcome.success("resolved0")
        if outcome.applied:
            if self.in_progress:
                self.picked.append(self.in_progress)
            self.in_progress = None
            if outcome.new_sha:
                self.head = outcome.new_sha
        return outcome

    async def abort_cherry_pick(self) -> None:
        self.calls.append(("abort",))
        self.in_progress = None

    async def reset_to_ref(self, ref: str) -> None:
        self.calls.append(("reset", ref))
        self.head = ref
        self.picked.clear()

    async def fetch(self) -> None:
        self.calls.append(("fetch",))

    def lock_path(self) -> Path:
        return self.lock_dir / "gh-cherry.lock"


class FakeCodeHost(CodeHostProvider):
    """In-memory code host.

    ``label_failures`` are raised, in order, by successive ``set_labels``
    calls before any succeeds.
    """

    def __init__(self, pulls: list[PullRequest] | None = None) -> None:
        self.pulls: dict[int, PullRequest] = {}
        self.labels: dict[int, list[str]] = {}
        for pr in pulls or []:
            self.add(pr)
        self.label_failures: list[Exception] = []
        self.comment_failures: list[Exception] = []
        self.set_label_calls: list[int] = []
        self.comments: list[tuple[int, str]] = []
        self.owners = ["alice"]
        self.repositories: dict[str, list[RepositoryCandidate]] = {}

    def add(self, pr: PullRequest) -> None:
        self.pulls[pr.number] = pr
        self.labels[pr.number] = list(pr.labels)

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def use_repository(self, owner: str, repo: str) -> None:
        pass

    async def get_authenticated_identity(self) -> str:
        return self.owners[0]

    async def list_accessible_owners(self) -> list[str]:
        return list(self.owners)

    async def list_repositories(self, owner: str) -> list[RepositoryCandidate]:
        return list(self.repositories.get(owner, []))

    async def list_pull_requests(self, branch: str, since: datetime | None = None) -> list[PullRequest]:
        return [
            pr.with_commits(())
            for pr in self.pulls.values()
            if since is None or pr.updated_at is None or pr.updated_at >= since
        ]

    async def list_commits(self, number: int) -> list[CommitRef]:
        return list(self.pulls[number].commits)

    async def list_labels(self, number: int) -> list[str]:
        return list(self.labels.get(number, []))

    async def set_labels(self, number: int, add: list[str], remove: list[str]) -> list[str]:
        self.set_label_calls.append(number)
        if self.label_failures:
            raise self.label_failures.pop(0)
        current = [label for label in self.labels.get(number, []) if label not in remove]
        current.extend(label for label in add if label not in current)
        self.labels[number] = current
        return list(current)

    async def add_comment(self, number: int, body: str) -> None:
        if self.comment_failures:
            raise self.comment_failures.pop(0)
        self.comments.append((number, body))


@pytest.fixture
def pr_factory():
    """Factory building pending pull requests; see ``make_pr``."""
    return make_pr


@pytest.fixture
def now() -> datetime:
    """Fixed reference time the sample pull requests are dated against."""
    return NOW


@pytest.fixture
def rules() -> TagRules:
    """Default tag rules."""
    return TagRules.build(r"S\d+", "DEV", "pending cherrypick", "cherry picked")


@pytest.fixture
def fake_repo(tmp_path: Path) -> FakeGitRepository:
    """Clean in-memory working tree on ``develop``."""
    return FakeGitRepository(tmp_path)


@pytest.fixture
def fake_host() -> FakeCodeHost:
    """Empty in-memory code host."""
    return FakeCodeHost()
