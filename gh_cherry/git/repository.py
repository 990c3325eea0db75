"""GitPython-backed working tree adapter.

``LocalGitRepository`` implements ``GitRepository`` on top of GitPython. Every
call runs in a worker thread so the event loop stays responsive. Every git
command is started with ``kill_after_timeout``: a command that outlives the
configured operation timeout is killed, and the kill surfaces as
``GitTimeoutError``. The worker thread is always awaited, so no git command is
still running when a method returns or raises.

Conflicts are reported, not raised: a cherry-pick that stops on conflicts is
left in progress and its unmerged paths are returned to the caller, which
decides whether to continue, skip or abort.

Example:
    >>> repo = LocalGitRepository(".", operation_timeout=60)
    >>> await repo.checkout("main")
    >>> outcome = await repo.apply_cherry_pick("0a1b2c3d4e5f")
    >>> if not outcome.applied:
    ...     print("conflicts in", outcome.paths)

Dependencies:
    Requires GitPython and a ``git`` executable on PATH.
"""

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import git
import structlog
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from gh_cherry.exceptions import (
    GitOperationError,
    GitTimeoutError,
    NotGitRepositoryError,
    RepositoryOrBranchNotFoundError,
)
from gh_cherry.git.lock import LOCK_FILENAME
from gh_cherry.models.domain import CherryPickOutcome
from gh_cherry.providers.base import GitRepository
from gh_cherry.utils.text import short_sha

log = structlog.get_logger(__name__)

T = TypeVar("T")

# git prints this when a pick (or its resolution) turns out to change nothing
_EMPTY_PICK_MARKERS = ("now empty", "nothing to commit", "allow-empty")

# GitPython replaces stderr with this when kill_after_timeout fires
_KILLED_MARKER = "Timeout: the command"


class LocalGitRepository(GitRepository):
    """Local working tree driven through GitPython.

    The ``git.Repo`` object is created lazily, so constructing the adapter
    never fails; a bad path surfaces as ``NotGitRepositoryError`` on first use.

    Attributes:
        repo_path: Resolved path given at construction.
        remote: Remote used for ``fetch`` and remote-tracking branches.
        operation_timeout: Seconds any single git command may take before it
            is killed.
    """

    def __init__(
        self,
        repo_path: str | Path = ".",
        remote: str = "origin",
        operation_timeout: float = 120.0,
    ) -> None:
        self.repo_path = Path(repo_path).resolve()
        self.remote = remote
        self.operation_timeout = operation_timeout
        self._repo: git.Repo | None = None
        # HEAD when the last pick stopped on a conflict
        self._pick_base: str | None = None

    def _get_repo(self) -> git.Repo:
        if self._repo is None:
            try:
                self._repo = git.Repo(self.repo_path, search_parent_directories=True)
            except (InvalidGitRepositoryError, NoSuchPathError) as e:
                raise NotGitRepositoryError(str(self.repo_path)) from e
        return self._repo

    async def _run(self, operation: str, func: Callable[[], T]) -> T:
        """Run a blocking git call in a worker thread.

        If the awaiting task is cancelled, the worker is still waited for
        before the cancellation propagates, so a rollback never races a git
        command that is still writing to the tree. Any ``GitCommandError``
        that escapes ``func`` is translated here.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(func))
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            await asyncio.wait([worker])
            if not worker.cancelled():
                worker.exception()
            raise
        except GitCommandError as e:
            raise self._command_error(operation, e) from e

    def _command_error(self, operation: str, error: GitCommandError, message: str | None = None) -> GitOperationError:
        output = _git_output(error)
        if _KILLED_MARKER in output:
            log.error("git_operation_timeout", operation=operation, timeout=self.operation_timeout)
            return GitTimeoutError(f"git {operation} did not finish and was killed", self.operation_timeout)
        return GitOperationError(f"{message or f'git {operation} failed'}: {output}")

    # Queries ----------------------------------------------------------------

    async def current_branch(self) -> str | None:
        def _current() -> str | None:
            repo = self._get_repo()
            if repo.head.is_detached:
                return None
            return repo.active_branch.name

        return await self._run("branch", _current)

    async def head_sha(self) -> str:
        def _head() -> str:
            repo = self._get_repo()
            try:
                return repo.head.commit.hexsha
            except ValueError as e:
                raise GitOperationError(f"Repository has no commits yet: {self.repo_path}") from e

        return await self._run("rev-parse", _head)

    async def is_clean(self) -> bool:
        def _clean() -> bool:
            status = self._get_repo().git.status(
                "--porcelain", "--untracked-files=normal", kill_after_timeout=self.operation_timeout
            )
            return not status.strip()

        return await self._run("status", _clean)

    def lock_path(self) -> Path:
        return Path(self._get_repo().git_dir) / LOCK_FILENAME

    # Branches ---------------------------------------------------------------

    async def checkout(self, branch: str, start_point: str | None = None) -> None:
        """Check out ``branch``, creating it when necessary.

        Resolution order: an existing local branch; a new branch at
        ``start_point``; a new branch tracking ``<remote>/<branch>``.
        """
        timeout = self.operation_timeout

        def _checkout() -> str:
            repo = self._get_repo()
            try:
                if branch in repo.heads:
                    repo.git.checkout(branch, kill_after_timeout=timeout)
                    return "local"
                if start_point is not None:
                    if not _ref_exists(repo, start_point, timeout):
                        raise RepositoryOrBranchNotFoundError(
                            f"Cannot create branch '{branch}': start point '{start_point}' not found"
                        )
                    repo.git.checkout("-b", branch, start_point, kill_after_timeout=timeout)
                    return "created"
                remote_branch = f"{self.remote}/{branch}"
                if _ref_exists(repo, f"refs/remotes/{remote_branch}", timeout):
                    repo.git.checkout("-b", branch, "--track", remote_branch, kill_after_timeout=timeout)
                    return "tracking"
            except GitCommandError as e:
                raise self._command_error("checkout", e, f"Failed to check out '{branch}'") from e
            raise RepositoryOrBranchNotFoundError(
                f"Branch '{branch}' not found locally or on '{self.remote}'\n\n"
                f"Hint: run 'git fetch {self.remote}' or check the branch name"
            )

        how = await self._run("checkout", _checkout)
        log.info("branch_checked_out", branch=branch, how=how, start_point=start_point)

    # Cherry-picks -----------------------------------------------------------

    async def apply_cherry_pick(self, sha: str) -> CherryPickOutcome:
        timeout = self.operation_timeout

        def _apply() -> CherryPickOutcome:
            repo = self._get_repo()
            if not _ref_exists(repo, sha, timeout):
                raise RepositoryOrBranchNotFoundError(
                    f"Commit {short_sha(sha)} not found locally\n\n"
                    f"Hint: run 'git fetch {self.remote}' so the pull request's commits are available"
                )
            try:
                repo.git.cherry_pick(sha, kill_after_timeout=timeout)
            except GitCommandError as e:
                return self._outcome_after_failure(repo, e, f"cherry-pick {short_sha(sha)}")
            return self._landed(repo.head.commit.hexsha)

        outcome = await self._run("cherry-pick", _apply)
        if outcome.applied:
            log.info("cherry_pick_applied", sha=short_sha(sha), new_sha=outcome.new_sha, empty=outcome.empty)
        else:
            log.warning("cherry_pick_conflicted", sha=short_sha(sha), paths=list(outcome.paths))
        return outcome

    async def continue_cherry_pick(self) -> CherryPickOutcome:
        """Commit the in-progress pick.

        Conflicted files must be resolved and staged (``git add``) first;
        paths still unmerged in the index are reported back as conflicts.
        When no pick is in progress any more, the pick only counts as applied
        if a commit on top of the pre-conflict HEAD was made by hand.
        """
        timeout = self.operation_timeout

        def _continue() -> CherryPickOutcome:
            repo = self._get_repo()
            remaining = _unmerged_paths(repo, timeout)
            if remaining:
                return CherryPickOutcome.conflict(remaining, "Unresolved conflicts remain; stage resolved files")
            if not _cherry_pick_in_progress(repo):
                return self._committed_by_hand(repo)
            try:
                with repo.git.custom_environment(GIT_EDITOR="true"):
                    repo.git.cherry_pick("--continue", kill_after_timeout=timeout)
            except GitCommandError as e:
                return self._outcome_after_failure(repo, e, "cherry-pick --continue")
            return self._landed(repo.head.commit.hexsha)

        outcome = await self._run("cherry-pick --continue", _continue)
        log.info("cherry_pick_continued", applied=outcome.applied, paths=list(outcome.paths))
        return outcome

    async def abort_cherry_pick(self) -> None:
        timeout = self.operation_timeout

        def _abort() -> bool:
            repo = self._get_repo()
            self._pick_base = None
            if not _cherry_pick_in_progress(repo):
                return False
            try:
                repo.git.cherry_pick("--abort", kill_after_timeout=timeout)
            except GitCommandError as e:
                raise self._command_error("cherry-pick --abort", e, "Failed to abort cherry-pick") from e
            return True

        if await self._run("cherry-pick --abort", _abort):
            log.info("cherry_pick_aborted")

    async def reset_to_ref(self, ref: str) -> None:
        def _reset() -> None:
            repo = self._get_repo()
            self._pick_base = None
            try:
                repo.git.reset("--hard", ref, kill_after_timeout=self.operation_timeout)
            except GitCommandError as e:
                raise self._command_error("reset", e, f"Failed to reset to {short_sha(ref)}") from e

        await self._run("reset", _reset)
        log.info("branch_reset", ref=short_sha(ref))

    async def fetch(self) -> None:
        def _fetch() -> None:
            repo = self._get_repo()
            try:
                repo.git.fetch(self.remote, kill_after_timeout=self.operation_timeout)
            except GitCommandError as e:
                raise self._command_error("fetch", e, f"Failed to fetch from '{self.remote}'") from e

        await self._run("fetch", _fetch)
        log.info("remote_fetched", remote=self.remote)

    def _landed(self, new_sha: str | None, empty: bool = False) -> CherryPickOutcome:
        self._pick_base = None
        return CherryPickOutcome.success(new_sha, empty=empty)

    def _committed_by_hand(self, repo: git.Repo) -> CherryPickOutcome:
        head = repo.head.commit
        base = self._pick_base
        if base is not None and head.hexsha != base and any(parent.hexsha == base for parent in head.parents):
            log.info("cherry_pick_committed_by_hand", new_sha=head.hexsha)
            return self._landed(head.hexsha)
        return CherryPickOutcome.conflict(
            (),
            "No cherry-pick is in progress and nothing was committed on top of the branch; skip or abort",
        )

    def _outcome_after_failure(self, repo: git.Repo, error: GitCommandError, operation: str) -> CherryPickOutcome:
        """Classify a failed pick: conflict, redundant commit, or real error."""
        if _KILLED_MARKER in _git_output(error):
            raise self._command_error(operation, error)

        paths = _unmerged_paths(repo, self.operation_timeout)
        if paths:
            self._pick_base = repo.head.commit.hexsha
            return CherryPickOutcome.conflict(paths, _git_output(error))

        message = _git_output(error)
        if _cherry_pick_in_progress(repo) and any(marker in message for marker in _EMPTY_PICK_MARKERS):
            repo.git.cherry_pick("--skip", kill_after_timeout=self.operation_timeout)
            return self._landed(None, empty=True)

        raise GitOperationError(f"git {operation} failed: {message}")


def _ref_exists(repo: git.Repo, ref: str, timeout: float) -> bool:
    try:
        repo.git.rev_parse("--verify", "--quiet", f"{ref}^{{commit}}", kill_after_timeout=timeout)
    except GitCommandError as e:
        if _KILLED_MARKER in _git_output(e):
            raise
        return False
    return True


def _unmerged_paths(repo: git.Repo, timeout: float) -> list[str]:
    output = repo.git.diff("--name-only", "--diff-filter=U", kill_after_timeout=timeout)
    return sorted({line.strip() for line in output.splitlines() if line.strip()})


def _cherry_pick_in_progress(repo: git.Repo) -> bool:
    return (Path(repo.git_dir) / "CHERRY_PICK_HEAD").exists()


def _git_output(error: GitCommandError) -> str:
    """Combined stderr and stdout of a failed git command, without GitPython's framing."""
    parts = []
    for prefix, text in (("stderr:", error.stderr), ("stdout:", error.stdout)):
        if isinstance(text, bytes):
            text = text.decode("utf-8", errors="replace")
        cleaned = str(text or "").strip().removeprefix(prefix).strip().strip("'").strip()
        if cleaned:
            parts.append(cleaned)
    return "\n".join(parts) or str(error)
