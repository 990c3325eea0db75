"""Local git working tree: GitPython adapter and working-tree lock."""

from gh_cherry.git.lock import WorkingTreeLock
from gh_cherry.git.repository import LocalGitRepository

__all__ = ["LocalGitRepository", "WorkingTreeLock"]
