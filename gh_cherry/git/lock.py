"""Exclusive ownership of a git working tree.

Two cherry-pick sessions applying commits to the same working tree would
interleave their git operations, so a session takes a lock file inside the
repository's git directory before its first mutation and keeps it until it
reaches a terminal state, including while it waits for the operator to
resolve a conflict.

The lock file is created with ``O_CREAT | O_EXCL`` and holds a small JSON
payload identifying its owner. A lock left behind by a process that no longer
exists is removed on the next acquire.

Example:
    >>> lock = WorkingTreeLock(repo.lock_path(), session_id="3f2a9c1d")
    >>> lock.acquire()
    >>> try:
    ...     ...
    ... finally:
    ...     lock.release()
"""

import errno
import json
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

import structlog

from gh_cherry.exceptions import WorkingTreeLockedError

log = structlog.get_logger(__name__)

LOCK_FILENAME = "gh-cherry.lock"


@dataclass(frozen=True)
class LockOwner:
    pid: int | None = None
    session_id: str | None = None
    started_at: str | None = None
    token: str | None = None


class WorkingTreeLock:
    """Lock file guarding one working tree.

    Attributes:
        path: Location of the lock file.
        session_id: Identifier of the session taking the lock.
    """

    def __init__(self, path: Path, session_id: str) -> None:
        self.path = Path(path)
        self.session_id = session_id
        self._token: str | None = None

    @property
    def held(self) -> bool:
        return self._token is not None

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            WorkingTreeLockedError: If a live process already holds it.
        """
        if self.held:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                if self._clear_stale_lock():
                    continue
                raise WorkingTreeLockedError(self._locked_message()) from None

            token = secrets.token_hex(16)
            payload = {
                "pid": os.getpid(),
                "session_id": self.session_id,
                "started_at": datetime.now(timezone.utc).isoformat(),
                "token": token,
            }
            try:
                os.write(fd, (json.dumps(payload, sort_keys=True) + "\n").encode("utf-8"))
            except OSError:
                os.close(fd)
                self.path.unlink(missing_ok=True)
                raise
            os.close(fd)
            self._token = token
            log.debug("working_tree_locked", path=str(self.path), session_id=self.session_id)
            return

        raise WorkingTreeLockedError(self._locked_message())

    def release(self) -> None:
        """Release the lock if we hold it. Never removes someone else's lock."""
        if self._token is None:
            return
        owner = read_lock_owner(self.path)
        if owner.token == self._token:
            self.path.unlink(missing_ok=True)
            log.debug("working_tree_unlocked", path=str(self.path), session_id=self.session_id)
        self._token = None

    def _clear_stale_lock(self) -> bool:
        owner = read_lock_owner(self.path)
        if owner.pid is None or owner.pid == os.getpid():
            return False
        if _pid_is_running(owner.pid):
            return False
        log.warning("stale_lock_removed", path=str(self.path), pid=owner.pid, session_id=owner.session_id)
        try:
            self.path.unlink()
        except FileNotFoundError:
            return True
        except OSError:
            return False
        return True

    def _locked_message(self) -> str:
        owner = read_lock_owner(self.path)
        parts = []
        if owner.pid is not None:
            parts.append(f"pid={owner.pid}")
        if owner.session_id:
            parts.append(f"session={owner.session_id}")
        detail = f" ({', '.join(parts)})" if parts else ""
        return (
            f"Another cherry-pick session owns this working tree{detail}. "
            f"If it is stale, remove {self.path} and retry."
        )


def read_lock_owner(path: Path) -> LockOwner:
    """Parse the lock payload. Unreadable or malformed files yield an empty owner."""
    try:
        text = path.read_text(encoding="utf-8").strip()
        payload = json.loads(text) if text else {}
    except (OSError, json.JSONDecodeError):
        return LockOwner()
    if not isinstance(payload, dict):
        return LockOwner()

    pid = payload.get("pid")
    session_id = payload.get("session_id")
    started_at = payload.get("started_at")
    token = payload.get("token")
    return LockOwner(
        pid=pid if isinstance(pid, int) else None,
        session_id=session_id if isinstance(session_id, str) else None,
        started_at=started_at if isinstance(started_at, str) else None,
        token=token if isinstance(token, str) else None,
    )


def _pid_is_running(pid: int) -> bool:
    if pid < 1:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError as e:
        return e.errno != errno.ESRCH
    return True
