"""Custom exception hierarchy for gh-cherry.

This module defines a structured exception hierarchy that lets the
orchestration engine tell recoverable conditions apart from fatal ones and
lets the CLI print user-friendly messages.

Merge conflicts and merge-commit rejections are deliberately absent: they are
modeled as session states (see ``gh_cherry.engine.session``), not exceptions.

Exception Hierarchy:
    GhCherryError (base)
    ├── ConfigurationError
    ├── AuthenticationError
    │   └── AuthenticationLostError
    ├── ExternalServiceError
    │   ├── NetworkTransientError
    │   └── LabelUpdateError
    ├── NoAccessibleResourceError
    ├── RepositoryOrBranchNotFoundError
    │   └── NotGitRepositoryError
    ├── GitOperationError
    │   ├── DirtyWorkingTreeError
    │   ├── GitTimeoutError
    │   └── WorkingTreeLockedError
    └── WorkflowError
        └── InvalidTransitionError

Example Usage:
    >>> from gh_cherry.exceptions import ConfigurationError
    >>> try:
    ...     load_config(path)
    ... except FileNotFoundError as e:
    ...     raise ConfigurationError(f"Config file not found: {path}") from e
"""


class GhCherryError(Exception):
    """Base exception for all gh-cherry errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(GhCherryError):
    """Configuration-related errors.

    Examples:
        - Configuration file not found or unreadable
        - Invalid YAML syntax
        - Invalid sprint pattern regular expression
        - Operator picked a value that was not offered
    """

    pass


class AuthenticationError(GhCherryError):
    """No usable credentials for the code host.

    Raised before a session starts, when neither the GitHub CLI nor the
    ``GITHUB_TOKEN`` environment variable yields a token.
    """

    pass


class AuthenticationLostError(AuthenticationError):
    """The code host rejected our credentials.

    Fatal for the whole session: no further API calls are attempted and the
    git working tree is left as-is for manual recovery.
    """

    pass


class ExternalServiceError(GhCherryError):
    """Code host communication errors.

    Attributes:
        message: Error message
        status_code: HTTP status code (if applicable)
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """Initialize exception.

        Args:
            message: Error message
            status_code: HTTP status code (if applicable)
        """
        self.status_code = status_code

        full_message = message
        if status_code:
            full_message = f"{message} (HTTP {status_code})"

        super().__init__(full_message)
        # Preserve original message
        self.message = message


class NetworkTransientError(ExternalServiceError):
    """Retryable failure: timeouts, connection resets, 5xx, rate limits."""

    pass


class LabelUpdateError(ExternalServiceError):
    """The code host refused to update a pull request's labels."""

    pass


class NoAccessibleResourceError(GhCherryError):
    """Auto-discovery found nothing to choose from.

    Attributes:
        kind: What was being discovered ("owner" or "repository")
    """

    def __init__(self, kind: str, scope: str | None = None) -> None:
        """Initialize exception.

        Args:
            kind: What was being discovered ("owner" or "repository")
            scope: Optional narrower scope, such as the owner being searched
        """
        self.kind = kind
        self.scope = scope
        message = f"No accessible {kind} found"
        if scope:
            message = f"{message} for {scope}"
        super().__init__(message)


class RepositoryOrBranchNotFoundError(GhCherryError):
    """A repository, branch or commit the session needs does not exist."""

    pass


class NotGitRepositoryError(RepositoryOrBranchNotFoundError):
    """The configured path is not inside a git working tree."""

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Not a git repository: {path}\n\nHint: run gh-cherry from inside a clone, or run 'git init'")


class GitOperationError(GhCherryError):
    """Git operation errors.

    Raised when a git command fails for reasons other than a merge conflict.
    """

    pass


class DirtyWorkingTreeError(GitOperationError):
    """The working tree has uncommitted or untracked changes."""

    pass


class GitTimeoutError(GitOperationError):
    """A git command exceeded the configured timeout.

    Attributes:
        timeout_seconds: The timeout that was exceeded
    """

    def __init__(self, message: str, timeout_seconds: float | None = None) -> None:
        self.timeout_seconds = timeout_seconds
        if timeout_seconds and "timeout" not in message.lower():
            message = f"{message} (timeout: {timeout_seconds}s)"
        super().__init__(message)


class WorkingTreeLockedError(GitOperationError):
    """Another cherry-pick session already owns the working tree."""

    pass


class WorkflowError(GhCherryError):
    """Session workflow errors."""

    pass


class InvalidTransitionError(WorkflowError):
    """An event is not allowed in the session's current state.

    Attributes:
        state: State the session was in
        event: Name of the rejected event
    """

    def __init__(self, state: str, event: str, reason: str | None = None) -> None:
        self.state = state
        self.event = event
        message = f"Cannot apply {event} in state {state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
