"""Find a GitHub token.

Sources, in order:

1. ``github.token`` from the configuration.
2. ``gh auth token`` from an authenticated GitHub CLI.
3. The ``GITHUB_TOKEN`` environment variable.
"""

import os

import structlog

from gh_cherry.exceptions import AuthenticationError
from gh_cherry.utils.async_subprocess import run_command

log = structlog.get_logger(__name__)

GH_CLI_TIMEOUT = 10.0

_MISSING_TOKEN_HELP = (
    "No GitHub token found. Either:\n"
    "  1. Install and authenticate the GitHub CLI: gh auth login\n"
    "  2. Set the GITHUB_TOKEN environment variable"
)


async def token_from_gh_cli() -> str | None:
    """Ask the GitHub CLI for its token. None if gh is missing or logged out."""
    try:
        stdout, stderr, code = await run_command("gh", "auth", "token", timeout=GH_CLI_TIMEOUT)
    except FileNotFoundError:
        log.debug("gh_cli_not_installed")
        return None
    except (TimeoutError, OSError) as e:
        log.warning("gh_cli_token_failed", error=str(e))
        return None

    token = stdout.strip()
    if code != 0 or not token:
        log.debug("gh_cli_not_authenticated", code=code, stderr=stderr.strip())
        return None
    return token


async def resolve_token(configured: str | None = None) -> str:
    """Return the first token found.

    Args:
        configured: Token from the configuration, if any.

    Raises:
        AuthenticationError: If no source yields a token.
    """
    if configured and configured.strip():
        log.debug("token_source", source="config")
        return configured.strip()

    token = await token_from_gh_cli()
    if token:
        log.debug("token_source", source="gh")
        return token

    env_token = os.environ.get("GITHUB_TOKEN", "").strip()
    if env_token:
        log.debug("token_source", source="env")
        return env_token

    raise AuthenticationError(_MISSING_TOKEN_HELP)
