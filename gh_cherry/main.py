"""CLI entry point for gh-cherry."""

import asyncio
import sys
from collections.abc import Coroutine
from typing import Any

import click
import structlog

from gh_cherry.auth import resolve_token
from gh_cherry.config.settings import ENV_FILE_NAME, CherrySettings
from gh_cherry.engine.discovery import PullRequestDiscovery
from gh_cherry.engine.label_updater import LabelUpdater
from gh_cherry.engine.orchestrator import CherryPickOrchestrator, describe_conflict
from gh_cherry.engine.report import summarize
from gh_cherry.engine.resolver import AutoDiscoveryResolver
from gh_cherry.engine.session import CherryPickSession, ResolutionAction, SessionState
from gh_cherry.exceptions import ConfigurationError, GhCherryError, InvalidTransitionError
from gh_cherry.git.repository import LocalGitRepository
from gh_cherry.models.domain import ConflictKind, PullRequest
from gh_cherry.providers.github_rest import GitHubRestProvider
from gh_cherry.utils.logging_config import LOG_LEVELS, configure_logging

log = structlog.get_logger(__name__)


@click.group()
@click.option("--config", "config_path", default=None, help="Path to configuration file")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="WARNING",
    help="Logging level",
)
@click.option("--json-logs", is_flag=True, help="Emit logs as JSON lines")
@click.option("--owner", default=None, help="Repository owner (overrides config)")
@click.option("--repo", default=None, help="Repository name (overrides config)")
@click.option("--base-branch", default=None, help="Branch the pull requests were merged into")
@click.option("--target-branch", default=None, help="Branch to cherry-pick onto")
@click.option("--days", type=click.IntRange(min=1), default=None, help="Lookback window in days")
@click.option("--only-forks/--any-repo", default=None, help="Offer only forked repositories during auto-discovery")
@click.option("--repo-path", default=None, help="Path inside the local clone")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    log_level: str,
    json_logs: bool,
    owner: str | None,
    repo: str | None,
    base_branch: str | None,
    target_branch: str | None,
    days: int | None,
    only_forks: bool | None,
    repo_path: str | None,
) -> None:
    """gh-cherry: cherry-pick labeled pull requests onto a release branch."""
    configure_logging(log_level, json_output=json_logs)

    try:
        settings = CherrySettings.load(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug("config_error", exc_info=True)
        sys.exit(1)

    ctx.obj = {
        "settings": settings.with_overrides(
            owner=owner,
            repo=repo,
            base_branch=base_branch,
            target_branch=target_branch,
            days_back=days,
            only_forks=only_forks,
            repo_path=repo_path,
        )
    }


@cli.command(name="list")
@click.pass_context
def list_command(ctx: click.Context) -> None:
    """List pull requests waiting to be cherry-picked."""
    _run(_list_pull_requests(ctx.obj["settings"]), "list")


@cli.command()
@click.option("--pr", "pr_numbers", type=int, multiple=True, help="Pull request to pick (repeatable)")
@click.option("--all", "pick_all", is_flag=True, help="Pick every pending pull request, oldest first")
@click.option("--task-id", default=None, help="Task id rendered into the branch name template")
@click.pass_context
def pick(ctx: click.Context, pr_numbers: tuple[int, ...], pick_all: bool, task_id: str | None) -> None:
    """Cherry-pick pending pull requests onto the target branch."""
    if pr_numbers and pick_all:
        click.echo("Error: use either --pr or --all, not both", err=True)
        sys.exit(2)
    code = _run(_pick(ctx.obj["settings"], list(pr_numbers), pick_all, task_id), "pick")
    sys.exit(code)


@cli.command(name="save-config")
@click.option("--path", "env_path", default=ENV_FILE_NAME, show_default=True, help="File to write")
@click.pass_context
def save_config(ctx: click.Context, env_path: str) -> None:
    """Save the effective repository and branch settings to cherry.env."""
    settings: CherrySettings = ctx.obj["settings"]
    path = settings.save_env_overrides(env_path)
    click.echo(f"Saved settings to {path}")


def _run(coro: Coroutine[Any, Any, int | None], command: str) -> int:
    try:
        return asyncio.run(coro) or 0
    except GhCherryError as e:
        click.echo(f"Error: {e.message}", err=True)
        log.debug(f"{command}_error", exc_info=True)
        sys.exit(1)
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Unexpected error: {e}", err=True)
        log.error(f"{command}_unexpected", exc_info=True)
        sys.exit(1)


async def _prompt_choice(kind: str, options: list[str]) -> str:
    """Numbered menu on the terminal; returns the chosen option."""
    click.echo(f"Select {kind}:")
    for index, option in enumerate(options, start=1):
        click.echo(f"  {index}. {option}")
    choice = await asyncio.to_thread(click.prompt, "Number", type=click.IntRange(1, len(options)))
    return options[choice - 1]


async def _connect(settings: CherrySettings) -> tuple[GitHubRestProvider, CherrySettings]:
    """Authenticate, resolve the repository and select it."""
    configured = settings.github.token.get_secret_value() if settings.github.token else None
    token = await resolve_token(configured)

    provider = GitHubRestProvider(token, base_url=settings.github.api_url, page_size=settings.ui.page_size)
    await provider.connect()

    try:
        login = await provider.get_authenticated_identity()
        log.info("github_authenticated", login=login)

        if settings.needs_auto_discovery:
            resolver = AutoDiscoveryResolver(provider, _prompt_choice)
            target = await resolver.resolve(settings.github.owner, settings.github.repo, settings.ui.only_forks)
            settings = settings.with_overrides(owner=target.owner, repo=target.repo)

        assert settings.github.owner and settings.github.repo
        await provider.use_repository(settings.github.owner, settings.github.repo)
    except BaseException:
        await provider.disconnect()
        raise
    return provider, settings


async def _discover(provider: GitHubRestProvider, settings: CherrySettings) -> list[PullRequest]:
    discovery = PullRequestDiscovery(provider, settings.rules, settings.retry.to_policy())
    return await discovery.discover(settings.github.base_branch, settings.ui.days_back)


def _format_pull_request(pr: PullRequest) -> str:
    updated = pr.updated_at.strftime("%Y-%m-%d") if pr.updated_at else "----------"
    tags = ", ".join(pr.matched_tags)
    return f"#{pr.number:<6} {updated}  {pr.title}  [{tags}] ({len(pr.commits)} commit(s))"


async def _list_pull_requests(settings: CherrySettings) -> None:
    provider, settings = await _connect(settings)
    try:
        pulls = await _discover(provider, settings)
    finally:
        await provider.disconnect()

    if not pulls:
        click.echo(f"No pull requests pending cherry-pick into {settings.github.base_branch}")
        return
    click.echo(f"{settings.github.owner}/{settings.github.repo}: {len(pulls)} pull request(s) pending")
    for pr in pulls:
        click.echo(f"  {_format_pull_request(pr)}")


def select_pull_requests(
    candidates: list[PullRequest],
    numbers: list[int],
    pick_all: bool,
) -> list[PullRequest]:
    """Build the session queue.

    ``--pr`` keeps the order given on the command line; ``--all`` applies the
    candidates oldest first.

    Raises:
        ConfigurationError: If a requested number is not a pending candidate.
    """
    if pick_all:
        return list(reversed(candidates))

    by_number = {pr.number: pr for pr in candidates}
    missing = [n for n in numbers if n not in by_number]
    if missing:
        listed = ", ".join(f"#{n}" for n in missing)
        raise ConfigurationError(f"Not pending cherry-pick: {listed}")

    queue: list[PullRequest] = []
    for number in numbers:
        if by_number[number] not in queue:
            queue.append(by_number[number])
    return queue


async def _prompt_selection(candidates: list[PullRequest]) -> list[int]:
    click.echo("Pull requests pending cherry-pick:")
    for pr in candidates:
        click.echo(f"  {_format_pull_request(pr)}")
    raw = await asyncio.to_thread(click.prompt, "Numbers to pick, in order (comma separated)", default="")
    try:
        return [int(part.strip().lstrip("#")) for part in raw.split(",") if part.strip()]
    except ValueError as e:
        raise ConfigurationError(f"Invalid selection: {raw}") from e


async def _prompt_resolution(session: CherryPickSession) -> ResolutionAction:
    facts = describe_conflict(session)
    click.echo("")
    click.echo(click.style(f"Conflict in #{facts['pr']} {facts['title']}", fg="yellow", bold=True))
    click.echo(f"  commit {facts['commit']} ({facts['position']})")
    if facts["detail"]:
        click.echo(f"  {facts['detail']}")
    for path in facts["paths"]:
        click.echo(f"  conflicted: {path}")

    choices = ["skip", "abort"]
    if facts["kind"] == ConflictKind.MERGE_CONFLICT.value:
        click.echo("  Resolve the files, stage them with 'git add', then choose continue.")
        choices.insert(0, "continue")
    answer = await asyncio.to_thread(click.prompt, "Action", type=click.Choice(choices))
    return ResolutionAction(answer)


async def _pick(
    settings: CherrySettings,
    numbers: list[int],
    pick_all: bool,
    task_id: str | None,
) -> int:
    provider, settings = await _connect(settings)
    try:
        candidates = await _discover(provider, settings)
        if not candidates:
            click.echo(f"No pull requests pending cherry-pick into {settings.github.base_branch}")
            return 0

        if not numbers and not pick_all:
            numbers = await _prompt_selection(candidates)
        queue = select_pull_requests(candidates, numbers, pick_all)
        if not queue:
            click.echo("Nothing selected")
            return 0

        target_branch, start_point = settings.target_branch_for(task_id)
        repository = LocalGitRepository(
            settings.git.repo_path,
            remote=settings.git.remote,
            operation_timeout=settings.git.operation_timeout,
        )
        label_updater = LabelUpdater(
            provider,
            settings.rules,
            retry_policy=settings.retry.to_policy(),
            post_comment=settings.post_comment,
        )
        orchestrator = CherryPickOrchestrator(
            repository,
            label_updater,
            fetch_before_start=settings.git.fetch_before_start,
        )

        click.echo(f"Cherry-picking {len(queue)} pull request(s) onto {target_branch}")
        session = await orchestrator.start(queue, target_branch, start_point)
        while session.state is SessionState.CONFLICTED:
            action = await _prompt_resolution(session)
            try:
                session = await orchestrator.resolve(session, action)
            except InvalidTransitionError as e:
                click.echo(f"Error: {e.message}", err=True)
    finally:
        await provider.disconnect()

    click.echo("")
    click.echo(summarize(session))
    return 0 if session.state is SessionState.DONE else 1


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()

