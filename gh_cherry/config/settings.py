"""
Configuration system using Pydantic for type-safe settings management.

Settings are layered, later layers winning:

1. Built-in defaults.
2. ``GH_CHERRY_*`` environment variables (``GH_CHERRY_GITHUB__OWNER=acme``).
3. A YAML file (``--config`` or ``<app dir>/config.yaml``) with ``${VAR}`` and
   ``${VAR:-default}`` environment interpolation.
4. A ``cherry.env`` file in the working directory, using the flat keys
   listed in ``ENV_FILE_KEYS``.
5. Command-line flags.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import click
import structlog
import yaml
from dotenv import dotenv_values
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gh_cherry.engine.filters import TagRules
from gh_cherry.exceptions import ConfigurationError
from gh_cherry.utils.retry import RetryPolicy
from gh_cherry.utils.text import render_branch_name

log = structlog.get_logger(__name__)

APP_NAME = "gh_cherry"
ENV_FILE_NAME = "cherry.env"

# cherry.env key -> (section, field)
ENV_FILE_KEYS: dict[str, tuple[str, str]] = {
    "GITHUB_OWNER": ("github", "owner"),
    "GITHUB_REPO": ("github", "repo"),
    "BASE_BRANCH": ("github", "base_branch"),
    "TARGET_BRANCH": ("github", "target_branch"),
    "CHERRY_PICK_SOURCE_BRANCH": ("github", "cherry_pick_source_branch"),
    "BRANCH_NAME_TEMPLATE": ("github", "branch_name_template"),
    "ONLY_FORKED_REPOS": ("ui", "only_forks"),
    "DAYS_BACK": ("ui", "days_back"),
}


def default_config_path() -> Path:
    """``config.yaml`` in the platform's per-user config directory."""
    return Path(click.get_app_dir(APP_NAME)) / "config.yaml"


class GitHubConfig(BaseModel):
    """Repository and branch configuration.

    An empty owner or repository triggers auto-discovery.
    """

    owner: str | None = Field(default=None, description="Repository owner (user or organization)")
    repo: str | None = Field(default=None, description="Repository name")
    base_branch: str = Field(default="develop", description="Branch the pull requests were merged into")
    target_branch: str = Field(default="main", description="Branch commits are cherry-picked onto")
    cherry_pick_source_branch: str | None = Field(
        default=None, description="Ref a templated target branch is created from (defaults to target_branch)"
    )
    branch_name_template: str | None = Field(
        default=None, description="Target branch template with a {task_id} placeholder"
    )
    api_url: str = Field(default="https://api.github.com", description="GitHub API base URL")
    token: SecretStr | None = Field(default=None, description="API token; discovered from gh or GITHUB_TOKEN if unset")


class TagsConfig(BaseModel):
    """Pull request label configuration."""

    sprint_pattern: str = Field(default=r"S\d+", description="Regular expression a sprint label must match")
    environment: str = Field(default="DEV", description="Environment label")
    pending_tag: str = Field(default="pending cherrypick", description="Label of pull requests still to pick")
    completed_tag: str = Field(default="cherry picked", description="Label applied once picked")

    @field_validator("sprint_pattern")
    @classmethod
    def _compiles(cls, value: str) -> str:
        try:
            re.compile(value)
        except re.error as e:
            raise ValueError(f"invalid regular expression: {e}") from e
        return value

    def to_rules(self) -> TagRules:
        return TagRules.build(self.sprint_pattern, self.environment, self.pending_tag, self.completed_tag)


class UIConfig(BaseModel):
    """Discovery and selection behavior."""

    days_back: int = Field(default=28, ge=1, description="Lookback window for pull requests, in days")
    page_size: int = Field(default=20, ge=1, le=100, description="Items per API page")
    only_forks: bool = Field(default=False, description="Offer only forked repositories during auto-discovery")


class GitConfig(BaseModel):
    """Local working tree configuration."""

    repo_path: str = Field(default=".", description="Path inside the clone to operate on")
    remote: str = Field(default="origin", description="Remote to fetch from")
    operation_timeout: float = Field(default=120.0, gt=0, description="Seconds a single git operation may take")
    fetch_before_start: bool = Field(default=True, description="Fetch the remote before a session starts")


class RetryConfig(BaseModel):
    """Backoff for code host calls."""

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0)
    factor: float = Field(default=2.0, ge=1)
    max_delay: float = Field(default=30.0, ge=0)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay=self.base_delay,
            factor=self.factor,
            max_delay=self.max_delay,
        )


class CherrySettings(BaseSettings):
    """Main gh-cherry settings.

    This class combines all configuration sections and provides methods
    for loading from YAML files with environment variable interpolation.
    """

    model_config = SettingsConfigDict(
        env_prefix="GH_CHERRY_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    tags: TagsConfig = Field(default_factory=TagsConfig)
    ui: UIConfig = Field(default_factory=UIConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    post_comment: bool = Field(default=True, description="Comment on pull requests after cherry-picking them")

    @property
    def needs_auto_discovery(self) -> bool:
        return not self.github.owner or not self.github.repo

    @property
    def rules(self) -> TagRules:
        return self.tags.to_rules()

    def target_branch_for(self, task_id: str | None = None) -> tuple[str, str | None]:
        """Target branch for a session and the start point to create it from.

        Without a template (or without a task id) the configured target
        branch is used as is and must already exist.

        Returns:
            ``(branch, start_point)``; ``start_point`` is None when no branch
            needs to be created.
        """
        template = self.github.branch_name_template
        if not template or not task_id:
            return self.github.target_branch, None
        branch = render_branch_name(template, task_id)
        start_point = self.github.cherry_pick_source_branch or self.github.target_branch
        return branch, start_point

    def with_overrides(self, **overrides: Any) -> CherrySettings:
        """Return a copy with non-None values applied.

        Keys are ``owner``, ``repo``, ``base_branch``, ``target_branch``,
        ``days_back``, ``only_forks`` and ``repo_path``.
        """
        github = {k: v for k, v in overrides.items() if k in ("owner", "repo", "base_branch", "target_branch")}
        ui = {k: v for k, v in overrides.items() if k in ("days_back", "only_forks")}
        git = {k: v for k, v in overrides.items() if k == "repo_path"}

        def _set(section: BaseModel, values: dict[str, Any]) -> BaseModel:
            values = {k: v for k, v in values.items() if v is not None}
            return section.model_copy(update=values) if values else section

        return self.model_copy(
            update={
                "github": _set(self.github, github),
                "ui": _set(self.ui, ui),
                "git": _set(self.git, git),
            }
        )

    @classmethod
    def load(cls, config_path: str | Path | None = None, env_file: str | Path | None = ENV_FILE_NAME) -> CherrySettings:
        """Load settings the way the CLI does.

        Args:
            config_path: Explicit YAML file; must exist. When None, the
                default location is used if present, otherwise defaults.
            env_file: ``cherry.env`` override file, applied when it exists.

        Raises:
            ConfigurationError: If the configuration is unreadable or invalid.
        """
        if config_path is not None:
            settings = cls.from_yaml(str(config_path))
        else:
            default = default_config_path()
            if default.exists():
                settings = cls.from_yaml(str(default))
            else:
                log.debug("config_file_not_found", path=str(default))
                settings = cls._validated({})

        if env_file is not None and Path(env_file).exists():
            settings = settings.apply_env_file(env_file)
        return settings

    @classmethod
    def from_yaml(cls, config_path: str) -> CherrySettings:
        """Load settings from YAML file with environment variable interpolation.

        Supports ${VAR_NAME} syntax for environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            CherrySettings instance

        Raises:
            ConfigurationError: If config file is invalid or missing required fields
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        try:
            yaml_content = config_file.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration file: {config_path}") from e

        try:
            yaml_content = cls._interpolate_env_vars(yaml_content)
        except ValueError as e:
            raise ConfigurationError(f"Invalid environment variable reference in config: {e}") from e

        try:
            config_dict = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML syntax in {config_path}: {e}") from e

        if config_dict is None:
            config_dict = {}
        if not isinstance(config_dict, dict):
            raise ConfigurationError("Configuration must be a YAML object, not a list or scalar")

        return cls._validated(config_dict)

    @classmethod
    def _validated(cls, values: dict[str, Any]) -> CherrySettings:
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def apply_env_file(self, env_file: str | Path) -> CherrySettings:
        """Return a copy overridden by the flat keys of a ``cherry.env`` file."""
        values = dotenv_values(env_file)
        data = self.model_dump()
        applied = []
        for key, raw in values.items():
            if key not in ENV_FILE_KEYS or raw is None:
                continue
            section, field = ENV_FILE_KEYS[key]
            data[section][field] = raw
            applied.append(key)

        if applied:
            log.info("env_file_applied", path=str(env_file), keys=applied)
        return self._validated(data)

    def save_env_overrides(self, env_file: str | Path = ENV_FILE_NAME) -> Path:
        """Write the ``cherry.env`` keys for the current values.

        Unset optional values are omitted. Returns the written path.
        """
        path = Path(env_file)
        lines = []
        for key, (section, field) in ENV_FILE_KEYS.items():
            value = getattr(getattr(self, section), field)
            if value is None or value == "":
                continue
            if isinstance(value, bool):
                rendered = "true" if value else "false"
            elif isinstance(value, int):
                rendered = str(value)
            else:
                rendered = '"' + str(value).replace("\\", "\\\\").replace('"', '\\"') + '"'
            lines.append(f"{key}={rendered}")

        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        log.info("env_file_saved", path=str(path), keys=len(lines))
        return path

    @staticmethod
    def _interpolate_env_vars(content: str) -> str:
        """Interpolate ${VAR_NAME} placeholders with environment variables.

        Supports two syntaxes:
        - ${VAR_NAME} - Required environment variable (raises if not set)
        - ${VAR_NAME:-default} - Optional with default value

        YAML comment lines are left unchanged.

        Raises:
            ValueError: If a required environment variable is not set
        """
        pattern = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

        def replace_var(match: re.Match[str]) -> str:
            var_name = match.group(1)
            default_value = match.group(2)
            value = os.getenv(var_name)

            if value is not None:
                return value
            if default_value is not None:
                return default_value
            raise ValueError(f"Environment variable {var_name} is not set")

        def process_line(line: str) -> str:
            if line.lstrip().startswith("#"):
                return line
            return pattern.sub(replace_var, line)

        return "\n".join(process_line(line) for line in content.split("\n"))
