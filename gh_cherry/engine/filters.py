"""Discovery filter: decides which pull requests qualify for cherry-picking.

A pull request qualifies when its labels carry all three markers:

* a sprint label matching the configured pattern (searched anywhere in the
  label, so ``S\\d+`` matches both ``S28`` and ``sprint-S28``),
* the environment tag, verbatim,
* the pending tag, verbatim.

Everything in this module is pure: no I/O, no logging, no clock.
"""

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone

from gh_cherry.exceptions import ConfigurationError
from gh_cherry.models.domain import PullRequest

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class TagRules:
    """Label configuration consumed read-only by discovery and label updates.

    Attributes:
        sprint_pattern: Compiled sprint regular expression.
        environment: Environment tag, e.g. ``DEV``.
        pending_tag: Tag marking work still to be cherry-picked.
        completed_tag: Tag applied once every commit is on the target branch.
    """

    sprint_pattern: re.Pattern[str]
    environment: str
    pending_tag: str
    completed_tag: str

    @classmethod
    def build(
        cls,
        sprint_pattern: str,
        environment: str,
        pending_tag: str,
        completed_tag: str,
    ) -> "TagRules":
        """Compile ``sprint_pattern`` and bundle the tags.

        Raises:
            ConfigurationError: If the pattern is not a valid regular expression.
        """
        try:
            compiled = re.compile(sprint_pattern)
        except re.error as e:
            raise ConfigurationError(f"Invalid sprint pattern {sprint_pattern!r}: {e}") from e
        return cls(
            sprint_pattern=compiled,
            environment=environment,
            pending_tag=pending_tag,
            completed_tag=completed_tag,
        )


@dataclass(frozen=True)
class FilterDecision:
    included: bool
    matched_tags: tuple[str, ...] = ()


def evaluate(labels: Iterable[str], rules: TagRules) -> FilterDecision:
    """Decide whether a label set qualifies.

    Args:
        labels: The pull request's labels, in the order the host returned them.
        rules: Tag configuration.

    Returns:
        A decision whose ``matched_tags`` lists every label that satisfied one
        of the three conditions, in the pull request's own label order. The
        tags are reported even when the pull request is not included.
    """
    label_list = list(labels)
    sprint_hit = False
    env_hit = False
    pending_hit = False
    matched: list[str] = []

    for label in label_list:
        hit = False
        if rules.sprint_pattern.search(label):
            sprint_hit = True
            hit = True
        if label == rules.environment:
            env_hit = True
            hit = True
        if label == rules.pending_tag:
            pending_hit = True
            hit = True
        if hit and label not in matched:
            matched.append(label)

    return FilterDecision(
        included=sprint_hit and env_hit and pending_hit,
        matched_tags=tuple(matched),
    )


def order_for_presentation(pull_requests: Sequence[PullRequest]) -> list[PullRequest]:
    """Most recently updated first; ties broken by number, highest first."""
    return sorted(
        pull_requests,
        key=lambda pr: (pr.updated_at or _OLDEST, pr.number),
        reverse=True,
    )


def select_included(pull_requests: Iterable[PullRequest], rules: TagRules) -> list[PullRequest]:
    """Keep qualifying pull requests, each carrying fresh ``matched_tags``."""
    selected = []
    for pr in pull_requests:
        decision = evaluate(pr.labels, rules)
        if decision.included:
            selected.append(pr.with_labels(pr.labels, rules))
    return selected
