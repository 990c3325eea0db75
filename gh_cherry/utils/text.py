"""Small string helpers shared by the engine and the CLI."""

SHORT_SHA_LENGTH = 8


def short_sha(sha: str) -> str:
    """Return the first 8 characters of a commit hash.

    Shorter input is returned unchanged.
    """
    return sha[:SHORT_SHA_LENGTH]


def render_branch_name(template: str, task_id: str) -> str:
    """Render a branch name template.

    Every ``{task_id}`` placeholder is replaced; a template without
    placeholders is returned unchanged.

    Example:
        >>> render_branch_name("cherry-pick/{task_id}", "ABC-123")
        'cherry-pick/ABC-123'
    """
    return template.replace("{task_id}", task_id)
