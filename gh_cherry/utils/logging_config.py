"""structlog setup for the CLI.

Everything is logged to stderr, so stdout carries only the report and the
prompts.
"""

import logging
import sys

import structlog

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(log_level: str = "WARNING", json_output: bool = False) -> None:
    """Install the process-wide structlog configuration.

    Args:
        log_level: One of ``LOG_LEVELS``, case-insensitive.
        json_output: Emit one JSON object per line for log shippers instead
            of the console format.

    Raises:
        ValueError: Unknown level name.
    """
    name = log_level.upper()
    if name not in LOG_LEVELS:
        raise ValueError(f"Unknown log level '{log_level}'; expected one of {', '.join(LOG_LEVELS)}")

    processors: list[structlog.typing.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if json_output:
        # ConsoleRenderer formats exc_info itself
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, name)),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )
