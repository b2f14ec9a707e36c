import logging
import sys

import structlog

# Shared by both renderers; run-scoped keys arrive through contextvars.
BASE_PROCESSORS = [
    structlog.contextvars.merge_contextvars,
    structlog.processors.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
]


def setup_logging(debug: bool = False, json_logs: bool = False) -> structlog.BoundLogger:
    """Configure structlog for an export run.

    Interactive runs get the console renderer on stderr. ``json_logs`` switches
    to one JSON object per line for scheduled runs whose output is collected,
    with tracebacks rendered into the event instead of printed.
    """
    if json_logs:
        renderers = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    else:
        renderers = [structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())]

    structlog.configure(
        processors=[*BASE_PROCESSORS, *renderers],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )
    return structlog.get_logger("rectrac_export")


def get_logger(component: str | None = None, **context) -> structlog.BoundLogger:
    logger = structlog.get_logger()
    if component:
        context["component"] = component
    return logger.bind(**context) if context else logger


def run_context(**values):
    """Bind ``values`` to every log line emitted inside the ``with`` block."""
    return structlog.contextvars.bound_contextvars(**values)
