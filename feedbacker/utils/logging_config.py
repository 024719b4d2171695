"""structlog setup for the service process.

Job and delivery ids are bound with ``structlog.contextvars`` by the
scheduler and webhook handlers and merged into every event emitted while
they are bound.
"""

import logging
import sys
from typing import Any, Literal

import structlog
from structlog.typing import EventDict

# Event keys whose values are masked before rendering.
SECRET_KEYS = frozenset({"token", "api_key", "password", "secret", "webhook_secret", "authorization"})


def redact_secrets(_logger: Any, _method: str, event_dict: EventDict) -> EventDict:
    for key in SECRET_KEYS.intersection(event_dict):
        if event_dict[key]:
            event_dict[key] = "***"
    return event_dict


def configure_logging(log_level: str = "INFO", fmt: Literal["json", "console"] = "json") -> None:
    """Install the processor chain and level filter.

    ``json`` emits one object per line for log shippers; ``console`` is the
    coloured development renderer. Stdlib loggers (credential lookups,
    uvicorn) get the same level and write to stderr.
    """
    level = logging.getLevelName(log_level.upper())
    renderer: Any = structlog.processors.JSONRenderer() if fmt == "json" else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
    logging.basicConfig(level=level, stream=sys.stderr, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
