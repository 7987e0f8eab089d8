from __future__ import annotations

import logging
import sys
from typing import Any, Callable, MutableMapping, cast

import structlog

from booking_settlement.config import LOG_LEVEL

# Type alias for structlog processor
Processor = Callable[[Any, str, MutableMapping[str, Any]], Any]

# Event keys that may carry payer PII or credentials
SENSITIVE_KEYS = frozenset(
    {"phone", "phone_number", "party_phone", "phoneNumber", "api_key", "authorization"}
)
VISIBLE_DIGITS = 3


def mask_value(value: Any) -> str:
    """
    Hide all but the last few characters.

    Example:
        >>> mask_value("250788123456")
        '*********456'
    """
    text = str(value)
    if len(text) <= VISIBLE_DIGITS:
        return "*" * len(text)
    return "*" * (len(text) - VISIBLE_DIGITS) + text[-VISIBLE_DIGITS:]


def mask_sensitive_fields(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking phone numbers and keys before rendering."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = mask_value(event_dict[key])
    return event_dict


def setup_logging() -> None:
    """
    Configures structured logging globally using structlog.

    LOG_LEVEL=INFO renders JSON lines for log aggregation, anything else
    renders the coloured console format. Payer phone numbers and credentials
    are masked in both.
    """
    logging.basicConfig(
        format="[%(asctime)s] %(levelname)s in %(name)s:%(lineno)d: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        level=LOG_LEVEL,
    )

    # Gateway and rate API calls log their own outcome
    for noisy_logger in ["urllib3", "requests", "sqlalchemy.engine", "alembic", "uvicorn.access"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    renderer: Processor = cast(
        Processor,
        (
            structlog.processors.JSONRenderer(sort_keys=True)
            if LOG_LEVEL == "INFO"
            else structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        ),
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            mask_sensitive_fields,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(LOG_LEVEL)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )
