"""Structured JSON logging configuration using structlog.

Call ``configure_logging()`` once at process startup (the Celery worker does
it on ``worker_process_init``; applications embedding the provider call it
themselves).  Modules log through the stdlib API::

    import logging
    logger = logging.getLogger(__name__)
    logger.info("Credits reserved", extra={"endpoint": "cryptocurrency/info"})

Fields passed via ``extra=`` are lifted into the structured record.

A ``call_id`` context variable is set by
:class:`~cmc_pro.provider.CoinMarketCapProvider` for the duration of each data
request, so the optimizer, credit, cache and HTTP log lines of one request can
be correlated.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar

import structlog
from structlog.types import EventDict, WrappedLogger

# ---------------------------------------------------------------------------
# Context variable: set by the provider, read by the log processor
# ---------------------------------------------------------------------------

call_id_var: ContextVar[str | None] = ContextVar("call_id", default=None)
"""Identifier of the provider request currently being served.

Usage::

    from cmc_pro.core.logging_config import call_id_var
    token = call_id_var.set(uuid.uuid4().hex)
    ...
    call_id_var.reset(token)
"""


# ---------------------------------------------------------------------------
# Custom processors
# ---------------------------------------------------------------------------


_SECRET_SUBSTRINGS: frozenset[str] = frozenset({
    "api_key",
    "cmc_pro_api_key",
    "password",
    "secret",
    "token",
    "authorization",
})
"""Lower-cased substrings identifying event-dict keys whose values are redacted."""


def _redact_secrets(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    """Replace values of secret-bearing keys with ``"[REDACTED]"``.

    Scans top-level keys and one level of nested dicts (e.g. ``headers={...}``),
    matching case-insensitively against :data:`_SECRET_SUBSTRINGS`.
    """
    redacted = "[REDACTED]"
    for key in list(event_dict.keys()):
        key_lower = key.lower().replace("-", "_")
        if any(secret in key_lower for secret in _SECRET_SUBSTRINGS):
            event_dict[key] = redacted
            continue
        val = event_dict[key]
        if isinstance(val, dict):
            for nested_key in list(val.keys()):
                nested_lower = str(nested_key).lower().replace("-", "_")
                if any(secret in nested_lower for secret in _SECRET_SUBSTRINGS):
                    val[nested_key] = redacted
    return event_dict


def _inject_call_id(
    logger: WrappedLogger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: EventDict,
) -> EventDict:
    call_id = call_id_var.get()
    if call_id is not None and "call_id" not in event_dict:
        event_dict["call_id"] = call_id
    return event_dict


# ---------------------------------------------------------------------------
# Public configuration entry-point
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """Configure structlog with JSON output for production.

    Outside DEBUG, emits newline-delimited JSON.  At DEBUG, uses structlog's
    ``ConsoleRenderer``.  Every record carries ``timestamp`` (ISO 8601),
    ``level``, ``logger``, ``event`` and, inside a provider request,
    ``call_id``.

    Idempotent: previously attached root handlers are replaced.

    Args:
        log_level: One of ``"DEBUG"``, ``"INFO"``, ``"WARNING"``, ``"ERROR"``,
            ``"CRITICAL"``.  Case-insensitive.
    """
    level_upper = log_level.upper()
    numeric_level = getattr(logging, level_upper, logging.INFO)
    is_development = level_upper == "DEBUG"

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.ExtraAdder(),
        _inject_call_id,
        _redact_secrets,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if is_development:
        final_renderer: structlog.types.Processor = structlog.dev.ConsoleRenderer(
            colors=True,
        )
    else:
        final_renderer = structlog.processors.JSONRenderer()

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            final_renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(numeric_level)

    if not is_development:
        for noisy_logger in ("httpx", "httpcore", "celery"):
            logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    structlog.configure(
        processors=shared_processors
        + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
