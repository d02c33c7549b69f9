"""Process-wide log setup for the iglink service.

Every module logs through ``logging.getLogger(__name__)``; ``configure_logging``
installs a single stderr handler whose structlog ``ProcessorFormatter`` renders
those records either for a terminal (``text``) or as one JSON object per line
(``json``, the format the deployed service ships to its log pipeline).

Each record is stamped with the id of the HTTP request being served (set by
``RequestContextMiddleware``) and the trace/span ids of the active
``iglink.callback`` span, so one linking attempt can be followed across the
exchange, identity, database and webhook log lines.  The handler also scrubs
OAuth secrets before anything is written.
"""

from __future__ import annotations

import logging
import re
import sys
from contextvars import ContextVar

import structlog
from opentelemetry import trace

# ---------------------------------------------------------------------------
# Request id (one per inbound HTTP request)
# ---------------------------------------------------------------------------

_request_context: ContextVar[str | None] = ContextVar("request_id", default=None)


def set_request_context(request_id: str | None) -> None:
    """Set the request id for the current async context."""
    _request_context.set(request_id)


def get_request_context() -> str | None:
    return _request_context.get()


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_request_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Stamp the id of the request being served; ``None`` outside a request."""
    event_dict["request_id"] = _request_context.get()
    return event_dict


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Inject ``trace_id`` and ``span_id`` from the current OTel span."""
    span = trace.get_current_span()
    ctx = span.get_span_context()
    if ctx and ctx.trace_id:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    else:
        event_dict["trace_id"] = "0" * 32
        event_dict["span_id"] = "0" * 16
    return event_dict


# ---------------------------------------------------------------------------
# Credential redaction
# ---------------------------------------------------------------------------

_REDACTED = "[REDACTED]"

_REDACTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    # Authorization: Bearer <token>
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-._~+/]+=*", re.IGNORECASE), rf"\1{_REDACTED}"),
    # Secrets carried in query strings or form bodies
    (
        re.compile(r"\b(access_token|client_secret|code|apikey)=[^&\s\"']+"),
        rf"\1={_REDACTED}",
    ),
)


class CredentialRedactionFilter(logging.Filter):
    """Scrub bearer tokens and OAuth secrets from log records.

    Library loggers (httpx in particular) log full request URLs, and the
    long-lived token exchange carries ``client_secret`` and ``access_token``
    as query parameters.  The message is rendered once, scrubbed, and its
    ``args`` cleared so the formatter cannot re-interpolate the originals.

    Never drops a record.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        redacted = message
        for pattern, replacement in _REDACTION_PATTERNS:
            redacted = pattern.sub(replacement, redacted)
        if redacted != message:
            record.msg = redacted
            record.args = ()
        return True


# ---------------------------------------------------------------------------
# Library loggers held at WARNING
# ---------------------------------------------------------------------------

_NOISE_LOGGERS = (
    "uvicorn.access",
    "uvicorn.error",
    "httpx",
    "httpcore",
)


def _build_processors(
    time_fmt: str,
) -> list[structlog.types.Processor]:
    """Processors shared by stdlib records and direct structlog calls."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_request_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
    ]


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Install the iglink stderr handler on the root logger.

    Safe to call more than once: the previous handler is replaced, so
    ``iglink serve`` and the tests can reconfigure without duplicate lines.

    Parameters
    ----------
    level:
        Name of the root level, as read from ``LOG_LEVEL``.  Unknown names
        fall back to ``INFO``.
    fmt:
        ``"json"`` for one JSON object per record with ISO timestamps,
        anything else for the console renderer.
    """
    time_fmt = "iso" if fmt == "json" else "%H:%M:%S"
    processors = _build_processors(time_fmt=time_fmt)
    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                renderer,
            ],
            foreign_pre_chain=processors,
        )
    )
    handler.addFilter(CredentialRedactionFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    # httpx logs every request URL at INFO, including hop 2's query string.
    for name in _NOISE_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            *processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
