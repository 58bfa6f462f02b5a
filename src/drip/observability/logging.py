"""Structured logging for drip.

Every record, whether from ``logging.getLogger(__name__)`` with ``extra=``
fields or from a structlog logger, is rendered by the same structlog chain:

- JSON or console output
- request ID and caller IP of the HTTP request being served
- redaction of keys, coupons and captcha secrets (also inside nested dicts)
"""

import logging
import sys
from contextvars import ContextVar
from typing import Any

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
client_ip_var: ContextVar[str | None] = ContextVar("client_ip", default=None)

# "token" stays readable: it names ERC20 token IDs
REDACTED_FIELDS = frozenset(
    {
        "private_key",
        "pk",
        "secret",
        "password",
        "captcha_secret",
        "v2_captcha_secret",
        "captcha_token",
        "v2token",
        "coupon",
        "coupon_id",
        "couponid",
    }
)

# Libraries that log every RPC call or HTTP hit at INFO/DEBUG
NOISY_LOGGERS = ("web3", "urllib3", "aiohttp.access")

REDACTED = "[REDACTED]"


def _add_request_context(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add the current request ID and caller IP, when serving a request."""
    request_id = request_id_var.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    ip = client_ip_var.get()
    if ip:
        event_dict.setdefault("ip", ip)
    return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in REDACTED_FIELDS else _redact(v)
            for k, v in value.items()
        }
    return value


def _redact_sensitive(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Redact sensitive fields from log events."""
    for key, value in event_dict.items():
        if key.lower() in REDACTED_FIELDS:
            event_dict[key] = REDACTED
        elif isinstance(value, dict):
            event_dict[key] = _redact(value)
    return event_dict


def _shared_processors() -> list[structlog.typing.Processor]:
    return [
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        _add_request_context,
        _redact_sensitive,
    ]


def configure_logging(
    level: str = "INFO",
    log_format: str = "json",
) -> None:
    """Configure structured logging for the application.

    Parameters
    ----------
    level : str
        Log level (DEBUG, INFO, WARNING, ERROR).
    log_format : str
        Output format (json or text).

    Raises
    ------
    ValueError
        If ``level`` is not a logging level name.
    """
    try:
        log_level = getattr(logging, level.upper())
    except AttributeError:
        raise ValueError(
            f"Invalid log level: {level!r}. "
            "Valid levels are: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ) from None

    if log_format.lower() == "json":
        renderer: structlog.typing.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
            foreign_pre_chain=[structlog.stdlib.ExtraAdder(), *_shared_processors()],
        )
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(log_level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *_shared_processors(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def set_request_context(request_id: str, client_ip: str | None = None) -> None:
    """Bind the request being served to the current context."""
    request_id_var.set(request_id)
    client_ip_var.set(client_ip)


def clear_request_context() -> None:
    """Forget the request bound to the current context."""
    request_id_var.set(None)
    client_ip_var.set(None)
