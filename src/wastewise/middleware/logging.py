"""Structured logging configuration with structlog."""

import logging

import structlog

from wastewise.auth.accounts import format_account
from wastewise.config import Settings

# Wallet addresses in these event keys are shortened before rendering.
ACCOUNT_KEYS = ("account", "wallet", "to_account", "reserved_by", "actor")

# Chatty client libraries: per-request INFO lines from these drown the service's own events.
QUIET_LOGGERS = ("httpx", "httpcore", "web3", "urllib3", "arq.worker")


def shorten_accounts(_logger: object, _method: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """structlog processor: render wallet addresses as 0x1234...abcd."""
    for key in ACCOUNT_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and value.startswith("0x"):
            event_dict[key] = format_account(value)
    return event_dict


def _service_fields(settings: Settings) -> structlog.types.Processor:
    """structlog processor stamping every event with the service name and environment."""

    def processor(_logger: object, _method: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
        event_dict.setdefault("service", "wastewise")
        event_dict.setdefault("environment", settings.environment)
        return event_dict

    return processor


def setup_logging(settings: Settings) -> None:
    """Configure structlog for JSON or console output."""
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer() if settings.log_format == "json" else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.CallsiteParameterAdder([structlog.processors.CallsiteParameter.FUNC_NAME]),
            _service_fields(settings),
            shorten_accounts,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    if not settings.debug:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)
