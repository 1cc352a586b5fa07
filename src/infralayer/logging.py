import logging
from typing import Any, MutableMapping

import structlog

REDACTED = "***"

_secure_values: set[str] = set()


def register_secret(value: Any) -> None:
    """Mark a value as secure so it never appears in log output."""
    if value is None:
        return
    text = str(value)
    if text:
        _secure_values.add(text)


def clear_secrets() -> None:
    _secure_values.clear()


def mask(value: Any) -> Any:
    """Replace registered secure values inside strings, mappings and lists."""
    if isinstance(value, str):
        if not _secure_values:
            return value
        for secret in sorted(_secure_values, key=len, reverse=True):
            if secret in value:
                value = value.replace(secret, REDACTED)
        return value
    if isinstance(value, dict):
        return {k: mask(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [mask(v) for v in value]
    return value


def redact_secrets(
    _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking registered secure values."""
    if not _secure_values:
        return event_dict
    for key, value in list(event_dict.items()):
        event_dict[key] = mask(value)
    return event_dict


def configure_logging(level: int | str = logging.INFO) -> None:
    """Configure structlog/standard logging bridge."""

    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            timestamper,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.processors.JSONRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(level=level, format="%(message)s")


def bind_context(**kwargs: Any) -> structlog.stdlib.BoundLogger:
    """Bind contextual fields for downstream logs."""

    logger = structlog.get_logger()
    return logger.bind(**kwargs)
