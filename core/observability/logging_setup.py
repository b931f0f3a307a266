"""Logging configuration for the integration hub.

Module loggers (`logging.getLogger(__name__)`) everywhere; this module
configures the root logger once at startup and installs a filter that
masks credential values if one ever reaches a log message.
"""

import logging
import re

from core.config import LoggingConfig

_SECRET_PATTERNS = [
    # JSON / dict style: "apiKey": "value"  or  'apiSecret': 'value'
    re.compile(r"""(?P<key>["']?(?:apiKey|apiSecret|api_key|api_secret|access_key|appid|password)["']?\s*[:=]\s*["']?)(?P<value>[^"'\s,}&]+)""", re.IGNORECASE),
    # Authorization headers
    re.compile(r"(?P<key>(?:Bearer|Basic)\s+)(?P<value>[A-Za-z0-9._~+/=-]+)"),
]

MASK = "***"


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(lambda m: f"{m.group('key')}{MASK}", text)
    return text


class CredentialRedactionFilter(logging.Filter):
    """Masks credential values in the fully formatted message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure root logging once (idempotent)."""
    config = config or LoggingConfig()
    root = logging.getLogger()
    root.setLevel(config.level)

    if not any(getattr(h, "_integration_hub", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(config.format))
        handler.addFilter(CredentialRedactionFilter())
        handler._integration_hub = True  # type: ignore[attr-defined]
        root.addHandler(handler)

    # httpx logs full request URLs, which may carry api keys in the query string
    logging.getLogger("httpx").setLevel(logging.WARNING)
