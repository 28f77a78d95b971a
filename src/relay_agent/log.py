"""
Logging setup and secret redaction.

Values the user marks as sensitive are registered with the process-wide
SecretMasker. The ``redact_secrets`` processor replaces them in every log
event before rendering. The transcript itself keeps the raw values.
"""

import logging
import threading
from typing import Any

import structlog

MASK = "********"


class SecretMasker:
    """Process-local list of substrings that must never reach a log."""

    def __init__(self):
        self._values: list[str] = []
        self._lock = threading.Lock()

    def add(self, value: str) -> None:
        if not value:
            return
        with self._lock:
            if value not in self._values:
                self._values.append(value)
                # longest first so a secret containing another is fully hidden
                self._values.sort(key=len, reverse=True)

    def clear(self) -> None:
        with self._lock:
            self._values.clear()

    @property
    def values(self) -> list[str]:
        with self._lock:
            return list(self._values)

    def mask(self, text: str) -> str:
        for value in self.values:
            text = text.replace(value, MASK)
        return text

    def mask_value(self, value: Any) -> Any:
        """Mask strings nested in dicts, lists and tuples."""
        if isinstance(value, str):
            return self.mask(value)
        if isinstance(value, dict):
            return {k: self.mask_value(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.mask_value(v) for v in value)
        return value


_masker = SecretMasker()


def get_secret_masker() -> SecretMasker:
    """Get the process-wide secret masker."""
    return _masker


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog processor that masks registered secrets in every field."""
    if not _masker.values:
        return event_dict
    return {key: _masker.mask_value(value) for key, value in event_dict.items()}


def configure_logging(level: str = "INFO") -> None:
    """Configure structlog for console output."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper(), logging.INFO))

    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            redact_secrets,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
