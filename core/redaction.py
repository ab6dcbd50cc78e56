"""
core/redaction.py -- Mask credentials before they reach a log handler.

Auth handlers log request context (email, ids, reasons). A careless
logger.info("%s", body) would otherwise write passwords, tokens, or one-time
codes to disk. RedactingFilter is attached to the root handlers in api/main.py
so every logger in the process goes through it.

Matching is by key name (case-insensitive substring), applied recursively to
dict / list / tuple log arguments. Plain strings are left alone -- the filter
does not guess at free text.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations

import logging
from typing import Any

REDACTED = "[REDACTED]"

SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "passwd",
    "secret",
    "token",
    "authorization",
    "cookie",
    "api_key",
    "apikey",
    "otp",
    "one_time_code",
    "verification_code",
    "hash",
)


def is_sensitive_key(key: Any) -> bool:
    """Return True if a mapping key names a value that must never be logged."""
    if not isinstance(key, str):
        return False
    lowered = key.lower()
    return any(marker in lowered for marker in SENSITIVE_KEYS)


def redact(value: Any) -> Any:
    """Return a copy of value with sensitive mapping entries replaced by REDACTED."""
    if isinstance(value, dict):
        return {k: (REDACTED if is_sensitive_key(k) else redact(v)) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(v) for v in value]
    if isinstance(value, tuple):
        return tuple(redact(v) for v in value)
    return value


class RedactingFilter(logging.Filter):
    """logging.Filter that rewrites record.args through redact().

    Never drops a record -- filter() always returns True.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = redact(record.args)
        elif isinstance(record.args, tuple):
            record.args = tuple(redact(a) for a in record.args)
        return True
