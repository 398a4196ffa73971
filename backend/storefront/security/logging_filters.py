"""Logging filters that scrub customer contact data and check-in codes."""

from __future__ import annotations

import logging
import re

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(\.[\w-]+)+")
_PHONE_PATTERN = re.compile(r"(?<![\w-])\+?\d[\d\s().-]{7,}\d(?![\w-])")
_CHECK_IN_PATTERN = re.compile(
    r"(check_in_code\"?\s*[:=]\s*\"?)(\d{4,16})", re.IGNORECASE
)
_REDACTED = "**REDACTED**"


def redact(text: str) -> str:
    """Return ``text`` with emails, phone numbers and check-in codes masked."""
    text = _CHECK_IN_PATTERN.sub(lambda match: match.group(1) + _REDACTED, text)
    text = _EMAIL_PATTERN.sub(_REDACTED, text)
    return _PHONE_PATTERN.sub(_REDACTED, text)


class SensitiveFilter(logging.Filter):
    """Replace customer contact details in log messages with a redaction marker."""

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    key: redact(value) if isinstance(value, str) else value
                    for key, value in record.args.items()
                }
            else:
                record.args = tuple(
                    redact(arg) if isinstance(arg, str) else arg for arg in record.args
                )
        return True


__all__ = ["SensitiveFilter", "redact"]
