"""Retry eligibility for media job failures."""

from __future__ import annotations

import enum
from typing import Any, Tuple


class FailureKind(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


# Checked in order; the first matching substring wins.
CLASSIFICATION_RULES: Tuple[Tuple[str, FailureKind], ...] = (
    ("invalid file", FailureKind.PERMANENT),
    ("unsupported format", FailureKind.PERMANENT),
    ("corrupt", FailureKind.PERMANENT),
    ("validation failed", FailureKind.PERMANENT),
    ("not found", FailureKind.PERMANENT),
    ("permission denied", FailureKind.PERMANENT),
    ("network", FailureKind.TRANSIENT),
    ("timeout", FailureKind.TRANSIENT),
    ("rate limit", FailureKind.TRANSIENT),
    ("too many requests", FailureKind.TRANSIENT),
    ("connection", FailureKind.TRANSIENT),
    ("temporarily unavailable", FailureKind.TRANSIENT),
)

DEFAULT_FAILURE_KIND = FailureKind.TRANSIENT


def error_message(error: Any) -> str:
    """Human-readable text for anything that may have been raised."""
    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__
    return str(error)


def classify_error(error: Any) -> FailureKind:
    """Map a failure to transient (retry) or permanent (give up)."""
    if not isinstance(error, BaseException):
        return FailureKind.PERMANENT

    message = error_message(error).lower()
    for pattern, kind in CLASSIFICATION_RULES:
        if pattern in message:
            return kind
    return DEFAULT_FAILURE_KIND