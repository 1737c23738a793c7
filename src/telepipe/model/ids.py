"""
Trace and span identifiers.

Identifiers travel as lowercase hex strings everywhere in telepipe:
- trace_id: 16 bytes -> 32 hex chars
- span_id:   8 bytes -> 16 hex chars

An identifier made only of zeros is invalid (it means "no context").
"""

import random
import re

__all__ = [
    "INVALID_SPAN_ID",
    "INVALID_TRACE_ID",
    "generate_span_id",
    "generate_trace_id",
    "is_valid_span_id",
    "is_valid_trace_id",
    "validate_span_id",
    "validate_trace_id",
]

INVALID_TRACE_ID = "0" * 32
INVALID_SPAN_ID = "0" * 16

_TRACE_ID_RE = re.compile(r"^[0-9a-f]{32}$")
_SPAN_ID_RE = re.compile(r"^[0-9a-f]{16}$")

_rng = random.SystemRandom()


def generate_trace_id() -> str:
    """Return a random, non-zero 32 char hex trace id."""
    while True:
        value = _rng.getrandbits(128)
        if value:
            return format(value, "032x")


def generate_span_id() -> str:
    """Return a random, non-zero 16 char hex span id."""
    while True:
        value = _rng.getrandbits(64)
        if value:
            return format(value, "016x")


def is_valid_trace_id(value: str | None) -> bool:
    return bool(value) and bool(_TRACE_ID_RE.match(value)) and value != INVALID_TRACE_ID


def is_valid_span_id(value: str | None) -> bool:
    return bool(value) and bool(_SPAN_ID_RE.match(value)) and value != INVALID_SPAN_ID


def validate_trace_id(value: str) -> str:
    """Validate a trace id and return it unchanged.

    Raises:
        ValueError: If the id is not 32 lowercase hex chars or is all zeros.
    """
    if not is_valid_trace_id(value):
        raise ValueError(f"invalid trace_id: {value!r}")
    return value


def validate_span_id(value: str) -> str:
    """Validate a span id and return it unchanged.

    Raises:
        ValueError: If the id is not 16 lowercase hex chars or is all zeros.
    """
    if not is_valid_span_id(value):
        raise ValueError(f"invalid span_id: {value!r}")
    return value
