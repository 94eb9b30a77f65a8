"""Utility modules for idempotent execution."""

from .headers import (
    KEY_HEADER,
    REPLAY_HEADER,
    VOLATILE_HEADERS,
    strip_volatile_headers,
    with_replay_headers,
)

__all__ = [
    "strip_volatile_headers",
    "with_replay_headers",
    "KEY_HEADER",
    "REPLAY_HEADER",
    "VOLATILE_HEADERS",
]
