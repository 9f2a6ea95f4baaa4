"""Error taxonomy.

Only one failure kind matters to the prefetch pipeline itself: a fetch
failure. Those are caught per query and never leave the scheduler or the
resume throttle. ``BootCacheError`` is raised for programming errors (unknown
query, empty viewer) and for snapshot decoding problems at startup.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    SNAPSHOT_CORRUPT = "SNAPSHOT_CORRUPT"
    UNKNOWN_QUERY = "UNKNOWN_QUERY"
    INVALID_VIEWER = "INVALID_VIEWER"


class BootCacheError(Exception):
    """Structured error with a machine-readable code."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"BootCacheError(code={self.code!s}, message={self.message!r})"
