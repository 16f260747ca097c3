"""Shared IPC framing constants."""

from __future__ import annotations

MAX_LINE_BYTES = 4 * 1024 * 1024  # 4 MiB per JSON line (without framing overhead)
STREAM_LIMIT_BYTES = MAX_LINE_BYTES + 1  # Include trailing newline separator.
CLIENT_ID_BYTES = 6  # 12 hex characters

__all__ = ["CLIENT_ID_BYTES", "MAX_LINE_BYTES", "STREAM_LIMIT_BYTES"]
