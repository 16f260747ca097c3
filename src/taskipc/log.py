"""Logging setup with an in-memory ring buffer for diagnostics.

Records from every ``taskipc.*`` logger are written to stderr and kept in a
bounded buffer that can be exported to a file after the fact.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

MAX_LOG_LINES = 2000
MAX_LOG_MESSAGE_LENGTH = 8192


@dataclass(slots=True)
class LogEntry:
    """A captured log entry."""

    group: str  # Level name (DEBUG, INFO, WARNING, ERROR, etc.)
    message: str
    timestamp: float


log_buffer: deque[LogEntry] = deque(maxlen=MAX_LOG_LINES)


class BufferLogHandler(logging.Handler):
    """Logging handler that captures logs to the ring buffer."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            if len(msg) > MAX_LOG_MESSAGE_LENGTH:
                msg = msg[:MAX_LOG_MESSAGE_LENGTH] + "... [truncated]"
            log_buffer.append(
                LogEntry(group=record.levelname, message=msg, timestamp=record.created)
            )
        except Exception:
            self.handleError(record)


_logging_initialized: bool = False


def setup_logging(level: str = "INFO") -> None:
    """Attach stderr and buffer handlers to the ``taskipc`` logger.

    Handlers are installed once; later calls only adjust the level.
    """
    global _logging_initialized

    package_logger = logging.getLogger("taskipc")
    package_logger.setLevel(level.upper())

    if _logging_initialized:
        return

    formatter = logging.Formatter("%(name)s: %(message)s")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )
    package_logger.addHandler(stream_handler)

    buffer_handler = BufferLogHandler()
    buffer_handler.setFormatter(formatter)
    package_logger.addHandler(buffer_handler)

    _logging_initialized = True


def clear_log_buffer() -> None:
    """Clear the log buffer."""
    log_buffer.clear()


def export_logs_to_file(file_path: str | Path) -> int:
    """Export all logs from the buffer to a file.

    Returns:
        Number of log entries written
    """
    output_path = Path(file_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with output_path.open("w", encoding="utf-8") as f:
        f.write("# taskipc debug log export\n")
        f.write(f"# Total entries: {len(log_buffer)}\n\n")
        for entry in log_buffer:
            ts = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
            f.write(f"{ts} [{entry.group}] {entry.message}\n")

    return len(log_buffer)


__all__ = [
    "LogEntry",
    "clear_log_buffer",
    "export_logs_to_file",
    "log_buffer",
    "setup_logging",
]
