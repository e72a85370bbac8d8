"""
AuditLogger - Structured logging of what a decommissioning mount did.

Records:
1. Mount and unmount of the adapter
2. Operations denied by the write policy
3. Entries deleted through the mount, with the space they released
4. Errors worth keeping for later review
"""

import json
import time
import threading
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional, Any, Dict, List
import logging
from logging.handlers import RotatingFileHandler


class EventType(Enum):
    """Types of events that can be logged."""
    FILESYSTEM_MOUNTED = "filesystem_mounted"
    FILESYSTEM_UNMOUNTED = "filesystem_unmounted"
    OPERATION_DENIED = "operation_denied"
    ENTRY_DELETED = "entry_deleted"
    ERROR = "error"


@dataclass
class AuditEvent:
    """Structured audit record."""
    timestamp: float
    event_type: str
    level: int

    pid: Optional[int] = None
    uid: Optional[int] = None

    operation: Optional[str] = None
    path: Optional[str] = None
    inode: Optional[int] = None
    size_bytes: Optional[int] = None

    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        d['timestamp_iso'] = datetime.fromtimestamp(self.timestamp).isoformat()
        d['level'] = logging.getLevelName(self.level)
        return {k: v for k, v in d.items() if v is not None}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class AuditLogger:
    """
    Audit log for DecoFS.

    Console output is human-readable; the optional log file gets one JSON
    object per line and is rotated by size. Recent events are kept in a
    bounded buffer for the stats query.
    """

    DEFAULT_MAX_BYTES = 50 * 1024 * 1024
    DEFAULT_BACKUP_COUNT = 10
    DEFAULT_BUFFER_SIZE = 1000

    def __init__(
        self,
        log_file: Optional[str] = None,
        console_output: bool = True,
        max_bytes: int = DEFAULT_MAX_BYTES,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        logger_name: str = "DecoFS.Audit",
    ):
        """
        Args:
            log_file: Path to JSON audit file (None disables file logging)
            console_output: Whether to output to console
            max_bytes: Maximum size per log file before rotation
            backup_count: Number of rotated log files to keep
            buffer_size: Number of recent events kept in memory
            logger_name: Name of the underlying Python logger
        """
        self.log_file = log_file
        self.console_output = console_output

        self._event_buffer: List[AuditEvent] = []
        self._buffer_max_size = buffer_size
        self._buffer_lock = threading.Lock()

        # Running totals survive buffer trimming
        self._denied_counts: Dict[str, int] = {}
        self._deleted_count = 0
        self._bytes_released = 0

        self._console_logger = logging.getLogger(logger_name)
        self._file_logger = logging.getLogger(logger_name + ".File")
        self._file_logger.propagate = False
        self._file_logger.setLevel(logging.DEBUG)
        self._file_logger.handlers.clear()

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
            )
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter('%(message)s'))
            self._file_logger.addHandler(file_handler)

    def close(self) -> None:
        """Flush and detach the file handler."""
        for handler in list(self._file_logger.handlers):
            handler.close()
            self._file_logger.removeHandler(handler)

    def _add_to_buffer(self, event: AuditEvent) -> None:
        with self._buffer_lock:
            self._event_buffer.append(event)
            if len(self._event_buffer) > self._buffer_max_size:
                self._event_buffer = self._event_buffer[-self._buffer_max_size:]

            if event.event_type == EventType.OPERATION_DENIED.value:
                self._denied_counts[event.operation] = (
                    self._denied_counts.get(event.operation, 0) + 1
                )
            elif event.event_type == EventType.ENTRY_DELETED.value:
                self._deleted_count += 1
                self._bytes_released += event.size_bytes or 0

    def _format_console_message(self, event: AuditEvent) -> str:
        """Format event for human-readable console output."""
        parts = [f"[{event.event_type}]"]

        if event.operation:
            parts.append(f"op={event.operation}")
        if event.path:
            parts.append(f"path={event.path}")
        if event.inode is not None:
            parts.append(f"inode={event.inode}")
        if event.pid:
            parts.append(f"pid={event.pid}")
        if event.size_bytes is not None:
            parts.append(f"size={event.size_bytes}")
        if event.details and "message" in event.details:
            parts.append(event.details["message"])

        return " ".join(parts)

    def log(self, event: AuditEvent) -> None:
        self._add_to_buffer(event)

        if self.log_file:
            self._file_logger.log(event.level, event.to_json())

        if self.console_output:
            self._console_logger.log(event.level, self._format_console_message(event))

    def log_denied_operation(
        self,
        operation: str,
        inode: Optional[int] = None,
        name: Optional[str] = None,
        pid: Optional[int] = None,
        uid: Optional[int] = None,
    ) -> None:
        """
        Log an operation rejected by the write policy.

        Args:
            operation: Name of the denied operation
            inode: Inode handle the request referred to, if any
            name: Entry name the request referred to, if any
            pid: Requesting process ID
            uid: Requesting user ID
        """
        self.log(AuditEvent(
            timestamp=time.time(),
            event_type=EventType.OPERATION_DENIED.value,
            level=logging.WARNING,
            pid=pid,
            uid=uid,
            operation=operation,
            inode=inode,
            details={"name": name} if name is not None else None,
        ))

    def log_deletion(
        self,
        operation: str,
        path: str,
        inode: Optional[int] = None,
        size_bytes: int = 0,
        pid: Optional[int] = None,
        uid: Optional[int] = None,
    ) -> None:
        """Log an entry removed from the source tree."""
        self.log(AuditEvent(
            timestamp=time.time(),
            event_type=EventType.ENTRY_DELETED.value,
            level=logging.INFO,
            pid=pid,
            uid=uid,
            operation=operation,
            path=path,
            inode=inode,
            size_bytes=size_bytes,
        ))

    def log_system_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.log(AuditEvent(
            timestamp=time.time(),
            event_type=event_type.value,
            level=logging.INFO,
            details={"message": message, **(details or {})},
        ))

    def log_error(
        self,
        message: str,
        exception: Optional[Exception] = None,
        details: Optional[dict] = None,
    ) -> None:
        error_details = {"message": message}
        if exception:
            error_details["exception_type"] = type(exception).__name__
            error_details["exception_message"] = str(exception)
        if details:
            error_details.update(details)

        self.log(AuditEvent(
            timestamp=time.time(),
            event_type=EventType.ERROR.value,
            level=logging.ERROR,
            details=error_details,
        ))

    def get_recent_events(
        self,
        count: int = 100,
        event_type: Optional[EventType] = None,
        since_timestamp: Optional[float] = None,
    ) -> List[AuditEvent]:
        """
        Query recent events from the in-memory buffer.

        Args:
            count: Maximum number of events to return
            event_type: Filter by event type
            since_timestamp: Only return events at or after this timestamp

        Returns:
            Matching events, oldest first
        """
        with self._buffer_lock:
            events = list(self._event_buffer)

        if event_type:
            events = [e for e in events if e.event_type == event_type.value]

        if since_timestamp:
            events = [e for e in events if e.timestamp >= since_timestamp]

        return events[-count:]

    def get_summary(self) -> dict:
        """Totals since the logger was created."""
        with self._buffer_lock:
            return {
                "operations_denied": sum(self._denied_counts.values()),
                "denied_by_operation": dict(self._denied_counts),
                "entries_deleted": self._deleted_count,
                "bytes_released": self._bytes_released,
            }
