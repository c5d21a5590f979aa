"""
Audit sinks.

A sink only appends and reads back; it never rewrites an event.
"""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
import logging
import threading

from pydantic import ValidationError

from ..utils.logging_config import get_audit_fallback_logger
from .events import AuditEvent, RiskLevel

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Append-only destination for audit events."""

    @abstractmethod
    def append(self, event: AuditEvent) -> None:
        pass

    @abstractmethod
    def events(self) -> list[AuditEvent]:
        """All readable events in append order."""
        pass


class InMemoryAuditSink(AuditSink):
    """Keeps events in a process-local list."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: list[AuditEvent] = []

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event.model_copy(deep=True))

    def events(self) -> list[AuditEvent]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._events]


class JsonlAuditSink(AuditSink):
    """
    Append-only JSON Lines file.

    Writes are serialized by a lock; unreadable lines are skipped on read
    with a warning.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.touch(exist_ok=True)

    def append(self, event: AuditEvent) -> None:
        line = event.model_dump_json()
        with self._lock:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def events(self) -> list[AuditEvent]:
        out: list[AuditEvent] = []
        with self._lock:
            try:
                with open(self.path, "r", encoding="utf-8") as f:
                    lines = f.readlines()
            except FileNotFoundError:
                return []
        for line_num, line in enumerate(lines, 1):
            if not line.strip():
                continue
            try:
                out.append(AuditEvent.model_validate_json(line))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable audit line {line_num} in {self.path}: {e}")
        return out


_LOG_LEVELS = {
    RiskLevel.LOW: logging.INFO,
    RiskLevel.MEDIUM: logging.INFO,
    RiskLevel.HIGH: logging.WARNING,
    RiskLevel.CRITICAL: logging.CRITICAL,
}


class LoggingAuditSink(AuditSink):
    """
    Structured records on the audit fallback logger (stderr).

    Write-only: events written here are recovered from the log stream, not
    read back by the engine.
    """

    def __init__(self, log: Optional[logging.Logger] = None):
        self.log = log or get_audit_fallback_logger()

    def append(self, event: AuditEvent) -> None:
        self.log.log(
            _LOG_LEVELS.get(event.risk_level, logging.INFO),
            f"AUDIT {event.model_dump_json()}",
        )

    def events(self) -> list[AuditEvent]:
        return []
