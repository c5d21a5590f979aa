"""Compliance audit trail."""

from pathlib import Path

from ..config import AuditConfig
from .events import (
    AuditEvent,
    AuditEventType,
    ComplianceFramework,
    RiskLevel,
    max_risk,
)
from .logger import AuditLogger, RetentionSummary
from .sinks import AuditSink, InMemoryAuditSink, JsonlAuditSink, LoggingAuditSink


def build_audit_logger(config: AuditConfig) -> AuditLogger:
    """Audit logger with the configured primary sink and a stderr fallback."""
    if config.sink == "jsonl":
        sink: AuditSink = JsonlAuditSink(Path(config.path))
    else:
        sink = InMemoryAuditSink()
    return AuditLogger(sink=sink, fallback=LoggingAuditSink(), config=config)


__all__ = [
    "AuditEvent",
    "AuditEventType",
    "ComplianceFramework",
    "RiskLevel",
    "max_risk",
    "AuditLogger",
    "RetentionSummary",
    "AuditSink",
    "InMemoryAuditSink",
    "JsonlAuditSink",
    "LoggingAuditSink",
    "build_audit_logger",
]
