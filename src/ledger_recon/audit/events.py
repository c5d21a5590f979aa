"""Audit event model and its enumerations."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
import uuid

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Every auditable action in the engine."""

    # Ingestion
    STATEMENT_IMPORTED = "statement_imported"
    DUPLICATE_TRANSACTION_SKIPPED = "duplicate_transaction_skipped"
    TRANSACTION_DELETED = "transaction_deleted"

    # Reconciliation
    RECONCILIATION_SESSION_CREATED = "reconciliation_session_created"
    RECONCILIATION_COMPLETED = "reconciliation_completed"
    RECONCILIATION_APPROVED = "reconciliation_approved"
    RECONCILIATION_DISPUTED = "reconciliation_disputed"
    RECONCILIATION_REOPENED = "reconciliation_reopened"
    RECONCILIATION_CANCELLED = "reconciliation_cancelled"
    MATCH_REVIEWED = "match_reviewed"
    REPEATED_MATCH_FAILURES = "repeated_match_failures"

    # AI interactions
    AI_CATEGORIZATION = "ai_categorization"
    AI_FEEDBACK_PROCESSED = "ai_feedback_processed"

    # Reporting
    REPORT_GENERATED = "report_generated"


class RiskLevel(str, Enum):
    """Risk levels for compliance monitoring."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = [RiskLevel.LOW, RiskLevel.MEDIUM, RiskLevel.HIGH, RiskLevel.CRITICAL]


def max_risk(*levels: Optional[RiskLevel]) -> RiskLevel:
    """Highest of the given risk levels (LOW when none are given)."""
    present = [lvl for lvl in levels if lvl is not None]
    if not present:
        return RiskLevel.LOW
    return max(present, key=lambda lvl: lvl.rank)


class ComplianceFramework(str, Enum):
    """Compliance frameworks an event may be relevant to."""

    SOC2 = "soc2"
    GDPR = "gdpr"
    HIPAA = "hipaa"
    PCI = "pci"
    SOX = "sox"


class AuditEvent(BaseModel):
    """Audit log entry."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = Field(default_factory=datetime.now)
    event_type: AuditEventType
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    description: str = ""
    risk_level: RiskLevel = RiskLevel.LOW
    compliance_tags: list[ComplianceFramework] = Field(default_factory=list)

    # Financial context
    amount: Optional[Decimal] = None
    currency: Optional[str] = None

    # AI context
    ai_model: Optional[str] = None
    ai_provider: Optional[str] = None
    confidence: Optional[float] = None
    explanation: Optional[str] = None

    metadata: dict[str, Any] = Field(default_factory=dict)
