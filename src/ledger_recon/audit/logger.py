"""
Compliance audit logger.

Every state-changing operation in the engine reports here. The logger never
raises to its caller: when the primary sink fails, the event is written to
the fallback sink and the failure is counted for operational alerting.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Optional, Union
import logging
import sys
import threading

from ..config import AuditConfig, RetentionPolicyConfig
from ..models import ReconciliationSession
from ..utils.exceptions import ComplianceLogFailure
from .events import (
    AuditEvent,
    AuditEventType,
    ComplianceFramework,
    RiskLevel,
    max_risk,
)
from .sinks import AuditSink, InMemoryAuditSink, LoggingAuditSink

logger = logging.getLogger(__name__)

# Baseline risk per event type; anything not listed is LOW
_BASE_RISK: dict[AuditEventType, RiskLevel] = {
    AuditEventType.TRANSACTION_DELETED: RiskLevel.HIGH,
    AuditEventType.RECONCILIATION_APPROVED: RiskLevel.MEDIUM,
    AuditEventType.RECONCILIATION_DISPUTED: RiskLevel.MEDIUM,
    AuditEventType.RECONCILIATION_REOPENED: RiskLevel.MEDIUM,
    AuditEventType.RECONCILIATION_CANCELLED: RiskLevel.MEDIUM,
    AuditEventType.REPEATED_MATCH_FAILURES: RiskLevel.MEDIUM,
}


@dataclass
class RetentionSummary:
    """Per-event-type retention status."""

    event_type: str
    count: int
    retention_days: int
    compliance_required: list[str] = field(default_factory=list)
    expired: int = 0


class AuditLogger:
    """
    Append-only audit event emitter with risk classification and
    compliance tagging.

    Usage:
        audit = AuditLogger(InMemoryAuditSink(), config=config.audit)
        audit.log_event(
            AuditEventType.STATEMENT_IMPORTED,
            action="import_statement",
            entity_type="account",
            entity_id="acct-1",
            user_id="user-1",
            description="Imported 42 statement lines",
        )
    """

    def __init__(
        self,
        sink: Optional[AuditSink] = None,
        fallback: Optional[AuditSink] = None,
        config: Optional[AuditConfig] = None,
    ):
        self.sink = sink or InMemoryAuditSink()
        self.fallback = fallback or LoggingAuditSink()
        self.config = config or AuditConfig()
        self._lock = threading.Lock()
        self._failure_count = 0
        self._failed_event_ids: list[str] = []

    @property
    def failure_count(self) -> int:
        """Events the primary sink rejected since startup."""
        with self._lock:
            return self._failure_count

    @property
    def failed_event_ids(self) -> list[str]:
        with self._lock:
            return list(self._failed_event_ids)

    def retention_policy(self, event_type: Union[AuditEventType, str]) -> RetentionPolicyConfig:
        key = event_type.value if isinstance(event_type, AuditEventType) else event_type
        policy = self.config.retention_policies.get(key)
        if policy is None:
            return RetentionPolicyConfig(retention_days=self.config.default_retention_days)
        return policy

    def classify_risk(
        self,
        event_type: AuditEventType,
        amount: Optional[Decimal] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> RiskLevel:
        """
        Risk level implied by an event's type and content.

        Deletions, bulk approvals, waived discrepancies and repeated match
        failures at or above the configured threshold are high risk; amounts
        above the large-amount threshold are at least medium.
        """
        metadata = metadata or {}
        risk = _BASE_RISK.get(event_type, RiskLevel.LOW)

        if event_type == AuditEventType.RECONCILIATION_APPROVED:
            if metadata.get("bulk") or metadata.get("waived"):
                risk = RiskLevel.HIGH
        if event_type == AuditEventType.REPEATED_MATCH_FAILURES:
            failures = int(metadata.get("failure_count", 0))
            if failures >= self.config.repeated_failure_threshold:
                risk = RiskLevel.HIGH
        if amount is not None and abs(Decimal(str(amount))) > Decimal(
            str(self.config.large_amount_threshold)
        ):
            risk = max_risk(risk, RiskLevel.MEDIUM)
        return risk

    def log_event(
        self,
        event_type: AuditEventType,
        action: str,
        entity_type: str,
        description: str = "",
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        compliance_tags: Optional[list[ComplianceFramework]] = None,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        ai_model: Optional[str] = None,
        ai_provider: Optional[str] = None,
        confidence: Optional[float] = None,
        explanation: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """
        Record an audit event.

        Args:
            event_type: Kind of event
            action: Operation that triggered the event
            entity_type: Kind of entity affected
            description: Human-readable summary
            entity_id: Affected entity
            user_id: Acting user
            risk_level: Minimum risk level; raised by classification
            compliance_tags: Frameworks the event is relevant to; merged with
                the frameworks the retention policy requires
            metadata: Additional structured details

        Returns:
            The recorded event
        """
        metadata = dict(metadata or {})
        policy = self.retention_policy(event_type)

        tags: list[ComplianceFramework] = []
        for tag in list(compliance_tags or []) + list(policy.compliance_required):
            framework = ComplianceFramework(tag)
            if framework not in tags:
                tags.append(framework)

        event = AuditEvent(
            event_type=event_type,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            description=description,
            risk_level=max_risk(risk_level, self.classify_risk(event_type, amount, metadata)),
            compliance_tags=tags,
            amount=amount,
            currency=currency,
            ai_model=ai_model,
            ai_provider=ai_provider,
            confidence=confidence,
            explanation=explanation,
            metadata=metadata,
        )

        try:
            self.sink.append(event)
        except Exception as e:
            self._handle_sink_failure(event, e)
        else:
            logger.debug(
                f"AUDIT: {event.event_type.value} on {entity_type}"
                f"{f'/{entity_id}' if entity_id else ''} by {user_id or 'system'}"
            )
        return event

    def _handle_sink_failure(self, event: AuditEvent, error: Exception) -> None:
        failure = ComplianceLogFailure(event.id, error)
        with self._lock:
            self._failure_count += 1
            self._failed_event_ids.append(event.id)
        logger.error(f"{failure}; writing to fallback sink")
        try:
            self.fallback.append(event)
        except Exception as fallback_error:
            # Last resort so the event is never silently lost
            sys.stderr.write(
                f"AUDIT FALLBACK FAILED ({fallback_error}): {event.model_dump_json()}\n"
            )

    def log_financial_event(
        self,
        event_type: AuditEventType,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        user_id: Optional[str],
        description: str,
        amount: Optional[Decimal] = None,
        currency: str = "USD",
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        return self.log_event(
            event_type,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            description=description,
            amount=amount,
            currency=currency if amount is not None else None,
            compliance_tags=[ComplianceFramework.SOC2, ComplianceFramework.SOX],
            metadata=metadata,
        )

    def log_ai_event(
        self,
        event_type: AuditEventType,
        entity_id: str,
        user_id: Optional[str],
        description: str,
        ai_model: str,
        ai_provider: str,
        confidence: Optional[float] = None,
        explanation: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        return self.log_event(
            event_type,
            action=event_type.value,
            entity_type="transaction",
            entity_id=entity_id,
            user_id=user_id,
            description=description,
            ai_model=ai_model,
            ai_provider=ai_provider,
            confidence=confidence,
            explanation=explanation,
            metadata=metadata,
        )

    def log_session_event(
        self,
        event_type: AuditEventType,
        session: ReconciliationSession,
        user_id: Optional[str],
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> AuditEvent:
        """Record a session transition with a full match summary."""
        counts = session.count_by_status()
        details: dict[str, Any] = {
            "account_id": session.account_id,
            "period": str(session.period),
            "status": session.status.value,
            "bank_statement_balance": str(session.bank_statement_balance),
            "book_balance": str(session.book_balance),
            "difference": str(session.difference),
            "total_transactions": len(session.matches),
            "match_counts": {status.value: n for status, n in counts.items()},
            "matches": [
                {
                    "bank_transaction_id": m.bank_transaction_id,
                    "book_transaction_id": m.book_transaction_id,
                    "status": m.status.value,
                    "match_type": m.match_type.value if m.match_type else None,
                    "confidence": m.confidence,
                }
                for m in session.matches
            ],
        }
        details.update(metadata or {})
        return self.log_financial_event(
            event_type,
            action=event_type.value,
            entity_type="reconciliation_session",
            entity_id=session.id,
            user_id=user_id,
            description=description,
            amount=abs(session.difference),
            metadata=details,
        )

    def events(
        self,
        event_type: Optional[AuditEventType] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> list[AuditEvent]:
        """
        Query recorded events from the primary sink.

        Args:
            event_type: Only events of this type
            entity_id: Only events about this entity
            user_id: Only events by this user
            start: Only events at or after this time
            end: Only events at or before this time

        Returns:
            Matching events in append order
        """
        out = []
        for event in self.sink.events():
            if event_type is not None and event.event_type != event_type:
                continue
            if entity_id is not None and event.entity_id != entity_id:
                continue
            if user_id is not None and event.user_id != user_id:
                continue
            if start is not None and event.timestamp < start:
                continue
            if end is not None and event.timestamp > end:
                continue
            out.append(event)
        return out

    def retention_report(self, as_of: Optional[datetime] = None) -> list[RetentionSummary]:
        """
        Count events per type and how many are past their retention period.

        Retention is reported, not enforced: nothing is deleted here.
        """
        as_of = as_of or datetime.now()
        summaries: dict[str, RetentionSummary] = {}
        for event in self.sink.events():
            key = event.event_type.value
            summary = summaries.get(key)
            if summary is None:
                policy = self.retention_policy(key)
                summary = summaries[key] = RetentionSummary(
                    event_type=key,
                    count=0,
                    retention_days=policy.retention_days,
                    compliance_required=list(policy.compliance_required),
                )
            summary.count += 1
            if event.timestamp + timedelta(days=summary.retention_days) < as_of:
                summary.expired += 1
        return sorted(summaries.values(), key=lambda s: s.event_type)
