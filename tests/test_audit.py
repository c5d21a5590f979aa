from datetime import datetime, timedelta
from decimal import Decimal

from ledger_recon.audit import (
    AuditEventType,
    AuditLogger,
    AuditSink,
    ComplianceFramework,
    InMemoryAuditSink,
    JsonlAuditSink,
    RiskLevel,
    build_audit_logger,
)
from ledger_recon.config import AuditConfig


class BrokenSink(AuditSink):
    def append(self, event):
        raise RuntimeError("disk full")

    def events(self):
        return []


def log_import(audit, amount=None, **kwargs):
    return audit.log_financial_event(
        AuditEventType.STATEMENT_IMPORTED,
        action="import_statement",
        entity_type="account",
        entity_id="acct-1",
        user_id="alice",
        description="Imported statement",
        amount=amount,
        **kwargs,
    )


def test_financial_events_merge_policy_tags(audit, audit_sink):
    event = log_import(audit, amount=Decimal("120.00"))

    assert event.compliance_tags == [ComplianceFramework.SOC2, ComplianceFramework.SOX]
    assert event.currency == "USD"
    assert event.risk_level == RiskLevel.LOW
    assert audit_sink.events()[0].id == event.id


def test_policy_tags_added_to_untagged_events(audit):
    event = audit.log_event(
        AuditEventType.AI_FEEDBACK_PROCESSED,
        action="feedback",
        entity_type="transaction",
        compliance_tags=[ComplianceFramework.GDPR],
    )
    assert event.compliance_tags == [ComplianceFramework.GDPR, ComplianceFramework.SOC2]


def test_large_amounts_are_at_least_medium_risk(audit):
    assert log_import(audit, amount=Decimal("10000.00")).risk_level == RiskLevel.LOW
    assert log_import(audit, amount=Decimal("-10000.01")).risk_level == RiskLevel.MEDIUM


def test_risk_classification(audit):
    classify = audit.classify_risk
    assert classify(AuditEventType.TRANSACTION_DELETED) == RiskLevel.HIGH
    assert classify(AuditEventType.RECONCILIATION_APPROVED) == RiskLevel.MEDIUM
    assert (
        classify(AuditEventType.RECONCILIATION_APPROVED, metadata={"bulk": True})
        == RiskLevel.HIGH
    )
    assert (
        classify(AuditEventType.RECONCILIATION_APPROVED, metadata={"waived": True})
        == RiskLevel.HIGH
    )
    assert (
        classify(AuditEventType.REPEATED_MATCH_FAILURES, metadata={"failure_count": 2})
        == RiskLevel.MEDIUM
    )
    assert (
        classify(AuditEventType.REPEATED_MATCH_FAILURES, metadata={"failure_count": 3})
        == RiskLevel.HIGH
    )
    assert classify(AuditEventType.AI_CATEGORIZATION) == RiskLevel.LOW


def test_explicit_risk_is_a_floor(audit):
    event = audit.log_event(
        AuditEventType.AI_CATEGORIZATION,
        action="categorize",
        entity_type="transaction",
        risk_level=RiskLevel.CRITICAL,
    )
    assert event.risk_level == RiskLevel.CRITICAL


def test_sink_failure_goes_to_fallback_and_is_counted():
    fallback = InMemoryAuditSink()
    audit = AuditLogger(BrokenSink(), fallback=fallback)

    first = log_import(audit)
    second = log_import(audit)

    assert audit.failure_count == 2
    assert audit.failed_event_ids == [first.id, second.id]
    assert [e.id for e in fallback.events()] == [first.id, second.id]


def test_double_failure_is_written_to_stderr(capsys):
    audit = AuditLogger(BrokenSink(), fallback=BrokenSink())

    event = log_import(audit)

    assert audit.failure_count == 1
    err = capsys.readouterr().err
    assert "AUDIT FALLBACK FAILED" in err
    assert event.id in err


def test_jsonl_sink_round_trips_and_skips_bad_lines(tmp_path):
    path = tmp_path / "audit" / "log.jsonl"
    audit = AuditLogger(JsonlAuditSink(path), fallback=InMemoryAuditSink())

    first = log_import(audit, amount=Decimal("12.50"))
    with open(path, "a", encoding="utf-8") as f:
        f.write("not json\n\n")
    second = log_import(audit)

    events = JsonlAuditSink(path).events()
    assert [e.id for e in events] == [first.id, second.id]
    assert events[0].amount == Decimal("12.50")
    assert events[0].event_type == AuditEventType.STATEMENT_IMPORTED


def test_query_filters(audit):
    log_import(audit)
    audit.log_event(
        AuditEventType.MATCH_REVIEWED,
        action="review_match",
        entity_type="reconciliation_match",
        entity_id="m1",
        user_id="bob",
    )

    assert len(audit.events()) == 2
    assert [e.entity_id for e in audit.events(user_id="bob")] == ["m1"]
    assert [e.user_id for e in audit.events(entity_id="acct-1")] == ["alice"]
    assert audit.events(event_type=AuditEventType.TRANSACTION_DELETED) == []
    assert audit.events(start=datetime.now() + timedelta(minutes=1)) == []
    assert len(audit.events(end=datetime.now() + timedelta(minutes=1))) == 2


def test_retention_report(audit):
    log_import(audit)
    log_import(audit)
    audit.log_event(AuditEventType.AI_CATEGORIZATION, action="c", entity_type="transaction")

    report = {
        s.event_type: s for s in audit.retention_report(datetime.now() + timedelta(days=100))
    }

    assert report["statement_imported"].count == 2
    assert report["statement_imported"].retention_days == 2555
    assert report["statement_imported"].expired == 0
    assert report["statement_imported"].compliance_required == ["soc2", "sox"]
    assert report["ai_categorization"].retention_days == 90
    assert report["ai_categorization"].expired == 1


def test_unlisted_event_types_use_default_retention():
    audit = AuditLogger(config=AuditConfig(default_retention_days=30))
    assert audit.retention_policy(AuditEventType.REPORT_GENERATED).retention_days == 30


def test_build_audit_logger_uses_configured_sink(tmp_path):
    path = tmp_path / "trail.jsonl"
    audit = build_audit_logger(AuditConfig(sink="jsonl", path=str(path)))

    log_import(audit)

    assert isinstance(audit.sink, JsonlAuditSink)
    assert path.read_text(encoding="utf-8").count("\n") == 1
    assert isinstance(build_audit_logger(AuditConfig()).sink, InMemoryAuditSink)
