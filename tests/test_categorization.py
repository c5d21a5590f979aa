import pytest

from ledger_recon.audit import AuditEventType
from ledger_recon.categorization import CategorizationEngine
from ledger_recon.config import CategorizationConfig
from ledger_recon.matching import StaticRuleProvider
from ledger_recon.models import CategoryProvenance, TransactionCategory
from ledger_recon.oracle import Classification, NullOracle
from ledger_recon.utils.exceptions import OracleUnavailable

from helpers.factories import bank
from helpers.oracle_stub import ScriptedOracle


def make_engine(store, audit, oracle, config=None, rule_provider=None):
    return CategorizationEngine(
        store,
        oracle,
        audit,
        config or CategorizationConfig(),
        rule_provider=rule_provider,
        concurrency=2,
    )


def test_oracle_suggestion_is_recorded(store, audit):
    oracle = ScriptedOracle(classifications={"b1": "software"})
    engine = make_engine(store, audit, oracle)

    [result] = engine.categorize("alice", [bank("b1", "-49.00", "GITHUB INC")])

    assert result.category == "software"
    assert result.confidence == pytest.approx(0.85)
    assert result.source == "oracle"
    assert result.explanation["reasoning"] == "looks like software"

    [attempt] = store.categorization_attempts(transaction_id="b1")
    assert attempt.accepted is True
    assert attempt.ai_model == "stub-model"
    assert attempt.original_category is None

    stored = store.get_transaction_category("b1")
    assert stored.category == "software"
    assert stored.provenance == CategoryProvenance.MODEL

    [event] = audit.events(event_type=AuditEventType.AI_CATEGORIZATION)
    assert event.entity_id == "b1"
    assert event.ai_provider == "stub"
    assert event.confidence == pytest.approx(0.85)


def test_results_keep_input_order(store, audit):
    oracle = ScriptedOracle(
        classifications={f"b{i}": f"cat{i}" for i in range(6)}, delay=0.01
    )
    engine = make_engine(store, audit, oracle)

    results = engine.categorize("alice", [bank(f"b{i}", "-1.00") for i in range(6)])

    assert [r.transaction_id for r in results] == [f"b{i}" for i in range(6)]
    assert [r.category for r in results] == [f"cat{i}" for i in range(6)]


def test_confident_history_short_circuits_the_oracle(store, audit):
    store.set_transaction_category(
        TransactionCategory("b1", "rent", 0.95, CategoryProvenance.HUMAN, {"corrected_by": "bob"})
    )
    oracle = ScriptedOracle(classifications={"b1": "software"})
    engine = make_engine(store, audit, oracle)

    [result] = engine.categorize("alice", [bank("b1", "-1200.00", "LANDLORD")])

    assert result.source == "history"
    assert result.category == "rent"
    assert result.explanation == {"corrected_by": "bob"}
    assert oracle.classify_calls == []
    assert store.categorization_attempts() == []


def test_history_at_threshold_is_not_enough(store, audit):
    store.set_transaction_category(
        TransactionCategory("b1", "rent", 0.9, CategoryProvenance.MODEL)
    )
    oracle = ScriptedOracle(classifications={"b1": "utilities"})
    engine = make_engine(store, audit, oracle)

    [result] = engine.categorize("alice", [bank("b1", "-80.00")])

    assert result.source == "oracle"
    assert result.category == "utilities"
    [attempt] = store.categorization_attempts(transaction_id="b1")
    assert attempt.original_category == "rent"


def test_oracle_failure_falls_back_without_recording(store, audit):
    oracle = ScriptedOracle(classifications={"b1": OracleUnavailable("boom")})
    engine = make_engine(store, audit, oracle)

    [result] = engine.categorize("alice", [bank("b1", "-5.00")])

    assert (result.category, result.confidence, result.source) == ("other", 0.0, "fallback")
    assert "boom" in result.explanation["reason"]
    assert store.categorization_attempts() == []
    assert store.get_transaction_category("b1") is None


def test_unexpected_oracle_error_falls_back(store, audit):
    oracle = ScriptedOracle(
        classifications={"b1": KeyError("category"), "b2": "software"}
    )
    engine = make_engine(store, audit, oracle)

    results = engine.categorize("alice", [bank("b1", "-5.00"), bank("b2", "-9.00")])

    assert [r.source for r in results] == ["fallback", "oracle"]
    assert results[1].category == "software"


def test_oracle_confidence_is_clamped(store, audit):
    oracle = ScriptedOracle(
        classifications={"b1": Classification("travel", 1.7, "flights", "m", "p")}
    )
    engine = make_engine(store, audit, oracle)

    [result] = engine.categorize("alice", [bank("b1", "-300.00")])

    assert result.confidence == 1.0


def test_rules_apply_first_when_enabled(store, audit, config):
    oracle = ScriptedOracle(classifications={"b1": "software", "b2": "software"})
    engine = make_engine(
        store,
        audit,
        oracle,
        CategorizationConfig(apply_rules_first=True),
        rule_provider=StaticRuleProvider.from_config(config),
    )

    fee, other = engine.categorize(
        "alice", [bank("b1", "-3.20", "PAYPAL *FEE 881"), bank("b2", "-49.00", "GITHUB")]
    )

    assert (fee.category, fee.confidence, fee.source) == ("bank_fees", 0.95, "rule")
    assert store.get_transaction_category("b1").provenance == CategoryProvenance.RULE
    assert other.source == "oracle"
    assert oracle.classify_calls == ["b2"]


def test_rules_are_ignored_by_default(store, audit, config):
    oracle = ScriptedOracle(classifications={"b1": "fees"})
    engine = make_engine(
        store, audit, oracle, rule_provider=StaticRuleProvider.from_config(config)
    )

    [result] = engine.categorize("alice", [bank("b1", "-3.20", "PAYPAL *FEE 881")])

    assert result.source == "oracle"
    assert result.category == "fees"


def test_feedback_supersedes_the_model_attempt(store, audit):
    txn = bank("b1", "-1200.00", "LANDLORD LLC")
    store.import_bank_transaction(txn)
    oracle = ScriptedOracle(classifications={"b1": "software"})
    engine = make_engine(store, audit, oracle)
    engine.categorize("alice", [txn])
    [original] = store.categorization_attempts(transaction_id="b1")

    correction = engine.process_feedback(
        "bob", "b1", None, "rent", reasoning="Monthly office lease"
    )

    assert correction.accepted is False
    assert correction.original_category == "software"
    assert correction.corrected_category == "rent"
    assert correction.supersedes_attempt_id == original.id
    assert correction.ai_provider == "human"
    assert correction.confidence == pytest.approx(0.85)

    # The original attempt is untouched
    first, second = store.categorization_attempts(transaction_id="b1")
    assert first.id == original.id
    assert first.accepted is True
    assert second.id == correction.id

    stored = store.get_transaction_category("b1")
    assert (stored.category, stored.confidence) == ("rent", 1.0)
    assert stored.provenance == CategoryProvenance.HUMAN

    [forwarded] = oracle.feedback
    assert forwarded.description == "LANDLORD LLC"
    assert forwarded.corrected_category == "rent"

    [event] = audit.events(event_type=AuditEventType.AI_FEEDBACK_PROCESSED)
    assert event.metadata["superseded_model"] == "stub-model"
    assert event.user_id == "bob"

    # Human corrections win over later model runs
    [again] = engine.categorize("alice", [txn])
    assert (again.category, again.source) == ("rent", "history")


def test_feedback_survives_an_unavailable_oracle(store, audit):
    engine = make_engine(store, audit, NullOracle())

    attempt = engine.process_feedback("bob", "b9", "misc", "travel")

    assert attempt.supersedes_attempt_id is None
    assert attempt.original_category == "misc"
    assert store.get_transaction_category("b9").category == "travel"


def test_performance_summary_counts_corrections(store, audit):
    oracle = ScriptedOracle(classifications={"b1": "software", "b2": "travel"})
    engine = make_engine(store, audit, oracle)
    engine.categorize("alice", [bank("b1", "-10.00"), bank("b2", "-20.00")])
    engine.process_feedback("alice", "b1", None, "rent")

    stats = engine.performance_summary()

    perf = stats["stub-model"]
    assert perf.total == 2
    assert perf.corrected == 1
    assert perf.acceptance_rate == pytest.approx(0.5)
    assert perf.average_confidence == pytest.approx(0.85)
    assert "user_feedback" not in stats
