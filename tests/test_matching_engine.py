import threading

import pytest

from ledger_recon.config import MatchingConfig
from ledger_recon.matching import MatchingEngine, verify_exclusivity
from ledger_recon.models import (
    BookTransactionType,
    MatchStatus,
    MatchType,
    ReconciliationMatch,
    ReconciliationRule,
    UNMATCHED_REASONING,
)
from ledger_recon.oracle import MatchCandidate, TimeboxedOracle
from ledger_recon.utils.exceptions import (
    AssignmentConflict,
    OracleUnavailable,
    ReconciliationCancelled,
)

from helpers.factories import bank, book
from helpers.oracle_stub import ScriptedOracle


def by_bank(result):
    return {m.bank_transaction_id: m for m in result.matches}


def test_exact_match_same_amount_within_a_day():
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-150.00", "ACME CORP INVOICE", day=15)],
        [book("k1", "150.00", "Office chairs", day=16)],
    )

    [match] = result.matches
    assert match.book_transaction_id == "k1"
    assert match.status == MatchStatus.MATCHED
    assert match.match_type == MatchType.EXACT
    assert match.confidence == pytest.approx(0.95)
    assert match.reasoning.startswith("Exact match: same amount ($150.00)")
    assert match.date_variance_days == 1


def test_exact_match_requires_date_within_tolerance():
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-150.00", "ACME", day=10)],
        [book("k1", "150.00", "Chairs", day=15)],
    )
    assert result.matches[0].status == MatchStatus.UNMATCHED


def test_fuzzy_match_is_partial():
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-150.00", "ACME CORP", day=12)],
        [book("k1", "107.83", "ACME CORP", day=10)],
    )

    [match] = result.matches
    assert match.status == MatchStatus.PARTIAL_MATCH
    assert match.match_type == MatchType.FUZZY
    assert match.book_transaction_id == "k1"
    assert match.confidence == pytest.approx(0.83132)
    assert match.reasoning == "Fuzzy match: 100% description similarity, 58% amount proximity"


def test_contested_book_transaction_goes_to_most_confident_candidate():
    engine = MatchingEngine(MatchingConfig())
    # b2 comes first in input order but scores lower against k1
    result = engine.match(
        [bank("b2", "-125.00", "ACME CORP", day=5), bank("b1", "-118.00", "ACME CORP", day=5)],
        [book("k1", "100.00", "ACME CORP", day=20)],
    )

    matches = by_bank(result)
    assert matches["b1"].book_transaction_id == "k1"
    assert matches["b1"].confidence == pytest.approx(0.928)
    assert matches["b2"].status == MatchStatus.UNMATCHED
    assert [m.bank_transaction_id for m in result.matches] == ["b2", "b1"]


def test_loser_falls_through_to_next_candidate():
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-118.00", "ACME CORP", day=5), bank("b2", "-125.00", "ACME CORP", day=5)],
        [book("k1", "100.00", "ACME CORP", day=20), book("k2", "130.00", "ACME CORP", day=20)],
    )

    matches = by_bank(result)
    assert matches["b2"].book_transaction_id == "k2"
    assert matches["b1"].book_transaction_id == "k1"
    verify_exclusivity(result.matches)


def test_ties_are_broken_by_bank_input_order():
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-100.00", "Card", day=15), bank("b2", "-100.00", "Card", day=15)],
        [book("k1", "100.00", "Supplies", day=15)],
    )

    matches = by_bank(result)
    assert matches["b1"].book_transaction_id == "k1"
    assert matches["b2"].status == MatchStatus.UNMATCHED


def test_exact_tier_is_assigned_before_fuzzy():
    engine = MatchingEngine(MatchingConfig())
    # b1 scores a perfect fuzzy match against k1, but b2 matches k1 exactly
    result = engine.match(
        [bank("b1", "-100.50", "ACME CORP", day=3), bank("b2", "-100.00", "wire", day=15)],
        [book("k1", "100.00", "ACME CORP", day=15)],
    )

    matches = by_bank(result)
    assert matches["b2"].match_type == MatchType.EXACT
    assert matches["b1"].status == MatchStatus.UNMATCHED


def test_rule_match_takes_precedence_and_sets_category(config):
    engine = MatchingEngine(config.matching)
    result = engine.match(
        [bank("b1", "-2.50", "PAYPAL *FEE 12345")],
        [book("k1", "2.50", "Fees")],
        rules=config.reconciliation_rules(),
    )

    [match] = result.matches
    assert match.match_type == MatchType.RULE
    assert match.status == MatchStatus.MATCHED
    assert match.confidence == pytest.approx(0.95)
    assert match.suggested_category == "bank_fees"
    assert match.book_transaction_id is None
    assert match.reasoning == "Matched rule 'paypal_fees': PayPal transaction fees"


def test_rule_claims_its_target_book_transaction():
    rules = [
        ReconciliationRule(
            id="fees",
            pattern="paypal",
            target_category="bank_fees",
            target_transaction_id="k1",
        )
    ]
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-2.50", "PAYPAL FEE"), bank("b2", "-2.50", "Card fee")],
        [book("k1", "2.50", "PayPal fee")],
        rules=rules,
    )

    matches = by_bank(result)
    assert matches["b1"].book_transaction_id == "k1"
    assert matches["b2"].status == MatchStatus.UNMATCHED


def test_rule_target_outside_pool_is_not_claimed():
    rules = [
        ReconciliationRule(
            id="fees", pattern="paypal", target_category="bank_fees", target_transaction_id="gone"
        )
    ]
    result = MatchingEngine(MatchingConfig()).match(
        [bank("b1", "-2.50", "PAYPAL FEE")], [], rules=rules
    )
    assert result.matches[0].book_transaction_id is None
    assert result.matches[0].match_type == MatchType.RULE


def test_oracle_suggestion_is_capped_partial_match():
    oracle = ScriptedOracle(matches={"b1": MatchCandidate("k1", 0.95, "same vendor")})
    engine = MatchingEngine(MatchingConfig(), oracle=oracle)
    result = engine.match(
        [bank("b1", "-500.00", "Wire transfer 88")],
        [book("k1", "480.00", "Invoice 2024-17", kind=BookTransactionType.PAYMENT)],
    )

    [match] = result.matches
    assert match.status == MatchStatus.PARTIAL_MATCH
    assert match.match_type == MatchType.AI
    assert match.confidence == pytest.approx(0.8)
    assert match.reasoning == "AI suggested match: same vendor"
    assert oracle.match_calls == [("b1", ["k1"])]


def test_oracle_is_only_asked_about_leftovers():
    oracle = ScriptedOracle()
    engine = MatchingEngine(MatchingConfig(), oracle=oracle)
    engine.match([bank("b1", "-10.00", "x")], [book("k1", "10.00", "y")])
    assert oracle.match_calls == []


def test_oracle_ids_outside_pool_are_ignored():
    oracle = ScriptedOracle(matches={"b1": MatchCandidate("nope", 0.7)})
    engine = MatchingEngine(MatchingConfig(), oracle=oracle)
    result = engine.match([bank("b1", "-500.00", "Wire")], [book("k1", "10.00", "Pens")])

    [match] = result.matches
    assert match.status == MatchStatus.UNMATCHED
    assert result.oracle_failures == 0


def test_oracle_failure_leaves_transaction_unmatched():
    oracle = ScriptedOracle(
        matches={
            "b1": OracleUnavailable("service down"),
            "b2": MatchCandidate("k2", 0.6),
        }
    )
    engine = MatchingEngine(MatchingConfig(), oracle=oracle)
    result = engine.match(
        [bank("b1", "-500.00", "Wire one"), bank("b2", "-900.00", "Wire two")],
        [book("k1", "10.00", "Pens"), book("k2", "20.00", "Paper")],
    )

    matches = by_bank(result)
    assert matches["b1"].status == MatchStatus.UNMATCHED
    assert matches["b1"].reasoning == UNMATCHED_REASONING
    assert matches["b1"].confidence == 0.0
    assert matches["b2"].book_transaction_id == "k2"
    assert result.oracle_failures == 1


def test_oracle_timeout_degrades_to_unmatched():
    slow = ScriptedOracle(matches={"b1": MatchCandidate("k1", 0.7)}, delay=0.5)
    oracle = TimeboxedOracle(slow, timeout_seconds=0.05)
    try:
        engine = MatchingEngine(MatchingConfig(), oracle=oracle)
        result = engine.match([bank("b1", "-500.00", "Wire")], [book("k1", "10.00", "Pens")])
    finally:
        oracle.close()

    assert result.matches[0].status == MatchStatus.UNMATCHED
    assert result.oracle_failures == 1


def test_unexpected_oracle_error_degrades_to_unmatched():
    oracle = ScriptedOracle(
        matches={"b1": RuntimeError("bad payload"), "b2": MatchCandidate("k2", 0.7)}
    )
    engine = MatchingEngine(MatchingConfig(), oracle=oracle)
    result = engine.match(
        [bank("b1", "-500.00", "Wire"), bank("b2", "-77.00", "Card")],
        [book("k1", "10.00", "Pens"), book("k2", "20.00", "Lunch")],
    )

    matches = by_bank(result)
    assert matches["b1"].status == MatchStatus.UNMATCHED
    assert matches["b2"].book_transaction_id == "k2"
    assert result.oracle_failures == 1


def test_contested_oracle_picks_are_reasked():
    oracle = ScriptedOracle(
        matches={
            "b1": [MatchCandidate("k1", 0.70), MatchCandidate("k2", 0.60)],
            "b2": MatchCandidate("k1", 0.75),
        }
    )
    engine = MatchingEngine(MatchingConfig(), oracle=oracle)
    result = engine.match(
        [bank("b1", "1000.00", "Wire in 1"), bank("b2", "2000.00", "Wire in 2")],
        [
            book("k1", "1500.00", "INV-1", kind=BookTransactionType.INVOICE),
            book("k2", "3000.00", "INV-2", kind=BookTransactionType.INVOICE),
        ],
    )

    matches = by_bank(result)
    assert matches["b2"].book_transaction_id == "k1"
    assert matches["b1"].book_transaction_id == "k2"
    assert matches["b1"].confidence == pytest.approx(0.6)
    # Second round only offers what is left
    assert ("b1", ["k2"]) in oracle.match_calls


def test_oracle_below_minimum_confidence_is_dropped():
    oracle = ScriptedOracle(matches={"b1": MatchCandidate("k1", 0.3)})
    engine = MatchingEngine(MatchingConfig(oracle_min_confidence=0.5), oracle=oracle)
    result = engine.match([bank("b1", "-500.00", "Wire")], [book("k1", "10.00", "Pens")])
    assert result.matches[0].status == MatchStatus.UNMATCHED


def test_every_bank_transaction_gets_one_record_in_input_order():
    engine = MatchingEngine(MatchingConfig())
    bank_txns = [bank(f"b{i}", f"-{i}0.00", f"line {i}") for i in range(1, 6)]
    result = engine.match(bank_txns, [])
    assert [m.bank_transaction_id for m in result.matches] == ["b1", "b2", "b3", "b4", "b5"]
    assert all(m.status == MatchStatus.UNMATCHED for m in result.matches)
    assert result.count_by_type() == {"unmatched": 5}


def test_committed_matches_are_kept_and_their_book_transactions_withheld():
    committed = ReconciliationMatch(
        bank_transaction_id="b1",
        book_transaction_id="k1",
        status=MatchStatus.MATCHED,
        confidence=1.0,
        match_type=MatchType.MANUAL,
    )
    engine = MatchingEngine(MatchingConfig())
    result = engine.match(
        [bank("b1", "-40.00", "first"), bank("b2", "-100.00", "second")],
        [book("k1", "100.00", "Supplies")],
        committed=[committed],
    )

    matches = by_bank(result)
    assert matches["b1"].match_type == MatchType.MANUAL
    assert matches["b2"].status == MatchStatus.UNMATCHED


def test_cancellation_carries_resolved_matches():
    committed = ReconciliationMatch(
        bank_transaction_id="b1", status=MatchStatus.MATCHED, match_type=MatchType.RULE
    )
    cancel = threading.Event()
    cancel.set()
    engine = MatchingEngine(MatchingConfig())

    with pytest.raises(ReconciliationCancelled) as excinfo:
        engine.match(
            [bank("b1", "-1.00", "a"), bank("b2", "-2.00", "b")],
            [],
            committed=[committed],
            cancel_event=cancel,
        )
    assert [m.bank_transaction_id for m in excinfo.value.resolved] == ["b1"]


def test_verify_exclusivity_detects_double_assignment():
    matches = [
        ReconciliationMatch("b1", MatchStatus.MATCHED, book_transaction_id="k1"),
        ReconciliationMatch("b2", MatchStatus.PARTIAL_MATCH, book_transaction_id="k1"),
    ]
    with pytest.raises(AssignmentConflict):
        verify_exclusivity(matches)


def test_verify_exclusivity_ignores_non_consuming_records():
    verify_exclusivity(
        [
            ReconciliationMatch("b1", MatchStatus.MATCHED, book_transaction_id="k1"),
            ReconciliationMatch("b2", MatchStatus.DISPUTED, book_transaction_id="k1"),
        ]
    )
