"""
Multi-tier matching engine for bank-to-book reconciliation.

Tiers run in order rule -> exact -> fuzzy -> oracle. Candidate scoring is
read-only and runs on a worker pool; assignment is a single sequential pass
that claims book transactions greedily in descending confidence order across
the whole batch, so no book transaction is ever matched twice.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
import logging
import threading

from ..config import MatchingConfig
from ..models import (
    BankTransaction,
    BookTransaction,
    MatchStatus,
    MatchType,
    ReconciliationMatch,
    ReconciliationRule,
)
from ..oracle import ClassificationOracle, MatchCandidate
from ..utils.concurrency import p_map
from ..utils.exceptions import (
    AssignmentConflict,
    OracleUnavailable,
    ReconciliationCancelled,
)
from .rules import RuleEngine
from .scoring import amount_proximity, date_distance_days
from .strategies import Candidate, MatchingStrategy, build_strategies

logger = logging.getLogger(__name__)


@dataclass
class MatchingResult:
    """One match record per bank transaction, in input order."""

    matches: list[ReconciliationMatch] = field(default_factory=list)
    oracle_failures: int = 0
    processing_time: float = 0.0

    def count_by_type(self) -> dict[str, int]:
        counts = Counter(
            m.match_type.value if m.match_type else "unmatched" for m in self.matches
        )
        return dict(counts)


def verify_exclusivity(matches: list[ReconciliationMatch]) -> None:
    """
    Check that no book transaction is consumed by two match records.

    Raises:
        AssignmentConflict: If a book transaction appears in more than one
            matched or partial_match record
    """
    owners: dict[str, str] = {}
    for match in matches:
        if not match.consumes_book_transaction:
            continue
        book_id = match.book_transaction_id
        if book_id in owners:
            raise AssignmentConflict(
                f"Book transaction {book_id} assigned to both "
                f"{owners[book_id]} and {match.bank_transaction_id}"
            )
        owners[book_id] = match.bank_transaction_id


class MatchingEngine:
    """
    Orchestrates rule, exact, fuzzy and oracle matching for one batch.

    The engine holds configuration only; every run receives its rules, book
    pool and oracle explicitly.
    """

    def __init__(
        self,
        config: MatchingConfig,
        oracle: Optional[ClassificationOracle] = None,
        oracle_concurrency: int = 4,
    ):
        """
        Initialize the matching engine.

        Args:
            config: Matching thresholds and weights
            oracle: Classification oracle used as the last tier (optional)
            oracle_concurrency: Maximum concurrent oracle calls
        """
        self.config = config
        self.oracle = oracle
        self.oracle_concurrency = oracle_concurrency
        self.rule_engine = RuleEngine()
        self.strategies: list[MatchingStrategy] = build_strategies(config)

    def match(
        self,
        bank_transactions: list[BankTransaction],
        book_transactions: list[BookTransaction],
        rules: Optional[list[ReconciliationRule]] = None,
        committed: Optional[list[ReconciliationMatch]] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> MatchingResult:
        """
        Produce one match record per bank transaction.

        Args:
            bank_transactions: Statement lines to reconcile
            book_transactions: Book transactions of the same account and period
            rules: Reconciliation rules in evaluation order
            committed: Matches already resolved by an earlier, cancelled run;
                their bank transactions are skipped and their book
                transactions are not offered again
            cancel_event: Set by the caller to stop the run

        Returns:
            MatchingResult with matches in bank input order

        Raises:
            ReconciliationCancelled: If ``cancel_event`` is set; ``resolved``
                carries every match decided so far
            AssignmentConflict: If the exclusivity check fails
        """
        start_time = datetime.now()
        resolved: dict[str, ReconciliationMatch] = {
            m.bank_transaction_id: m for m in committed or []
        }
        consumed = {
            m.book_transaction_id for m in resolved.values() if m.consumes_book_transaction
        }
        pool: dict[str, BookTransaction] = {
            b.id: b for b in book_transactions if b.id not in consumed
        }
        order = {b.id: idx for idx, b in enumerate(bank_transactions)}
        pending = [b for b in bank_transactions if b.id not in resolved]

        logger.info(
            f"Starting matching: {len(pending)} bank txns pending "
            f"({len(resolved)} already committed), {len(pool)} book txns in pool"
        )

        result = MatchingResult()
        try:
            self._check_cancel(cancel_event)
            pending = self._rule_pass(pending, rules or [], pool, resolved)

            self._check_cancel(cancel_event)
            scored = self._score(pending, list(pool.values()), cancel_event)

            for tier_idx, strategy in enumerate(self.strategies):
                self._check_cancel(cancel_event)
                candidates = [c for per_bank in scored for c in per_bank[tier_idx]]
                pending = self._assign(pending, candidates, pool, resolved, order)
                logger.debug(
                    f"Tier {strategy.match_type.value}: {len(pending)} bank txns "
                    f"remaining, {len(pool)} book txns in pool"
                )

            if self.oracle is not None and pending:
                _, result.oracle_failures = self._oracle_pass(
                    pending, pool, resolved, order, cancel_event
                )
        except ReconciliationCancelled as e:
            logger.warning(f"Matching cancelled with {len(resolved)} matches resolved")
            done = [resolved[b.id] for b in bank_transactions if b.id in resolved]
            raise ReconciliationCancelled(str(e), resolved=done) from e

        for bank_txn in bank_transactions:
            if bank_txn.id not in resolved:
                resolved[bank_txn.id] = ReconciliationMatch.unmatched(bank_txn.id)

        result.matches = [resolved[b.id] for b in bank_transactions]
        verify_exclusivity(result.matches)

        result.processing_time = (datetime.now() - start_time).total_seconds()
        logger.info(
            f"Matching complete in {result.processing_time:.2f}s: "
            f"{result.count_by_type()}, {result.oracle_failures} oracle failures"
        )
        return result

    def _check_cancel(self, cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ReconciliationCancelled()

    def _rule_pass(
        self,
        pending: list[BankTransaction],
        rules: list[ReconciliationRule],
        pool: dict[str, BookTransaction],
        resolved: dict[str, ReconciliationMatch],
    ) -> list[BankTransaction]:
        """Apply rules in input order; returns the bank transactions left over."""
        if not rules:
            return pending

        remaining: list[BankTransaction] = []
        for bank_txn in pending:
            rule = self.rule_engine.evaluate(bank_txn, rules)
            if rule is None:
                remaining.append(bank_txn)
                continue

            book_id = rule.target_transaction_id if rule.target_transaction_id in pool else None
            match = ReconciliationMatch(
                bank_transaction_id=bank_txn.id,
                book_transaction_id=book_id,
                status=MatchStatus.MATCHED,
                confidence=rule.confidence,
                match_type=MatchType.RULE,
                reasoning=f"Matched rule '{rule.id}': {rule.description or rule.pattern}",
                suggested_category=rule.target_category,
            )
            if book_id is not None:
                book_txn = pool.pop(book_id)
                match.amount_proximity = amount_proximity(bank_txn.amount, book_txn.amount)
                match.date_variance_days = date_distance_days(bank_txn.date, book_txn.date)
            resolved[bank_txn.id] = match

        logger.debug(f"Rule pass matched {len(pending) - len(remaining)} bank txns")
        return remaining

    def _score(
        self,
        pending: list[BankTransaction],
        pool: list[BookTransaction],
        cancel_event: Optional[threading.Event],
    ) -> list[list[list[Candidate]]]:
        """Candidates per bank transaction, per tier. Read-only."""

        def score_one(bank_txn: BankTransaction) -> list[list[Candidate]]:
            return [s.find_candidates(bank_txn, pool) for s in self.strategies]

        return p_map(
            pending,
            score_one,
            concurrency=max(1, self.config.scoring_concurrency),
            cancel_event=cancel_event,
        )

    def _assign(
        self,
        pending: list[BankTransaction],
        candidates: list[Candidate],
        pool: dict[str, BookTransaction],
        resolved: dict[str, ReconciliationMatch],
        order: dict[str, int],
    ) -> list[BankTransaction]:
        """
        Claim book transactions greedily, best candidate first.

        A bank transaction whose preferred book transaction was claimed by a
        stronger candidate falls through to its next candidate. Ties are
        broken by amount proximity, date distance, bank input order and book
        id, in that order.
        """
        ranked = sorted(
            candidates,
            key=lambda c: (
                -c.confidence,
                -c.amount_proximity,
                c.date_distance,
                order[c.bank_transaction_id],
                c.book_transaction_id,
            ),
        )
        for cand in ranked:
            if cand.bank_transaction_id in resolved or cand.book_transaction_id not in pool:
                continue
            pool.pop(cand.book_transaction_id)
            resolved[cand.bank_transaction_id] = ReconciliationMatch(
                bank_transaction_id=cand.bank_transaction_id,
                book_transaction_id=cand.book_transaction_id,
                status=cand.status,
                confidence=cand.confidence,
                match_type=cand.match_type,
                reasoning=cand.reasoning,
                amount_proximity=cand.amount_proximity,
                date_variance_days=cand.date_distance,
            )
        return [b for b in pending if b.id not in resolved]

    def _oracle_pass(
        self,
        pending: list[BankTransaction],
        pool: dict[str, BookTransaction],
        resolved: dict[str, ReconciliationMatch],
        order: dict[str, int],
        cancel_event: Optional[threading.Event],
    ) -> tuple[list[BankTransaction], int]:
        """
        Ask the oracle for the bank transactions no deterministic tier matched.

        Contested picks go to the most confident request; losers are asked
        again against the shrunken pool for up to ``oracle_rounds`` rounds.
        A failed or timed-out call leaves that transaction unmatched.

        Returns:
            Tuple of (bank transactions still unmatched, oracle failure count)
        """
        failures = 0
        leftover: list[BankTransaction] = []
        asking = list(pending)

        for round_no in range(1, max(1, self.config.oracle_rounds) + 1):
            if not asking:
                break
            if not pool:
                leftover.extend(asking)
                break

            offered = sorted(pool.values(), key=lambda b: (b.date, b.id))

            def ask(bank_txn: BankTransaction):
                try:
                    return bank_txn, self.oracle.find_match_candidates(bank_txn, offered)
                except OracleUnavailable as e:
                    logger.warning(f"Oracle match failed for {bank_txn.id}: {e}")
                    return bank_txn, e
                except Exception as e:
                    logger.warning(f"Oracle match raised for {bank_txn.id}: {e}")
                    return bank_txn, OracleUnavailable(str(e))

            answers = p_map(
                asking,
                ask,
                concurrency=max(1, self.oracle_concurrency),
                cancel_event=cancel_event,
            )

            proposals: list[tuple[BankTransaction, MatchCandidate, float]] = []
            for bank_txn, answer in answers:
                if isinstance(answer, OracleUnavailable):
                    failures += 1
                    leftover.append(bank_txn)
                elif answer is None or answer.candidate_id not in pool:
                    if answer is not None:
                        logger.debug(
                            f"Oracle proposed {answer.candidate_id} for {bank_txn.id}, "
                            f"which is not in the pool; ignoring"
                        )
                    leftover.append(bank_txn)
                else:
                    confidence = min(
                        max(0.0, min(1.0, answer.confidence)),
                        self.config.oracle_confidence_cap,
                    )
                    if confidence < self.config.oracle_min_confidence:
                        leftover.append(bank_txn)
                    else:
                        proposals.append((bank_txn, answer, confidence))

            proposals.sort(key=lambda p: (-p[2], order[p[0].id]))
            losers: list[BankTransaction] = []
            for bank_txn, answer, confidence in proposals:
                if answer.candidate_id not in pool:
                    losers.append(bank_txn)
                    continue
                book_txn = pool.pop(answer.candidate_id)
                resolved[bank_txn.id] = ReconciliationMatch(
                    bank_transaction_id=bank_txn.id,
                    book_transaction_id=book_txn.id,
                    status=MatchStatus.PARTIAL_MATCH,
                    confidence=confidence,
                    match_type=MatchType.AI,
                    reasoning=(
                        f"AI suggested match: {answer.explanation}"
                        if answer.explanation
                        else "AI suggested match"
                    ),
                    amount_proximity=amount_proximity(bank_txn.amount, book_txn.amount),
                    date_variance_days=date_distance_days(bank_txn.date, book_txn.date),
                )

            logger.debug(
                f"Oracle round {round_no}: {len(proposals) - len(losers)} matched, "
                f"{len(losers)} contested"
            )
            asking = losers

        leftover.extend(asking)
        return leftover, failures
