"""
Transaction categorization with a human feedback loop.

Each transaction is categorized independently, so one slow or failing oracle
call never holds up the rest of a batch. Human corrections always win over
model output and are kept as new attempts, never as edits of old ones.
"""

from collections import defaultdict
from dataclasses import dataclass
from typing import Optional, Union
import logging
import time

from ..audit import AuditEventType, AuditLogger
from ..config import CategorizationConfig
from ..matching.rules import RuleEngine, RuleProvider
from ..models import (
    BankTransaction,
    BookTransaction,
    CategorizationAttempt,
    CategorizationResult,
    CategoryProvenance,
    TransactionCategory,
)
from ..oracle import ClassificationOracle, FeedbackCorrection
from ..store import TransactionStore
from ..utils.concurrency import p_map
from ..utils.exceptions import OracleUnavailable

logger = logging.getLogger(__name__)

Transaction = Union[BankTransaction, BookTransaction]

HUMAN_MODEL = "user_feedback"
HUMAN_PROVIDER = "human"
RULE_PROVIDER = "rules"


@dataclass
class ModelPerformance:
    """Acceptance statistics of one model's suggestions."""

    model: str
    provider: str
    total: int = 0
    corrected: int = 0
    confidence_sum: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        if self.total == 0:
            return 0.0
        return (self.total - self.corrected) / self.total

    @property
    def average_confidence(self) -> float:
        if self.total == 0:
            return 0.0
        return self.confidence_sum / self.total


class CategorizationEngine:
    """Assigns categories to transactions independently of reconciliation."""

    def __init__(
        self,
        store: TransactionStore,
        oracle: ClassificationOracle,
        audit: AuditLogger,
        config: Optional[CategorizationConfig] = None,
        rule_provider: Optional[RuleProvider] = None,
        concurrency: int = 4,
    ):
        self.store = store
        self.oracle = oracle
        self.audit = audit
        self.config = config or CategorizationConfig()
        self.rule_provider = rule_provider
        self.rule_engine = RuleEngine()
        self.concurrency = concurrency

    def categorize(
        self, user_id: str, transactions: list[Transaction]
    ) -> list[CategorizationResult]:
        """
        Categorize a batch of transactions.

        Args:
            user_id: User requesting categorization
            transactions: Bank or book transactions

        Returns:
            One result per transaction, in input order
        """
        logger.info(f"Categorizing {len(transactions)} transactions for {user_id}")
        results = p_map(
            transactions,
            lambda txn: self._categorize_one(user_id, txn),
            concurrency=max(1, self.concurrency),
        )
        by_source: dict[str, int] = defaultdict(int)
        for result in results:
            by_source[result.source] += 1
        logger.info(f"Categorization complete: {dict(by_source)}")
        return results

    def _categorize_one(self, user_id: str, txn: Transaction) -> CategorizationResult:
        existing = self.store.get_transaction_category(txn.id)
        if existing and existing.confidence > self.config.short_circuit_confidence:
            return CategorizationResult(
                transaction_id=txn.id,
                category=existing.category,
                confidence=existing.confidence,
                explanation=dict(existing.explanation),
                source="history",
            )

        if self.config.apply_rules_first and self.rule_provider is not None:
            rule = self.rule_engine.evaluate(txn, self.rule_provider.get_rules(txn.account_id))
            if rule is not None:
                return self._record(
                    user_id,
                    txn,
                    existing,
                    category=rule.target_category,
                    confidence=rule.confidence,
                    reasoning=f"Matched rule '{rule.id}': {rule.description or rule.pattern}",
                    model=f"rule:{rule.id}",
                    provider=RULE_PROVIDER,
                    provenance=CategoryProvenance.RULE,
                    processing_time=0.0,
                    source="rule",
                )

        t0 = time.perf_counter()
        try:
            classification = self.oracle.classify(txn)
        except Exception as e:
            # Unwrapped oracles may raise anything; every failure falls back
            logger.warning(f"Categorization of {txn.id} fell back to default: {e}")
            return CategorizationResult(
                transaction_id=txn.id,
                category=self.config.fallback_category,
                confidence=0.0,
                explanation={"reason": f"Classification unavailable: {e}"},
                source="fallback",
            )

        return self._record(
            user_id,
            txn,
            existing,
            category=classification.category,
            confidence=max(0.0, min(1.0, classification.confidence)),
            reasoning=classification.explanation,
            model=classification.model,
            provider=classification.provider,
            provenance=CategoryProvenance.MODEL,
            processing_time=time.perf_counter() - t0,
            source="oracle",
        )

    def _record(
        self,
        user_id: str,
        txn: Transaction,
        existing: Optional[TransactionCategory],
        category: str,
        confidence: float,
        reasoning: str,
        model: str,
        provider: str,
        provenance: CategoryProvenance,
        processing_time: float,
        source: str,
    ) -> CategorizationResult:
        attempt = self.store.add_categorization_attempt(
            CategorizationAttempt(
                transaction_id=txn.id,
                user_id=user_id,
                original_category=existing.category if existing else None,
                suggested_category=category,
                confidence=confidence,
                ai_model=model,
                ai_provider=provider,
                reasoning=reasoning,
                processing_time=processing_time,
            )
        )
        explanation = {"reasoning": reasoning, "model": model, "attempt_id": attempt.id}
        self.store.set_transaction_category(
            TransactionCategory(
                transaction_id=txn.id,
                category=category,
                confidence=confidence,
                provenance=provenance,
                explanation=explanation,
            )
        )
        self.audit.log_ai_event(
            AuditEventType.AI_CATEGORIZATION,
            entity_id=txn.id,
            user_id=user_id,
            description=f"Transaction categorized as {category}",
            ai_model=model,
            ai_provider=provider,
            confidence=confidence,
            explanation=reasoning,
            metadata={"attempt_id": attempt.id, "processing_time": processing_time},
        )
        return CategorizationResult(
            transaction_id=txn.id,
            category=category,
            confidence=confidence,
            explanation=explanation,
            source=source,
        )

    def process_feedback(
        self,
        user_id: str,
        transaction_id: str,
        original_category: Optional[str],
        corrected_category: str,
        reasoning: str = "",
        confidence: Optional[float] = None,
    ) -> CategorizationAttempt:
        """
        Record a human correction of a transaction's category.

        The correction is appended as a new attempt (``accepted=False``) that
        points at the attempt it supersedes, forwarded to the oracle on a
        best-effort basis, and stored as the transaction's category with
        confidence 1.0.

        Args:
            user_id: User making the correction
            transaction_id: Corrected transaction
            original_category: Category being corrected (defaults to the
                currently stored one)
            corrected_category: The right category
            reasoning: Why the original was wrong
            confidence: Confidence of the suggestion being corrected

        Returns:
            The correction attempt
        """
        current = self.store.get_transaction_category(transaction_id)
        history = [
            a
            for a in self.store.categorization_attempts(transaction_id=transaction_id)
            if not a.is_correction
        ]
        superseded = history[-1] if history else None

        if original_category is None:
            if current is not None:
                original_category = current.category
            elif superseded is not None:
                original_category = superseded.suggested_category
        if confidence is None:
            confidence = superseded.confidence if superseded else 0.0

        attempt = self.store.add_categorization_attempt(
            CategorizationAttempt(
                transaction_id=transaction_id,
                user_id=user_id,
                original_category=original_category,
                suggested_category=original_category or "",
                confidence=confidence,
                ai_model=HUMAN_MODEL,
                ai_provider=HUMAN_PROVIDER,
                reasoning=reasoning,
                accepted=False,
                corrected_category=corrected_category,
                correction_reasoning=reasoning,
                supersedes_attempt_id=superseded.id if superseded else None,
            )
        )

        try:
            self.oracle.submit_feedback(
                FeedbackCorrection(
                    transaction_id=transaction_id,
                    description=self._description(transaction_id),
                    original_category=original_category,
                    corrected_category=corrected_category,
                    reasoning=reasoning,
                    user_id=user_id,
                )
            )
        except OracleUnavailable as e:
            logger.warning(f"Could not forward correction for {transaction_id}: {e}")

        self.store.set_transaction_category(
            TransactionCategory(
                transaction_id=transaction_id,
                category=corrected_category,
                confidence=1.0,
                provenance=CategoryProvenance.HUMAN,
                explanation={
                    "reasoning": reasoning,
                    "corrected_by": user_id,
                    "attempt_id": attempt.id,
                },
            )
        )

        self.audit.log_ai_event(
            AuditEventType.AI_FEEDBACK_PROCESSED,
            entity_id=transaction_id,
            user_id=user_id,
            description=(
                f"Category corrected from {original_category or 'none'} "
                f"to {corrected_category}"
            ),
            ai_model=HUMAN_MODEL,
            ai_provider=HUMAN_PROVIDER,
            confidence=1.0,
            explanation=reasoning,
            metadata={
                "provenance": CategoryProvenance.HUMAN.value,
                "original_category": original_category,
                "corrected_category": corrected_category,
                "supersedes_attempt_id": attempt.supersedes_attempt_id,
                "superseded_model": superseded.ai_model if superseded else None,
            },
        )
        logger.info(
            f"Applied correction for {transaction_id}: "
            f"{original_category} -> {corrected_category}"
        )
        return attempt

    def _description(self, transaction_id: str) -> str:
        txn = self.store.get_bank_transaction(transaction_id) or self.store.get_book_transaction(
            transaction_id
        )
        return txn.description if txn else ""

    def performance_summary(self, user_id: Optional[str] = None) -> dict[str, ModelPerformance]:
        """
        Acceptance statistics per model, derived from the attempt history.

        A suggestion counts as corrected when a later human attempt
        supersedes it.
        """
        attempts = self.store.categorization_attempts(user_id=user_id)
        corrected_ids = {a.supersedes_attempt_id for a in attempts if a.supersedes_attempt_id}
        stats: dict[str, ModelPerformance] = {}
        for attempt in attempts:
            if attempt.is_correction:
                continue
            perf = stats.setdefault(
                attempt.ai_model,
                ModelPerformance(model=attempt.ai_model, provider=attempt.ai_provider),
            )
            perf.total += 1
            perf.confidence_sum += attempt.confidence
            if attempt.id in corrected_ids:
                perf.corrected += 1
        return stats
