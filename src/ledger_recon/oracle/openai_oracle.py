"""
Classification oracle backed by the OpenAI Responses API.

Every request uses a strict JSON-schema response format so the reply can be
decoded without guessing. Transport and decoding errors are reported as
``OracleUnavailable``.
"""

from collections import deque
from typing import Any, Mapping, Optional
import json
import logging
import time

from openai import OpenAI

from ..models import BankTransaction, BookTransaction
from ..utils.exceptions import OracleUnavailable
from .base import (
    Classification,
    ClassificationOracle,
    FeedbackCorrection,
    MatchCandidate,
    Transaction,
)

logger = logging.getLogger(__name__)

CLASSIFY_INSTRUCTIONS = (
    "You categorize business bank transactions for bookkeeping. "
    "Choose exactly one category from the allowed list and give a confidence "
    "between 0 and 1 with a one-sentence rationale."
)

MATCH_INSTRUCTIONS = (
    "You reconcile bank statement lines against book transactions. "
    "Pick the single book transaction that records the same economic event, "
    "considering description similarity, amount proximity, date proximity and "
    "transaction patterns. Return a null candidate_id when none fits."
)

# Corrections kept as examples for later classify prompts
_MAX_FEEDBACK_EXAMPLES = 20


def _classification_format(categories: list[str]) -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "transaction_category",
        "schema": {
            "type": "object",
            "properties": {
                "category": {"type": "string", "enum": categories},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "rationale": {"type": "string"},
            },
            "required": ["category", "confidence", "rationale"],
            "additionalProperties": False,
        },
        "strict": True,
    }


def _match_format() -> dict[str, Any]:
    return {
        "type": "json_schema",
        "name": "match_candidate",
        "schema": {
            "type": "object",
            "properties": {
                "candidate_id": {"type": ["string", "null"]},
                "confidence": {"type": "number", "minimum": 0, "maximum": 1},
                "rationale": {"type": "string"},
            },
            "required": ["candidate_id", "confidence", "rationale"],
            "additionalProperties": False,
        },
        "strict": True,
    }


def _extract_json(resp: Any) -> Mapping[str, Any]:
    """Decode the JSON object from a Responses API result."""
    text: Optional[str] = getattr(resp, "output_text", None)
    if not text:
        raise OracleUnavailable("Unexpected Responses API shape; no text output")
    try:
        decoded = json.loads(text)
    except json.JSONDecodeError as e:
        raise OracleUnavailable("Model output was not valid JSON") from e
    if not isinstance(decoded, dict):
        raise OracleUnavailable("Model output was not a JSON object")
    return decoded


def _describe(txn: Transaction) -> dict[str, Any]:
    kind = txn.type.value if hasattr(txn.type, "value") else str(txn.type)
    return {
        "id": txn.id,
        "description": txn.description,
        "amount": str(txn.amount),
        "date": txn.date.isoformat(),
        "type": kind,
        "reference": txn.reference,
    }


class OpenAIClassificationOracle(ClassificationOracle):
    """Oracle adapter over ``client.responses.create``."""

    name = "openai"

    def __init__(
        self,
        categories: list[str],
        model: str = "gpt-5",
        client: Optional[Any] = None,
    ):
        """
        Initialize the adapter.

        Args:
            categories: Allowed category codes
            model: Model name passed to the Responses API
            client: Pre-built client (an ``openai.OpenAI`` instance by default)
        """
        if not categories:
            raise ValueError("categories must not be empty")
        self.categories = list(categories)
        self.model = model
        self._client = client
        self._feedback: deque[FeedbackCorrection] = deque(maxlen=_MAX_FEEDBACK_EXAMPLES)

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = OpenAI()
        return self._client

    def _request(self, instructions: str, payload: dict[str, Any], fmt: dict) -> Mapping[str, Any]:
        t0 = time.perf_counter()
        try:
            resp = self.client.responses.create(
                model=self.model,
                instructions=instructions,
                input=json.dumps(payload),
                text={"format": fmt},
            )
        except Exception as e:
            raise OracleUnavailable(f"OpenAI request failed: {e}") from e
        decoded = _extract_json(resp)
        logger.debug(
            f"OpenAI {fmt['name']} answered in {(time.perf_counter() - t0) * 1000:.0f}ms"
        )
        return decoded

    def classify(self, txn: Transaction) -> Classification:
        payload: dict[str, Any] = {"transaction": _describe(txn)}
        if self._feedback:
            payload["corrections"] = [
                {
                    "description": c.description,
                    "category": c.corrected_category,
                    "reasoning": c.reasoning,
                }
                for c in list(self._feedback)
            ]
        decoded = self._request(
            CLASSIFY_INSTRUCTIONS, payload, _classification_format(self.categories)
        )
        category = decoded.get("category")
        if category not in self.categories:
            raise OracleUnavailable(f"Model returned unknown category {category!r}")
        return Classification(
            category=category,
            confidence=float(decoded.get("confidence", 0.0)),
            explanation=str(decoded.get("rationale", "")),
            model=self.model,
            provider=self.name,
        )

    def find_match_candidates(
        self,
        bank_txn: BankTransaction,
        candidates: list[BookTransaction],
    ) -> Optional[MatchCandidate]:
        if not candidates:
            return None
        payload = {
            "bank_transaction": _describe(bank_txn),
            "book_transactions": [_describe(c) for c in candidates],
        }
        decoded = self._request(MATCH_INSTRUCTIONS, payload, _match_format())
        candidate_id = decoded.get("candidate_id")
        if not candidate_id:
            return None
        return MatchCandidate(
            candidate_id=str(candidate_id),
            confidence=float(decoded.get("confidence", 0.0)),
            explanation=str(decoded.get("rationale", "")),
        )

    def submit_feedback(self, correction: FeedbackCorrection) -> None:
        # The Responses API has no training endpoint; corrections are replayed
        # as examples in later classify prompts.
        self._feedback.append(correction)
        logger.info(
            f"Recorded correction for {correction.transaction_id}: "
            f"{correction.original_category} -> {correction.corrected_category}"
        )
