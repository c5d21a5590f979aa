"""Data models for transaction categorization and its feedback history."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .transaction import new_id


class CategoryProvenance(Enum):
    """Who decided a transaction's stored category."""

    MODEL = "model"
    RULE = "rule"
    HUMAN = "human"


@dataclass
class CategorizationAttempt:
    """
    One categorization event.

    Attempts are never rewritten: a human correction is recorded as a new
    attempt with ``accepted=False`` that points at the attempt it corrects.
    """

    transaction_id: str
    user_id: str
    suggested_category: str
    confidence: float
    ai_model: str
    ai_provider: str
    reasoning: str = ""
    accepted: bool = True
    original_category: Optional[str] = None
    corrected_category: Optional[str] = None
    correction_reasoning: Optional[str] = None
    supersedes_attempt_id: Optional[str] = None
    processing_time: float = 0.0  # seconds
    id: str = field(default_factory=new_id)
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_correction(self) -> bool:
        return self.supersedes_attempt_id is not None or self.corrected_category is not None


@dataclass
class TransactionCategory:
    """Current category stored for a transaction."""

    transaction_id: str
    category: str
    confidence: float
    provenance: CategoryProvenance
    explanation: dict[str, Any] = field(default_factory=dict)
    updated_at: datetime = field(default_factory=datetime.now)


@dataclass
class CategorizationResult:
    """Per-transaction outcome returned to callers of ``categorize``."""

    transaction_id: str
    category: str
    confidence: float
    explanation: dict[str, Any] = field(default_factory=dict)
    source: str = "oracle"  # oracle | history | rule | fallback
