"""Scripted stand-in for the classification oracle.

Tests describe what the oracle should answer per transaction id; the stub
records every call so assertions can check who was asked and with what.
Answers may be a value, an exception instance (raised), a callable taking
the call arguments, or a list consumed one item per call.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Optional

from ledger_recon.oracle import (
    Classification,
    ClassificationOracle,
    FeedbackCorrection,
    MatchCandidate,
)
from ledger_recon.utils.exceptions import OracleUnavailable


class ScriptedOracle(ClassificationOracle):
    name = "stub"

    def __init__(
        self,
        classifications: Optional[dict[str, Any]] = None,
        matches: Optional[dict[str, Any]] = None,
        delay: float = 0.0,
        feedback_error: Optional[Exception] = None,
    ) -> None:
        self.classifications = dict(classifications or {})
        self.matches = dict(matches or {})
        self.delay = delay
        self.feedback_error = feedback_error
        self.classify_calls: list[str] = []
        self.match_calls: list[tuple[str, list[str]]] = []
        self.feedback: list[FeedbackCorrection] = []
        self._lock = threading.Lock()

    def _answer(self, script: dict[str, Any], key: str, *args: Any) -> Any:
        with self._lock:
            answer = script.get(key)
            if isinstance(answer, list):
                answer = answer.pop(0) if answer else None
        if self.delay:
            time.sleep(self.delay)
        if isinstance(answer, Exception):
            raise answer
        if callable(answer):
            return answer(*args)
        return answer

    def classify(self, txn) -> Classification:
        with self._lock:
            self.classify_calls.append(txn.id)
        answer = self._answer(self.classifications, txn.id, txn)
        if answer is None:
            raise OracleUnavailable(f"no scripted classification for {txn.id}")
        if isinstance(answer, str):
            return Classification(
                category=answer,
                confidence=0.85,
                explanation=f"looks like {answer}",
                model="stub-model",
                provider="stub",
            )
        return answer

    def find_match_candidates(self, bank_txn, candidates) -> Optional[MatchCandidate]:
        with self._lock:
            self.match_calls.append((bank_txn.id, [c.id for c in candidates]))
        return self._answer(self.matches, bank_txn.id, bank_txn, candidates)

    def submit_feedback(self, correction: FeedbackCorrection) -> None:
        if self.feedback_error is not None:
            raise self.feedback_error
        with self._lock:
            self.feedback.append(correction)
