"""Hard-timeout wrapper around a classification oracle."""

from concurrent.futures import Future, TimeoutError as FutureTimeout
from typing import Callable, Optional, TypeVar
import logging
import threading

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

T = TypeVar("T")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def _start(fn: Callable[..., T], args: tuple) -> "Future[T]":
    """Run ``fn(*args)`` on a fresh daemon thread."""
    future: Future = Future()

    def run():
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn(*args))
        except Exception as e:
            future.set_exception(e)

    threading.Thread(target=run, name="oracle", daemon=True).start()
    return future


class TimeboxedOracle(ClassificationOracle):
    """
    Bounds every call to the wrapped oracle.

    At most ``concurrency`` calls are live at once, each on its own thread.
    The timeout starts when a call starts running. A call that does not
    finish within ``timeout_seconds`` is abandoned and reported as
    ``OracleUnavailable`` so the caller can treat it as "no suggestion";
    its slot is freed immediately, so a hung call never delays an unrelated
    one. Any other failure of the wrapped oracle is reported the same way.
    """

    def __init__(
        self,
        inner: ClassificationOracle,
        timeout_seconds: float = 10.0,
        concurrency: int = 4,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be a positive integer")
        self.inner = inner
        self.timeout_seconds = timeout_seconds
        self.name = inner.name
        self._slots = threading.BoundedSemaphore(concurrency)
        self._closed = False

    def _call(self, label: str, fn: Callable[..., T], *args) -> T:
        with self._slots:
            if self._closed:
                raise OracleUnavailable(f"Oracle {label} called after close")
            future = _start(fn, args)
            try:
                return future.result(timeout=self.timeout_seconds)
            except FutureTimeout as e:
                # The thread is left to finish on its own
                logger.warning(f"Oracle {label} timed out after {self.timeout_seconds}s")
                raise OracleUnavailable(
                    f"Oracle {label} timed out after {self.timeout_seconds}s"
                ) from e
            except OracleUnavailable:
                raise
            except Exception as e:
                logger.warning(f"Oracle {label} failed: {e}")
                raise OracleUnavailable(f"Oracle {label} failed: {e}") from e

    def classify(self, txn: Transaction) -> Classification:
        result = self._call("classify", self.inner.classify, txn)
        result.confidence = _clamp(result.confidence)
        return result

    def find_match_candidates(
        self,
        bank_txn: BankTransaction,
        candidates: list[BookTransaction],
    ) -> Optional[MatchCandidate]:
        result = self._call(
            "find_match_candidates",
            self.inner.find_match_candidates,
            bank_txn,
            candidates,
        )
        if result is not None:
            result.confidence = _clamp(result.confidence)
        return result

    def submit_feedback(self, correction: FeedbackCorrection) -> None:
        self._call("submit_feedback", self.inner.submit_feedback, correction)

    def close(self) -> None:
        self._closed = True
