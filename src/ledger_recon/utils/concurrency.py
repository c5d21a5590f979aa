"""A bounded, order-preserving map over a thread pool.

``p_map`` hides the ``ThreadPoolExecutor`` mechanics (submission window,
shutdown, cancels) behind one call:

- ``concurrency``: maximum number of mapper calls running at once.
- ``stop_on_error`` (default True): fail fast on the first error; when False,
  wait for all tasks and raise an ``ExceptionGroup`` of the failures.
- ``cancel_event``: when set, no further work is submitted, pending work is
  cancelled and ``ReconciliationCancelled`` is raised.
- ``p_map_skip``: return this sentinel from the mapper to omit an element.

Scoring and oracle calls are I/O- or cheap-CPU-bound per item, so threads are
sufficient here.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Optional, TypeVar

from .exceptions import ReconciliationCancelled

InT = TypeVar("InT")
OutT = TypeVar("OutT")

# How often a blocked wait re-checks the cancel event.
_CANCEL_POLL_SECONDS = 0.05


class _Skip:
    __slots__ = ()

    def __repr__(self) -> str:  # pragma: no cover - trivial
        return "p_map_skip"


p_map_skip: object = _Skip()


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT | object],
    *,
    concurrency: int,
    stop_on_error: bool = True,
    cancel_event: Optional[threading.Event] = None,
) -> list[OutT]:
    """Map ``iterable`` through ``mapper`` with a bounded concurrency limit.

    The returned list preserves input order, excluding items where the mapper
    returned ``p_map_skip``.
    """
    if not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    it = enumerate(iterable)
    results: dict[int, OutT | object] = {}
    errors: list[Exception] = []
    submitted = 0
    future_to_idx: dict[Future, int] = {}

    def _cancelled() -> bool:
        return cancel_event is not None and cancel_event.is_set()

    def _submit(pool: ThreadPoolExecutor) -> Future | None:
        nonlocal submitted
        if _cancelled():
            return None
        try:
            idx, item = next(it)
        except StopIteration:
            return None
        fut = pool.submit(mapper, item)
        future_to_idx[fut] = idx
        submitted += 1
        return fut

    with ThreadPoolExecutor(max_workers=concurrency) as pool:
        active: set[Future] = set()
        for _ in range(concurrency):
            fut = _submit(pool)
            if fut is None:
                break
            active.add(fut)

        while active:
            timeout = _CANCEL_POLL_SECONDS if cancel_event is not None else None
            done, active = wait(active, timeout=timeout, return_when=FIRST_COMPLETED)

            if _cancelled():
                pool.shutdown(wait=False, cancel_futures=True)
                raise ReconciliationCancelled("Batch cancelled while mapping")

            for fut in done:
                idx = future_to_idx.pop(fut)
                try:
                    results[idx] = fut.result()
                except Exception as e:  # noqa: BLE001
                    if stop_on_error:
                        try:
                            pool.shutdown(wait=False, cancel_futures=True)
                        finally:
                            raise
                    errors.append(e)

            for _ in range(len(done)):
                fut = _submit(pool)
                if fut is None:
                    break
                active.add(fut)

    if _cancelled():
        raise ReconciliationCancelled("Batch cancelled while mapping")

    if errors:
        raise ExceptionGroup("p_map: one or more mapper calls failed", errors)

    out: list[OutT] = []
    for i in range(submitted):
        val = results.get(i, p_map_skip)
        if val is p_map_skip:
            continue
        out.append(val)  # type: ignore[arg-type]
    return out


__all__ = ["p_map", "p_map_skip"]
