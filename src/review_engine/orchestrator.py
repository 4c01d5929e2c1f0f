"""Bounded-concurrency fan-out with fail-fast cancellation.

``run_all`` is used at every fan-out level of a review (categories,
documents, split chunks). Each call creates a child cancellation scope, so a
failure cancels its own siblings and everything nested below them while the
caller's scope stays intact.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Sequence, TypeVar

from .errors import ReviewCancelledError

logger = logging.getLogger(__name__)

U = TypeVar("U")
R = TypeVar("R")


class CancellationToken:
    """Thread-safe cancellation flag that also observes its parent's flag."""

    def __init__(self, parent: "CancellationToken | None" = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def child(self) -> "CancellationToken":
        return CancellationToken(self)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise ReviewCancelledError()


def _prefer(current: BaseException | None, candidate: BaseException) -> BaseException:
    """Keep the first real failure over cancellations it caused in siblings."""
    if current is None:
        return candidate
    if isinstance(current, ReviewCancelledError) and not isinstance(
        candidate, ReviewCancelledError
    ):
        return candidate
    return current


def run_all(
    units: Iterable[U],
    worker: Callable[[U, CancellationToken], R],
    *,
    concurrency_limit: int,
    token: CancellationToken | None = None,
) -> list[R]:
    """Run ``worker(unit, scope)`` for every unit, at most ``concurrency_limit`` at once.

    Results are returned in submission order. The first failure cancels the
    scope: queued units never start and running workers observe
    ``scope.cancelled`` at their next checkpoint. That failure is then raised
    and any results already computed are discarded.
    """
    if concurrency_limit < 1:
        raise ValueError("concurrency_limit must be at least 1")

    pending_units: Sequence[U] = list(units)
    if not pending_units:
        return []

    scope = token.child() if token is not None else CancellationToken()
    scope.raise_if_cancelled()

    def _run_unit(unit: U) -> R:
        scope.raise_if_cancelled()
        try:
            return worker(unit, scope)
        except Exception:
            # Cancel before the future resolves so no sibling starts afterwards
            scope.cancel()
            raise

    results: list[R | None] = [None] * len(pending_units)
    failure: BaseException | None = None

    with ThreadPoolExecutor(max_workers=min(concurrency_limit, len(pending_units))) as pool:
        futures: dict[Future[R], int] = {
            pool.submit(_run_unit, unit): index for index, unit in enumerate(pending_units)
        }
        for future in as_completed(futures):
            if future.cancelled():
                continue
            error = future.exception()
            if error is None:
                results[futures[future]] = future.result()
                continue
            if failure is None:
                logger.debug("Unit %d failed; cancelling remaining work", futures[future])
                for other in futures:
                    other.cancel()
            failure = _prefer(failure, error)

    if failure is not None:
        raise failure
    return results  # type: ignore[return-value]
