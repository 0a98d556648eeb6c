"""Fan-out/fan-in worker pool for I/O-bound per-package work.

Each unit of work runs in its own thread and reports a UnitResult holding
either its value or its error. Results are drained at a single join point;
the first error stops the join, cancels queued units, and is re-raised.
Units already running are not interrupted: they finish in the background
and their results are discarded.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Generic, TypeVar, cast

logger = logging.getLogger(__name__)

A = TypeVar("A")
T = TypeVar("T")


@dataclass
class UnitResult(Generic[T]):
    """Outcome of one unit of work: a value or an error."""

    name: str
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def _run_unit(name: str, arg: A, fn: Callable[[str, A], T]) -> UnitResult[T]:
    try:
        return UnitResult(name=name, value=fn(name, arg))
    except Exception as e:
        return UnitResult(name=name, error=e)


def run_units(
    units: Mapping[str, A],
    fn: Callable[[str, A], T],
    max_workers: int | None = None,
    label: str = "task",
) -> dict[str, T]:
    """Run fn(name, arg) for every unit concurrently, failing fast.

    Args:
        units: Work items keyed by name.
        fn: Callable invoked as fn(name, arg) in a worker thread.
        max_workers: Thread cap (default: one thread per unit).
        label: Short description used in log messages.

    Returns:
        Mapping of unit name to the value fn returned.

    Raises:
        Exception: The first error reported by any unit.
    """
    if not units:
        return {}

    workers = min(max_workers or len(units), len(units))
    logger.debug("Running %d %s unit(s) on %d worker(s)", len(units), label, workers)

    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix=label)
    failed = False
    results: dict[str, T] = {}
    try:
        futures: list[Future[UnitResult[T]]] = [
            executor.submit(_run_unit, name, arg, fn) for name, arg in units.items()
        ]
        for future in as_completed(futures):
            result = future.result()
            if result.error is not None:
                failed = True
                logger.error("%s failed for %s: %s", label, result.name, result.error)
                raise result.error
            results[result.name] = cast(T, result.value)
            logger.debug("%s finished for %s", label, result.name)
    finally:
        executor.shutdown(wait=not failed, cancel_futures=failed)

    return results


__all__ = ["UnitResult", "run_units"]
