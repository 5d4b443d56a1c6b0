"""Fan-out/fan-in helper: run independent calls in threads, isolate failures."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Callable, Dict, Hashable, Mapping, Optional, TypeVar

from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="concurrency")

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


def gather_isolated(
    calls: Mapping[K, Callable[[], T]],
    fallback: Callable[[K, Exception], T],
    *,
    executor: Optional[ThreadPoolExecutor] = None,
    max_workers: int = 8,
) -> Dict[K, T]:
    """
    Run every call concurrently and return ``{key: result}``.

    A call that raises contributes ``fallback(key, exc)`` instead of
    propagating. When ``executor`` is None a short-lived pool is used and
    joined before returning.
    """
    if not calls:
        return {}

    results: Dict[K, T] = {}

    def _collect(futures: Dict[Future, K]) -> None:
        for future in as_completed(futures):
            key = futures[future]
            try:
                results[key] = future.result()
            except Exception as exc:
                logger.warning("Concurrent task failed; using fallback", extra={"task": str(key), "error": str(exc)})
                results[key] = fallback(key, exc)

    if executor is not None:
        _collect({executor.submit(fn): key for key, fn in calls.items()})
    else:
        with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(calls)))) as pool:
            _collect({pool.submit(fn): key for key, fn in calls.items()})
    return {key: results[key] for key in calls}
