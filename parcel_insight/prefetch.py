"""Background warming of the cache around recently analysed locations.

After every analysis the scheduler queues the same point at a wider radius
plus eight neighbouring points. A processing thread drains the queue in
small batches and fetches only the data that is not already cached; a
cleanup thread drops stale tasks. Nothing here ever reaches the caller.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence

from .amenity_service import AmenityFetcher, amenities_cache_key, infrastructure_cache_key
from .cache import Cache
from .domain import Category, LatLng, Layer
from .geometry import destination_point
from .market_service import MarketPriceEstimator, market_cache_key
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="prefetch")

SAME_POINT_RADIUS_FACTOR = 1.5
NEIGHBOUR_RADIUS_FACTOR = 2.0
DEDUP_DEGREES = 0.001

# (bearing in degrees, fraction of the request radius)
NEIGHBOUR_OFFSETS = (
    (0, 0.7), (90, 0.7), (180, 0.7), (270, 0.7),
    (45, 0.5), (135, 0.5), (225, 0.5), (315, 0.5),
)


@dataclass
class PrefetchTask:
    center: LatLng
    radius: int
    categories: List[Category] = field(default_factory=list)
    layers: List[Layer] = field(default_factory=list)
    created_at: float = 0.0

    def same_target(self, other: "PrefetchTask") -> bool:
        return (
            self.radius == other.radius
            and abs(self.center.lat - other.center.lat) < DEDUP_DEGREES
            and abs(self.center.lng - other.center.lng) < DEDUP_DEGREES
        )


class PrefetchScheduler:
    """Queue, deduplicate and process cache-warming tasks on background threads."""

    def __init__(
        self,
        fetcher: AmenityFetcher,
        estimator: MarketPriceEstimator,
        cache: Cache,
        *,
        process_interval: float = 30.0,
        cleanup_interval: float = 300.0,
        max_queue: int = 50,
        batch_size: int = 5,
        max_task_age: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.fetcher = fetcher
        self.estimator = estimator
        self.cache = cache
        self.process_interval = process_interval
        self.cleanup_interval = cleanup_interval
        self.max_queue = max_queue
        self.batch_size = batch_size
        self.max_task_age = max_task_age
        self._clock = clock
        self._queue: List[PrefetchTask] = []
        self._lock = threading.Lock()
        self._processing = threading.Lock()
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []

    @classmethod
    def from_settings(cls, fetcher, estimator, cache, settings) -> "PrefetchScheduler":
        return cls(
            fetcher,
            estimator,
            cache,
            process_interval=settings.prefetch_process_interval_seconds,
            cleanup_interval=settings.prefetch_cleanup_interval_seconds,
            max_queue=settings.prefetch_max_queue,
            batch_size=settings.prefetch_batch_size,
            max_task_age=settings.prefetch_max_task_age_seconds,
        )

    # -- queueing ----------------------------------------------------------

    def _enqueue(self, task: PrefetchTask) -> bool:
        with self._lock:
            if any(task.same_target(queued) for queued in self._queue):
                return False
            if len(self._queue) >= self.max_queue:
                return False
            self._queue.append(task)
            return True

    def neighbour_tasks(
        self, center: LatLng, radius: int, categories: Sequence[Category], layers: Sequence[Layer]
    ) -> List[PrefetchTask]:
        """The widened same-point task followed by the eight neighbour tasks."""
        now = self._clock()
        categories, layers = list(categories), list(layers)
        tasks = [
            PrefetchTask(center, int(round(radius * SAME_POINT_RADIUS_FACTOR)), categories, layers, now)
        ]
        for bearing, fraction in NEIGHBOUR_OFFSETS:
            point = destination_point(center, bearing, radius * fraction)
            tasks.append(
                PrefetchTask(point, int(round(radius * NEIGHBOUR_RADIUS_FACTOR)), categories, layers, now)
            )
        return tasks

    def notify(
        self, center: LatLng, radius: int, categories: Sequence[Category], layers: Sequence[Layer]
    ) -> int:
        """Queue warming tasks around an analysed point; returns how many were accepted."""
        try:
            added = sum(1 for task in self.neighbour_tasks(center, radius, categories, layers) if self._enqueue(task))
            logger.debug("Prefetch tasks queued", extra={"added": added, "queue_length": len(self._queue)})
            return added
        except Exception:
            logger.exception("Failed to queue prefetch tasks")
            return 0

    # -- processing --------------------------------------------------------

    def _warm(self, task: PrefetchTask) -> None:
        categories = sorted(set(task.categories), key=lambda c: c.value)
        layers = sorted(set(task.layers), key=lambda item: item.value)
        if categories and not self.cache.has(amenities_cache_key(task.center, task.radius, categories, False)):
            self.fetcher.fetch_amenities(task.center, task.radius, categories, include_small_shops=False)
        if layers and not self.cache.has(infrastructure_cache_key(task.center, task.radius, layers)):
            self.fetcher.fetch_infrastructure(task.center, task.radius, layers)
        if not self.cache.has(market_cache_key(task.center, task.radius)):
            self.estimator.estimate_prices(task.center, task.radius)

    def process_queue(self) -> int:
        """Drain one batch; returns the number of tasks taken (0 if a batch is already running)."""
        if not self._processing.acquire(blocking=False):
            return 0
        try:
            with self._lock:
                batch = self._queue[: self.batch_size]
                del self._queue[: self.batch_size]
            for task in batch:
                try:
                    self._warm(task)
                except Exception as exc:
                    logger.warning(
                        "Prefetch task failed",
                        extra={"lat": task.center.lat, "lng": task.center.lng, "radius": task.radius, "error": str(exc)},
                    )
            if batch:
                logger.info("Processed prefetch batch", extra={"tasks": len(batch), "remaining": len(self._queue)})
            return len(batch)
        finally:
            self._processing.release()

    def cleanup(self) -> int:
        """Drop tasks older than ``max_task_age`` and trim to the newest ``max_queue``."""
        now = self._clock()
        with self._lock:
            before = len(self._queue)
            fresh = [t for t in self._queue if now - t.created_at <= self.max_task_age]
            fresh.sort(key=lambda t: t.created_at)
            self._queue = fresh[-self.max_queue:] if self.max_queue > 0 else []
            removed = before - len(self._queue)
        if removed:
            logger.debug("Removed stale prefetch tasks", extra={"removed": removed})
        return removed

    def queue_status(self) -> dict:
        now = self._clock()
        with self._lock:
            oldest = min((t.created_at for t in self._queue), default=None)
            length = len(self._queue)
        return {
            "queue_length": length,
            "processing": self._processing.locked(),
            "oldest_task_age_seconds": round(now - oldest, 1) if oldest is not None else None,
            "running": self.running,
        }

    def clear_queue(self) -> int:
        with self._lock:
            removed = len(self._queue)
            self._queue.clear()
        return removed

    # -- lifecycle ---------------------------------------------------------

    def _loop(self, interval: float, tick: Callable[[], int], name: str) -> None:
        while not self._stop_event.wait(interval):
            try:
                tick()
            except Exception:  # pragma: no cover - keep the loop alive
                logger.exception("Prefetch tick failed", extra={"loop": name})

    def start(self) -> None:
        """Start the processing and cleanup threads (idempotent)."""
        if self.running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(
                target=self._loop, args=(self.process_interval, self.process_queue, "process"),
                name="prefetch-process", daemon=True,
            ),
            threading.Thread(
                target=self._loop, args=(self.cleanup_interval, self.cleanup, "cleanup"),
                name="prefetch-cleanup", daemon=True,
            ),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "Prefetch scheduler started",
            extra={"process_interval_s": self.process_interval, "cleanup_interval_s": self.cleanup_interval},
        )

    def stop(self) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=5)
        if self._threads:
            logger.info("Prefetch scheduler stopped")
        self._threads = []

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)
