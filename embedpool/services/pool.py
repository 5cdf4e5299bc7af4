"""Bounded pool of embedding workers.

The pool owns a fixed array of slots, each holding one
:class:`~embedpool.services.embedder.EmbeddingWorker`.  Idle slot indices
sit in a queue; ``acquire`` takes one (blocking up to the checkout timeout)
and ``release`` puts it back, so every worker serves at most one caller at a
time while different workers run in parallel threads.

Workers are created ``UNINITIALIZED`` and only load their model when a slot
is first acquired.  A worker whose initialization fails, or which crashes
while checked out, is replaced with a fresh uninitialized one so the slot
recovers on its next use.
"""

from __future__ import annotations

import asyncio
import logging
import queue
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager

from embedpool.config import Settings
from embedpool.errors import CheckoutTimeoutError, EmptyInputError, PoolClosedError
from embedpool.models.domain import PoolStats
from embedpool.services.embedder import EmbeddingWorker

logger = logging.getLogger(__name__)

WorkerFactory = Callable[[], EmbeddingWorker]


def _check_texts(texts: Sequence[str]) -> None:
    if isinstance(texts, str):
        raise TypeError("texts must be a sequence of strings, not a single string")
    if len(texts) == 0:
        raise EmptyInputError("texts must contain at least one string")


class WorkerHandle:
    """A checked-out slot.  Valid until passed to :meth:`EmbeddingPool.release`."""

    __slots__ = ("slot", "worker", "released")

    def __init__(self, slot: int, worker: EmbeddingWorker) -> None:
        self.slot = slot
        self.worker = worker
        self.released = False

    def generate(self, texts: Sequence[str]) -> list[list[float]]:
        if self.released:
            raise ValueError(f"Handle for slot {self.slot} has already been released")
        return self.worker.generate(texts)


class EmbeddingPool:
    """Multiplexes ``generate`` calls over ``pool_size`` independent workers.

    Parameters
    ----------
    pool_size:
        Number of worker slots.  Defaults to ``settings.pool_size`` (the host
        core count).
    checkout_timeout:
        Seconds ``acquire`` waits for an idle slot before raising
        :class:`CheckoutTimeoutError`.  Defaults to ``settings.checkout_timeout``.
    worker_factory:
        Builds a fresh, uninitialized worker.  Defaults to
        ``EmbeddingWorker.from_settings(settings)``.
    settings:
        Source of defaults.  Falls back to the module-level settings.
    """

    def __init__(
        self,
        pool_size: int | None = None,
        checkout_timeout: float | None = None,
        worker_factory: WorkerFactory | None = None,
        settings: Settings | None = None,
    ) -> None:
        if settings is None:
            from embedpool.config import settings as default_settings

            settings = default_settings
        self.settings = settings
        self.pool_size = pool_size if pool_size is not None else settings.pool_size
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")
        self.checkout_timeout = (
            checkout_timeout if checkout_timeout is not None else settings.checkout_timeout
        )
        self._worker_factory = worker_factory or (lambda: EmbeddingWorker.from_settings(settings))

        self._lock = threading.Lock()
        self._closed = False
        self._workers: list[EmbeddingWorker] = [self._worker_factory() for _ in range(self.pool_size)]
        self._idle: queue.Queue[int] = queue.Queue()
        for slot in range(self.pool_size):
            self._idle.put(slot)

        logger.info(
            "Embedding pool created with %d slots (checkout timeout %.1fs)",
            self.pool_size,
            self.checkout_timeout,
        )

    # ------------------------------------------------------------------
    # Checkout protocol
    # ------------------------------------------------------------------

    def acquire(self, timeout: float | None = None) -> WorkerHandle:
        """Block until a slot is idle, initialize its worker if needed, and return it.

        Raises
        ------
        CheckoutTimeoutError
            No slot became idle within *timeout* (default ``checkout_timeout``).
        InitializationError
            The slot's worker failed to load.  The slot is returned to the
            pool with a fresh worker so a later acquire retries.
        PoolClosedError
            The pool has been shut down.
        """
        if self._closed:
            raise PoolClosedError("Embedding pool is closed")

        wait = self.checkout_timeout if timeout is None else timeout
        try:
            slot = self._idle.get(timeout=wait)
        except queue.Empty:
            raise CheckoutTimeoutError(
                f"No embedding worker became available within {wait:.1f}s"
            ) from None

        with self._lock:
            if self._closed:
                self._idle.put(slot)
                raise PoolClosedError("Embedding pool is closed")
            worker = self._workers[slot]

        if not worker.ready:
            try:
                worker.initialize()
            except Exception:
                logger.warning("Worker in slot %d failed to initialize", slot, exc_info=True)
                try:
                    self._replace(slot)
                finally:
                    self._idle.put(slot)
                raise

        return WorkerHandle(slot, worker)

    def release(self, handle: WorkerHandle, *, discard: bool = False) -> None:
        """Return *handle*'s slot to the pool.

        With ``discard=True`` the worker is dropped and the slot gets a fresh
        uninitialized worker.
        """
        if handle.released:
            raise ValueError(f"Handle for slot {handle.slot} has already been released")
        handle.released = True

        try:
            if discard and not self._closed:
                logger.warning("Discarding worker in slot %d", handle.slot)
                self._replace(handle.slot)
        finally:
            # Still returned after close so blocked acquirers wake and see the pool is closed.
            self._idle.put(handle.slot)

    @contextmanager
    def checkout(self, timeout: float | None = None) -> Iterator[WorkerHandle]:
        """Scoped acquire that always releases.

        A worker that crashed is discarded.  Input errors (``TypeError`` and
        ``ValueError``) leave the worker in place.
        """
        handle = self.acquire(timeout)
        try:
            yield handle
        except (TypeError, ValueError):
            self.release(handle)
            raise
        except BaseException:
            self.release(handle, discard=True)
            raise
        self.release(handle)

    def _replace(self, slot: int) -> None:
        try:
            fresh = self._worker_factory()
        except Exception:
            # The old worker stays in the slot; acquire initializes it again on demand.
            logger.exception("Could not build a replacement worker for slot %d", slot)
            return
        with self._lock:
            if not self._closed:
                self._workers[slot] = fresh

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* on the next idle worker.

        Returns one 384-d unit vector per text, in input order.
        """
        _check_texts(texts)
        start = time.monotonic()
        with self.checkout() as handle:
            vectors = handle.generate(texts)
        logger.debug(
            "Embedded %d texts on slot %d in %.1fms",
            len(texts),
            handle.slot,
            (time.monotonic() - start) * 1000,
        )
        return vectors

    async def agenerate(self, texts: Sequence[str]) -> list[list[float]]:
        """Async variant of :meth:`generate`, run in a worker thread."""
        _check_texts(texts)
        return await asyncio.to_thread(self.generate, list(texts))

    def warmup(self, count: int | None = None) -> int:
        """Eagerly initialize up to *count* slots (all by default).

        Returns the number of slots that are ready afterwards.
        """
        count = self.pool_size if count is None else min(count, self.pool_size)
        handles: list[WorkerHandle] = []
        try:
            for _ in range(count):
                handles.append(self.acquire())
        finally:
            for handle in handles:
                self.release(handle)
        return self.stats().ready

    def stats(self) -> PoolStats:
        with self._lock:
            ready = sum(1 for w in self._workers if w.ready)
        idle = self._idle.qsize()
        return PoolStats(
            size=self.pool_size,
            idle=idle,
            busy=self.pool_size - idle,
            ready=ready,
            closed=self._closed,
        )

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Shut the pool down and drop all workers.  In-flight calls finish; new acquires fail."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._workers.clear()
        logger.info("Embedding pool shut down.")

    def __enter__(self) -> EmbeddingPool:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
