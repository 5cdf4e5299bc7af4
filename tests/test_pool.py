"""Tests for the EmbeddingPool checkout protocol and concurrency behaviour."""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from embedpool.errors import (
    CheckoutTimeoutError,
    EmptyInputError,
    InitializationError,
    PoolClosedError,
)
from embedpool.services.pool import EmbeddingPool

DIM = 384


class FakeWorker:
    """Duck-typed worker that records how it is used."""

    def __init__(self, tracker: Tracker, fail_init: bool = False, delay: float = 0.0) -> None:
        self.tracker = tracker
        self.fail_init = fail_init
        self.delay = delay
        self.ready = False
        self.busy = False

    def initialize(self) -> None:
        if self.ready:
            return
        self.tracker.initializations += 1
        if self.fail_init:
            raise InitializationError("model.onnx missing")
        self.ready = True

    def generate(self, texts):
        self.initialize()
        if self.busy:
            self.tracker.overlaps += 1
        self.busy = True
        with self.tracker.lock:
            self.tracker.active += 1
            self.tracker.peak = max(self.tracker.peak, self.tracker.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if any(not isinstance(t, str) for t in texts):
                raise TypeError("TextEncodeInput must be a str")
            if any(t == "boom" for t in texts):
                raise RuntimeError("worker crashed")
            return [[float(len(t))] + [0.0] * (DIM - 1) for t in texts]
        finally:
            with self.tracker.lock:
                self.tracker.active -= 1
            self.busy = False


class Tracker:
    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.active = 0
        self.peak = 0
        self.overlaps = 0
        self.created = 0
        self.initializations = 0


@pytest.fixture
def tracker() -> Tracker:
    return Tracker()


def fake_pool(tracker: Tracker, size: int = 2, timeout: float = 5.0, **worker_kwargs) -> EmbeddingPool:
    def factory():
        tracker.created += 1
        return FakeWorker(tracker, **worker_kwargs)

    return EmbeddingPool(pool_size=size, checkout_timeout=timeout, worker_factory=factory)


# ---------------------------------------------------------------------------
# Lazy initialization
# ---------------------------------------------------------------------------


def test_workers_are_not_initialized_at_start(tracker):
    pool = fake_pool(tracker, size=3)

    stats = pool.stats()
    assert stats.size == 3
    assert stats.idle == 3
    assert stats.ready == 0
    assert tracker.initializations == 0


def test_acquire_initializes_only_used_slots(tracker):
    pool = fake_pool(tracker, size=3)

    pool.generate(["hello"])

    assert pool.stats().ready == 1
    assert tracker.initializations == 1


def test_initialization_failure_is_retried_on_next_acquire(tracker):
    attempts = []

    def factory():
        attempts.append(1)
        # Only the very first worker fails to load
        return FakeWorker(tracker, fail_init=len(attempts) == 1)

    pool = EmbeddingPool(pool_size=1, checkout_timeout=1.0, worker_factory=factory)

    with pytest.raises(InitializationError):
        pool.generate(["hello"])
    assert pool.stats().idle == 1

    assert pool.generate(["hello"])[0][0] == 5.0
    assert len(attempts) == 2


# ---------------------------------------------------------------------------
# Checkout protocol
# ---------------------------------------------------------------------------


def test_acquire_and_release(tracker):
    pool = fake_pool(tracker, size=2)

    handle = pool.acquire()
    assert pool.stats().busy == 1
    pool.release(handle)
    assert pool.stats().busy == 0


def test_double_release_raises(tracker):
    pool = fake_pool(tracker, size=1)
    handle = pool.acquire()
    pool.release(handle)

    with pytest.raises(ValueError, match="already been released"):
        pool.release(handle)
    with pytest.raises(ValueError):
        handle.generate(["late"])


def test_acquire_timeout_when_all_slots_held(tracker):
    pool = fake_pool(tracker, size=1)
    held = pool.acquire()

    start = time.monotonic()
    with pytest.raises(CheckoutTimeoutError) as exc_info:
        pool.acquire(timeout=0.05)
    assert time.monotonic() - start < 2.0
    assert isinstance(exc_info.value, TimeoutError)
    assert exc_info.value.phase == "timeout"

    pool.release(held)
    pool.release(pool.acquire(timeout=0.05))


def test_generate_uses_configured_checkout_timeout(tracker):
    pool = fake_pool(tracker, size=1, timeout=0.05)
    held = pool.acquire()
    try:
        with pytest.raises(CheckoutTimeoutError):
            pool.generate(["waiting"])
    finally:
        pool.release(held)


def test_failed_call_releases_and_replaces_worker(tracker):
    pool = fake_pool(tracker, size=1)
    pool.generate(["ok"])
    created_before = tracker.created

    with pytest.raises(RuntimeError, match="worker crashed"):
        pool.generate(["boom"])

    stats = pool.stats()
    assert stats.idle == 1
    assert stats.ready == 0
    assert tracker.created == created_before + 1
    # The slot recovers with a fresh worker
    assert pool.generate(["fine"])[0][0] == 4.0


def test_empty_input_rejected_without_checkout(tracker):
    pool = fake_pool(tracker, size=1)

    with pytest.raises(EmptyInputError):
        pool.generate([])
    assert tracker.initializations == 0
    assert pool.stats().idle == 1


def test_single_string_rejected(tracker):
    pool = fake_pool(tracker, size=1)
    with pytest.raises(TypeError):
        pool.generate("not a list")


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def test_concurrent_calls_exceeding_pool_size(tracker):
    pool = fake_pool(tracker, size=2, delay=0.02)
    requests = [[f"text-{i}" * (i + 1)] for i in range(10)]

    with ThreadPoolExecutor(max_workers=10) as executor:
        results = list(executor.map(pool.generate, requests))

    for texts, vectors in zip(requests, results):
        assert vectors[0][0] == float(len(texts[0]))
    assert tracker.peak <= 2
    assert tracker.overlaps == 0
    assert pool.stats().idle == 2


def test_concurrent_calls_on_real_pipeline(worker_factory):
    pool = EmbeddingPool(pool_size=2, checkout_timeout=30.0, worker_factory=worker_factory)
    texts = ["the cat sat on the mat", "quantum physics equations", "hello world", "red dog"]
    expected = worker_factory().generate(texts)

    with ThreadPoolExecutor(max_workers=6) as executor:
        futures = [executor.submit(pool.generate, [texts[i % 4]]) for i in range(12)]
        results = [f.result() for f in futures]

    for i, [vector] in enumerate(results):
        np.testing.assert_allclose(vector, expected[i % 4], atol=1e-6)
    assert pool.stats().ready <= 2


def test_blocked_acquirer_gets_slot_when_released(tracker):
    pool = fake_pool(tracker, size=1)
    held = pool.acquire()
    acquired = threading.Event()

    def waiter():
        handle = pool.acquire(timeout=5.0)
        acquired.set()
        pool.release(handle)

    thread = threading.Thread(target=waiter)
    thread.start()
    assert not acquired.wait(0.05)
    pool.release(held)
    thread.join(timeout=5.0)
    assert acquired.is_set()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_close_rejects_new_acquires(tracker):
    with fake_pool(tracker, size=1) as pool:
        pool.generate(["x"])
    assert pool.closed
    with pytest.raises(PoolClosedError):
        pool.generate(["x"])


def test_close_wakes_blocked_acquirer(tracker):
    pool = fake_pool(tracker, size=1)
    held = pool.acquire()
    errors: list[Exception] = []

    def waiter():
        try:
            pool.acquire(timeout=5.0)
        except Exception as e:
            errors.append(e)

    thread = threading.Thread(target=waiter)
    thread.start()
    time.sleep(0.05)
    pool.close()
    pool.release(held)
    thread.join(timeout=5.0)

    assert len(errors) == 1
    assert isinstance(errors[0], PoolClosedError)


def test_warmup_initializes_slots(tracker):
    pool = fake_pool(tracker, size=3)

    assert pool.warmup(2) == 2
    assert pool.warmup() == 3
    assert pool.stats().idle == 3


def test_invalid_pool_size(tracker):
    with pytest.raises(ValueError):
        fake_pool(tracker, size=0)


async def test_agenerate(tracker):
    pool = fake_pool(tracker, size=2)

    vectors = await pool.agenerate(["abc", "de"])

    assert [v[0] for v in vectors] == [3.0, 2.0]


async def test_agenerate_rejects_single_string(tracker):
    pool = fake_pool(tracker, size=1)

    with pytest.raises(TypeError):
        await pool.agenerate("hello")
    with pytest.raises(EmptyInputError):
        await pool.agenerate([])
    assert tracker.initializations == 0


def test_invalid_text_keeps_worker(tracker):
    pool = fake_pool(tracker, size=1)
    pool.generate(["ok"])
    created_before = tracker.created

    with pytest.raises(TypeError):
        pool.generate(["fine", 42])

    stats = pool.stats()
    assert stats.idle == 1
    assert stats.ready == 1
    assert tracker.created == created_before


def test_factory_failure_after_init_error_keeps_slot(tracker):
    calls = []

    def factory():
        calls.append(1)
        if len(calls) == 2:
            raise RuntimeError("factory unavailable")
        return FakeWorker(tracker, fail_init=len(calls) == 1)

    pool = EmbeddingPool(pool_size=1, checkout_timeout=1.0, worker_factory=factory)

    with pytest.raises(InitializationError):
        pool.acquire()

    assert pool.stats().idle == 1
    # The original worker stays in the slot and is retried on the next acquire
    with pytest.raises(InitializationError):
        pool.acquire(timeout=0.5)
    assert pool.stats().idle == 1


def test_factory_failure_on_discard_keeps_slot(tracker):
    calls = []

    def factory():
        calls.append(1)
        if len(calls) > 1:
            raise RuntimeError("factory unavailable")
        return FakeWorker(tracker)

    pool = EmbeddingPool(pool_size=1, checkout_timeout=1.0, worker_factory=factory)

    with pytest.raises(RuntimeError, match="worker crashed"):
        pool.generate(["boom"])

    assert pool.stats().idle == 1
    assert pool.generate(["again"])[0][0] == 5.0
