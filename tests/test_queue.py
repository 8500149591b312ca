import threading
import time

from warden.controllers.queue import ExponentialBackoff, WorkQueue


def test_duplicate_adds_are_collapsed():
    queue = WorkQueue()
    queue.add("a")
    queue.add("a")
    queue.add("b")
    assert len(queue) == 2


def test_key_added_while_processing_is_requeued_after_done():
    queue = WorkQueue()
    queue.add("a")
    key = queue.get(timeout=1)
    queue.add("a")

    assert queue.get(timeout=0.01) is None

    queue.done(key)
    assert queue.get(timeout=1) == "a"


def test_key_is_never_handed_to_two_workers():
    queue = WorkQueue()
    queue.add("a")
    first = queue.get(timeout=1)
    queue.add("a")
    second = queue.get(timeout=0.05)
    assert first == "a"
    assert second is None


def test_add_after_delays_key():
    queue = WorkQueue()
    queue.add_after("a", 0.05)
    assert queue.get(timeout=0.01) is None
    assert queue.get(timeout=1) == "a"


def test_backoff_is_exponential_and_capped():
    backoff = ExponentialBackoff(base_delay=1.0, max_delay=10.0)
    delays = [backoff.when("a") for _ in range(6)]
    assert delays == [1.0, 2.0, 4.0, 8.0, 10.0, 10.0]
    assert backoff.failures("a") == 6

    backoff.forget("a")
    assert backoff.when("a") == 1.0


def test_backoff_is_per_key():
    backoff = ExponentialBackoff(base_delay=0.5, max_delay=60.0)
    backoff.when("a")
    backoff.when("a")
    assert backoff.when("b") == 0.5


def test_rate_limited_add_uses_backoff():
    queue = WorkQueue(ExponentialBackoff(base_delay=0.01, max_delay=0.05))
    queue.add_rate_limited("a")
    assert queue.num_requeues("a") == 1
    assert queue.get(timeout=1) == "a"


def test_shutdown_releases_waiting_workers():
    queue = WorkQueue()
    results = []
    worker = threading.Thread(target=lambda: results.append(queue.get()))
    worker.start()
    time.sleep(0.02)

    queue.shutdown()
    worker.join(1)

    assert results == [None]
    queue.add("a")
    assert len(queue) == 0


def test_add_does_not_cut_backoff_short():
    queue = WorkQueue(ExponentialBackoff(base_delay=0.1, max_delay=1.0))
    queue.add("a")
    key = queue.get(timeout=1)
    queue.add("a")
    queue.add_rate_limited(key)
    queue.done(key)

    queue.add("a")
    assert queue.get(timeout=0.02) is None
    assert queue.get(timeout=1) == "a"
    assert len(queue) == 0
