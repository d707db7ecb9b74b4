import threading
import time

from hcr.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue


def test_fifo_and_dedup():
    q = RateLimitingQueue()
    q.add("a")
    q.add("b")
    q.add("a")
    assert len(q) == 2
    assert q.get() == ("a", False)
    assert q.get() == ("b", False)


def test_readd_while_processing_is_deferred_until_done():
    q = RateLimitingQueue()
    q.add("a")
    item, _ = q.get()
    q.add("a")
    # Not handed out again while still processing.
    assert len(q) == 0
    q.done(item)
    assert len(q) == 1
    assert q.get() == ("a", False)


def test_shutdown_drains_then_reports():
    q = RateLimitingQueue()
    q.add("a")
    q.shut_down()
    q.add("b")
    assert q.get() == ("a", False)
    assert q.get() == (None, True)


def test_shutdown_wakes_blocked_get():
    q = RateLimitingQueue()
    result = []
    t = threading.Thread(target=lambda: result.append(q.get()))
    t.start()
    time.sleep(0.05)
    q.shut_down()
    t.join(timeout=2)
    assert result == [(None, True)]


def test_rate_limiter_backoff_and_forget():
    rl = ItemExponentialFailureRateLimiter(base_delay_s=0.01, max_delay_s=0.05)
    assert rl.when("k") == 0.01
    assert rl.when("k") == 0.02
    assert rl.when("k") == 0.04
    assert rl.when("k") == 0.05
    assert rl.num_requeues("k") == 4
    rl.forget("k")
    assert rl.num_requeues("k") == 0
    assert rl.when("k") == 0.01


def test_add_rate_limited_counts_requeues():
    q = RateLimitingQueue(ItemExponentialFailureRateLimiter(base_delay_s=0))
    q.add_rate_limited("k")
    q.add_rate_limited("k")
    assert q.num_requeues("k") == 2
    assert len(q) == 1
    q.forget("k")
    assert q.num_requeues("k") == 0


def test_add_after_delivers_later_and_only_once():
    q = RateLimitingQueue()
    q.add_after("k", 0.05)
    q.add_after("k", 0.05)
    assert len(q) == 0
    item, shutdown = q.get()
    assert (item, shutdown) == ("k", False)
    q.done(item)
    assert len(q) == 0


def test_add_after_keeps_the_earlier_deadline():
    q = RateLimitingQueue()
    q.add_after("short-later", 30)
    q.add_after("short-later", 0.05)
    q.add_after("long-later", 0.05)
    q.add_after("long-later", 30)
    time.sleep(0.3)
    assert len(q) == 2
    assert {q.get()[0], q.get()[0]} == {"short-later", "long-later"}
    q.shut_down()


def test_shutdown_cancels_delayed_adds():
    q = RateLimitingQueue()
    q.add_after("k", 0.2)
    q.shut_down()
    time.sleep(0.3)
    assert q.get() == (None, True)
