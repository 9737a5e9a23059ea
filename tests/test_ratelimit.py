import threading

from socialhub.ratelimit import RateLimiter

from tests._helpers import make_settings


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_allows_up_to_max_then_blocks():
    clock = FakeClock()
    rl = RateLimiter(window_seconds=60, max_requests=3, clock=clock)
    assert [rl.check("1.2.3.4")[0] for _ in range(3)] == [True, True, True]
    allowed, retry_after = rl.check("1.2.3.4")
    assert allowed is False
    assert retry_after == 61


def test_keys_are_independent():
    rl = RateLimiter(window_seconds=60, max_requests=1, clock=FakeClock())
    assert rl.check("a") == (True, None)
    assert rl.check("b") == (True, None)
    assert rl.check("a")[0] is False


def test_window_slides():
    clock = FakeClock()
    rl = RateLimiter(window_seconds=60, max_requests=2, clock=clock)
    rl.check("k")
    clock.now += 30
    rl.check("k")
    assert rl.check("k")[0] is False

    clock.now += 31  # first hit left the window
    assert rl.check("k") == (True, None)
    allowed, retry_after = rl.check("k")
    assert allowed is False
    assert retry_after == 30


def test_blocked_requests_are_not_counted():
    clock = FakeClock()
    rl = RateLimiter(window_seconds=10, max_requests=1, clock=clock)
    rl.check("k")
    for _ in range(5):
        rl.check("k")
    clock.now += 11
    assert rl.check("k")[0] is True


def test_reset_clears_state():
    rl = RateLimiter(window_seconds=60, max_requests=1, clock=FakeClock())
    rl.check("k")
    rl.reset()
    assert len(rl) == 0
    assert rl.check("k")[0] is True


def test_idle_keys_are_swept_after_window():
    clock = FakeClock(now=0.0)
    rl = RateLimiter(window_seconds=1, max_requests=5, clock=clock)
    for i in range(1000):
        rl.check(f"10.0.{i // 256}.{i % 256}")
    assert len(rl) == 1000

    clock.now = 10000.0
    assert rl.check("192.168.1.1") == (True, None)
    assert len(rl) == 1


def test_sweep_keeps_keys_still_in_window():
    clock = FakeClock(now=0.0)
    rl = RateLimiter(window_seconds=60, max_requests=2, clock=clock)
    rl.check("old")
    clock.now = 50.0
    rl.check("recent")
    rl.check("recent")

    clock.now = 70.0
    assert rl.check("new") == (True, None)
    assert len(rl) == 2
    assert rl.check("recent")[0] is False


def test_concurrent_hits_never_exceed_cap():
    rl = RateLimiter(window_seconds=60, max_requests=50, clock=FakeClock())
    results = []
    lock = threading.Lock()

    def hammer():
        for _ in range(20):
            ok, _ = rl.check("shared")
            with lock:
                results.append(ok)

    threads = [threading.Thread(target=hammer) for _ in range(5)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(True) == 50


def test_from_settings(tmp_path):
    s = make_settings(tmp_path, rate_limit_window_seconds=30, rate_limit_max_requests=7)
    rl = RateLimiter.from_settings(s)
    assert (rl.window_seconds, rl.max_requests) == (30, 7)
