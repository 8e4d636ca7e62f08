import pytest

from app.utils.rate_limit import SlidingWindowRateLimiter


@pytest.fixture
def clock(monkeypatch):
    t = {"now": 1000.0}
    monkeypatch.setattr("app.utils.rate_limit.time.monotonic", lambda: t["now"])
    return t


def test_rate_limiter_prunes_stale_buckets_on_interval(clock):
    rl = SlidingWindowRateLimiter(max_buckets=10_000, prune_interval_seconds=1)

    for i in range(200):
        ok, _ = rl.allow(f"ip:{i}", limit=1, window_seconds=60)
        assert ok is True

    # Past window + prune interval, a new key triggers the prune.
    clock["now"] = 1000.0 + 120.0
    ok, _ = rl.allow("ip:new", limit=1, window_seconds=60)
    assert ok is True
    assert len(rl._buckets) == 1

    ok, _ = rl.allow("ip:0", limit=1, window_seconds=60)
    assert ok is True


def test_blocked_call_reports_retry_after(clock):
    rl = SlidingWindowRateLimiter()
    assert rl.allow("stripe:ip:203.0.113.5", limit=2, window_seconds=60) == (True, 0)
    clock["now"] += 10
    assert rl.allow("stripe:ip:203.0.113.5", limit=2, window_seconds=60) == (True, 0)

    ok, retry_after = rl.allow("stripe:ip:203.0.113.5", limit=2, window_seconds=60)
    assert ok is False
    assert retry_after == 51

    clock["now"] += 51
    ok, _ = rl.allow("stripe:ip:203.0.113.5", limit=2, window_seconds=60)
    assert ok is True


def test_disabled_limit_always_allows(clock):
    rl = SlidingWindowRateLimiter()
    for _ in range(5):
        assert rl.allow("k", limit=0, window_seconds=60) == (True, 0)
