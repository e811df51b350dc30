import pytest

from storefront.utils.errors import RateLimitedError
from storefront.utils.rate_limiter import InMemoryCounterStore, RateLimiter, enforce


class FakeClock:
    def __init__(self, now=1_000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryCounterStore(clock=clock, sweep_interval=None), clock=clock)


def test_sixth_call_in_window_is_denied(limiter):
    results = [limiter.check("pincode:1.2.3.4", 5, 60) for _ in range(6)]
    assert [r.allowed for r in results] == [True] * 5 + [False]
    assert [r.remaining for r in results[:5]] == [4, 3, 2, 1, 0]


def test_window_resets_after_reset_at(limiter, clock):
    for _ in range(6):
        last = limiter.check("k", 5, 60)
    assert not last.allowed

    clock.now = last.reset_at + 0.001
    fresh = limiter.check("k", 5, 60)
    assert fresh.allowed
    assert fresh.remaining == 4
    assert fresh.reset_at == pytest.approx(clock.now + 60)


def test_keys_are_independent(limiter):
    for _ in range(5):
        limiter.check("a", 5, 60)
    assert not limiter.check("a", 5, 60).allowed
    assert limiter.check("b", 5, 60).allowed


def test_retry_after_is_at_least_one_second(limiter, clock):
    result = limiter.check("k", 0, 30)
    assert limiter.retry_after(result) == 30
    clock.now = result.reset_at - 0.2
    assert limiter.retry_after(result) == 1


def test_sweep_drops_expired_windows(clock):
    store = InMemoryCounterStore(clock=clock, sweep_interval=None)
    store.increment("old", 10)
    clock.now += 5
    store.increment("new", 60)
    clock.now += 6
    assert store.sweep() == 1
    assert len(store) == 1


def test_background_sweeper_is_a_daemon(clock):
    store = InMemoryCounterStore(clock=clock, sweep_interval=60)
    store.increment("k", 10)
    try:
        assert store._sweeper.daemon
    finally:
        store._sweeper.cancel()


def test_enforce_raises_with_retry_after():
    for _ in range(30):
        enforce("coupon:9.9.9.9", "coupon")
    with pytest.raises(RateLimitedError) as exc:
        enforce("coupon:9.9.9.9", "coupon")
    assert exc.value.status_code == 429
    assert 1 <= exc.value.retry_after <= 60


def test_pincode_endpoint_returns_429_with_retry_after(client, catalog):
    for _ in range(30):
        assert client.get("/api/pincode/check", params={"pincode": "110001"}).status_code == 200
    response = client.get("/api/pincode/check", params={"pincode": "110001"})
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) >= 1
    assert response.json()["error_code"] == "RATE_LIMITED"
