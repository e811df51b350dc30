"""
Fixed-window Rate Limiter.

The default counter store is an in-process dict: every worker process keeps
its own counts and restarts forget them. It is a defense-in-depth layer, not
the only protection. Swap in a shared store (e.g. Redis INCR + EXPIRE) by
implementing ``CounterStore.increment``.
"""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol, Tuple

from fastapi import Request

from storefront.utils.errors import RateLimitedError


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float  # epoch seconds


class CounterStore(Protocol):
    def increment(self, key: str, window_seconds: int) -> Tuple[int, float]:
        """Atomically bump the counter for ``key``; return (count, reset_at)."""
        ...


class InMemoryCounterStore:
    """Per-process counters: {key: (count, reset_at)}."""

    def __init__(self, clock: Callable[[], float] = time.time, sweep_interval: Optional[float] = 300):
        self._clock = clock
        self._entries: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._sweep_interval = sweep_interval
        self._sweeper: Optional[threading.Timer] = None

    def increment(self, key: str, window_seconds: int) -> Tuple[int, float]:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry[1] <= now:
                # New window, created lazily on first hit past expiry
                entry = (1, now + window_seconds)
            else:
                entry = (entry[0] + 1, entry[1])
            self._entries[key] = entry
        self._ensure_sweeper()
        return entry

    def sweep(self) -> int:
        """Drop expired windows. Returns the number removed."""
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, reset_at) in self._entries.items() if reset_at <= now]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def _ensure_sweeper(self) -> None:
        if not self._sweep_interval or (self._sweeper and self._sweeper.is_alive()):
            return
        self._sweeper = threading.Timer(self._sweep_interval, self._sweep_and_reschedule)
        # Daemon: never keeps the interpreter alive on its own
        self._sweeper.daemon = True
        self._sweeper.start()

    def _sweep_and_reschedule(self) -> None:
        self.sweep()
        self._sweeper = None
        if self._entries:
            self._ensure_sweeper()


class RateLimiter:
    """check(key, max_requests, window_seconds) -> RateLimitResult."""

    def __init__(self, store: Optional[CounterStore] = None, clock: Callable[[], float] = time.time):
        self.store = store or InMemoryCounterStore(clock=clock)
        self._clock = clock

    def check(self, key: str, max_requests: int, window_seconds: int) -> RateLimitResult:
        count, reset_at = self.store.increment(key, window_seconds)
        if count > max_requests:
            return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
        return RateLimitResult(allowed=True, remaining=max_requests - count, reset_at=reset_at)

    def retry_after(self, result: RateLimitResult) -> int:
        return int(max(1, result.reset_at - self._clock() + 0.999))


# Pre-configured limits: (max_requests, window_seconds)
RATE_LIMITS = {
    "payment-create": (10, 15 * 60),
    "payment-verify": (15, 15 * 60),
    "payment-cancel": (10, 60),
    "webhook": (200, 60),
    "pincode": (30, 60),
    "coupon": (30, 60),
    "orders-create": (10, 15 * 60),
}

_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter (lazily built so the sweep interval follows settings)."""
    global _limiter
    if _limiter is None:
        from storefront.config import get_settings
        store = InMemoryCounterStore(sweep_interval=get_settings().RATE_LIMIT_SWEEP_SECONDS)
        _limiter = RateLimiter(store)
    return _limiter


def set_rate_limiter(limiter: Optional[RateLimiter]) -> None:
    global _limiter
    _limiter = limiter


def get_client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def enforce(key: str, scope: str) -> RateLimitResult:
    """Raise RateLimitedError when ``key`` is over the ``scope`` limit."""
    max_requests, window = RATE_LIMITS[scope]
    limiter = get_rate_limiter()
    result = limiter.check(key, max_requests, window)
    if not result.allowed:
        raise RateLimitedError(retry_after=limiter.retry_after(result))
    return result


def rate_limit(scope: str):
    """
    Dependency for per-IP rate limiting.
    Example: Depends(rate_limit("pincode"))
    """
    def limiter(request: Request):
        ip = get_client_ip(request)
        enforce(f"{scope}:{ip}", scope)
        return True

    return limiter
