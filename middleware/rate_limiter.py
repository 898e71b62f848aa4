"""
Per-client admission control for inbound telemetry.

Each client identity owns a token bucket that refills continuously at a
fixed rate up to a burst capacity; a report is admitted only if a token
can be taken. Buckets live in an in-process store and are evicted by a
background sweep once their client has been idle long enough.
"""

import asyncio
import logging
import math
import threading
import time
from typing import Callable, Dict, Optional

from fastapi import Request
from slowapi.util import get_remote_address

logger = logging.getLogger(__name__)

# Source address recorded for reports delivered through the MQTT broker
MQTT_CLIENT_IDENTITY = "MQTT"

# Absorbs rounding in the accumulated refill, e.g. 0.05 * 10 twice
TOKEN_EPSILON = 1e-9


def mqtt_admission_identity(topic: str) -> str:
    """
    Admission identity for a broker message.

    Buckets are kept per topic, so devices publishing on their own topic
    are throttled independently; devices sharing a topic share a bucket.
    """
    return f"{MQTT_CLIENT_IDENTITY}:{topic}" if topic else MQTT_CLIENT_IDENTITY


def get_client_ip(request: Request) -> str:
    """
    Extract the client IP address from the request.

    Forwarding headers set by proxies take precedence over the socket
    peer address.

    Args:
        request: The incoming FastAPI request

    Returns:
        The client's IP address as a string
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # First entry is the original client
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


class TokenBucket:
    """
    A token bucket for one client identity.

    Tokens are refilled lazily on each consumption attempt from the time
    elapsed since the previous one. Consumption is serialized by a lock
    owned by the bucket.
    """

    def __init__(self, rate: float, capacity: int, now: float):
        self.rate = rate
        self.capacity = capacity
        self.tokens = float(capacity)
        self.updated_at = now
        self.last_seen = now
        self._lock = threading.Lock()

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.rate)
        self.updated_at = now

    def try_consume(self, now: float) -> bool:
        with self._lock:
            self._refill(now)
            if self.tokens >= 1.0 - TOKEN_EPSILON:
                self.tokens = max(0.0, self.tokens - 1.0)
                return True
            return False

    def seconds_until_token(self, now: float) -> float:
        with self._lock:
            self._refill(now)
            missing = 1.0 - self.tokens
            if missing <= TOKEN_EPSILON:
                return 0.0
            return missing / self.rate


class BucketStore:
    """
    Table of token buckets keyed by client identity.

    Lookup, insertion and eviction all happen under one table lock, so a
    bucket whose last activity was just refreshed is never evicted by a
    concurrent sweep.
    """

    def __init__(self):
        self._buckets: Dict[str, TokenBucket] = {}
        self._lock = threading.Lock()

    def touch(self, identity: str, factory: Callable[[], TokenBucket], now: float) -> TokenBucket:
        """Return the bucket for identity, creating it if needed, and mark it active."""
        with self._lock:
            bucket = self._buckets.get(identity)
            if bucket is None:
                bucket = factory()
                self._buckets[identity] = bucket
            bucket.last_seen = now
            return bucket

    def get(self, identity: str) -> Optional[TokenBucket]:
        with self._lock:
            return self._buckets.get(identity)

    def evict_idle(self, max_idle: float, now: float) -> int:
        """
        Remove buckets idle for longer than max_idle seconds.

        Returns:
            Number of buckets removed
        """
        with self._lock:
            stale = [
                identity for identity, bucket in self._buckets.items()
                if now - bucket.last_seen > max_idle
            ]
            for identity in stale:
                del self._buckets[identity]
            return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def __contains__(self, identity: str) -> bool:
        with self._lock:
            return identity in self._buckets


class AdmissionController:
    """
    Token-bucket admission control keyed by client identity.

    Attributes:
        rate: Tokens refilled per second
        burst: Bucket capacity
        store: Bucket table, shared by every caller of this controller
        request_delay: Seconds to pause after each admitted request
        sweep_interval: Seconds between idle-bucket sweeps
        idle_multiplier: Buckets idle longer than this many sweep
            intervals are evicted
    """

    def __init__(
        self,
        rate: float,
        burst: int,
        store: Optional[BucketStore] = None,
        request_delay: float = 0.0,
        sweep_interval: float = 60.0,
        idle_multiplier: int = 3,
        clock: Callable[[], float] = time.monotonic
    ):
        if rate <= 0:
            raise ValueError("rate must be positive")
        if burst < 1:
            raise ValueError("burst must be at least 1")

        self.rate = rate
        self.burst = burst
        self.store = store if store is not None else BucketStore()
        self.request_delay = request_delay
        self.sweep_interval = sweep_interval
        self.idle_multiplier = idle_multiplier
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def max_idle(self) -> float:
        return self.sweep_interval * self.idle_multiplier

    def try_admit(self, identity: str) -> bool:
        """Take one token from the identity's bucket without any delay."""
        now = self._clock()
        bucket = self.store.touch(
            identity,
            lambda: TokenBucket(self.rate, self.burst, now),
            now
        )
        return bucket.try_consume(now)

    async def admit(self, identity: str) -> bool:
        """
        Decide whether a request from identity may proceed.

        Admitted requests are paced by request_delay before returning.

        Args:
            identity: Client IP address, or the shared MQTT identity

        Returns:
            True if admitted, False if the client is over its rate
        """
        allowed = self.try_admit(identity)
        if not allowed:
            logger.warning(
                f"Rate limit exceeded for client {identity}",
                extra={"extra_data": {"client": identity}}
            )
            return False

        if self.request_delay > 0:
            await asyncio.sleep(self.request_delay)
        return True

    def retry_after(self, identity: str) -> int:
        """Whole seconds until identity can be admitted again, at least 1."""
        bucket = self.store.get(identity)
        if bucket is None:
            return 1
        return max(1, math.ceil(bucket.seconds_until_token(self._clock())))

    def sweep_idle(self) -> int:
        """Evict buckets idle for longer than max_idle. Returns the count."""
        removed = self.store.evict_idle(self.max_idle, self._clock())
        if removed:
            logger.debug(
                f"Evicted {removed} idle rate limit buckets",
                extra={"extra_data": {"evicted": removed, "remaining": len(self.store)}}
            )
        return removed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep_idle()

    def start(self) -> None:
        """Start the idle sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Cancel the idle sweep and wait for it to finish."""
        task = self._sweep_task
        self._sweep_task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()


def create_admission_controller(settings) -> AdmissionController:
    """Build an AdmissionController from application settings."""
    controller = AdmissionController(
        rate=settings.rate_limit_rps,
        burst=settings.rate_limit_burst,
        request_delay=settings.request_delay,
        sweep_interval=settings.rate_limit_sweep_interval_seconds,
        idle_multiplier=settings.rate_limit_idle_multiplier,
    )
    logger.info(
        f"Rate limiting configured: {settings.rate_limit_rps}/s, burst {settings.rate_limit_burst}"
    )
    return controller
