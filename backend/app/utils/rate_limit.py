import ipaddress
import time
from collections import deque
from threading import Lock
from typing import Optional

from fastapi import Request

from app.core.config import get_settings

_MAX_BUCKETS = 50_000
_PRUNE_INTERVAL_SECONDS = 60
_LOOPBACK_PEERS = {"testclient", "127.0.0.1", "::1", "localhost"}


class SlidingWindowRateLimiter:
    """Per-process request throttle for the HTTP surface.

    Public tracking lookups are throttled separately by a persisted record
    (see ``app.services.tracking_service``) so that the block survives restarts
    and is shared across workers.
    """

    def __init__(
        self,
        *,
        max_buckets: int = _MAX_BUCKETS,
        prune_interval_seconds: int = _PRUNE_INTERVAL_SECONDS,
    ) -> None:
        self._buckets: dict[str, deque[float]] = {}
        self._lock = Lock()
        self._max_buckets = max_buckets
        self._prune_interval_seconds = max(1, int(prune_interval_seconds))
        self._last_prune_at = 0.0

    def allow(self, key: str, limit: int, window_seconds: int) -> tuple[bool, int]:
        """Return ``(allowed, retry_after_seconds)``."""
        if limit <= 0 or window_seconds <= 0:
            return True, 0
        now = time.monotonic()
        with self._lock:
            if len(self._buckets) > self._max_buckets or (now - self._last_prune_at) >= self._prune_interval_seconds:
                self._prune_stale(now, window_seconds)
                self._last_prune_at = now

            bucket = self._buckets.setdefault(key, deque())
            cutoff = now - window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            if len(bucket) >= limit:
                retry_after = int(bucket[0] + window_seconds - now) + 1
                return False, max(1, retry_after)
            bucket.append(now)
            return True, 0

    def _prune_stale(self, now: float, window_seconds: int) -> None:
        cutoff = now - window_seconds
        stale_keys = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] <= cutoff]
        for key in stale_keys:
            del self._buckets[key]

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
            self._last_prune_at = 0.0


rate_limiter = SlidingWindowRateLimiter()


def ip_in_allowlist(ip: str, allowlist: list[str]) -> bool:
    if not ip:
        return False
    try:
        ip_obj = ipaddress.ip_address(ip)
    except ValueError:
        return ip in allowlist
    for entry in allowlist:
        if entry == ip:
            return True
        try:
            if ip_obj in ipaddress.ip_network(entry, strict=False):
                return True
        except ValueError:
            continue
    return False


def _is_trusted_proxy_peer(peer_ip: Optional[str], trusted: list[str]) -> bool:
    if not (peer_ip and trusted):
        return False
    # Starlette's TestClient reports a loopback-ish peer.
    if "testclient" in trusted and peer_ip in _LOOPBACK_PEERS:
        return True
    return ip_in_allowlist(peer_ip, trusted)


def get_client_ip(request: Request, trusted_proxy_cidrs: Optional[list[str]] = None) -> Optional[str]:
    """Network address of the caller.

    Forwarded headers are honoured only when the direct peer is a trusted proxy,
    otherwise any caller could pick the address its rate-limit bucket is keyed on.
    """
    peer_ip = request.client.host if request.client else None
    trusted = trusted_proxy_cidrs if trusted_proxy_cidrs is not None else get_settings().trusted_proxy_cidrs

    if _is_trusted_proxy_peer(peer_ip, trusted):
        real_ip = request.headers.get("x-real-ip")
        if real_ip:
            return real_ip.strip()
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            # Rightmost entry was appended by the closest trusted proxy.
            parts = [p.strip() for p in forwarded.split(",") if p.strip()]
            if parts:
                return parts[-1]

    return peer_ip


def get_user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent") if request else None
