import logging
import time
from collections import deque
from threading import Lock
from typing import Optional

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 3600
DEFAULT_THRESHOLDS = {
    "TRACKING_RATE_LIMITED": 10,
    "PAYMENT_INITIATION_FAILED": 3,
    "PAYMENT_FAILED": 5,
    "DOCUMENT_STORE_FAILED": 3,
    "SMS_SEND_FAILED": 5,
    "RATE_LIMIT_BLOCKED": 20,
}


class AuditAlertTracker:
    """Counts watched audit actions and logs an ALERT line at each threshold multiple."""

    def __init__(self, window_seconds: int, thresholds: dict[str, int]) -> None:
        self._window_seconds = window_seconds
        self._thresholds = thresholds
        self._buckets: dict[str, deque[float]] = {}
        self._lock = Lock()

    def record(self, action: str, metadata: Optional[dict] = None) -> bool:
        """Record one occurrence; return True when this occurrence raised an alert."""
        limit = self._thresholds.get(action)
        if not limit:
            return False
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.setdefault(action, deque())
            cutoff = now - self._window_seconds
            while bucket and bucket[0] <= cutoff:
                bucket.popleft()
            bucket.append(now)
            count = len(bucket)
        if count % limit == 0:
            logger.warning(
                "ALERT audit_action=%s count=%s window_seconds=%s metadata=%s",
                action,
                count,
                self._window_seconds,
                metadata or {},
            )
            return True
        return False

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()


alert_tracker = AuditAlertTracker(DEFAULT_WINDOW_SECONDS, DEFAULT_THRESHOLDS)
