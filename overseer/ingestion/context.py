"""Per-scan execution context: deadline, cancellation and API call count."""

from __future__ import annotations

import threading
import time
from typing import Optional

from overseer.ingestion.errors import ScanCancelledError


class ScanContext:
    """Shared by every request a single scan issues.

    The call counter is guarded by a lock because ownership lookups run on a
    worker pool.
    """

    def __init__(
        self,
        timeout_s: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._deadline = time.monotonic() + timeout_s if timeout_s else None
        self._cancel = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self._api_calls = 0

    @property
    def api_calls(self) -> int:
        with self._lock:
            return self._api_calls

    def record_call(self) -> None:
        with self._lock:
            self._api_calls += 1

    def cancel(self) -> None:
        self._cancel.set()

    def remaining(self) -> Optional[float]:
        if self._deadline is None:
            return None
        return self._deadline - time.monotonic()

    @property
    def cancelled(self) -> bool:
        if self._cancel.is_set():
            return True
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    def check(self) -> None:
        """Raise ScanCancelledError once cancelled or past the deadline."""
        if self._cancel.is_set():
            raise ScanCancelledError("Scan was cancelled")
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            raise ScanCancelledError(
                "Scan deadline exceeded", details={"reason": "deadline"}
            )

    def request_timeout(self, default: float) -> float:
        """Per-request timeout, never past the scan deadline."""
        remaining = self.remaining()
        if remaining is None:
            return default
        return max(min(default, remaining), 0.001)
