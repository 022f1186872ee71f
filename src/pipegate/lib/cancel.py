"""cancel — run-scoped cooperative cancellation.

A single ``CancelToken`` is shared by the whole run.  It trips either when
``cancel()`` is called (e.g. from a signal handler) or when an optional
deadline passes.  Workers check it before starting a document, and the
tool adapter uses ``remaining()`` to cap each subprocess timeout so an
in-flight external call never outlives the run.
"""

from __future__ import annotations

import threading
import time
from typing import Optional


class CancelToken:
    """Cooperative cancellation signal with an optional deadline."""

    def __init__(self, deadline_seconds: Optional[float] = None) -> None:
        self._event = threading.Event()
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )

    def cancel(self) -> None:
        """Trip the token."""
        self._event.set()

    @property
    def cancelled(self) -> bool:
        """True once cancelled or past the deadline."""
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

    def remaining(self, cap: float) -> float:
        """Return the time left, bounded by ``cap`` (0 when cancelled)."""
        if self.cancelled:
            return 0.0
        if self._deadline is None:
            return cap
        return max(0.0, min(cap, self._deadline - time.monotonic()))
