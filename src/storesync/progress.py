"""
Progress reporting and cooperative cancellation for long-running operations.

Every backup and restore operation accepts an optional progress callback
invoked as ``callback(percent, stage)`` and an optional CancellationToken.
Both default to no-ops so callers that do not care can omit them.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


class OperationCancelledError(Exception):
    """Raised when an operation observes a cancelled token."""

    pass


class CancellationToken:
    """
    Cooperative cancellation flag.

    Operations call raise_if_cancelled() between stages. Cancelling never
    interrupts a step that is already running; it only stops the next one.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Operation cancelled") -> None:
        """Request cancellation."""
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelledError(self.reason or "Operation cancelled")


# Shared token for callers that pass nothing
NEVER_CANCELLED = CancellationToken()


class ProgressReporter:
    """
    Wraps a progress callback and keeps reported percentages monotonic.

    A reporter can hand out scaled sub-reporters so a nested operation that
    reports 0-100 maps onto a slice of the parent range, e.g. the restore
    step of an archive restore occupying 20-95%.

    Example:
        reporter = ProgressReporter(callback)
        reporter.report(20, "Extracting archive...")
        restore_progress = reporter.scaled(20, 95)
        restore_progress(50, "Inserting records...")  # reported as 57
    """

    def __init__(self, callback: ProgressCallback | None = None) -> None:
        self._callback = callback
        self._last = 0

    @property
    def last_percent(self) -> int:
        return self._last

    def report(self, percent: float, stage: str) -> None:
        """Report progress, never going below the last reported value."""
        value = max(self._last, min(100, int(percent)))
        self._last = value
        self._emit(value, stage)

    def fail(self, error: str) -> None:
        """Report a failure. The failure report always carries 0%."""
        self._emit(0, f"Error: {error}")

    def scaled(self, start: int, end: int) -> ProgressCallback:
        """Return a callback mapping 0-100 onto the [start, end] range."""
        span = end - start

        def _callback(percent: int, stage: str) -> None:
            # Nested failure reports are relayed by the parent, not here
            if percent <= 0 and stage.startswith("Error:"):
                return
            self.report(start + span * max(0, min(100, percent)) / 100, stage)

        return _callback

    def _emit(self, percent: int, stage: str) -> None:
        if self._callback is None:
            return
        try:
            self._callback(percent, stage)
        except Exception as e:
            # A broken UI callback must not abort a restore
            logger.warning(f"Progress callback raised: {e}")
