"""Failure bookkeeping for queue entries.

Decides how a failed entry is rescheduled and whether it is discarded. The
policy only mutates the entry in memory; persisting the result is up to the
store.
"""

import traceback

from .config import FailurePolicySettings
from .models import ERROR_MAX_LENGTH, QueueEntry
from .position import PRIORITY_MIN


class FailurePolicy:
    """Attempt counting, linear backoff, demotion and discard decisions.

    Example:
        policy = FailurePolicy(FailurePolicySettings(max_attempts=3))
        policy.apply_failure(entry, error, retry_interval=30, now=now_ms)
        if policy.should_discard(entry):
            ...
    """

    def __init__(self, settings: FailurePolicySettings | None = None):
        self.settings: FailurePolicySettings = settings or FailurePolicySettings()

    @staticmethod
    def format_error(error: BaseException) -> str:
        """Render an exception as ``"<kind>: <message>\\n<trace>"``.

        Args:
            error: Exception raised while processing the entry

        Returns:
            Error text truncated to the column limit
        """
        trace = "".join(traceback.format_tb(error.__traceback__)) if error.__traceback__ else ""
        return f"{type(error).__name__}: {error}\n{trace}"[:ERROR_MAX_LENGTH]

    @staticmethod
    def demote(priority: int) -> int:
        """Lower a priority by one step without leaving the valid domain."""
        return max(priority - 1, PRIORITY_MIN)

    def apply_failure(
        self,
        entry: QueueEntry,
        error: BaseException,
        retry_interval: float | None,
        now: int,
    ) -> None:
        """Update entry state after a failed processing attempt.

        Args:
            entry: Entry being processed
            error: Exception raised while processing
            retry_interval: Base backoff in seconds, multiplied by attempts.
                When None, run_at is left untouched.
            now: Current time in epoch milliseconds
        """
        entry.attempts += 1
        if retry_interval is not None:
            entry.run_at = now + int(retry_interval * 1000) * entry.attempts
        entry.error = self.format_error(error)
        entry.priority = self.demote(entry.priority)
        entry.lock = None

    def too_many_attempts(self, entry: QueueEntry) -> bool:
        return entry.attempts > self.settings.max_attempts

    def is_deadly_error(self, entry: QueueEntry) -> bool:
        error = entry.error or ""
        return any(pattern in error for pattern in self.settings.deadly_errors)

    def is_deletable(self, entry: QueueEntry) -> bool:
        return entry.record_class_name not in self.settings.undeletable_class_names

    def should_discard(self, entry: QueueEntry) -> bool:
        """Whether a failed entry should be removed instead of retried."""
        return (self.too_many_attempts(entry) or self.is_deadly_error(entry)) and self.is_deletable(entry)

    @staticmethod
    def merge_failure(pending: QueueEntry, failed: QueueEntry) -> None:
        """Carry the failure state of a claimed entry over to the pending
        entry of the same record, which replaces it.

        The pending entry keeps its is_delete flag, since it holds the most
        recent request. Priority takes the lower of the two so that failure
        handling never raises it.
        """
        pending.attempts = max(pending.attempts, failed.attempts)
        pending.error = failed.error
        pending.run_at = max(pending.run_at, failed.run_at)
        pending.priority = min(pending.priority, failed.priority)
