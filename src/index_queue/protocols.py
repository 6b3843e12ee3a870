"""Protocol implemented by index queue entry stores.

The worker loop depends on this protocol only, so alternative stores can be
swapped in without touching the loop.
"""

from collections.abc import Iterable, Sequence
from typing import Protocol, runtime_checkable

from .schemas import QueueEntryRecord


@runtime_checkable
class EntryStore(Protocol):
    """Durable table of queue entries shared by competing workers."""

    def enqueue(
        self,
        class_name: str,
        record_id: int | str,
        is_delete: bool = False,
        priority: int = 0,
    ) -> bool:
        """Add or merge the pending entry for a record."""
        ...

    def total_count(self, class_names: Sequence[str] | None = None) -> int:
        """Count all entries."""
        ...

    def ready_count(self, class_names: Sequence[str] | None = None) -> int:
        """Count entries that can be claimed now."""
        ...

    def error_count(self, class_names: Sequence[str] | None = None) -> int:
        """Count entries carrying an error."""
        ...

    def errors(
        self,
        class_names: Sequence[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[QueueEntryRecord]:
        """List entries carrying an error, ordered by id."""
        ...

    def reset_all(self, class_names: Sequence[str] | None = None) -> int:
        """Make every matching entry ready again."""
        ...

    def delete_entries(self, ids: Iterable[int]) -> int:
        """Remove entries by id."""
        ...

    def claim_batch(
        self,
        class_names: Sequence[str] | None,
        batch_size: int,
        retry_interval: float,
        now: int | None = None,
    ) -> list[QueueEntryRecord]:
        """Claim up to batch_size ready entries for the caller."""
        ...

    def record_failure(
        self,
        entry: QueueEntryRecord,
        error: BaseException,
        retry_interval: float | None = None,
    ) -> None:
        """Record a processing failure for a claimed entry."""
        ...

    def reset(self, entry: QueueEntryRecord) -> None:
        """Make a single entry ready again."""
        ...
