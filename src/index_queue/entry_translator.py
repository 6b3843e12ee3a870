"""Conversion between QueueEntry rows and QueueEntryRecord snapshots."""

from .models import QueueEntry
from .schemas import QueueEntryRecord


def db_entry_to_record(db_entry: QueueEntry) -> QueueEntryRecord:
    """Convert SQLAlchemy QueueEntry to Pydantic QueueEntryRecord.

    Returns:
        Pydantic QueueEntryRecord detached from the session
    """
    return QueueEntryRecord(
        id=db_entry.id,
        record_class_name=db_entry.record_class_name,
        record_id=db_entry.record_id,
        is_delete=db_entry.is_delete,
        run_at=db_entry.run_at,
        priority=db_entry.priority,
        lock=db_entry.lock,
        error=db_entry.error,
        attempts=db_entry.attempts,
        queue_position=db_entry.queue_position,
    )
