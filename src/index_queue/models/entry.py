"""Queue entry model for pending search index operations."""

from typing import override

from sqlalchemy import BigInteger, Boolean, Index, Integer, String, event
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Mapped, Mapper, mapped_column

from ..position import encode_queue_position
from .base import Base

ERROR_MAX_LENGTH = 4000


class QueueEntry(Base):
    """One pending index update or deletion for a single record.

    The table is shared by every worker process. Workers never hold a
    database lock while indexing; ownership of an entry is expressed by the
    ``lock`` column:

    - ``NULL``: unclaimed
    - any integer: random token of the claim that currently owns the entry

    Timestamps are epoch milliseconds. ``queue_position`` is derived from
    ``priority`` and ``run_at`` and refreshed on every ORM flush.
    """

    __tablename__ = "index_queue_entries"  # pyright: ignore[reportUnannotatedClassAttribute]
    __table_args__ = (  # pyright: ignore[reportUnannotatedClassAttribute]
        Index("ix_index_queue_entries_run_at", "run_at", "record_class_name", "priority"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    record_class_name: Mapped[str] = mapped_column(String, nullable=False)
    record_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    is_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    run_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    lock: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error: Mapped[str | None] = mapped_column(String(ERROR_MAX_LENGTH), nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    queue_position: Mapped[str] = mapped_column(String, nullable=False, index=True)

    @property
    def is_claimed(self) -> bool:
        return self.lock is not None

    @override
    def __repr__(self) -> str:
        return (
            f"<QueueEntry(id={self.id}, record_class_name={self.record_class_name}, "
            f"record_id={self.record_id}, is_delete={self.is_delete}, priority={self.priority}, "
            f"attempts={self.attempts}, lock={self.lock})>"
        )


# At most one unclaimed entry per record
_ = Index(
    "ux_index_queue_entries_unclaimed",
    QueueEntry.record_class_name,
    QueueEntry.record_id,
    unique=True,
    sqlite_where=QueueEntry.lock.is_(None),
    postgresql_where=QueueEntry.lock.is_(None),
)


@event.listens_for(QueueEntry, "before_insert")
@event.listens_for(QueueEntry, "before_update")
def _set_queue_position(_mapper: Mapper[QueueEntry], _connection: Connection, target: QueueEntry) -> None:
    target.queue_position = encode_queue_position(target.priority, target.run_at)
