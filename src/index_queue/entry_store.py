"""SQLAlchemy implementation of the EntryStore protocol.

This module holds the durable side of the index queue:

- Upsert-style enqueue that merges into the pending entry of a record
- Aggregate counts and error listing, optionally scoped by record class
- Batch claiming with random tokens instead of database locks
- Failure bookkeeping delegated to FailurePolicy
"""

import logging
import secrets
import time
from collections.abc import Callable, Iterable, Sequence
from typing import Any, override

from sqlalchemy import ColumnElement, Row, case, delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .entry_translator import db_entry_to_record
from .failure_policy import FailurePolicy
from .models import QueueEntry
from .position import encode_queue_position, validate_priority
from .protocols import EntryStore
from .schemas import QueueEntryRecord

logger = logging.getLogger(__name__)

# Upper bound (exclusive) for claim tokens
MAX_CLAIM_TOKEN = 0x7FFFFFFF


def _now_ms() -> int:
    return int(time.time() * 1000)


def _ready_clause(now: int) -> ColumnElement[bool]:
    """Entries that may be claimed at ``now``.

    Matches unclaimed entries that are due and also claimed entries whose
    claim window has lapsed. A claim defers run_at by the retry interval, so
    the lock column is not part of the predicate.
    """
    return QueueEntry.run_at <= now


def _error_clause() -> ColumnElement[bool]:
    return QueueEntry.error.is_not(None) & (QueueEntry.error != "")


def _check_retry_interval(retry_interval: float) -> None:
    # A claim must push run_at past now, otherwise the ready guard still
    # matches the claimed rows and a competitor can take them over
    if int(retry_interval * 1000) <= 0:
        raise ValueError(f"retry_interval must be at least one millisecond, got {retry_interval!r}")


def _position_case(priorities: Iterable[int], run_at: int) -> Any:
    """CASE expression giving the queue position of each priority at run_at."""
    positions = {priority: encode_queue_position(priority, run_at) for priority in priorities}
    if not positions:
        return QueueEntry.queue_position
    return case(positions, value=QueueEntry.priority, else_=QueueEntry.queue_position)


class SQLAlchemyEntryStore(EntryStore):
    """SQLAlchemy implementation of EntryStore protocol.

    Every worker process owns its own store instance; the table is the only
    shared state. Claiming works without a cross-process lock:

    1. Select the ids of ready entries in queue position order
    2. Mark them with a random token and push run_at past the retry interval,
       only where they are still ready
    3. Re-fetch the rows carrying the token

    Example:
        session_factory = create_session_factory(engine)
        store = SQLAlchemyEntryStore(session_factory)

        store.enqueue("Widget", 1, priority=5)

        batch = store.claim_batch(["Widget"], batch_size=10, retry_interval=60)
        for entry in batch:
            try:
                index(entry)
            except Exception as e:
                store.record_failure(entry, e, retry_interval=60)
        store.delete_entries([entry.id for entry in batch])
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy: FailurePolicy | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """Initialize store with session factory and failure policy.

        Args:
            session_factory: SQLAlchemy session factory (sessionmaker)
            policy: Failure policy, defaults to FailurePolicy()
            clock: Returns the current time in epoch milliseconds
        """
        self.session_factory: sessionmaker[Session] = session_factory
        self.policy: FailurePolicy = policy or FailurePolicy()
        self.clock: Callable[[], int] = clock or _now_ms

    @staticmethod
    def _scoped(stmt: Any, class_names: Sequence[str] | None) -> Any:
        if class_names:
            stmt = stmt.where(QueueEntry.record_class_name.in_(list(class_names)))
        return stmt

    @staticmethod
    def _find_pending(session: Session, class_name: str, record_id: str) -> Row[tuple[int, int]] | None:
        """Find id and priority of the unclaimed entry for a record."""
        stmt = (
            select(QueueEntry.id, QueueEntry.priority)
            .where(
                QueueEntry.record_class_name == class_name,
                QueueEntry.record_id == record_id,
                QueueEntry.lock.is_(None),
            )
            .limit(1)
        )
        return session.execute(stmt).first()

    def _count(self, class_names: Sequence[str] | None, *criteria: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(QueueEntry)
        if criteria:
            stmt = stmt.where(*criteria)
        stmt = self._scoped(stmt, class_names)
        with self.session_factory() as session:
            return session.execute(stmt).scalar_one()

    # -------------------------------------------------------------------------
    # Enqueue
    # -------------------------------------------------------------------------

    @override
    def enqueue(
        self,
        class_name: str,
        record_id: int | str,
        is_delete: bool = False,
        priority: int = 0,
    ) -> bool:
        """Add a record to the queue, merging into its pending entry.

        If an unclaimed entry exists for the record, its priority is raised to
        the requested one (never lowered), run_at is refreshed and is_delete
        overwritten. Otherwise a new entry is inserted.

        Args:
            class_name: Logical type of the record
            record_id: Identifier of the record
            is_delete: True to remove the record from the index
            priority: Requested priority, higher runs sooner

        Returns:
            True if the entry was stored, False if a concurrent enqueue of the
            same record won the race

        Raises:
            InvalidPriorityError: If priority is outside the supported domain
        """
        _ = validate_priority(priority)
        record_id = str(record_id)
        now = self.clock()

        with self.session_factory() as session:
            pending = self._find_pending(session, class_name, record_id)

            if pending is not None:
                merged_priority = max(pending.priority, priority)
                # Only merge while the entry is still unclaimed
                stmt = (
                    update(QueueEntry)
                    .where(QueueEntry.id == pending.id, QueueEntry.lock.is_(None))
                    .values(
                        priority=merged_priority,
                        is_delete=is_delete,
                        run_at=now,
                        queue_position=encode_queue_position(merged_priority, now),
                    )
                    .returning(QueueEntry.id)
                    .execution_options(synchronize_session=False)
                )
                merged_id: int | None = session.execute(stmt).scalar_one_or_none()
                session.commit()
                if merged_id is not None:
                    return True

                # Claimed in the meantime: the worker holding it may already
                # have read the record, so queue a fresh entry
                logger.info(f"Pending entry {pending.id} was claimed during enqueue, adding a new one")

            session.add(
                QueueEntry(
                    record_class_name=class_name,
                    record_id=record_id,
                    is_delete=is_delete,
                    run_at=now,
                    priority=priority,
                    attempts=0,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info(f"Concurrent enqueue of {class_name} {record_id} already queued it")
                return False

            return True

    # -------------------------------------------------------------------------
    # Counts and queries
    # -------------------------------------------------------------------------

    @override
    def total_count(self, class_names: Sequence[str] | None = None) -> int:
        """Count all entries.

        Args:
            class_names: Restrict to these record classes, all when empty

        Returns:
            Number of entries
        """
        return self._count(class_names)

    @override
    def ready_count(self, class_names: Sequence[str] | None = None) -> int:
        """Count entries that can be claimed now, including lapsed claims."""
        return self._count(class_names, _ready_clause(self.clock()))

    @override
    def error_count(self, class_names: Sequence[str] | None = None) -> int:
        """Count entries whose last processing attempt failed."""
        return self._count(class_names, _error_clause())

    @override
    def errors(
        self,
        class_names: Sequence[str] | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[QueueEntryRecord]:
        """List entries whose last processing attempt failed.

        Args:
            class_names: Restrict to these record classes, all when empty
            limit: Maximum number of entries to return
            offset: Number of entries to skip

        Returns:
            Entries ordered by id ascending
        """
        stmt = self._scoped(select(QueueEntry).where(_error_clause()), class_names)
        stmt = stmt.order_by(QueueEntry.id).limit(limit).offset(offset)

        with self.session_factory() as session:
            return [db_entry_to_record(db_entry) for db_entry in session.execute(stmt).scalars()]

    # -------------------------------------------------------------------------
    # Bulk maintenance
    # -------------------------------------------------------------------------

    @override
    def reset_all(self, class_names: Sequence[str] | None = None) -> int:
        """Make every matching entry ready again.

        Clears attempts, error and lock and sets run_at to now. A record that
        has a claimed entry next to its pending one keeps only one of them: the
        pending entry, or the most recent claimed one. The survivor takes the
        highest priority of the record's entries and the is_delete flag of the
        most recent request.

        Args:
            class_names: Restrict to these record classes, all when empty

        Returns:
            Number of entries reset
        """
        now = self.clock()

        with self.session_factory() as session:
            stmt = self._scoped(
                select(
                    QueueEntry.id,
                    QueueEntry.record_class_name,
                    QueueEntry.record_id,
                    QueueEntry.lock,
                    QueueEntry.priority,
                    QueueEntry.is_delete,
                ),
                class_names,
            ).order_by(QueueEntry.id)
            rows = session.execute(stmt).all()
            if not rows:
                return 0

            groups: dict[tuple[str, str], list[Any]] = {}
            for row in rows:
                groups.setdefault((row.record_class_name, row.record_id), []).append(row)

            superseded: list[int] = []
            priorities: set[int] = set()
            for group in groups.values():
                # Rows are in id order, so the last one is the newest request
                pending = [row for row in group if row.lock is None]
                survivor = pending[0] if pending else group[-1]
                priority = max(row.priority for row in group)
                priorities.add(priority)
                if len(group) == 1:
                    continue

                superseded.extend(row.id for row in group if row.id != survivor.id)
                _ = session.execute(
                    update(QueueEntry)
                    .where(QueueEntry.id == survivor.id)
                    .values(priority=priority, is_delete=group[-1].is_delete)
                    .execution_options(synchronize_session=False)
                )

            if superseded:
                logger.info(f"Dropping {len(superseded)} claimed duplicate entries before reset")
                _ = session.execute(
                    delete(QueueEntry)
                    .where(QueueEntry.id.in_(superseded))
                    .execution_options(synchronize_session=False)
                )

            dropped = set(superseded)
            survivor_ids = [row.id for row in rows if row.id not in dropped]
            stmt = (
                update(QueueEntry)
                .where(QueueEntry.id.in_(survivor_ids))
                .values(
                    run_at=now,
                    attempts=0,
                    error=None,
                    lock=None,
                    queue_position=_position_case(priorities, now),
                )
                .execution_options(synchronize_session=False)
            )
            reset_count = session.execute(stmt).rowcount
            session.commit()

        logger.info(f"Reset {reset_count} queue entries")
        return reset_count

    @override
    def delete_entries(self, ids: Iterable[int]) -> int:
        """Remove entries by id. Unknown ids are ignored.

        Returns:
            Number of entries deleted
        """
        ids = list(ids)
        if not ids:
            return 0

        with self.session_factory() as session:
            stmt = (
                delete(QueueEntry)
                .where(QueueEntry.id.in_(ids))
                .execution_options(synchronize_session=False)
            )
            deleted = session.execute(stmt).rowcount
            session.commit()
            return deleted

    # -------------------------------------------------------------------------
    # Claiming
    # -------------------------------------------------------------------------

    def select_candidates(
        self,
        class_names: Sequence[str] | None,
        batch_size: int,
        now: int,
    ) -> list[int]:
        """Select ids of entries ready at ``now``, in queue position order.

        Args:
            class_names: Restrict to these record classes, all when empty
            batch_size: Maximum number of ids to return
            now: Current time in epoch milliseconds

        Returns:
            Candidate ids, highest priority and oldest first
        """
        if batch_size <= 0:
            return []

        stmt = self._scoped(select(QueueEntry.id).where(_ready_clause(now)), class_names)
        stmt = stmt.order_by(QueueEntry.queue_position, QueueEntry.id).limit(batch_size)

        with self.session_factory() as session:
            return list(session.execute(stmt).scalars())

    def lock_entries(
        self,
        ids: Sequence[int],
        token: int,
        now: int,
        retry_interval: float,
    ) -> int:
        """Mark candidate entries as claimed by ``token``.

        The update matches the given ids only while they are still ready, so
        rows claimed by a competing worker since selection are left alone.
        Moving run_at forward keeps the entries out of later selections until
        the retry interval has passed; a crashed worker's claim expires then.

        Args:
            ids: Candidate ids from select_candidates
            token: Random claim token
            now: Time used for selection, in epoch milliseconds
            retry_interval: Claim window in seconds

        Returns:
            Number of entries claimed, possibly zero

        Raises:
            ValueError: If retry_interval is shorter than one millisecond
        """
        _check_retry_interval(retry_interval)
        if not ids:
            return 0

        run_at = now + int(retry_interval * 1000)

        with self.session_factory() as session:
            stmt = (
                update(QueueEntry)
                .where(QueueEntry.id.in_(ids), _ready_clause(now))
                .values(run_at=run_at, lock=token, error=None)
                .execution_options(synchronize_session=False)
            )
            claimed = session.execute(stmt).rowcount

            if claimed:
                # Claimed rows are no longer merge targets for enqueue, so
                # their priorities are stable from here on
                owned = (QueueEntry.id.in_(ids), QueueEntry.lock == token)
                priorities = session.execute(
                    select(QueueEntry.priority).where(*owned).distinct()
                ).scalars().all()
                _ = session.execute(
                    update(QueueEntry)
                    .where(*owned)
                    .values(queue_position=_position_case(priorities, run_at))
                    .execution_options(synchronize_session=False)
                )

            session.commit()
            return claimed

    def fetch_locked(self, ids: Sequence[int], token: int) -> list[QueueEntryRecord]:
        """Fetch the entries among ``ids`` that carry ``token``.

        Returns:
            Owned entries in the order of ``ids``
        """
        if not ids:
            return []

        order = {entry_id: index for index, entry_id in enumerate(ids)}
        stmt = select(QueueEntry).where(QueueEntry.id.in_(ids), QueueEntry.lock == token)

        with self.session_factory() as session:
            records = [db_entry_to_record(db_entry) for db_entry in session.execute(stmt).scalars()]

        return sorted(records, key=lambda record: order[record.id])

    @override
    def claim_batch(
        self,
        class_names: Sequence[str] | None,
        batch_size: int,
        retry_interval: float,
        now: int | None = None,
    ) -> list[QueueEntryRecord]:
        """Claim up to ``batch_size`` ready entries for the caller.

        Never blocks on other workers: when a competitor claims some of the
        selected entries first, the returned batch is simply smaller.

        Args:
            class_names: Restrict to these record classes, all when empty
            batch_size: Maximum number of entries to claim
            retry_interval: Claim window in seconds
            now: Current time in epoch milliseconds, defaults to the store clock

        Returns:
            Entries owned by the caller, in queue position order

        Raises:
            ValueError: If retry_interval is shorter than one millisecond
        """
        _check_retry_interval(retry_interval)
        now = self.clock() if now is None else now

        ids = self.select_candidates(class_names, batch_size, now)
        if not ids:
            return []

        token = secrets.randbelow(MAX_CLAIM_TOKEN)
        claimed = self.lock_entries(ids, token, now, retry_interval)
        if claimed < len(ids):
            logger.info(f"Claimed {claimed} of {len(ids)} selected entries, the rest went to other workers")

        return self.fetch_locked(ids, token)

    # -------------------------------------------------------------------------
    # Failure bookkeeping
    # -------------------------------------------------------------------------

    @staticmethod
    def _pending_sibling(session: Session, db_entry: QueueEntry) -> QueueEntry | None:
        """Find the unclaimed entry queued for the same record while db_entry was claimed."""
        stmt = select(QueueEntry).where(
            QueueEntry.record_class_name == db_entry.record_class_name,
            QueueEntry.record_id == db_entry.record_id,
            QueueEntry.id != db_entry.id,
            QueueEntry.lock.is_(None),
        )
        return session.execute(stmt).scalars().first()

    @staticmethod
    def _owned_by_other(db_entry: QueueEntry, entry: QueueEntryRecord) -> bool:
        return db_entry.lock is not None and entry.lock is not None and db_entry.lock != entry.lock

    @override
    def record_failure(
        self,
        entry: QueueEntryRecord,
        error: BaseException,
        retry_interval: float | None = None,
    ) -> None:
        """Record a processing failure and reschedule or discard the entry.

        If the record was enqueued again while the entry was claimed, the
        failure is carried over to that pending entry and the claimed one is
        removed. A claim that lapsed and went to another worker is left to
        that worker.

        Errors while persisting are logged and swallowed so that failure
        bookkeeping never crashes the worker.

        Args:
            entry: Claimed entry that failed
            error: Exception raised while processing
            retry_interval: Base backoff in seconds, multiplied by attempts
        """
        now = self.clock()

        with self.session_factory() as session:
            try:
                db_entry = session.get(QueueEntry, entry.id)
                if db_entry is None:
                    logger.warning(f"Queue entry {entry.id} no longer exists, failure not recorded")
                    return
                if self._owned_by_other(db_entry, entry):
                    logger.warning(f"Queue entry {entry.id} was claimed again by another worker, failure not recorded")
                    return

                # Looked up before the entry is modified so that autoflush
                # never writes a second unclaimed row for the record
                pending = self._pending_sibling(session, db_entry)

                self.policy.apply_failure(db_entry, error, retry_interval, now)
                logger.warning(
                    f"Processing {db_entry.record_class_name} {db_entry.record_id} failed "
                    f"(attempt {db_entry.attempts}): {error}"
                )

                failed = db_entry
                if pending is not None:
                    self.policy.merge_failure(pending, db_entry)
                    session.delete(db_entry)
                    failed = pending

                if self.policy.should_discard(failed):
                    logger.warning(f"Discarding {failed!r}")
                    session.delete(failed)

                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.warning(f"Failed to record failure for queue entry {entry.id}: {e}")

    @override
    def reset(self, entry: QueueEntryRecord) -> None:
        """Clear attempts, error and lock of one entry and make it ready now.

        If the record was enqueued again while the entry was claimed, the
        pending entry is reset instead, taking the higher of both priorities,
        and the claimed one is removed.

        Errors while persisting are logged and swallowed.
        """
        now = self.clock()

        with self.session_factory() as session:
            try:
                db_entry = session.get(QueueEntry, entry.id)
                if db_entry is None:
                    logger.warning(f"Queue entry {entry.id} no longer exists, nothing to reset")
                    return

                pending = self._pending_sibling(session, db_entry)
                if pending is not None:
                    pending.priority = max(pending.priority, db_entry.priority)
                    session.delete(db_entry)
                    db_entry = pending

                db_entry.attempts = 0
                db_entry.error = None
                db_entry.lock = None
                db_entry.run_at = now
                session.commit()
            except SQLAlchemyError as e:
                session.rollback()
                logger.warning(f"Failed to reset queue entry {entry.id}: {e}")
