"""Persistent priority queue of search index operations."""

# Public API - Configuration
from .config import Config, FailurePolicySettings

# Public API - Database helpers
from .database import create_db_engine, create_session_factory, create_tables, drop_tables
from .entry_store import SQLAlchemyEntryStore
from .exceptions import IndexQueueError, InvalidPriorityError

# Public API - Queue components
from .failure_policy import FailurePolicy
from .position import PRIORITY_MAX, PRIORITY_MIN, encode_queue_position, validate_priority
from .protocols import EntryStore
from .schemas import QueueEntryRecord

__all__ = [
    # Configuration
    "Config",
    "FailurePolicySettings",
    # Database
    "create_db_engine",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    # Queue
    "EntryStore",
    "SQLAlchemyEntryStore",
    "FailurePolicy",
    "encode_queue_position",
    "validate_priority",
    "PRIORITY_MIN",
    "PRIORITY_MAX",
    # Pydantic Models
    "QueueEntryRecord",
    # Errors
    "IndexQueueError",
    "InvalidPriorityError",
]
