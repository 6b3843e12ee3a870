"""Index queue database models."""

from .base import Base
from .entry import ERROR_MAX_LENGTH, QueueEntry

__all__ = ["Base", "ERROR_MAX_LENGTH", "QueueEntry"]
