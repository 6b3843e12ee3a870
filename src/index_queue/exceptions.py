"""Exceptions raised by the index queue."""


class IndexQueueError(Exception):
    """Base class for index queue errors."""


class InvalidPriorityError(IndexQueueError, ValueError):
    """Raised when a priority lies outside the supported domain."""

    def __init__(self, priority: object, minimum: int, maximum: int):
        self.priority: object = priority
        super().__init__(f"Priority must be an integer between {minimum} and {maximum}, got {priority!r}")
