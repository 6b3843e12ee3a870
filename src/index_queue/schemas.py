"""
Pydantic schemas for queue entries handed to workers.
"""

from pydantic import BaseModel, Field


class QueueEntryRecord(BaseModel):
    """Detached snapshot of a queue entry."""

    id: int = Field(..., description="Store-assigned entry identifier")
    record_class_name: str = Field(..., description="Logical type of the indexed record")
    record_id: str = Field(..., description="Identifier of the indexed record")
    is_delete: bool = Field(False, description="True for a deletion, False for an update")
    run_at: int = Field(..., description="Earliest claim time in epoch milliseconds")
    priority: int = Field(0, description="Higher runs sooner")
    lock: int | None = Field(None, description="Claim token, None when unclaimed")
    error: str | None = Field(None, description="Last failure message and trace")
    attempts: int = Field(0, ge=0, description="Number of recorded failures")
    queue_position: str = Field(..., description="Derived sort key")

    @property
    def is_claimed(self) -> bool:
        return self.lock is not None
