"""Bulk operation domain types."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

BulkKind = Literal["PUBLISH", "UNPUBLISH", "DELETE", "UPDATE_METADATA"]
TargetType = Literal["POST", "PAGE"]
BulkStatus = Literal["PENDING", "PROCESSING", "COMPLETED", "FAILED", "CANCELLED"]

BULK_KINDS: tuple[str, ...] = ("PUBLISH", "UNPUBLISH", "DELETE", "UPDATE_METADATA")
TARGET_TYPES: tuple[str, ...] = ("POST", "PAGE")
TERMINAL_STATUSES = frozenset({"COMPLETED", "FAILED", "CANCELLED"})


class BulkItemError(BaseModel):
    target_id: int | None = None  # None for an operation-level failure
    message: str


class BulkOperation(BaseModel):
    id: str
    owner: str
    site_id: str
    kind: BulkKind
    target_type: TargetType = "POST"
    target_ids: list[int]
    payload: dict[str, Any] | None = None
    status: BulkStatus = "PENDING"
    total_items: int
    processed_items: int = 0
    success_count: int = 0
    failure_count: int = 0
    errors: list[BulkItemError] = Field(default_factory=list)
    cancel_requested: bool = False
    created_at: str = ""
    started_at: str | None = None
    completed_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
