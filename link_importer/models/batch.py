"""Pending import batch models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class EntryState(str, Enum):
    """Lifecycle of one pending entry. Transitions only move forward."""

    QUEUED = "queued"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    MERGING = "merging"
    COMMITTED = "committed"
    DUPLICATE = "duplicate"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def rank(self) -> int:
        return STATE_ORDER.index(self) if self in STATE_ORDER else len(STATE_ORDER)


STATE_ORDER = [
    EntryState.QUEUED,
    EntryState.FETCHING,
    EntryState.EXTRACTING,
    EntryState.MERGING,
    EntryState.COMMITTED,
]
TERMINAL_STATES = {EntryState.COMMITTED, EntryState.DUPLICATE, EntryState.FAILED}


class PendingImportEntry(BaseModel):
    """One import request waiting to be resolved."""

    source_text: str
    override_fields: dict[str, str] = Field(default_factory=dict)


class FailedImportEntry(PendingImportEntry):
    """An entry whose pipeline failed, kept until cleared or re-queued."""

    reason: str
    error_kind: Optional[str] = None
    failed_at: Optional[float] = None


class PendingImportBatch(BaseModel):
    """Import requests keyed by slot id."""

    entries: dict[str, PendingImportEntry] = Field(default_factory=dict)
    failed: dict[str, FailedImportEntry] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.entries


class BatchSnapshot(BaseModel):
    """A batch as read from the store, with the version to compare against on write."""

    batch: PendingImportBatch
    version: int
