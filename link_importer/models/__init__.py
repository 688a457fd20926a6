"""Data models for the URL import pipeline."""

from link_importer.models.record import (
    PartialRecord,
    FinalRecord,
    ImportOutcome,
    ImportStatus,
    ALREADY_HAVE_URL_MESSAGE,
)
from link_importer.models.batch import (
    EntryState,
    PendingImportEntry,
    FailedImportEntry,
    PendingImportBatch,
    BatchSnapshot,
)

__all__ = [
    "PartialRecord",
    "FinalRecord",
    "ImportOutcome",
    "ImportStatus",
    "ALREADY_HAVE_URL_MESSAGE",
    "EntryState",
    "PendingImportEntry",
    "FailedImportEntry",
    "PendingImportBatch",
    "BatchSnapshot",
]
