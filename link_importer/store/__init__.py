"""Record store, staging writer and batch change events."""

from link_importer.store.events import BatchChanged, BatchEvents
from link_importer.store.record_store import RecordStore
from link_importer.store.staging import StagingWriter

__all__ = ["BatchChanged", "BatchEvents", "RecordStore", "StagingWriter"]
