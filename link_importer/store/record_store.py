"""Reference record store: URL records plus the pending import batch.

Keeps everything in memory and, when given a path, mirrors it to a JSON file.
Every operation is a coroutine that yields to the event loop, so callers
treat store access as a suspension point the same way a remote store would be.
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from rich.console import Console

from link_importer.errors import DuplicateURLError, InvalidURLError, StaleBatchError, TitleCollisionError
from link_importer.models import BatchSnapshot, PendingImportBatch, PendingImportEntry
from link_importer.normalizers.url import canonicalize
from link_importer.store.events import BatchChanged, BatchEvents

console = Console()

# Give up on a read-modify-write after this many version conflicts
MAX_UPDATE_ATTEMPTS = 20


def timestamp() -> str:
    """UTC timestamp as YYYYMMDDHHMMSSmmm."""
    return datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S%f")[:-3]


def new_slot_id() -> str:
    return uuid.uuid4().hex[:12]


def _canonical_location(fields: dict[str, str]) -> Optional[str]:
    location = fields.get("location")
    if not location:
        return None
    try:
        return canonicalize(location)
    except InvalidURLError:
        return None


class RecordStore:
    """Records keyed by title, indexed by canonical location URL."""

    def __init__(self, store_path: Optional[Path] = None):
        self.store_path = store_path
        self.events = BatchEvents()
        self._records: dict[str, dict[str, str]] = {}
        self._by_url: dict[str, str] = {}  # canonical URL -> title
        self._batch = PendingImportBatch()
        self._batch_version = 0
        self._lock = asyncio.Lock()
        self._load()

    def _load(self) -> None:
        """Load store from disk."""
        if not self.store_path or not self.store_path.exists():
            return
        try:
            with open(self.store_path) as f:
                data = json.load(f)
            for fields in data.get("records", []):
                self._index(fields)
            pending = data.get("pending", {})
            self._batch = PendingImportBatch.model_validate(pending.get("batch", {}))
            self._batch_version = int(pending.get("version", 0))
            console.print(f"[dim]Loaded {len(self._records)} records from store[/dim]")
        except (OSError, ValueError) as e:
            console.print(f"[yellow]Failed to load record store: {e}[/yellow]")
            self._records = {}
            self._by_url = {}

    def _save(self) -> None:
        """Save store to disk."""
        if not self.store_path:
            return
        self.store_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.store_path, "w") as f:
            json.dump({
                "updated_at": datetime.now().timestamp(),
                "records": list(self._records.values()),
                "pending": {
                    "version": self._batch_version,
                    "batch": self._batch.model_dump(),
                },
            }, f, indent=2)

    def _index(self, fields: dict[str, str]) -> None:
        self._records[fields["title"]] = dict(fields)
        canonical = _canonical_location(fields)
        if canonical:
            self._by_url[canonical] = fields["title"]

    # Records

    async def get_record_by_canonical_url(self, url: str) -> Optional[dict[str, str]]:
        """Find the record whose location canonicalizes to the same URL."""
        await asyncio.sleep(0)
        title = self._by_url.get(canonicalize(url))
        if title is None:
            return None
        return dict(self._records[title])

    async def get_record_by_title(self, title: str) -> Optional[dict[str, str]]:
        await asyncio.sleep(0)
        fields = self._records.get(title)
        return dict(fields) if fields else None

    async def upsert_record(self, fields: dict[str, str]) -> dict[str, str]:
        """Create a record, failing on conflict.

        Stamps ``created``/``modified`` and returns the record as stored.

        Raises:
            DuplicateURLError: a record already has this canonical location
            TitleCollisionError: a record already has this title
        """
        title = fields.get("title")
        if not title:
            raise ValueError("Record needs a title")

        async with self._lock:
            await asyncio.sleep(0)
            canonical = _canonical_location(fields)
            if canonical and canonical in self._by_url:
                existing = self._by_url[canonical]
                raise DuplicateURLError(
                    f"{canonical} is already stored as {existing!r}",
                    url=canonical,
                    existing_title=existing,
                )
            if title in self._records:
                raise TitleCollisionError(f"Title {title!r} is taken", url=canonical, title=title)

            now = timestamp()
            stored = dict(fields)
            stored.setdefault("created", now)
            stored["modified"] = now
            self._index(stored)
            self._save()
            return dict(stored)

    async def all_records(self) -> list[dict[str, str]]:
        await asyncio.sleep(0)
        return [dict(fields) for fields in self._records.values()]

    # Pending batch

    async def read_pending_batch(self) -> BatchSnapshot:
        """Read the current batch and its version."""
        await asyncio.sleep(0)
        return BatchSnapshot(batch=self._batch.model_copy(deep=True), version=self._batch_version)

    async def write_pending_batch(
        self,
        batch: PendingImportBatch,
        expected_version: Optional[int] = None,
    ) -> int:
        """Replace the pending batch.

        With ``expected_version`` the write only happens if nobody wrote since
        that version was read (compare-and-swap).

        Returns:
            The new version

        Raises:
            StaleBatchError: on a version mismatch
        """
        async with self._lock:
            await asyncio.sleep(0)
            if expected_version is not None and expected_version != self._batch_version:
                raise StaleBatchError(expected_version, self._batch_version)
            self._batch = batch.model_copy(deep=True)
            self._batch_version += 1
            version = self._batch_version
            self._save()

        # Outside the lock: listeners read and write the store
        await self.events.publish(BatchChanged(version=version, batch=batch.model_copy(deep=True)))
        return version

    async def update_pending_batch(
        self,
        mutate: Callable[[PendingImportBatch], None],
    ) -> BatchSnapshot:
        """Read-modify-write the batch, retrying when another writer got in first.

        ``mutate`` edits the freshly read batch in place and may run more than once.
        """
        for _ in range(MAX_UPDATE_ATTEMPTS):
            snapshot = await self.read_pending_batch()
            mutate(snapshot.batch)
            try:
                version = await self.write_pending_batch(snapshot.batch, expected_version=snapshot.version)
            except StaleBatchError:
                continue
            return BatchSnapshot(batch=snapshot.batch, version=version)
        raise RuntimeError(f"Pending batch kept changing; gave up after {MAX_UPDATE_ATTEMPTS} attempts")

    async def submit_imports(
        self,
        entries: Iterable[Union[str, PendingImportEntry]],
        override_fields: Optional[dict[str, str]] = None,
    ) -> list[str]:
        """Add import requests to the pending batch.

        Strings become entries with ``override_fields``. Returns the new slot ids.
        """
        new_entries = {}
        for entry in entries:
            if isinstance(entry, str):
                entry = PendingImportEntry(source_text=entry, override_fields=dict(override_fields or {}))
            new_entries[new_slot_id()] = entry

        def add(batch: PendingImportBatch) -> None:
            batch.entries.update(new_entries)

        await self.update_pending_batch(add)
        return list(new_entries)

    async def stats(self) -> dict:
        """Get store statistics."""
        await asyncio.sleep(0)
        by_extractor: dict[str, int] = {}
        for fields in self._records.values():
            if fields.get("url_tiddler") != "true":
                continue
            extractor = fields.get("url_extractor", "generic")
            by_extractor[extractor] = by_extractor.get(extractor, 0) + 1

        return {
            "records": len(self._records),
            "url_records": len(self._by_url),
            "pending": len(self._batch.entries),
            "failed": len(self._batch.failed),
            "batch_version": self._batch_version,
            "by_extractor": by_extractor,
        }
