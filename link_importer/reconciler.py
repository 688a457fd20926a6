"""Import reconciler: resolves the pending import batch into records.

Every URL entry in the batch runs its own fetch → extract → merge pipeline as
an asyncio task. When an entry settles, the batch is re-read from the store,
only that slot is removed (failures move to ``batch.failed``) and the result
is written back with a version check, so entries submitted while work was in
flight survive.
"""

import asyncio
import time
from typing import Callable, Optional

import httpx
from rich.console import Console

from link_importer.config import Settings
from link_importer.errors import DuplicateURLError, InvalidURLError, LinkImportError, TitleCollisionError
from link_importer.extractors.fetch import fetch_url
from link_importer.extractors.merge import merge
from link_importer.extractors.registry import ExtractorRegistry, default_registry, extract_page
from link_importer.models import (
    EntryState,
    FailedImportEntry,
    FinalRecord,
    ImportOutcome,
    ImportStatus,
    PendingImportBatch,
    PendingImportEntry,
)
from link_importer.normalizers.url import canonicalize, is_bare_url
from link_importer.pipeline import created_outcome, duplicate_outcome, rejected_outcome
from link_importer.store import BatchChanged, RecordStore, StagingWriter

console = Console()


class ReconcileReport:
    """Outcomes of the entries a reconciler has resolved, by slot id."""

    def __init__(self):
        self.outcomes: dict[str, ImportOutcome] = {}

    def record(self, slot: str, outcome: ImportOutcome) -> None:
        self.outcomes[slot] = outcome

    def _with_status(self, status: ImportStatus) -> dict[str, ImportOutcome]:
        return {slot: o for slot, o in self.outcomes.items() if o.status == status}

    @property
    def created(self) -> dict[str, ImportOutcome]:
        return self._with_status(ImportStatus.CREATED)

    @property
    def duplicates(self) -> dict[str, ImportOutcome]:
        return self._with_status(ImportStatus.DUPLICATE)

    @property
    def rejected(self) -> dict[str, ImportOutcome]:
        return self._with_status(ImportStatus.REJECTED)

    def __len__(self) -> int:
        return len(self.outcomes)


class ImportReconciler:
    """Drives pending import entries to records.

    Call ``attach()`` to react to batch changes published by the store, or
    ``run()`` to drain the batch once. ``on_resolved`` is called with each
    slot and its outcome as entries settle.
    """

    def __init__(
        self,
        store: RecordStore,
        registry: Optional[ExtractorRegistry] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        on_resolved: Optional[Callable[[str, ImportOutcome], None]] = None,
    ):
        self.store = store
        self.on_resolved = on_resolved
        self.registry = registry or default_registry()
        self.client = client
        self.settings = settings or Settings()
        self.report = ReconcileReport()
        self._states: dict[str, EntryState] = {}
        self._tasks: dict[str, asyncio.Task] = {}
        self._semaphore = asyncio.Semaphore(max(1, self.settings.max_concurrent))
        self._unsubscribe = None

    # Subscription

    def attach(self) -> None:
        """Start reconciling whenever the store publishes a batch change."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.events.subscribe(self._on_batch_changed)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def _on_batch_changed(self, event: BatchChanged) -> None:
        self.reconcile_batch(event.batch)

    # State machine

    def state_of(self, slot: str) -> Optional[EntryState]:
        return self._states.get(slot)

    def _advance(self, slot: str, state: EntryState) -> None:
        """Move an entry forward; states are never revisited."""
        current = self._states.get(slot)
        if current is not None:
            if current.is_terminal:
                raise RuntimeError(f"Entry {slot} is already {current.value}, cannot become {state.value}")
            if not state.is_terminal and state.rank <= current.rank:
                raise RuntimeError(f"Entry {slot} cannot go from {current.value} back to {state.value}")
        self._states[slot] = state

    def in_flight(self) -> list[str]:
        """Slots whose pipeline hasn't settled yet."""
        return [slot for slot, task in self._tasks.items() if not task.done()]

    # Dispatch

    def reconcile_batch(self, batch: PendingImportBatch) -> list[str]:
        """Dispatch every entry of ``batch`` that isn't already in flight.

        Returns:
            The slot ids dispatched
        """
        dispatched = []
        for slot, entry in batch.entries.items():
            task = self._tasks.get(slot)
            if task is not None and not task.done():
                continue
            self._states.pop(slot, None)  # A slot that reappears is a new request
            self._advance(slot, EntryState.QUEUED)
            self._tasks[slot] = asyncio.create_task(self._process(slot, entry), name=f"import-{slot}")
            dispatched.append(slot)
        return dispatched

    async def reconcile(self) -> list[str]:
        """Read the stored batch and dispatch its entries."""
        snapshot = await self.store.read_pending_batch()
        return self.reconcile_batch(snapshot.batch)

    async def _process(self, slot: str, entry: PendingImportEntry) -> None:
        outcome = await self._run_entry(slot, entry)
        self.report.record(slot, outcome)
        if self.on_resolved:
            self.on_resolved(slot, outcome)
        replaced = await self._resolve(slot, entry, outcome)
        if replaced:
            # The slot got a new request while this one ran; events for it
            # were skipped because this task still held the slot
            asyncio.get_running_loop().call_soon(self._redispatch, slot)

    def _redispatch(self, slot: str) -> None:
        asyncio.create_task(self.reconcile(), name=f"redispatch-{slot}")

    async def _run_entry(self, slot: str, entry: PendingImportEntry) -> ImportOutcome:
        url = entry.source_text.strip()
        overrides = entry.override_fields

        try:
            if not is_bare_url(url):
                raise InvalidURLError(f"Not a URL: {entry.source_text[:60]!r}", url=url)
            canonical = canonicalize(url)

            existing = await self.store.get_record_by_canonical_url(canonical)
            if existing:
                self._advance(slot, EntryState.DUPLICATE)
                console.print(f"[yellow]Already have {url} as {existing['title']!r}[/yellow]")
                return duplicate_outcome(url, existing["title"])

            async with self._semaphore:
                self._advance(slot, EntryState.FETCHING)
                page = await fetch_url(
                    url,
                    client=self.client,
                    timeout=self.settings.fetch_timeout,
                    max_redirects=self.settings.max_redirects,
                    user_agent=self.settings.user_agent,
                )

            self._advance(slot, EntryState.EXTRACTING)
            extractor, partial = extract_page(url, page, overrides, self.registry)

            self._advance(slot, EntryState.MERGING)
            record = await self._commit(partial, overrides, canonical, extractor.name)
            self._advance(slot, EntryState.COMMITTED)

        except DuplicateURLError as e:
            self._advance(slot, EntryState.DUPLICATE)
            console.print(f"[yellow]Already have {url} as {e.existing_title!r}[/yellow]")
            return duplicate_outcome(url, e.existing_title)
        except LinkImportError as e:
            self._advance(slot, EntryState.FAILED)
            console.print(f"[red]Could not import {url}: {e}[/red]")
            return rejected_outcome(url, e)
        except Exception as e:
            # Store or other collaborator failure: fail this entry only
            self._advance(slot, EntryState.FAILED)
            console.print(f"[red]Error importing {url}: {type(e).__name__}: {e}[/red]")
            return rejected_outcome(url, e)

        console.print(f"[green]Imported:[/green] {record.title[:50]} [dim](extractor: {extractor.name})[/dim]")
        return created_outcome(url, record)

    async def _commit(self, partial, overrides, canonical: str, extractor_name: str) -> FinalRecord:
        """Stage the merged record, then flush it.

        A title taken by another entry before the flush is retried with the
        next free suffix; every round commits at least one contender.
        """
        while True:
            staging = StagingWriter(self.store)
            await merge(partial, overrides, canonical, staging, extractor_name=extractor_name)
            try:
                committed = await staging.finalize()
            except TitleCollisionError as e:
                staging.discard()
                console.print(f"[dim]Title {e.title!r} was taken meanwhile, retrying[/dim]")
                continue
            return FinalRecord.from_fields(committed[0])

    async def _resolve(self, slot: str, entry: PendingImportEntry, outcome: ImportOutcome) -> bool:
        """Remove a settled entry from the freshly read batch.

        Failures are kept in ``batch.failed``. Returns True if the slot now
        holds a different request than the one that was processed.
        """
        replaced = False

        def remove(batch: PendingImportBatch) -> None:
            nonlocal replaced
            replaced = False
            current = batch.entries.get(slot)
            if current is not None and current != entry:
                replaced = True
                return
            batch.entries.pop(slot, None)
            if outcome.status == ImportStatus.REJECTED:
                batch.failed[slot] = FailedImportEntry(
                    source_text=entry.source_text,
                    override_fields=entry.override_fields,
                    reason=outcome.reason or "unknown",
                    error_kind=outcome.error_kind,
                    failed_at=time.time(),
                )

        await self.store.update_pending_batch(remove)
        return replaced

    # Draining

    async def is_drained(self) -> bool:
        """True when the stored batch has no pending entries left."""
        snapshot = await self.store.read_pending_batch()
        return snapshot.batch.is_empty

    async def wait_drained(self, timeout: Optional[float] = None) -> bool:
        """Wait until the stored batch is empty.

        Re-reads the batch after in-flight work settles and dispatches
        anything that arrived meanwhile.
        """
        async def drain() -> None:
            while True:
                pending = [task for task in self._tasks.values() if not task.done()]
                if pending:
                    # asyncio.wait leaves the tasks running if we time out
                    await asyncio.wait(pending)
                    continue
                if await self.is_drained():
                    return
                if not await self.reconcile():
                    await asyncio.sleep(0)

        try:
            await asyncio.wait_for(drain(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def run(self, timeout: Optional[float] = None) -> ReconcileReport:
        """Dispatch the stored batch and wait for it to drain."""
        await self.reconcile()
        await self.wait_drained(timeout=timeout)
        return self.report

    # Failed entries

    async def retry_failed(self) -> list[str]:
        """Move failed entries back into the pending set and dispatch them."""
        moved: list[str] = []

        def requeue(batch: PendingImportBatch) -> None:
            moved.clear()
            for slot, failed in batch.failed.items():
                batch.entries[slot] = PendingImportEntry(
                    source_text=failed.source_text,
                    override_fields=failed.override_fields,
                )
                moved.append(slot)
            batch.failed.clear()

        await self.store.update_pending_batch(requeue)
        if self._unsubscribe is None:
            await self.reconcile()
        return moved

    async def clear_failed(self) -> int:
        """Discard failed entries. Returns how many were dropped."""
        count = 0

        def clear(batch: PendingImportBatch) -> None:
            nonlocal count
            count = len(batch.failed)
            batch.failed.clear()

        await self.store.update_pending_batch(clear)
        return count

    async def close(self) -> None:
        """Stop listening and abandon in-flight work; the batch stays stored."""
        self.detach()
        for task in self._tasks.values():
            if not task.done():
                task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
