"""Tests for the pending batch reconciler."""

import asyncio
from dataclasses import replace

import pytest

from conftest import BASIC_HTML, html_response, mock_url
from link_importer.models import BatchSnapshot, EntryState, ImportStatus, PendingImportBatch, PendingImportEntry
from link_importer.pipeline import duplicate_outcome
from link_importer.reconciler import ImportReconciler


@pytest.fixture
def reconciler(store, client, settings):
    return ImportReconciler(store, client=client, settings=settings)


def gated_route(gate: asyncio.Event):
    """Route that answers only once ``gate`` is set."""
    async def handler(request):
        await gate.wait()
        return html_response(BASIC_HTML.replace("Blog", "Gated"))

    return handler


class TestRun:
    """Tests for draining the batch in one go."""

    @pytest.mark.asyncio
    async def test_drains_batch(self, store, reconciler):
        slots = await store.submit_imports([mock_url("/basic.html"), mock_url("/opengraph.html")])
        report = await reconciler.run(timeout=5)

        assert len(report) == 2
        assert set(report.created) == set(slots)
        assert (await store.read_pending_batch()).batch.is_empty
        assert await store.get_record_by_title("OpenGraph Test") is not None
        assert all(reconciler.state_of(slot) == EntryState.COMMITTED for slot in slots)

    @pytest.mark.asyncio
    async def test_empty_batch(self, reconciler):
        report = await reconciler.run(timeout=1)
        assert len(report) == 0
        assert await reconciler.is_drained()

    @pytest.mark.asyncio
    async def test_overrides_applied(self, store, reconciler):
        entry = PendingImportEntry(
            source_text=mock_url("/github.html"),
            override_fields={"_url": "https://github.com/hoelzro/tiddlywiki-first-class-urls", "tags": "code"},
        )
        await store.submit_imports([entry])
        await reconciler.run(timeout=5)
        stored = await store.get_record_by_title("tiddlywiki-first-class-urls")
        assert stored["tags"] == "code"
        assert stored["url_extractor"] == "github"

    @pytest.mark.asyncio
    async def test_already_stored(self, store, reconciler):
        await store.upsert_record({"title": "Blog", "location": mock_url("/basic.html"), "text": ""})
        [slot] = await store.submit_imports([mock_url("/basic.html")])
        report = await reconciler.run(timeout=5)

        assert report.duplicates[slot].existing_title == "Blog"
        assert reconciler.state_of(slot) == EntryState.DUPLICATE
        batch = (await store.read_pending_batch()).batch
        assert batch.is_empty
        assert batch.failed == {}

    @pytest.mark.asyncio
    async def test_same_url_twice(self, store, reconciler):
        """Only one of two concurrent entries for a URL creates a record."""
        await store.submit_imports([mock_url("/basic.html"), mock_url("/basic.html")])
        report = await reconciler.run(timeout=5)

        assert len(report.created) == 1
        assert len(report.duplicates) == 1
        assert len(await store.all_records()) == 1

    @pytest.mark.asyncio
    async def test_same_title_different_urls(self, store, reconciler):
        await store.submit_imports([mock_url("/basic.html"), mock_url("/basic.html?x=1"), mock_url("/basic.html?x=2")])
        await reconciler.run(timeout=5)
        titles = sorted(r["title"] for r in await store.all_records())
        assert titles == ["Blog", "Blog 1", "Blog 2"]

    @pytest.mark.asyncio
    async def test_many_entries_share_a_title(self, store, client, settings):
        """Every entry of a large same-title batch gets its own suffix, none fail."""
        reconciler = ImportReconciler(store, client=client, settings=replace(settings, max_concurrent=20))
        await store.submit_imports([mock_url(f"/basic.html?x={i}") for i in range(12)])
        report = await reconciler.run(timeout=10)

        assert len(report.created) == 12
        assert report.rejected == {}
        titles = {r["title"] for r in await store.all_records()}
        assert titles == {"Blog"} | {f"Blog {i}" for i in range(1, 12)}
        assert (await store.read_pending_batch()).batch.failed == {}


class TestFailures:
    """Tests for failed entries."""

    @pytest.mark.asyncio
    async def test_failed_entries_retained(self, store, reconciler):
        [slot] = await store.submit_imports([mock_url("/flaky.html")])
        report = await reconciler.run(timeout=5)

        assert report.rejected[slot].reason == "404"
        assert reconciler.state_of(slot) == EntryState.FAILED
        batch = (await store.read_pending_batch()).batch
        assert batch.is_empty
        assert batch.failed[slot].reason == "404"
        assert batch.failed[slot].error_kind == "FetchError"
        assert await reconciler.is_drained()

    @pytest.mark.asyncio
    async def test_retry_failed(self, store, routes, reconciler):
        [slot] = await store.submit_imports([mock_url("/flaky.html")])
        await reconciler.run(timeout=5)

        routes["/flaky.html"] = lambda request: html_response(BASIC_HTML)
        moved = await reconciler.retry_failed()
        assert moved == [slot]
        assert await reconciler.wait_drained(timeout=5)

        assert reconciler.report.created[slot].title == "Blog"
        assert (await store.read_pending_batch()).batch.failed == {}

    @pytest.mark.asyncio
    async def test_clear_failed(self, store, reconciler):
        await store.submit_imports([mock_url("/blank.pdf"), mock_url("/410.html")])
        await reconciler.run(timeout=5)
        assert await reconciler.clear_failed() == 2
        assert (await store.read_pending_batch()).batch.failed == {}

    @pytest.mark.asyncio
    async def test_not_a_url(self, store, reconciler):
        [slot] = await store.submit_imports(["just some text"])
        report = await reconciler.run(timeout=5)
        assert report.rejected[slot].reason == "invalid-url"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, store, reconciler):
        good, bad = await store.submit_imports([mock_url("/basic.html"), mock_url("/missing.html")])
        report = await reconciler.run(timeout=5)
        assert good in report.created
        assert bad in report.rejected


class TestAttached:
    """Tests for reacting to batch change events."""

    @pytest.mark.asyncio
    async def test_submission_triggers_import(self, store, reconciler):
        reconciler.attach()
        await store.submit_imports([mock_url("/basic.html")])
        assert await reconciler.wait_drained(timeout=5)
        assert await store.get_record_by_title("Blog") is not None
        reconciler.detach()
        assert store.events.listener_count == 0

    @pytest.mark.asyncio
    async def test_submission_during_flight(self, store, routes, reconciler):
        """Entries submitted while another is in flight are neither lost nor run twice."""
        gate = asyncio.Event()
        routes["/gated.html"] = gated_route(gate)
        reconciler.attach()

        [slow] = await store.submit_imports([mock_url("/gated.html")])
        await asyncio.sleep(0.01)
        assert reconciler.state_of(slow) == EntryState.FETCHING

        [fast] = await store.submit_imports([mock_url("/basic.html")])
        for _ in range(100):
            if reconciler.state_of(fast) == EntryState.COMMITTED and fast not in reconciler.in_flight():
                break
            await asyncio.sleep(0.01)
        assert reconciler.state_of(fast) == EntryState.COMMITTED

        batch = (await store.read_pending_batch()).batch
        assert list(batch.entries) == [slow]

        gate.set()
        assert await reconciler.wait_drained(timeout=5)
        assert set(reconciler.report.created) == {slow, fast}
        assert len(await store.all_records()) == 2
        await reconciler.close()

    @pytest.mark.asyncio
    async def test_wait_drained_timeout(self, store, routes, reconciler):
        gate = asyncio.Event()
        routes["/gated.html"] = gated_route(gate)
        [slot] = await store.submit_imports([mock_url("/gated.html")])
        await reconciler.reconcile()

        assert not await reconciler.wait_drained(timeout=0.05)
        assert reconciler.in_flight() == [slot]

        await reconciler.close()
        assert reconciler.in_flight() == []
        assert slot in (await store.read_pending_batch()).batch.entries


class TestStateMachine:
    """Tests for entry state transitions."""

    def test_forward_only(self, reconciler):
        reconciler._advance("slot", EntryState.QUEUED)
        reconciler._advance("slot", EntryState.FETCHING)
        with pytest.raises(RuntimeError):
            reconciler._advance("slot", EntryState.QUEUED)
        reconciler._advance("slot", EntryState.FAILED)
        assert reconciler.state_of("slot") == EntryState.FAILED

    def test_terminal_is_final(self, reconciler):
        reconciler._advance("slot", EntryState.QUEUED)
        reconciler._advance("slot", EntryState.DUPLICATE)
        with pytest.raises(RuntimeError):
            reconciler._advance("slot", EntryState.FAILED)

    def test_unknown_slot(self, reconciler):
        assert reconciler.state_of("nope") is None

    @pytest.mark.parametrize("state,terminal", [
        (EntryState.QUEUED, False),
        (EntryState.MERGING, False),
        (EntryState.COMMITTED, True),
        (EntryState.DUPLICATE, True),
        (EntryState.FAILED, True),
    ])
    def test_terminal_states(self, state, terminal):
        assert state.is_terminal is terminal


class TestOutcome:
    """Tests for outcome reporting."""

    @pytest.mark.asyncio
    async def test_http_mapping(self, store, reconciler):
        await store.upsert_record({"title": "Old", "location": mock_url("/opengraph.html"), "text": ""})
        created, duplicate, rejected = await store.submit_imports(
            [mock_url("/basic.html"), mock_url("/opengraph.html"), mock_url("/blank.pdf")]
        )
        report = await reconciler.run(timeout=5)
        assert report.outcomes[created].http_status == 201
        assert report.outcomes[duplicate].http_status == 409
        assert report.outcomes[rejected].http_status == 400
        assert report.outcomes[rejected].status == ImportStatus.REJECTED


class TestResolve:
    """Tests for removing settled entries from the batch."""

    @pytest.mark.asyncio
    async def test_retry_after_stale_read_forgets_replacement(self, store, reconciler):
        """A replacement seen only in a stale read doesn't trigger a redispatch."""
        url = mock_url("/basic.html")
        [slot] = await store.submit_imports([url])
        entry = (await store.read_pending_batch()).batch.entries[slot]

        stale = PendingImportBatch(entries={slot: PendingImportEntry(source_text=mock_url("/other.html"))})
        real_read = store.read_pending_batch
        reads = []

        async def read_pending_batch():
            reads.append(True)
            if len(reads) == 1:
                return BatchSnapshot(batch=stale, version=0)
            return await real_read()

        store.read_pending_batch = read_pending_batch
        replaced = await reconciler._resolve(slot, entry, duplicate_outcome(url, "Blog"))

        assert len(reads) == 2
        assert replaced is False
        assert slot not in (await real_read()).batch.entries

    @pytest.mark.asyncio
    async def test_replaced_slot_left_in_place(self, store, reconciler):
        [slot] = await store.submit_imports([mock_url("/basic.html")])
        processed = PendingImportEntry(source_text=mock_url("/earlier.html"))

        replaced = await reconciler._resolve(slot, processed, duplicate_outcome(processed.source_text, "Blog"))

        assert replaced is True
        assert slot in (await store.read_pending_batch()).batch.entries
