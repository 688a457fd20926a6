"""Single-URL import: canonicalize, dedup, fetch, extract, merge."""

from typing import Optional

import httpx
from rich.console import Console

from link_importer.config import Settings
from link_importer.errors import DuplicateURLError, LinkImportError, failure_reason
from link_importer.extractors.fetch import fetch_url
from link_importer.extractors.merge import merge
from link_importer.extractors.registry import ExtractorRegistry, default_registry, extract_page
from link_importer.models import FinalRecord, ImportOutcome, ImportStatus
from link_importer.normalizers.url import canonicalize
from link_importer.store import RecordStore

console = Console()


def created_outcome(url: str, record: FinalRecord) -> ImportOutcome:
    return ImportOutcome(status=ImportStatus.CREATED, url=url, title=record.title, record=record)


def duplicate_outcome(url: str, existing_title: Optional[str]) -> ImportOutcome:
    return ImportOutcome(
        status=ImportStatus.DUPLICATE,
        url=url,
        reason="duplicate",
        error_kind=DuplicateURLError.__name__,
        existing_title=existing_title,
    )


def rejected_outcome(url: str, error: Exception) -> ImportOutcome:
    return ImportOutcome(
        status=ImportStatus.REJECTED,
        url=url,
        reason=failure_reason(error),
        error_kind=type(error).__name__,
    )


async def import_url(
    url: str,
    override_fields: Optional[dict[str, str]] = None,
    *,
    store: RecordStore,
    registry: Optional[ExtractorRegistry] = None,
    client: Optional[httpx.AsyncClient] = None,
    settings: Optional[Settings] = None,
) -> ImportOutcome:
    """Import one URL into the store.

    Args:
        url: Page to import
        override_fields: Fields that replace extracted values; ``_url`` picks
            the extractor as if the page lived at that URL
        store: Record store to dedup against and commit to
        registry: Extractors to choose from (built-ins by default)
        client: Shared httpx client
        settings: Fetch timeout/redirect limits

    Returns:
        ``created`` with the committed record, ``duplicate`` if the URL is
        already stored, ``rejected`` for invalid URLs, fetch failures,
        non-HTML content and extraction failures
    """
    settings = settings or Settings()
    overrides = dict(override_fields or {})

    try:
        canonical = canonicalize(url)
        existing = await store.get_record_by_canonical_url(canonical)
        if existing:
            console.print(f"[yellow]Already have {url} as {existing['title']!r}[/yellow]")
            return duplicate_outcome(url, existing["title"])

        page = await fetch_url(
            url,
            client=client,
            timeout=settings.fetch_timeout,
            max_redirects=settings.max_redirects,
            user_agent=settings.user_agent,
        )
        extractor, partial = extract_page(url, page, overrides, registry or default_registry())
        record = await merge(partial, overrides, canonical, store, extractor_name=extractor.name)

    except DuplicateURLError as e:
        console.print(f"[yellow]Already have {url} as {e.existing_title!r}[/yellow]")
        return duplicate_outcome(url, e.existing_title)
    except LinkImportError as e:
        console.print(f"[red]Could not import {url}: {e}[/red]")
        return rejected_outcome(url, e)

    console.print(
        f"[green]Imported:[/green] {record.title[:50]} "
        f"[dim](extractor: {extractor.name})[/dim]"
    )
    return created_outcome(url, record)
