"""Merge extracted metadata and caller overrides into a committed record."""

from typing import Optional, Protocol

from rich.console import Console

from link_importer.errors import DuplicateURLError, TitleCollisionError
from link_importer.extractors.structured import GENERIC_EXTRACTOR_NAME
from link_importer.models import FinalRecord, PartialRecord

console = Console()

# Override keys with this prefix steer the import and are never stored
DIRECTIVE_PREFIX = "_"

# Set by the merge itself, overrides can't replace them
SYSTEM_FIELDS = ("location", "url_tiddler", "url_extractor", "created", "modified")


class RecordWriter(Protocol):
    """What the merge needs from a store (RecordStore or StagingWriter)."""

    async def get_record_by_canonical_url(self, url: str) -> Optional[dict[str, str]]: ...

    async def get_record_by_title(self, title: str) -> Optional[dict[str, str]]: ...

    async def upsert_record(self, fields: dict[str, str]) -> dict[str, str]: ...


def apply_overrides(partial: PartialRecord, overrides: Optional[dict[str, str]]) -> dict[str, str]:
    """Extracted fields with overrides on top; overrides always win."""
    fields = dict(partial.extra_fields)
    if partial.title is not None:
        fields["title"] = partial.title
    if partial.description is not None:
        fields["description"] = partial.description
    if partial.body_text is not None:
        fields["text"] = partial.body_text

    for key, value in (overrides or {}).items():
        if key.startswith(DIRECTIVE_PREFIX):
            continue
        fields[key] = value

    return fields


async def unique_title(store: RecordWriter, title: str) -> str:
    """First free title among "Blog", "Blog 1", "Blog 2", ..."""
    candidate = title
    suffix = 0
    while await store.get_record_by_title(candidate) is not None:
        suffix += 1
        candidate = f"{title} {suffix}"
    return candidate


async def merge(
    partial: PartialRecord,
    overrides: Optional[dict[str, str]],
    canonical_url: str,
    store: RecordWriter,
    extractor_name: Optional[str] = None,
) -> FinalRecord:
    """Build the final record and commit it.

    1. Start from the partial record and apply overrides
    2. Disambiguate the title against existing records
    3. Set location, url_tiddler and url_extractor
    4. Commit via ``store.upsert_record``

    A title taken between the check and the commit is retried with the next
    disambiguator.

    Raises:
        DuplicateURLError: a record with this canonical URL exists
    """
    existing = await store.get_record_by_canonical_url(canonical_url)
    if existing:
        raise DuplicateURLError(
            f"{canonical_url} is already stored as {existing['title']!r}",
            url=canonical_url,
            existing_title=existing["title"],
        )

    fields = apply_overrides(partial, overrides)
    for name in SYSTEM_FIELDS:
        fields.pop(name, None)

    base_title = (fields.pop("title", None) or "").strip() or canonical_url
    text = fields.pop("text", None)
    description = fields.pop("description", None)

    record = FinalRecord(
        title=base_title,
        location=canonical_url,
        text=text if text is not None else canonical_url,
        url_tiddler=True,
        url_extractor=extractor_name if extractor_name and extractor_name != GENERIC_EXTRACTOR_NAME else None,
        description=description,
        extra_fields=fields,
    )

    while True:
        record.title = await unique_title(store, base_title)
        try:
            committed = await store.upsert_record(record.to_fields())
        except TitleCollisionError:
            console.print(f"[dim]Title {record.title!r} was taken meanwhile, retrying[/dim]")
            continue
        return FinalRecord.from_fields(committed)
