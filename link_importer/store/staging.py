"""Two-phase writes: stage records, then flush them to the store."""

from typing import Optional

from link_importer.errors import DuplicateURLError, InvalidURLError, TitleCollisionError
from link_importer.normalizers.url import canonicalize
from link_importer.store.record_store import RecordStore


def _canonical(fields: dict[str, str]) -> Optional[str]:
    try:
        return canonicalize(fields["location"]) if fields.get("location") else None
    except InvalidURLError:
        return None


class StagingWriter:
    """Buffers records in front of a RecordStore.

    Lookups see staged records first, so title and URL checks made while
    staging account for them. ``finalize`` flushes through the store's
    conflict-checked ``upsert_record``.
    """

    def __init__(self, store: RecordStore):
        self.store = store
        self._staged: list[dict[str, str]] = []

    @property
    def staged(self) -> list[dict[str, str]]:
        return [dict(fields) for fields in self._staged]

    async def get_record_by_title(self, title: str) -> Optional[dict[str, str]]:
        for fields in self._staged:
            if fields["title"] == title:
                return dict(fields)
        return await self.store.get_record_by_title(title)

    async def get_record_by_canonical_url(self, url: str) -> Optional[dict[str, str]]:
        canonical = canonicalize(url)
        for fields in self._staged:
            if _canonical(fields) == canonical:
                return dict(fields)
        return await self.store.get_record_by_canonical_url(url)

    async def upsert_record(self, fields: dict[str, str]) -> dict[str, str]:
        """Stage a record, with the same conflict rules as the store."""
        location = fields.get("location")
        if location:
            existing = await self.get_record_by_canonical_url(location)
            if existing:
                raise DuplicateURLError(
                    f"{location} is already stored as {existing['title']!r}",
                    url=location,
                    existing_title=existing["title"],
                )
        if await self.get_record_by_title(fields["title"]):
            raise TitleCollisionError(f"Title {fields['title']!r} is taken", url=location, title=fields["title"])

        self._staged.append(dict(fields))
        return dict(fields)

    async def finalize(self) -> list[dict[str, str]]:
        """Flush staged records in order; returns them as committed.

        A record that conflicts at flush time raises and stays staged along
        with everything after it.
        """
        committed = []
        while self._staged:
            committed.append(await self.store.upsert_record(self._staged[0]))
            self._staged.pop(0)
        return committed

    def discard(self) -> None:
        self._staged.clear()
