"""Extractor interface."""

from abc import ABC, abstractmethod
from typing import Optional

from link_importer.extractors.fetch import FetchedPage
from link_importer.models import PartialRecord


def compose_body_text(location: str, description: Optional[str]) -> str:
    """Record text: the location, then the description as a second paragraph."""
    if description:
        return f"{location}\n\n{description}"
    return location


class Extractor(ABC):
    """Parses one kind of page into a partial record.

    ``url`` is the URL the page is identified by: normally the requested URL,
    or the ``_url`` override when the caller wants a mirrored page treated as
    if it came from somewhere else. The record location always comes from
    ``page.url``.
    """

    name: str = "base"

    @abstractmethod
    def matches(self, url: str, page: FetchedPage) -> bool:
        """Check if this extractor applies to the page."""

    @abstractmethod
    def extract(self, url: str, page: FetchedPage) -> PartialRecord:
        """Extract metadata. Raises ExtractionError if the page lacks the expected structure."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
