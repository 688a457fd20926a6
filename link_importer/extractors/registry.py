"""Ordered registry of extractors; first match wins."""

from typing import Optional

from link_importer.extractors.base import Extractor
from link_importer.extractors.fetch import FetchedPage
from link_importer.extractors.platforms import GitHubExtractor, GoodreadsExtractor
from link_importer.extractors.structured import GenericExtractor
from link_importer.models import PartialRecord


class ExtractorRegistry:
    """Extractors in priority order, with an always-matching fallback kept last."""

    def __init__(self, fallback: Optional[Extractor] = None):
        self._extractors: list[Extractor] = []
        self.fallback = fallback or GenericExtractor()

    @property
    def extractors(self) -> list[Extractor]:
        """All extractors in selection order."""
        return [*self._extractors, self.fallback]

    def register(self, extractor: Extractor) -> Extractor:
        """Add an extractor ahead of the fallback.

        Raises:
            ValueError: if an extractor with the same name is registered
        """
        if any(e.name == extractor.name for e in self.extractors):
            raise ValueError(f"Extractor {extractor.name!r} already registered")
        self._extractors.append(extractor)
        return extractor

    def select_for(self, url: str, page: FetchedPage) -> Extractor:
        """Return the first extractor whose ``matches`` is true."""
        for extractor in self._extractors:
            if extractor.matches(url, page):
                return extractor
        return self.fallback


def default_registry() -> ExtractorRegistry:
    """Registry with the built-in site extractors before the generic fallback."""
    registry = ExtractorRegistry()
    registry.register(GitHubExtractor())
    registry.register(GoodreadsExtractor())
    return registry


def extract_page(
    url: str,
    page: FetchedPage,
    override_fields: Optional[dict[str, str]] = None,
    registry: Optional[ExtractorRegistry] = None,
) -> tuple[Extractor, PartialRecord]:
    """Select an extractor for a fetched page and run it.

    The ``_url`` override, if given, is the URL used to pick and drive the
    extractor; the page keeps its requested URL for the record location.
    """
    registry = registry or default_registry()
    match_url = (override_fields or {}).get("_url") or url
    extractor = registry.select_for(match_url, page)
    return extractor, extractor.extract(match_url, page)
