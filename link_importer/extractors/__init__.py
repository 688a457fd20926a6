"""URL → record extraction.

This package provides the import pipeline's building blocks:
1. Fetches HTML pages (httpx, bounded redirects, HTML only)
2. Extracts metadata with the first matching extractor:
   - Site-specific extractors (GitHub, Goodreads)
   - Generic OpenGraph / Twitter Card / <title> fallback
3. Merges the result with caller overrides into a committed record
"""

from link_importer.extractors.fetch import fetch_url, FetchedPage
from link_importer.extractors.base import Extractor
from link_importer.extractors.structured import GenericExtractor, extract_structured_data
from link_importer.extractors.platforms import GitHubExtractor, GoodreadsExtractor
from link_importer.extractors.registry import ExtractorRegistry, default_registry, extract_page
from link_importer.extractors.merge import merge, unique_title

__all__ = [
    "fetch_url",
    "FetchedPage",
    "Extractor",
    "GenericExtractor",
    "extract_structured_data",
    "GitHubExtractor",
    "GoodreadsExtractor",
    "ExtractorRegistry",
    "default_registry",
    "extract_page",
    "merge",
    "unique_title",
]
