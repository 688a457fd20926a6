"""Generic metadata extraction from OpenGraph, Twitter Card and plain HTML tags."""

import json
from typing import Optional

from bs4 import BeautifulSoup

from link_importer.extractors.base import Extractor, compose_body_text
from link_importer.extractors.fetch import FetchedPage
from link_importer.models import PartialRecord

GENERIC_EXTRACTOR_NAME = "generic"


def meta_content(soup: BeautifulSoup, key: str) -> Optional[str]:
    """Get a meta tag's content by ``property`` or ``name``.

    Blank content counts as missing.
    """
    for attr in ("property", "name"):
        for meta in soup.find_all("meta", attrs={attr: key}):
            content = (meta.get("content") or "").strip()
            if content:
                return content
    return None


def extract_json_ld(soup: BeautifulSoup) -> list[dict]:
    """Extract all JSON-LD blocks from page."""
    json_ld_blocks = []

    for script in soup.find_all("script", type="application/ld+json"):
        try:
            data = json.loads(script.string or "")
            if isinstance(data, list):
                json_ld_blocks.extend(d for d in data if isinstance(d, dict))
            elif isinstance(data, dict):
                json_ld_blocks.append(data)
        except (json.JSONDecodeError, TypeError):
            continue

    return json_ld_blocks


def extract_opengraph(soup: BeautifulSoup) -> dict[str, str]:
    """Extract title/description from OpenGraph meta tags."""
    found = {
        "title": meta_content(soup, "og:title"),
        "description": meta_content(soup, "og:description"),
    }
    return {k: v for k, v in found.items() if v}


def extract_twitter_card(soup: BeautifulSoup) -> dict[str, str]:
    """Extract title/description from Twitter Card meta tags."""
    found = {
        "title": meta_content(soup, "twitter:title"),
        "description": meta_content(soup, "twitter:description"),
    }
    return {k: v for k, v in found.items() if v}


def extract_meta_tags(soup: BeautifulSoup) -> dict[str, str]:
    """Extract data from the <title> element and meta description."""
    found: dict[str, str] = {}

    title_tag = soup.find("title")
    if title_tag:
        title = title_tag.get_text().strip()
        if title:
            found["title"] = title

    description = meta_content(soup, "description")
    if description:
        found["description"] = description

    return found


def extract_structured_data(soup: BeautifulSoup) -> dict[str, str]:
    """Pick title and description from the page's tags.

    Tries in order of preference, per field:
    1. OpenGraph meta tags
    2. Twitter Card meta tags
    3. <title> / meta description

    Fields no source provides are left out.
    """
    result: dict[str, str] = {}
    for source in (extract_opengraph(soup), extract_twitter_card(soup), extract_meta_tags(soup)):
        for field, value in source.items():
            result.setdefault(field, value)
    return result


class GenericExtractor(Extractor):
    """Fallback extractor; matches every HTML page."""

    name = GENERIC_EXTRACTOR_NAME

    def matches(self, url: str, page: FetchedPage) -> bool:
        return True

    def extract(self, url: str, page: FetchedPage) -> PartialRecord:
        data = extract_structured_data(page.soup)
        description = data.get("description")
        return PartialRecord(
            title=data.get("title") or page.url,
            description=description,
            body_text=compose_body_text(page.url, description),
        )
