"""Site-specific extractors for pages with richer structure than OpenGraph."""

import re
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from link_importer.errors import ExtractionError
from link_importer.extractors.base import Extractor, compose_body_text
from link_importer.extractors.fetch import FetchedPage
from link_importer.extractors.structured import extract_json_ld, extract_structured_data, meta_content
from link_importer.models import PartialRecord

GITHUB_HOSTS = {"github.com", "www.github.com"}

# Paths under github.com that aren't repositories
GITHUB_RESERVED_OWNERS = {
    "about", "apps", "collections", "explore", "features", "login", "marketplace",
    "notifications", "orgs", "pricing", "pulls", "issues", "search", "settings",
    "sponsors", "topics", "trending",
}


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def _path_segments(url: str) -> list[str]:
    return [segment for segment in urlparse(url).path.split("/") if segment]


def is_github_repo_url(url: str) -> bool:
    """Check if URL is a GitHub repository page."""
    if _host(url) not in GITHUB_HOSTS:
        return False
    segments = _path_segments(url)
    return len(segments) >= 2 and segments[0].lower() not in GITHUB_RESERVED_OWNERS


def is_goodreads_book_url(url: str) -> bool:
    """Check if URL is a Goodreads book page."""
    host = _host(url)
    if host != "goodreads.com" and not host.endswith(".goodreads.com"):
        return False
    return urlparse(url).path.startswith("/book/show/")


def _split_repository(value: Optional[str]) -> Optional[tuple[str, str]]:
    if not value:
        return None
    segments = [s for s in value.strip().split("/") if s]
    if len(segments) < 2:
        return None
    return segments[0], segments[1]


class GitHubExtractor(Extractor):
    """GitHub repository pages.

    The repository is identified from the page's ``repository_nwo`` meta tag,
    then og:url, then the URL itself.
    """

    name = "github"

    def matches(self, url: str, page: FetchedPage) -> bool:
        return is_github_repo_url(url)

    def extract(self, url: str, page: FetchedPage) -> PartialRecord:
        soup = page.soup

        repository = _split_repository(meta_content(soup, "octolytics-dimension-repository_nwo"))
        if not repository:
            og_url = meta_content(soup, "og:url")
            if og_url and is_github_repo_url(og_url):
                repository = _split_repository(urlparse(og_url).path)
        if not repository:
            repository = _split_repository(urlparse(url).path)
        if not repository:
            raise ExtractionError(f"No GitHub repository found for {url}", url=url)

        author, project = repository
        project = project.removesuffix(".git")
        description = extract_structured_data(soup).get("description")

        return PartialRecord(
            title=project,
            description=description,
            body_text=compose_body_text(page.url, description),
            extra_fields={
                "github_author": author,
                "github_project": project,
            },
        )


def _title_from_goodreads_slug(url: str) -> Optional[str]:
    """'/book/show/12345.Random_Title' -> 'Random Title'."""
    segments = _path_segments(url)
    if len(segments) < 3:
        return None
    match = re.match(r"^\d+[.\-](.+)$", segments[2])
    if not match:
        return None
    title = re.sub(r"[_\-]+", " ", match.group(1)).strip()
    return title or None


def _json_ld_book(soup: BeautifulSoup) -> Optional[dict]:
    for block in extract_json_ld(soup):
        block_type = block.get("@type", "")
        types = block_type if isinstance(block_type, list) else [block_type]
        if "Book" in types:
            return block
    return None


def _goodreads_authors(soup: BeautifulSoup, book: Optional[dict]) -> list[str]:
    authors: list[str] = []

    for tag in soup.select(".ContributorLink__name, a.authorName [itemprop=name]"):
        name = tag.get_text().strip()
        if name:
            authors.append(name)

    if not authors and book:
        raw = book.get("author", [])
        if isinstance(raw, dict):
            raw = [raw]
        for author in raw if isinstance(raw, list) else []:
            if isinstance(author, dict) and author.get("name"):
                authors.append(str(author["name"]).strip())

    return list(dict.fromkeys(authors))  # Dedupe while preserving order


class GoodreadsExtractor(Extractor):
    """Goodreads book pages: title and authors."""

    name = "goodreads"

    def matches(self, url: str, page: FetchedPage) -> bool:
        return is_goodreads_book_url(url)

    def extract(self, url: str, page: FetchedPage) -> PartialRecord:
        soup = page.soup
        book = _json_ld_book(soup)

        title = None
        title_tag = soup.select_one("h1#bookTitle, h1[data-testid=bookTitle]")
        if title_tag:
            title = title_tag.get_text().strip() or None
        if not title and book and book.get("name"):
            title = str(book["name"]).strip() or None
        if not title:
            title = meta_content(soup, "og:title")
        if not title:
            title = _title_from_goodreads_slug(url)
        if not title:
            raise ExtractionError(f"No book title found for {url}", url=url)

        description = extract_structured_data(soup).get("description")
        extra_fields = {}
        authors = _goodreads_authors(soup, book)
        if authors:
            extra_fields["goodreads_authors"] = " ".join(f"[[{author}]]" for author in authors)

        return PartialRecord(
            title=title,
            description=description,
            body_text=compose_body_text(page.url, description),
            extra_fields=extra_fields,
        )
