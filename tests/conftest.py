"""Shared test fixtures and configuration."""

import gzip

import brotli
import httpx
import pytest

from link_importer.config import Settings
from link_importer.store import RecordStore

BASE_URL = "http://testserver"

BASIC_HTML = """<!DOCTYPE html>
<html>
<head><title>Blog</title></head>
<body><p>Hello</p></body>
</html>
"""

OPENGRAPH_HTML = """<!DOCTYPE html>
<html>
<head>
<title>Not this title</title>
<meta property="og:title" content="OpenGraph Test">
<meta property="og:description" content="This is a test that opengraph meta elements work">
</head>
<body></body>
</html>
"""

TWITTER_CARD_HTML = """<!DOCTYPE html>
<html>
<head>
<meta name="twitter:card" content="summary">
<meta name="twitter:title" content="Twitter Card Test">
<meta name="twitter:description" content="This is a test that Twitter card meta elements work">
</head>
<body></body>
</html>
"""

GITHUB_HTML = """<!DOCTYPE html>
<html>
<head>
<title>GitHub - hoelzro/tiddlywiki-first-class-urls: An experimental plugin to make importing tiddlers easier</title>
<meta name="octolytics-dimension-repository_nwo" content="hoelzro/tiddlywiki-first-class-urls">
<meta property="og:title" content="GitHub - hoelzro/tiddlywiki-first-class-urls: An experimental plugin to make importing tiddlers easier">
<meta property="og:description" content="An experimental plugin to make importing tiddlers easier - hoelzro/tiddlywiki-first-class-urls">
<meta property="og:url" content="https://github.com/hoelzro/tiddlywiki-first-class-urls">
</head>
<body></body>
</html>
"""

GOODREADS_HTML = """<!DOCTYPE html>
<html>
<head>
<title>Random Title by Robert Hoelz | Goodreads</title>
<meta name="description" content="foo bar baz">
</head>
<body>
<h1 data-testid="bookTitle">Random Title</h1>
<span class="ContributorLink__name">Robert Hoelz</span>
</body>
</html>
"""

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\ntrailer\n<< /Root 1 0 R >>\n%%EOF\n"

HTML_HEADERS = {"Content-Type": "text/html; charset=utf-8"}


def html_response(html: str, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, text=html, headers=HTML_HEADERS)


def mock_url(path: str) -> str:
    return f"{BASE_URL}{path}"


def default_routes() -> dict:
    """Path -> request handler, mirroring a small static site."""
    return {
        "/basic.html": lambda request: html_response(BASIC_HTML),
        "/opengraph.html": lambda request: html_response(OPENGRAPH_HTML),
        "/twitter-card.html": lambda request: html_response(TWITTER_CARD_HTML),
        "/github.html": lambda request: html_response(GITHUB_HTML),
        "/goodreads.html": lambda request: html_response(GOODREADS_HTML),
        "/3xx.html": lambda request: httpx.Response(302, headers={"Location": "/basic.html"}),
        "/loop.html": lambda request: httpx.Response(302, headers={"Location": "/loop.html"}),
        "/blank.pdf": lambda request: httpx.Response(
            200, content=PDF_BYTES, headers={"Content-Type": "application/pdf"}
        ),
        "/410.html": lambda request: html_response("<html><body>Gone</body></html>", 410),
        "/basic-compressed.html": lambda request: httpx.Response(
            200,
            content=gzip.compress(BASIC_HTML.encode()),
            headers={**HTML_HEADERS, "Content-Encoding": "gzip"},
        ),
        "/basic-compress-brotli.html": lambda request: httpx.Response(
            200,
            content=brotli.compress(BASIC_HTML.encode()),
            headers={**HTML_HEADERS, "Content-Encoding": "br"},
        ),
    }


def make_client(routes: dict) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered from ``routes``; unknown paths 404."""
    async def handler(request: httpx.Request) -> httpx.Response:
        route = routes.get(request.url.path)
        if route is None:
            return html_response("<html><body>Not found</body></html>", 404)
        response = route(request)
        if not isinstance(response, httpx.Response):
            response = await response
        return response

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def routes() -> dict:
    """Mutable route table; tests add their own pages."""
    return default_routes()


@pytest.fixture
def client(routes: dict) -> httpx.AsyncClient:
    return make_client(routes)


@pytest.fixture
def store() -> RecordStore:
    """In-memory record store."""
    return RecordStore()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(store_path=tmp_path / "store.json", fetch_timeout=2.0, max_redirects=3, max_concurrent=4)
