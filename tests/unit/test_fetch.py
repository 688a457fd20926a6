"""Tests for the page fetcher."""

import asyncio

import httpx
import pytest

from conftest import BASIC_HTML, PDF_BYTES, mock_url
from link_importer.errors import FetchError, UnsupportedContentTypeError
from link_importer.extractors.fetch import check_content_type, fetch_url, looks_like_html, media_type


class TestContentType:
    """Tests for content type checks."""

    @pytest.mark.parametrize("header,expected", [
        ("text/html; charset=utf-8", "text/html"),
        ("TEXT/HTML", "text/html"),
        ("application/pdf", "application/pdf"),
        (None, ""),
        ("", ""),
    ])
    def test_media_type(self, header, expected):
        assert media_type(header) == expected

    def test_sniffing(self):
        assert looks_like_html(b"  <!DOCTYPE html><html></html>")
        assert looks_like_html(b"<html><body></body></html>")
        assert not looks_like_html(PDF_BYTES)

    def test_html_accepted(self):
        check_content_type("http://x", "application/xhtml+xml", b"")

    def test_undeclared_html_accepted(self):
        check_content_type("http://x", None, BASIC_HTML.encode())

    @pytest.mark.parametrize("header,content", [
        ("application/pdf", PDF_BYTES),
        ("image/png", b"\x89PNG"),
        (None, PDF_BYTES),
        ("application/pdf", b"<html></html>"),
    ])
    def test_rejected(self, header, content):
        with pytest.raises(UnsupportedContentTypeError):
            check_content_type("http://x", header, content)


class TestFetchUrl:
    """Tests for fetch_url against a mock site."""

    @pytest.mark.asyncio
    async def test_basic(self, client):
        page = await fetch_url(mock_url("/basic.html"), client=client)
        assert page.url == mock_url("/basic.html")
        assert page.final_url == mock_url("/basic.html")
        assert page.status_code == 200
        assert page.content_type == "text/html"
        assert page.redirects == 0
        assert page.soup.title.get_text() == "Blog"

    @pytest.mark.asyncio
    async def test_redirect(self, client):
        """The requested URL is kept; final_url points at the target."""
        page = await fetch_url(mock_url("/3xx.html"), client=client)
        assert page.url == mock_url("/3xx.html")
        assert page.final_url == mock_url("/basic.html")
        assert page.redirects == 1
        assert "Blog" in page.html

    @pytest.mark.asyncio
    async def test_redirect_loop(self, client):
        with pytest.raises(FetchError) as exc_info:
            await fetch_url(mock_url("/loop.html"), client=client, max_redirects=3)
        assert exc_info.value.reason == "redirects"

    @pytest.mark.asyncio
    async def test_redirect_limit_zero(self, client):
        with pytest.raises(FetchError) as exc_info:
            await fetch_url(mock_url("/3xx.html"), client=client, max_redirects=0)
        assert exc_info.value.reason == "redirects"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path,status", [
        ("/404.html", 404),
        ("/410.html", 410),
    ])
    async def test_http_error(self, client, path, status):
        with pytest.raises(FetchError) as exc_info:
            await fetch_url(mock_url(path), client=client)
        assert exc_info.value.reason == str(status)
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_pdf_rejected(self, client):
        with pytest.raises(UnsupportedContentTypeError) as exc_info:
            await fetch_url(mock_url("/blank.pdf"), client=client)
        assert exc_info.value.content_type == "application/pdf"

    @pytest.mark.asyncio
    async def test_missing_content_type_sniffed(self, routes, client):
        routes["/bare.html"] = lambda request: httpx.Response(200, content=BASIC_HTML.encode())
        page = await fetch_url(mock_url("/bare.html"), client=client)
        assert page.content_type is None
        assert "Blog" in page.html

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", ["/basic-compressed.html", "/basic-compress-brotli.html"])
    async def test_compressed(self, client, path):
        page = await fetch_url(mock_url(path), client=client)
        assert page.soup.title.get_text() == "Blog"

    @pytest.mark.asyncio
    async def test_timeout(self, routes, client):
        """A server that never answers in time fails with reason 'timeout'."""
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text=BASIC_HTML, headers={"Content-Type": "text/html"})

        routes["/slow.html"] = slow
        with pytest.raises(FetchError) as exc_info:
            await fetch_url(mock_url("/slow.html"), client=client, timeout=0.05)
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error(self, routes, client):
        def refuse(request):
            raise httpx.ConnectError("Connection refused", request=request)

        routes["/down.html"] = refuse
        with pytest.raises(FetchError) as exc_info:
            await fetch_url(mock_url("/down.html"), client=client)
        assert exc_info.value.reason == "connection"

    @pytest.mark.asyncio
    async def test_user_agent_sent(self, routes, client):
        seen = {}

        def capture(request):
            seen["ua"] = request.headers.get("user-agent")
            return httpx.Response(200, text=BASIC_HTML, headers={"Content-Type": "text/html"})

        routes["/ua.html"] = capture
        await fetch_url(mock_url("/ua.html"), client=client, user_agent="test-agent/1.0")
        assert seen["ua"] == "test-agent/1.0"
