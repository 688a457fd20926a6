"""HTTP fetcher for pages being imported.

Fetches with httpx, follows a bounded number of redirects, lets httpx decode
gzip/deflate/brotli transfer encodings and rejects anything that isn't HTML.
"""

import asyncio
from typing import Optional

import httpx
from bs4 import BeautifulSoup
from rich.console import Console

from link_importer.config import DEFAULT_USER_AGENT
from link_importer.errors import FetchError, InvalidURLError, UnsupportedContentTypeError

console = Console()

DEFAULT_TIMEOUT = 5.0
DEFAULT_MAX_REDIRECTS = 5

HTML_CONTENT_TYPES = {"text/html", "application/xhtml+xml"}

# Body prefixes that identify HTML when no Content-Type is declared
HTML_SNIFF_PREFIXES = (b"<!doctype html", b"<html", b"<head", b"<?xml")


class FetchedPage:
    """A fetched HTML page."""

    def __init__(
        self,
        url: str,
        final_url: str,
        html: str,
        content: bytes = b"",
        status_code: int = 200,
        content_type: Optional[str] = None,
        redirects: int = 0,
    ):
        self.url = url  # As requested, used for the record's location
        self.final_url = final_url  # After redirects
        self.html = html
        self.content = content
        self.status_code = status_code
        self.content_type = content_type
        self.redirects = redirects
        self._soup: Optional[BeautifulSoup] = None

    @property
    def soup(self) -> BeautifulSoup:
        """Parsed document, built on first use and shared by extractors."""
        if self._soup is None:
            self._soup = BeautifulSoup(self.html, "lxml")
        return self._soup


def media_type(content_type: Optional[str]) -> str:
    """Strip parameters from a Content-Type header value."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def looks_like_html(content: bytes) -> bool:
    """Sniff the start of a body for an HTML document."""
    head = content[:512].lstrip().lower()
    return head.startswith(HTML_SNIFF_PREFIXES)


def check_content_type(url: str, content_type: Optional[str], content: bytes) -> None:
    """Raise UnsupportedContentTypeError unless the response is HTML."""
    mime = media_type(content_type)
    if mime in HTML_CONTENT_TYPES:
        return
    if not mime and looks_like_html(content):
        return
    raise UnsupportedContentTypeError(
        f"Unsupported content type {mime or 'unknown'} for {url}",
        url=url,
        content_type=mime or None,
    )


def build_headers(user_agent: Optional[str] = None) -> dict[str, str]:
    return {
        "User-Agent": user_agent or DEFAULT_USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
    }


async def _get_following_redirects(
    client: httpx.AsyncClient,
    url: str,
    headers: dict[str, str],
    max_redirects: int,
) -> tuple[httpx.Response, int]:
    """GET a URL, following at most ``max_redirects`` 3xx hops."""
    response = await client.get(url, headers=headers, follow_redirects=False)
    hops = 0
    while response.is_redirect and response.next_request is not None:
        if hops >= max_redirects:
            raise FetchError(
                f"More than {max_redirects} redirects for {url}",
                url=url,
                reason="redirects",
                status_code=response.status_code,
            )
        hops += 1
        response = await client.send(response.next_request, follow_redirects=False)
    return response, hops


async def fetch_url(
    url: str,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_redirects: int = DEFAULT_MAX_REDIRECTS,
    user_agent: Optional[str] = None,
) -> FetchedPage:
    """Fetch an HTML page.

    Args:
        url: URL to fetch
        client: Shared client to use; a short-lived one is created if omitted
        timeout: Hard deadline for the whole fetch, redirects included
        max_redirects: Maximum number of redirect hops to follow
        user_agent: Override the default User-Agent

    Returns:
        The fetched page, with the final URL after redirects

    Raises:
        FetchError: timeout, connection failure, too many redirects or HTTP >= 400
        UnsupportedContentTypeError: the response isn't HTML
        InvalidURLError: httpx can't make a request out of the URL
    """
    headers = build_headers(user_agent)
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout)

    try:
        response, hops = await asyncio.wait_for(
            _get_following_redirects(client, url, headers, max_redirects),
            timeout=timeout,
        )
    except (asyncio.TimeoutError, httpx.TimeoutException) as e:
        raise FetchError(f"Timed out fetching {url}", url=url, reason="timeout") from e
    except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
        raise InvalidURLError(f"Cannot fetch {url}: {e}", url=url) from e
    except httpx.TooManyRedirects as e:
        raise FetchError(f"Too many redirects for {url}", url=url, reason="redirects") from e
    except httpx.DecodingError as e:
        raise FetchError(f"Could not decode response from {url}", url=url, reason="decoding") from e
    except httpx.TransportError as e:
        raise FetchError(f"Connection failed for {url}: {e}", url=url, reason="connection") from e
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code >= 400:
        raise FetchError(
            f"HTTP {response.status_code} for {url}",
            url=url,
            reason=str(response.status_code),
            status_code=response.status_code,
        )

    content_type = response.headers.get("content-type")
    check_content_type(url, content_type, response.content)

    if hops:
        console.print(f"[dim]Followed {hops} redirect(s): {url} -> {response.url}[/dim]")

    return FetchedPage(
        url=url,
        final_url=str(response.url),
        html=response.text,
        content=response.content,
        status_code=response.status_code,
        content_type=media_type(content_type) or None,
        redirects=hops,
    )
