"""URL canonicalizer used as the dedup key for imported records."""

from urllib.parse import urlsplit

from link_importer.errors import InvalidURLError

# Ports that are implied by the scheme and can be dropped
DEFAULT_PORTS = {
    "http": 80,
    "https": 443,
    "ftp": 21,
    "ws": 80,
    "wss": 443,
}

BARE_URL_PREFIXES = ("http://", "https://")


def canonicalize(raw_url: str) -> str:
    """Normalize a URL into its canonical form.

    Rules, applied in order:
    1. Lower-case scheme and host
    2. Strip the scheme's default port
    3. Strip a trailing "/" when it is the whole path
    4. Leave query string and fragment exactly as given

    Raises:
        InvalidURLError: if the URL has no scheme or host, or a bad port
    """
    if not isinstance(raw_url, str):
        raise InvalidURLError(f"Not a URL: {raw_url!r}")

    url = raw_url.strip()
    if not url or any(ch.isspace() for ch in url):
        raise InvalidURLError(f"Not a URL: {raw_url!r}", url=raw_url)

    try:
        parts = urlsplit(url)
        port = parts.port  # ValueError on out-of-range or non-numeric ports
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL {raw_url!r}: {e}", url=raw_url) from e

    if not parts.scheme or not parts.netloc or not parts.hostname:
        raise InvalidURLError(f"URL needs a scheme and a host: {raw_url!r}", url=raw_url)

    authority_start = len(parts.scheme) + 3
    if url[len(parts.scheme):authority_start] != "://":
        raise InvalidURLError(f"Malformed URL {raw_url!r}", url=raw_url)

    scheme = parts.scheme.lower()
    host = parts.hostname  # urlsplit already lower-cases it
    if ":" in host:
        host = f"[{host}]"  # IPv6 literal

    userinfo, at, _ = parts.netloc.rpartition("@")
    netloc = f"{userinfo}{at}{host}"
    if port is not None and DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{netloc}:{port}"

    # Everything after the authority, untouched
    rest = url[authority_start + len(parts.netloc):]
    if parts.path == "/":
        rest = rest[1:]

    return f"{scheme}://{netloc}{rest}"


def same_resource(url_a: str, url_b: str) -> bool:
    """Check if two URLs point at the same resource."""
    return canonicalize(url_a) == canonicalize(url_b)


def is_bare_url(text: str) -> bool:
    """Check if text is nothing but an http(s) URL."""
    if not text:
        return False
    text = text.strip()
    return text.startswith(BARE_URL_PREFIXES) and not any(ch.isspace() for ch in text)
