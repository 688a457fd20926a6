"""Error taxonomy for the URL import pipeline."""

from typing import Optional


class LinkImportError(Exception):
    """Base class for import pipeline errors."""

    def __init__(self, message: str, *, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.url = url


class InvalidURLError(LinkImportError):
    """Malformed URL, rejected before any I/O."""


class FetchError(LinkImportError):
    """Network failure, timeout or HTTP error status while fetching a page.

    ``reason`` is a short machine-friendly tag: ``"timeout"``, ``"connection"``,
    ``"redirects"``, ``"decoding"`` or the HTTP status code as a string.
    """

    def __init__(
        self,
        message: str,
        *,
        url: Optional[str] = None,
        reason: str = "unknown",
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message, url=url)
        self.reason = reason
        self.status_code = status_code


class UnsupportedContentTypeError(LinkImportError):
    """The page is not HTML (PDFs, images, ...)."""

    def __init__(self, message: str, *, url: Optional[str] = None, content_type: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.content_type = content_type


class ExtractionError(LinkImportError):
    """An extractor found no usable structure in the page."""


class DuplicateURLError(LinkImportError):
    """A record with the same canonical URL already exists."""

    def __init__(self, message: str, *, url: Optional[str] = None, existing_title: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.existing_title = existing_title


class TitleCollisionError(LinkImportError):
    """Title taken by another record; the merge engine retries with the next disambiguator."""

    def __init__(self, message: str, *, url: Optional[str] = None, title: Optional[str] = None) -> None:
        super().__init__(message, url=url)
        self.title = title


class StaleBatchError(LinkImportError):
    """Pending batch was written by someone else since it was read."""

    def __init__(self, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Pending batch version {actual_version} does not match expected {expected_version}"
        )
        self.expected_version = expected_version
        self.actual_version = actual_version


def failure_reason(error: Exception) -> str:
    """Short tag describing why an import failed."""
    if isinstance(error, FetchError):
        return error.reason
    if isinstance(error, UnsupportedContentTypeError):
        return "content-type"
    if isinstance(error, ExtractionError):
        return "extraction"
    if isinstance(error, InvalidURLError):
        return "invalid-url"
    if isinstance(error, DuplicateURLError):
        return "duplicate"
    return type(error).__name__


__all__ = [
    "LinkImportError",
    "InvalidURLError",
    "FetchError",
    "UnsupportedContentTypeError",
    "ExtractionError",
    "DuplicateURLError",
    "TitleCollisionError",
    "StaleBatchError",
    "failure_reason",
]
