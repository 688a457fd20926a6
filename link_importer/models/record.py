"""Record models: extractor output, committed records and import outcomes."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

# Fields with a dedicated attribute on FinalRecord; anything else is an extra field
CORE_FIELDS = (
    "title",
    "location",
    "text",
    "url_tiddler",
    "url_extractor",
    "description",
    "created",
    "modified",
)


class PartialRecord(BaseModel):
    """Metadata extracted from one page.

    ``None`` means the page had no data for that field, which is different
    from an empty value supplied by an override.
    """

    title: Optional[str] = None
    description: Optional[str] = None
    body_text: Optional[str] = None
    extra_fields: dict[str, str] = Field(default_factory=dict)


class FinalRecord(BaseModel):
    """A committed URL record."""

    title: str
    location: str
    text: str
    url_tiddler: bool = True
    url_extractor: Optional[str] = None
    description: Optional[str] = None
    extra_fields: dict[str, str] = Field(default_factory=dict)

    # Injected by the store on commit
    created: Optional[str] = None
    modified: Optional[str] = None

    def to_fields(self) -> dict[str, str]:
        """Flatten to the string field set the store persists."""
        fields = dict(self.extra_fields)
        fields.update({
            "title": self.title,
            "location": self.location,
            "text": self.text,
            "url_tiddler": "true" if self.url_tiddler else "false",
        })
        for name in ("url_extractor", "description", "created", "modified"):
            value = getattr(self, name)
            if value is not None:
                fields[name] = value
        return fields

    @classmethod
    def from_fields(cls, fields: dict[str, str]) -> "FinalRecord":
        """Rebuild a record from a stored field set."""
        extra = {k: v for k, v in fields.items() if k not in CORE_FIELDS}
        return cls(
            title=fields["title"],
            location=fields.get("location", ""),
            text=fields.get("text", ""),
            url_tiddler=fields.get("url_tiddler", "true") == "true",
            url_extractor=fields.get("url_extractor"),
            description=fields.get("description"),
            extra_fields=extra,
            created=fields.get("created"),
            modified=fields.get("modified"),
        )


class ImportStatus(str, Enum):
    """How a single import ended."""

    CREATED = "created"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


# Conventional HTTP mapping for hosts that serve imports over HTTP
HTTP_STATUS = {
    ImportStatus.CREATED: 201,
    ImportStatus.DUPLICATE: 409,
    ImportStatus.REJECTED: 400,
}

ALREADY_HAVE_URL_MESSAGE = "You already have this URL in your wiki"


class ImportOutcome(BaseModel):
    """Result of importing one URL."""

    status: ImportStatus
    url: str
    title: Optional[str] = None
    record: Optional[FinalRecord] = None
    reason: Optional[str] = None  # Short failure tag, e.g. "404", "timeout", "content-type"
    error_kind: Optional[str] = None  # Exception class name
    existing_title: Optional[str] = None  # For duplicates

    @property
    def created(self) -> bool:
        return self.status == ImportStatus.CREATED

    @property
    def http_status(self) -> int:
        return HTTP_STATUS[self.status]

    @property
    def message(self) -> str:
        """User-facing message that never leaks store internals."""
        if self.status == ImportStatus.CREATED:
            return f"Imported {self.url} as {self.title!r}"
        if self.status == ImportStatus.DUPLICATE:
            return ALREADY_HAVE_URL_MESSAGE
        detail = f" ({self.reason})" if self.reason else ""
        return f"Could not import {self.url}{detail}"

    def summary(self) -> dict[str, str]:
        """Confirmed fields of the created record, for the caller."""
        if not self.record:
            return {"title": self.title} if self.title else {}
        return self.record.to_fields()
