"""Pydantic models for contacts, tags, activities and dashboard snapshots.

Every tool in :mod:`crm.tools` returns one of these models rather than a raw
``asyncpg.Record`` so callers get a stable, serialisable shape.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field

DEFAULT_TAG_COLOR = "#3B82F6"

# Colors handed out to tags by listing position on the dashboard.
DEFAULT_PALETTE: tuple[str, ...] = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#EC4899",
    "#14B8A6",
    "#F97316",
    "#6366F1",
    "#84CC16",
)

NO_COMPANY = "No Company"


class EntityType(enum.StrEnum):
    """Kind of entity an activity row refers to."""

    CONTACT = "Contact"
    TAG = "Tag"


class ActivityAction(enum.StrEnum):
    """Verb phrases written to the activity log."""

    CREATED_CONTACT = "Created contact"
    UPDATED_CONTACT = "Updated contact"
    DELETED_CONTACT = "Deleted contact"
    IMPORTED_CONTACTS = "Imported contacts"
    EXPORTED_CONTACTS = "Exported contacts"
    CREATED_TAG = "Created tag"
    UPDATED_TAG = "Updated tag"
    DELETED_TAG = "Deleted tag"


class TagOrder(enum.StrEnum):
    """Listing order for tags."""

    USAGE = "usage"  # usage_count desc, for browse/dashboard views
    NAME = "name"  # name asc, for the filter facet on contact listings


class SortOrder(enum.StrEnum):
    ASC = "asc"
    DESC = "desc"


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


class Tag(BaseModel):
    """A named, colored tag owned by a single user."""

    id: UUID
    owner_id: str
    name: str
    color: str = DEFAULT_TAG_COLOR
    usage_count: int = 0
    created_at: datetime
    updated_at: datetime


class TagRef(BaseModel):
    """Lightweight resolved tag reference embedded in contact payloads."""

    id: UUID
    name: str
    color: str


class UnresolvedTagRef(BaseModel):
    """A tag reference whose tag could not be resolved (deleted or lookup failed)."""

    id: UUID
    resolved: bool = False


TagReference = TagRef | UnresolvedTagRef


def to_tag_ref(tag: Tag) -> TagRef:
    """Project a full :class:`Tag` onto the reference shape used in contacts."""
    return TagRef(id=tag.id, name=tag.name, color=tag.color)


def tag_ref_names(refs: Iterable[TagReference]) -> list[str]:
    """Return the names of resolved references, skipping unresolved ones."""
    return [ref.name for ref in refs if isinstance(ref, TagRef)]


# ---------------------------------------------------------------------------
# Contacts
# ---------------------------------------------------------------------------


class ContactFields(BaseModel):
    """Writable contact fields supplied on create."""

    name: str | None = None
    email: str | None = None
    phone: str | None = None
    company: str | None = None
    notes: str | None = None


class Contact(BaseModel):
    """A contact record with its tag references."""

    id: UUID
    owner_id: str
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    notes: str | None = None
    tags: list[TagReference] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    last_interaction_at: datetime | None = None


class Pagination(BaseModel):
    """Page metadata returned alongside list results."""

    current_page: int
    page_size: int
    total_pages: int
    total_count: int
    has_more: bool


class ContactPage(BaseModel):
    """One page of contacts plus the owner's full tag facet."""

    contacts: list[Contact]
    available_tags: list[Tag]
    pagination: Pagination


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------


class ActivityDetails(BaseModel):
    """Optional before/after snapshot attached to an activity."""

    before: dict[str, str] = Field(default_factory=dict)
    after: dict[str, str] = Field(default_factory=dict)
    metadata: dict[str, str] = Field(default_factory=dict)


class Activity(BaseModel):
    """An immutable audit-trail entry."""

    id: UUID
    owner_id: str
    action: str
    entity_type: str
    entity_id: UUID
    entity_name: str
    details: ActivityDetails | None = None
    timestamp: datetime


class ActivityPage(BaseModel):
    items: list[Activity]
    page: int
    page_size: int
    total_count: int
    has_more: bool


# ---------------------------------------------------------------------------
# CSV import
# ---------------------------------------------------------------------------


class ImportReport(BaseModel):
    """Outcome of a CSV import; ``errors`` is truncated, ``error_count`` is not."""

    total_processed: int
    success_count: int
    error_count: int
    errors: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class CompanyBucket(BaseModel):
    company: str
    count: int
    placeholder: bool = False


class TimelineDay(BaseModel):
    day: int  # 1 (oldest) .. N (today)
    date: date
    count: int


class TagSlice(BaseModel):
    id: UUID
    name: str
    count: int
    color: str


class DashboardStats(BaseModel):
    contacts_count: int
    activities_count: int
    tags_count: int
    recent_activities: list[Activity]
    recent_count: int


class DashboardSnapshot(BaseModel):
    stats: DashboardStats
    companies: list[CompanyBucket]
    timeline: list[TimelineDay]
    tags: list[TagSlice]
