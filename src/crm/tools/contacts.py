"""Contact CRUD — list, get, create, update and delete contacts.

Every query is scoped to ``owner_id``; a contact id belonging to another
owner behaves exactly like a missing one. Tag names are resolved through the
tag registry on every write, and each mutation appends one activity row.
"""

from __future__ import annotations

import logging
import math
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

import asyncpg

from crm.errors import InvalidInput, NotFound, Unavailable, store_errors
from crm.models import (
    DEFAULT_TAG_COLOR,
    ActivityAction,
    ActivityDetails,
    Contact,
    ContactFields,
    ContactPage,
    EntityType,
    Pagination,
    SortOrder,
    TagOrder,
    TagRef,
    TagReference,
    UnresolvedTagRef,
    to_tag_ref,
)
from crm.tools.activity import activity_record
from crm.tools.tags import tag_find_by_name, tag_list, tag_resolve_many, tag_resolve_refs

logger = logging.getLogger(__name__)

_SORT_FIELDS = {
    "name",
    "email",
    "company",
    "created_at",
    "updated_at",
    "last_interaction_at",
}
_SORT_ALIASES = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "lastInteraction": "last_interaction_at",
}
_SEARCH_COLUMNS = ("name", "email", "company", "phone", "notes")
_OPTIONAL_FIELDS = ("phone", "company", "notes")
_WRITABLE_FIELDS = {"name", "email", *_OPTIONAL_FIELDS}


def _escape_like(term: str) -> str:
    """Escape LIKE wildcards so *term* matches literally."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _clean_optional(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _clean_required(fields: Mapping[str, Any]) -> tuple[str, str]:
    name = str(fields.get("name") or "").strip()
    email = str(fields.get("email") or "").strip()
    if not name or not email:
        raise InvalidInput("Name and email are required")
    return name, email


def _field_map(fields: ContactFields | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(fields, ContactFields):
        return fields.model_dump(exclude_unset=True)
    unknown = set(fields) - _WRITABLE_FIELDS
    if unknown:
        raise InvalidInput(f"Unknown contact field(s): {', '.join(sorted(unknown))}")
    return dict(fields)


def _tag_references(
    tag_ids: Iterable[uuid.UUID], refs: Mapping[uuid.UUID, TagRef]
) -> list[TagReference]:
    return [refs.get(tag_id) or UnresolvedTagRef(id=tag_id) for tag_id in tag_ids]


def _parse_contact(row: asyncpg.Record, refs: Mapping[uuid.UUID, TagRef]) -> Contact:
    return Contact(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        email=row["email"],
        phone=row["phone"],
        company=row["company"],
        notes=row["notes"],
        tags=_tag_references(row["tag_ids"] or [], refs),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        last_interaction_at=row["last_interaction_at"],
    )


async def _resolve_refs_or_empty(
    pool: asyncpg.Pool, owner_id: str, tag_ids: Iterable[uuid.UUID]
) -> dict[uuid.UUID, TagRef]:
    """Resolve tag refs for a read path, degrading to unresolved refs on failure."""
    try:
        return await tag_resolve_refs(pool, owner_id, tag_ids)
    except (Unavailable, asyncpg.PostgresError):
        logger.warning(
            "Tag resolution failed for owner %s; returning unresolved tag references",
            owner_id,
            exc_info=True,
        )
        return {}


async def _insert_contact(
    pool: asyncpg.Pool,
    owner_id: str,
    fields: Mapping[str, Any],
    tag_names: Iterable[str | None] = (),
    *,
    tag_color: str = DEFAULT_TAG_COLOR,
) -> Contact:
    """Validate, resolve tags and insert one contact without logging activity.

    Tags created on the way get *tag_color*.
    """
    name, email = _clean_required(fields)
    tags = await tag_resolve_many(pool, owner_id, tag_names, color=tag_color)
    with store_errors(conflict_message=f"Contact with email {email} already exists"):
        row = await pool.fetchrow(
            """
            INSERT INTO contacts (owner_id, name, email, phone, company, notes, tag_ids)
            VALUES ($1, $2, $3, $4, $5, $6, $7::uuid[])
            RETURNING *
            """,
            owner_id,
            name,
            email,
            _clean_optional(fields.get("phone")),
            _clean_optional(fields.get("company")),
            _clean_optional(fields.get("notes")),
            [tag.id for tag in tags],
        )
    return _parse_contact(row, {tag.id: to_tag_ref(tag) for tag in tags})


async def contact_list(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    search: str | None = None,
    tag: str | None = None,
    sort_by: str = "created_at",
    sort_order: SortOrder | str = SortOrder.DESC,
    page: int = 1,
    page_size: int = 50,
) -> ContactPage:
    """List the owner's contacts with search, tag filter, sort and pagination.

    ``search`` is a case-insensitive substring matched against name, email,
    company, phone and notes (any one matching is enough). ``tag`` is a tag
    name; an unknown name yields an empty page rather than an error. Pages
    are 1-indexed. ``available_tags`` is always the owner's full tag list by
    name, independent of the filter.
    """
    column = _SORT_ALIASES.get(sort_by, sort_by)
    if column not in _SORT_FIELDS:
        raise InvalidInput(f"Unsupported sort field: {sort_by!r}")
    try:
        direction = SortOrder(str(sort_order).lower())
    except ValueError as exc:
        raise InvalidInput(f"Unsupported sort order: {sort_order!r}") from exc
    if page < 1:
        raise InvalidInput("page must be >= 1")
    if page_size <= 0:
        raise InvalidInput("page_size must be a positive integer")

    available_tags = await tag_list(pool, owner_id, TagOrder.NAME)
    skip = (page - 1) * page_size

    conditions = ["owner_id = $1"]
    args: list[Any] = [owner_id]
    idx = 2

    if search:
        pattern = f"%{_escape_like(search)}%"
        matches = " OR ".join(f"{col} ILIKE ${idx} ESCAPE '\\'" for col in _SEARCH_COLUMNS)
        conditions.append(f"({matches})")
        args.append(pattern)
        idx += 1

    if tag:
        tag_row = await tag_find_by_name(pool, owner_id, tag)
        if tag_row is None:
            return ContactPage(
                contacts=[],
                available_tags=available_tags,
                pagination=Pagination(
                    current_page=page,
                    page_size=page_size,
                    total_pages=0,
                    total_count=0,
                    has_more=False,
                ),
            )
        conditions.append(f"${idx} = ANY(tag_ids)")
        args.append(tag_row.id)
        idx += 1

    where = " AND ".join(conditions)
    order = "ASC" if direction is SortOrder.ASC else "DESC"

    with store_errors():
        total = await pool.fetchval(f"SELECT count(*) FROM contacts WHERE {where}", *args) or 0
        rows = await pool.fetch(
            f"""
            SELECT * FROM contacts
            WHERE {where}
            ORDER BY {column} {order} NULLS LAST, id {order}
            OFFSET ${idx} LIMIT ${idx + 1}
            """,
            *args,
            skip,
            page_size,
        )

    refs = await _resolve_refs_or_empty(
        pool, owner_id, (tag_id for row in rows for tag_id in row["tag_ids"] or [])
    )
    contacts = [_parse_contact(row, refs) for row in rows]
    return ContactPage(
        contacts=contacts,
        available_tags=available_tags,
        pagination=Pagination(
            current_page=page,
            page_size=page_size,
            total_pages=math.ceil(total / page_size),
            total_count=total,
            has_more=skip + len(contacts) < total,
        ),
    )


async def contact_get(pool: asyncpg.Pool, owner_id: str, contact_id: uuid.UUID) -> Contact:
    with store_errors():
        row = await pool.fetchrow(
            "SELECT * FROM contacts WHERE id = $1 AND owner_id = $2",
            contact_id,
            owner_id,
        )
    if row is None:
        raise NotFound(EntityType.CONTACT, contact_id)
    refs = await _resolve_refs_or_empty(pool, owner_id, row["tag_ids"] or [])
    return _parse_contact(row, refs)


async def contact_count(pool: asyncpg.Pool, owner_id: str) -> int:
    with store_errors():
        return await pool.fetchval(
            "SELECT count(*) FROM contacts WHERE owner_id = $1", owner_id
        ) or 0


async def contact_email_exists(pool: asyncpg.Pool, owner_id: str, email: str) -> bool:
    with store_errors():
        return bool(
            await pool.fetchval(
                "SELECT EXISTS (SELECT 1 FROM contacts WHERE owner_id = $1 AND email = $2)",
                owner_id,
                email.strip(),
            )
        )


async def contact_create(
    pool: asyncpg.Pool,
    owner_id: str,
    fields: ContactFields | Mapping[str, Any],
    tag_names: Iterable[str | None] = (),
) -> Contact:
    """Create a contact, resolving (and counting) each tag name.

    Raises:
        InvalidInput: Name or email is missing or blank.
        Conflict: The owner already has a contact with this email.
    """
    contact = await _insert_contact(pool, owner_id, _field_map(fields), tag_names)
    await activity_record(
        pool,
        owner_id,
        ActivityAction.CREATED_CONTACT,
        EntityType.CONTACT,
        contact.id,
        contact.name,
    )
    return contact


async def contact_update(
    pool: asyncpg.Pool,
    owner_id: str,
    contact_id: uuid.UUID,
    fields: ContactFields | Mapping[str, Any],
    tag_names: Iterable[str | None] | None = None,
) -> Contact:
    """Update the provided fields of a contact owned by *owner_id*.

    ``tag_names=None`` leaves tags untouched; any sequence (even empty)
    replaces the contact's tag set. Every listed name is re-asserted through
    the registry, so re-listing an existing tag increments it again.

    Raises:
        NotFound: No such contact for this owner.
        InvalidInput: Name or email supplied blank, or an unknown field.
        Conflict: The new email is already used by another of the owner's contacts.
    """
    changes = _field_map(fields)
    with store_errors():
        existing = await pool.fetchrow(
            "SELECT * FROM contacts WHERE id = $1 AND owner_id = $2",
            contact_id,
            owner_id,
        )
    if existing is None:
        raise NotFound(EntityType.CONTACT, contact_id)

    to_update: dict[str, Any] = {}
    for key in ("name", "email"):
        if key in changes:
            value = str(changes[key] or "").strip()
            if not value:
                raise InvalidInput("Name and email are required")
            to_update[key] = value
    for key in _OPTIONAL_FIELDS:
        if key in changes:
            to_update[key] = _clean_optional(changes[key])

    new_tag_ids: list[uuid.UUID] | None = None
    if tag_names is not None:
        tags = await tag_resolve_many(pool, owner_id, tag_names)
        new_tag_ids = [tag.id for tag in tags]
        to_update["tag_ids"] = new_tag_ids

    set_clauses = ["updated_at = now()"]
    params: list[Any] = [contact_id, owner_id]
    for idx, (col, val) in enumerate(to_update.items(), start=3):
        cast = "::uuid[]" if col == "tag_ids" else ""
        set_clauses.append(f"{col} = ${idx}{cast}")
        params.append(val)

    conflict = f"Contact with email {to_update.get('email')} already exists"
    with store_errors(conflict_message=conflict):
        row = await pool.fetchrow(
            f"""
            UPDATE contacts SET {", ".join(set_clauses)}
            WHERE id = $1 AND owner_id = $2
            RETURNING *
            """,
            *params,
        )
    if row is None:
        raise NotFound(EntityType.CONTACT, contact_id)

    old_tag_ids = list(existing["tag_ids"] or [])
    refs = await _resolve_refs_or_empty(pool, owner_id, [*old_tag_ids, *(new_tag_ids or [])])
    contact = _parse_contact(row, refs)

    before: dict[str, str] = {}
    after: dict[str, str] = {}
    for col in ("name", "email", *_OPTIONAL_FIELDS):
        if col in to_update and existing[col] != row[col]:
            before[col] = existing[col] or ""
            after[col] = row[col] or ""
    if new_tag_ids is not None and set(new_tag_ids) != set(old_tag_ids):
        before["tags"] = _joined_tag_names(old_tag_ids, refs)
        after["tags"] = _joined_tag_names(new_tag_ids, refs)

    await activity_record(
        pool,
        owner_id,
        ActivityAction.UPDATED_CONTACT,
        EntityType.CONTACT,
        contact_id,
        existing["name"],
        details=ActivityDetails(before=before, after=after),
    )
    return contact


def _joined_tag_names(tag_ids: Iterable[uuid.UUID], refs: Mapping[uuid.UUID, TagRef]) -> str:
    return ";".join(sorted(refs[t].name if t in refs else str(t) for t in tag_ids))


async def contact_delete(pool: asyncpg.Pool, owner_id: str, contact_id: uuid.UUID) -> None:
    """Delete a contact. Tag usage counts and past activity rows are left as they are."""
    with store_errors():
        name = await pool.fetchval(
            "DELETE FROM contacts WHERE id = $1 AND owner_id = $2 RETURNING name",
            contact_id,
            owner_id,
        )
    if name is None:
        raise NotFound(EntityType.CONTACT, contact_id)
    await activity_record(
        pool,
        owner_id,
        ActivityAction.DELETED_CONTACT,
        EntityType.CONTACT,
        contact_id,
        name,
    )
