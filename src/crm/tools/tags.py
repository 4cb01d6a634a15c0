"""Tag registry — tag identity, color and usage counts per owner.

``usage_count`` is a monotonic "times asserted" counter: every contact write
that names a tag increments it, and nothing ever decrements it (contact
updates and deletes leave it alone). Dashboard ordering relies on this.
"""

from __future__ import annotations

import logging
import re
import uuid
from collections.abc import Iterable

import asyncpg

from crm.errors import Conflict, InvalidInput, NotFound, store_errors
from crm.models import (
    DEFAULT_TAG_COLOR,
    ActivityAction,
    ActivityDetails,
    EntityType,
    Tag,
    TagOrder,
    TagRef,
)
from crm.tools.activity import activity_record

logger = logging.getLogger(__name__)

_HEX_COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

_ORDER_SQL = {
    TagOrder.USAGE: "usage_count DESC, name ASC",
    TagOrder.NAME: "name ASC",
}


def _parse_tag(row: asyncpg.Record) -> Tag:
    return Tag(
        id=row["id"],
        owner_id=row["owner_id"],
        name=row["name"],
        color=row["color"],
        usage_count=row["usage_count"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def normalize_tag_name(name: str | None) -> str:
    """Strip *name*; blank names are rejected. Matching stays case-sensitive."""
    normalized = (name or "").strip()
    if not normalized:
        raise InvalidInput("Tag name is required")
    return normalized


def _validate_color(color: str) -> str:
    if _HEX_COLOR_PATTERN.fullmatch(color) is None:
        raise InvalidInput(f"Invalid tag color {color!r}; expected '#RRGGBB'")
    return color


def unique_tag_names(names: Iterable[str | None]) -> list[str]:
    """Normalize *names*, dropping blanks and repeats while keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in names:
        name = (raw or "").strip()
        if name and name not in seen:
            seen.add(name)
            result.append(name)
    return result


async def tag_resolve_or_create(
    pool: asyncpg.Pool,
    owner_id: str,
    name: str,
    *,
    color: str = DEFAULT_TAG_COLOR,
) -> Tag:
    """Find-or-create a tag by exact name and bump its usage count.

    A single conditional upsert keyed on ``(owner_id, name)``: concurrent
    callers for the same name always converge on one row. A new tag starts
    at zero and receives the same increment as an existing one, so it is
    stored with ``usage_count = 1``.
    """
    tag_name = normalize_tag_name(name)
    with store_errors():
        row = await pool.fetchrow(
            """
            INSERT INTO tags (owner_id, name, color, usage_count)
            VALUES ($1, $2, $3, 1)
            ON CONFLICT (owner_id, name) DO UPDATE
                SET usage_count = tags.usage_count + 1,
                    updated_at = now()
            RETURNING *
            """,
            owner_id,
            tag_name,
            color,
        )
    return _parse_tag(row)


async def tag_resolve_many(
    pool: asyncpg.Pool,
    owner_id: str,
    names: Iterable[str | None],
    *,
    color: str = DEFAULT_TAG_COLOR,
) -> list[Tag]:
    """Resolve-or-create every distinct non-blank name in *names*."""
    return [
        await tag_resolve_or_create(pool, owner_id, name, color=color)
        for name in unique_tag_names(names)
    ]


async def tag_list(
    pool: asyncpg.Pool,
    owner_id: str,
    order_by: TagOrder = TagOrder.USAGE,
) -> list[Tag]:
    """List all of the owner's tags by usage (desc) or by name (asc)."""
    order_sql = _ORDER_SQL[TagOrder(order_by)]
    with store_errors():
        rows = await pool.fetch(
            f"SELECT * FROM tags WHERE owner_id = $1 ORDER BY {order_sql}",
            owner_id,
        )
    return [_parse_tag(row) for row in rows]


async def tag_get(pool: asyncpg.Pool, owner_id: str, tag_id: uuid.UUID) -> Tag:
    with store_errors():
        row = await pool.fetchrow(
            "SELECT * FROM tags WHERE id = $1 AND owner_id = $2",
            tag_id,
            owner_id,
        )
    if row is None:
        raise NotFound(EntityType.TAG, tag_id)
    return _parse_tag(row)


async def tag_find_by_name(pool: asyncpg.Pool, owner_id: str, name: str) -> Tag | None:
    """Look up a tag by exact name without touching its usage count."""
    with store_errors():
        row = await pool.fetchrow(
            "SELECT * FROM tags WHERE owner_id = $1 AND name = $2",
            owner_id,
            name.strip(),
        )
    return _parse_tag(row) if row is not None else None


async def tag_resolve_refs(
    pool: asyncpg.Pool,
    owner_id: str,
    tag_ids: Iterable[uuid.UUID],
) -> dict[uuid.UUID, TagRef]:
    """Map tag ids to ``{id, name, color}`` refs; ids without a live tag are absent."""
    ids = list(dict.fromkeys(tag_ids))
    if not ids:
        return {}
    with store_errors():
        rows = await pool.fetch(
            "SELECT id, name, color FROM tags WHERE owner_id = $1 AND id = ANY($2::uuid[])",
            owner_id,
            ids,
        )
    return {row["id"]: TagRef(id=row["id"], name=row["name"], color=row["color"]) for row in rows}


async def tag_count(pool: asyncpg.Pool, owner_id: str) -> int:
    with store_errors():
        return await pool.fetchval("SELECT count(*) FROM tags WHERE owner_id = $1", owner_id) or 0


async def tag_create(
    pool: asyncpg.Pool,
    owner_id: str,
    name: str,
    color: str | None = None,
    *,
    default_color: str = DEFAULT_TAG_COLOR,
) -> Tag:
    """Explicitly create a tag with zero usage.

    Raises:
        Conflict: The owner already has a tag with this name.
    """
    tag_name = normalize_tag_name(name)
    tag_color = _validate_color(color or default_color)
    with store_errors():
        row = await pool.fetchrow(
            """
            INSERT INTO tags (owner_id, name, color, usage_count)
            VALUES ($1, $2, $3, 0)
            ON CONFLICT (owner_id, name) DO NOTHING
            RETURNING *
            """,
            owner_id,
            tag_name,
            tag_color,
        )
    if row is None:
        raise Conflict(f"Tag {tag_name!r} already exists")

    tag = _parse_tag(row)
    await activity_record(
        pool, owner_id, ActivityAction.CREATED_TAG, EntityType.TAG, tag.id, tag.name
    )
    return tag


async def tag_update(
    pool: asyncpg.Pool,
    owner_id: str,
    tag_id: uuid.UUID,
    name: str | None = None,
    color: str | None = None,
) -> Tag:
    """Rename and/or recolor a tag owned by *owner_id*.

    Raises:
        NotFound: No such tag for this owner.
        Conflict: The new name is already taken by another of the owner's tags.
    """
    existing = await tag_get(pool, owner_id, tag_id)
    new_name = normalize_tag_name(name) if name is not None else None
    new_color = _validate_color(color) if color is not None else None
    if new_name is None and new_color is None:
        return existing

    with store_errors(conflict_message=f"Tag {new_name!r} already exists"):
        row = await pool.fetchrow(
            """
            UPDATE tags
            SET name = COALESCE($3, name),
                color = COALESCE($4, color),
                updated_at = now()
            WHERE id = $1 AND owner_id = $2
            RETURNING *
            """,
            tag_id,
            owner_id,
            new_name,
            new_color,
        )
    if row is None:
        raise NotFound(EntityType.TAG, tag_id)

    tag = _parse_tag(row)
    before: dict[str, str] = {}
    after: dict[str, str] = {}
    for field in ("name", "color"):
        old, new = getattr(existing, field), getattr(tag, field)
        if old != new:
            before[field], after[field] = old, new
    await activity_record(
        pool,
        owner_id,
        ActivityAction.UPDATED_TAG,
        EntityType.TAG,
        tag.id,
        existing.name,
        details=ActivityDetails(before=before, after=after),
    )
    return tag


async def tag_delete(pool: asyncpg.Pool, owner_id: str, tag_id: uuid.UUID) -> None:
    """Delete a tag. Contacts keep their (now dangling) references to it."""
    with store_errors():
        name = await pool.fetchval(
            "DELETE FROM tags WHERE id = $1 AND owner_id = $2 RETURNING name",
            tag_id,
            owner_id,
        )
    if name is None:
        raise NotFound(EntityType.TAG, tag_id)
    logger.info("Deleted tag %s (%s) for owner %s", tag_id, name, owner_id)
    await activity_record(pool, owner_id, ActivityAction.DELETED_TAG, EntityType.TAG, tag_id, name)
