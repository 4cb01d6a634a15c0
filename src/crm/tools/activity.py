"""Activity log — append-only audit trail of contact and tag mutations.

Writes are best-effort: :func:`activity_record` logs and swallows store
failures so that an unavailable audit trail never blocks the mutation that
triggered it.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import asyncpg

from crm.errors import InvalidInput, store_errors
from crm.models import Activity, ActivityDetails, ActivityPage

logger = logging.getLogger(__name__)


def _decode_jsonb(val: Any) -> Any:
    """Decode a JSONB value returned as text by asyncpg."""
    if val is None or not isinstance(val, str):
        return val
    return json.loads(val)


def _parse_activity(row: asyncpg.Record) -> Activity:
    details = _decode_jsonb(row["details"])
    return Activity(
        id=row["id"],
        owner_id=row["owner_id"],
        action=row["action"],
        entity_type=row["entity_type"],
        entity_id=row["entity_id"],
        entity_name=row["entity_name"],
        details=ActivityDetails.model_validate(details) if details else None,
        timestamp=row["created_at"],
    )


async def activity_record(
    pool: asyncpg.Pool,
    owner_id: str,
    action: str,
    entity_type: str,
    entity_id: uuid.UUID,
    entity_name: str,
    details: ActivityDetails | None = None,
) -> Activity | None:
    """Append one activity row.

    Returns the stored activity, or ``None`` if the write failed. Failures are
    logged and never raised.
    """
    payload = details.model_dump_json() if details is not None else None
    try:
        row = await pool.fetchrow(
            """
            INSERT INTO activities (
                owner_id, action, entity_type, entity_id, entity_name, details
            )
            VALUES ($1, $2, $3, $4, $5, $6::jsonb)
            RETURNING *
            """,
            owner_id,
            str(action),
            str(entity_type),
            entity_id,
            entity_name,
            payload,
        )
    except Exception:
        logger.warning(
            "Failed to record activity: owner=%s action=%s entity_id=%s",
            owner_id,
            action,
            entity_id,
            exc_info=True,
        )
        return None
    return _parse_activity(row)


async def activity_list(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    days: int | None = None,
    action: str | None = None,
    user_id: str | None = None,
    page: int = 0,
    page_size: int = 20,
) -> ActivityPage:
    """List activities newest first with offset pagination.

    ``page`` is zero-based here (``skip = page * page_size``, clamped at 0).
    ``days`` restricts to the trailing N days; ``None`` means all time.
    ``user_id`` is accepted for forward compatibility with shared
    visibility but always resolves to the caller today.
    """
    if page_size <= 0:
        raise InvalidInput("page_size must be a positive integer")
    if days is not None and days <= 0:
        raise InvalidInput("days must be a positive integer")
    if user_id is not None and user_id != owner_id:
        logger.debug("Ignoring activity user override %s for owner %s", user_id, owner_id)

    conditions = ["owner_id = $1"]
    args: list[Any] = [owner_id]
    idx = 2
    if days is not None:
        conditions.append(f"created_at >= now() - make_interval(days => ${idx})")
        args.append(days)
        idx += 1
    if action is not None:
        conditions.append(f"action = ${idx}")
        args.append(action)
        idx += 1
    where = " AND ".join(conditions)

    skip = max(0, page * page_size)
    with store_errors():
        total = await pool.fetchval(f"SELECT count(*) FROM activities WHERE {where}", *args) or 0
        rows = await pool.fetch(
            f"""
            SELECT * FROM activities
            WHERE {where}
            ORDER BY created_at DESC, id DESC
            OFFSET ${idx} LIMIT ${idx + 1}
            """,
            *args,
            skip,
            page_size,
        )

    items = [_parse_activity(row) for row in rows]
    return ActivityPage(
        items=items,
        page=page,
        page_size=page_size,
        total_count=total,
        has_more=skip + len(items) < total,
    )


async def activity_recent(pool: asyncpg.Pool, owner_id: str, limit: int = 10) -> list[Activity]:
    """Return the *limit* most recent activities for the owner."""
    with store_errors():
        rows = await pool.fetch(
            """
            SELECT * FROM activities
            WHERE owner_id = $1
            ORDER BY created_at DESC, id DESC
            LIMIT $2
            """,
            owner_id,
            limit,
        )
    return [_parse_activity(row) for row in rows]


async def activity_count(pool: asyncpg.Pool, owner_id: str) -> int:
    with store_errors():
        return await pool.fetchval(
            "SELECT count(*) FROM activities WHERE owner_id = $1", owner_id
        ) or 0
