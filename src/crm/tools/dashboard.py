"""Dashboard aggregator — read-only per-owner analytics.

Series handed to the dashboard have fixed lengths (``company_buckets`` company
entries, ``timeline_days`` day entries) so rendering code never has to handle
short or ragged input. Nothing here writes to the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from datetime import UTC, date, datetime, time, timedelta

import asyncpg

from crm.config import DashboardConfig
from crm.errors import InvalidInput, store_errors
from crm.models import (
    DEFAULT_PALETTE,
    NO_COMPANY,
    CompanyBucket,
    DashboardSnapshot,
    DashboardStats,
    Tag,
    TagOrder,
    TagSlice,
    TimelineDay,
)
from crm.tools.activity import activity_count, activity_recent
from crm.tools.contacts import contact_count
from crm.tools.tags import tag_count, tag_list

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Pure shaping helpers
# ---------------------------------------------------------------------------


def pad_company_buckets(rows: Sequence[tuple[str, int]], size: int = 5) -> list[CompanyBucket]:
    """Keep the *size* largest companies and pad with zero-count placeholders.

    *rows* must already be sorted by count descending.
    """
    if size <= 0:
        raise InvalidInput("company bucket size must be a positive integer")
    buckets = [CompanyBucket(company=name, count=count) for name, count in rows[:size]]
    while len(buckets) < size:
        buckets.append(CompanyBucket(company="", count=0, placeholder=True))
    return buckets


def build_timeline(
    counts_by_day: Mapping[date, int],
    today: date,
    days: int = 7,
) -> list[TimelineDay]:
    """One entry per calendar day ending *today*, oldest first, zeros included."""
    if days <= 0:
        raise InvalidInput("timeline days must be a positive integer")
    start = today - timedelta(days=days - 1)
    timeline = []
    for index in range(days):
        day = start + timedelta(days=index)
        timeline.append(TimelineDay(day=index + 1, date=day, count=counts_by_day.get(day, 0)))
    return timeline


def color_tags(tags: Sequence[Tag], palette: Sequence[str] = DEFAULT_PALETTE) -> list[TagSlice]:
    """Pair each tag with its usage count and a display color.

    Tags without a color get ``palette[position % len(palette)]``. Tags read
    from the store always carry one (``tags.color`` is NOT NULL), so the
    palette only colors ``Tag`` values built by the caller.
    """
    if not palette:
        raise InvalidInput("palette must contain at least one color")
    return [
        TagSlice(
            id=tag.id,
            name=tag.name,
            count=tag.usage_count,
            color=tag.color or palette[position % len(palette)],
        )
        for position, tag in enumerate(tags)
    ]


def _utc_day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Store-backed aggregations
# ---------------------------------------------------------------------------


async def company_distribution(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    size: int = 5,
) -> list[CompanyBucket]:
    """Top companies by contact count; missing or empty company counts as "No Company"."""
    with store_errors():
        rows = await pool.fetch(
            """
            SELECT COALESCE(NULLIF(btrim(company), ''), $2) AS company, count(*) AS count
            FROM contacts
            WHERE owner_id = $1
            GROUP BY 1
            ORDER BY count DESC, company ASC
            LIMIT $3
            """,
            owner_id,
            NO_COMPANY,
            size,
        )
    return pad_company_buckets([(row["company"], row["count"]) for row in rows], size)


async def activity_timeline(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    days: int = 7,
    today: date | None = None,
) -> list[TimelineDay]:
    """Activity counts per UTC calendar day over the trailing *days* days."""
    if days <= 0:
        raise InvalidInput("timeline days must be a positive integer")
    today = today or datetime.now(UTC).date()
    window_start = _utc_day_start(today - timedelta(days=days - 1))
    window_end = _utc_day_start(today + timedelta(days=1))
    with store_errors():
        rows = await pool.fetch(
            """
            SELECT (created_at AT TIME ZONE 'UTC')::date AS day, count(*) AS count
            FROM activities
            WHERE owner_id = $1 AND created_at >= $2 AND created_at < $3
            GROUP BY 1
            """,
            owner_id,
            window_start,
            window_end,
        )
    return build_timeline({row["day"]: row["count"] for row in rows}, today, days)


async def tag_distribution(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    palette: Sequence[str] = DEFAULT_PALETTE,
) -> list[TagSlice]:
    """Every tag of the owner, most used first, with a display color."""
    tags = await tag_list(pool, owner_id, TagOrder.USAGE)
    return color_tags(tags, palette)


async def dashboard_stats(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    recent_limit: int = 10,
) -> DashboardStats:
    contacts, activities, tags, recent = await asyncio.gather(
        contact_count(pool, owner_id),
        activity_count(pool, owner_id),
        tag_count(pool, owner_id),
        activity_recent(pool, owner_id, recent_limit),
    )
    return DashboardStats(
        contacts_count=contacts,
        activities_count=activities,
        tags_count=tags,
        recent_activities=recent,
        recent_count=len(recent),
    )


async def dashboard_snapshot(
    pool: asyncpg.Pool,
    owner_id: str,
    *,
    config: DashboardConfig | None = None,
    today: date | None = None,
) -> DashboardSnapshot:
    """Compute stats, companies, timeline and tags in one call."""
    config = config or DashboardConfig()
    stats, companies, timeline, tags = await asyncio.gather(
        dashboard_stats(pool, owner_id, recent_limit=config.recent_activity_limit),
        company_distribution(pool, owner_id, size=config.company_buckets),
        activity_timeline(pool, owner_id, days=config.timeline_days, today=today),
        tag_distribution(pool, owner_id, palette=config.palette),
    )
    logger.debug(
        "Dashboard snapshot for owner %s: %d contacts, %d tags",
        owner_id,
        stats.contacts_count,
        stats.tags_count,
    )
    return DashboardSnapshot(stats=stats, companies=companies, timeline=timeline, tags=tags)
