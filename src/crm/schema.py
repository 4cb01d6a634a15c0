"""Table definitions for the contacts, tags and activities collections.

Every table is partitioned by ``owner_id``. ``ensure_schema`` is idempotent and
safe to run on every start-up.
"""

from __future__ import annotations

import logging

import asyncpg

from crm.models import DEFAULT_TAG_COLOR

logger = logging.getLogger(__name__)

TAGS_DDL = f"""
    CREATE TABLE IF NOT EXISTS tags (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        owner_id TEXT NOT NULL,
        name TEXT NOT NULL,
        color TEXT NOT NULL DEFAULT '{DEFAULT_TAG_COLOR}',
        usage_count INTEGER NOT NULL DEFAULT 0 CHECK (usage_count >= 0),
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        CONSTRAINT uq_tags_owner_name UNIQUE (owner_id, name)
    )
"""

CONTACTS_DDL = """
    CREATE TABLE IF NOT EXISTS contacts (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        owner_id TEXT NOT NULL,
        name TEXT NOT NULL,
        email TEXT NOT NULL,
        phone TEXT,
        company TEXT,
        notes TEXT,
        tag_ids UUID[] NOT NULL DEFAULT '{}',
        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
        last_interaction_at TIMESTAMPTZ DEFAULT now(),
        CONSTRAINT uq_contacts_owner_email UNIQUE (owner_id, email)
    )
"""

ACTIVITIES_DDL = """
    CREATE TABLE IF NOT EXISTS activities (
        id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
        owner_id TEXT NOT NULL,
        action TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id UUID NOT NULL,
        entity_name TEXT NOT NULL,
        details JSONB,
        created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    )
"""

INDEX_DDL: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_contacts_owner_created ON contacts (owner_id, created_at)",
    "CREATE INDEX IF NOT EXISTS idx_contacts_tag_ids ON contacts USING GIN (tag_ids)",
    "CREATE INDEX IF NOT EXISTS idx_tags_owner_usage ON tags (owner_id, usage_count DESC)",
    "CREATE INDEX IF NOT EXISTS idx_activities_owner_created "
    "ON activities (owner_id, created_at DESC)",
)

SCHEMA_STATEMENTS: tuple[str, ...] = (TAGS_DDL, CONTACTS_DDL, ACTIVITIES_DDL, *INDEX_DDL)


async def ensure_schema(pool: asyncpg.Pool, schema: str | None = None) -> None:
    """Create the CRM tables and indexes if they are missing.

    When *schema* is given it is created first; the pool is expected to have
    it on its ``search_path`` (see :func:`crm.db.schema_search_path`).
    """
    if schema is not None:
        safe_schema = schema.replace('"', '""')
        await pool.execute(f'CREATE SCHEMA IF NOT EXISTS "{safe_schema}"')
    for statement in SCHEMA_STATEMENTS:
        await pool.execute(statement)
    logger.info("CRM schema ensured (%d statements)", len(SCHEMA_STATEMENTS))
