"""Unit tests for the tag registry tools (mock pool, no database)."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest
from conftest import tag_row

from crm.errors import Conflict, InvalidInput, NotFound
from crm.models import ActivityAction, TagOrder
from crm.tools.tags import (
    normalize_tag_name,
    tag_create,
    tag_delete,
    tag_list,
    tag_resolve_many,
    tag_resolve_or_create,
    tag_resolve_refs,
    tag_update,
    unique_tag_names,
)

pytestmark = pytest.mark.unit


class TestNameHelpers:
    def test_normalize_strips(self):
        assert normalize_tag_name("  VIP ") == "VIP"

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_normalize_rejects_blank(self, raw):
        with pytest.raises(InvalidInput, match="Tag name is required"):
            normalize_tag_name(raw)

    def test_unique_names_keep_first_seen_order(self):
        assert unique_tag_names(["b", " a", "b ", "", None, "A"]) == ["b", "a", "A"]


class TestResolveOrCreate:
    async def test_single_atomic_upsert(self, mock_pool):
        mock_pool.fetchrow.return_value = tag_row("vip", usage_count=1)

        tag = await tag_resolve_or_create(mock_pool, "owner-1", " vip ")

        mock_pool.fetchrow.assert_awaited_once()
        sql, *args = mock_pool.fetchrow.call_args[0]
        assert "ON CONFLICT (owner_id, name) DO UPDATE" in sql
        assert "usage_count = tags.usage_count + 1" in sql
        assert args == ["owner-1", "vip", "#3B82F6"]
        assert tag.usage_count == 1

    async def test_resolve_many_dedupes_names(self, mock_pool):
        mock_pool.fetchrow.side_effect = lambda sql, owner, name, color: tag_row(name)

        tags = await tag_resolve_many(mock_pool, "owner-1", ["a", "b", "a", " "])

        assert [t.name for t in tags] == ["a", "b"]
        assert mock_pool.fetchrow.await_count == 2


class TestTagList:
    @pytest.mark.parametrize(
        "order, expected",
        [
            (TagOrder.USAGE, "ORDER BY usage_count DESC, name ASC"),
            (TagOrder.NAME, "ORDER BY name ASC"),
            ("name", "ORDER BY name ASC"),
        ],
    )
    async def test_orderings(self, mock_pool, order, expected):
        await tag_list(mock_pool, "owner-1", order)
        assert expected in mock_pool.fetch.call_args[0][0]

    async def test_unknown_order_rejected(self, mock_pool):
        with pytest.raises(ValueError):
            await tag_list(mock_pool, "owner-1", "popularity")


class TestTagCreate:
    async def test_conflict_when_name_taken(self, mock_pool):
        mock_pool.fetchrow.return_value = None
        with pytest.raises(Conflict, match="already exists"):
            await tag_create(mock_pool, "owner-1", "vip")

    async def test_invalid_color_rejected(self, mock_pool):
        with pytest.raises(InvalidInput, match="Invalid tag color"):
            await tag_create(mock_pool, "owner-1", "vip", color="red")
        mock_pool.fetchrow.assert_not_awaited()

    async def test_records_created_activity(self, mock_pool):
        row = tag_row("vip", usage_count=0, color="#EF4444")
        mock_pool.fetchrow.return_value = row

        with patch("crm.tools.tags.activity_record", AsyncMock()) as record:
            tag = await tag_create(mock_pool, "owner-1", "vip", "#EF4444")

        assert tag.usage_count == 0
        record.assert_awaited_once()
        args = record.call_args[0]
        assert args[2] == ActivityAction.CREATED_TAG
        assert args[4:] == (row["id"], "vip")


class TestTagUpdate:
    async def test_not_found_for_other_owner(self, mock_pool):
        mock_pool.fetchrow.return_value = None
        with pytest.raises(NotFound):
            await tag_update(mock_pool, "owner-1", uuid.uuid4(), name="x")

    async def test_noop_returns_existing(self, mock_pool):
        mock_pool.fetchrow.return_value = tag_row("vip")
        tag = await tag_update(mock_pool, "owner-1", uuid.uuid4())
        assert tag.name == "vip"
        mock_pool.fetchrow.assert_awaited_once()

    async def test_rename_conflict(self, mock_pool):
        mock_pool.fetchrow.side_effect = [
            tag_row("vip"),
            asyncpg.UniqueViolationError("duplicate key value"),
        ]
        with pytest.raises(Conflict, match="'friends' already exists"):
            await tag_update(mock_pool, "owner-1", uuid.uuid4(), name="friends")

    async def test_activity_uses_old_name_and_diff(self, mock_pool):
        tag_id = uuid.uuid4()
        mock_pool.fetchrow.side_effect = [
            tag_row("vip", id=tag_id),
            tag_row("very important", id=tag_id),
        ]

        with patch("crm.tools.tags.activity_record", AsyncMock()) as record:
            await tag_update(mock_pool, "owner-1", tag_id, name="very important")

        args, kwargs = record.call_args
        assert args[2] == ActivityAction.UPDATED_TAG
        assert args[5] == "vip"
        assert kwargs["details"].before == {"name": "vip"}
        assert kwargs["details"].after == {"name": "very important"}


class TestTagDelete:
    async def test_not_found(self, mock_pool):
        mock_pool.fetchval.return_value = None
        with pytest.raises(NotFound):
            await tag_delete(mock_pool, "owner-1", uuid.uuid4())

    async def test_records_deleted_activity(self, mock_pool):
        mock_pool.fetchval.return_value = "vip"
        tag_id = uuid.uuid4()

        with patch("crm.tools.tags.activity_record", AsyncMock()) as record:
            await tag_delete(mock_pool, "owner-1", tag_id)

        args = record.call_args[0]
        assert args[2] == ActivityAction.DELETED_TAG
        assert args[4:] == (tag_id, "vip")


async def test_resolve_refs_skips_query_for_no_ids(mock_pool):
    assert await tag_resolve_refs(mock_pool, "owner-1", []) == {}
    mock_pool.fetch.assert_not_awaited()
