"""Tests for crm.errors — typed failures and asyncpg translation."""

from __future__ import annotations

import uuid

import asyncpg
import pytest

from crm.errors import Conflict, CrmError, InvalidInput, NotFound, Unavailable, store_errors

pytestmark = pytest.mark.unit


class TestErrorHierarchy:
    @pytest.mark.parametrize("cls", [InvalidInput, Conflict, Unavailable])
    def test_subclasses_share_base(self, cls):
        assert issubclass(cls, CrmError)

    def test_not_found_carries_entity(self):
        tag_id = uuid.uuid4()
        exc = NotFound("Tag", tag_id)
        assert exc.entity_type == "Tag"
        assert exc.entity_id == tag_id
        assert str(exc) == f"Tag {tag_id} not found"


class TestStoreErrors:
    def test_passes_through_without_error(self):
        with store_errors():
            value = 42
        assert value == 42

    def test_unique_violation_becomes_conflict(self):
        with pytest.raises(Conflict, match="already exists"):
            with store_errors(conflict_message="Tag 'vip' already exists"):
                raise asyncpg.UniqueViolationError("duplicate key value")

    def test_unique_violation_without_message_uses_driver_text(self):
        with pytest.raises(Conflict, match="duplicate key value"):
            with store_errors():
                raise asyncpg.UniqueViolationError("duplicate key value")

    def test_connection_failure_becomes_unavailable(self):
        with pytest.raises(Unavailable) as exc_info:
            with store_errors():
                raise ConnectionRefusedError("refused")
        assert isinstance(exc_info.value.__cause__, ConnectionRefusedError)

    def test_timeout_becomes_unavailable(self):
        with pytest.raises(Unavailable):
            with store_errors():
                raise TimeoutError()

    def test_crm_errors_propagate_unchanged(self):
        with pytest.raises(InvalidInput):
            with store_errors():
                raise InvalidInput("bad")

    def test_other_errors_propagate_unchanged(self):
        with pytest.raises(ValueError):
            with store_errors():
                raise ValueError("boom")
