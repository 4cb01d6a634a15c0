"""Typed failures raised by the contact/tag/activity engine.

Callers (transport layers, the CLI) translate these into their own status
codes. ``store_errors()`` is the single place where asyncpg exceptions are
mapped onto this hierarchy.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import asyncpg

logger = logging.getLogger(__name__)


class CrmError(Exception):
    """Base class for every engine failure."""


class InvalidInput(CrmError):
    """A required field is missing/empty or an argument is malformed."""


class NotFound(CrmError):
    """The entity does not exist or does not belong to the caller.

    Attributes:
        entity_type: Kind of entity looked up (``"Contact"``, ``"Tag"``).
        entity_id: The identifier that failed to resolve.
    """

    def __init__(self, entity_type: str, entity_id: object) -> None:
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class Conflict(CrmError):
    """A unique key (tag name, contact email) already exists for the owner."""


class Unavailable(CrmError):
    """The underlying store could not be reached or timed out."""


_TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    ConnectionError,
    TimeoutError,
    OSError,
)


@contextmanager
def store_errors(conflict_message: str | None = None) -> Iterator[None]:
    """Translate asyncpg failures raised inside the block.

    ``UniqueViolationError`` becomes :class:`Conflict` (using
    *conflict_message* when given) and connection-level failures become
    :class:`Unavailable`. Anything else propagates untouched.
    """
    try:
        yield
    except CrmError:
        raise
    except asyncpg.UniqueViolationError as exc:
        raise Conflict(conflict_message or str(exc)) from exc
    except _TRANSIENT_ERRORS as exc:
        logger.warning("Store call failed: %s", exc)
        raise Unavailable(f"Store unavailable: {exc}") from exc
