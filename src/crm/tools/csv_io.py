"""CSV import/export — bulk contact ingestion and emission.

Import is row-independent and best-effort: a bad row becomes a
``"Row <n>: <reason>"`` diagnostic and processing carries on. Only an
unreadable file fails the whole call. Each import or export appends exactly
one activity row, however many contacts it touched.
"""

from __future__ import annotations

import csv
import io
import logging
import uuid
from datetime import UTC, date, datetime

import asyncpg

from crm.errors import CrmError, InvalidInput, store_errors
from crm.models import (
    DEFAULT_TAG_COLOR,
    ActivityAction,
    ActivityDetails,
    EntityType,
    ImportReport,
    tag_ref_names,
)
from crm.tools.activity import activity_record
from crm.tools.contacts import _insert_contact, _parse_contact, contact_email_exists
from crm.tools.tags import tag_resolve_refs

logger = logging.getLogger(__name__)

EXPORT_HEADERS = ("Name", "Email", "Phone", "Company", "Tags", "Notes", "Created At")
EXPORT_TAG_SEPARATOR = ";"


def split_tags(raw: str | None, delimiter: str = ",") -> list[str]:
    """Split a ``tags`` cell into stripped, non-blank names."""
    if not raw:
        return []
    return [part.strip() for part in raw.split(delimiter) if part.strip()]


def parse_import_csv(data: bytes | str) -> list[dict[str, str]]:
    """Decode and parse an import file into row dicts keyed by lower-case column.

    Raises:
        InvalidInput: The file is not UTF-8, is not valid CSV, or lacks the
            ``name``/``email`` header columns.
    """
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise InvalidInput(f"CSV file is not valid UTF-8: {exc}") from exc
    else:
        text = data.removeprefix("\ufeff")

    reader = csv.reader(io.StringIO(text))
    try:
        header = next(reader, None)
        if header is None:
            return []
        columns = [col.strip().lower() for col in header]
        missing = {"name", "email"} - set(columns)
        if missing:
            raise InvalidInput(
                f"CSV header is missing required column(s): {', '.join(sorted(missing))}"
            )
        rows = [
            {col: (cells[i] if i < len(cells) else "") for i, col in enumerate(columns)}
            for cells in reader
            if cells
        ]
    except csv.Error as exc:
        raise InvalidInput(f"Failed to parse CSV: {exc}") from exc
    return rows


async def contacts_import_csv(
    pool: asyncpg.Pool,
    owner_id: str,
    data: bytes | str,
    *,
    max_reported_errors: int = 10,
    tag_delimiter: str = ",",
    tag_color: str = DEFAULT_TAG_COLOR,
) -> ImportReport:
    """Create one contact per CSV row, collecting per-row failures.

    Rows are numbered from 1 at the first data row. A row fails when name or
    email is blank, when the owner already has that email (including rows
    earlier in the same file), or when the store rejects it. Lines with only
    separators count as rows missing name and email. Tags created on the way
    get *tag_color*. At most *max_reported_errors* messages are returned;
    ``error_count`` is exact.
    """
    rows = parse_import_csv(data)
    errors: list[str] = []
    success_count = 0

    for number, row in enumerate(rows, start=1):
        name = (row.get("name") or "").strip()
        email = (row.get("email") or "").strip()
        if not name or not email:
            errors.append(f"Row {number}: Name and email are required")
            continue
        try:
            if await contact_email_exists(pool, owner_id, email):
                errors.append(f"Row {number}: Contact with email {email} already exists")
                continue
            await _insert_contact(
                pool,
                owner_id,
                {
                    "name": name,
                    "email": email,
                    "phone": row.get("phone"),
                    "company": row.get("company"),
                    "notes": row.get("notes"),
                },
                split_tags(row.get("tags"), tag_delimiter),
                tag_color=tag_color,
            )
        except CrmError as exc:
            errors.append(f"Row {number}: {exc}")
            continue
        except asyncpg.PostgresError as exc:
            logger.warning("CSV import row %d rejected by the store: %s", number, exc)
            errors.append(f"Row {number}: {exc}")
            continue
        success_count += 1

    logger.info(
        "CSV import for owner %s: %d processed, %d imported, %d failed",
        owner_id,
        len(rows),
        success_count,
        len(errors),
    )
    await activity_record(
        pool,
        owner_id,
        ActivityAction.IMPORTED_CONTACTS,
        EntityType.CONTACT,
        uuid.uuid4(),
        f"{success_count} contacts from CSV",
        details=ActivityDetails(
            metadata={
                "total_processed": str(len(rows)),
                "error_count": str(len(errors)),
            }
        ),
    )
    return ImportReport(
        total_processed=len(rows),
        success_count=success_count,
        error_count=len(errors),
        errors=errors[:max_reported_errors],
    )


def render_export_csv(rows: list[list[str]]) -> str:
    """Header line unquoted, every data cell quoted, ``\\n`` line endings."""
    buffer = io.StringIO()
    csv.writer(buffer, lineterminator="\n").writerow(EXPORT_HEADERS)
    csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n").writerows(rows)
    return buffer.getvalue()


async def contacts_export_csv(pool: asyncpg.Pool, owner_id: str) -> bytes:
    """Render every contact of the owner as UTF-8 CSV.

    Rows are ordered by creation time (ties by id). Data cells are always
    quoted, tags are sorted by name and joined with ``;``, and missing
    optional values render as empty strings.
    """
    with store_errors():
        rows = await pool.fetch(
            "SELECT * FROM contacts WHERE owner_id = $1 ORDER BY created_at ASC, id ASC",
            owner_id,
        )
    refs = await tag_resolve_refs(
        pool, owner_id, (tag_id for row in rows for tag_id in row["tag_ids"] or [])
    )

    lines: list[list[str]] = []
    for row in rows:
        contact = _parse_contact(row, refs)
        lines.append(
            [
                contact.name,
                contact.email,
                contact.phone or "",
                contact.company or "",
                EXPORT_TAG_SEPARATOR.join(sorted(tag_ref_names(contact.tags))),
                contact.notes or "",
                contact.created_at.astimezone(UTC).date().isoformat(),
            ]
        )

    content = render_export_csv(lines)
    await activity_record(
        pool,
        owner_id,
        ActivityAction.EXPORTED_CONTACTS,
        EntityType.CONTACT,
        uuid.uuid4(),
        f"{len(lines)} contacts to CSV",
        details=ActivityDetails(metadata={"count": str(len(lines))}),
    )
    return content.encode("utf-8")


def export_filename(today: date | None = None) -> str:
    """Download name for an export, e.g. ``contacts-2024-05-01.csv``."""
    today = today or datetime.now(UTC).date()
    return f"contacts-{today.isoformat()}.csv"
