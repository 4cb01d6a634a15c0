"""CRM tools — contacts, tags, activity log, CSV and dashboard.

Every tool is an async function taking ``(pool, owner_id, ...)``; all reads and
writes are scoped to that owner. Re-exports the public symbols so callers can
write ``from crm.tools import contact_create``.
"""

from crm.tools.activity import (
    activity_count,
    activity_list,
    activity_recent,
    activity_record,
)
from crm.tools.contacts import (
    contact_count,
    contact_create,
    contact_delete,
    contact_email_exists,
    contact_get,
    contact_list,
    contact_update,
)
from crm.tools.csv_io import (
    contacts_export_csv,
    contacts_import_csv,
    export_filename,
)
from crm.tools.dashboard import (
    activity_timeline,
    build_timeline,
    color_tags,
    company_distribution,
    dashboard_snapshot,
    dashboard_stats,
    pad_company_buckets,
    tag_distribution,
)
from crm.tools.tags import (
    tag_count,
    tag_create,
    tag_delete,
    tag_find_by_name,
    tag_get,
    tag_list,
    tag_resolve_many,
    tag_resolve_or_create,
    tag_resolve_refs,
    tag_update,
)

__all__ = [
    "activity_count",
    "activity_list",
    "activity_recent",
    "activity_record",
    "activity_timeline",
    "build_timeline",
    "color_tags",
    "company_distribution",
    "contact_count",
    "contact_create",
    "contact_delete",
    "contact_email_exists",
    "contact_get",
    "contact_list",
    "contact_update",
    "contacts_export_csv",
    "contacts_import_csv",
    "dashboard_snapshot",
    "dashboard_stats",
    "export_filename",
    "pad_company_buckets",
    "tag_count",
    "tag_create",
    "tag_delete",
    "tag_distribution",
    "tag_find_by_name",
    "tag_get",
    "tag_list",
    "tag_resolve_many",
    "tag_resolve_or_create",
    "tag_resolve_refs",
    "tag_update",
]
