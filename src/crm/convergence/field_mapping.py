"""Identity Normalizer -- alias tables mapping raw store rows onto DTOs.

Defines:
- FieldSpec: ordered source aliases plus a value coercer for one canonical field
- *_FIELDS tables: per-entity alias tables (canonical camelCase key always first,
  which is what makes normalization idempotent on already-normalized input)
- normalize_record(): the generic pure transform; normalize_<entity>() wrappers
- normalize_company_name(): natural-key normalization shared by lookups and joins
- to_store_columns(): reverse mapping from DTO keys to SQL column names

Spreadsheet rows arrive with camelCase keys, SQL rows with snake_case columns
and a few legacy names (city, description, interactionRating, updatedBy...).
Normalization never raises: absent or unusable values degrade to the DTO
default ('' for strings, None for audit timestamps and row indices).
"""

from __future__ import annotations

import re
import unicodedata
from collections.abc import Callable, Mapping
from datetime import date, datetime
from typing import Any, NamedTuple, TypeVar

from pydantic import BaseModel

from src.crm.convergence.schemas import (
    Announcement,
    Company,
    ContactOpportunityLink,
    CRMRecord,
    EventLog,
    Interaction,
    OfficialContact,
    Opportunity,
    PotentialContact,
)

RecordT = TypeVar("RecordT", bound=CRMRecord)


# ── Value Coercers ─────────────────────────────────────────────────────────


def as_text(value: Any) -> str | None:
    """Coerce a scalar to text; datetimes become ISO strings."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, datetime | date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, int | float):
        return str(value)
    return None


def as_row_index(value: Any) -> int | None:
    """Row indices are positive integers; anything else means 'no row'."""
    if value is None or isinstance(value, bool):
        return None
    try:
        row = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return row if row > 0 else None


_TRUTHY = {"true", "1", "yes", "y", "是", "置頂"}


def as_flag(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    return str(value).strip().lower() in _TRUTHY


class FieldSpec(NamedTuple):
    """Ordered aliases for one canonical field and how to coerce its value."""

    aliases: tuple[str, ...]
    coerce: Callable[[Any], Any] = as_text


# ── Alias Tables ───────────────────────────────────────────────────────────

COMPANY_FIELDS: dict[str, FieldSpec] = {
    "company_id": FieldSpec(("companyId", "company_id")),
    "company_name": FieldSpec(("companyName", "company_name")),
    "phone": FieldSpec(("phone",)),
    "address": FieldSpec(("address",)),
    "county": FieldSpec(("county", "city")),
    "introduction": FieldSpec(("introduction", "description")),
    "company_type": FieldSpec(("companyType", "company_type")),
    "customer_stage": FieldSpec(("customerStage", "customer_stage")),
    "engagement_rating": FieldSpec(
        ("engagementRating", "interactionRating", "engagement_rating", "interaction_rating")
    ),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "last_update_time": FieldSpec(
        ("lastUpdateTime", "updatedTime", "updated_time", "last_update_time")
    ),
    "creator": FieldSpec(("creator", "createdBy", "created_by")),
    "last_modifier": FieldSpec(("lastModifier", "updatedBy", "updated_by")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

OFFICIAL_CONTACT_FIELDS: dict[str, FieldSpec] = {
    "contact_id": FieldSpec(("contactId", "contact_id")),
    "source_id": FieldSpec(("sourceId", "source_id")),
    "name": FieldSpec(("name",)),
    "company_id": FieldSpec(("companyId", "company_id")),
    "company_name": FieldSpec(("companyName", "company_name")),
    "department": FieldSpec(("department",)),
    "position": FieldSpec(("position", "jobTitle", "job_title")),
    "mobile": FieldSpec(("mobile",)),
    "phone": FieldSpec(("phone", "tel")),
    "email": FieldSpec(("email",)),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "last_update_time": FieldSpec(
        ("lastUpdateTime", "updatedTime", "updated_time", "last_update_time")
    ),
    "creator": FieldSpec(("creator", "createdBy", "created_by")),
    "last_modifier": FieldSpec(("lastModifier", "updatedBy", "updated_by")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

POTENTIAL_CONTACT_FIELDS: dict[str, FieldSpec] = {
    "name": FieldSpec(("name",)),
    "company": FieldSpec(("company", "companyName", "company_name")),
    "position": FieldSpec(("position", "jobTitle", "job_title")),
    "department": FieldSpec(("department",)),
    "mobile": FieldSpec(("mobile",)),
    "phone": FieldSpec(("phone", "tel")),
    "email": FieldSpec(("email",)),
    "status": FieldSpec(("status",)),
    "notes": FieldSpec(("notes",)),
    "drive_link": FieldSpec(("driveLink", "drive_link")),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

LINK_FIELDS: dict[str, FieldSpec] = {
    "link_id": FieldSpec(("linkId", "link_id", "rowId")),
    "opportunity_id": FieldSpec(("opportunityId", "oppId", "opportunity_id")),
    "contact_id": FieldSpec(("contactId", "contact_id")),
    "status": FieldSpec(("status", "linkStatus", "state")),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

OPPORTUNITY_FIELDS: dict[str, FieldSpec] = {
    "opportunity_id": FieldSpec(("opportunityId", "opportunity_id")),
    "opportunity_name": FieldSpec(("opportunityName", "opportunity_name")),
    "customer_company": FieldSpec(("customerCompany", "customer_company")),
    "main_contact": FieldSpec(("mainContact", "main_contact")),
    "main_contact_job_title": FieldSpec(("mainContactJobTitle",)),
    "opportunity_type": FieldSpec(("opportunityType", "opportunity_type")),
    "current_stage": FieldSpec(("currentStage", "current_stage")),
    "current_status": FieldSpec(("currentStatus", "current_status")),
    "assignee": FieldSpec(("assignee", "owner")),
    "opportunity_value": FieldSpec(("opportunityValue", "opportunity_value")),
    "probability": FieldSpec(("probability",)),
    "expected_close_date": FieldSpec(("expectedCloseDate", "expected_close_date")),
    "parent_opportunity_id": FieldSpec(("parentOpportunityId", "parent_opportunity_id")),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "last_update_time": FieldSpec(
        ("lastUpdateTime", "updatedTime", "updated_time", "last_update_time")
    ),
    "creator": FieldSpec(("creator", "createdBy", "created_by")),
    "last_modifier": FieldSpec(("lastModifier", "updatedBy", "updated_by")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

INTERACTION_FIELDS: dict[str, FieldSpec] = {
    "interaction_id": FieldSpec(("interactionId", "interaction_id")),
    "opportunity_id": FieldSpec(("opportunityId", "opportunity_id")),
    "company_id": FieldSpec(("companyId", "company_id")),
    "interaction_time": FieldSpec(("interactionTime", "interaction_time", "date")),
    "event_type": FieldSpec(("eventType", "event_type")),
    "event_title": FieldSpec(("eventTitle", "event_title")),
    "content_summary": FieldSpec(("contentSummary", "content_summary")),
    "recorder": FieldSpec(("recorder",)),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

EVENT_LOG_FIELDS: dict[str, FieldSpec] = {
    "event_id": FieldSpec(("eventId", "event_id", "id")),
    "event_type": FieldSpec(("eventType", "event_type")),
    "event_name": FieldSpec(("eventName", "event_name")),
    "event_content": FieldSpec(("eventContent", "event_content")),
    "opportunity_id": FieldSpec(("opportunityId", "opportunity_id")),
    "opportunity_name": FieldSpec(("opportunityName",)),
    "company_id": FieldSpec(("companyId", "company_id")),
    "company_name": FieldSpec(("companyName",)),
    "creator": FieldSpec(("creator", "createdBy", "created_by")),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "last_update_time": FieldSpec(
        ("lastUpdateTime", "updatedTime", "updated_time", "last_update_time")
    ),
    "last_modifier": FieldSpec(("lastModifier", "updatedBy", "updated_by")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}

ANNOUNCEMENT_FIELDS: dict[str, FieldSpec] = {
    "id": FieldSpec(("id", "announcementId", "announcement_id")),
    "title": FieldSpec(("title",)),
    "content": FieldSpec(("content",)),
    "status": FieldSpec(("status",)),
    "is_pinned": FieldSpec(("isPinned", "is_pinned"), as_flag),
    "creator": FieldSpec(("creator", "createdBy", "created_by")),
    "created_time": FieldSpec(("createdTime", "created_time")),
    "last_update_time": FieldSpec(
        ("lastUpdateTime", "updatedTime", "updated_time", "last_update_time")
    ),
    "last_modifier": FieldSpec(("lastModifier", "updatedBy", "updated_by")),
    "row_index": FieldSpec(("rowIndex", "row_index"), as_row_index),
}


# ── Normalization ──────────────────────────────────────────────────────────


def _first_present(raw: Mapping[str, Any], spec: FieldSpec) -> Any:
    """Return the first alias value that is not None and not an empty string."""
    for key in spec.aliases:
        value = raw.get(key)
        if value is None or value == "":
            continue
        coerced = spec.coerce(value)
        if coerced is None or coerced == "":
            continue
        return coerced
    return None


def normalize_record(
    raw: Mapping[str, Any] | BaseModel | None,
    dto_cls: type[RecordT],
    fields: Mapping[str, FieldSpec],
) -> RecordT:
    """Map one raw row onto dto_cls.

    Canonical fields are resolved through their alias list. Keys that are
    neither an alias nor a DTO field are carried through unchanged as extras,
    so store-specific columns keep reaching callers.
    """
    if isinstance(raw, BaseModel):
        raw = raw.model_dump(by_alias=True)
    if not isinstance(raw, Mapping):
        return dto_cls()

    values: dict[str, Any] = {}
    consumed: set[str] = set()
    for field_name, spec in fields.items():
        consumed.update(spec.aliases)
        consumed.add(field_name)
        value = _first_present(raw, spec)
        if value is not None:
            values[field_name] = value

    known = set(dto_cls.model_fields) | set(dto_cls.model_computed_fields)
    extras = {
        key: value
        for key, value in raw.items()
        if isinstance(key, str) and key not in consumed and key not in known
    }
    return dto_cls.model_validate({**extras, **values})


def normalize_company(raw: Mapping[str, Any] | BaseModel | None) -> Company:
    return normalize_record(raw, Company, COMPANY_FIELDS)


def normalize_official_contact(raw: Mapping[str, Any] | BaseModel | None) -> OfficialContact:
    return normalize_record(raw, OfficialContact, OFFICIAL_CONTACT_FIELDS)


def normalize_potential_contact(raw: Mapping[str, Any] | BaseModel | None) -> PotentialContact:
    return normalize_record(raw, PotentialContact, POTENTIAL_CONTACT_FIELDS)


def normalize_link(raw: Mapping[str, Any] | BaseModel | None) -> ContactOpportunityLink:
    return normalize_record(raw, ContactOpportunityLink, LINK_FIELDS)


def normalize_opportunity(raw: Mapping[str, Any] | BaseModel | None) -> Opportunity:
    return normalize_record(raw, Opportunity, OPPORTUNITY_FIELDS)


def normalize_interaction(raw: Mapping[str, Any] | BaseModel | None) -> Interaction:
    return normalize_record(raw, Interaction, INTERACTION_FIELDS)


def normalize_event_log(raw: Mapping[str, Any] | BaseModel | None) -> EventLog:
    return normalize_record(raw, EventLog, EVENT_LOG_FIELDS)


def normalize_announcement(raw: Mapping[str, Any] | BaseModel | None) -> Announcement:
    return normalize_record(raw, Announcement, ANNOUNCEMENT_FIELDS)


# ── Natural Key Normalization ──────────────────────────────────────────────

_LEGAL_SUFFIXES = re.compile(r"股份有限公司|有限公司|公司")
_PARENTHETICAL = re.compile(r"\([^)]*\)")


def normalize_company_name(name: Any) -> str:
    """Canonical lookup key for a free-text company name.

    NFKC folds full-width forms (so full-width parentheses behave like ASCII
    ones), then case-fold, strip corporate legal suffixes and parenthetical
    notes. Used on both sides of every name lookup and name join.
    """
    if not name:
        return ""
    text = unicodedata.normalize("NFKC", str(name)).casefold().strip()
    text = _LEGAL_SUFFIXES.sub("", text)
    text = _PARENTHETICAL.sub("", text)
    return text.strip()


# ── Reverse Mapping (DTO keys -> SQL columns) ──────────────────────────────


def to_store_columns(
    data: Mapping[str, Any],
    fields: Mapping[str, FieldSpec],
    column_map: Mapping[str, str],
) -> dict[str, Any]:
    """Translate a caller payload into SQL column values.

    Args:
        data: Payload keyed by any alias (camelCase, snake_case or legacy).
        fields: The entity's alias table.
        column_map: Canonical field name -> SQL column name. Fields not in the
            map are not writable through this store.

    Returns:
        Dict of column name to value for every mapped field present in data.
        Explicit empty strings are kept so callers can clear a column.
    """
    columns: dict[str, Any] = {}
    for field_name, column in column_map.items():
        spec = fields.get(field_name)
        if spec is None:
            continue
        for key in spec.aliases:
            if key in data and data[key] is not None:
                columns[column] = data[key]
                break
    return columns
