"""Google Sheets store adapters -- the fallback read source and row-addressed writer.

Provides:
- SheetsAuthManager: service-account credentials + cached Sheets v4 resource
- SheetsClient: async values get / update / append and row deletion
- WorksheetSchema: worksheet title + ordered column keys (row 1 is a header)
- SheetTableReader / SheetTableWriter: one worksheet as a StoreReader / StoreWriter
- EventLogSheetReader / EventLogSheetWriter: one worksheet per event type
- SystemConfigReader: grouped dropdown values from the system-config worksheet

All Google API calls are wrapped in asyncio.to_thread() to avoid blocking the
event loop, and retried with tenacity (3 attempts, exponential backoff).
Row indices are 1-based worksheet positions; data starts at row 2.
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.crm.convergence.adapter import (
    PartitionedStoreWriter,
    RawRecord,
    StoreReader,
    StoreWriter,
)
from src.crm.convergence.errors import BusinessRuleViolation, NotFoundError
from src.crm.convergence.field_mapping import FieldSpec, to_store_columns
from src.crm.core.redis import ReadCache

logger = structlog.get_logger(__name__)

SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

FIRST_DATA_ROW = 2

_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(Exception),
    reraise=True,
)


def column_letter(position: int) -> str:
    """1 -> A, 27 -> AA."""
    letters = ""
    while position > 0:
        position, remainder = divmod(position - 1, 26)
        letters = chr(65 + remainder) + letters
    return letters


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── Auth ────────────────────────────────────────────────────────────────────


class SheetsAuthManager:
    """Builds service-account credentials once and caches the Sheets resource."""

    def __init__(self, service_account_file: str) -> None:
        self._service_account_file = service_account_file
        self._service: Any = None

    def get_sheets_service(self) -> Any:
        if self._service is None:
            logger.info("building_sheets_service")
            credentials = service_account.Credentials.from_service_account_file(
                self._service_account_file,
                scopes=SHEETS_SCOPES,
            )
            self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
        return self._service


# ── Client ──────────────────────────────────────────────────────────────────


class SheetsClient:
    """Async wrapper around the Sheets v4 values and batchUpdate APIs.

    Args:
        auth_manager: Anything with get_sheets_service().
    """

    def __init__(self, auth_manager: SheetsAuthManager) -> None:
        self._auth = auth_manager
        self._sheet_ids: dict[tuple[str, str], int] = {}

    @property
    def _service(self) -> Any:
        return self._auth.get_sheets_service()

    @_retry
    async def get_values(self, spreadsheet_id: str, range_: str) -> list[list[Any]]:
        service = self._service

        def _get() -> dict:
            return (
                service.spreadsheets()
                .values()
                .get(spreadsheetId=spreadsheet_id, range=range_)
                .execute()
            )

        result = await asyncio.to_thread(_get)
        return result.get("values", [])

    @_retry
    async def update_values(
        self, spreadsheet_id: str, range_: str, values: list[list[Any]]
    ) -> dict:
        service = self._service

        def _update() -> dict:
            return (
                service.spreadsheets()
                .values()
                .update(
                    spreadsheetId=spreadsheet_id,
                    range=range_,
                    valueInputOption="USER_ENTERED",
                    body={"values": values},
                )
                .execute()
            )

        return await asyncio.to_thread(_update)

    @_retry
    async def append_values(
        self, spreadsheet_id: str, range_: str, values: list[list[Any]]
    ) -> dict:
        service = self._service

        def _append() -> dict:
            return (
                service.spreadsheets()
                .values()
                .append(
                    spreadsheetId=spreadsheet_id,
                    range=range_,
                    valueInputOption="USER_ENTERED",
                    insertDataOption="INSERT_ROWS",
                    body={"values": values},
                )
                .execute()
            )

        return await asyncio.to_thread(_append)

    @_retry
    async def get_sheet_properties(self, spreadsheet_id: str) -> list[dict]:
        service = self._service

        def _get() -> dict:
            return (
                service.spreadsheets()
                .get(spreadsheetId=spreadsheet_id, fields="sheets.properties")
                .execute()
            )

        result = await asyncio.to_thread(_get)
        return result.get("sheets", [])

    async def get_sheet_id(self, spreadsheet_id: str, title: str) -> int:
        """Numeric sheetId of a worksheet (cached), needed for row deletion."""
        cache_key = (spreadsheet_id, title)
        if cache_key in self._sheet_ids:
            return self._sheet_ids[cache_key]
        sheets = await self.get_sheet_properties(spreadsheet_id)
        for sheet in sheets:
            props = sheet.get("properties", {})
            self._sheet_ids[(spreadsheet_id, props.get("title", ""))] = props.get("sheetId", 0)
        if cache_key not in self._sheet_ids:
            raise NotFoundError("worksheet", title)
        return self._sheet_ids[cache_key]

    @_retry
    async def delete_row(self, spreadsheet_id: str, sheet_id: int, row_index: int) -> dict:
        service = self._service
        body = {
            "requests": [
                {
                    "deleteDimension": {
                        "range": {
                            "sheetId": sheet_id,
                            "dimension": "ROWS",
                            "startIndex": row_index - 1,
                            "endIndex": row_index,
                        }
                    }
                }
            ]
        }

        def _delete() -> dict:
            return (
                service.spreadsheets()
                .batchUpdate(spreadsheetId=spreadsheet_id, body=body)
                .execute()
            )

        return await asyncio.to_thread(_delete)


# ── Worksheet schema ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class WorksheetSchema:
    """Worksheet title and its column keys, left to right."""

    title: str
    columns: tuple[str, ...]

    @property
    def last_column(self) -> str:
        return column_letter(len(self.columns))

    @property
    def data_range(self) -> str:
        return f"'{self.title}'!A{FIRST_DATA_ROW}:{self.last_column}"

    def row_range(self, row_index: int) -> str:
        return f"'{self.title}'!A{row_index}:{self.last_column}{row_index}"

    def to_record(self, values: Sequence[Any], row_index: int) -> RawRecord:
        padded = list(values) + [""] * (len(self.columns) - len(values))
        record: RawRecord = dict(zip(self.columns, padded))
        record["rowIndex"] = row_index
        return record

    def to_values(self, record: Mapping[str, Any]) -> list[Any]:
        return ["" if record.get(key) is None else record.get(key) for key in self.columns]


COMPANY_SHEET = WorksheetSchema(
    "公司總表",
    (
        "companyId", "companyName", "phone", "address", "createdTime", "lastUpdateTime",
        "county", "creator", "lastModifier", "introduction", "companyType",
        "customerStage", "engagementRating",
    ),
)
CONTACT_SHEET = WorksheetSchema(
    "聯絡人總表",
    (
        "contactId", "sourceId", "name", "companyId", "department", "position",
        "mobile", "phone", "email", "createdTime", "lastUpdateTime", "creator",
        "lastModifier",
    ),
)
LINK_SHEET = WorksheetSchema(
    "機會-聯絡人關聯表",
    ("linkId", "opportunityId", "contactId", "createdTime", "creator", "status"),
)
OPPORTUNITY_SHEET = WorksheetSchema(
    "機會案件總表",
    (
        "opportunityId", "opportunityName", "customerCompany", "mainContact",
        "opportunityType", "assignee", "currentStage", "createdTime",
        "expectedCloseDate", "opportunityValue", "currentStatus", "probability",
        "parentOpportunityId", "lastUpdateTime", "lastModifier", "creator",
    ),
)
INTERACTION_SHEET = WorksheetSchema(
    "互動紀錄",
    (
        "interactionId", "opportunityId", "interactionTime", "eventType", "eventTitle",
        "contentSummary", "recorder", "createdTime", "companyId",
    ),
)
ANNOUNCEMENT_SHEET = WorksheetSchema(
    "佈告欄",
    (
        "id", "title", "content", "creator", "createdTime", "lastUpdateTime",
        "status", "isPinned", "lastModifier",
    ),
)
POTENTIAL_CONTACT_SHEET = WorksheetSchema(
    "原始名片資料",
    (
        "createdTime", "name", "company", "position", "department", "phone",
        "mobile", "email", "driveLink", "status", "notes",
    ),
)
SYSTEM_CONFIG_SHEET = WorksheetSchema(
    "系統設定",
    ("type", "value", "note", "enabled", "order"),
)
EVENT_LOG_COLUMNS = (
    "eventId", "eventName", "opportunityId", "companyId", "creator", "createdTime",
    "lastUpdateTime", "lastModifier", "eventContent", "eventType",
)


def event_log_sheet(event_type: str) -> WorksheetSchema:
    return WorksheetSchema(f"事件紀錄_{event_type}", EVENT_LOG_COLUMNS)


_APPENDED_ROW = re.compile(r"![A-Z]+(\d+)")


def appended_row_index(append_result: Mapping[str, Any]) -> int | None:
    """Row number of an append, parsed from updates.updatedRange ('Sheet'!A12:M12)."""
    updated = append_result.get("updates", {}).get("updatedRange", "")
    match = _APPENDED_ROW.search(updated)
    return int(match.group(1)) if match else None


# ── Reader / Writer ─────────────────────────────────────────────────────────


class SheetTableReader(StoreReader):
    """Fallback-source reader for one worksheet.

    Blank rows are skipped but still advance the row counter, so rowIndex
    always matches the physical worksheet row.

    Args:
        client: SheetsClient.
        spreadsheet_id: Spreadsheet holding the worksheet.
        schema: Worksheet layout.
        entity: Entity name for logs.
        cache: Optional ReadCache; bypassed when get_all(fresh=True).
        cache_key: Key under which rows are cached.
    """

    def __init__(
        self,
        client: SheetsClient,
        spreadsheet_id: str,
        schema: WorksheetSchema,
        entity: str,
        cache: ReadCache | None = None,
        cache_key: str | None = None,
    ) -> None:
        self._client = client
        self._spreadsheet_id = spreadsheet_id
        self.schema = schema
        self._entity = entity
        self._cache = cache
        self.cache_key = cache_key or entity

    async def get_all(self, *, fresh: bool = False) -> list[RawRecord]:
        if self._cache is not None and not fresh:
            cached = await self._cache.get_rows(self.cache_key)
            if cached is not None:
                return cached

        values = await self._client.get_values(self._spreadsheet_id, self.schema.data_range)
        rows = [
            self.schema.to_record(row, FIRST_DATA_ROW + offset)
            for offset, row in enumerate(values)
            if any(str(cell).strip() for cell in row)
        ]
        logger.debug(
            "sheet_store.read", entity=self._entity, count=len(rows), fresh=fresh
        )
        if self._cache is not None:
            await self._cache.set_rows(self.cache_key, rows)
        return rows

    async def invalidate(self, cache_key: str) -> None:
        if self._cache is not None:
            await self._cache.invalidate(self.cache_key)


class SheetTableWriter(StoreWriter):
    """Row-addressed writer for one worksheet.

    Payload keys may use any alias from the entity's field table. Audit
    columns present in the schema are stamped from the acting user.

    Args:
        client: SheetsClient.
        spreadsheet_id: Spreadsheet holding the worksheet.
        schema: Worksheet layout.
        entity: Entity name for logs.
        fields: The entity's alias table.
        id_key: Column carrying the record id, if any.
    """

    def __init__(
        self,
        client: SheetsClient,
        spreadsheet_id: str,
        schema: WorksheetSchema,
        entity: str,
        fields: Mapping[str, FieldSpec],
        id_key: str | None = None,
    ) -> None:
        self._client = client
        self._spreadsheet_id = spreadsheet_id
        self.schema = schema
        self._entity = entity
        self._fields = fields
        self._id_key = id_key
        self._column_map = {
            name: spec.aliases[0]
            for name, spec in fields.items()
            if spec.aliases[0] in schema.columns
        }
        # Columns that no DTO field covers (e.g. eventType on partition sheets).
        self._passthrough = [
            key for key in schema.columns if key not in self._column_map.values()
        ]

    def _mapped(self, data: Mapping[str, Any]) -> dict[str, Any]:
        mapped = to_store_columns(data, self._fields, self._column_map)
        for key in self._passthrough:
            if data.get(key) is not None:
                mapped[key] = data[key]
        return mapped

    def _stamp(self, record: dict[str, Any], actor: str, creating: bool) -> None:
        now = _now_iso()
        columns = self.schema.columns
        if creating:
            if "createdTime" in columns and not record.get("createdTime"):
                record["createdTime"] = now
            if "creator" in columns and not record.get("creator"):
                record["creator"] = actor
        if "lastUpdateTime" in columns:
            record["lastUpdateTime"] = now
        if "lastModifier" in columns:
            record["lastModifier"] = actor

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        record = self._mapped(data)
        self._stamp(record, actor, creating=True)
        result = await self._client.append_values(
            self._spreadsheet_id, self.schema.data_range, [self.schema.to_values(record)]
        )
        row_index = appended_row_index(result)
        record_id = record.get(self._id_key) if self._id_key else None
        logger.info(
            "sheet_store.created",
            entity=self._entity,
            worksheet=self.schema.title,
            row_index=row_index,
            record_id=record_id,
            actor=actor,
        )
        return {"success": True, "id": record_id, "rowIndex": row_index}

    async def read_row(self, row_index: int) -> RawRecord:
        values = await self._client.get_values(
            self._spreadsheet_id, self.schema.row_range(row_index)
        )
        if not values or not any(str(cell).strip() for cell in values[0]):
            raise NotFoundError(self._entity, f"row {row_index}")
        return self.schema.to_record(values[0], row_index)

    async def update(self, key: Any, data: dict[str, Any], actor: str) -> dict[str, Any]:
        row_index = int(key)
        current = await self.read_row(row_index)
        current.pop("rowIndex", None)
        changes = self._mapped(data)
        if self._id_key:
            changes.pop(self._id_key, None)
        merged = {**current, **changes}
        self._stamp(merged, actor, creating=False)
        await self._client.update_values(
            self._spreadsheet_id,
            self.schema.row_range(row_index),
            [self.schema.to_values(merged)],
        )
        logger.info(
            "sheet_store.updated",
            entity=self._entity,
            worksheet=self.schema.title,
            row_index=row_index,
            fields=sorted(changes),
            actor=actor,
        )
        record_id = merged.get(self._id_key) if self._id_key else None
        return {"success": True, "id": record_id, "rowIndex": row_index}

    async def delete(self, key: Any, actor: str) -> dict[str, Any]:
        row_index = int(key)
        if row_index < FIRST_DATA_ROW:
            raise NotFoundError(self._entity, f"row {row_index}")
        sheet_id = await self._client.get_sheet_id(self._spreadsheet_id, self.schema.title)
        await self._client.delete_row(self._spreadsheet_id, sheet_id, row_index)
        logger.info(
            "sheet_store.deleted",
            entity=self._entity,
            worksheet=self.schema.title,
            row_index=row_index,
            actor=actor,
        )
        return {"success": True, "rowIndex": row_index}


# ── Event logs (partitioned by event type) ──────────────────────────────────


class EventLogSheetReader(StoreReader):
    """Reads every event-type worksheet concurrently and tags rows with their partition."""

    def __init__(
        self,
        client: SheetsClient,
        spreadsheet_id: str,
        event_types: Sequence[str],
        cache: ReadCache | None = None,
        cache_key: str = "event_logs",
    ) -> None:
        self._partitions = {
            event_type: SheetTableReader(
                client, spreadsheet_id, event_log_sheet(event_type), "event_log"
            )
            for event_type in event_types
        }
        self._cache = cache
        self.cache_key = cache_key

    async def get_all(self, *, fresh: bool = False) -> list[RawRecord]:
        if self._cache is not None and not fresh:
            cached = await self._cache.get_rows(self.cache_key)
            if cached is not None:
                return cached

        event_types = list(self._partitions)
        results = await asyncio.gather(
            *(self._partitions[t].get_all(fresh=True) for t in event_types)
        )
        rows: list[RawRecord] = []
        for event_type, partition_rows in zip(event_types, results):
            for row in partition_rows:
                row["eventType"] = event_type
                rows.append(row)
        if self._cache is not None:
            await self._cache.set_rows(self.cache_key, rows)
        return rows

    async def invalidate(self, cache_key: str) -> None:
        if self._cache is not None:
            await self._cache.invalidate(self.cache_key)


class EventLogSheetWriter(PartitionedStoreWriter):
    """Routes event-log writes to the worksheet of the record's event type."""

    def __init__(
        self,
        client: SheetsClient,
        spreadsheet_id: str,
        event_types: Sequence[str],
        fields: Mapping[str, FieldSpec],
    ) -> None:
        self._partitions = {
            event_type: SheetTableWriter(
                client,
                spreadsheet_id,
                event_log_sheet(event_type),
                "event_log",
                fields,
                id_key="eventId",
            )
            for event_type in event_types
        }

    def _writer_for(self, partition: str | None) -> SheetTableWriter:
        writer = self._partitions.get(partition or "")
        if writer is None:
            raise BusinessRuleViolation(
                f"unknown event type '{partition}'; expected one of {sorted(self._partitions)}"
            )
        return writer

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        partition = data.get("eventType") or data.get("event_type")
        return await self._writer_for(partition).create(data, actor)

    async def update(
        self, key: Any, data: dict[str, Any], actor: str, *, partition: str | None = None
    ) -> dict[str, Any]:
        payload = dict(data)
        payload["eventType"] = partition
        return await self._writer_for(partition).update(key, payload, actor)

    async def delete(
        self, key: Any, actor: str, *, partition: str | None = None
    ) -> dict[str, Any]:
        return await self._writer_for(partition).delete(key, actor)


# ── System configuration ────────────────────────────────────────────────────


class SystemConfigReader:
    """Dropdown / lookup values grouped by configuration type.

    Rows whose `enabled` column is FALSE are dropped; each group is sorted by
    its `order` column.
    """

    def __init__(
        self,
        client: SheetsClient,
        spreadsheet_id: str,
        cache: ReadCache | None = None,
    ) -> None:
        self._reader = SheetTableReader(
            client, spreadsheet_id, SYSTEM_CONFIG_SHEET, "system_config", cache, "system_config"
        )

    async def get_config(self) -> dict[str, list[dict[str, Any]]]:
        grouped: dict[str, list[dict[str, Any]]] = {}
        for row in await self._reader.get_all():
            config_type = str(row.get("type") or "").strip()
            value = str(row.get("value") or "").strip()
            if not config_type or not value:
                continue
            if str(row.get("enabled") or "").strip().upper() == "FALSE":
                continue
            grouped.setdefault(config_type, []).append(
                {"value": value, "note": row.get("note") or "", "order": row.get("order") or ""}
            )
        for items in grouped.values():
            items.sort(key=lambda item: _order_key(item["order"]))
        return grouped


def _order_key(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float("inf")
