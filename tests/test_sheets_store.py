"""Tests for the Google Sheets store adapters and the Redis read cache.

The googleapiclient resource is a MagicMock; no network calls are made.

Covers:
- SheetTableReader row numbering, blank rows, cache hits and fresh reads
- SheetTableWriter append / update / delete requests and audit stamping
- EventLogSheetReader / EventLogSheetWriter partition handling
- SystemConfigReader grouping
- ReadCache best-effort semantics
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.crm.convergence.errors import BusinessRuleViolation, NotFoundError
from src.crm.convergence.field_mapping import COMPANY_FIELDS, EVENT_LOG_FIELDS
from src.crm.core.redis import ReadCache
from src.crm.stores.sheets import (
    COMPANY_SHEET,
    EventLogSheetReader,
    EventLogSheetWriter,
    SheetsClient,
    SheetTableReader,
    SheetTableWriter,
    SystemConfigReader,
    appended_row_index,
    column_letter,
)


# ── Helpers ──────────────────────────────────────────────────────────────────


def _client(ranges: dict[str, list[list]] | None = None) -> tuple[SheetsClient, MagicMock]:
    """SheetsClient over a mocked Sheets v4 resource.

    `ranges` maps an A1 range to the values returned by values().get().
    """
    service = MagicMock()
    spreadsheets = service.spreadsheets.return_value
    values = spreadsheets.values.return_value
    ranges = ranges or {}

    def _get(spreadsheetId: str, range: str) -> MagicMock:
        request = MagicMock()
        request.execute.return_value = {"values": ranges.get(range, [])}
        return request

    values.get.side_effect = _get
    values.append.return_value.execute.return_value = {
        "updates": {"updatedRange": "'公司總表'!A5:M5"}
    }
    values.update.return_value.execute.return_value = {"updatedRows": 1}
    spreadsheets.get.return_value.execute.return_value = {
        "sheets": [{"properties": {"title": "公司總表", "sheetId": 11}}]
    }
    spreadsheets.batchUpdate.return_value.execute.return_value = {}

    auth = MagicMock()
    auth.get_sheets_service.return_value = service
    return SheetsClient(auth), service


def _company_row(company_id: str, name: str) -> list[str]:
    return [company_id, name, "02-1234", "台北市信義路"]


def _fake_cache(stored: dict[str, str] | None = None) -> tuple[ReadCache, AsyncMock]:
    redis = AsyncMock()
    stored = stored if stored is not None else {}
    redis.get.side_effect = lambda key: stored.get(key)
    return ReadCache(redis, ttl_seconds=60), redis


# ── Helpers under test ───────────────────────────────────────────────────────


class TestA1Helpers:
    def test_column_letter(self):
        assert column_letter(1) == "A"
        assert column_letter(13) == "M"
        assert column_letter(27) == "AA"

    def test_appended_row_index(self):
        assert appended_row_index({"updates": {"updatedRange": "'公司總表'!A12:M12"}}) == 12
        assert appended_row_index({}) is None

    def test_company_sheet_ranges(self):
        assert COMPANY_SHEET.data_range == "'公司總表'!A2:M"
        assert COMPANY_SHEET.row_range(7) == "'公司總表'!A7:M7"


# ── Reader ─────────────────────────────────────────────────────────────────


class TestSheetTableReader:
    async def test_blank_rows_skipped_but_counted(self):
        client, _ = _client(
            {
                COMPANY_SHEET.data_range: [
                    _company_row("COMP_1", "台灣科技"),
                    ["", "  "],
                    _company_row("COMP_2", "北方電機"),
                ]
            }
        )
        reader = SheetTableReader(client, "core", COMPANY_SHEET, "company")

        rows = await reader.get_all()

        assert [(r["companyId"], r["rowIndex"]) for r in rows] == [("COMP_1", 2), ("COMP_2", 4)]
        assert rows[0]["engagementRating"] == ""

    async def test_cache_hit_skips_api(self):
        client, service = _client()
        cached = [{"companyId": "COMP_C", "rowIndex": 2}]
        cache, _ = _fake_cache({"crm:cache:company": json.dumps(cached)})
        reader = SheetTableReader(client, "core", COMPANY_SHEET, "company", cache, "company")

        assert await reader.get_all() == cached
        service.spreadsheets.return_value.values.return_value.get.assert_not_called()

    async def test_fresh_read_bypasses_and_refreshes_cache(self):
        client, _ = _client({COMPANY_SHEET.data_range: [_company_row("COMP_1", "台灣科技")]})
        cache, redis = _fake_cache({"crm:cache:company": json.dumps([{"companyId": "STALE"}])})
        reader = SheetTableReader(client, "core", COMPANY_SHEET, "company", cache, "company")

        rows = await reader.get_all(fresh=True)

        assert rows[0]["companyId"] == "COMP_1"
        redis.set.assert_awaited_once()

    async def test_invalidate_drops_cache_key(self):
        client, _ = _client()
        cache, redis = _fake_cache()
        reader = SheetTableReader(client, "core", COMPANY_SHEET, "company", cache, "company")
        await reader.invalidate("company")
        redis.delete.assert_awaited_once_with("crm:cache:company")


# ── Writer ─────────────────────────────────────────────────────────────────


class TestSheetTableWriter:
    def _writer(self, client: SheetsClient) -> SheetTableWriter:
        return SheetTableWriter(
            client, "core", COMPANY_SHEET, "company", COMPANY_FIELDS, id_key="companyId"
        )

    async def test_create_appends_in_column_order(self):
        client, service = _client()

        result = await self._writer(client).create(
            {"companyId": "COMP_1", "companyName": "台灣科技", "county": "台北市"}, "amy"
        )

        assert result == {"success": True, "id": "COMP_1", "rowIndex": 5}
        kwargs = service.spreadsheets.return_value.values.return_value.append.call_args.kwargs
        row = kwargs["body"]["values"][0]
        assert len(row) == len(COMPANY_SHEET.columns)
        by_column = dict(zip(COMPANY_SHEET.columns, row))
        assert by_column["companyName"] == "台灣科技"
        assert by_column["county"] == "台北市"
        assert by_column["creator"] == "amy"
        assert by_column["lastModifier"] == "amy"
        assert by_column["createdTime"]

    async def test_create_accepts_sql_aliases(self):
        client, service = _client()
        await self._writer(client).create(
            {"company_id": "COMP_1", "company_name": "台灣科技", "city": "台中市"}, "amy"
        )
        row = service.spreadsheets.return_value.values.return_value.append.call_args.kwargs[
            "body"
        ]["values"][0]
        by_column = dict(zip(COMPANY_SHEET.columns, row))
        assert by_column["companyId"] == "COMP_1"
        assert by_column["county"] == "台中市"

    async def test_update_merges_onto_current_row(self):
        client, service = _client({COMPANY_SHEET.row_range(3): [_company_row("COMP_1", "台灣科技")]})

        result = await self._writer(client).update(
            3, {"phone": "03-9999", "companyId": "COMP_HIJACK"}, "bob"
        )

        assert result["id"] == "COMP_1"
        kwargs = service.spreadsheets.return_value.values.return_value.update.call_args.kwargs
        assert kwargs["range"] == COMPANY_SHEET.row_range(3)
        by_column = dict(zip(COMPANY_SHEET.columns, kwargs["body"]["values"][0]))
        assert by_column["companyId"] == "COMP_1"
        assert by_column["phone"] == "03-9999"
        assert by_column["address"] == "台北市信義路"
        assert by_column["lastModifier"] == "bob"

    async def test_update_blank_row_not_found(self):
        client, _ = _client()
        with pytest.raises(NotFoundError):
            await self._writer(client).update(9, {"phone": "1"}, "bob")

    async def test_delete_removes_physical_row(self):
        client, service = _client()

        await self._writer(client).delete(4, "bob")

        body = service.spreadsheets.return_value.batchUpdate.call_args.kwargs["body"]
        dimension = body["requests"][0]["deleteDimension"]["range"]
        assert dimension == {"sheetId": 11, "dimension": "ROWS", "startIndex": 3, "endIndex": 4}

    async def test_delete_header_row_refused(self):
        client, service = _client()
        with pytest.raises(NotFoundError):
            await self._writer(client).delete(1, "bob")
        service.spreadsheets.return_value.batchUpdate.assert_not_called()


# ── Event logs ─────────────────────────────────────────────────────────────


class TestEventLogSheets:
    async def test_reader_tags_partition(self):
        ranges = {
            "'事件紀錄_iot'!A2:J": [["E1", "產線巡檢"]],
            "'事件紀錄_dx'!A2:J": [["E2", "數位轉型會議"], ["E3", "回訪"]],
        }
        client, _ = _client(ranges)
        reader = EventLogSheetReader(client, "core", ["iot", "dx"])

        rows = await reader.get_all()

        assert {(r["eventId"], r["eventType"], r["rowIndex"]) for r in rows} == {
            ("E1", "iot", 2),
            ("E2", "dx", 2),
            ("E3", "dx", 3),
        }

    async def test_writer_rejects_unknown_partition(self):
        client, _ = _client()
        writer = EventLogSheetWriter(client, "core", ["iot"], EVENT_LOG_FIELDS)
        with pytest.raises(BusinessRuleViolation, match="unknown event type"):
            await writer.create({"eventId": "E9", "eventType": "sales"}, "amy")

    async def test_writer_appends_to_partition_worksheet(self):
        client, service = _client()
        writer = EventLogSheetWriter(client, "core", ["iot", "dx"], EVENT_LOG_FIELDS)

        await writer.create({"eventId": "E9", "eventType": "dx", "eventName": "啟動會議"}, "amy")

        kwargs = service.spreadsheets.return_value.values.return_value.append.call_args.kwargs
        assert kwargs["range"].startswith("'事件紀錄_dx'!")


# ── System config ──────────────────────────────────────────────────────────


class TestSystemConfig:
    async def test_grouped_sorted_and_filtered(self):
        client, _ = _client(
            {
                "'系統設定'!A2:E": [
                    ["機會階段", "02_需求確認", "需求確認", "TRUE", "2"],
                    ["機會階段", "01_初步接觸", "初步接觸", "TRUE", "1"],
                    ["機會階段", "99_停用", "停用", "FALSE", "3"],
                    ["事件類型", "iot", "IoT", "", ""],
                    ["", "孤兒值"],
                ]
            }
        )
        config = await SystemConfigReader(client, "core").get_config()

        assert [i["value"] for i in config["機會階段"]] == ["01_初步接觸", "02_需求確認"]
        assert config["事件類型"] == [{"value": "iot", "note": "IoT", "order": ""}]
        assert set(config) == {"機會階段", "事件類型"}


# ── Read cache ─────────────────────────────────────────────────────────────


class TestReadCache:
    async def test_redis_errors_are_misses(self):
        redis = AsyncMock()
        redis.get.side_effect = ConnectionError("redis down")
        redis.set.side_effect = ConnectionError("redis down")
        redis.delete.side_effect = ConnectionError("redis down")
        cache = ReadCache(redis)

        assert await cache.get_rows("company") is None
        await cache.set_rows("company", [{"a": 1}])
        await cache.invalidate("company")

    async def test_corrupt_entry_is_a_miss(self):
        cache, _ = _fake_cache({"crm:cache:company": "{not json"})
        assert await cache.get_rows("company") is None

    async def test_zero_ttl_disables(self):
        redis = AsyncMock()
        cache = ReadCache(redis, ttl_seconds=0)
        await cache.set_rows("company", [{"a": 1}])
        assert await cache.get_rows("company") is None
        redis.set.assert_not_called()
        redis.get.assert_not_called()

    async def test_round_trip_with_ttl(self):
        redis = AsyncMock()
        cache = ReadCache(redis, ttl_seconds=30)
        await cache.set_rows("company", [{"companyName": "台灣科技"}])
        args, kwargs = redis.set.call_args
        assert args[0] == "crm:cache:company"
        assert json.loads(args[1]) == [{"companyName": "台灣科技"}]
        assert kwargs["ex"] == 30
