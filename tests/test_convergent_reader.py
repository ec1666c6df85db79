"""Unit tests for ConvergentReader -- SQL first, spreadsheet fallback.

Covers:
- Primary served when it returns rows (fallback never called)
- Soft failures: raised error, malformed result, empty list (sync lag)
- Optional sync_status() making an empty primary authoritative
- Hard failure of the fallback raised as SourceReadError
- force_fallback skipping the primary and bypassing the read cache
- fetch_by_id through the primary and through a fallback scan
- Best-effort invalidation
"""

from __future__ import annotations

import pytest

from src.crm.convergence.errors import SourceReadError
from src.crm.convergence.field_mapping import normalize_company
from src.crm.convergence.reader import ConvergentReader, ReadStatus
from tests.fakes import StaticReader


def _sheet_companies(count: int) -> list[dict]:
    return [
        {"companyId": f"COMP_{i}", "companyName": f"公司{i}", "rowIndex": i + 2}
        for i in range(count)
    ]


def _sql_companies() -> list[dict]:
    return [{"company_id": "COMP_SQL", "company_name": "資料庫公司", "city": "台中市"}]


def _reader(primary=None, fallback=None) -> ConvergentReader:
    return ConvergentReader(
        "company",
        fallback or StaticReader(_sheet_companies(3)),
        normalize_company,
        primary=primary,
        identity=lambda c: c.company_id,
    )


# ── fetch_all ──────────────────────────────────────────────────────────────


class TestFetchAll:
    async def test_primary_rows_served_and_fallback_untouched(self):
        fallback = StaticReader(_sheet_companies(3))
        reader = _reader(primary=StaticReader(_sql_companies()), fallback=fallback)

        companies = await reader.fetch_all()

        assert [c.company_id for c in companies] == ["COMP_SQL"]
        assert companies[0].county == "台中市"
        assert companies[0].row_index is None
        assert fallback.calls == []

    async def test_empty_primary_treated_as_sync_lag(self):
        """SQL returns [] while the spreadsheet has 10 companies: the 10 are returned."""
        reader = _reader(primary=StaticReader([]), fallback=StaticReader(_sheet_companies(10)))

        companies = await reader.fetch_all()

        assert len(companies) == 10
        assert all(c.row_index is not None for c in companies)

    async def test_primary_error_falls_back(self):
        reader = _reader(primary=StaticReader(error=ConnectionError("db down")))
        companies = await reader.fetch_all()
        assert len(companies) == 3

    async def test_malformed_primary_falls_back(self):
        reader = _reader(primary=StaticReader({"not": "a list"}))
        companies = await reader.fetch_all()
        assert len(companies) == 3

    async def test_no_primary_reads_fallback(self):
        assert len(await _reader().fetch_all()) == 3

    async def test_synchronized_empty_primary_is_authoritative(self):
        fallback = StaticReader(_sheet_companies(3))
        reader = _reader(primary=StaticReader([], synchronized=True), fallback=fallback)

        assert await reader.fetch_all() == []
        assert fallback.calls == []

    async def test_unsynchronized_status_still_falls_back(self):
        reader = _reader(primary=StaticReader([], synchronized=False))
        assert len(await reader.fetch_all()) == 3

    async def test_fallback_failure_is_hard(self):
        reader = _reader(
            primary=StaticReader(error=ConnectionError("db down")),
            fallback=StaticReader(error=TimeoutError("sheets timeout")),
        )
        with pytest.raises(SourceReadError, match="sheets timeout") as exc_info:
            await reader.fetch_all()
        assert isinstance(exc_info.value.__cause__, TimeoutError)

    async def test_malformed_fallback_is_hard(self):
        reader = _reader(fallback=StaticReader("garbage"))
        with pytest.raises(SourceReadError):
            await reader.fetch_all()

    async def test_force_fallback_skips_primary_and_cache(self):
        primary = StaticReader(_sql_companies())
        fallback = StaticReader(_sheet_companies(3), cached=_sheet_companies(1))
        reader = _reader(primary=primary, fallback=fallback)

        companies = await reader.fetch_all(force_fallback=True)

        assert len(companies) == 3
        assert primary.calls == []
        assert fallback.calls == [True]

    async def test_cached_fallback_used_for_ordinary_reads(self):
        fallback = StaticReader(_sheet_companies(3), cached=_sheet_companies(1))
        reader = _reader(fallback=fallback)
        assert len(await reader.fetch_all()) == 1


class TestReadOutcome:
    async def test_soft_fail_reason_reported(self):
        reader = _reader(primary=StaticReader([]))
        outcome = await reader._try_primary()
        assert outcome.status is ReadStatus.SOFT_FAIL
        assert outcome.reason == "empty"

    async def test_read_never_raises(self):
        reader = _reader(fallback=StaticReader(error=RuntimeError("boom")))
        outcome = await reader.read()
        assert outcome.status is ReadStatus.HARD_FAIL
        assert outcome.source == "fallback"


# ── fetch_by_id ────────────────────────────────────────────────────────────


class TestFetchById:
    async def test_primary_get_by_id(self):
        fallback = StaticReader(_sheet_companies(3))
        reader = _reader(primary=StaticReader(_sql_companies(), by_id=True), fallback=fallback)

        company = await reader.fetch_by_id("COMP_SQL")

        assert company is not None and company.company_name == "資料庫公司"
        assert fallback.calls == []

    async def test_primary_miss_scans_fallback(self):
        reader = _reader(primary=StaticReader(_sql_companies(), by_id=True))
        company = await reader.fetch_by_id("COMP_1")
        assert company is not None and company.row_index == 3

    async def test_primary_error_scans_fallback(self):
        reader = _reader(primary=StaticReader(error=ConnectionError("db down"), by_id=True))
        assert (await reader.fetch_by_id("COMP_2")).company_name == "公司2"

    async def test_unknown_id_returns_none(self):
        assert await _reader().fetch_by_id("COMP_404") is None

    async def test_empty_id_returns_none(self):
        assert await _reader().fetch_by_id("") is None


# ── invalidate ─────────────────────────────────────────────────────────────


class TestInvalidate:
    async def test_invalidates_every_store_with_a_hook(self):
        primary = StaticReader(_sql_companies())
        fallback = StaticReader(_sheet_companies(1))
        reader = ConvergentReader(
            "company", fallback, normalize_company, primary=primary, cache_key="company"
        )

        await reader.invalidate()

        assert fallback.invalidated == ["company"]
        assert primary.invalidated == ["company"]

    async def test_raising_hook_is_swallowed(self):
        fallback = StaticReader(_sheet_companies(1))

        async def broken(cache_key: str) -> None:
            raise RuntimeError("redis down")

        fallback.invalidate = broken  # type: ignore[method-assign]
        await _reader(fallback=fallback).invalidate()
