"""Tests for AnnouncementService.

Covers:
- Published list ordering (pinned first, then newest)
- Create defaults and the required title
- Write protection of SQL-served announcements
"""

from __future__ import annotations

import pytest

from src.crm.convergence.errors import BusinessRuleViolation, ForbiddenError, NotFoundError
from src.crm.services.announcements import STATUS_PUBLISHED
from tests.fakes import build_fake_services

ROWS = [
    {"id": "A1", "title": "系統維護", "status": "已發布", "lastUpdateTime": "2026-01-05T00:00:00Z"},
    {
        "id": "A2",
        "title": "年終盤點",
        "status": "已發布",
        "isPinned": "TRUE",
        "lastUpdateTime": "2026-01-01T00:00:00Z",
    },
    {"id": "A3", "title": "草稿", "status": "草稿", "lastUpdateTime": "2026-02-01T00:00:00Z"},
    {"id": "A4", "title": "新功能上線", "status": "已發布", "lastUpdateTime": "2026-01-10T00:00:00Z"},
]


class TestPublished:
    async def test_pinned_then_newest(self):
        services, _ = build_fake_services(announcements=ROWS)
        published = await services.announcements.get_published()
        assert [a.id for a in published] == ["A2", "A4", "A1"]


class TestWrites:
    async def test_create_defaults(self):
        services, stores = build_fake_services()

        result = await services.announcements.create({"title": "新公告", "content": "內容"}, "amy")

        payload = stores.announcements.writes[0][2]
        assert payload["status"] == STATUS_PUBLISHED
        assert payload["isPinned"] is False
        assert payload["id"] == result["id"]

    async def test_title_required(self):
        services, stores = build_fake_services()
        with pytest.raises(BusinessRuleViolation):
            await services.announcements.create({"title": "  "}, "amy")
        assert stores.announcements.writes == []

    async def test_sheet_served_update_and_delete(self):
        services, stores = build_fake_services(announcements=ROWS)

        await services.announcements.update("A4", {"isPinned": True}, "amy")
        await services.announcements.delete("A1", "amy")

        assert stores.announcements.writes == [
            ("update", 5, {"isPinned": True}),
            ("delete", 2, {}),
        ]

    async def test_unknown_announcement(self):
        services, _ = build_fake_services(announcements=ROWS)
        with pytest.raises(NotFoundError):
            await services.announcements.delete("A404", "amy")


class TestProtection:
    async def test_sql_served_announcement_forbidden(self):
        sql_rows = [{"id": "A1", "title": "系統維護", "status": "已發布"}]
        services, stores = build_fake_services(
            announcements=ROWS, primaries={"announcement": sql_rows}
        )

        with pytest.raises(ForbiddenError):
            await services.announcements.update("A1", {"title": "改標題"}, "amy")
        with pytest.raises(ForbiddenError):
            await services.announcements.delete("A1", "amy")

        assert stores.announcements.writes == []
        assert stores.announcements.invalidated == []
