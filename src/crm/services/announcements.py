"""Announcement (bulletin board) service."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from src.crm.convergence.errors import BusinessRuleViolation, NotFoundError
from src.crm.convergence.joins import newest_first
from src.crm.convergence.router import WriteRouter
from src.crm.convergence.schemas import Announcement

STATUS_PUBLISHED = "已發布"


class AnnouncementService:
    """Published-announcement reads and write-protected mutations.

    Update and delete look the target up through the converged read; a
    SQL-served announcement has no row index and is refused with
    ForbiddenError before any store is touched.
    """

    def __init__(self, router: WriteRouter[Announcement]) -> None:
        self._router = router

    async def get_published(self) -> list[Announcement]:
        """Published announcements, pinned first, then newest lastUpdateTime."""
        announcements = await self._router.reader.fetch_all()
        published = [a for a in announcements if a.status == STATUS_PUBLISHED]
        ordered = newest_first(published, "last_update_time")
        return sorted(ordered, key=lambda a: not a.is_pinned)

    async def _find(self, announcement_id: str) -> Announcement:
        announcements = await self._router.reader.fetch_all()
        target = next((a for a in announcements if a.id == announcement_id), None)
        if target is None:
            raise NotFoundError("announcement", announcement_id)
        return target

    async def create(self, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        if not str(data.get("title") or "").strip():
            raise BusinessRuleViolation("announcement title is required")
        payload = {"status": STATUS_PUBLISHED, "isPinned": False, **dict(data)}
        result = await self._router.create(payload, actor)
        return result.to_record()

    async def update(
        self, announcement_id: str, data: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        target = await self._find(announcement_id)
        result = await self._router.update(target, data, actor)
        return result.to_record()

    async def delete(self, announcement_id: str, actor: str) -> dict[str, Any]:
        target = await self._find(announcement_id)
        result = await self._router.delete(target, actor)
        return result.to_record()
