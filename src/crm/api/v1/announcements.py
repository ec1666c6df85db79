"""Bulletin-board announcement endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status

from src.crm.api.deps import get_actor, get_services
from src.crm.convergence.schemas import Announcement
from src.crm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/announcements", tags=["announcements"])


@router.get("", response_model=list[Announcement])
async def list_announcements(
    services: ServiceContainer = Depends(get_services),
) -> list[Announcement]:
    """Published announcements, pinned first."""
    return await services.announcements.get_published()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_announcement(
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.announcements.create(data, actor)


@router.put("/{announcement_id}")
async def update_announcement(
    announcement_id: str,
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.announcements.update(announcement_id, data, actor)


@router.delete("/{announcement_id}")
async def delete_announcement(
    announcement_id: str,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.announcements.delete(announcement_id, actor)
