"""Event log endpoints. A changed eventType on update moves the record between partitions."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, status

from src.crm.api.deps import get_actor, get_services
from src.crm.convergence.schemas import EventLog
from src.crm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/events", tags=["events"])


@router.get("", response_model=list[EventLog])
async def list_events(services: ServiceContainer = Depends(get_services)) -> list[EventLog]:
    return await services.event_logs.get_all()


@router.get("/types")
async def list_event_types(
    services: ServiceContainer = Depends(get_services),
) -> list[dict[str, Any]]:
    return await services.event_logs.event_types()


@router.get("/{event_id}", response_model=EventLog)
async def get_event(
    event_id: str,
    services: ServiceContainer = Depends(get_services),
) -> EventLog:
    event = await services.event_logs.get_by_id(event_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"event log not found: {event_id}",
        )
    return event


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_event(
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.event_logs.create(data, actor)


@router.put("/{key}")
async def update_event(
    key: str,
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    """Update by eventId or row index; the response carries moved=true after a move."""
    return await services.event_logs.update(key, data, actor)


@router.delete("/{event_id}")
async def delete_event(
    event_id: str,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.event_logs.delete(event_id, actor)
