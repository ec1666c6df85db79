"""Contact endpoints: official contacts (SQL) and potential contacts (business cards)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from src.crm.api.deps import get_actor, get_services
from src.crm.convergence.schemas import (
    ContactPage,
    OfficialContact,
    PotentialContact,
    PotentialContactStats,
)
from src.crm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/contacts", tags=["contacts"])


# ── Potential contacts ───────────────────────────────────────────────────────
# Declared before /{contact_id} so "potential" is not captured as an id.


@router.get("/potential", response_model=list[PotentialContact])
async def list_potential_contacts(
    q: str = "",
    limit: int = Query(default=2000),
    services: ServiceContainer = Depends(get_services),
) -> list[PotentialContact]:
    if q:
        return await services.contacts.search_potential(q)
    return await services.contacts.list_potential(limit)


@router.get("/potential/stats", response_model=PotentialContactStats)
async def potential_contact_stats(
    services: ServiceContainer = Depends(get_services),
) -> PotentialContactStats:
    return await services.contacts.dashboard_stats()


@router.put("/potential/{row_index}")
async def update_potential_contact(
    row_index: int,
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.contacts.update_potential(row_index, data, actor)


# ── Official contacts ────────────────────────────────────────────────────────


@router.get("", response_model=ContactPage)
async def search_official_contacts(
    q: str = "",
    page: int = Query(default=1, ge=1),
    services: ServiceContainer = Depends(get_services),
) -> ContactPage:
    return await services.contacts.search_official(q, page)


@router.get("/{contact_id}", response_model=OfficialContact)
async def get_contact(
    contact_id: str,
    services: ServiceContainer = Depends(get_services),
) -> OfficialContact:
    contact = await services.contacts.get_by_id(contact_id)
    if contact is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"contact not found: {contact_id}",
        )
    return contact


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_contact(
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.contacts.create(data, actor)


@router.put("/{contact_id}")
async def update_contact(
    contact_id: str,
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.contacts.update(contact_id, data, actor)


@router.delete("/{contact_id}")
async def delete_contact(
    contact_id: str,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.contacts.delete(contact_id, actor)
