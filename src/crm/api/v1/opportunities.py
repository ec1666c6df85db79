"""Opportunity endpoints: search, details, writes, contact links and aggregations."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status

from src.crm.api.deps import get_actor, get_services
from src.crm.convergence.schemas import Opportunity, OpportunityDetails, OpportunityFilter
from src.crm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/opportunities", tags=["opportunities"])

_DATE_FIELDS = {"created_time", "expected_close_date", "last_update_time"}


@router.get("", response_model=list[Opportunity])
async def search_opportunities(
    q: str = "",
    stage: str | None = None,
    assignee: str | None = None,
    status_filter: str | None = Query(default=None, alias="status"),
    min_prob: float | None = Query(default=None, alias="minProb"),
    include_archived: bool = Query(default=False, alias="includeArchived"),
    services: ServiceContainer = Depends(get_services),
) -> list[Opportunity]:
    filters = OpportunityFilter(
        stage=stage,
        assignee=assignee,
        status=status_filter,
        min_prob=min_prob,
        include_archived=include_archived,
    )
    return await services.opportunities.search(q, filters)


# ── Aggregations ─────────────────────────────────────────────────────────────


@router.get("/by-stage")
async def opportunities_by_stage(
    services: ServiceContainer = Depends(get_services),
) -> dict[str, Any]:
    return await services.opportunities.by_stage()


@router.get("/by-county")
async def opportunities_by_county(
    opportunity_type: str | None = Query(default=None, alias="opportunityType"),
    services: ServiceContainer = Depends(get_services),
) -> list[dict[str, Any]]:
    return await services.opportunities.by_county(opportunity_type)


@router.get("/by-date-range", response_model=list[Opportunity])
async def opportunities_by_date_range(
    start: datetime,
    end: datetime,
    field: str = "created_time",
    services: ServiceContainer = Depends(get_services),
) -> list[Opportunity]:
    if field not in _DATE_FIELDS:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"field must be one of {sorted(_DATE_FIELDS)}",
        )
    return await services.opportunities.by_date_range(start, end, field)


# ── Single opportunity ───────────────────────────────────────────────────────


@router.get("/{opportunity_id}/details", response_model=OpportunityDetails)
async def get_opportunity_details(
    opportunity_id: str,
    services: ServiceContainer = Depends(get_services),
) -> OpportunityDetails:
    return await services.opportunities.get_details(opportunity_id)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_opportunity(
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.opportunities.create(data, actor)


@router.put("/batch")
async def batch_update_opportunities(
    updates: list[dict[str, Any]] = Body(..., embed=True),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    """Body: {"updates": [{"opportunityId" | "rowIndex", "data": {...}}, ...]}."""
    return await services.opportunities.batch_update(updates, actor)


@router.put("/{key}")
async def update_opportunity(
    key: str,
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    """Update by row index or opportunity id."""
    return await services.opportunities.update(key, data, actor)


@router.delete("/{key}")
async def delete_opportunity(
    key: str,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    """Delete by row index or opportunity id."""
    return await services.opportunities.delete(key, actor)


# ── Contact links ────────────────────────────────────────────────────────────


@router.post("/{opportunity_id}/contacts", status_code=status.HTTP_201_CREATED)
async def add_opportunity_contact(
    opportunity_id: str,
    contact: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.opportunities.add_contact(opportunity_id, contact, actor)


@router.delete("/{opportunity_id}/contacts/{contact_id}")
async def remove_opportunity_contact(
    opportunity_id: str,
    contact_id: str,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.opportunities.remove_contact(opportunity_id, contact_id, actor)
