"""Company endpoints: list with activity, details, name-addressed writes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from src.crm.api.deps import get_actor, get_services
from src.crm.convergence.schemas import CompanyDetails, CompanyFilter, CompanyListItem
from src.crm.services.container import ServiceContainer

router = APIRouter(prefix="/api/v1/companies", tags=["companies"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class CreateCompanyRequest(BaseModel):
    """Request body for creating a company. Other company columns pass through."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    company_name: str = Field(alias="companyName", min_length=1)


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.get("", response_model=list[CompanyListItem])
async def list_companies(
    q: str = "",
    type: str | None = None,
    stage: str | None = None,
    rating: str | None = None,
    services: ServiceContainer = Depends(get_services),
) -> list[CompanyListItem]:
    """Companies annotated with lastActivity, most recently active first."""
    filters = CompanyFilter(q=q, type=type, stage=stage, rating=rating)
    return await services.companies.get_all(filters)


@router.get("/{company_name}/details", response_model=CompanyDetails)
async def get_company_details(
    company_name: str,
    services: ServiceContainer = Depends(get_services),
) -> CompanyDetails:
    return await services.companies.get_details(company_name)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_company(
    body: CreateCompanyRequest,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    data = body.model_dump(by_alias=True, exclude={"company_name"})
    return await services.companies.create(body.company_name, data, actor)


@router.put("/{company_name}")
async def update_company(
    company_name: str,
    data: dict[str, Any] = Body(...),
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.companies.update(company_name, data, actor)


@router.delete("/{company_name}")
async def delete_company(
    company_name: str,
    services: ServiceContainer = Depends(get_services),
    actor: str = Depends(get_actor),
) -> dict[str, Any]:
    return await services.companies.delete(company_name, actor)
