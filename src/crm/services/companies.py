"""Company service -- converged company reads, name-keyed writes, details view.

Companies are addressed by name from the outside. Every name comparison goes
through normalize_company_name, so "台灣科技股份有限公司" and "台灣科技(Taiwan)"
address the same record.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

import structlog

from src.crm.convergence.errors import BusinessRuleViolation, NotFoundError
from src.crm.convergence.joins import (
    CompanyIndex,
    filter_companies,
    last_activity_by_company,
    newest_first,
    same_company,
    with_last_activity,
)
from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.router import WriteRouter
from src.crm.convergence.schemas import (
    Company,
    CompanyDetails,
    CompanyFilter,
    CompanyListItem,
    EventLog,
    OfficialContact,
    Opportunity,
    PotentialContact,
)
from src.crm.services.interactions import InteractionService

logger = structlog.get_logger(__name__)

COMPANY_EXISTS_MESSAGE = "公司已存在"
COMPANY_UPDATED_TITLE = "資料更新"


class CompanyService:
    """Company operations over the company WriteRouter and related readers.

    Args:
        router: WriteRouter for companies; authority comes from settings.
        opportunities: Converged opportunity reader.
        contacts: Converged official-contact reader.
        potential_contacts: Converged potential-contact reader.
        event_logs: Converged event-log reader.
        interactions: InteractionService for activity reads and system logs.
    """

    def __init__(
        self,
        router: WriteRouter[Company],
        *,
        opportunities: ConvergentReader[Opportunity],
        contacts: ConvergentReader[OfficialContact],
        potential_contacts: ConvergentReader[PotentialContact],
        event_logs: ConvergentReader[EventLog],
        interactions: InteractionService,
    ) -> None:
        self._router = router
        self._companies = router.reader
        self._opportunities = opportunities
        self._contacts = contacts
        self._potential_contacts = potential_contacts
        self._event_logs = event_logs
        self._interactions = interactions

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_all(self, filters: CompanyFilter | None = None) -> list[CompanyListItem]:
        """Filtered company list annotated with lastActivity, most recent first."""
        companies, opportunities, interactions, event_logs = await asyncio.gather(
            self._companies.fetch_all(),
            self._opportunities.fetch_all(),
            self._interactions.get_all(),
            self._event_logs.fetch_all(),
        )
        activity = last_activity_by_company(companies, opportunities, interactions, event_logs)
        filtered = filter_companies(companies, filters or CompanyFilter())
        return with_last_activity(filtered, activity)

    async def fetch_companies(self) -> list[Company]:
        return await self._companies.fetch_all()

    async def get_by_name(self, company_name: str) -> Company | None:
        companies = await self._companies.fetch_all()
        return CompanyIndex(companies).find(company_name)

    async def get_by_id(self, company_id: str) -> Company | None:
        return await self._companies.fetch_by_id(company_id)

    async def get_details(self, company_name: str) -> CompanyDetails:
        """Company with its contacts, opportunities, cards, interactions and events.

        Interactions and event logs include those recorded against any of the
        company's opportunities. Returns an empty shell when the name does not
        resolve.
        """
        (
            companies,
            contacts,
            opportunities,
            potential_contacts,
            interactions,
            event_logs,
        ) = await asyncio.gather(
            self._companies.fetch_all(),
            self._contacts.fetch_all(),
            self._opportunities.fetch_all(),
            self._potential_contacts.fetch_all(),
            self._interactions.get_all(),
            self._event_logs.fetch_all(),
        )
        company = CompanyIndex(companies).find(company_name)
        if company is None:
            return CompanyDetails.empty()

        related_opps = [
            o for o in opportunities if same_company(o.customer_company, company.company_name)
        ]
        opp_ids = {o.opportunity_id for o in related_opps if o.opportunity_id}

        def belongs(company_id: str, opportunity_id: str) -> bool:
            if company.company_id and company_id == company.company_id:
                return True
            return bool(opportunity_id) and opportunity_id in opp_ids

        return CompanyDetails(
            company_info=company,
            contacts=[
                c for c in contacts if company.company_id and c.company_id == company.company_id
            ],
            opportunities=related_opps,
            potential_contacts=[
                pc for pc in potential_contacts if same_company(pc.company, company.company_name)
            ],
            interactions=newest_first(
                [i for i in interactions if belongs(i.company_id, i.opportunity_id)],
                "interaction_time",
                "created_time",
            ),
            event_logs=newest_first(
                [e for e in event_logs if belongs(e.company_id, e.opportunity_id)],
                "created_time",
            ),
        )

    # ── Writes ──────────────────────────────────────────────────────────────

    async def create(
        self, company_name: str, data: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        """Create a company unless one with the same normalized name exists.

        Returns:
            The write result, or {success, id, name, message, existed, data}
            describing the existing company (nothing is written).
        """
        name = (company_name or "").strip()
        if not name:
            raise BusinessRuleViolation("company name is required")

        existing = await self.get_by_name(name)
        if existing is not None:
            logger.info(
                "companies.create_existing",
                company_name=name,
                company_id=existing.company_id,
            )
            return {
                "success": True,
                "id": existing.company_id,
                "name": existing.company_name,
                "message": COMPANY_EXISTS_MESSAGE,
                "existed": True,
                "data": existing.to_record(),
            }

        payload = {**dict(data), "companyName": name}
        result = await self._router.create(payload, actor)
        return {**result.to_record(), "name": name, "existed": False}

    async def update(
        self, company_name: str, data: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        """Update a company addressed by name and record a system interaction.

        Raises:
            NotFoundError: No company has this normalized name.
            ForbiddenError: The company is not addressable by the write store.
        """
        existing = await self.get_by_name(company_name)
        if existing is None:
            raise NotFoundError("company", company_name)

        result = await self._router.update(company_name, data, actor)
        if result.success:
            changed = ", ".join(sorted(k for k in data if k not in {"rowIndex", "row_index"}))
            await self._interactions.log_system(
                COMPANY_UPDATED_TITLE,
                f"公司資料已由 {actor} 更新: {changed}" if changed else f"公司資料已由 {actor} 更新",
                actor,
                company_id=existing.company_id,
            )
        return result.to_record()

    async def delete(self, company_name: str, actor: str) -> dict[str, Any]:
        """Delete a company unless opportunities still reference it.

        Raises:
            BusinessRuleViolation: Related opportunities exist.
            NotFoundError: No company has this normalized name.
        """
        opportunities = await self._opportunities.fetch_all()
        related = [o for o in opportunities if same_company(o.customer_company, company_name)]
        if related:
            example = related[0].opportunity_name or related[0].opportunity_id
            raise BusinessRuleViolation(
                f"company '{company_name}' still has {len(related)} related opportunities "
                f"(e.g. '{example}')",
                blocking_count=len(related),
                example=example,
            )
        result = await self._router.delete(company_name, actor)
        return result.to_record()
