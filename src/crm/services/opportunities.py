"""Opportunity service -- search, details, change-logged updates, contact links, aggregations.

Opportunities join companies by normalized customer_company name, never by
id. Updates and deletes address a row index or an opportunity id; both are
resolved by a forced spreadsheet read inside the WriteRouter.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping, Sequence
from datetime import datetime
from typing import Any

import structlog

from src.crm.convergence.errors import BusinessRuleViolation, InvalidKeyError, SourceReadError
from src.crm.convergence.joins import (
    CompanyIndex,
    filter_opportunities,
    newest_first,
    opportunity_family,
    parse_timestamp,
    resolve_job_title,
    same_company,
    would_create_cycle,
)
from src.crm.convergence.moves import parse_row_index
from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.router import WriteRouter
from src.crm.convergence.schemas import (
    ContactOpportunityLink,
    EventLog,
    Opportunity,
    OpportunityDetails,
    OpportunityFilter,
)
from src.crm.services.companies import CompanyService
from src.crm.services.contacts import ContactService
from src.crm.services.interactions import InteractionService
from src.crm.stores.sheets import SystemConfigReader

logger = structlog.get_logger(__name__)

STATUS_IN_PROGRESS = "進行中"
STATUS_ARCHIVED = "已封存"
STAGE_CONFIG = "機會階段"
TEAM_CONFIG = "團隊成員"

TITLE_UPDATED = "機會資料更新"
TITLE_DELETED = "刪除機會案件"
TITLE_LINKED = "關聯聯絡人"
TITLE_CREATED_AND_LINKED = "建立並關聯新聯絡人"
TITLE_LINKED_FROM_CARD = "從潛在客戶關聯"
TITLE_UNLINKED = "解除聯絡人關聯"

_UNSET = "未設定"


def link_matcher(link: ContactOpportunityLink, key: Any) -> bool:
    """Matches an (opportunity_id, contact_id) key against an active link row."""
    if not isinstance(key, tuple) or len(key) != 2:
        return False
    opportunity_id, contact_id = key
    return (
        link.is_active
        and link.opportunity_id.strip() == str(opportunity_id).strip()
        and link.contact_id.strip() == str(contact_id).strip()
    )


def change_summary(
    original: Opportunity,
    data: Mapping[str, Any],
    config: Mapping[str, list[dict[str, Any]]],
) -> list[str]:
    """Human-readable change lines for stage, value, assignee and close date."""

    def note(config_type: str, value: str) -> str:
        for item in config.get(config_type, []):
            if item.get("value") == value:
                return item.get("note") or value
        return value or "N/A"

    lines = []
    new_stage = data.get("currentStage")
    if new_stage and original.current_stage and new_stage != original.current_stage:
        lines.append(
            f"階段從【{note(STAGE_CONFIG, original.current_stage)}】"
            f"更新為【{note(STAGE_CONFIG, new_stage)}】"
        )
    if "opportunityValue" in data and data["opportunityValue"] != original.opportunity_value:
        lines.append(
            f"機會價值從 [{original.opportunity_value or _UNSET}] "
            f"更新為 [{data['opportunityValue'] or _UNSET}]"
        )
    if "assignee" in data and data["assignee"] != original.assignee:
        lines.append(
            f"負責業務從 [{note(TEAM_CONFIG, original.assignee)}] "
            f"變更為 [{note(TEAM_CONFIG, data['assignee'])}]"
        )
    if "expectedCloseDate" in data and data["expectedCloseDate"] != original.expected_close_date:
        lines.append(
            f"預計結案日從 [{original.expected_close_date or _UNSET}] "
            f"更新為 [{data['expectedCloseDate'] or _UNSET}]"
        )
    return lines


def _parent_guard(
    opportunities: Sequence[Opportunity],
) -> Callable[[Opportunity, dict[str, Any]], dict[str, Any]]:
    """Merge hook rejecting a parentOpportunityId that would close a cycle."""

    def guard(current: Opportunity, payload: dict[str, Any]) -> dict[str, Any]:
        if "parentOpportunityId" in payload:
            new_parent = str(payload["parentOpportunityId"] or "").strip()
            if would_create_cycle(current.opportunity_id, new_parent, opportunities):
                raise BusinessRuleViolation(
                    f"opportunity '{current.opportunity_id}' cannot take "
                    f"'{new_parent}' as parent: it would create a cycle",
                    blocking_count=1,
                    example=new_parent,
                )
        return payload

    return guard


class OpportunityService:
    """Opportunity operations.

    Args:
        router: WriteRouter for opportunities (spreadsheet write authority).
        links: WriteRouter for opportunity-contact links.
        companies: CompanyService, used to resolve and create companies.
        contacts: ContactService, for linked contacts and business cards.
        interactions: InteractionService for activity reads and system logs.
        event_logs: Converged event-log reader.
        config: System configuration reader (stage and team display names).
    """

    def __init__(
        self,
        router: WriteRouter[Opportunity],
        *,
        links: WriteRouter[ContactOpportunityLink],
        companies: CompanyService,
        contacts: ContactService,
        interactions: InteractionService,
        event_logs: ConvergentReader[EventLog],
        config: SystemConfigReader | None = None,
    ) -> None:
        self._router = router
        self._opportunities = router.reader
        self._links = links
        self._companies = companies
        self._contacts = contacts
        self._interactions = interactions
        self._event_logs = event_logs
        self._config = config

    async def _system_config(self) -> dict[str, list[dict[str, Any]]]:
        if self._config is None:
            return {}
        try:
            return await self._config.get_config()
        except Exception as exc:
            logger.warning("opportunities.system_config_unavailable", error=str(exc))
            return {}

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_all(self) -> list[Opportunity]:
        return await self._opportunities.fetch_all()

    async def get_by_id(self, opportunity_id: str) -> Opportunity | None:
        return await self._opportunities.fetch_by_id(opportunity_id)

    async def search(
        self, query: str = "", filters: OpportunityFilter | None = None
    ) -> list[Opportunity]:
        """Full filtered list (no paging), newest lastUpdateTime first."""
        filters = (filters or OpportunityFilter()).model_copy(update={"q": query or ""})
        opportunities = await self._opportunities.fetch_all()
        return filter_opportunities(opportunities, filters, STATUS_ARCHIVED)

    async def get_details(self, opportunity_id: str) -> OpportunityDetails:
        """Opportunity with activity, linked contacts, cards and parent/children.

        mainContactJobTitle is filled by cascading lookup. Returns an empty
        shell when the id does not resolve.
        """
        opportunities, interactions, event_logs, linked, cards = await asyncio.gather(
            self._opportunities.fetch_all(),
            self._interactions.get_all(),
            self._event_logs.fetch_all(),
            self._contacts.linked_contacts(opportunity_id),
            self._contacts.list_potential(limit=0),
        )
        opportunity = next(
            (o for o in opportunities if o.opportunity_id == opportunity_id), None
        )
        if opportunity is None:
            return OpportunityDetails.empty()

        company_cards = [c for c in cards if same_company(c.company, opportunity.customer_company)]
        job_title = resolve_job_title(
            opportunity.main_contact, opportunity.customer_company, linked, cards
        )
        parent, children = opportunity_family(opportunity, opportunities)
        return OpportunityDetails(
            opportunity_info=opportunity.model_copy(update={"main_contact_job_title": job_title}),
            interactions=newest_first(
                [i for i in interactions if i.opportunity_id == opportunity_id],
                "interaction_time",
                "created_time",
            ),
            event_logs=newest_first(
                [e for e in event_logs if e.opportunity_id == opportunity_id], "created_time"
            ),
            linked_contacts=linked,
            potential_contacts=company_cards,
            parent_opportunity=parent,
            child_opportunities=children,
        )

    # ── Writes ──────────────────────────────────────────────────────────────

    async def create(self, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        parent_id = str(data.get("parentOpportunityId") or "").strip()
        if parent_id and await self.get_by_id(parent_id) is None:
            raise BusinessRuleViolation(f"parent opportunity '{parent_id}' does not exist")
        result = await self._router.create(data, actor)
        return result.to_record()

    async def update(self, key: Any, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        """Update an opportunity and record one system interaction for the changes.

        Raises:
            BusinessRuleViolation: The new parent would create a cycle.
        """
        opportunities, config = await asyncio.gather(
            self._opportunities.fetch_all(), self._system_config()
        )
        captured: dict[str, Opportunity] = {}
        guard = _parent_guard(opportunities)

        def merge(current: Opportunity, payload: dict[str, Any]) -> dict[str, Any]:
            captured["original"] = current
            return guard(current, payload)

        result = await self._router.update(key, data, actor, merge=merge)
        original = captured.get("original")
        if result.success and original is not None:
            lines = change_summary(original, data, config)
            if lines:
                await self._interactions.log_system(
                    TITLE_UPDATED,
                    "； ".join(lines),
                    actor,
                    opportunity_id=original.opportunity_id,
                )
        return result.to_record()

    async def batch_update(
        self, updates: Sequence[Mapping[str, Any]], actor: str
    ) -> dict[str, Any]:
        """Apply several updates with one row lookup and one cache invalidation.

        Each item addresses an opportunity by opportunityId or rowIndex and
        carries its changes under "data". Keys are validated and resolved
        before anything is written. No change-summary interactions are logged.

        Raises:
            InvalidKeyError: An item has neither opportunityId nor a valid rowIndex.
            NotFoundError: An item does not resolve.
            BusinessRuleViolation: A parent change would create a cycle.
        """
        items: list[tuple[Any, Mapping[str, Any]]] = []
        for update in updates:
            key: Any = str(update.get("opportunityId") or "").strip()
            if not key:
                key = parse_row_index(update.get("rowIndex"))
                if key is None:
                    raise InvalidKeyError("opportunity", update.get("rowIndex"))
            items.append((key, dict(update.get("data") or {})))
        if not items:
            return {"success": True, "updated": 0, "failed": 0, "results": []}

        opportunities = await self._opportunities.fetch_all()
        results = await self._router.update_many(
            items, actor, merge=_parent_guard(opportunities)
        )
        updated = sum(1 for r in results if r.success)
        logger.info("opportunities.batch_updated", updated=updated, total=len(results))
        return {
            "success": updated == len(results),
            "updated": updated,
            "failed": len(results) - updated,
            "results": [r.to_record() for r in results],
        }

    async def delete(self, key: Any, actor: str) -> dict[str, Any]:
        """Delete an opportunity and leave a note on its company's activity."""
        opportunity = await self._router.resolve(key)
        result = await self._router.delete(opportunity, actor)
        if result.success and opportunity.customer_company:
            company = await self._companies.get_by_name(opportunity.customer_company)
            if company is not None:
                await self._interactions.log_system(
                    TITLE_DELETED,
                    f'機會案件 "{opportunity.opportunity_name}" '
                    f"(ID: {opportunity.opportunity_id}) 已被 {actor} 刪除。",
                    actor,
                    company_id=company.company_id,
                )
        return result.to_record()

    # ── Contact links ───────────────────────────────────────────────────────

    async def add_contact(
        self, opportunity_id: str, contact: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        """Link an existing contact, or create one (and its company) and link it.

        A payload carrying rowIndex came from a business card; that card is
        marked processed once the official contact exists.

        Raises:
            BusinessRuleViolation: A new contact was requested without a company.
            InvalidKeyError: rowIndex is present but not a positive integer.
        """
        contact_id = str(contact.get("contactId") or "").strip()
        name = str(contact.get("name") or "").strip()
        title = TITLE_LINKED

        card_row = None
        if not contact_id and contact.get("rowIndex"):
            card_row = parse_row_index(contact["rowIndex"])
            if card_row is None:
                raise InvalidKeyError("potential_contact", contact["rowIndex"])

        if not contact_id:
            company_name = str(contact.get("company") or contact.get("companyName") or "").strip()
            if not company_name:
                raise BusinessRuleViolation("cannot link contact: company name is missing")
            title = TITLE_CREATED_AND_LINKED

            company = await self._companies.create(company_name, {}, actor)
            company_id = str(company.get("id") or "")
            existing = next(
                (
                    c
                    for c in await self._contacts.official_with_companies()
                    if c.name.strip() == name and c.company_id == company_id
                ),
                None,
            )
            if existing is not None:
                contact_id = existing.contact_id
            else:
                fields = {
                    k: v
                    for k, v in contact.items()
                    if k not in {"rowIndex", "company", "companyName", "contactId"}
                }
                created = await self._contacts.create({**fields, "companyId": company_id}, actor)
                contact_id = str(created.get("id") or "")

            if card_row is not None:
                title = TITLE_LINKED_FROM_CARD
                await self._contacts.mark_processed(card_row, actor)

        link = await self._links.create(
            {"opportunityId": opportunity_id, "contactId": contact_id, "status": "active"},
            actor,
        )
        await self._interactions.log_system(
            title,
            f'將聯絡人 "{name or contact_id}" 關聯至此機會。',
            actor,
            opportunity_id=opportunity_id,
        )
        return {
            "success": True,
            "message": "聯絡人關聯成功",
            "data": {"contact": {"id": contact_id, "name": name}, "link": link.to_record()},
        }

    async def remove_contact(
        self, opportunity_id: str, contact_id: str, actor: str
    ) -> dict[str, Any]:
        """Remove the active link between an opportunity and a contact."""
        contact = await self._contacts.get_by_id(contact_id)
        contact_name = contact.name if contact is not None else f"ID {contact_id}"
        result = await self._links.delete((opportunity_id, contact_id), actor)
        if result.success:
            await self._interactions.log_system(
                TITLE_UNLINKED,
                f'將聯絡人 "{contact_name}" 從此機會移除。',
                actor,
                opportunity_id=opportunity_id,
            )
        return result.to_record()

    # ── Aggregations ────────────────────────────────────────────────────────

    async def by_stage(self) -> dict[str, dict[str, Any]]:
        """In-progress opportunities grouped under every configured stage."""
        try:
            opportunities, config = await asyncio.gather(
                self._opportunities.fetch_all(), self._system_config()
            )
        except SourceReadError as exc:
            logger.error("opportunities.by_stage_failed", error=str(exc))
            return {}

        groups: dict[str, dict[str, Any]] = {
            stage["value"]: {
                "name": stage.get("note") or stage["value"],
                "opportunities": [],
                "count": 0,
            }
            for stage in config.get(STAGE_CONFIG, [])
        }
        for opportunity in opportunities:
            if opportunity.current_status != STATUS_IN_PROGRESS:
                continue
            group = groups.get(opportunity.current_stage)
            if group is not None:
                group["opportunities"].append(opportunity)
                group["count"] += 1
        return groups

    async def by_county(self, opportunity_type: str | None = None) -> list[dict[str, Any]]:
        """Non-archived opportunity counts per county of the customer company."""
        try:
            opportunities, companies = await asyncio.gather(
                self._opportunities.fetch_all(), self._companies.fetch_companies()
            )
        except SourceReadError as exc:
            logger.error("opportunities.by_county_failed", error=str(exc))
            return []

        index = CompanyIndex(companies)
        counts: dict[str, int] = {}
        for opportunity in opportunities:
            if opportunity.current_status == STATUS_ARCHIVED:
                continue
            if opportunity_type and opportunity.opportunity_type != opportunity_type:
                continue
            company = index.find(opportunity.customer_company)
            if company is not None and company.county:
                counts[company.county] = counts.get(company.county, 0) + 1
        return [{"county": county, "count": count} for county, count in counts.items()]

    async def by_date_range(
        self, start: datetime, end: datetime, field: str = "created_time"
    ) -> list[Opportunity]:
        """Opportunities whose field falls within [start, end]; bad dates are skipped."""
        try:
            opportunities = await self._opportunities.fetch_all()
        except SourceReadError as exc:
            logger.error("opportunities.by_date_range_failed", error=str(exc))
            return []
        low, high = parse_timestamp(start), parse_timestamp(end)
        if low is None or high is None:
            return []
        result = []
        for opportunity in opportunities:
            moment = parse_timestamp(getattr(opportunity, field, None))
            if moment is not None and low <= moment <= high:
                result.append(opportunity)
        return result
