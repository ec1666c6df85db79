"""Contact service -- official contacts (SQL authority) and potential contacts (spreadsheet).

The two lifecycles never share a write path: official contacts are written
to SQL by contact id, potential contacts (business cards) are written to the
raw spreadsheet by row index.
"""

from __future__ import annotations

import asyncio
import math
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from src.crm.convergence.joins import linked_contacts, parse_timestamp
from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.router import WriteRouter
from src.crm.convergence.schemas import (
    Company,
    ContactOpportunityLink,
    ContactPage,
    LinkedContact,
    OfficialContact,
    Pagination,
    PotentialContact,
    PotentialContactStats,
)

logger = structlog.get_logger(__name__)

STATUS_PENDING = "Pending"
STATUS_PROCESSED = "Processed"
STATUS_DROPPED = "Dropped"


def _with_company_names(
    contacts: list[OfficialContact], companies: list[Company]
) -> list[OfficialContact]:
    names = {c.company_id: c.company_name for c in companies if c.company_id}
    return [
        contact.model_copy(
            update={"company_name": names.get(contact.company_id) or contact.company_id}
        )
        for contact in contacts
    ]


def _note_entry(actor: str, note: str) -> str:
    return f"[{actor} {datetime.now(timezone.utc):%Y/%m/%d}] {note}"


class ContactService:
    """Official and potential contact operations.

    Args:
        official: WriteRouter for official contacts (SQL write authority).
        potential: WriteRouter for potential contacts (spreadsheet write authority).
        companies: Converged company reader, for company-name joins.
        links: Converged opportunity-contact link reader.
        per_page: Page size of search_official.
    """

    def __init__(
        self,
        official: WriteRouter[OfficialContact],
        potential: WriteRouter[PotentialContact],
        *,
        companies: ConvergentReader[Company],
        links: ConvergentReader[ContactOpportunityLink],
        per_page: int = 20,
    ) -> None:
        self._official = official
        self._potential = potential
        self._companies = companies
        self._links = links
        self._per_page = per_page

    # ── Official contacts ───────────────────────────────────────────────────

    async def official_with_companies(self) -> list[OfficialContact]:
        """Every official contact with companyName joined by company id."""
        contacts, companies = await asyncio.gather(
            self._official.reader.fetch_all(), self._companies.fetch_all()
        )
        return _with_company_names(contacts, companies)

    async def search_official(self, query: str = "", page: int = 1) -> ContactPage:
        contacts = await self.official_with_companies()
        term = (query or "").strip().lower()
        if term:
            contacts = [
                c
                for c in contacts
                if term in c.name.lower() or term in c.company_name.lower()
            ]
        page = max(page, 1)
        start = (page - 1) * self._per_page
        return ContactPage(
            data=contacts[start : start + self._per_page],
            pagination=Pagination(
                current=page,
                total=math.ceil(len(contacts) / self._per_page),
                total_items=len(contacts),
                has_next=start + self._per_page < len(contacts),
                has_prev=page > 1,
            ),
        )

    async def get_by_id(self, contact_id: str) -> OfficialContact | None:
        contact = await self._official.reader.fetch_by_id(contact_id)
        if contact is None:
            return None
        companies = await self._companies.fetch_all()
        return _with_company_names([contact], companies)[0]

    async def create(self, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        result = await self._official.create(data, actor)
        return result.to_record()

    async def update(self, contact_id: str, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        result = await self._official.update(contact_id, data, actor)
        return result.to_record()

    async def delete(self, contact_id: str, actor: str) -> dict[str, Any]:
        result = await self._official.delete(contact_id, actor)
        return result.to_record()

    async def linked_contacts(self, opportunity_id: str) -> list[LinkedContact]:
        """Official contacts linked to an opportunity, with business-card driveLink."""
        links, contacts, cards = await asyncio.gather(
            self._links.fetch_all(),
            self.official_with_companies(),
            self._potential.reader.fetch_all(),
        )
        return linked_contacts(opportunity_id, links, contacts, cards)

    # ── Potential contacts ──────────────────────────────────────────────────

    async def list_potential(self, limit: int = 2000) -> list[PotentialContact]:
        """Business cards with a name or company, newest first.

        Cards with an unparseable createdTime sort last. A non-positive limit
        returns everything.
        """
        cards = [c for c in await self._potential.reader.fetch_all() if c.name or c.company]
        dated = [(parse_timestamp(c.created_time), c) for c in cards]
        with_date = sorted(
            ((moment, c) for moment, c in dated if moment is not None),
            key=lambda pair: pair[0],
            reverse=True,
        )
        ordered = [c for _, c in with_date] + [c for moment, c in dated if moment is None]
        return ordered[:limit] if limit > 0 else ordered

    async def search_potential(self, query: str = "") -> list[PotentialContact]:
        cards = await self.list_potential(limit=0)
        term = (query or "").strip().lower()
        if not term:
            return cards
        return [c for c in cards if term in c.name.lower() or term in c.company.lower()]

    async def dashboard_stats(self) -> PotentialContactStats:
        """Card counts by status; a card without status counts as pending."""
        cards = await self._potential.reader.fetch_all()
        statuses = [c.status.strip() for c in cards]
        return PotentialContactStats(
            total=len(cards),
            pending=sum(1 for s in statuses if not s or s == STATUS_PENDING),
            processed=sum(1 for s in statuses if s == STATUS_PROCESSED),
            dropped=sum(1 for s in statuses if s == STATUS_DROPPED),
        )

    async def update_potential(
        self, row_index: int, data: Mapping[str, Any], actor: str
    ) -> dict[str, Any]:
        """Update a business card by row index, appending (not replacing) notes."""

        def merge(current: PotentialContact, payload: dict[str, Any]) -> dict[str, Any]:
            note = str(payload.get("notes") or "").strip()
            if note:
                entry = _note_entry(actor, note)
                payload["notes"] = f"{current.notes}\n{entry}" if current.notes else entry
            return payload

        result = await self._potential.update(row_index, data, actor, merge=merge)
        return result.to_record()

    async def mark_processed(self, row_index: int, actor: str) -> dict[str, Any]:
        """Flag a business card as promoted to an official contact."""
        return await self.update_potential(row_index, {"status": STATUS_PROCESSED}, actor)
