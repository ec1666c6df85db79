"""Relational join engine -- pure, in-memory composition over converged DTO lists.

Nothing here performs I/O or decides between stores; callers hand in lists
already produced by ConvergentReader. Nothing here raises on bad data either:
unparseable timestamps are skipped and unmatched joins yield empty results.

Joins:
- opportunity -> company by normalized free-text name (CompanyIndex)
- contact -> company by company_id
- link table -> official contacts (legacy links without a status are active)

Derived values:
- last activity per company (direct, or through the company's opportunities)
- main-contact job title by cascading lookup
- parent / direct-children opportunity family
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import datetime, timezone
from typing import Any

from src.crm.convergence.field_mapping import normalize_company_name
from src.crm.convergence.schemas import (
    Company,
    CompanyFilter,
    CompanyListItem,
    ContactOpportunityLink,
    EventLog,
    Interaction,
    LinkedContact,
    OfficialContact,
    Opportunity,
    OpportunityFilter,
    PotentialContact,
)

# ── Timestamps ─────────────────────────────────────────────────────────────

_FALLBACK_FORMATS = (
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp into an aware datetime (naive means UTC).

    Returns None for empty or unparseable input instead of raising.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            parsed = None
            for fmt in _FALLBACK_FORMATS:
                try:
                    parsed = datetime.strptime(text, fmt)
                    break
                except ValueError:
                    continue
            if parsed is None:
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(moment: datetime) -> str:
    """Render as UTC ISO-8601 with millisecond precision and a Z suffix."""
    utc = moment.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


def sort_key(value: Any) -> datetime:
    """Sort key placing unparseable or missing timestamps at the epoch."""
    return parse_timestamp(value) or _EPOCH


def newest_first(records: Iterable[Any], *fields: str) -> list[Any]:
    """Sort records by the first present timestamp among fields, newest first."""

    def key(record: Any) -> datetime:
        for name in fields:
            value = getattr(record, name, None)
            if value:
                return sort_key(value)
        return _EPOCH

    return sorted(records, key=key, reverse=True)


# ── Company name index ─────────────────────────────────────────────────────


class CompanyIndex:
    """Lookup of companies by normalized name and by id.

    The first company seen for a normalized name wins, so lookups by any
    spelling that normalizes to the same key return the identical record.
    """

    def __init__(self, companies: Iterable[Company]) -> None:
        self._by_name: dict[str, Company] = {}
        self._by_id: dict[str, Company] = {}
        for company in companies:
            key = normalize_company_name(company.company_name)
            if key:
                self._by_name.setdefault(key, company)
            if company.company_id:
                self._by_id.setdefault(company.company_id, company)

    def find(self, name: Any) -> Company | None:
        key = normalize_company_name(name)
        return self._by_name.get(key) if key else None

    def by_id(self, company_id: str) -> Company | None:
        return self._by_id.get(company_id) if company_id else None


def same_company(left: Any, right: Any) -> bool:
    """True when both names normalize to the same non-empty key."""
    key = normalize_company_name(left)
    return bool(key) and key == normalize_company_name(right)


# ── Last activity ──────────────────────────────────────────────────────────


def last_activity_by_company(
    companies: Sequence[Company],
    opportunities: Sequence[Opportunity],
    interactions: Sequence[Interaction],
    event_logs: Sequence[EventLog],
) -> dict[str, datetime]:
    """Latest parseable activity timestamp per company id.

    Activity counts for a company when it carries the company id directly,
    or when it belongs to an opportunity whose customer resolves to the
    company by normalized name. Companies without activity fall back to
    their own creation time; companies with neither are absent.
    """
    index = CompanyIndex(companies)
    opportunity_owner: dict[str, str] = {}
    for opportunity in opportunities:
        company = index.find(opportunity.customer_company)
        if company is not None and company.company_id and opportunity.opportunity_id:
            opportunity_owner[opportunity.opportunity_id] = company.company_id

    latest: dict[str, datetime] = {}

    def touch(company_id: str, opportunity_id: str, moment: Any) -> None:
        parsed = parse_timestamp(moment)
        if parsed is None:
            return
        owners = {company_id, opportunity_owner.get(opportunity_id, "")} - {""}
        for owner in owners:
            if owner not in latest or parsed > latest[owner]:
                latest[owner] = parsed

    for interaction in interactions:
        touch(
            interaction.company_id,
            interaction.opportunity_id,
            interaction.interaction_time or interaction.created_time,
        )
    for event in event_logs:
        touch(event.company_id, event.opportunity_id, event.created_time)

    for company in companies:
        if company.company_id and company.company_id not in latest:
            created = parse_timestamp(company.created_time)
            if created is not None:
                latest[company.company_id] = created
    return latest


def with_last_activity(
    companies: Sequence[Company], activity: dict[str, datetime]
) -> list[CompanyListItem]:
    """Annotate companies with lastActivity and sort most recent first."""
    items = []
    for company in companies:
        moment = activity.get(company.company_id)
        if moment is None:
            moment = parse_timestamp(company.created_time)
        item = CompanyListItem.model_validate(
            {**company.model_dump(), "last_activity": to_iso(moment) if moment else None}
        )
        items.append((moment or _EPOCH, item))
    items.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in items]


# ── Filters ────────────────────────────────────────────────────────────────


def _active_filter(value: str | None) -> bool:
    return bool(value) and value != "all"


def filter_companies(companies: Iterable[Company], filters: CompanyFilter) -> list[Company]:
    """Free-text and categorical company filters, AND-combined."""
    result = list(companies)
    q = (filters.q or "").strip().lower()
    if q:
        result = [
            c
            for c in result
            if q in c.company_name.lower()
            or q in c.phone
            or q in c.address.lower()
            or q in c.county.lower()
            or q in c.introduction.lower()
        ]
    if _active_filter(filters.type):
        result = [c for c in result if c.company_type == filters.type]
    if _active_filter(filters.stage):
        result = [c for c in result if c.customer_stage == filters.stage]
    if _active_filter(filters.rating):
        result = [c for c in result if c.engagement_rating == filters.rating]
    return result


def _as_number(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def filter_opportunities(
    opportunities: Iterable[Opportunity],
    filters: OpportunityFilter,
    archived_status: str,
) -> list[Opportunity]:
    """Search filters over opportunities, sorted by lastUpdateTime descending."""
    result = list(opportunities)
    if not filters.include_archived:
        result = [o for o in result if o.current_status != archived_status]
    q = (filters.q or "").strip().lower()
    if q:
        result = [
            o
            for o in result
            if q in o.opportunity_name.lower() or q in o.customer_company.lower()
        ]
    if _active_filter(filters.stage):
        result = [o for o in result if o.current_stage == filters.stage]
    if _active_filter(filters.assignee):
        result = [o for o in result if o.assignee == filters.assignee]
    if _active_filter(filters.status):
        result = [o for o in result if o.current_status == filters.status]
    if filters.min_prob:
        result = [o for o in result if _as_number(o.probability) >= filters.min_prob]
    return newest_first(result, "last_update_time")


# ── Contacts ───────────────────────────────────────────────────────────────


def card_key(name: Any, company: Any) -> str:
    """Join key between official contacts and business cards."""
    return f"{str(name or '').strip()}|{normalize_company_name(company)}"


def linked_contacts(
    opportunity_id: str,
    links: Iterable[ContactOpportunityLink],
    contacts: Iterable[OfficialContact],
    potential_contacts: Iterable[PotentialContact] = (),
) -> list[LinkedContact]:
    """Official contacts attached to an opportunity through active links.

    Links without a status are treated as active. Links whose contact is not
    found are dropped. driveLink comes from the matching business card.
    """
    target = str(opportunity_id or "").strip()
    if not target:
        return []
    by_id = {c.contact_id.strip(): c for c in contacts if c.contact_id}
    drive_links: dict[str, str] = {}
    for card in potential_contacts:
        if card.drive_link:
            drive_links.setdefault(card_key(card.name, card.company), card.drive_link)

    result: list[LinkedContact] = []
    for link in links:
        if link.opportunity_id.strip() != target or not link.is_active:
            continue
        contact = by_id.get(link.contact_id.strip())
        if contact is None:
            continue
        link_id = link.link_id or (str(link.row_index) if link.row_index else "")
        result.append(
            LinkedContact.model_validate(
                {
                    **contact.model_dump(),
                    "link_id": link_id,
                    "drive_link": drive_links.get(card_key(contact.name, contact.company_name), ""),
                }
            )
        )
    return result


def resolve_job_title(
    target_name: str,
    customer_company: str,
    linked: Sequence[OfficialContact],
    potential_contacts: Sequence[PotentialContact],
) -> str:
    """Cascading job-title lookup for an opportunity's main contact.

    Order: linked contacts, then business cards of the same normalized
    company, then any business card whose company matches. The first match
    with a non-empty position wins; no match yields ''.
    """
    name = (target_name or "").strip()
    if not name:
        return ""
    for contact in linked:
        if contact.name.strip() == name and contact.position:
            return contact.position

    company_key = normalize_company_name(customer_company)
    scoped = [pc for pc in potential_contacts if same_company(pc.company, customer_company)]
    for card in scoped:
        if card.name.strip() == name and card.position:
            return card.position

    for card in potential_contacts:
        if (
            card.name.strip() == name
            and card.position
            and normalize_company_name(card.company) == company_key
        ):
            return card.position
    return ""


# ── Opportunity trees ──────────────────────────────────────────────────────


def opportunity_family(
    opportunity: Opportunity, opportunities: Sequence[Opportunity]
) -> tuple[Opportunity | None, list[Opportunity]]:
    """Parent and direct children by a single parentOpportunityId scan."""
    parent = None
    children = []
    for candidate in opportunities:
        if (
            opportunity.parent_opportunity_id
            and candidate.opportunity_id == opportunity.parent_opportunity_id
        ):
            parent = candidate
        if (
            candidate.parent_opportunity_id
            and candidate.parent_opportunity_id == opportunity.opportunity_id
            and candidate.opportunity_id != opportunity.opportunity_id
        ):
            children.append(candidate)
    return parent, children


def would_create_cycle(
    opportunity_id: str, new_parent_id: str, opportunities: Sequence[Opportunity]
) -> bool:
    """True if making new_parent_id the parent of opportunity_id closes a loop.

    Walks up from the proposed parent; reaching opportunity_id (or revisiting
    a node of an already-corrupt chain) means a cycle.
    """
    if not new_parent_id:
        return False
    if new_parent_id == opportunity_id:
        return True
    parents = {o.opportunity_id: o.parent_opportunity_id for o in opportunities if o.opportunity_id}
    seen: set[str] = set()
    current = new_parent_id
    while current:
        if current == opportunity_id or current in seen:
            return True
        seen.add(current)
        current = parents.get(current, "")
    return False
