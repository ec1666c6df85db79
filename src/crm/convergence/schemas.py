"""Pydantic DTOs for the convergence layer -- store-agnostic record shapes.

Defines:
- CRMRecord: base model (camelCase aliases, extra columns preserved)
- Entities: Company, OfficialContact, PotentialContact, ContactOpportunityLink,
  Opportunity, Interaction, EventLog, Announcement
- Write results: WriteResult
- Filters: CompanyFilter, OpportunityFilter
- Aggregate views: CompanyListItem, LinkedContact, CompanyDetails,
  OpportunityDetails, Pagination, ContactPage, PotentialContactStats

Attribute names are snake_case; serialized (by_alias) names are the camelCase
keys callers have always received. `row_index` is only populated for rows
served by the spreadsheet store -- its absence marks a SQL-resident record.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel


class CRMRecord(BaseModel):
    """Base for every DTO: camelCase wire names, unknown columns kept as extras."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_record(self) -> dict[str, Any]:
        """Dump using caller-facing camelCase keys."""
        return self.model_dump(by_alias=True)


# ── Entities ────────────────────────────────────────────────────────────────


class Company(CRMRecord):
    """Company DTO. `company_name` is the natural key (see normalize_company_name)."""

    company_id: str = ""
    company_name: str = ""
    phone: str = ""
    address: str = ""
    county: str = ""
    introduction: str = ""
    company_type: str = ""
    customer_stage: str = ""
    engagement_rating: str = ""
    created_time: str | None = None
    last_update_time: str | None = None
    creator: str = ""
    last_modifier: str = ""
    row_index: int | None = None


class OfficialContact(CRMRecord):
    """Vetted contact addressed by contact_id; SQL holds write authority."""

    contact_id: str = ""
    source_id: str = ""
    name: str = ""
    company_id: str = ""
    company_name: str = ""
    department: str = ""
    position: str = ""
    mobile: str = ""
    phone: str = ""
    email: str = ""
    created_time: str | None = None
    last_update_time: str | None = None
    creator: str = ""
    last_modifier: str = ""
    row_index: int | None = None


class PotentialContact(CRMRecord):
    """Unvetted business-card contact, addressed by row index on the spreadsheet only."""

    name: str = ""
    company: str = ""
    position: str = ""
    department: str = ""
    mobile: str = ""
    phone: str = ""
    email: str = ""
    status: str = ""
    notes: str = ""
    drive_link: str = ""
    created_time: str | None = None
    row_index: int | None = None


class ContactOpportunityLink(CRMRecord):
    """Join-table row between a contact and an opportunity."""

    link_id: str = ""
    opportunity_id: str = ""
    contact_id: str = ""
    status: str = ""
    created_time: str | None = None
    row_index: int | None = None

    @property
    def is_active(self) -> bool:
        """Missing status is treated as active (legacy rows never carried one)."""
        return not self.status.strip() or self.status.strip().lower() == "active"


class Opportunity(CRMRecord):
    """Opportunity DTO, joined to Company by normalized customer_company name."""

    opportunity_id: str = ""
    opportunity_name: str = ""
    customer_company: str = ""
    main_contact: str = ""
    main_contact_job_title: str = ""
    opportunity_type: str = ""
    current_stage: str = ""
    current_status: str = ""
    assignee: str = ""
    opportunity_value: str = ""
    probability: str = ""
    expected_close_date: str = ""
    parent_opportunity_id: str = ""
    created_time: str | None = None
    last_update_time: str | None = None
    creator: str = ""
    last_modifier: str = ""
    row_index: int | None = None


class Interaction(CRMRecord):
    """Interaction (activity) record tied to a company and/or opportunity."""

    interaction_id: str = ""
    opportunity_id: str = ""
    company_id: str = ""
    interaction_time: str | None = None
    event_type: str = ""
    event_title: str = ""
    content_summary: str = ""
    recorder: str = ""
    created_time: str | None = None
    row_index: int | None = None


class EventLog(CRMRecord):
    """Event log. `row_index` is only valid inside the partition named by `event_type`."""

    event_id: str = ""
    event_type: str = ""
    event_name: str = ""
    event_content: str = ""
    opportunity_id: str = ""
    opportunity_name: str = ""
    company_id: str = ""
    company_name: str = ""
    creator: str = ""
    created_time: str | None = None
    last_update_time: str | None = None
    last_modifier: str = ""
    row_index: int | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        """Compatibility alias for event_id."""
        return self.event_id


class Announcement(CRMRecord):
    """Bulletin-board announcement; writable only while spreadsheet-resident."""

    id: str = ""
    title: str = ""
    content: str = ""
    status: str = ""
    is_pinned: bool = False
    creator: str = ""
    created_time: str | None = None
    last_update_time: str | None = None
    last_modifier: str = ""
    row_index: int | None = None


# ── Write Results ───────────────────────────────────────────────────────────


class WriteResult(CRMRecord):
    """Result of a routed mutation. Store-specific keys are kept as extras."""

    success: bool = True
    id: str | None = None
    moved: bool = False


# ── Filters ─────────────────────────────────────────────────────────────────


class CompanyFilter(BaseModel):
    """In-memory, AND-combined company filters. "all" disables a filter."""

    q: str = ""
    type: str | None = None
    stage: str | None = None
    rating: str | None = None


class OpportunityFilter(BaseModel):
    """In-memory, AND-combined opportunity filters. "all" disables a filter."""

    q: str = ""
    stage: str | None = None
    assignee: str | None = None
    status: str | None = None
    min_prob: float | None = None
    include_archived: bool = False


# ── Aggregate Views ─────────────────────────────────────────────────────────


class CompanyListItem(Company):
    """Company annotated with its last activity timestamp (ISO) or None."""

    last_activity: str | None = None


class LinkedContact(OfficialContact):
    """Official contact reached through an active opportunity link."""

    link_id: str = ""
    drive_link: str = ""


class CompanyDetails(CRMRecord):
    """Joined company view; `company_info` is None when the name does not resolve."""

    company_info: Company | None = None
    contacts: list[OfficialContact] = Field(default_factory=list)
    opportunities: list[Opportunity] = Field(default_factory=list)
    potential_contacts: list[PotentialContact] = Field(default_factory=list)
    interactions: list[Interaction] = Field(default_factory=list)
    event_logs: list[EventLog] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> CompanyDetails:
        return cls()


class OpportunityDetails(CRMRecord):
    """Joined opportunity view; `opportunity_info` is None when the id does not resolve."""

    opportunity_info: Opportunity | None = None
    interactions: list[Interaction] = Field(default_factory=list)
    event_logs: list[EventLog] = Field(default_factory=list)
    linked_contacts: list[LinkedContact] = Field(default_factory=list)
    potential_contacts: list[PotentialContact] = Field(default_factory=list)
    parent_opportunity: Opportunity | None = None
    child_opportunities: list[Opportunity] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> OpportunityDetails:
        return cls()


class Pagination(CRMRecord):
    current: int
    total: int
    total_items: int
    has_next: bool
    has_prev: bool


class ContactPage(CRMRecord):
    data: list[OfficialContact] = Field(default_factory=list)
    pagination: Pagination


class PotentialContactStats(CRMRecord):
    total: int = 0
    pending: int = 0
    processed: int = 0
    dropped: int = 0
