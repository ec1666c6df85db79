"""Composition root -- builds every reader, writer, router and service once.

Nothing in the convergence core or the services looks stores up globally;
build_services() is the only place that knows which concrete store backs
which entity, and the resulting ServiceContainer is handed to the HTTP layer
through app.state.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import structlog

from src.crm.config import Settings, WriteAuthority
from src.crm.convergence.adapter import StoreReader
from src.crm.convergence.field_mapping import (
    ANNOUNCEMENT_FIELDS,
    COMPANY_FIELDS,
    EVENT_LOG_FIELDS,
    INTERACTION_FIELDS,
    LINK_FIELDS,
    OPPORTUNITY_FIELDS,
    POTENTIAL_CONTACT_FIELDS,
    normalize_announcement,
    normalize_company,
    normalize_event_log,
    normalize_interaction,
    normalize_link,
    normalize_official_contact,
    normalize_opportunity,
    normalize_potential_contact,
)
from src.crm.convergence.joins import same_company
from src.crm.convergence.moves import CategoryMoveHandler
from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.router import WriteRouter
from src.crm.core.database import Base
from src.crm.core.redis import ReadCache
from src.crm.services.announcements import AnnouncementService
from src.crm.services.companies import CompanyService
from src.crm.services.contacts import ContactService
from src.crm.services.event_logs import EventLogService
from src.crm.services.ids import new_company_id, prefixed_id
from src.crm.services.interactions import InteractionService
from src.crm.services.opportunities import OpportunityService, link_matcher
from src.crm.stores.models import (
    AnnouncementModel,
    CompanyModel,
    ContactModel,
    EventLogModel,
    InteractionModel,
    OpportunityContactLinkModel,
    OpportunityModel,
)
from src.crm.stores.sheets import (
    ANNOUNCEMENT_SHEET,
    COMPANY_SHEET,
    CONTACT_SHEET,
    INTERACTION_SHEET,
    LINK_SHEET,
    OPPORTUNITY_SHEET,
    POTENTIAL_CONTACT_SHEET,
    EventLogSheetReader,
    EventLogSheetWriter,
    SheetsClient,
    SheetTableReader,
    SheetTableWriter,
    SystemConfigReader,
)
from src.crm.stores.sql import (
    ContactSqlWriter,
    SessionFactory,
    SqlTableReader,
    company_sql_writer,
)

logger = structlog.get_logger(__name__)


@dataclass
class ServiceContainer:
    """Every service the HTTP layer may call."""

    companies: CompanyService
    contacts: ContactService
    opportunities: OpportunityService
    event_logs: EventLogService
    announcements: AnnouncementService
    interactions: InteractionService


def build_services(
    settings: Settings,
    sheets: SheetsClient,
    *,
    session_factory: SessionFactory | None = None,
    cache: ReadCache | None = None,
) -> ServiceContainer:
    """Wire stores, readers, routers and services.

    Args:
        settings: Application settings (spreadsheet ids, authority, partitions).
        sheets: Spreadsheet client backing every fallback store.
        session_factory: SQL session factory. None disables SQL reads and
            SQL writes (writes routed to SQL then raise StoreNotConfiguredError).
        cache: Optional read cache for spreadsheet readers.
    """
    core_id = settings.SHEETS_CORE_ID
    raw_id = settings.SHEETS_RAW_ID
    sql_reads = settings.SQL_READS_ENABLED and session_factory is not None

    def primary(model: type[Base], entity: str) -> StoreReader | None:
        if not sql_reads:
            return None
        return SqlTableReader(session_factory, model, entity)  # type: ignore[arg-type]

    def converged(
        entity: str,
        fallback: StoreReader,
        normalize: Callable[[Any], Any],
        identity: Callable[[Any], str],
        model: type[Base] | None = None,
    ) -> ConvergentReader[Any]:
        return ConvergentReader(
            entity,
            fallback,
            normalize,
            primary=primary(model, entity) if model is not None else None,
            identity=identity,
            cache_key=getattr(fallback, "cache_key", entity),
        )

    def sheet_reader(spreadsheet_id: str, schema: Any, entity: str) -> SheetTableReader:
        return SheetTableReader(sheets, spreadsheet_id, schema, entity, cache, entity)

    # ── Readers ─────────────────────────────────────────────────────────────

    company_reader = converged(
        "company",
        sheet_reader(core_id, COMPANY_SHEET, "company"),
        normalize_company,
        lambda c: c.company_id,
        CompanyModel,
    )
    contact_reader = converged(
        "contact",
        sheet_reader(core_id, CONTACT_SHEET, "contact"),
        normalize_official_contact,
        lambda c: c.contact_id,
        ContactModel,
    )
    potential_reader = converged(
        "potential_contact",
        sheet_reader(raw_id, POTENTIAL_CONTACT_SHEET, "potential_contact"),
        normalize_potential_contact,
        lambda c: "",
    )
    link_reader = converged(
        "opportunity_contact_link",
        sheet_reader(core_id, LINK_SHEET, "opportunity_contact_link"),
        normalize_link,
        lambda link: link.link_id,
        OpportunityContactLinkModel,
    )
    opportunity_reader = converged(
        "opportunity",
        sheet_reader(core_id, OPPORTUNITY_SHEET, "opportunity"),
        normalize_opportunity,
        lambda o: o.opportunity_id,
        OpportunityModel,
    )
    interaction_reader = converged(
        "interaction",
        sheet_reader(core_id, INTERACTION_SHEET, "interaction"),
        normalize_interaction,
        lambda i: i.interaction_id,
        InteractionModel,
    )
    event_reader = converged(
        "event_log",
        EventLogSheetReader(sheets, core_id, settings.EVENT_TYPES, cache, "event_log"),
        normalize_event_log,
        lambda e: e.event_id,
        EventLogModel,
    )
    announcement_reader = converged(
        "announcement",
        sheet_reader(core_id, ANNOUNCEMENT_SHEET, "announcement"),
        normalize_announcement,
        lambda a: a.id,
        AnnouncementModel,
    )
    config_reader = SystemConfigReader(sheets, core_id, cache)

    # ── Routers ─────────────────────────────────────────────────────────────

    def sheet_writer(
        spreadsheet_id: str, schema: Any, entity: str, fields: Any, id_key: str | None = None
    ) -> SheetTableWriter:
        return SheetTableWriter(sheets, spreadsheet_id, schema, entity, fields, id_key=id_key)

    company_authority = settings.COMPANY_WRITE_AUTHORITY
    if company_authority is WriteAuthority.sql:
        company_writer = company_sql_writer(session_factory) if session_factory else None
    else:
        company_writer = sheet_writer(
            core_id, COMPANY_SHEET, "company", COMPANY_FIELDS, "companyId"
        )
    company_router = WriteRouter(
        "company",
        company_reader,
        company_writer,
        authority=company_authority,
        identity=lambda c: c.company_id,
        id_field="companyId",
        id_factory=new_company_id,
        matcher=lambda record, key: same_company(record.company_name, key),
        row_keys=False,
    )

    contact_router = WriteRouter(
        "contact",
        contact_reader,
        ContactSqlWriter(session_factory) if session_factory else None,
        authority=WriteAuthority.sql,
        identity=lambda c: c.contact_id,
    )
    potential_router = WriteRouter(
        "potential_contact",
        potential_reader,
        sheet_writer(raw_id, POTENTIAL_CONTACT_SHEET, "potential_contact", POTENTIAL_CONTACT_FIELDS),
        authority=WriteAuthority.sheet,
        identity=lambda c: "",
    )
    link_router = WriteRouter(
        "opportunity_contact_link",
        link_reader,
        sheet_writer(core_id, LINK_SHEET, "opportunity_contact_link", LINK_FIELDS, "linkId"),
        authority=WriteAuthority.sheet,
        identity=lambda link: link.link_id,
        id_field="linkId",
        id_factory=lambda: prefixed_id("LNK"),
        matcher=link_matcher,
    )
    opportunity_router = WriteRouter(
        "opportunity",
        opportunity_reader,
        sheet_writer(core_id, OPPORTUNITY_SHEET, "opportunity", OPPORTUNITY_FIELDS, "opportunityId"),
        authority=WriteAuthority.sheet,
        identity=lambda o: o.opportunity_id,
        id_field="opportunityId",
        id_factory=lambda: prefixed_id("OPP"),
    )
    interaction_router = WriteRouter(
        "interaction",
        interaction_reader,
        sheet_writer(core_id, INTERACTION_SHEET, "interaction", INTERACTION_FIELDS, "interactionId"),
        authority=WriteAuthority.sheet,
        identity=lambda i: i.interaction_id,
        id_field="interactionId",
        id_factory=lambda: prefixed_id("IL"),
    )
    event_writer = EventLogSheetWriter(sheets, core_id, settings.EVENT_TYPES, EVENT_LOG_FIELDS)
    event_router = WriteRouter(
        "event_log",
        event_reader,
        event_writer,
        authority=WriteAuthority.sheet,
        identity=lambda e: e.event_id,
        id_field="eventId",
        id_factory=lambda: prefixed_id("EVT"),
        partition_of=lambda e: e.event_type,
        move_handler=CategoryMoveHandler(
            "event_log",
            event_reader,
            event_writer,
            identity=lambda e: e.event_id,
            category_of=lambda e: e.event_type,
        ),
    )
    announcement_router = WriteRouter(
        "announcement",
        announcement_reader,
        sheet_writer(core_id, ANNOUNCEMENT_SHEET, "announcement", ANNOUNCEMENT_FIELDS, "id"),
        authority=WriteAuthority.sheet,
        identity=lambda a: a.id,
        id_field="id",
        id_factory=lambda: prefixed_id("ANN"),
    )

    # ── Services ────────────────────────────────────────────────────────────

    interactions = InteractionService(interaction_router)
    companies = CompanyService(
        company_router,
        opportunities=opportunity_reader,
        contacts=contact_reader,
        potential_contacts=potential_reader,
        event_logs=event_reader,
        interactions=interactions,
    )
    contacts = ContactService(
        contact_router,
        potential_router,
        companies=company_reader,
        links=link_reader,
        per_page=settings.CONTACTS_PER_PAGE,
    )
    opportunities = OpportunityService(
        opportunity_router,
        links=link_router,
        companies=companies,
        contacts=contacts,
        interactions=interactions,
        event_logs=event_reader,
        config=config_reader,
    )
    event_logs = EventLogService(
        event_router,
        opportunities=opportunity_reader,
        companies=company_reader,
        config=config_reader,
        default_event_types=settings.EVENT_TYPES,
    )
    announcements = AnnouncementService(announcement_router)

    logger.info(
        "container.built",
        sql_reads=sql_reads,
        sql_writes=session_factory is not None,
        company_write_authority=company_authority.value,
        event_types=list(settings.EVENT_TYPES),
        read_cache=cache is not None,
    )
    return ServiceContainer(
        companies=companies,
        contacts=contacts,
        opportunities=opportunities,
        event_logs=event_logs,
        announcements=announcements,
        interactions=interactions,
    )
