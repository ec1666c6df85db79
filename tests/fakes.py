"""In-memory store doubles for convergence and service tests.

Provides:
- StaticReader: StoreReader over a fixed row list (or a raised error), with
  an optional stale cache and call bookkeeping
- SheetStore: one worksheet as StoreReader + StoreWriter, row-index addressed,
  deleting a row shifts the rows below it up like the real worksheet
- IdStore: one SQL table as StoreReader + StoreWriter, addressed by id
- PartitionedSheetStore: one worksheet per category, for event logs
- StaticConfig: system configuration double
- build_fake_services(): every service wired over the doubles above
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

from src.crm.config import WriteAuthority
from src.crm.convergence.adapter import PartitionedStoreWriter, StoreReader, StoreWriter
from src.crm.convergence.errors import NotFoundError
from src.crm.convergence.field_mapping import (
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
from src.crm.services.announcements import AnnouncementService
from src.crm.services.companies import CompanyService
from src.crm.services.contacts import ContactService
from src.crm.services.container import ServiceContainer
from src.crm.services.event_logs import EventLogService
from src.crm.services.interactions import InteractionService
from src.crm.services.opportunities import OpportunityService, link_matcher

FIRST_DATA_ROW = 2


class StaticReader(StoreReader):
    """Returns `rows` (or raises `error`). `cached` simulates a stale read cache."""

    def __init__(
        self,
        rows: Any = None,
        *,
        error: Exception | None = None,
        cached: list[dict[str, Any]] | None = None,
        by_id: bool = False,
        synchronized: bool | None = None,
    ) -> None:
        self.rows = [] if rows is None else rows
        self.error = error
        self.cached = cached
        self.supports_get_by_id = by_id
        self.calls: list[bool] = []
        self.invalidated: list[str] = []
        if synchronized is not None:
            self.sync_status = lambda: synchronized

    async def get_all(self, *, fresh: bool = False) -> list[dict[str, Any]]:
        self.calls.append(fresh)
        if self.error is not None:
            raise self.error
        if self.cached is not None and not fresh:
            return copy.deepcopy(self.cached)
        return copy.deepcopy(self.rows) if isinstance(self.rows, list) else self.rows

    async def get_by_id(self, record_id: str) -> dict[str, Any] | None:
        if self.error is not None:
            raise self.error
        return next((dict(r) for r in self.rows if record_id in r.values()), None)

    async def invalidate(self, cache_key: str) -> None:
        self.invalidated.append(cache_key)
        self.cached = None


class SheetStore(StoreReader, StoreWriter):
    """Row-addressed worksheet double.

    Args:
        rows: Initial rows, without rowIndex (assigned from row 2 down).
        id_key: Column holding the record id, if any.
        fail_with: Exception raised by every write.
        reject: Writes return {"success": False} instead of applying.
    """

    def __init__(
        self,
        rows: list[dict[str, Any]] | None = None,
        *,
        id_key: str | None = None,
        fail_with: Exception | None = None,
        reject: bool = False,
    ) -> None:
        self._rows = [dict(r) for r in rows or []]
        self.id_key = id_key
        self.fail_with = fail_with
        self.reject = reject
        self.writes: list[tuple[str, Any, dict[str, Any]]] = []
        self.invalidated: list[str] = []
        self.cached: list[dict[str, Any]] | None = None

    @property
    def rows(self) -> list[dict[str, Any]]:
        return [{**r, "rowIndex": FIRST_DATA_ROW + i} for i, r in enumerate(self._rows)]

    async def get_all(self, *, fresh: bool = False) -> list[dict[str, Any]]:
        if self.cached is not None and not fresh:
            return copy.deepcopy(self.cached)
        return self.rows

    async def invalidate(self, cache_key: str) -> None:
        self.invalidated.append(cache_key)
        self.cached = None

    def _guard(self, operation: str, key: Any, data: dict[str, Any]) -> dict[str, Any] | None:
        self.writes.append((operation, key, dict(data)))
        if self.fail_with is not None:
            raise self.fail_with
        if self.reject:
            return {"success": False}
        return None

    def _position(self, key: Any) -> int:
        position = int(key) - FIRST_DATA_ROW
        if position < 0 or position >= len(self._rows):
            raise NotFoundError("row", key)
        return position

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        refused = self._guard("create", None, data)
        if refused is not None:
            return refused
        self._rows.append(dict(data))
        row_index = FIRST_DATA_ROW + len(self._rows) - 1
        record_id = data.get(self.id_key) if self.id_key else None
        return {"success": True, "id": record_id, "rowIndex": row_index}

    async def update(self, key: Any, data: dict[str, Any], actor: str) -> dict[str, Any]:
        refused = self._guard("update", key, data)
        if refused is not None:
            return refused
        position = self._position(key)
        self._rows[position].update(data)
        record_id = self._rows[position].get(self.id_key) if self.id_key else None
        return {"success": True, "id": record_id, "rowIndex": int(key)}

    async def delete(self, key: Any, actor: str) -> dict[str, Any]:
        refused = self._guard("delete", key, {})
        if refused is not None:
            return refused
        del self._rows[self._position(key)]
        return {"success": True, "rowIndex": int(key)}


class IdStore(StoreReader, StoreWriter):
    """Id-addressed table double (rows carry no rowIndex)."""

    supports_get_by_id = True

    def __init__(self, rows: list[dict[str, Any]] | None = None, *, id_key: str) -> None:
        self.id_key = id_key
        self._rows = {str(r[id_key]): dict(r) for r in rows or []}
        self.writes: list[tuple[str, Any, dict[str, Any]]] = []
        self._counter = 100

    async def get_all(self, *, fresh: bool = False) -> list[dict[str, Any]]:
        return [dict(r) for r in self._rows.values()]

    async def get_by_id(self, record_id: str) -> dict[str, Any] | None:
        row = self._rows.get(record_id)
        return dict(row) if row is not None else None

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        self.writes.append(("create", None, dict(data)))
        self._counter += 1
        record_id = str(data.get(self.id_key) or f"C{self._counter}")
        self._rows[record_id] = {**data, self.id_key: record_id}
        return {"success": True, "id": record_id}

    async def update(self, key: Any, data: dict[str, Any], actor: str) -> dict[str, Any]:
        self.writes.append(("update", key, dict(data)))
        if str(key) not in self._rows:
            raise NotFoundError("record", key)
        self._rows[str(key)].update(data)
        return {"success": True, "id": str(key)}

    async def delete(self, key: Any, actor: str) -> dict[str, Any]:
        self.writes.append(("delete", key, {}))
        if self._rows.pop(str(key), None) is None:
            raise NotFoundError("record", key)
        return {"success": True, "id": str(key)}


class PartitionedSheetStore(StoreReader, PartitionedStoreWriter):
    """One worksheet per category; reads tag every row with its category."""

    def __init__(
        self,
        partitions: dict[str, list[dict[str, Any]]],
        *,
        category_key: str = "eventType",
        fail_create: bool = False,
    ) -> None:
        self._category_key = category_key
        self._sheets = {
            name: SheetStore(rows, id_key="eventId") for name, rows in partitions.items()
        }
        self.fail_create = fail_create
        self.calls: list[tuple[str, Any, str | None]] = []
        self.invalidated: list[str] = []

    @property
    def partitions(self) -> list[str]:
        return list(self._sheets)

    def sheet(self, name: str) -> SheetStore:
        return self._sheets[name]

    async def get_all(self, *, fresh: bool = False) -> list[dict[str, Any]]:
        rows = []
        for name, sheet in self._sheets.items():
            for row in await sheet.get_all(fresh=True):
                rows.append({**row, self._category_key: name})
        return rows

    async def invalidate(self, cache_key: str) -> None:
        self.invalidated.append(cache_key)

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        partition = data.get(self._category_key)
        self.calls.append(("create", None, partition))
        if self.fail_create:
            raise RuntimeError("append failed")
        return await self._sheets[partition].create(data, actor)

    async def update(
        self, key: Any, data: dict[str, Any], actor: str, *, partition: str | None = None
    ) -> dict[str, Any]:
        self.calls.append(("update", key, partition))
        return await self._sheets[partition].update(key, data, actor)

    async def delete(
        self, key: Any, actor: str, *, partition: str | None = None
    ) -> dict[str, Any]:
        self.calls.append(("delete", key, partition))
        return await self._sheets[partition].delete(key, actor)


class StaticConfig:
    """SystemConfigReader double."""

    def __init__(
        self,
        config: dict[str, list[dict[str, Any]]] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.config = config or {}
        self.error = error

    async def get_config(self) -> dict[str, list[dict[str, Any]]]:
        if self.error is not None:
            raise self.error
        return self.config


@dataclass
class FakeStores:
    companies: SheetStore
    contacts: IdStore
    potential: SheetStore
    links: SheetStore
    opportunities: SheetStore
    interactions: SheetStore
    events: PartitionedSheetStore
    announcements: SheetStore
    config: StaticConfig


def build_fake_services(
    *,
    companies: list[dict[str, Any]] | None = None,
    contacts: list[dict[str, Any]] | None = None,
    potential: list[dict[str, Any]] | None = None,
    links: list[dict[str, Any]] | None = None,
    opportunities: list[dict[str, Any]] | None = None,
    interactions: list[dict[str, Any]] | None = None,
    events: dict[str, list[dict[str, Any]]] | None = None,
    announcements: list[dict[str, Any]] | None = None,
    config: StaticConfig | None = None,
    primaries: dict[str, list[dict[str, Any]]] | None = None,
) -> tuple[ServiceContainer, FakeStores]:
    """Wire every service over in-memory stores the way build_services() does.

    `primaries` maps an entity name to rows served by a SQL-like primary
    (rows without rowIndex), e.g. {"announcement": [...]}.
    """
    primaries = primaries or {}
    stores = FakeStores(
        companies=SheetStore(companies, id_key="companyId"),
        contacts=IdStore(contacts, id_key="contactId"),
        potential=SheetStore(potential),
        links=SheetStore(links, id_key="linkId"),
        opportunities=SheetStore(opportunities, id_key="opportunityId"),
        interactions=SheetStore(interactions, id_key="interactionId"),
        events=PartitionedSheetStore(events or {"general": [], "iot": []}),
        announcements=SheetStore(announcements, id_key="id"),
        config=config or StaticConfig(),
    )

    def converged(
        entity: str,
        fallback: StoreReader,
        normalize: Any,
        identity: Any,
        primary: StoreReader | None = None,
    ) -> ConvergentReader:
        if primary is None and entity in primaries:
            primary = StaticReader(primaries[entity])
        return ConvergentReader(
            entity, fallback, normalize, primary=primary, identity=identity, cache_key=entity
        )

    company_reader = converged("company", stores.companies, normalize_company, lambda c: c.company_id)
    contact_reader = converged(
        "contact", StaticReader([]), normalize_official_contact, lambda c: c.contact_id, stores.contacts
    )
    potential_reader = converged("potential_contact", stores.potential, normalize_potential_contact, lambda c: "")
    link_reader = converged("opportunity_contact_link", stores.links, normalize_link, lambda link: link.link_id)
    opportunity_reader = converged("opportunity", stores.opportunities, normalize_opportunity, lambda o: o.opportunity_id)
    interaction_reader = converged("interaction", stores.interactions, normalize_interaction, lambda i: i.interaction_id)
    event_reader = converged("event_log", stores.events, normalize_event_log, lambda e: e.event_id)
    announcement_reader = converged("announcement", stores.announcements, normalize_announcement, lambda a: a.id)

    counter = iter(range(100, 10_000))

    def next_id(prefix: str) -> Any:
        return lambda: f"{prefix}{next(counter)}"

    company_router = WriteRouter(
        "company", company_reader, stores.companies,
        authority=WriteAuthority.sheet, identity=lambda c: c.company_id,
        id_field="companyId", id_factory=next_id("COMP_"),
        matcher=lambda record, key: same_company(record.company_name, key),
        row_keys=False,
    )
    contact_router = WriteRouter(
        "contact", contact_reader, stores.contacts,
        authority=WriteAuthority.sql, identity=lambda c: c.contact_id,
    )
    potential_router = WriteRouter(
        "potential_contact", potential_reader, stores.potential,
        authority=WriteAuthority.sheet, identity=lambda c: "",
    )
    link_router = WriteRouter(
        "opportunity_contact_link", link_reader, stores.links,
        authority=WriteAuthority.sheet, identity=lambda link: link.link_id,
        id_field="linkId", id_factory=next_id("LNK"), matcher=link_matcher,
    )
    opportunity_router = WriteRouter(
        "opportunity", opportunity_reader, stores.opportunities,
        authority=WriteAuthority.sheet, identity=lambda o: o.opportunity_id,
        id_field="opportunityId", id_factory=next_id("OPP"),
    )
    interaction_router = WriteRouter(
        "interaction", interaction_reader, stores.interactions,
        authority=WriteAuthority.sheet, identity=lambda i: i.interaction_id,
        id_field="interactionId", id_factory=next_id("IL"),
    )
    event_router = WriteRouter(
        "event_log", event_reader, stores.events,
        authority=WriteAuthority.sheet, identity=lambda e: e.event_id,
        id_field="eventId", id_factory=next_id("EVT"),
        partition_of=lambda e: e.event_type,
        move_handler=CategoryMoveHandler(
            "event_log", event_reader, stores.events,
            identity=lambda e: e.event_id, category_of=lambda e: e.event_type,
        ),
    )
    announcement_router = WriteRouter(
        "announcement", announcement_reader, stores.announcements,
        authority=WriteAuthority.sheet, identity=lambda a: a.id,
        id_field="id", id_factory=next_id("ANN"),
    )

    interaction_service = InteractionService(interaction_router)
    company_service = CompanyService(
        company_router,
        opportunities=opportunity_reader,
        contacts=contact_reader,
        potential_contacts=potential_reader,
        event_logs=event_reader,
        interactions=interaction_service,
    )
    contact_service = ContactService(
        contact_router, potential_router, companies=company_reader, links=link_reader, per_page=2
    )
    container = ServiceContainer(
        companies=company_service,
        contacts=contact_service,
        opportunities=OpportunityService(
            opportunity_router,
            links=link_router,
            companies=company_service,
            contacts=contact_service,
            interactions=interaction_service,
            event_logs=event_reader,
            config=stores.config,  # type: ignore[arg-type]
        ),
        event_logs=EventLogService(
            event_router,
            opportunities=opportunity_reader,
            companies=company_reader,
            config=stores.config,  # type: ignore[arg-type]
            default_event_types=stores.events.partitions,
        ),
        announcements=AnnouncementService(announcement_router),
        interactions=interaction_service,
    )
    return container, stores
