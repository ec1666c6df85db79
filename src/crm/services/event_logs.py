"""Event log service -- joined reads and partition-aware writes.

Event logs live in one worksheet per event type. Updates go through the
WriteRouter's CategoryMoveHandler, so changing eventType relocates the row
while keeping eventId and createdTime.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.router import WriteRouter
from src.crm.convergence.schemas import Company, EventLog, Opportunity
from src.crm.stores.sheets import SystemConfigReader

logger = structlog.get_logger(__name__)

EVENT_TYPE_CONFIG = "事件類型"


def join_names(
    events: Sequence[EventLog],
    opportunities: Sequence[Opportunity],
    companies: Sequence[Company],
) -> list[EventLog]:
    """Fill opportunityName / companyName, falling back to the raw id."""
    opp_names = {o.opportunity_id: o.opportunity_name for o in opportunities if o.opportunity_id}
    company_names = {c.company_id: c.company_name for c in companies if c.company_id}
    joined = []
    for event in events:
        update: dict[str, str] = {}
        if event.opportunity_id:
            update["opportunity_name"] = opp_names.get(event.opportunity_id) or event.opportunity_id
        if event.company_id:
            update["company_name"] = company_names.get(event.company_id) or event.company_id
        joined.append(event.model_copy(update=update) if update else event)
    return joined


class EventLogService:
    """Event log operations.

    Args:
        router: WriteRouter for event logs, wired with a CategoryMoveHandler.
        opportunities: Converged opportunity reader (name join).
        companies: Converged company reader (name join).
        config: System configuration reader for the event type list.
        default_event_types: Event types used when configuration is unavailable.
    """

    def __init__(
        self,
        router: WriteRouter[EventLog],
        *,
        opportunities: ConvergentReader[Opportunity],
        companies: ConvergentReader[Company],
        config: SystemConfigReader | None = None,
        default_event_types: Sequence[str] = (),
    ) -> None:
        self._router = router
        self._events = router.reader
        self._opportunities = opportunities
        self._companies = companies
        self._config = config
        self._default_event_types = list(default_event_types)

    async def get_all(self) -> list[EventLog]:
        events, opportunities, companies = await asyncio.gather(
            self._events.fetch_all(),
            self._opportunities.fetch_all(),
            self._companies.fetch_all(),
        )
        return join_names(events, opportunities, companies)

    async def get_by_id(self, event_id: str) -> EventLog | None:
        """One event with names joined; a failed join returns the bare event."""
        event = await self._events.fetch_by_id(event_id)
        if event is None:
            return None
        try:
            opportunities, companies = await asyncio.gather(
                self._opportunities.fetch_all(), self._companies.fetch_all()
            )
        except Exception as exc:
            logger.warning("event_logs.join_failed", event_id=event_id, error=str(exc))
            return event
        return join_names([event], opportunities, companies)[0]

    async def create(self, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        result = await self._router.create(data, actor)
        return result.to_record()

    async def update(self, key: Any, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        """Update by eventId or row index; a changed eventType moves the record."""
        result = await self._router.update(key, data, actor)
        return result.to_record()

    async def delete(self, event_id: str, actor: str) -> dict[str, Any]:
        """Delete by eventId; row index and partition come from a forced read."""
        result = await self._router.delete(event_id, actor)
        return result.to_record()

    async def event_types(self) -> list[dict[str, Any]]:
        """Configured event types, or the partition list when configuration is unavailable."""
        if self._config is not None:
            try:
                configured = (await self._config.get_config()).get(EVENT_TYPE_CONFIG)
            except Exception as exc:
                logger.warning("event_logs.event_types_unavailable", error=str(exc))
            else:
                if configured:
                    return configured
        return [{"value": t, "note": t, "order": i} for i, t in enumerate(self._default_event_types)]
