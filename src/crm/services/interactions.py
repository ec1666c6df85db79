"""Interaction service -- converged activity reads and best-effort system logs."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from src.crm.convergence.router import WriteRouter
from src.crm.convergence.schemas import Interaction

logger = structlog.get_logger(__name__)

SYSTEM_EVENT_TYPE = "系統事件"


class InteractionService:
    """Reads interactions SQL-first; writes system interactions to the spreadsheet.

    Args:
        router: WriteRouter for interactions (spreadsheet write authority).
    """

    def __init__(self, router: WriteRouter[Interaction]) -> None:
        self._router = router

    async def get_all(self) -> list[Interaction]:
        return await self._router.reader.fetch_all()

    async def log_system(
        self,
        title: str,
        summary: str,
        actor: str,
        *,
        company_id: str = "",
        opportunity_id: str = "",
    ) -> bool:
        """Record a system interaction. Failures are logged, never raised.

        Returns:
            True if the interaction was written.
        """
        payload = {
            "companyId": company_id,
            "opportunityId": opportunity_id,
            "eventType": SYSTEM_EVENT_TYPE,
            "eventTitle": title,
            "contentSummary": summary,
            "recorder": actor,
            "interactionTime": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = await self._router.create(payload, actor)
        except Exception as exc:
            logger.warning(
                "interactions.system_log_failed",
                title=title,
                company_id=company_id,
                opportunity_id=opportunity_id,
                error=str(exc),
            )
            return False
        return result.success
