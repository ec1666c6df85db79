"""Source convergence reader -- SQL first, spreadsheet fallback, one DTO shape.

ConvergentReader wraps one entity's primary (SQL) and fallback (spreadsheet)
StoreReaders behind a single fetch_all / fetch_by_id contract:

- Primary failures are *soft*: a raised exception, a non-list result, or an
  empty list for a get-all read all fall through to the fallback store. An
  empty list is presumed to be sync lag unless the primary reports itself
  synchronized through an optional ``sync_status()``.
- Fallback failures are *hard*: raised to the caller as SourceReadError.
- Every row is normalized with the same function whichever store answered.

``force_fallback=True`` skips the primary and bypasses the fallback's read
cache. Any operation that needs a spreadsheet row index must read this way.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from src.crm.convergence.adapter import StoreReader
from src.crm.convergence.errors import SourceReadError
from src.crm.convergence.schemas import CRMRecord
from src.crm.core.monitoring import (
    cache_invalidation_failures_total,
    read_soft_fail_total,
    read_source_total,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=CRMRecord)


class ReadStatus(str, Enum):
    OK = "ok"
    SOFT_FAIL = "soft_fail"
    HARD_FAIL = "hard_fail"


@dataclass
class ReadOutcome:
    """Tagged result of one store attempt.

    Attributes:
        status: OK, SOFT_FAIL (primary unusable, try fallback) or HARD_FAIL.
        rows: Raw rows when status is OK.
        source: "primary" or "fallback".
        reason: Soft-fail reason: error, malformed, empty or missing.
        error: The exception behind a failure, if any.
    """

    status: ReadStatus
    source: str
    rows: list[Mapping[str, Any]] = field(default_factory=list)
    reason: str | None = None
    error: BaseException | None = None


class ConvergentReader(Generic[T]):
    """Per-entity read path over a primary and a fallback store.

    Args:
        entity: Entity name used in logs, metrics and errors.
        fallback: Spreadsheet StoreReader. Always required.
        normalize: Identity normalizer for this entity (raw row -> DTO).
        primary: SQL StoreReader, or None when SQL reads are disabled.
        identity: Extracts the stable id from a DTO, for fetch_by_id scans.
        cache_key: Read-cache key invalidated after successful writes.
    """

    def __init__(
        self,
        entity: str,
        fallback: StoreReader,
        normalize: Callable[[Any], T],
        *,
        primary: StoreReader | None = None,
        identity: Callable[[T], str] | None = None,
        cache_key: str | None = None,
    ) -> None:
        self.entity = entity
        self._fallback = fallback
        self._primary = primary
        self._normalize = normalize
        self._identity = identity
        self.cache_key = cache_key or entity

    @property
    def has_primary(self) -> bool:
        return self._primary is not None

    # ── Store attempts ──────────────────────────────────────────────────────

    async def _try_primary(self) -> ReadOutcome:
        if self._primary is None:
            return ReadOutcome(ReadStatus.SOFT_FAIL, "primary", reason="missing")
        try:
            rows = await self._primary.get_all()
        except Exception as exc:
            return ReadOutcome(ReadStatus.SOFT_FAIL, "primary", reason="error", error=exc)
        if not isinstance(rows, list):
            return ReadOutcome(ReadStatus.SOFT_FAIL, "primary", reason="malformed")
        if not rows and not await self._primary_synchronized():
            return ReadOutcome(ReadStatus.SOFT_FAIL, "primary", reason="empty")
        return ReadOutcome(ReadStatus.OK, "primary", rows=rows)

    async def _primary_synchronized(self) -> bool:
        """True only when the primary explicitly reports a completed sync."""
        probe = getattr(self._primary, "sync_status", None)
        if probe is None:
            return False
        try:
            status = probe()
            if inspect.isawaitable(status):
                status = await status
        except Exception as exc:
            logger.warning("convergence.sync_status_failed", entity=self.entity, error=str(exc))
            return False
        return status is True

    async def _try_fallback(self, fresh: bool) -> ReadOutcome:
        try:
            rows = await self._fallback.get_all(fresh=fresh)
        except Exception as exc:
            return ReadOutcome(ReadStatus.HARD_FAIL, "fallback", error=exc)
        if not isinstance(rows, list):
            return ReadOutcome(ReadStatus.HARD_FAIL, "fallback", reason="malformed")
        return ReadOutcome(ReadStatus.OK, "fallback", rows=rows)

    async def read(self, force_fallback: bool = False) -> ReadOutcome:
        """Run the convergence algorithm and return the serving outcome.

        Never raises; HARD_FAIL is returned, not thrown. fetch_all() is the
        raising front end.
        """
        if not force_fallback:
            outcome = await self._try_primary()
            if outcome.status is ReadStatus.OK:
                return outcome
            read_soft_fail_total.labels(entity=self.entity, reason=outcome.reason).inc()
            if outcome.reason != "missing":
                logger.warning(
                    "convergence.primary_soft_fail",
                    entity=self.entity,
                    reason=outcome.reason,
                    error=str(outcome.error) if outcome.error else None,
                )
        return await self._try_fallback(fresh=force_fallback)

    # ── Public contract ─────────────────────────────────────────────────────

    async def fetch_all(self, force_fallback: bool = False) -> list[T]:
        """Return every record as DTOs.

        Args:
            force_fallback: Skip the primary and read the spreadsheet uncached.

        Raises:
            SourceReadError: The fallback store failed.
        """
        outcome = await self.read(force_fallback=force_fallback)
        if outcome.status is ReadStatus.HARD_FAIL:
            detail = str(outcome.error) if outcome.error else (outcome.reason or "unknown")
            logger.error("convergence.fallback_failed", entity=self.entity, error=detail)
            raise SourceReadError(self.entity, detail) from outcome.error

        read_source_total.labels(entity=self.entity, source=outcome.source).inc()
        logger.debug(
            "convergence.read_served",
            entity=self.entity,
            source=outcome.source,
            count=len(outcome.rows),
            forced=force_fallback,
        )
        return [self._normalize(row) for row in outcome.rows]

    async def fetch_by_id(self, record_id: str, force_fallback: bool = False) -> T | None:
        """Return one record by stable id, or None.

        Uses the primary's get_by_id when available; otherwise (or when that
        soft-fails) scans the fallback's converged list.
        """
        if not record_id:
            return None
        if (
            not force_fallback
            and self._primary is not None
            and self._primary.supports_get_by_id
        ):
            try:
                row = await self._primary.get_by_id(record_id)
            except Exception as exc:
                read_soft_fail_total.labels(entity=self.entity, reason="error").inc()
                logger.warning(
                    "convergence.primary_get_by_id_failed",
                    entity=self.entity,
                    record_id=record_id,
                    error=str(exc),
                )
            else:
                if isinstance(row, Mapping) and row:
                    read_source_total.labels(entity=self.entity, source="primary").inc()
                    return self._normalize(row)

        if self._identity is None:
            return None
        if force_fallback:
            records = await self.fetch_all(force_fallback=True)
        else:
            records = [self._normalize(row) for row in await self._fallback_rows()]
        return next((r for r in records if self._identity(r) == record_id), None)

    async def _fallback_rows(self) -> list[Mapping[str, Any]]:
        outcome = await self._try_fallback(fresh=False)
        if outcome.status is ReadStatus.HARD_FAIL:
            detail = str(outcome.error) if outcome.error else (outcome.reason or "unknown")
            raise SourceReadError(self.entity, detail) from outcome.error
        read_source_total.labels(entity=self.entity, source="fallback").inc()
        return outcome.rows

    async def invalidate(self) -> None:
        """Best-effort cache invalidation on every wired store.

        A missing hook is skipped; a raising hook is logged and swallowed.
        """
        for store in (self._fallback, self._primary):
            hook = getattr(store, "invalidate", None) if store is not None else None
            if hook is None:
                continue
            try:
                result = hook(self.cache_key)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                cache_invalidation_failures_total.labels(entity=self.entity).inc()
                logger.warning(
                    "convergence.invalidate_failed",
                    entity=self.entity,
                    cache_key=self.cache_key,
                    error=str(exc),
                )
