"""Write router -- the only caller of store create/update/delete primitives.

For each entity the router knows which store currently holds write
authority and what that store needs to address a row:

- WriteAuthority.sql: the key is the record's stable id.
- WriteAuthority.sheet: the key is a row index, resolved from an id, a
  natural key or a row-shaped input by a forced fallback read performed
  immediately before the write. Cached and SQL-served lists are never
  trusted for row positions.

Ids and natural keys are matched across every record before a key is read
as a row index, so a name that happens to be numeric never addresses an
unrelated row. A row index present in more than one partition is ambiguous
and resolves to nothing.

A DTO passed as key is write-protected: if it lacks the addressing field of
the authoritative store the router raises ForbiddenError before touching any
store. Successful mutations invalidate the entity's read cache; failed ones
do not.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any, Generic, TypeVar

import structlog

from src.crm.config import WriteAuthority
from src.crm.convergence.adapter import StoreWriter
from src.crm.convergence.errors import (
    ForbiddenError,
    InvalidKeyError,
    NotFoundError,
    StoreNotConfiguredError,
)
from src.crm.convergence.moves import CategoryMoveHandler, parse_row_index
from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.schemas import CRMRecord, WriteResult
from src.crm.core.monitoring import write_total

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=CRMRecord)

Matcher = Callable[[Any, Any], bool]
Merge = Callable[[Any, dict[str, Any]], dict[str, Any]]


def coerce_result(raw: Any) -> WriteResult:
    """Wrap a store's result in WriteResult, keeping store-specific keys."""
    if isinstance(raw, WriteResult):
        return raw
    if isinstance(raw, Mapping):
        payload = dict(raw)
        if payload.get("id") is not None:
            payload["id"] = str(payload["id"])
        return WriteResult.model_validate(payload)
    return WriteResult(success=True if raw is None else bool(raw))


class WriteRouter(Generic[T]):
    """Routes one entity's mutations to its write-authority store.

    Args:
        entity: Entity name for logs, metrics and errors.
        reader: The entity's ConvergentReader (used for lookups and invalidation).
        writer: StoreWriter of the authoritative store, or None if unwired.
        authority: Which store holds write authority.
        identity: DTO -> stable id.
        id_field: Payload key that carries the id on create.
        id_factory: Generates an id on create when the payload has none.
        matcher: Extra (record, key) predicate for natural-key lookups.
        partition_of: DTO -> partition, for category-partitioned stores.
        move_handler: Handles updates for category-partitioned stores.
        row_keys: Whether a numeric string key may fall back to a row index
            when no id or natural key matches. Integer keys are always row
            indices.
    """

    def __init__(
        self,
        entity: str,
        reader: ConvergentReader[T],
        writer: StoreWriter | None,
        *,
        authority: WriteAuthority,
        identity: Callable[[T], str],
        id_field: str | None = None,
        id_factory: Callable[[], str] | None = None,
        matcher: Matcher | None = None,
        partition_of: Callable[[T], str] | None = None,
        move_handler: CategoryMoveHandler[T] | None = None,
        row_keys: bool = True,
    ) -> None:
        self.entity = entity
        self.reader = reader
        self._writer = writer
        self.authority = authority
        self._identity = identity
        self._id_field = id_field
        self._id_factory = id_factory
        self._matcher = matcher
        self._partition_of = partition_of
        self._move_handler = move_handler
        self._row_keys = row_keys

    @property
    def writer(self) -> StoreWriter:
        if self._writer is None:
            raise StoreNotConfiguredError(self.entity, self.authority.value)
        return self._writer

    # ── Key resolution ──────────────────────────────────────────────────────

    def _matches(self, record: T, key: Any) -> bool:
        if self._matcher is not None and self._matcher(record, key):
            return True
        text = str(key).strip()
        return bool(text) and self._identity(record) == text

    def _row_key(self, key: Any) -> int | None:
        if isinstance(key, int):
            return parse_row_index(key)
        if not self._row_keys:
            return None
        return parse_row_index(key)

    def _find(self, records: Sequence[T], key: Any) -> T:
        """Pick the record addressed by key from a forced fallback read.

        Ids and natural keys are tried across all records first; only then is
        key read as a row index, which must be unique across partitions.
        """
        if not isinstance(key, int):
            found = next((r for r in records if self._matches(r, key)), None)
            if found is not None:
                return found

        row = self._row_key(key)
        if row is not None:
            candidates = [r for r in records if r.row_index == row]
            if len(candidates) == 1:
                return candidates[0]
            if len(candidates) > 1:
                logger.warning(
                    "write_router.ambiguous_row",
                    entity=self.entity,
                    row_index=row,
                    candidates=len(candidates),
                )
        raise NotFoundError(self.entity, key)

    def _check_protection(self, record: CRMRecord) -> None:
        """Raise ForbiddenError when record lacks the authoritative store's key."""
        if self.authority is WriteAuthority.sheet and record.row_index is None:
            raise ForbiddenError(
                self.entity,
                self._identity(record) or "<unidentified>",
                "record has no row index (SQL-resident, not row-addressable)",
            )
        if self.authority is WriteAuthority.sql and not self._identity(record):
            raise ForbiddenError(
                self.entity,
                f"row {record.row_index}",
                "record has no stable id (spreadsheet-only, not id-addressable)",
            )

    def _plain_key(self, key: Any) -> Any:
        if isinstance(key, CRMRecord):
            self._check_protection(key)
            return self._identity(key) or key.row_index  # type: ignore[arg-type]
        return key

    async def resolve(self, key: Any) -> T:
        """Resolve key to the current record of the authoritative store.

        Args:
            key: A DTO, a stable id, a natural key or a row index.

        Raises:
            ForbiddenError: The DTO or resolved record is not addressable.
            NotFoundError: Nothing matches key, or a row index is ambiguous.
        """
        if isinstance(key, CRMRecord) and self.authority is WriteAuthority.sql:
            self._check_protection(key)
            return key  # type: ignore[return-value]
        key = self._plain_key(key)

        if key is None or (isinstance(key, str) and not key.strip()):
            raise NotFoundError(self.entity, key)

        if self.authority is WriteAuthority.sql:
            record = await self.reader.fetch_by_id(str(key).strip())
            if record is None and self._matcher is not None:
                records = await self.reader.fetch_all()
                record = next((r for r in records if self._matcher(r, key)), None)
            if record is None:
                raise NotFoundError(self.entity, key)
            self._check_protection(record)
            return record

        records = await self.reader.fetch_all(force_fallback=True)
        found = self._find(records, key)
        self._check_protection(found)
        return found

    def _address(self, record: T) -> Any:
        if self.authority is WriteAuthority.sheet:
            return record.row_index
        return self._identity(record)

    def _partition_kwargs(self, record: T) -> dict[str, Any]:
        if self._partition_of is None:
            return {}
        return {"partition": self._partition_of(record)}

    # ── Mutations ───────────────────────────────────────────────────────────

    async def _run(
        self,
        operation: str,
        key: Any,
        call: Callable[[], Awaitable[Any]],
        *,
        invalidate: bool = True,
    ) -> WriteResult:
        try:
            raw = await call()
        except Exception as exc:
            write_total.labels(entity=self.entity, operation=operation, status="error").inc()
            logger.warning(
                "write_router.failed",
                entity=self.entity,
                operation=operation,
                key=str(key),
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        result = coerce_result(raw)
        if not result.success:
            write_total.labels(entity=self.entity, operation=operation, status="rejected").inc()
            logger.warning(
                "write_router.rejected", entity=self.entity, operation=operation, key=str(key)
            )
            return result
        write_total.labels(entity=self.entity, operation=operation, status="ok").inc()
        if invalidate:
            await self.reader.invalidate()
        logger.info(
            "write_router.applied",
            entity=self.entity,
            operation=operation,
            key=str(key),
            authority=self.authority.value,
            moved=result.moved,
        )
        return result

    async def create(self, data: Mapping[str, Any], actor: str) -> WriteResult:
        """Create a record on the authoritative store, assigning an id if needed."""
        payload = dict(data)
        if self._id_field and self._id_factory and not payload.get(self._id_field):
            payload[self._id_field] = self._id_factory()
        writer = self.writer
        return await self._run(
            "create",
            payload.get(self._id_field) if self._id_field else None,
            lambda: writer.create(payload, actor),
        )

    async def update(
        self,
        key: Any,
        data: Mapping[str, Any],
        actor: str,
        *,
        merge: Merge | None = None,
    ) -> WriteResult:
        """Update the record addressed by key.

        Args:
            key: A DTO, a stable id, a natural key or a row index.
            data: Fields to change.
            actor: Acting user, stamped into audit columns.
            merge: Optional (current record, data) -> payload hook applied to
                the freshly resolved record before writing.

        Category-partitioned entities delegate to the move handler, which may
        turn the update into a delete-then-recreate (result.moved is True).
        """
        payload = dict(data)
        if self._move_handler is not None:
            key = self._plain_key(key)
            handler = self._move_handler
            return await self._run("update", key, lambda: handler.apply(key, payload, actor))

        writer = self.writer
        record = await self.resolve(key)
        if merge is not None:
            payload = merge(record, payload)
        address = self._address(record)
        extra = self._partition_kwargs(record)
        return await self._run(
            "update", key, lambda: writer.update(address, payload, actor, **extra)
        )

    async def update_many(
        self,
        items: Sequence[tuple[Any, Mapping[str, Any]]],
        actor: str,
        *,
        merge: Merge | None = None,
    ) -> list[WriteResult]:
        """Apply several updates with one forced read and one cache invalidation.

        Every key is resolved before the first write, so an unknown,
        ambiguous or protected key fails the whole batch with nothing
        written. Updates never shift rows, so the positions from that single
        read stay valid for every item.

        Raises:
            InvalidKeyError: An item carries no key.
            NotFoundError: A key does not resolve.
            ForbiddenError: A resolved record is not addressable.
        """
        if self._move_handler is not None:
            return [await self.update(key, data, actor, merge=merge) for key, data in items]

        writer = self.writer
        keys = [self._plain_key(key) for key, _ in items]
        for key in keys:
            if key is None or (isinstance(key, str) and not key.strip()):
                raise InvalidKeyError(self.entity, key)

        if self.authority is WriteAuthority.sheet:
            records = await self.reader.fetch_all(force_fallback=True)
            targets = [self._find(records, key) for key in keys]
            for record in targets:
                self._check_protection(record)
        else:
            targets = [await self.resolve(key) for key in keys]

        payloads = [dict(data) for _, data in items]
        if merge is not None:
            payloads = [merge(record, payload) for record, payload in zip(targets, payloads)]

        results = []
        for key, record, payload in zip(keys, targets, payloads):
            address = self._address(record)
            extra = self._partition_kwargs(record)
            results.append(
                await self._run(
                    "update",
                    key,
                    lambda: writer.update(address, payload, actor, **extra),
                    invalidate=False,
                )
            )
        if any(result.success for result in results):
            await self.reader.invalidate()
        return results

    async def delete(self, key: Any, actor: str) -> WriteResult:
        """Delete the record addressed by key (partition-aware when configured)."""
        writer = self.writer
        record = await self.resolve(key)
        address = self._address(record)
        extra = self._partition_kwargs(record)
        return await self._run("delete", key, lambda: writer.delete(address, actor, **extra))
