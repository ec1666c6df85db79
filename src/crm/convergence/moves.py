"""Category-move handler for stores partitioned by a mutable category.

The event-log spreadsheet keeps one worksheet per event type, so a row index
only means something inside its own partition. Changing a record's category
cannot be an in-place update: the row has to leave its old worksheet and be
recreated in the new one.

MoveState.IN_PLACE_UPDATE: category unchanged (or absent on either side),
    delegate to the store's update primitive inside the original partition.
MoveState.MOVE: delete(original row, original partition), then create with
    the original identity and creation time. A rejected delete stops the move
    before anything is created. The delete is not rolled back if the create
    fails; that failure surfaces as MoveInconsistencyError.

Cache invalidation is performed by the WriteRouter that owns this handler.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from src.crm.convergence.adapter import PartitionedStoreWriter
from src.crm.convergence.errors import (
    ForbiddenError,
    MoveInconsistencyError,
    NotFoundError,
)
from src.crm.convergence.reader import ConvergentReader
from src.crm.convergence.schemas import CRMRecord

logger = structlog.get_logger(__name__)

T = TypeVar("T", bound=CRMRecord)


class MoveState(str, Enum):
    IN_PLACE_UPDATE = "in_place_update"
    MOVE = "move"


def parse_row_index(key: Any) -> int | None:
    """Interpret key as a 1-based row index, or None."""
    if isinstance(key, bool):
        return None
    if isinstance(key, int):
        return key if key > 0 else None
    text = str(key).strip()
    if text.isdigit() and int(text) > 0:
        return int(text)
    return None


class CategoryMoveHandler(Generic[T]):
    """Turns category-changing updates into delete-then-recreate.

    Args:
        entity: Entity name for logs and errors.
        reader: Converged reader; only forced-fallback reads are used here.
        writer: Partition-aware spreadsheet writer.
        identity: DTO -> stable identity.
        category_of: DTO -> current partition name.
        identity_field: Payload key carrying the identity.
        category_field: Payload key carrying the category.
        created_field: Payload key carrying the creation timestamp.
    """

    def __init__(
        self,
        entity: str,
        reader: ConvergentReader[T],
        writer: PartitionedStoreWriter,
        *,
        identity: Callable[[T], str],
        category_of: Callable[[T], str],
        identity_field: str = "eventId",
        category_field: str = "eventType",
        created_field: str = "createdTime",
    ) -> None:
        self.entity = entity
        self._reader = reader
        self._writer = writer
        self._identity = identity
        self._category_of = category_of
        self._identity_field = identity_field
        self._category_field = category_field
        self._created_field = created_field

    async def resolve_original(self, key: Any, data: Mapping[str, Any]) -> T:
        """Locate the record being updated with a forced fallback read.

        An identity (from the payload, or a non-numeric key) is tried first;
        only then is key parsed as a row index.

        Raises:
            NotFoundError: Neither lookup resolves, or a row index is
                ambiguous across partitions.
        """
        identity = data.get(self._identity_field) or data.get("id")
        if not identity and parse_row_index(key) is None and key not in (None, ""):
            identity = str(key).strip()

        records = await self._reader.fetch_all(force_fallback=True)

        if identity:
            found = next((r for r in records if self._identity(r) == identity), None)
            if found is not None:
                return found

        row = parse_row_index(key)
        if row is not None:
            matches = [r for r in records if r.row_index == row]
            if len(matches) == 1:
                return matches[0]
            if len(matches) > 1:
                logger.warning(
                    "category_move.ambiguous_row",
                    entity=self.entity,
                    row_index=row,
                    partitions=[self._category_of(m) for m in matches],
                )
        raise NotFoundError(self.entity, identity or key)

    def classify(self, original: T, data: Mapping[str, Any]) -> MoveState:
        current = (self._category_of(original) or "").strip()
        incoming = str(data.get(self._category_field) or "").strip()
        if current and incoming and current != incoming:
            return MoveState.MOVE
        return MoveState.IN_PLACE_UPDATE

    async def apply(self, key: Any, data: Mapping[str, Any], actor: str) -> dict[str, Any]:
        """Update the record addressed by key, moving it if its category changed.

        Returns:
            The store's update result, the create result with moved=True, or
            the rejected delete result (success=False, moved=False).

        Raises:
            NotFoundError: The original record cannot be located.
            ForbiddenError: The original has no row index.
            MoveInconsistencyError: Deleted from the old partition, not recreated.
        """
        original = await self.resolve_original(key, data)
        identity = self._identity(original)
        if original.row_index is None:
            raise ForbiddenError(self.entity, identity or key, "record has no row index")

        category_from = self._category_of(original)
        state = self.classify(original, data)

        if state is MoveState.IN_PLACE_UPDATE:
            result = await self._writer.update(
                original.row_index, dict(data), actor, partition=category_from
            )
            return dict(result or {"success": True})

        category_to = str(data[self._category_field]).strip()
        deleted = await self._writer.delete(original.row_index, actor, partition=category_from)
        if isinstance(deleted, Mapping) and deleted.get("success") is False:
            logger.warning(
                "category_move.delete_rejected",
                entity=self.entity,
                identity=identity,
                category_from=category_from,
                category_to=category_to,
            )
            return {**dict(deleted), "success": False, "id": identity, "moved": False}

        payload = dict(data)
        payload[self._identity_field] = identity
        payload["id"] = identity
        created_time = getattr(original, "created_time", None)
        if not payload.get(self._created_field) and created_time:
            payload[self._created_field] = created_time

        try:
            created = await self._writer.create(payload, actor)
        except Exception as exc:
            logger.error(
                "category_move.recreate_failed",
                entity=self.entity,
                identity=identity,
                category_from=category_from,
                category_to=category_to,
                error=str(exc),
            )
            raise MoveInconsistencyError(
                self.entity, identity, category_from, category_to
            ) from exc

        if isinstance(created, Mapping) and created.get("success") is False:
            raise MoveInconsistencyError(self.entity, identity, category_from, category_to)

        logger.info(
            "category_move.moved",
            entity=self.entity,
            identity=identity,
            category_from=category_from,
            category_to=category_to,
        )
        result = dict(created) if isinstance(created, Mapping) else {"success": True}
        result.setdefault("success", True)
        result.setdefault("id", identity)
        result["moved"] = True
        return result
