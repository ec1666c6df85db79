"""Store adapter abstract base classes -- the contract every backing store implements.

Every physical store (SQL tables, spreadsheet worksheets) implements these ABCs.
ConvergentReader consumes StoreReader; WriteRouter is the only caller of
StoreWriter primitives.

Rows crossing this boundary are raw mappings in the store's own vocabulary.
Normalization into DTOs happens in the convergence layer, never here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

RawRecord = dict[str, Any]


class StoreReader(ABC):
    """Read side of one entity on one backing store.

    Methods:
        get_all: Every raw row. May raise; must return a list.
        get_by_id: Single-row lookup. Optional; None means "not supported".
        invalidate: Drop any cached read for cache_key. Optional, best-effort.
    """

    supports_get_by_id: bool = False

    @abstractmethod
    async def get_all(self, *, fresh: bool = False) -> list[RawRecord]:
        """Return every raw row. `fresh=True` bypasses any read cache."""
        ...

    async def get_by_id(self, record_id: str) -> RawRecord | None:
        """Fetch one raw row by stable id."""
        raise NotImplementedError

    async def invalidate(self, cache_key: str) -> None:
        """Drop cached rows for cache_key. Default: nothing is cached."""
        return None


class StoreWriter(ABC):
    """Write side of one entity on one backing store.

    `key` is the store's addressing key: a stable id for SQL tables, a
    1-based row index for spreadsheet worksheets.
    """

    @abstractmethod
    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        """Create a row, return at least {"success": bool, "id": str | None}."""
        ...

    @abstractmethod
    async def update(self, key: Any, data: dict[str, Any], actor: str) -> dict[str, Any]:
        """Update the row addressed by key."""
        ...

    @abstractmethod
    async def delete(self, key: Any, actor: str) -> dict[str, Any]:
        """Delete the row addressed by key."""
        ...


class PartitionedStoreWriter(StoreWriter):
    """Writer for a store that physically partitions rows by a category field.

    Row indices are only meaningful inside one partition, so update and
    delete take the partition explicitly. create() derives the partition
    from the payload.
    """

    @abstractmethod
    async def update(
        self, key: Any, data: dict[str, Any], actor: str, *, partition: str | None = None
    ) -> dict[str, Any]:
        ...

    @abstractmethod
    async def delete(
        self, key: Any, actor: str, *, partition: str | None = None
    ) -> dict[str, Any]:
        ...
