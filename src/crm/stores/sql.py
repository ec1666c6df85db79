"""SQL store adapters -- async StoreReader / StoreWriter over SQLAlchemy tables.

Provides:
- SqlTableReader: raw-row reads (column name -> value dicts) for one table
- SqlTableWriter: id-addressed create / update / delete for one table
- ContactSqlWriter: official-contact writer minting ``C<epoch-ms>`` ids
- *_COLUMNS: canonical DTO field -> SQL column maps used for writes

Uses the session_factory callable pattern: any async generator yielding an
AsyncSession (get_session in production, an aiosqlite-backed factory in tests).
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Boolean, DateTime, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.crm.convergence.adapter import RawRecord, StoreReader, StoreWriter
from src.crm.convergence.errors import NotFoundError
from src.crm.convergence.field_mapping import (
    COMPANY_FIELDS,
    OFFICIAL_CONTACT_FIELDS,
    FieldSpec,
    as_flag,
    to_store_columns,
)
from src.crm.convergence.joins import parse_timestamp
from src.crm.core.database import Base
from src.crm.stores.models import CompanyModel, ContactModel

logger = structlog.get_logger(__name__)

SessionFactory = Callable[..., AsyncGenerator[AsyncSession, None]]

# ── Column Maps (canonical field -> SQL column) ─────────────────────────────

COMPANY_COLUMNS: dict[str, str] = {
    "company_id": "company_id",
    "company_name": "company_name",
    "phone": "phone",
    "address": "address",
    "county": "city",
    "introduction": "description",
    "company_type": "company_type",
    "customer_stage": "customer_stage",
    "engagement_rating": "interaction_rating",
    "created_time": "created_time",
}

CONTACT_COLUMNS: dict[str, str] = {
    "contact_id": "contact_id",
    "source_id": "source_id",
    "name": "name",
    "company_id": "company_id",
    "department": "department",
    "position": "job_title",
    "mobile": "mobile",
    "phone": "phone",
    "email": "email",
    "created_time": "created_time",
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _row_to_dict(model: Any) -> RawRecord:
    """Column name -> value for a mapped instance."""
    return {column.key: getattr(model, column.key) for column in model.__table__.columns}


# ── Reader ──────────────────────────────────────────────────────────────────


class SqlTableReader(StoreReader):
    """Primary-source reader for one table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        model: Mapped class of the table.
        entity: Entity name for logs.
    """

    supports_get_by_id = True

    def __init__(self, session_factory: SessionFactory, model: type[Base], entity: str) -> None:
        self._session_factory = session_factory
        self._model = model
        self._entity = entity

    async def get_all(self, *, fresh: bool = False) -> list[RawRecord]:
        async for session in self._session_factory():
            result = await session.execute(select(self._model))
            rows = [_row_to_dict(m) for m in result.scalars().all()]
            logger.debug("sql_store.read", entity=self._entity, count=len(rows))
            return rows
        return []

    async def get_by_id(self, record_id: str) -> RawRecord | None:
        async for session in self._session_factory():
            model = await session.get(self._model, record_id)
            return _row_to_dict(model) if model is not None else None
        return None


# ── Writers ─────────────────────────────────────────────────────────────────


class SqlTableWriter(StoreWriter):
    """Id-addressed writer for one table.

    Payload keys may use any alias from the entity's field table; they are
    mapped onto columns through column_map. Audit columns (created_by,
    updated_by, updated_time) are stamped here from the acting user.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
        model: Mapped class of the table.
        entity: Entity name for logs and errors.
        fields: The entity's alias table.
        column_map: Canonical field -> column.
        id_column: Primary-key column name.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        model: type[Base],
        entity: str,
        fields: Mapping[str, FieldSpec],
        column_map: Mapping[str, str],
        id_column: str,
    ) -> None:
        self._session_factory = session_factory
        self._model = model
        self._entity = entity
        self._fields = fields
        self._column_map = column_map
        self._id_column = id_column

    def new_id(self, data: Mapping[str, Any]) -> str | None:
        """Id for a payload that carries none. None means the caller must supply one."""
        return None

    def _columns(self, data: Mapping[str, Any]) -> dict[str, Any]:
        """Map the payload onto columns, coercing to the column types."""
        columns = to_store_columns(data, self._fields, self._column_map)
        table = self._model.__table__
        for name, value in list(columns.items()):
            column_type = table.columns[name].type
            if isinstance(column_type, DateTime):
                columns[name] = parse_timestamp(value)
            elif isinstance(column_type, Boolean):
                columns[name] = bool(as_flag(value))
        return columns

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        columns = self._columns(data)
        record_id = columns.get(self._id_column) or self.new_id(data)
        if not record_id:
            raise ValueError(f"{self._entity}: create requires {self._id_column}")
        columns[self._id_column] = record_id
        now = _now()
        columns.setdefault("created_time", now)
        if "created_by" in self._model.__table__.columns:
            columns["created_by"] = actor
            columns["updated_by"] = actor
            columns["updated_time"] = now

        async for session in self._session_factory():
            session.add(self._model(**columns))
            await session.commit()
        logger.info("sql_store.created", entity=self._entity, record_id=record_id, actor=actor)
        return {"success": True, "id": record_id}

    async def update(self, key: Any, data: dict[str, Any], actor: str) -> dict[str, Any]:
        columns = self._columns(data)
        columns.pop(self._id_column, None)
        if "updated_by" in self._model.__table__.columns:
            columns["updated_by"] = actor
            columns["updated_time"] = _now()

        async for session in self._session_factory():
            model = await session.get(self._model, str(key))
            if model is None:
                raise NotFoundError(self._entity, key)
            for name, value in columns.items():
                setattr(model, name, value)
            await session.commit()
        logger.info(
            "sql_store.updated",
            entity=self._entity,
            record_id=str(key),
            fields=sorted(columns),
            actor=actor,
        )
        return {"success": True, "id": str(key)}

    async def delete(self, key: Any, actor: str) -> dict[str, Any]:
        async for session in self._session_factory():
            model = await session.get(self._model, str(key))
            if model is None:
                raise NotFoundError(self._entity, key)
            await session.delete(model)
            await session.commit()
        logger.info("sql_store.deleted", entity=self._entity, record_id=str(key), actor=actor)
        return {"success": True, "id": str(key)}


class ContactSqlWriter(SqlTableWriter):
    """Official-contact writer. SQL is the only write path for official contacts.

    Accepts the alternate payload spellings `company` (for companyId),
    `jobTitle` (for position) and `tel` (for phone). New contacts get a
    ``C<epoch-ms>`` id and default to source MANUAL.
    """

    def __init__(self, session_factory: SessionFactory) -> None:
        super().__init__(
            session_factory,
            ContactModel,
            "contact",
            OFFICIAL_CONTACT_FIELDS,
            CONTACT_COLUMNS,
            "contact_id",
        )

    def new_id(self, data: Mapping[str, Any]) -> str | None:
        return str(data.get("id") or f"C{int(time.time() * 1000)}")

    def _columns(self, data: Mapping[str, Any]) -> dict[str, Any]:
        payload = dict(data)
        if "company" in payload and "companyId" not in payload:
            payload["companyId"] = payload.pop("company")
        return super()._columns(payload)

    async def create(self, data: dict[str, Any], actor: str) -> dict[str, Any]:
        payload = dict(data)
        payload.setdefault("sourceId", "MANUAL")
        return await super().create(payload, actor)


def company_sql_writer(session_factory: SessionFactory) -> SqlTableWriter:
    return SqlTableWriter(
        session_factory, CompanyModel, "company", COMPANY_FIELDS, COMPANY_COLUMNS, "company_id"
    )

