"""Shared fixtures for CRM convergence tests.

Provides:
- sqlite_engine / session_factory: in-memory aiosqlite database with every
  SQL-store table created, for SQL adapter tests
- company_rows / opportunity_rows: small spreadsheet-shaped datasets reused
  by service and API tests
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from src.crm.core.database import Base
from src.crm.stores import models  # noqa: F401


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the CRM tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    """Session factory in the get_session() shape, bound to the SQLite engine."""

    async def _factory() -> AsyncGenerator[AsyncSession, None]:
        async with AsyncSession(sqlite_engine, expire_on_commit=False) as session:
            yield session

    return _factory


@pytest.fixture
def company_rows() -> list[dict]:
    return [
        {
            "companyId": "COMP_1",
            "companyName": "台灣科技股份有限公司",
            "county": "台北市",
            "companyType": "客戶",
            "customerStage": "洽談中",
            "engagementRating": "A",
            "createdTime": "2025-12-01T00:00:00Z",
        },
        {
            "companyId": "COMP_2",
            "companyName": "北方電機有限公司",
            "county": "新竹縣",
            "companyType": "經銷商",
            "customerStage": "成交",
            "engagementRating": "B",
            "createdTime": "2025-11-01T00:00:00Z",
        },
    ]


@pytest.fixture
def opportunity_rows() -> list[dict]:
    return [
        {
            "opportunityId": "OPP_1",
            "opportunityName": "產線監控導入",
            "customerCompany": "台灣科技(Taiwan)",
            "mainContact": "王小明",
            "opportunityType": "iot",
            "currentStage": "01_初步接觸",
            "currentStatus": "進行中",
            "assignee": "amy",
            "opportunityValue": "100000",
            "probability": "30",
            "createdTime": "2026-01-05T00:00:00Z",
            "lastUpdateTime": "2026-01-10T00:00:00Z",
        },
        {
            "opportunityId": "OPP_2",
            "opportunityName": "舊案",
            "customerCompany": "北方電機",
            "currentStage": "02_需求確認",
            "currentStatus": "已封存",
            "createdTime": "2025-06-01T00:00:00Z",
            "lastUpdateTime": "2025-06-02T00:00:00Z",
        },
    ]
