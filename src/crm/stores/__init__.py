"""Concrete store adapters: SQL tables (primary) and Google Sheets worksheets (fallback)."""

from src.crm.stores.sheets import (
    EventLogSheetReader,
    EventLogSheetWriter,
    SheetsAuthManager,
    SheetsClient,
    SheetTableReader,
    SheetTableWriter,
    SystemConfigReader,
    WorksheetSchema,
)
from src.crm.stores.sql import ContactSqlWriter, SqlTableReader, SqlTableWriter

__all__ = [
    "ContactSqlWriter",
    "EventLogSheetReader",
    "EventLogSheetWriter",
    "SheetTableReader",
    "SheetTableWriter",
    "SheetsAuthManager",
    "SheetsClient",
    "SqlTableReader",
    "SqlTableWriter",
    "SystemConfigReader",
    "WorksheetSchema",
]
