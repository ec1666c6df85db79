"""Dual-source convergence core: normalization, converged reads, routed writes, joins.

Exports the pieces services are built from: DTOs, the error taxonomy,
the store adapter contracts, ConvergentReader, WriteRouter and
CategoryMoveHandler.
"""

from src.crm.convergence.adapter import PartitionedStoreWriter, StoreReader, StoreWriter
from src.crm.convergence.errors import (
    BusinessRuleViolation,
    CRMError,
    ForbiddenError,
    InvalidKeyError,
    MoveInconsistencyError,
    NotFoundError,
    SourceReadError,
    StoreNotConfiguredError,
)
from src.crm.convergence.moves import CategoryMoveHandler, MoveState
from src.crm.convergence.reader import ConvergentReader, ReadOutcome, ReadStatus
from src.crm.convergence.router import WriteRouter

__all__ = [
    "BusinessRuleViolation",
    "CRMError",
    "CategoryMoveHandler",
    "ConvergentReader",
    "ForbiddenError",
    "InvalidKeyError",
    "MoveInconsistencyError",
    "MoveState",
    "NotFoundError",
    "PartitionedStoreWriter",
    "ReadOutcome",
    "ReadStatus",
    "SourceReadError",
    "StoreNotConfiguredError",
    "StoreReader",
    "StoreWriter",
    "WriteRouter",
]
