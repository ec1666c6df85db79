"""Error taxonomy for the convergence layer.

Soft source failures are not exceptions: they are absorbed by the
ConvergentReader and reported as ReadStatus.SOFT_FAIL. Everything here is
caller-visible and propagates unmodified to the HTTP adapter, which maps
each class to a status code.
"""

from __future__ import annotations

from typing import Any


class CRMError(Exception):
    """Base class for every caller-visible CRM error."""


class SourceReadError(CRMError):
    """The fallback source failed after the primary was skipped (hard failure)."""

    def __init__(self, entity: str, detail: str) -> None:
        self.entity = entity
        self.detail = detail
        super().__init__(f"{entity}: fallback read failed: {detail}")


class NotFoundError(CRMError):
    """A natural key, id or row index resolved to no record."""

    def __init__(self, entity: str, key: Any) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class ForbiddenError(CRMError):
    """A write targeted a record lacking the addressing key its store requires."""

    def __init__(self, entity: str, key: Any, reason: str) -> None:
        self.entity = entity
        self.key = key
        self.reason = reason
        super().__init__(
            f"[Forbidden] cannot write {entity} {key}: {reason}. "
            "Switch to the other store mode or contact an administrator."
        )


class MoveInconsistencyError(CRMError):
    """A category move deleted the original row but failed to recreate it."""

    def __init__(
        self, entity: str, identity: str, category_from: str, category_to: str
    ) -> None:
        self.entity = entity
        self.identity = identity
        self.category_from = category_from
        self.category_to = category_to
        super().__init__(
            f"{entity} {identity} was removed from '{category_from}' but could not be "
            f"recreated under '{category_to}'"
        )


class BusinessRuleViolation(CRMError):
    """A mutation was refused by a business check (e.g. dependents exist)."""

    def __init__(
        self,
        message: str,
        blocking_count: int = 0,
        example: str | None = None,
    ) -> None:
        self.blocking_count = blocking_count
        self.example = example
        super().__init__(message)


class StoreNotConfiguredError(CRMError):
    """An operation was routed to a store that was never wired."""

    def __init__(self, entity: str, store: str) -> None:
        self.entity = entity
        self.store = store
        super().__init__(f"{entity}: {store} store is not configured")


class InvalidKeyError(CRMError):
    """A key cannot address a record (missing, or a row index that is not a positive integer)."""

    def __init__(self, entity: str, key: Any) -> None:
        self.entity = entity
        self.key = key
        super().__init__(f"{entity}: invalid key {key!r}")
