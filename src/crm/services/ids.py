"""Identifier minting for records whose id authority is the service layer."""

from __future__ import annotations

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_lowercase


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def _random_base36(length: int) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def new_company_id() -> str:
    """COMP_<epoch-ms>_<6 base36 chars>."""
    return f"COMP_{_epoch_ms()}_{_random_base36(6)}"


def prefixed_id(prefix: str) -> str:
    """<prefix><epoch-ms><4 base36 chars>, e.g. EVT1767225600000x9k2."""
    return f"{prefix}{_epoch_ms()}{_random_base36(4)}"
