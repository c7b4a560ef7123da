from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    """Closed set of account roles."""

    ADMIN = "admin"
    STOREOWNER = "storeowner"
    INVENTORY_MANAGER = "inventoryManager"
    DRIVER = "driver"
    TEMPORARY = "temporary"


ROLE_NAMES: frozenset[str] = frozenset(r.value for r in Role)


def new_object_id() -> str:
    """Return a 24-hex-character id: 4-byte timestamp followed by 8 random bytes."""
    return f"{int(time.time()):08x}{os.urandom(8).hex()}"


def is_object_id(value: str) -> bool:
    if not isinstance(value, str) or len(value) != 24:
        return False
    try:
        int(value, 16)
    except ValueError:
        return False
    return True


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class User:
    id: str
    google_id: str
    username: str
    email: str
    role: str = Role.TEMPORARY.value
    preferred_name: str = ""
    phone_number: str = ""
    date_created: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class ExternalIdentity:
    """Profile asserted by the identity provider after a code exchange."""

    google_id: str
    access_token: str
    username: str
    email: str
