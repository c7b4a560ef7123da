from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sugarrush.logging import get_logger
from sugarrush.storage.errors import ConstraintViolation
from sugarrush.storage.models import User, new_object_id


class MemoryStore:
    """In-process user directory for tests and local development."""

    def __init__(self) -> None:
        self.logger = get_logger(__name__)
        self.users: Dict[str, User] = {}
        # RLock so helpers can be called while the lock is held
        self._data_lock = threading.RLock()

    def verify_connection(self) -> None:
        return None

    def _email_taken(self, email: str, *, exclude_id: Optional[str] = None) -> bool:
        return any(
            u.email == email and u.id != exclude_id for u in self.users.values()
        )

    def create_user(
        self,
        google_id: str,
        username: str,
        email: str,
        *,
        role: str,
        preferred_name: str = "",
        phone_number: str = "",
    ) -> User:
        with self._data_lock:
            if any(u.google_id == google_id for u in self.users.values()):
                raise ConstraintViolation("google id already exists", {"field": "google_id"})
            if self._email_taken(email):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user = User(
                id=new_object_id(),
                google_id=google_id,
                username=username,
                email=email,
                role=role,
                preferred_name=preferred_name,
                phone_number=phone_number,
            )
            self.users[user.id] = user
            self.logger.info("user_created", user_id=user.id, role=role)
            return replace(user)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def get_user_by_google_id(self, google_id: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.google_id == google_id), None)
            return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._data_lock:
            user = next((u for u in self.users.values() if u.email == email), None)
            return replace(user) if user else None

    def update_user_identity(self, user_id: str, username: str, email: str) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if self._email_taken(email, exclude_id=user_id):
                raise ConstraintViolation("email already exists", {"field": "email"})
            user.username = username
            user.email = email
            return replace(user)

    def update_user(
        self,
        user_id: str,
        *,
        preferred_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Optional[User]:
        with self._data_lock:
            user = self.users.get(user_id)
            if not user:
                return None
            if preferred_name is not None:
                user.preferred_name = preferred_name
            if phone_number is not None:
                user.phone_number = phone_number
            if role is not None:
                user.role = role
            return replace(user)

    def list_users(
        self, *, role: Optional[str] = None, name: Optional[str] = None
    ) -> List[User]:
        needle = name.lower() if name else None
        with self._data_lock:
            results = [
                replace(u)
                for u in self.users.values()
                if (not role or u.role == role)
                and (not needle or needle in u.username.lower())
            ]
        return sorted(results, key=lambda u: u.date_created)

    def delete_user(self, user_id: str) -> bool:
        with self._data_lock:
            return self.users.pop(user_id, None) is not None


class MemoryTokenStore:
    """In-process stand-in for the Redis blacklist and OAuth state keys.

    Entries carry an absolute expiry and are dropped lazily on read.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def verify_connection(self) -> None:
        return None

    async def ping(self) -> bool:
        return True

    def _get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.time():
            self._entries.pop(key, None)
            return None
        return value

    def ttl(self, key: str) -> Optional[int]:
        """Remaining seconds for ``key``, or ``None`` when absent."""
        with self._lock:
            if self._get(key) is None:
                return None
            return max(0, int(round(self._entries[key][1] - time.time())))

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            return
        with self._lock:
            self._entries[f"auth:blacklist:{token}"] = ("blacklisted", time.time() + ttl_seconds)

    async def is_token_blacklisted(self, token: str) -> bool:
        with self._lock:
            return self._get(f"auth:blacklist:{token}") is not None

    async def set_oauth_state(self, state: str, expires_at: datetime) -> None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        with self._lock:
            self._entries[f"auth:oauth:state:{state}"] = (
                expires_at.isoformat(),
                expires_at.timestamp(),
            )

    async def pop_oauth_state(self, state: str) -> Optional[datetime]:
        key = f"auth:oauth:state:{state}"
        with self._lock:
            raw = self._get(key)
            self._entries.pop(key, None)
        return datetime.fromisoformat(raw) if raw else None

    async def close(self) -> None:
        with self._lock:
            self._entries.clear()


__all__ = ["MemoryStore", "MemoryTokenStore"]
