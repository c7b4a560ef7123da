from __future__ import annotations

from typing import List, Optional

from sugarrush.logging import get_logger
from sugarrush.service.auth import AuthContext, UserDirectory
from sugarrush.service.errors import BadRequestError, ForbiddenError, NotFoundError
from sugarrush.storage.models import User, is_object_id

logger = get_logger(__name__)


class UserService:
    """Account self-service with the self-or-admin rules."""

    def __init__(self, store: UserDirectory) -> None:
        self.store = store

    @staticmethod
    def _require_object_id(user_id: str) -> None:
        if not is_object_id(user_id):
            raise BadRequestError("Invalid ID", detail={"field": "id"})

    @staticmethod
    def _is_self_or_admin(ctx: AuthContext, user_id: str) -> bool:
        return ctx.is_admin or ctx.user_id == user_id

    def list_users(
        self, ctx: AuthContext, *, role: Optional[str] = None, name: Optional[str] = None
    ) -> List[User]:
        users = self.store.list_users(role=role, name=name)
        if not ctx.is_admin:
            users = [u for u in users if u.id == ctx.user_id]
        if not users:
            raise NotFoundError("No matching users found")
        return users

    def get_user(self, ctx: AuthContext, user_id: str) -> User:
        self._require_object_id(user_id)
        if not self._is_self_or_admin(ctx, user_id):
            raise ForbiddenError("Only the user or an admin can view this user")
        user = self.store.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    def update_user(
        self,
        ctx: AuthContext,
        user_id: str,
        *,
        preferred_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        role: Optional[str] = None,
    ) -> User:
        self._require_object_id(user_id)
        if self.store.get_user(user_id) is None:
            raise NotFoundError("User not found")
        if role is not None and not ctx.is_admin:
            raise ForbiddenError("Only admins can update user roles")
        if not self._is_self_or_admin(ctx, user_id):
            raise ForbiddenError("Only the user or an admin can update this information")
        updated = self.store.update_user(
            user_id, preferred_name=preferred_name, phone_number=phone_number, role=role
        )
        if updated is None:
            raise NotFoundError("User not found")
        logger.info(
            "user_updated",
            user_id=user_id,
            actor_id=ctx.user_id,
            role_changed=role is not None,
        )
        return updated

    def delete_user(self, ctx: AuthContext, user_id: str) -> None:
        self._require_object_id(user_id)
        if not self._is_self_or_admin(ctx, user_id):
            raise ForbiddenError("Only the user or an admin can delete this account")
        if not self.store.delete_user(user_id):
            raise NotFoundError("User not found")
        logger.info("user_deleted", user_id=user_id, actor_id=ctx.user_id)
