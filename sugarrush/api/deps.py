from __future__ import annotations

from typing import Callable, Optional

from fastapi import Depends, Header, Request

from sugarrush.service.auth import AuthContext, validate_role_names
from sugarrush.service.runtime import Runtime
from sugarrush.storage.models import Role


def get_runtime(request: Request) -> Runtime:
    return request.app.state.runtime


async def get_auth_context(
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
) -> AuthContext:
    """Verify the bearer token; rejected requests never reach the handler."""
    return await runtime.auth.verify(authorization)


def require_roles(*roles: Role | str) -> Callable[..., AuthContext]:
    """Build a dependency admitting ``roles`` (and always admin).

    Unknown role names raise ``ValueError`` when the route is declared.
    """
    allowed = validate_role_names(roles)

    async def _dependency(
        ctx: AuthContext = Depends(get_auth_context),
        runtime: Runtime = Depends(get_runtime),
    ) -> AuthContext:
        runtime.auth.authorize(ctx, allowed)
        return ctx

    return _dependency
