from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, Path, Query
from fastapi.responses import RedirectResponse

from sugarrush.api.deps import get_auth_context, get_runtime
from sugarrush.api.schemas import (
    Envelope,
    HealthResponse,
    LoginResponse,
    LoginUser,
    RoleName,
    UserListResponse,
    UserResponse,
    UserUpdateRequest,
)
from sugarrush.service.auth import AuthContext
from sugarrush.service.runtime import Runtime
from sugarrush.storage.models import User

router = APIRouter()


def _user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        preferred_name=user.preferred_name,
        phone_number=user.phone_number,
        date_created=user.date_created,
    )


@router.get("/healthz", response_model=Envelope, tags=["health"])
async def healthz(runtime: Runtime = Depends(get_runtime)):
    checks = await runtime.check_health()
    healthy = all(value == "ok" for value in checks.values())
    return Envelope(
        status="ok",
        data=HealthResponse(status="healthy" if healthy else "degraded", checks=checks),
    )


@router.get("/auth/google", tags=["auth"])
async def google_login(runtime: Runtime = Depends(get_runtime)):
    """Redirect the browser to the Google consent screen."""
    start = await runtime.auth.start_oauth()
    return RedirectResponse(start["authorization_url"], status_code=307)


@router.get("/auth/google/callback", response_model=Envelope, tags=["auth"])
async def google_callback(
    code: str = Query(..., max_length=2048, description="Authorization code from Google"),
    state: str = Query(..., max_length=128, description="State issued by /auth/google"),
    runtime: Runtime = Depends(get_runtime),
):
    """Complete Google login and issue a session token."""
    user, token = await runtime.auth.complete_oauth(code, state)
    return Envelope(
        status="ok",
        message="Login successful",
        data=LoginResponse(
            token=token,
            user=LoginUser(username=user.username, email=user.email, role=user.role),
        ),
    )


@router.post("/users/logout", response_model=Envelope, tags=["auth"])
async def logout(
    authorization: Optional[str] = Header(None),
    runtime: Runtime = Depends(get_runtime),
):
    message = await runtime.auth.logout(authorization)
    return Envelope(status="ok", message=message)


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(
    role: Optional[RoleName] = Query(None),
    name: Optional[str] = Query(None, max_length=128),
    principal: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    users = runtime.users.list_users(principal, role=role, name=name)
    return Envelope(
        status="ok",
        data=UserListResponse(items=[_user_to_response(u) for u in users]),
    )


@router.get("/users/{user_id}", response_model=Envelope, tags=["users"])
async def get_user(
    user_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    user = runtime.users.get_user(principal, user_id)
    return Envelope(status="ok", data=_user_to_response(user))


@router.put("/users/{user_id}", response_model=Envelope, tags=["users"])
async def update_user(
    body: UserUpdateRequest,
    user_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    user = runtime.users.update_user(
        principal,
        user_id,
        preferred_name=body.preferred_name,
        phone_number=body.phone_number,
        role=body.role,
    )
    return Envelope(
        status="ok", message="User updated successfully", data=_user_to_response(user)
    )


@router.delete("/users/{user_id}", response_model=Envelope, tags=["users"])
async def delete_user(
    user_id: str = Path(..., max_length=64),
    principal: AuthContext = Depends(get_auth_context),
    runtime: Runtime = Depends(get_runtime),
):
    runtime.users.delete_user(principal, user_id)
    return Envelope(status="ok", message="User successfully deleted")
