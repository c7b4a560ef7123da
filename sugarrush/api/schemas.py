from __future__ import annotations

import re
from datetime import datetime
from typing import Any, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from sugarrush.logging import get_correlation_id

_VALID_ERROR_CODES = frozenset({
    "validation_error",
    "unauthorized",
    "forbidden",
    "invalid_token",
    "token_blacklisted",
    "not_found",
    "conflict",
    "server_error",
})

PHONE_PATTERN = re.compile(r"^\+1-\d{3}-\d{3}-\d{4}$")

RoleName = Literal["admin", "storeowner", "inventoryManager", "driver", "temporary"]


def _request_id() -> str:
    return get_correlation_id() or str(uuid4())


class ErrorBody(BaseModel):
    """Error envelope body with a stable code value."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    """API envelope shared by every JSON response."""

    status: str = Field(..., pattern="^(ok|error)$")
    message: Optional[str] = None
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=_request_id)


class LoginUser(BaseModel):
    """Reduced account view returned at login; never carries ids."""

    username: str
    email: str
    role: str


class LoginResponse(BaseModel):
    token: str
    user: LoginUser


class OAuthStartResponse(BaseModel):
    authorization_url: str
    state: str


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    role: str
    preferred_name: str = ""
    phone_number: str = ""
    date_created: datetime


class UserListResponse(BaseModel):
    items: List[UserResponse]


class UserUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    preferred_name: Optional[str] = Field(default=None, max_length=128)
    phone_number: Optional[str] = None
    role: Optional[RoleName] = None

    @field_validator("preferred_name")
    @classmethod
    def _validate_preferred_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("Preferred name must be at least 1 character")
        return trimmed

    @field_validator("phone_number")
    @classmethod
    def _validate_phone_number(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        trimmed = value.strip()
        if not PHONE_PATTERN.match(trimmed):
            raise ValueError("Phone number must be in the format: +1-XXX-XXX-XXXX")
        return trimmed


class HealthResponse(BaseModel):
    status: str
    checks: dict[str, str]
