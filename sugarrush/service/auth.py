from __future__ import annotations

import base64
import hashlib
import hmac
import json
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List, Optional, Protocol

from sugarrush.config import Settings
from sugarrush.logging import get_logger
from sugarrush.service.errors import (
    AuthenticationError,
    BadRequestError,
    ForbiddenError,
    ServerError,
)
from sugarrush.service.google import GoogleIdentityClient, OAuthExchangeError
from sugarrush.storage.errors import ConstraintViolation
from sugarrush.storage.models import ROLE_NAMES, ExternalIdentity, Role, User

logger = get_logger(__name__)

MISSING_HEADER_MESSAGE = "Authorization header missing. Access denied."
BLACKLISTED_MESSAGE = "Token is blacklisted. Access denied."
INVALID_TOKEN_MESSAGE = "Invalid token. Access denied."
INSUFFICIENT_ROLE_MESSAGE = "Forbidden: Insufficient permissions"
LOGOUT_SUCCESS_MESSAGE = (
    "User logged out successfully. JWT blacklisted and Google token revoked."
)

_READ_ROLES = (Role.STOREOWNER, Role.DRIVER, Role.INVENTORY_MANAGER)
_STORE_WRITE_ROLES = (Role.STOREOWNER, Role.INVENTORY_MANAGER)

EXPIRY_LEEWAY_SECONDS = 1

# Allowlists for the candy, store and order routers, which mount them with
# ``require_roles(*ROUTE_ROLES[...])``; admin passes every check regardless.
ROUTE_ROLES: dict[str, tuple[Role, ...]] = {
    "candy:read": _READ_ROLES,
    "candy:write": (Role.INVENTORY_MANAGER,),
    "stores:read": _READ_ROLES,
    "stores:write": _STORE_WRITE_ROLES,
    "orders:read": _READ_ROLES,
    "orders:write": _STORE_WRITE_ROLES,
}


def generate_jwt_secret() -> str:
    """Return a 256-bit hex secret suitable for ``JWT_SECRET``."""

    return secrets.token_hex(32)


def validate_role_names(roles: Iterable[Any]) -> frozenset[str]:
    """Normalize role names, rejecting anything outside :class:`Role`."""

    names = set()
    for role in roles:
        name = role.value if isinstance(role, Role) else role
        if name not in ROLE_NAMES:
            raise ValueError(f"unknown role: {role!r}")
        names.add(name)
    return frozenset(names)


class TokenStore(Protocol):
    async def ping(self) -> bool: ...

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None: ...

    async def is_token_blacklisted(self, token: str) -> bool: ...

    async def set_oauth_state(self, state: str, expires_at: datetime) -> None: ...

    async def pop_oauth_state(self, state: str) -> Optional[datetime]: ...


class UserDirectory(Protocol):
    def verify_connection(self) -> None: ...

    def create_user(
        self,
        google_id: str,
        username: str,
        email: str,
        *,
        role: str,
        preferred_name: str = "",
        phone_number: str = "",
    ) -> User: ...

    def get_user(self, user_id: str) -> Optional[User]: ...

    def get_user_by_google_id(self, google_id: str) -> Optional[User]: ...

    def get_user_by_email(self, email: str) -> Optional[User]: ...

    def update_user_identity(
        self, user_id: str, username: str, email: str
    ) -> Optional[User]: ...

    def update_user(
        self,
        user_id: str,
        *,
        preferred_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Optional[User]: ...

    def list_users(
        self, *, role: Optional[str] = None, name: Optional[str] = None
    ) -> List[User]: ...

    def delete_user(self, user_id: str) -> bool: ...


@dataclass(frozen=True)
class AuthContext:
    """Verified caller identity handed to route handlers."""

    user_id: str
    role: str
    username: str
    email: str
    google_access_token: Optional[str]
    token: str
    expires_at: datetime

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


class AuthService:
    """Google login, JWT issuance and verification, role checks, and logout."""

    def __init__(
        self,
        store: UserDirectory,
        token_store: TokenStore,
        google: GoogleIdentityClient,
        settings: Settings,
    ) -> None:
        self.store = store
        self.token_store = token_store
        self.google = google
        self.settings = settings
        self.logger = logger

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # OAuth

    async def start_oauth(self) -> dict[str, str]:
        if not self.google.configured:
            self.logger.warning("oauth_not_configured", provider="google")
            raise ServerError("Google OAuth is not configured")
        state = secrets.token_urlsafe(24)
        expires_at = self._now() + timedelta(minutes=self.settings.oauth_state_ttl_minutes)
        await self.token_store.set_oauth_state(state, expires_at)
        return {"authorization_url": self.google.authorization_url(state), "state": state}

    async def complete_oauth(self, code: str, state: str) -> tuple[User, str]:
        try:
            expires_at = await self.token_store.pop_oauth_state(state)
        except Exception as exc:
            # A state that cannot be read back is treated as absent.
            self.logger.error("pop_oauth_state_failed", error=str(exc))
            raise AuthenticationError("OAuth verification failed") from exc
        if expires_at is None or expires_at <= self._now():
            self.logger.warning("oauth_state_invalid")
            raise AuthenticationError("OAuth verification failed")
        try:
            identity = await self.google.exchange_code(code)
        except OAuthExchangeError as exc:
            raise AuthenticationError("OAuth verification failed") from exc
        return await self.issue_session(identity)

    # Session issuer

    async def issue_session(self, identity: ExternalIdentity) -> tuple[User, str]:
        """Find or create the account for ``identity`` and sign a session token."""

        try:
            user = self.store.get_user_by_google_id(identity.google_id)
            if user is None:
                user = self._provision_user(identity)
            if user.username != identity.username or user.email != identity.email:
                updated = self.store.update_user_identity(
                    user.id, identity.username, identity.email
                )
                if updated is None:
                    raise LookupError(f"user {user.id} vanished during login")
                user = updated
                self.logger.info("oauth_user_identity_refreshed", user_id=user.id)
            token = self._issue_token(user, identity.access_token)
        except Exception as exc:
            self.logger.error("issue_session_failed", error=str(exc))
            raise ServerError("Internal server error") from exc
        self.logger.info("session_issued", user_id=user.id, role=user.role)
        return user, token

    def _provision_user(self, identity: ExternalIdentity) -> User:
        try:
            user = self.store.create_user(
                identity.google_id,
                identity.username,
                identity.email,
                role=self.settings.default_user_role.value,
            )
        except ConstraintViolation as exc:
            if exc.detail.get("field") != "google_id":
                raise
            # A concurrent first login for the same Google account won.
            user = self.store.get_user_by_google_id(identity.google_id)
            if user is None:
                raise
            self.logger.info("oauth_user_provision_raced", user_id=user.id)
            return user
        self.logger.info("oauth_user_provisioned", user_id=user.id, role=user.role)
        return user

    def _issue_token(self, user: User, google_access_token: str) -> str:
        issued_at = int(time.time())
        payload = {
            "googleAccessToken": google_access_token,
            "userId": user.id,
            "username": user.username,
            "email": user.email,
            "role": user.role,
            "iat": issued_at,
            "exp": issued_at + self.settings.session_token_ttl_minutes * 60,
        }
        return self._encode_jwt(payload)

    # Session verifier

    @staticmethod
    def _extract_bearer(header: str) -> str:
        parts = header.split()
        return parts[1] if len(parts) > 1 else ""

    async def verify(self, authorization: Optional[str]) -> AuthContext:
        if not authorization or not authorization.strip():
            raise AuthenticationError(MISSING_HEADER_MESSAGE)
        token = self._extract_bearer(authorization)
        if not token:
            raise ForbiddenError(INVALID_TOKEN_MESSAGE, error_code="invalid_token")

        try:
            blacklisted = await self.token_store.is_token_blacklisted(token)
        except Exception as exc:
            self.logger.error("token_blacklist_check_failed", error=str(exc))
            raise ServerError("Internal server error") from exc
        if blacklisted:
            self.logger.info("blacklisted_token_rejected")
            raise ForbiddenError(BLACKLISTED_MESSAGE, error_code="token_blacklisted")

        payload = self._decode_jwt(token)
        if payload is None or not payload.get("userId") or not payload.get("role"):
            raise ForbiddenError(INVALID_TOKEN_MESSAGE, error_code="invalid_token")
        return AuthContext(
            user_id=str(payload["userId"]),
            role=str(payload["role"]),
            username=str(payload.get("username") or ""),
            email=str(payload.get("email") or ""),
            google_access_token=payload.get("googleAccessToken"),
            token=token,
            expires_at=datetime.fromtimestamp(float(payload["exp"]), tz=timezone.utc),
        )

    # Role authorizer

    def authorize(self, ctx: AuthContext, allowed_roles: Iterable[str]) -> None:
        allowed = {r.value if isinstance(r, Role) else r for r in allowed_roles}
        if ctx.role in allowed or ctx.is_admin:
            return
        self.logger.info("role_check_denied", user_id=ctx.user_id, role=ctx.role)
        raise ForbiddenError(INSUFFICIENT_ROLE_MESSAGE)

    # Session revocation

    async def logout(self, authorization: Optional[str]) -> str:
        """Blacklist the presented token and revoke its Google grant.

        Expired tokens are accepted and nothing is written for them. The
        blacklist is not consulted, so repeating a logout succeeds.
        """

        if not authorization or not authorization.strip():
            raise BadRequestError("Authorization header missing.")
        token = self._extract_bearer(authorization)
        try:
            payload = self._read_claims(token)
            exp = float(payload["exp"])
        except (ValueError, KeyError, TypeError):
            raise BadRequestError("Invalid JWT provided.")
        if not self._signature_valid(token):
            raise ForbiddenError(INVALID_TOKEN_MESSAGE, error_code="invalid_token")

        try:
            google_token = payload.get("googleAccessToken")
            if google_token:
                await self._revoke_google_token(str(google_token))
            remaining = int(exp - time.time())
            if remaining > 0:
                await self.token_store.blacklist_token(token, remaining)
                self.logger.info("jwt_blacklisted", user_id=payload.get("userId"), ttl=remaining)
            else:
                self.logger.info("jwt_already_expired", user_id=payload.get("userId"))
        except Exception as exc:
            self.logger.error("logout_failed", error=str(exc))
            raise ServerError("Error logging out.") from exc
        return LOGOUT_SUCCESS_MESSAGE

    async def _revoke_google_token(self, google_token: str) -> None:
        try:
            await self.google.revoke_token(google_token)
        except Exception as exc:
            self.logger.warning("google_token_revoke_failed", error=str(exc))

    # JWT helpers

    def _encode_segment(self, data: bytes) -> str:
        return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")

    def _decode_segment(self, segment: str) -> bytes:
        padding = "=" * ((4 - len(segment) % 4) % 4)
        return base64.urlsafe_b64decode(segment + padding)

    def _sign(self, signing_input: str) -> str:
        return self._encode_segment(
            hmac.new(
                self.settings.jwt_secret.encode(), signing_input.encode(), hashlib.sha256
            ).digest()
        )

    def _encode_jwt(self, payload: dict[str, Any]) -> str:
        header = {"alg": "HS256", "typ": "JWT"}
        header_enc = self._encode_segment(
            json.dumps(header, separators=(",", ":")).encode()
        )
        payload_enc = self._encode_segment(
            json.dumps(payload, separators=(",", ":")).encode()
        )
        signing_input = f"{header_enc}.{payload_enc}"
        return f"{signing_input}.{self._sign(signing_input)}"

    def _read_claims(self, token: str) -> dict[str, Any]:
        """Decode the payload without checking signature or expiry.

        Raises ``ValueError`` when the token is structurally unreadable.
        """

        segments = token.split(".")
        if len(segments) != 3:
            raise ValueError("token must have three segments")
        try:
            payload = json.loads(self._decode_segment(segments[1]))
        except Exception as exc:
            raise ValueError("token payload is not base64url JSON") from exc
        if not isinstance(payload, dict):
            raise ValueError("token payload is not an object")
        return payload

    def _signature_valid(self, token: str) -> bool:
        try:
            header_b64, payload_b64, sig_b64 = token.split(".")
            header = json.loads(self._decode_segment(header_b64))
        except Exception:
            logger.warning("jwt_header_decode_failed")
            return False
        if not isinstance(header, dict) or header.get("alg") != "HS256":
            logger.warning("jwt_invalid_algorithm")
            return False
        try:
            presented = sig_b64.encode("utf-8")
        except UnicodeEncodeError:
            logger.warning("jwt_signature_undecodable")
            return False
        expected = self._sign(f"{header_b64}.{payload_b64}").encode("ascii")
        return hmac.compare_digest(expected, presented)

    def _decode_jwt(self, token: str) -> Optional[dict[str, Any]]:
        if not self._signature_valid(token):
            return None
        try:
            payload = self._read_claims(token)
        except ValueError as exc:
            logger.warning("jwt_payload_decode_failed", error=str(exc))
            return None
        try:
            exp_ts = float(payload["exp"])
        except (KeyError, TypeError, ValueError):
            return None
        # Blacklist TTLs are whole seconds rounded down, so the final second
        # of a token's life is not honored here either.
        if exp_ts - EXPIRY_LEEWAY_SECONDS <= time.time():
            return None
        return payload
