from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

import httpx

from sugarrush.logging import get_logger
from sugarrush.storage.models import ExternalIdentity

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_SCOPE = "openid email profile"

logger = get_logger(__name__)


class OAuthExchangeError(Exception):
    """The provider rejected the authorization code or returned an unusable profile."""


class GoogleIdentityClient:
    """Google OAuth 2.0 client: consent URL, code exchange and token revocation."""

    def __init__(
        self,
        client_id: Optional[str],
        client_secret: Optional[str],
        redirect_uri: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=False, transport=self._transport
        )

    def authorization_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id or "",
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": GOOGLE_SCOPE,
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> ExternalIdentity:
        """Trade an authorization code for the caller's Google profile."""

        if not self.configured:
            logger.error("oauth_credentials_missing", provider="google")
            raise OAuthExchangeError("Google OAuth is not configured")

        try:
            async with self._client() as client:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                token_result = token_response.json()
                access_token = (
                    token_result.get("access_token") if isinstance(token_result, dict) else None
                )
                if not access_token:
                    logger.error("oauth_no_access_token", provider="google")
                    raise OAuthExchangeError("token response carried no access_token")

                userinfo_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "oauth_exchange_http_error",
                provider="google",
                status_code=exc.response.status_code,
                error=str(exc),
            )
            raise OAuthExchangeError("Google rejected the authorization code") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("oauth_exchange_error", provider="google", error=str(exc))
            raise OAuthExchangeError("Google OAuth exchange failed") from exc

        if not isinstance(userinfo, dict) or not userinfo.get("id"):
            logger.error("oauth_identity_missing_uid", provider="google")
            raise OAuthExchangeError("Google profile has no id")
        email = userinfo.get("email")
        if not email:
            logger.error("oauth_identity_missing_email", provider="google")
            raise OAuthExchangeError("Google profile has no email")

        identity = ExternalIdentity(
            google_id=str(userinfo["id"]),
            access_token=access_token,
            username=userinfo.get("name") or email.split("@")[0],
            email=email,
        )
        logger.info("oauth_exchange_success", provider="google", google_id=identity.google_id)
        return identity

    async def revoke_token(self, token: str) -> None:
        """Revoke a Google access token. Raises on transport failure."""

        async with self._client() as client:
            await client.post(
                GOOGLE_REVOKE_URL,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
