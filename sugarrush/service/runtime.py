from __future__ import annotations

import asyncio
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from sugarrush.config import Settings
from sugarrush.logging import get_logger
from sugarrush.service.auth import AuthService, TokenStore, UserDirectory
from sugarrush.service.google import GoogleIdentityClient
from sugarrush.service.users import UserService
from sugarrush.storage.memory import MemoryStore, MemoryTokenStore
from sugarrush.storage.postgres import PostgresStore
from sugarrush.storage.redis_cache import RedisCache, SyncRedisCache

logger = get_logger(__name__)

HEALTH_CHECK_TIMEOUT_SECONDS = 3


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password component of a URL for safe logging.

    Example: redis://:mypassword@localhost:6379 -> redis://:***@localhost:6379
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except Exception:
        return "***url_parse_error***"


class Runtime:
    """Holds the service instances for one FastAPI app.

    Collaborators may be passed in directly; anything omitted is built from
    ``settings``.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: Optional[UserDirectory] = None,
        token_store: Optional[TokenStore] = None,
        google: Optional[GoogleIdentityClient] = None,
    ) -> None:
        self.settings = settings
        logger.info(
            "runtime_init_started",
            use_memory_store=settings.use_memory_store,
            test_mode=settings.test_mode,
        )
        self.store = store if store is not None else self._build_store()
        self.token_store = token_store if token_store is not None else self._build_token_store()
        self.google = google or GoogleIdentityClient(
            settings.google_client_id,
            settings.google_client_secret,
            settings.google_callback_url,
            timeout=settings.oauth_http_timeout_seconds,
        )
        self.auth = AuthService(self.store, self.token_store, self.google, settings)
        self.users = UserService(self.store)
        logger.info(
            "runtime_initialized",
            store_type=type(self.store).__name__,
            token_store_type=type(self.token_store).__name__,
            google_configured=self.google.configured,
            default_user_role=settings.default_user_role.value,
        )

    def _build_store(self) -> Union[MemoryStore, PostgresStore]:
        store_type = "memory" if self.settings.use_memory_store else "postgres"
        try:
            store = (
                MemoryStore()
                if self.settings.use_memory_store
                else PostgresStore(self.settings.database_url)
            )
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                store_type=store_type,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            raise
        logger.info("runtime_store_initialized", store_type=store_type)
        return store

    def _build_token_store(self) -> Union[RedisCache, MemoryTokenStore]:
        redis_error: Exception | None = None
        if self.settings.redis_url:
            try:
                # Sync client in test mode avoids binding to a test event loop
                if self.settings.test_mode:
                    cache = SyncRedisCache(self.settings.redis_url)
                else:
                    cache = RedisCache(self.settings.redis_url)
                cache.verify_connection()
                return cache
            except Exception as exc:
                redis_error = exc

        if not self.settings.test_mode and not self.settings.allow_redis_fallback_dev:
            raise RuntimeError(
                "Redis is required for the token blacklist; start Redis or set "
                "TEST_MODE=true/ALLOW_REDIS_FALLBACK_DEV=true for local fallback."
            ) from redis_error

        fallback_mode = "TEST_MODE" if self.settings.test_mode else "ALLOW_REDIS_FALLBACK_DEV"
        logger.warning(
            "redis_disabled_fallback",
            redis_url=_mask_url_password(self.settings.redis_url),
            error=str(redis_error) if redis_error else "redis_url_missing",
            message=(
                f"Running without Redis under {fallback_mode}; blacklisted tokens "
                "are kept in process memory and lost on restart."
            ),
            mode=fallback_mode,
        )
        return MemoryTokenStore()

    async def check_health(self) -> dict[str, str]:
        """Probe the user directory and token store with a bounded wait."""

        async def _bounded(label: str, probe) -> str:
            try:
                await asyncio.wait_for(probe(), HEALTH_CHECK_TIMEOUT_SECONDS)
                return "ok"
            except asyncio.TimeoutError:
                logger.error(
                    "health_check_timeout", component=label, timeout=HEALTH_CHECK_TIMEOUT_SECONDS
                )
            except Exception as exc:
                logger.error("health_check_failed", component=label, error=str(exc))
            return "error"

        return {
            "store": await _bounded(
                "store", lambda: asyncio.to_thread(self.store.verify_connection)
            ),
            "token_store": await _bounded("token_store", self.token_store.ping),
        }

    async def close(self) -> None:
        close_cache = getattr(self.token_store, "close", None)
        if close_cache is not None:
            await close_cache()
        close_store = getattr(self.store, "close", None)
        if close_store is not None:
            close_store()
