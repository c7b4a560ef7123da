import asyncio
import inspect
import os
import sys
from pathlib import Path

os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-testing-only-do-not-use-in-production")
os.environ.setdefault("LOG_JSON", "false")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from sugarrush.app import create_app  # noqa: E402
from sugarrush.config import Settings  # noqa: E402
from sugarrush.service.google import OAuthExchangeError  # noqa: E402
from sugarrush.service.runtime import Runtime  # noqa: E402
from sugarrush.storage.memory import MemoryStore, MemoryTokenStore  # noqa: E402
from sugarrush.storage.models import ExternalIdentity  # noqa: E402

TEST_JWT_SECRET = "test-secret-key-for-testing-only-do-not-use-in-production"


class FakeGoogleClient:
    """Stands in for GoogleIdentityClient; records revocations."""

    configured = True

    def __init__(self) -> None:
        self.identities: dict[str, ExternalIdentity] = {}
        self.revoked: list[str] = []
        self.revoke_error: Exception | None = None

    def authorization_url(self, state: str) -> str:
        return f"https://accounts.google.com/o/oauth2/v2/auth?state={state}"

    async def exchange_code(self, code: str) -> ExternalIdentity:
        identity = self.identities.get(code)
        if identity is None:
            raise OAuthExchangeError("unknown code")
        return identity

    async def revoke_token(self, token: str) -> None:
        self.revoked.append(token)
        if self.revoke_error is not None:
            raise self.revoke_error


class RecordingTokenStore(MemoryTokenStore):
    """MemoryTokenStore that remembers every blacklist write."""

    def __init__(self) -> None:
        super().__init__()
        self.writes: list[tuple[str, int]] = []
        self.fail_reads = False
        self.fail_writes = False

    async def blacklist_token(self, token: str, ttl_seconds: int) -> None:
        if self.fail_writes:
            raise ConnectionError("token store unavailable")
        self.writes.append((token, ttl_seconds))
        await super().blacklist_token(token, ttl_seconds)

    async def is_token_blacklisted(self, token: str) -> bool:
        if self.fail_reads:
            raise ConnectionError("token store unavailable")
        return await super().is_token_blacklisted(token)


@pytest.fixture
def settings():
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        test_mode=True,
        use_memory_store=True,
        redis_url=None,
    )


@pytest.fixture
def google():
    return FakeGoogleClient()


@pytest.fixture
def token_store():
    return RecordingTokenStore()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def runtime(settings, memory_store, token_store, google):
    return Runtime(settings, store=memory_store, token_store=token_store, google=google)


@pytest.fixture
def auth_service(runtime):
    return runtime.auth


@pytest.fixture
def app(runtime):
    return create_app(runtime)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def make_session(runtime):
    """Create an account with ``role`` and return ``(user, token)``."""

    counter = {"n": 0}

    def _make(role: str = "temporary", *, username: str | None = None, google_token: str = "ya29.google-token"):
        counter["n"] += 1
        n = counter["n"]
        user = runtime.store.create_user(
            f"google-{n}",
            username or f"user{n}",
            f"user{n}@example.com",
            role=role,
        )
        return user, runtime.auth._issue_token(user, google_token)

    return _make


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
