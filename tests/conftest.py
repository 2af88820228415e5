"""
Pytest configuration and fixtures for the auth service tests.

Provides fixtures for:
- Settings and an in-memory SQLite database
- User store and a recording audit sink
- A Local user (alice) with a known password
- Scripted providers for orchestrator tests
- Test HTTP client bound to the in-memory database
"""

import asyncio
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine

from ems_auth.config.settings import ProviderConfig, Settings
from ems_auth.core.auth.provider import AuthProvider, ProviderError
from ems_auth.domain.models.auth import AuditEvent, AuthResult
from ems_auth.infrastructure.audit import AuditSink
from ems_auth.infrastructure.auth.password import hash_password
from ems_auth.infrastructure.auth.user_store import UserStore
from ems_auth.infrastructure.database import close_db, create_engine, create_session_factory, init_db

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_HASH_ROUNDS = 2
ALICE_PASSWORD = "Secret123!"


class RecordingAuditSink(AuditSink):
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def record(self, event: AuditEvent) -> None:
        self.events.append(event)


class ScriptedProvider(AuthProvider):
    """Provider that returns a fixed outcome and counts its calls.

    outcome: "success", "reject" (wrong credentials), "error" (backend failure),
    "raise" (unexpected exception) or "hang" (never answers).
    """

    def __init__(self, name: str, priority: int, outcome: str, enabled: bool = True,
                 requires_credentials: bool = True, external_id: Optional[str] = None):
        super().__init__(
            ProviderConfig(
                name=name,
                type="sso" if not requires_credentials else "local",
                priority=priority,
                enabled=enabled,
                requires_credentials=requires_credentials,
            )
        )
        self.outcome = outcome
        self.external_id = external_id or f"{name}-id"
        self.calls = 0

    async def _verify(self, username: str, secret: str) -> AuthResult:
        self.calls += 1
        if self.outcome == "success":
            return AuthResult(
                success=True,
                username=username,
                provider=self.name,
                external_id=self.external_id,
                display_name=f"{username} via {self.name}",
                email=f"{username}@{self.name.lower()}.example.com",
            )
        if self.outcome == "reject":
            return self._failure("Invalid credentials", username)
        if self.outcome == "error":
            raise ProviderError(f"{self.name} unreachable")
        if self.outcome == "raise":
            raise RuntimeError("boom")
        if self.outcome == "hang":
            await asyncio.sleep(3600)
        raise AssertionError(f"unknown outcome {self.outcome}")


@pytest.fixture
def test_settings() -> Settings:
    """Settings for an in-memory database and a single Local provider."""
    return Settings(
        _env_file=None,
        database_url=TEST_DATABASE_URL,
        jwt_secret_key="test-secret-key",
        access_token_expire_minutes=60,
        auth_providers=[ProviderConfig(name="Local", type="local", priority=1)],
        password_hash_rounds=TEST_HASH_ROUNDS,
        max_failed_logins=3,
        lockout_minutes=15,
    )


@pytest_asyncio.fixture
async def test_engine(test_settings) -> AsyncGenerator[AsyncEngine, None]:
    """Create test database engine with all tables."""
    engine = create_engine(test_settings)
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def session_factory(test_engine):
    return create_session_factory(test_engine)


@pytest.fixture
def user_store(session_factory) -> UserStore:
    return UserStore(session_factory)


@pytest.fixture
def audit_sink() -> RecordingAuditSink:
    return RecordingAuditSink()


@pytest_asyncio.fixture
async def alice(user_store):
    """Local user alice with password Secret123!"""
    return await user_store.insert_user(
        username="alice",
        auth_provider="Local",
        role="operator",
        display_name="Alice Example",
        email="alice@example.com",
        password_hash=hash_password(ALICE_PASSWORD, rounds=TEST_HASH_ROUNDS),
    )


@pytest.fixture
def scripted():
    """Factory for scripted providers: scripted(name, priority, outcome, ...)"""
    return ScriptedProvider


@pytest_asyncio.fixture
async def client(test_settings, test_engine, session_factory, audit_sink) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with the auth service wired to the test database."""
    from ems_auth.core.auth.factory import create_auth_service
    from ems_auth.main import create_app

    app = create_app(test_settings)
    app.state.engine = test_engine
    app.state.auth_service = create_auth_service(test_settings, session_factory, audit_sink=audit_sink)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
