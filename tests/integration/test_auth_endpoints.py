"""
Integration tests for authentication endpoints.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from ems_auth.config.settings import BootstrapAdmin
from ems_auth.infrastructure.auth.password import hash_password

from conftest import ALICE_PASSWORD, TEST_HASH_ROUNDS


async def login_alice(client: AsyncClient) -> str:
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "alice", "password": ALICE_PASSWORD},
    )
    assert response.status_code == 200
    return response.json()["token"]


@pytest_asyncio.fixture
async def admin_token(client: AsyncClient, user_store) -> str:
    await user_store.insert_user(
        username="root",
        auth_provider="Local",
        role="admin",
        password_hash=hash_password("Adm1nPass!", rounds=TEST_HASH_ROUNDS),
    )
    response = await client.post(
        "/api/v1/auth/login",
        json={"username": "root", "password": "Adm1nPass!"},
    )
    return response.json()["token"]


@pytest.mark.integration
class TestLoginEndpoint:
    """Test POST /api/v1/auth/login endpoint."""

    @pytest.mark.asyncio
    async def test_login_success(self, client: AsyncClient, alice):
        response = await client.post(
            "/api/v1/auth/login",
            json={"username": "alice", "password": ALICE_PASSWORD},
        )

        assert response.status_code == 200
        data = response.json()

        assert data["success"] is True
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 3600
        assert data["provider"] == "Local"
        assert data["user"]["username"] == "alice"
        assert data["user"]["role"] == "operator"
        assert data["user"]["auth_provider"] == "Local"
        assert "password_hash" not in data["user"]
        assert len(data["token"].split(".")) == 3

    @pytest.mark.asyncio
    async def test_login_wrong_password(self, client: AsyncClient, alice):
        response = await client.post(
            "/api/v1/auth/login",
            json={"username": "alice", "password": "wrongpassword"},
        )

        assert response.status_code == 401
        assert response.json()["detail"] == {
            "error": "authentication_failed",
            "message": "Authentication failed",
        }

    @pytest.mark.asyncio
    async def test_login_nonexistent_user(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/login",
            json={"username": "nobody", "password": "somepassword"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "authentication_failed"

    @pytest.mark.asyncio
    async def test_login_unknown_provider(self, client: AsyncClient, alice):
        response = await client.post(
            "/api/v1/auth/login",
            json={"username": "alice", "password": ALICE_PASSWORD, "provider": "Nope"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_login_blank_username(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/login",
            json={"username": "   ", "password": "somepassword"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_login_records_client_details(self, client: AsyncClient, alice, audit_sink):
        await client.post(
            "/api/v1/auth/login",
            json={"username": "alice", "password": ALICE_PASSWORD},
            headers={"User-Agent": "pytest-agent"},
        )

        event = audit_sink.events[-1]
        assert event.result == "Success"
        assert event.user_agent == "pytest-agent"


@pytest.mark.integration
class TestTokenEndpoints:
    """Test GET /api/v1/auth/validate and /api/v1/auth/me."""

    @pytest.mark.asyncio
    async def test_validate_token(self, client: AsyncClient, alice):
        token = await login_alice(client)

        response = await client.get(
            "/api/v1/auth/validate",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["valid"] is True
        assert data["claims"]["username"] == "alice"
        assert data["claims"]["user_id"] == alice.user_id
        assert data["claims"]["expires_at"] - data["claims"]["issued_at"] == 3600

    @pytest.mark.asyncio
    async def test_me(self, client: AsyncClient, alice):
        token = await login_alice(client)

        response = await client.get(
            "/api/v1/auth/me",
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 200
        assert response.json()["role"] == "operator"

    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/validate")

        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"

    @pytest.mark.asyncio
    async def test_tampered_token(self, client: AsyncClient, alice):
        token = await login_alice(client)
        header, payload, signature = token.split(".")
        tampered = f"{header}.{payload}.{signature[:-4]}AAAA"

        response = await client.get(
            "/api/v1/auth/validate",
            headers={"Authorization": f"Bearer {tampered}"},
        )

        assert response.status_code == 401
        assert response.json()["detail"]["error"] == "invalid_token"

    @pytest.mark.asyncio
    async def test_non_bearer_scheme(self, client: AsyncClient):
        response = await client.get(
            "/api/v1/auth/me",
            headers={"Authorization": "Basic YWxpY2U6cHc="},
        )

        assert response.status_code == 401


@pytest.mark.integration
class TestProvidersEndpoint:

    @pytest.mark.asyncio
    async def test_list_providers(self, client: AsyncClient):
        response = await client.get("/api/v1/auth/providers")

        assert response.status_code == 200
        data = response.json()
        assert data["fallback_chain_enabled"] is True
        assert data["providers"] == [
            {"name": "Local", "display_name": "Local", "type": "local", "requires_credentials": True}
        ]


@pytest.mark.integration
class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient, test_settings):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == test_settings.service_name
        assert response.json()["database"] == "connected"


@pytest.mark.integration
class TestCreateUserEndpoint:
    """Test POST /api/v1/auth/users endpoint."""

    @pytest.mark.asyncio
    async def test_admin_creates_local_user(self, client: AsyncClient, admin_token: str):
        response = await client.post(
            "/api/v1/auth/users",
            json={"username": "dana", "password": "Welcome123", "role": "operator"},
            headers={"Authorization": f"Bearer {admin_token}"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["username"] == "dana"
        assert data["role"] == "operator"
        assert data["auth_provider"] == "Local"
        assert data["require_password_change"] is True

        login = await client.post(
            "/api/v1/auth/login",
            json={"username": "dana", "password": "Welcome123"},
        )
        assert login.status_code == 200
        assert login.json()["user"]["require_password_change"] is True

    @pytest.mark.asyncio
    async def test_duplicate_username(self, client: AsyncClient, admin_token: str, alice):
        response = await client.post(
            "/api/v1/auth/users",
            json={"username": "alice", "password": "Welcome123"},
            headers={"Authorization": f"Bearer {admin_token}"},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "user_exists"

    @pytest.mark.asyncio
    async def test_invalid_role(self, client: AsyncClient, admin_token: str):
        response = await client.post(
            "/api/v1/auth/users",
            json={"username": "erin", "password": "Welcome123", "role": "superuser"},
            headers={"Authorization": f"Bearer {admin_token}"},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_operator_forbidden(self, client: AsyncClient, alice):
        token = await login_alice(client)

        response = await client.post(
            "/api/v1/auth/users",
            json={"username": "erin", "password": "Welcome123"},
            headers={"Authorization": f"Bearer {token}"},
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_requires_token(self, client: AsyncClient):
        response = await client.post(
            "/api/v1/auth/users",
            json={"username": "erin", "password": "Welcome123"},
        )

        assert response.status_code == 401


@pytest.mark.integration
class TestBootstrapAdminStartup:
    """A fresh database gets its configured admins at application startup."""

    @pytest.mark.asyncio
    async def test_bootstrap_admin_can_create_users(self, test_settings):
        from ems_auth.main import create_app

        settings = test_settings.model_copy(
            update={
                "db_create_tables": True,
                "bootstrap_admins": [
                    BootstrapAdmin(username="root", auth_provider="Local", password="Adm1nPass!")
                ],
            }
        )
        app = create_app(settings)

        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                login = await client.post(
                    "/api/v1/auth/login",
                    json={"username": "root", "password": "Adm1nPass!"},
                )
                assert login.status_code == 200
                assert login.json()["user"]["role"] == "admin"

                response = await client.post(
                    "/api/v1/auth/users",
                    json={"username": "dana", "password": "Welcome123", "role": "operator"},
                    headers={"Authorization": f"Bearer {login.json()['token']}"},
                )

        assert response.status_code == 201
        assert response.json()["username"] == "dana"
