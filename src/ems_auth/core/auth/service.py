"""Authentication service.

Login flow: orchestrator -> reconciler -> token manager, with one audit
event per attempt. Callers only ever see a generic failure; the audit trail
carries the per-provider detail.
"""

import asyncio
import logging
from dataclasses import asdict
from typing import Optional

from .orchestrator import AuthOrchestrator, ProviderAttempt
from .reconciler import IdentityReconciler, ReconciliationError
from ems_auth.config.settings import BootstrapAdmin
from ems_auth.domain.models.auth import AuditEvent, AuthResult, LoginResult, RiskLevel, Role
from ems_auth.infrastructure.audit import AuditSink
from ems_auth.infrastructure.auth.jwt_manager import JWTManager, JWTValidationResult
from ems_auth.infrastructure.auth.password import DEFAULT_ROUNDS, hash_password
from ems_auth.infrastructure.auth.user_store import UserAlreadyExistsError, UserStore
from ems_auth.infrastructure.database.models import User

logger = logging.getLogger(__name__)

LOGIN_ACTION = "Login"


class AuthService:
    """Entry point for login, token validation and local account administration."""

    def __init__(
        self,
        orchestrator: AuthOrchestrator,
        reconciler: IdentityReconciler,
        jwt_manager: JWTManager,
        user_store: UserStore,
        audit_sink: AuditSink,
        local_provider_name: Optional[str] = "Local",
        hash_rounds: int = DEFAULT_ROUNDS,
    ):
        self.orchestrator = orchestrator
        self.reconciler = reconciler
        self.jwt_manager = jwt_manager
        self.user_store = user_store
        self.audit_sink = audit_sink
        self.local_provider_name = local_provider_name
        self.hash_rounds = hash_rounds

    async def login(
        self,
        username: str,
        password: str,
        provider: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> LoginResult:
        """Authenticate a user and issue a bearer token.

        Args:
            username: Username as typed
            password: Password
            provider: Optional provider name to restrict the attempt to
            ip_address: Client address for the audit trail
            user_agent: Client user agent for the audit trail

        Returns:
            LoginResult with the token on success, a generic error otherwise

        Raises:
            ReconciliationError: If the user store failed after a successful
                provider verification
        """
        username = (username or "").strip()
        audit = {"ip_address": ip_address, "user_agent": user_agent}

        if not username or not password:
            await self._audit(username or None, "Failed", RiskLevel.MEDIUM, {"reason": "missing credentials"}, **audit)
            return LoginResult(success=False, error=LoginResult.INVALID_CREDENTIALS)

        attempts: list[ProviderAttempt] = []
        result = await self.orchestrator.authenticate(username, password, provider, attempts=attempts)
        details = {
            "requested_provider": provider,
            "attempts": [asdict(a) for a in attempts],
        }

        if not result.success:
            return await self._login_failed(username, result, details, audit)

        try:
            user = await self.reconciler.reconcile(result)
        except ReconciliationError as e:
            details["reason"] = str(e)
            await self._audit(username, "Error", RiskLevel.HIGH, details, provider=result.provider, **audit)
            raise

        if not user.is_active:
            logger.warning(f"Login failed: User inactive (username: {user.username}, provider: {result.provider})")
            details["reason"] = "account inactive"
            await self._audit(user.username, "Failed", RiskLevel.MEDIUM, details, user_id=user.user_id, **audit)
            return LoginResult(success=False, error=LoginResult.INVALID_CREDENTIALS)

        if user.failed_login_attempts:
            await self.user_store.reset_failed_logins(user.user_id)

        token = self.jwt_manager.create_access_token(user.username, user.user_id, user.role)
        await self._audit(
            user.username, "Success", RiskLevel.LOW, details,
            user_id=user.user_id, provider=result.provider, **audit
        )

        return LoginResult(
            success=True,
            token=token.access_token,
            expires_in=token.expires_in,
            provider=result.provider,
            user=user,
        )

    def validate_token(self, token: str) -> JWTValidationResult:
        """Validate a bearer token (signature and expiry only, no database lookup)."""
        return self.jwt_manager.validate_token(token)

    async def create_local_user(
        self,
        username: str,
        password: str,
        role: str = Role.VIEWER.value,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        require_password_change: bool = False,
    ) -> User:
        """Create a Local user (administrative operation).

        Raises:
            ValueError: If input is invalid or no Local provider is configured
            UserAlreadyExistsError: If the username is taken
        """
        if not self.local_provider_name:
            raise ValueError("No local provider is configured")

        username = (username or "").strip()
        if not username:
            raise ValueError("Username is required")
        if not password:
            raise ValueError("Password is required")
        role = Role(role).value

        password_hash = await asyncio.to_thread(hash_password, password, self.hash_rounds)
        user = await self.user_store.insert_user(
            username=username,
            auth_provider=self.local_provider_name,
            role=role,
            display_name=display_name or username,
            email=email,
            password_hash=password_hash,
            require_password_change=require_password_change,
        )
        await self.audit_sink.record(
            AuditEvent(
                action="UserCreated",
                username=username,
                user_id=user.user_id,
                result="Success",
                risk_level=RiskLevel.MEDIUM,
                details={"provider": self.local_provider_name, "role": role},
            )
        )
        return user

    async def seed_admins(self, admins: list[BootstrapAdmin]) -> list[User]:
        """Insert the configured administrator accounts that do not exist yet.

        Existing usernames are left untouched, whatever their role. Directory
        and federation admins get no password; their provider authenticates
        them and reconciliation keeps the admin role. Local admins get the
        configured password and must change it.

        Returns:
            The users created by this call

        Raises:
            ValueError: If an admin names an unknown provider
        """
        created = []
        for admin in admins:
            if await self.user_store.find_by_username(admin.username) is not None:
                logger.debug(f"Bootstrap admin {admin.username} already exists")
                continue

            provider = self.orchestrator.providers.get(admin.auth_provider)
            if provider is None:
                raise ValueError(
                    f"Unknown provider '{admin.auth_provider}' for bootstrap admin {admin.username}"
                )

            password_hash = None
            if provider.config.type == "local":
                if not admin.password:
                    raise ValueError(f"Bootstrap admin {admin.username} needs a password")
                password_hash = await asyncio.to_thread(hash_password, admin.password, self.hash_rounds)

            try:
                user = await self.user_store.insert_user(
                    username=admin.username,
                    auth_provider=admin.auth_provider,
                    role=Role.ADMIN.value,
                    display_name=admin.display_name or admin.username,
                    password_hash=password_hash,
                    domain=admin.domain,
                    require_password_change=password_hash is not None,
                )
            except UserAlreadyExistsError:
                logger.debug(f"Bootstrap admin {admin.username} created concurrently")
                continue

            logger.info(f"Created bootstrap admin {admin.username} ({admin.auth_provider})")
            await self.audit_sink.record(
                AuditEvent(
                    action="UserCreated",
                    username=admin.username,
                    user_id=user.user_id,
                    result="Success",
                    risk_level=RiskLevel.HIGH,
                    details={"provider": admin.auth_provider, "role": Role.ADMIN.value, "bootstrap": True},
                )
            )
            created.append(user)
        return created

    def list_providers(self) -> list[dict]:
        """Enabled providers in priority order, as shown on the login page."""
        return [
            {
                "name": p.name,
                "display_name": p.config.label,
                "type": p.config.type,
                "requires_credentials": p.requires_credentials,
            }
            for p in self.orchestrator.enabled_providers()
        ]

    async def _login_failed(
        self, username: str, result: AuthResult, details: dict, audit: dict
    ) -> LoginResult:
        details["reason"] = result.error
        if result.locked:
            risk = RiskLevel.HIGH
            details["account_locked"] = True
        elif result.provider_error:
            risk = RiskLevel.HIGH
        else:
            risk = RiskLevel.MEDIUM

        await self._audit(username, "Failed", risk, details, provider=result.provider, **audit)

        error = LoginResult.PROVIDER_UNAVAILABLE if result.provider_error else LoginResult.INVALID_CREDENTIALS
        return LoginResult(success=False, error=error)

    async def _audit(
        self,
        username: Optional[str],
        outcome: str,
        risk: RiskLevel,
        details: dict,
        user_id: Optional[int] = None,
        provider: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        if provider:
            details = {**details, "provider": provider}
        await self.audit_sink.record(
            AuditEvent(
                action=LOGIN_ACTION,
                username=username,
                user_id=user_id,
                result=outcome,
                risk_level=risk,
                ip_address=ip_address,
                user_agent=user_agent,
                details=details,
            )
        )
