"""Local authentication provider (username/password stored in the users table).

Default provider for standalone deployments. Local users are created by an
administrator and are the only users that carry a password hash.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from .provider import AuthProvider, ProviderError
from ems_auth.config.settings import ProviderConfig
from ems_auth.domain.models.auth import AuthResult, utc_now
from ems_auth.infrastructure.auth.password import DEFAULT_ROUNDS, hash_password, verify_password
from ems_auth.infrastructure.auth.user_store import UserStore

logger = logging.getLogger(__name__)


class LocalAuthProvider(AuthProvider):
    """Local username/password authentication.

    Features:
    - Salted slow password hashing (see infrastructure.auth.password)
    - Failed-login counter incremented atomically on every wrong password
    - Account lockout after ``max_failed_logins`` consecutive failures

    Configuration:
        {"name": "Local", "type": "local", "priority": 1}
    """

    def __init__(
        self,
        config: ProviderConfig,
        user_store: UserStore,
        max_failed_logins: int = 5,
        lockout_minutes: int = 30,
        hash_rounds: int = DEFAULT_ROUNDS,
    ):
        """Initialize local auth provider.

        Args:
            config: Provider configuration
            user_store: User store holding the local accounts
            max_failed_logins: Failures before the account is locked (0 disables lockout)
            lockout_minutes: Lock duration in minutes
            hash_rounds: Work factor the stored hashes were created with
        """
        super().__init__(config)
        self.user_store = user_store
        self.max_failed_logins = max_failed_logins
        self.lockout = timedelta(minutes=lockout_minutes)
        self.hash_rounds = hash_rounds
        self._dummy_hash: Optional[str] = None

    async def _verify(self, username: str, secret: str) -> AuthResult:
        try:
            return await self._verify_against_store(username, secret)
        except SQLAlchemyError as e:
            raise ProviderError(f"User store unavailable: {e}") from e

    async def _verify_dummy(self, secret: str) -> None:
        """Run one hash verification for a username with no local password.

        Unknown and known usernames take the same time to reject.
        """
        if self._dummy_hash is None:
            self._dummy_hash = await asyncio.to_thread(
                hash_password, uuid.uuid4().hex, self.hash_rounds
            )
        await asyncio.to_thread(verify_password, secret, self._dummy_hash, self.hash_rounds)

    async def _verify_against_store(self, username: str, secret: str) -> AuthResult:
        user = await self.user_store.find_by_username(username)
        if not user or user.auth_provider != self.name or not user.password_hash:
            await self._verify_dummy(secret)
            logger.warning(f"Login failed: User not found (username: {username}, provider: {self.name})")
            return self._failure("User not found", username)

        if not user.is_active:
            logger.warning(f"Login failed: User inactive (username: {username})")
            return self._failure("User account is inactive", username)

        if user.account_locked_until is not None:
            if user.is_locked():
                logger.warning(f"Login failed: User locked (username: {username})")
                return self._failure("User account is locked", username)
            await self.user_store.unlock_account(user.user_id)
            logger.info(f"Lock expired for user {username}, account unlocked")

        matches = await asyncio.to_thread(
            verify_password, secret, user.password_hash, self.hash_rounds
        )
        if not matches:
            attempts = await self.user_store.increment_failed_logins(user.user_id)
            logger.warning(f"Login failed: Invalid password (username: {username}, attempts: {attempts})")

            locked = False
            if self.max_failed_logins and attempts >= self.max_failed_logins:
                await self.user_store.lock_account(user.user_id, utc_now() + self.lockout)
                locked = True

            return AuthResult.failed(self.name, "Invalid password", username=username, locked=locked)

        logger.info(f"User authenticated successfully: {username} ({user.user_id})")

        return AuthResult(
            success=True,
            username=user.username,
            provider=self.name,
            external_id=user.external_id or str(user.user_id),
            display_name=user.display_name or user.username,
            email=user.email,
        )
