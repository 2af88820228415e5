"""Abstract authentication provider interface.

This module defines the contract that all authentication providers must implement.
Every provider exposes one capability, ``verify(username, secret)``, and is
total: backend failures come back as ``AuthResult(success=False,
provider_error=True)`` instead of exceptions, because the orchestrator's
fallback logic relies on providers never raising.
"""

import logging
from abc import ABC, abstractmethod

from ems_auth.config.settings import ProviderConfig
from ems_auth.domain.models.auth import AuthResult

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Backend failure (network, timeout, malformed response, bad configuration).

    Distinct from a credential failure: the backend could not give an answer.
    """
    pass


class AuthProvider(ABC):
    """Abstract interface for authentication providers.

    Instances are built once from configuration (see ``factory``) and looked
    up by provider name.

    Example:
        AUTH_PROVIDERS='[
            {"name": "Local", "type": "local", "priority": 1},
            {"name": "LDAP", "type": "ldap", "priority": 2,
             "server": "ldap.example.com", "base_dn": "ou=people,dc=example,dc=com"}
        ]'
    """

    def __init__(self, config: ProviderConfig):
        """Initialize provider.

        Args:
            config: Provider configuration
        """
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def requires_credentials(self) -> bool:
        """False for SSO-style providers that never take a password."""
        return self.config.requires_credentials

    async def verify(self, username: str, secret: str) -> AuthResult:
        """Verify a username/secret pair.

        Args:
            username: Username as typed by the user
            secret: Password

        Returns:
            AuthResult; never raises
        """
        try:
            return await self._verify(username, secret)
        except ProviderError as e:
            logger.warning(f"Provider {self.name} failed for {username}: {e}")
            return AuthResult.failed(self.name, str(e), provider_error=True, username=username)
        except Exception as e:
            logger.error(f"Unexpected error in provider {self.name} for {username}: {e}", exc_info=True)
            return AuthResult.failed(
                self.name, f"Unexpected provider failure: {e}", provider_error=True, username=username
            )

    @abstractmethod
    async def _verify(self, username: str, secret: str) -> AuthResult:
        """Provider-specific verification.

        May raise ProviderError (or anything else) on backend failure;
        ``verify`` converts it into a failed result.
        """
        pass

    def _failure(self, error: str, username: str = None) -> AuthResult:
        """Credential failure attributed to this provider."""
        return AuthResult.failed(self.name, error, username=username)


class SSOAuthProvider(AuthProvider):
    """Placeholder for browser-based SSO providers.

    SSO providers are listed for the login page but never take part in
    password authentication; the orchestrator skips them.
    """

    async def _verify(self, username: str, secret: str) -> AuthResult:
        return self._failure("SSO provider does not accept passwords", username)
