"""Fallback orchestrator.

Tries the enabled providers in ascending priority order (or only the one
the caller asked for) and stops at the first success.

States: each candidate is tried in turn; the two terminal states are
Success (first provider that accepts the credentials) and Exhausted (no
candidate left). A provider error ends the chain early unless the fallback
chain is enabled.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from .provider import AuthProvider
from ems_auth.domain.models.auth import AuthResult

logger = logging.getLogger(__name__)

EXHAUSTED_ERROR = "Authentication failed"
PROVIDER_NOT_AVAILABLE_ERROR = "Provider not found or not enabled"


@dataclass
class ProviderAttempt:
    """One provider trial, kept for the audit trail."""
    provider: str
    success: bool
    error: Optional[str] = None
    provider_error: bool = False
    locked: bool = False


class AuthOrchestrator:
    """Drives the provider adapters for one authentication call.

    Args:
        providers: Provider lookup table keyed by name
        fallback_chain_enabled: Continue with the next provider after a provider error
        default_timeout: Upper bound for one provider call, seconds
        timeouts: Optional per-provider timeout overrides
    """

    def __init__(
        self,
        providers: dict[str, AuthProvider],
        fallback_chain_enabled: bool = True,
        default_timeout: float = 10.0,
        timeouts: Optional[dict[str, float]] = None,
    ):
        self.providers = providers
        self.fallback_chain_enabled = fallback_chain_enabled
        self.default_timeout = default_timeout
        self.timeouts = timeouts or {}

    def enabled_providers(self) -> list[AuthProvider]:
        """Enabled providers sorted by ascending priority (stable on ties)."""
        enabled = [p for p in self.providers.values() if p.config.enabled]
        return sorted(enabled, key=lambda p: p.config.priority)

    def candidates(self, requested_provider: Optional[str] = None) -> Optional[list[AuthProvider]]:
        """Build the candidate list.

        Returns:
            Ordered providers to try, or None if the requested provider is
            unknown or disabled
        """
        if requested_provider:
            provider = self.providers.get(requested_provider)
            if provider is None or not provider.config.enabled:
                return None
            return [provider]
        return self.enabled_providers()

    async def authenticate(
        self,
        username: str,
        secret: str,
        requested_provider: Optional[str] = None,
        attempts: Optional[list[ProviderAttempt]] = None,
    ) -> AuthResult:
        """Authenticate against the provider chain.

        Args:
            username: Username as typed by the user
            secret: Password
            requested_provider: Restrict the attempt to this provider
            attempts: If given, every provider trial is appended to it

        Returns:
            The first successful provider result, the failing provider's
            result when the chain stops on a provider error, or a generic
            failure naming no provider once all candidates are exhausted
        """
        if attempts is None:
            attempts = []

        candidates = self.candidates(requested_provider)
        if candidates is None:
            logger.warning(f"Login for {username} requested unavailable provider {requested_provider}")
            return AuthResult.failed(requested_provider, PROVIDER_NOT_AVAILABLE_ERROR, username=username)

        for provider in candidates:
            if not provider.requires_credentials:
                logger.debug(f"Skipping non-password provider {provider.name}")
                continue

            result = await self._attempt(provider, username, secret)
            attempts.append(
                ProviderAttempt(
                    provider=provider.name,
                    success=result.success,
                    error=result.error,
                    provider_error=result.provider_error,
                    locked=result.locked,
                )
            )

            if result.success:
                logger.info(f"User {username} authenticated via {provider.name}")
                return result

            if result.provider_error and not self.fallback_chain_enabled:
                logger.warning(
                    f"Provider {provider.name} failed for {username} and fallback chain is disabled"
                )
                return result

        logger.info(f"Authentication failed for {username} after {len(attempts)} provider attempt(s)")
        return AuthResult.failed(
            None,
            EXHAUSTED_ERROR,
            username=username,
            provider_error=bool(attempts) and attempts[-1].provider_error,
            locked=any(a.locked for a in attempts),
        )

    async def _attempt(self, provider: AuthProvider, username: str, secret: str) -> AuthResult:
        timeout = self.timeouts.get(provider.name, self.default_timeout)
        try:
            return await asyncio.wait_for(provider.verify(username, secret), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Provider {provider.name} timed out after {timeout}s for {username}")
            return AuthResult.failed(
                provider.name, f"Timed out after {timeout}s", provider_error=True, username=username
            )
