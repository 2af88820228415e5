"""Authentication provider factory.

Builds the provider lookup table, keyed by provider name, once at
configuration-load time. Each provider type maps to one adapter class; adding
a provider type means adding an entry here.
"""

import logging

from .directory import DirectoryAuthProvider
from .federation import FederationAuthProvider
from .ldap import LDAPAuthProvider
from .local import LocalAuthProvider
from .provider import AuthProvider, SSOAuthProvider
from ems_auth.config.settings import ProviderConfig, Settings
from ems_auth.infrastructure.auth.user_store import UserStore

logger = logging.getLogger(__name__)


def create_provider(config: ProviderConfig, settings: Settings, user_store: UserStore) -> AuthProvider:
    """Instantiate the adapter for one provider configuration.

    Raises:
        ValueError: If the provider type is unknown
    """
    timeout = settings.timeout_for(config)

    if config.type == "local":
        return LocalAuthProvider(
            config,
            user_store,
            max_failed_logins=settings.max_failed_logins,
            lockout_minutes=settings.lockout_minutes,
            hash_rounds=settings.password_hash_rounds,
        )
    if config.type == "directory":
        return DirectoryAuthProvider(config, timeout=timeout)
    if config.type == "ldap":
        return LDAPAuthProvider(config, timeout=timeout)
    if config.type == "federation":
        return FederationAuthProvider(config, timeout=timeout)
    if config.type == "sso":
        return SSOAuthProvider(config)

    raise ValueError(
        f"Unknown provider type: {config.type}. "
        f"Valid options: local, directory, ldap, federation, sso"
    )


def build_provider_registry(settings: Settings, user_store: UserStore) -> dict[str, AuthProvider]:
    """Build the provider lookup table for all configured providers.

    Disabled providers are included so that ``list`` and explicit requests
    can report them; the orchestrator filters on ``enabled``.

    Returns:
        Mapping of provider name to adapter instance
    """
    registry = {
        config.name: create_provider(config, settings, user_store)
        for config in settings.auth_providers
    }
    logger.info(
        "Auth providers initialized: "
        + ", ".join(
            f"{p.name}({p.config.type}, priority={p.config.priority}, enabled={p.config.enabled})"
            for p in registry.values()
        )
    )
    return registry


def create_auth_service(
    settings: Settings,
    session_factory,
    audit_sink=None,
    jwt_manager=None,
):
    """Wire the authentication service from settings.

    Args:
        settings: Application settings
        session_factory: Async session factory for the service database
        audit_sink: Audit sink (defaults to the audit_logs table)
        jwt_manager: Token manager (defaults to one built from settings)

    Returns:
        AuthService instance
    """
    from .orchestrator import AuthOrchestrator
    from .reconciler import IdentityReconciler
    from .service import AuthService
    from ems_auth.config.settings import DEV_SECRET_KEY
    from ems_auth.infrastructure.audit import DatabaseAuditSink
    from ems_auth.infrastructure.auth.jwt_manager import JWTManager

    user_store = UserStore(session_factory)
    providers = build_provider_registry(settings, user_store)

    if jwt_manager is None:
        if settings.jwt_secret_key == DEV_SECRET_KEY:
            logger.warning(
                "Using default JWT_SECRET_KEY! "
                "Set JWT_SECRET_KEY environment variable in production!"
            )
        jwt_manager = JWTManager(
            secret_key=settings.jwt_secret_key,
            access_token_expire_minutes=settings.access_token_expire_minutes,
        )

    orchestrator = AuthOrchestrator(
        providers,
        fallback_chain_enabled=settings.fallback_chain_enabled,
        default_timeout=settings.provider_timeout_seconds,
        timeouts={c.name: settings.timeout_for(c) for c in settings.auth_providers},
    )
    local_provider = next((c.name for c in settings.auth_providers if c.type == "local"), None)

    return AuthService(
        orchestrator=orchestrator,
        reconciler=IdentityReconciler(user_store, default_role=settings.default_role),
        jwt_manager=jwt_manager,
        user_store=user_store,
        audit_sink=audit_sink or DatabaseAuditSink(session_factory),
        local_provider_name=local_provider,
        hash_rounds=settings.password_hash_rounds,
    )
