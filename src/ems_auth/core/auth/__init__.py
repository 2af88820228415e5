"""Authentication provider abstraction layer.

Supports multiple authentication backends tried in priority order:
- local: Username/password stored in the users table
- directory: Active Directory bind
- ldap: LDAP simple bind with a configurable DN template
- federation: ADFS WS-Trust username/password exchange
- sso: Browser SSO (listed, never used for password logins)
"""

from .provider import AuthProvider, ProviderError
from .factory import build_provider_registry, create_auth_service
from .orchestrator import AuthOrchestrator
from .reconciler import IdentityReconciler, ReconciliationError
from .service import AuthService

__all__ = [
    "AuthProvider",
    "ProviderError",
    "AuthOrchestrator",
    "IdentityReconciler",
    "ReconciliationError",
    "AuthService",
    "build_provider_registry",
    "create_auth_service",
]
