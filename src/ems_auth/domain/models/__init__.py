"""Domain models for the EMS Auth Service"""

from ems_auth.domain.models.api_auth import (
    CreateUserRequest,
    LoginRequest,
    LoginResponse,
    ProviderInfo,
    ProvidersResponse,
    TokenClaimsResponse,
    UserProfile,
    ValidateResponse,
)
from ems_auth.domain.models.auth import (
    AuditEvent,
    AuthResult,
    LoginResult,
    RiskLevel,
    Role,
    TokenClaims,
    utc_now,
)

__all__ = [
    # Auth models
    "AuthResult",
    "TokenClaims",
    "LoginResult",
    "AuditEvent",
    "RiskLevel",
    "Role",
    "utc_now",
    # API models
    "CreateUserRequest",
    "LoginRequest",
    "LoginResponse",
    "UserProfile",
    "TokenClaimsResponse",
    "ValidateResponse",
    "ProviderInfo",
    "ProvidersResponse",
]
