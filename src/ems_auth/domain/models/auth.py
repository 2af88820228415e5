"""Authentication Data Models

Purpose: Define data structures exchanged between the authentication components

Key Components:
- Role: Account roles stored on the user record
- AuthResult: Outcome of one provider verification
- TokenClaims: Claims carried by the bearer token
- LoginResult: Outcome of a full login (orchestration + reconciliation + token)
- AuditEvent: Record handed to the audit sink for every login attempt
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """User roles"""
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"


class RiskLevel(str, Enum):
    """Coarse risk level attached to audit events"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class AuthResult(BaseModel):
    """Result returned by an authentication provider.

    Produced by a provider adapter and consumed immediately by the
    orchestrator and reconciler. Never persisted as-is.

    Attributes:
        success: Whether the credentials were accepted
        username: Resolved username
        provider: Name of the provider that produced this result
        external_id: Provider-native identifier (object GUID, bind DN, ...)
        display_name: Full name for UI
        email: User email address
        groups: Group memberships reported by the provider
        error: Failure reason (internal detail, never shown to callers)
        provider_error: True when the failure came from the backend itself
            (network, timeout, malformed response) rather than the credentials
        locked: True when this attempt left a local account locked
    """
    success: bool
    username: Optional[str] = None
    provider: Optional[str] = None
    external_id: Optional[str] = None
    display_name: Optional[str] = None
    email: Optional[str] = None
    groups: list[str] = Field(default_factory=list)
    error: Optional[str] = None
    provider_error: bool = False
    locked: bool = False

    @classmethod
    def failed(
        cls,
        provider: Optional[str],
        error: str,
        provider_error: bool = False,
        username: Optional[str] = None,
        locked: bool = False,
    ) -> "AuthResult":
        """Build a failure result"""
        return cls(
            success=False,
            provider=provider,
            username=username,
            error=error,
            provider_error=provider_error,
            locked=locked,
        )


@dataclass
class TokenClaims:
    """Claims embedded in a bearer token

    Attributes:
        sub: Username
        user_id: Numeric user ID (``userId`` on the wire)
        role: User role
        iat: Issued at (Unix seconds)
        exp: Expires at (Unix seconds)
    """
    sub: str
    user_id: int
    role: str
    iat: int
    exp: int

    def to_payload(self) -> dict:
        return {
            "sub": self.sub,
            "userId": self.user_id,
            "role": self.role,
            "iat": self.iat,
            "exp": self.exp,
        }

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims":
        """Build claims from a decoded payload

        Raises:
            KeyError, TypeError, ValueError: If a claim is missing or malformed
        """
        sub = payload["sub"]
        role = payload["role"]
        if not isinstance(sub, str) or not isinstance(role, str):
            raise TypeError("sub and role must be strings")
        return cls(
            sub=sub,
            user_id=int(payload["userId"]),
            role=role,
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
        )


@dataclass
class LoginResult:
    """Outcome of a login attempt

    On failure ``error`` is one of the generic messages below and never
    names the provider that rejected the credentials.
    """
    success: bool
    token: Optional[str] = None
    expires_in: Optional[int] = None
    provider: Optional[str] = None
    user: Optional[Any] = None
    error: Optional[str] = None

    INVALID_CREDENTIALS = "Authentication failed"
    PROVIDER_UNAVAILABLE = "Authentication service unavailable"


@dataclass
class AuditEvent:
    """Audit record for the write-only audit sink"""
    action: str
    username: Optional[str]
    result: str
    risk_level: RiskLevel = RiskLevel.LOW
    user_id: Optional[int] = None
    target: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    details: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)
