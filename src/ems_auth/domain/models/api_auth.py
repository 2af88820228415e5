"""Authentication API Models

Purpose: Request/response models for authentication endpoints

Key Components:
- LoginRequest: Username/password login with optional provider
- CreateUserRequest: Administrative creation of a Local user
- LoginResponse: Token plus the user profile
- UserProfile: Public user information for API responses
- ValidateResponse / TokenClaimsResponse: Token validation output
- ProviderInfo / ProvidersResponse: Enabled providers for the login page
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ems_auth.domain.models.auth import Role


class LoginRequest(BaseModel):
    """Request model for login"""

    username: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Username (DOMAIN\\user or user@domain accepted for directory logins)",
        examples=["alice"],
    )
    password: str = Field(..., min_length=1, description="Password")
    provider: Optional[str] = Field(
        None,
        description="Optional provider name; all enabled providers are tried when omitted",
        examples=["ActiveDirectory"],
    )

    @field_validator("username")
    @classmethod
    def strip_username(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Username must not be blank")
        return v


class CreateUserRequest(BaseModel):
    """Request model for creating a Local user"""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=8, description="Initial password")
    role: Role = Role.VIEWER
    display_name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    require_password_change: bool = True

    @field_validator("username")
    @classmethod
    def strip_username(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Username must not be blank")
        return v


class UserProfile(BaseModel):
    """User profile information"""

    user_id: int
    username: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    role: str
    auth_provider: str
    require_password_change: bool = False

    @classmethod
    def from_user(cls, user) -> "UserProfile":
        return cls(
            user_id=user.user_id,
            username=user.username,
            display_name=user.display_name,
            email=user.email,
            role=user.role,
            auth_provider=user.auth_provider,
            require_password_change=user.require_password_change,
        )


class LoginResponse(BaseModel):
    """Successful login response"""

    success: bool = True
    token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    provider: str
    user: UserProfile


class TokenClaimsResponse(BaseModel):
    """Claims carried by a valid token"""

    username: str
    user_id: int
    role: str
    issued_at: int
    expires_at: int


class ValidateResponse(BaseModel):
    """Token validation response"""

    valid: bool
    claims: Optional[TokenClaimsResponse] = None


class ProviderInfo(BaseModel):
    """Authentication provider shown on the login page"""

    name: str
    display_name: str
    type: str
    requires_credentials: bool


class ProvidersResponse(BaseModel):
    """Enabled authentication providers in priority order"""

    providers: list[ProviderInfo]
    fallback_chain_enabled: bool

