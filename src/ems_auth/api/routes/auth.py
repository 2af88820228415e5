"""Authentication Routes

Key Endpoints:
- POST /api/v1/auth/login: Username/password login across the provider chain
- GET /api/v1/auth/validate: Bearer token validation
- GET /api/v1/auth/me: Claims of the current token
- GET /api/v1/auth/providers: Enabled providers for the login page
- POST /api/v1/auth/users: Create a Local user (admin only)
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ems_auth.api.deps import get_auth_service, get_current_claims, require_role
from ems_auth.core.auth.reconciler import ReconciliationError
from ems_auth.core.auth.service import AuthService
from ems_auth.domain.models import (
    CreateUserRequest,
    LoginRequest,
    LoginResponse,
    ProviderInfo,
    ProvidersResponse,
    TokenClaimsResponse,
    UserProfile,
    ValidateResponse,
)
from ems_auth.domain.models.auth import TokenClaims
from ems_auth.infrastructure.auth.user_store import UserAlreadyExistsError

router = APIRouter(prefix="/api/v1/auth", tags=["authentication"])
logger = logging.getLogger(__name__)


def _claims_response(claims: TokenClaims) -> TokenClaimsResponse:
    return TokenClaimsResponse(
        username=claims.sub,
        user_id=claims.user_id,
        role=claims.role,
        issued_at=claims.iat,
        expires_at=claims.exp,
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    login_data: LoginRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service),
):
    """
    Authenticate a user and return a bearer token.

    Every failure answers with the same 401 body, whatever the cause.

    Raises:
        HTTPException: 401 if authentication failed, 503 if the backends
            could not be reached, 500 if the user store failed
    """
    try:
        result = await service.login(
            login_data.username,
            login_data.password,
            provider=login_data.provider,
            ip_address=request.client.host if request.client else None,
            user_agent=request.headers.get("user-agent"),
        )
    except ReconciliationError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "internal_error", "message": "Login could not be completed"},
        )

    if not result.success:
        if result.error == result.PROVIDER_UNAVAILABLE:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail={"error": "provider_unavailable", "message": result.error},
            )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "authentication_failed", "message": result.error},
            headers={"WWW-Authenticate": "Bearer"},
        )

    return LoginResponse(
        token=result.token,
        expires_in=result.expires_in,
        provider=result.provider,
        user=UserProfile.from_user(result.user),
    )


@router.get("/validate", response_model=ValidateResponse)
async def validate(claims: TokenClaims = Depends(get_current_claims)):
    """Validate the presented bearer token."""
    return ValidateResponse(valid=True, claims=_claims_response(claims))


@router.get("/me", response_model=TokenClaimsResponse)
async def me(claims: TokenClaims = Depends(get_current_claims)):
    """Claims of the current token (no database lookup)."""
    return _claims_response(claims)


@router.get("/providers", response_model=ProvidersResponse)
async def providers(service: AuthService = Depends(get_auth_service)):
    """Enabled authentication providers in priority order."""
    return ProvidersResponse(
        providers=[ProviderInfo(**p) for p in service.list_providers()],
        fallback_chain_enabled=service.orchestrator.fallback_chain_enabled,
    )


@router.post("/users", response_model=UserProfile, status_code=status.HTTP_201_CREATED)
async def create_local_user(
    user: CreateUserRequest,
    service: AuthService = Depends(get_auth_service),
    admin: TokenClaims = Depends(require_role("admin")),
):
    """
    Create a Local user.

    Requires a token with the admin role.

    Raises:
        HTTPException: 409 if the username exists, 400 if no Local provider
            is configured
    """
    try:
        created = await service.create_local_user(
            user.username,
            user.password,
            role=user.role.value,
            display_name=user.display_name,
            email=user.email,
            require_password_change=user.require_password_change,
        )
    except UserAlreadyExistsError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": "user_exists", "message": f"Username '{user.username}' already exists"},
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "invalid_request", "message": str(e)},
        )

    logger.info(f"Local user {created.username} created by {admin.sub}")
    return UserProfile.from_user(created)
