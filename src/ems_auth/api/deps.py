"""FastAPI dependencies for the auth routes."""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from ems_auth.core.auth.service import AuthService
from ems_auth.domain.models.auth import TokenClaims


def get_auth_service(request: Request) -> AuthService:
    """Auth service built during application start-up"""
    return request.app.state.auth_service


async def extract_bearer_token(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Optional[str]:
    """Extract Bearer token from Authorization header"""
    if not authorization:
        return None

    if not authorization.startswith("Bearer "):
        return None

    token = authorization[7:].strip()  # Remove "Bearer " prefix
    return token or None


def _unauthorized(error: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"error": error, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_claims(
    token: Optional[str] = Depends(extract_bearer_token),
    service: AuthService = Depends(get_auth_service),
) -> TokenClaims:
    """Claims of the presented bearer token (required)

    Raises 401 without detail if the token is missing, malformed, expired
    or carries a bad signature.
    """
    if not token:
        raise _unauthorized("authentication_required", "Authentication required")

    result = service.validate_token(token)
    if not result.valid:
        raise _unauthorized("invalid_token", "Invalid or expired token")

    return result.claims


def require_role(*roles: str):
    """
    Dependency factory for role-based authorization.

    Usage:
        @router.post("/users", dependencies=[Depends(require_role("admin"))])

    Returns:
        FastAPI dependency returning the caller's claims; raises 403 if the
        token's role is not one of ``roles``
    """

    async def role_checker(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"error": "forbidden", "message": "Insufficient role"},
            )
        return claims

    return role_checker
