"""JWT Token Manager (HS256)

Issues and validates the bearer token presented on every API call.

Token Format:
    base64url(header).base64url(payload).base64url(HMAC-SHA256(header.payload))

    {
        "sub": "alice",        # Subject (username)
        "userId": 42,          # Numeric user ID
        "role": "operator",    # User role
        "iat": 1700000000,     # Issued at
        "exp": 1700028800      # Expires at
    }

There is no server-side session store: the token is the only state, and a
valid signature plus an unexpired ``exp`` is all validation checks.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import jwt

from ems_auth.domain.models.auth import TokenClaims

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"


@dataclass
class JWTTokenResult:
    """Result of JWT token creation"""

    access_token: str
    token_type: str = "bearer"
    expires_in: int = 28800  # 8 hours in seconds
    expires_at: Optional[int] = None


@dataclass
class JWTValidationResult:
    """Result of JWT token validation"""

    valid: bool
    claims: Optional[TokenClaims] = None
    error: Optional[str] = None

    @property
    def username(self) -> Optional[str]:
        return self.claims.sub if self.claims else None

    @property
    def user_id(self) -> Optional[int]:
        return self.claims.user_id if self.claims else None

    @property
    def role(self) -> Optional[str]:
        return self.claims.role if self.claims else None


class JWTManager:
    """Manages HS256 bearer tokens

    The signing secret is process-wide and read-only after construction.
    ``clock`` returns the current Unix time and exists so tests can pin it.
    """

    def __init__(
        self,
        secret_key: str,
        access_token_expire_minutes: int = 480,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize JWT manager

        Args:
            secret_key: HMAC signing secret
            access_token_expire_minutes: Default token lifetime in minutes
            clock: Source of the current Unix time

        Raises:
            ValueError: If the secret is empty
        """
        if not secret_key:
            raise ValueError("JWT secret key must not be empty")

        self._secret_key = secret_key
        self.access_token_expire_minutes = access_token_expire_minutes
        self._clock = clock

    def create_access_token(
        self,
        username: str,
        user_id: int,
        role: str,
        ttl_minutes: Optional[int] = None,
    ) -> JWTTokenResult:
        """Create a signed access token

        Args:
            username: Subject of the token
            user_id: Numeric user ID
            role: User role
            ttl_minutes: Lifetime in minutes (defaults to the configured TTL)

        Returns:
            JWTTokenResult with the encoded token and its lifetime
        """
        if ttl_minutes is None:
            ttl_minutes = self.access_token_expire_minutes

        issued_at = int(self._clock())
        claims = TokenClaims(
            sub=username,
            user_id=int(user_id),
            role=role,
            iat=issued_at,
            exp=issued_at + ttl_minutes * 60,
        )

        access_token = jwt.encode(claims.to_payload(), self._secret_key, algorithm=ALGORITHM)
        logger.info(f"Created access token for user {username} (user_id={user_id}, exp={claims.exp})")

        return JWTTokenResult(
            access_token=access_token,
            token_type="bearer",
            expires_in=ttl_minutes * 60,
            expires_at=claims.exp,
        )

    def validate_token(self, token: str) -> JWTValidationResult:
        """Validate an access token

        Checks structure, signature and expiry (a token is expired once the
        current time reaches ``exp``). Never raises.

        Args:
            token: Encoded token string

        Returns:
            JWTValidationResult with validation status and claims
        """
        if not token or token.count(".") != 2:
            logger.warning("Rejected token: malformed structure")
            return JWTValidationResult(valid=False, error="malformed")

        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                options={
                    "verify_signature": True,
                    "verify_exp": False,  # checked below against self._clock
                    "verify_iat": False,
                    "require": ["sub", "exp"],
                },
            )
            claims = TokenClaims.from_payload(payload)

        except jwt.InvalidSignatureError:
            logger.warning("Rejected token: invalid signature")
            return JWTValidationResult(valid=False, error="invalid_signature")

        except jwt.InvalidTokenError as e:
            logger.warning(f"Rejected token: {e}")
            return JWTValidationResult(valid=False, error="decode_error")

        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Rejected token: bad claims ({e})")
            return JWTValidationResult(valid=False, error="invalid_claims")

        if self._clock() >= claims.exp:
            logger.info(f"Rejected token for user {claims.sub}: expired")
            return JWTValidationResult(valid=False, error="token_expired")

        return JWTValidationResult(valid=True, claims=claims)
