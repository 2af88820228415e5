"""Credential hashing for Local accounts.

Stored credentials keep the ``salt:digest`` shape: a fresh random salt per
call and a bcrypt-pbkdf digest over the secret and that salt, both
base64-encoded. bcrypt-pbkdf is slow by construction; ``rounds`` sets the
work factor.
"""

import base64
import hmac
import logging
import secrets

import bcrypt

logger = logging.getLogger(__name__)

SALT_BYTES = 16
DIGEST_BYTES = 32
DEFAULT_ROUNDS = 64


def _digest(secret: str, salt: bytes, rounds: int) -> bytes:
    return bcrypt.kdf(
        password=secret.encode("utf-8") + salt,
        salt=salt,
        desired_key_bytes=DIGEST_BYTES,
        rounds=rounds,
        ignore_few_rounds=True,
    )


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """
    Hash a password for storage.

    Args:
        password: Plain text password
        rounds: bcrypt-pbkdf work factor

    Returns:
        Stored credential in ``salt:digest`` form
    """
    salt = secrets.token_bytes(SALT_BYTES)
    digest = _digest(password, salt, rounds)
    return f"{base64.b64encode(salt).decode('ascii')}:{base64.b64encode(digest).decode('ascii')}"


def verify_password(password: str, stored: str, rounds: int = DEFAULT_ROUNDS) -> bool:
    """
    Verify a password against a stored credential.

    Args:
        password: Plain text password to verify
        stored: Stored credential produced by hash_password
        rounds: bcrypt-pbkdf work factor used when hashing

    Returns:
        True if password matches, False otherwise (including malformed input)
    """
    if not password or not stored or ":" not in stored:
        return False

    encoded_salt, encoded_digest = stored.split(":", 1)
    try:
        salt = base64.b64decode(encoded_salt, validate=True)
        expected = base64.b64decode(encoded_digest, validate=True)
        actual = _digest(password, salt, rounds)
    except (ValueError, TypeError) as e:
        logger.debug(f"Malformed stored credential: {e}")
        return False

    return hmac.compare_digest(actual, expected)
