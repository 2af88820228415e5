"""User Storage System

Purpose: Handle user account storage and retrieval operations

Each operation runs in its own session and commits a single statement, so
every call is individually atomic. The failed-login counter is incremented
in SQL rather than read-modify-write in Python, which keeps concurrent
failures against one account from losing updates.

Operations:
- find_by_username / find_by_id
- insert_user
- update_external_identity / update_profile
- increment_failed_logins / reset_failed_logins / lock_account / unlock_account
- touch_last_login
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ems_auth.domain.models.auth import utc_now
from ems_auth.infrastructure.database.models import User

logger = logging.getLogger(__name__)


class UserAlreadyExistsError(ValueError):
    """Username is already taken."""
    pass


class UserStore:
    """SQL user store

    Args:
        session_factory: Async session factory bound to the service database
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def find_by_username(self, username: str) -> Optional[User]:
        """Get user by username

        Args:
            username: Username to search for

        Returns:
            User if found, None otherwise
        """
        if not username:
            return None

        async with self._session_factory() as session:
            result = await session.execute(select(User).where(User.username == username))
            return result.scalar_one_or_none()

    async def find_by_id(self, user_id: int) -> Optional[User]:
        """Get user by ID"""
        async with self._session_factory() as session:
            return await session.get(User, user_id)

    async def insert_user(
        self,
        username: str,
        auth_provider: str,
        role: str,
        external_id: Optional[str] = None,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        password_hash: Optional[str] = None,
        domain: Optional[str] = None,
        require_password_change: bool = False,
    ) -> User:
        """Insert a new user row

        Returns:
            Created User

        Raises:
            UserAlreadyExistsError: If the username is taken
        """
        user = User(
            username=username,
            auth_provider=auth_provider,
            role=role,
            external_id=external_id,
            display_name=display_name,
            email=email,
            password_hash=password_hash,
            domain=domain,
            require_password_change=require_password_change,
            is_active=True,
            failed_login_attempts=0,
        )

        async with self._session_factory() as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise UserAlreadyExistsError(f"Username '{username}' already exists") from e
            await session.refresh(user)

        logger.info(f"Created user {user.user_id} with username '{username}' (provider={auth_provider})")
        return user

    async def update_external_identity(
        self,
        user_id: int,
        external_id: str,
        auth_provider: Optional[str] = None,
    ) -> None:
        """Store a new external ID (and optionally the provider tag) for a user"""
        values = {"external_id": external_id, "updated_at": utc_now()}
        if auth_provider is not None:
            values["auth_provider"] = auth_provider

        await self._execute_update(user_id, values)
        logger.info(f"Updated external identity for user {user_id}")

    async def update_profile(
        self,
        user_id: int,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> None:
        """Refresh provider-owned profile attributes"""
        values = {}
        if display_name is not None:
            values["display_name"] = display_name
        if email is not None:
            values["email"] = email
        if values:
            await self._execute_update(user_id, values)

    async def increment_failed_logins(self, user_id: int) -> int:
        """Atomically increment the failed-login counter

        Returns:
            Counter value after the increment
        """
        async with self._session_factory() as session:
            await session.execute(
                update(User)
                .where(User.user_id == user_id)
                .values(
                    failed_login_attempts=User.failed_login_attempts + 1,
                    last_failed_login=utc_now(),
                )
            )
            await session.commit()
            result = await session.execute(
                select(User.failed_login_attempts).where(User.user_id == user_id)
            )
            return result.scalar_one()

    async def reset_failed_logins(self, user_id: int) -> None:
        """Clear the failed-login counter after a successful login"""
        await self._execute_update(
            user_id,
            {"failed_login_attempts": 0, "last_failed_login": None, "account_locked_until": None},
        )

    async def lock_account(self, user_id: int, until: datetime) -> None:
        """Lock an account until the given time"""
        await self._execute_update(user_id, {"account_locked_until": until})
        logger.warning(f"User {user_id} locked until {until.isoformat()}")

    async def unlock_account(self, user_id: int) -> None:
        """Clear an expired lock

        The failed-login counter is kept, so the next wrong password locks
        the account again. Only a successful login resets it.
        """
        await self._execute_update(user_id, {"account_locked_until": None})

    async def touch_last_login(self, user_id: int) -> None:
        """Record a successful login"""
        await self._execute_update(user_id, {"last_login": utc_now()})

    async def _execute_update(self, user_id: int, values: dict) -> None:
        async with self._session_factory() as session:
            await session.execute(update(User).where(User.user_id == user_id).values(**values))
            await session.commit()
