"""Identity reconciliation.

Maps a successful provider result onto the durable user record: the first
login through an external provider creates the user, later logins refresh
the external identity, profile attributes and last-login time.

Rules:
- The username is the identity; a second provider authenticating the same
  username updates attributes on the existing row and never creates a new one.
- The provider tag is only rewritten when backfilling a missing external ID
  on a non-Local user. Local users (those with a password hash) keep theirs.
- Roles are never touched here; new users get the configured default role.
"""

import logging

from sqlalchemy.exc import SQLAlchemyError

from ems_auth.domain.models.auth import AuthResult
from ems_auth.infrastructure.auth.user_store import UserAlreadyExistsError, UserStore
from ems_auth.infrastructure.database.models import User

logger = logging.getLogger(__name__)


class ReconciliationError(Exception):
    """The user store could not be read or written during reconciliation."""
    pass


class IdentityReconciler:
    """Get-or-create the local user for an authenticated identity.

    Args:
        user_store: User store
        default_role: Role given to users created by reconciliation
    """

    def __init__(self, user_store: UserStore, default_role: str = "operator"):
        self.user_store = user_store
        self.default_role = default_role

    async def reconcile(self, result: AuthResult) -> User:
        """Reconcile a successful AuthResult with the users table.

        Args:
            result: Successful provider result

        Returns:
            The current user record

        Raises:
            ValueError: If the result is not a successful one
            ReconciliationError: If the user store is unavailable
        """
        if not result.success or not result.username:
            raise ValueError("Only successful authentication results can be reconciled")

        try:
            user = await self.user_store.find_by_username(result.username)
            if user is None:
                try:
                    return await self._create(result)
                except UserAlreadyExistsError:
                    # Concurrent first login for the same username
                    user = await self.user_store.find_by_username(result.username)
                    if user is None:
                        raise
            return await self._refresh(user, result)

        except (SQLAlchemyError, UserAlreadyExistsError) as e:
            logger.error(f"Reconciliation failed for {result.username} ({result.provider}): {e}")
            raise ReconciliationError(f"User store unavailable: {e}") from e

    async def _create(self, result: AuthResult) -> User:
        created = await self.user_store.insert_user(
            username=result.username,
            auth_provider=result.provider,
            role=self.default_role,
            external_id=result.external_id,
            display_name=result.display_name or result.username,
            email=result.email,
        )
        await self.user_store.touch_last_login(created.user_id)
        logger.info(f"Provisioned user {result.username} from provider {result.provider}")
        return await self.user_store.find_by_id(created.user_id)

    async def _refresh(self, user: User, result: AuthResult) -> User:
        if result.external_id and result.external_id != user.external_id:
            backfill_provider = user.external_id is None and not user.is_local
            await self.user_store.update_external_identity(
                user.user_id,
                result.external_id,
                auth_provider=result.provider if backfill_provider else None,
            )
            if user.auth_provider != result.provider:
                logger.warning(
                    f"User {user.username} owned by {user.auth_provider} authenticated via {result.provider}"
                )

        if not user.is_local:
            display_name = result.display_name if result.display_name != user.display_name else None
            email = result.email if result.email != user.email else None
            await self.user_store.update_profile(user.user_id, display_name=display_name, email=email)

        await self.user_store.touch_last_login(user.user_id)
        return await self.user_store.find_by_id(user.user_id)
