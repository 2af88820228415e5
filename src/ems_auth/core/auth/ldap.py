"""LDAP authentication provider.

Builds the user's bind DN from a configurable template (or, when a service
account is configured, looks it up with a search filter), binds with the
supplied password, then reads the user entry back. A bind that succeeds
but cannot read a single attribute of the entry does not count as a login.

ldap3 is synchronous; binds run in a worker thread.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

from ldap3 import BASE, SIMPLE, SUBTREE, Connection, Server
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars
from ldap3.utils.dn import escape_rdn

from .provider import AuthProvider, ProviderError
from ems_auth.config.settings import ProviderConfig
from ems_auth.domain.models.auth import AuthResult

logger = logging.getLogger(__name__)

# Signature: (config, bind_user, password, timeout) -> ldap3.Connection (unbound)
ConnectionFactory = Callable[[ProviderConfig, str, str, float], Connection]


def default_connection_factory(
    config: ProviderConfig, bind_user: str, password: str, timeout: float
) -> Connection:
    """Create an unbound ldap3 connection for a provider."""
    host = config.server or config.domain
    if not host:
        raise ProviderError(f"Provider {config.name} has no server configured")

    server = Server(
        host,
        port=config.port,
        use_ssl=config.use_ssl,
        connect_timeout=timeout,
    )
    return Connection(
        server,
        user=bind_user,
        password=password,
        authentication=SIMPLE,
        receive_timeout=timeout,
        raise_exceptions=False,
    )


def first_value(attributes: dict, *names: str) -> Optional[str]:
    """Return the first non-empty value among the named attributes."""
    for name in names:
        value = attributes.get(name)
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        if value:
            return str(value)
    return None


def all_values(attributes: dict, name: str) -> list[str]:
    value = attributes.get(name)
    if not value:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return [str(value)]


class LDAPAuthProvider(AuthProvider):
    """LDAP simple-bind authentication.

    Example Configuration:
        {
            "name": "LDAP",
            "type": "ldap",
            "server": "ldap.example.com",
            "use_ssl": true,
            "base_dn": "ou=people,dc=example,dc=com",
            "user_dn_template": "uid={username},{base_dn}"
        }

    The template receives ``username`` (RDN-escaped) and ``base_dn``. Use
    ``cn={username},{base_dn}`` or similar to match the directory schema.

    With ``bind_dn``/``bind_password`` set, the service account searches
    ``base_dn`` with ``user_search_filter`` (e.g. ``(sAMAccountName={username})``)
    and the first match is used as the user bind DN.
    """

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = 10.0,
        connection_factory: ConnectionFactory = default_connection_factory,
    ):
        """Initialize LDAP provider.

        Args:
            config: Provider configuration
            timeout: Connect/receive timeout for the directory server, seconds
            connection_factory: Builds the ldap3 connection (replaceable in tests)
        """
        super().__init__(config)
        self.timeout = timeout
        self.connection_factory = connection_factory

    def build_bind_dn(self, username: str) -> str:
        """Build the user bind DN from the configured template."""
        try:
            return self.config.user_dn_template.format(
                username=escape_rdn(username), base_dn=self.config.base_dn
            )
        except (KeyError, IndexError, ValueError) as e:
            raise ProviderError(f"Invalid user DN template: {e}") from e

    async def _verify(self, username: str, secret: str) -> AuthResult:
        if not self.config.base_dn:
            raise ProviderError("LDAP base DN is not configured")
        if not username or not secret:
            # An empty password would be an anonymous bind
            return self._failure("Missing username or password", username)

        if self.config.bind_dn:
            bind_dn = await asyncio.to_thread(self._find_user_dn, username)
            if bind_dn is None:
                logger.warning(f"LDAP user {username} not found under {self.config.base_dn}")
                return self._failure("User not found", username)
        else:
            bind_dn = self.build_bind_dn(username)

        attributes = await asyncio.to_thread(self._bind_and_read, bind_dn, secret)

        if attributes is None:
            logger.warning(f"LDAP bind rejected for {bind_dn}")
            return self._failure("Invalid credentials", username)

        if not attributes:
            logger.warning(f"LDAP bind for {bind_dn} succeeded but no attributes could be read")
            return self._failure("User entry not readable", username)

        logger.info(f"LDAP user authenticated: {bind_dn}")
        return AuthResult(
            success=True,
            username=username,
            provider=self.name,
            external_id=bind_dn,
            display_name=first_value(attributes, "displayName", "cn") or username,
            email=first_value(attributes, "mail"),
            groups=all_values(attributes, "memberOf"),
        )

    def _find_user_dn(self, username: str) -> Optional[str]:
        """Look the user DN up with the service account.

        Raises:
            ProviderError: If the service account cannot bind or the search fails
        """
        conn = self.connection_factory(
            self.config, self.config.bind_dn, self.config.bind_password or "", self.timeout
        )
        try:
            if not conn.bind():
                raise ProviderError(f"LDAP service account bind failed: {conn.result}")

            conn.search(
                self.config.base_dn,
                self.config.user_search_filter.format(username=escape_filter_chars(username)),
                search_scope=SUBTREE,
                attributes=[],
            )
            if not conn.entries:
                return None
            return conn.entries[0].entry_dn
        except LDAPException as e:
            raise ProviderError(f"LDAP server error: {e}") from e
        finally:
            conn.unbind()

    def _bind_and_read(self, bind_dn: str, secret: str) -> Optional[dict[str, Any]]:
        """Bind as the user and read back its entry.

        Returns:
            None if the bind was rejected, the entry's attributes otherwise
            (empty when nothing could be read)

        Raises:
            ProviderError: If the server could not be reached or answered with an error
        """
        conn = self.connection_factory(self.config, bind_dn, secret, self.timeout)
        try:
            if not conn.bind():
                return self._rejected_bind(conn)

            conn.search(
                bind_dn,
                "(objectClass=*)",
                search_scope=BASE,
                attributes=self.config.user_attributes,
            )
            if not conn.entries:
                return {}
            return {
                key: value
                for key, value in conn.entries[0].entry_attributes_as_dict.items()
                if value
            }
        except LDAPException as e:
            raise ProviderError(f"LDAP server error: {e}") from e
        finally:
            conn.unbind()

    @staticmethod
    def _rejected_bind(conn: Connection) -> None:
        result = conn.result or {}
        if result.get("description") == "invalidCredentials":
            return None
        raise ProviderError(f"LDAP bind failed: {result.get('description') or result}")
