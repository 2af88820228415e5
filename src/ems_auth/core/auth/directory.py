"""Directory (Active Directory) authentication provider.

Binds to a domain controller as ``user@domain`` with the supplied password,
then looks the account up by ``sAMAccountName`` to collect its object GUID,
display name, mail address and group memberships.

Accepted username forms: ``alice``, ``CORP\\alice``, ``alice@corp.example.com``.
All resolve to the account name ``alice``.
"""

import asyncio
import logging
import uuid
from typing import Any, Optional

from ldap3 import SUBTREE
from ldap3.core.exceptions import LDAPException
from ldap3.utils.conv import escape_filter_chars

from .ldap import ConnectionFactory, all_values, default_connection_factory, first_value
from .provider import AuthProvider, ProviderError
from ems_auth.config.settings import ProviderConfig
from ems_auth.domain.models.auth import AuthResult

logger = logging.getLogger(__name__)

DIRECTORY_ATTRIBUTES = ["objectGUID", "sAMAccountName", "displayName", "mail", "memberOf"]


def account_name(username: str) -> str:
    """Strip a ``DOMAIN\\`` prefix or ``@domain`` suffix from a login name."""
    name = username.strip()
    if "\\" in name:
        name = name.split("\\", 1)[1]
    if "@" in name:
        name = name.split("@", 1)[0]
    return name


def domain_to_base_dn(domain: str) -> str:
    """corp.example.com -> DC=corp,DC=example,DC=com"""
    return ",".join(f"DC={part}" for part in domain.split(".") if part)


def first_value_raw(attributes: dict, name: str) -> Any:
    value = attributes.get(name)
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def format_guid(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)) and len(value) == 16:
        return str(uuid.UUID(bytes_le=bytes(value)))
    return str(value).strip("{}")


class DirectoryAuthProvider(AuthProvider):
    """Active Directory authentication.

    Example Configuration:
        {
            "name": "ActiveDirectory",
            "type": "directory",
            "priority": 2,
            "domain": "corp.example.com",
            "server": "dc01.corp.example.com",
            "use_ssl": true
        }

    ``base_dn`` defaults to the DN derived from ``domain``.
    """

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = 10.0,
        connection_factory: ConnectionFactory = default_connection_factory,
    ):
        super().__init__(config)
        self.timeout = timeout
        self.connection_factory = connection_factory

    async def _verify(self, username: str, secret: str) -> AuthResult:
        if not self.config.domain:
            raise ProviderError("Directory domain is not configured")

        account = account_name(username)
        if not account or not secret:
            return self._failure("Missing username or password", username)

        attributes = await asyncio.to_thread(self._bind_and_lookup, account, secret)
        if attributes is None:
            logger.warning(f"Directory bind rejected for {account}@{self.config.domain}")
            return self._failure("Invalid credentials", account)

        logger.info(f"Directory user authenticated: {account}@{self.config.domain}")
        return AuthResult(
            success=True,
            username=first_value(attributes, "sAMAccountName") or account,
            provider=self.name,
            external_id=format_guid(first_value_raw(attributes, "objectGUID")),
            display_name=first_value(attributes, "displayName") or account,
            email=first_value(attributes, "mail"),
            groups=all_values(attributes, "memberOf"),
        )

    def _bind_and_lookup(self, account: str, secret: str) -> Optional[dict[str, Any]]:
        """Bind as the user and fetch the account's directory entry.

        Returns:
            None if the bind was rejected, the account attributes otherwise
            (empty if the account could not be looked up)
        """
        bind_user = f"{account}@{self.config.domain}"
        conn = self.connection_factory(self.config, bind_user, secret, self.timeout)
        try:
            if not conn.bind():
                result = conn.result or {}
                if result.get("description") == "invalidCredentials":
                    return None
                raise ProviderError(f"Directory bind failed: {result.get('description') or result}")

            conn.search(
                self.config.base_dn or domain_to_base_dn(self.config.domain),
                f"(sAMAccountName={escape_filter_chars(account)})",
                search_scope=SUBTREE,
                attributes=DIRECTORY_ATTRIBUTES,
            )
            if not conn.entries:
                logger.warning(f"Directory bind for {account} succeeded but the account lookup returned nothing")
                return {}
            return dict(conn.entries[0].entry_attributes_as_dict)
        except LDAPException as e:
            raise ProviderError(f"Directory server error: {e}") from e
        finally:
            conn.unbind()
