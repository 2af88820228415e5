"""Federation (ADFS) authentication provider.

Sends a WS-Trust 1.3 RequestSecurityToken with a UsernameToken to the
configured ADFS ``usernamemixed`` endpoint. A successful, non-empty answer
without a SOAP fault means ADFS accepted the credentials. A Sender fault
rejects the credentials; any other fault is a server-side failure. Claims in the
returned assertion are parsed on a best-effort basis only.
"""

import logging
import uuid
from datetime import timedelta
from typing import Optional, Union
from xml.sax.saxutils import escape

import httpx
from lxml import etree

from .provider import AuthProvider, ProviderError
from ems_auth.config.settings import ProviderConfig
from ems_auth.domain.models.auth import AuthResult, utc_now

logger = logging.getLogger(__name__)

DEFAULT_APPLIES_TO = "urn:federation:MicrosoftOnline"

RST_TEMPLATE = """<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope" xmlns:a="http://www.w3.org/2005/08/addressing" xmlns:u="http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-utility-1.0.xsd">
  <s:Header>
    <a:Action s:mustUnderstand="1">http://docs.oasis-open.org/ws-sx/ws-trust/200512/RST/Issue</a:Action>
    <a:MessageID>urn:uuid:{message_id}</a:MessageID>
    <a:ReplyTo><a:Address>http://www.w3.org/2005/08/addressing/anonymous</a:Address></a:ReplyTo>
    <a:To s:mustUnderstand="1">{endpoint}</a:To>
    <o:Security s:mustUnderstand="1" xmlns:o="http://docs.oasis-open.org/wss/2004/01/oasis-200401-wss-wssecurity-secext-1.0.xsd">
      <u:Timestamp u:Id="_0">
        <u:Created>{created}</u:Created>
        <u:Expires>{expires}</u:Expires>
      </u:Timestamp>
      <o:UsernameToken u:Id="uuid-{token_id}">
        <o:Username>{username}</o:Username>
        <o:Password>{password}</o:Password>
      </o:UsernameToken>
    </o:Security>
  </s:Header>
  <s:Body>
    <trust:RequestSecurityToken xmlns:trust="http://docs.oasis-open.org/ws-sx/ws-trust/200512">
      <wsp:AppliesTo xmlns:wsp="http://schemas.xmlsoap.org/ws/2004/09/policy">
        <a:EndpointReference><a:Address>{applies_to}</a:Address></a:EndpointReference>
      </wsp:AppliesTo>
      <trust:KeyType>http://docs.oasis-open.org/ws-sx/ws-trust/200512/Bearer</trust:KeyType>
      <trust:RequestType>http://docs.oasis-open.org/ws-sx/ws-trust/200512/Issue</trust:RequestType>
    </trust:RequestSecurityToken>
  </s:Body>
</s:Envelope>"""

# Claim short names (last path segment of the claim type URI)
DISPLAY_NAME_CLAIMS = ("name", "displayname", "givenname")
EMAIL_CLAIMS = ("emailaddress", "email", "upn")
GROUP_CLAIMS = ("group", "role")

# Faults caused by the request itself (bad credentials). Anything else is a
# server-side fault.
SENDER_FAULT_CODES = ("Sender", "Client")

XML_PARSER = etree.XMLParser(
    resolve_entities=False, no_network=True, load_dtd=False, huge_tree=False
)


def build_rst_envelope(endpoint: str, username: str, password: str, applies_to: str) -> str:
    """Build the WS-Trust RequestSecurityToken envelope."""
    now = utc_now()
    return RST_TEMPLATE.format(
        message_id=uuid.uuid4(),
        token_id=uuid.uuid4(),
        endpoint=escape(endpoint),
        created=now.strftime("%Y-%m-%dT%H:%M:%SZ"),
        expires=(now + timedelta(minutes=10)).strftime("%Y-%m-%dT%H:%M:%SZ"),
        username=escape(username),
        password=escape(password),
        applies_to=escape(applies_to),
    )


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _claim_name(attribute: etree._Element) -> str:
    name = attribute.get("Name") or attribute.get("AttributeName") or ""
    return name.rstrip("/").rsplit("/", 1)[-1].lower()


def _parse(body: Union[str, bytes]) -> Optional[etree._Element]:
    if isinstance(body, str):
        body = body.encode("utf-8")
    if not body.strip():
        return None
    try:
        return etree.fromstring(body, parser=XML_PARSER)
    except etree.XMLSyntaxError:
        return None


def _elements(root: etree._Element, name: str) -> list:
    return [element for element in root.iter(etree.Element) if _local_name(element.tag) == name]


def _code_value(text: Optional[str]) -> str:
    return (text or "").strip().rsplit(":", 1)[-1]


def parse_claims(body: Union[str, bytes]) -> dict[str, list[str]]:
    """Extract assertion attributes as {claim short name: [values]}.

    Best effort: returns an empty dict if the body is not parseable XML.
    Entity references are left unexpanded.
    """
    root = _parse(body)
    if root is None:
        return {}

    claims: dict[str, list[str]] = {}
    for element in _elements(root, "Attribute"):
        values = [
            value.text.strip()
            for value in element.iterchildren(etree.Element)
            if _local_name(value.tag) == "AttributeValue" and value.text
        ]
        if values:
            claims.setdefault(_claim_name(element), []).extend(values)
    return claims


def soap_fault_code(body: Union[str, bytes]) -> Optional[str]:
    """Return the top-level SOAP fault code of a response.

    Handles SOAP 1.2 (``Fault/Code/Value``) and SOAP 1.1 (``faultcode``)
    and strips the namespace prefix, e.g. ``"Sender"`` or ``"Receiver"``.
    Returns None when the body carries no fault and ``""`` for a fault
    without a readable code.
    """
    root = _parse(body)
    if root is None:
        return None

    faults = _elements(root, "Fault")
    if not faults:
        return None

    fault = faults[0]
    for child in fault.iterchildren(etree.Element):
        name = _local_name(child.tag)
        if name == "faultcode":
            return _code_value(child.text)
        if name == "Code":
            for value in child.iterchildren(etree.Element):
                if _local_name(value.tag) == "Value":
                    return _code_value(value.text)
    return ""


def _first_claim(claims: dict[str, list[str]], names: tuple) -> Optional[str]:
    for name in names:
        if claims.get(name):
            return claims[name][0]
    return None


class FederationAuthProvider(AuthProvider):
    """ADFS (WS-Trust) username/password authentication.

    Example Configuration:
        {
            "name": "ADFS",
            "type": "federation",
            "priority": 3,
            "endpoint": "https://adfs.example.com/adfs/services/trust/13/usernamemixed"
        }

    ``domain`` is used as the AppliesTo relying-party identifier when set.
    """

    def __init__(
        self,
        config: ProviderConfig,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize federation provider.

        Args:
            config: Provider configuration
            timeout: HTTP timeout in seconds
            transport: Optional httpx transport (replaceable in tests)
        """
        super().__init__(config)
        self.timeout = timeout
        self.transport = transport

    async def _verify(self, username: str, secret: str) -> AuthResult:
        endpoint = self.config.endpoint
        if not endpoint:
            raise ProviderError("Federation endpoint is not configured")
        if not username or not secret:
            return self._failure("Missing username or password", username)

        envelope = build_rst_envelope(
            endpoint, username, secret, self.config.domain or DEFAULT_APPLIES_TO
        )

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(
                    endpoint,
                    content=envelope.encode("utf-8"),
                    headers={"Content-Type": "application/soap+xml; charset=utf-8"},
                )
        except httpx.HTTPError as e:
            raise ProviderError(f"Federation endpoint unreachable: {e}") from e

        body = response.content
        fault_code = soap_fault_code(body)
        if fault_code in SENDER_FAULT_CODES:
            logger.warning(f"Federation rejected credentials for {username}")
            return self._failure("Token request rejected", username)
        if fault_code is not None:
            raise ProviderError(
                f"Federation server fault {fault_code or 'unknown'} (HTTP {response.status_code})"
            )

        if response.status_code >= 400:
            raise ProviderError(f"Federation endpoint returned HTTP {response.status_code}")

        if not body.strip():
            raise ProviderError("Federation endpoint returned an empty response")

        claims = parse_claims(body)
        logger.info(f"Federation user authenticated: {username} ({len(claims)} claims)")

        return AuthResult(
            success=True,
            username=username,
            provider=self.name,
            external_id=username,
            display_name=_first_claim(claims, DISPLAY_NAME_CLAIMS),
            email=_first_claim(claims, EMAIL_CLAIMS),
            groups=[value for name in GROUP_CLAIMS for value in claims.get(name, [])],
        )
