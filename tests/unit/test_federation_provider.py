"""Unit tests for the federation (ADFS WS-Trust) provider"""

import httpx
import pytest

from ems_auth.config.settings import ProviderConfig
from ems_auth.core.auth.federation import (
    FederationAuthProvider,
    build_rst_envelope,
    parse_claims,
    soap_fault_code,
)
from ems_auth.core.auth.orchestrator import AuthOrchestrator

ENDPOINT = "https://adfs.example.com/adfs/services/trust/13/usernamemixed"

CONFIG = ProviderConfig(name="ADFS", type="federation", endpoint=ENDPOINT)

TOKEN_RESPONSE = """<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope">
  <s:Body>
    <trust:RequestSecurityTokenResponseCollection xmlns:trust="http://docs.oasis-open.org/ws-sx/ws-trust/200512">
      <trust:RequestSecurityTokenResponse>
        <trust:RequestedSecurityToken>
          <saml:Assertion xmlns:saml="urn:oasis:names:tc:SAML:1.0:assertion">
            <saml:AttributeStatement>
              <saml:Attribute AttributeName="name" AttributeNamespace="http://schemas.xmlsoap.org/ws/2005/05/identity/claims">
                <saml:AttributeValue>Bob Builder</saml:AttributeValue>
              </saml:Attribute>
              <saml:Attribute AttributeName="emailaddress" AttributeNamespace="http://schemas.xmlsoap.org/ws/2005/05/identity/claims">
                <saml:AttributeValue>bob@example.com</saml:AttributeValue>
              </saml:Attribute>
              <saml:Attribute AttributeName="group" AttributeNamespace="http://schemas.xmlsoap.org/claims">
                <saml:AttributeValue>Operators</saml:AttributeValue>
                <saml:AttributeValue>Viewers</saml:AttributeValue>
              </saml:Attribute>
            </saml:AttributeStatement>
          </saml:Assertion>
        </trust:RequestedSecurityToken>
      </trust:RequestSecurityTokenResponse>
    </trust:RequestSecurityTokenResponseCollection>
  </s:Body>
</s:Envelope>"""

FAULT_RESPONSE = """<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope">
  <s:Body>
    <s:Fault>
      <s:Code><s:Value>s:Sender</s:Value></s:Code>
      <s:Reason><s:Text xml:lang="en-US">ID3242: The security token could not be authenticated or authorized.</s:Text></s:Reason>
    </s:Fault>
  </s:Body>
</s:Envelope>"""

RECEIVER_FAULT_RESPONSE = """<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope">
  <s:Body>
    <s:Fault>
      <s:Code><s:Value>s:Receiver</s:Value></s:Code>
      <s:Reason><s:Text xml:lang="en-US">MSIS7012: An error occurred while processing the request.</s:Text></s:Reason>
    </s:Fault>
  </s:Body>
</s:Envelope>"""

SOAP11_CLIENT_FAULT_RESPONSE = """<soap:Envelope xmlns:soap="http://schemas.xmlsoap.org/soap/envelope/">
  <soap:Body>
    <soap:Fault>
      <faultcode>soap:Client</faultcode>
      <faultstring>Authentication failed</faultstring>
    </soap:Fault>
  </soap:Body>
</soap:Envelope>"""

EXTERNAL_ENTITY_RESPONSE = """<?xml version="1.0" encoding="utf-8"?>
<!DOCTYPE s:Envelope [
  <!ENTITY secret SYSTEM "file:///etc/passwd">
]>
<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope">
  <s:Body>
    <saml:Assertion xmlns:saml="urn:oasis:names:tc:SAML:1.0:assertion">
      <saml:AttributeStatement>
        <saml:Attribute AttributeName="name">
          <saml:AttributeValue>&secret;</saml:AttributeValue>
        </saml:Attribute>
      </saml:AttributeStatement>
    </saml:Assertion>
  </s:Body>
</s:Envelope>"""


def provider_answering(status_code: int, body: str, requests: list = None) -> FederationAuthProvider:
    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, text=body)

    return FederationAuthProvider(CONFIG, timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestFederationProvider:

    @pytest.mark.asyncio
    async def test_token_response_authenticates(self):
        requests = []
        provider = provider_answering(200, TOKEN_RESPONSE, requests)

        result = await provider.verify("bob", "pw")

        assert result.success is True
        assert result.provider == "ADFS"
        assert result.external_id == "bob"
        assert result.display_name == "Bob Builder"
        assert result.email == "bob@example.com"
        assert result.groups == ["Operators", "Viewers"]

        assert len(requests) == 1
        assert str(requests[0].url) == ENDPOINT
        assert requests[0].headers["content-type"].startswith("application/soap+xml")
        body = requests[0].content.decode("utf-8")
        assert "<o:Username>bob</o:Username>" in body
        assert "<o:Password>pw</o:Password>" in body

    @pytest.mark.asyncio
    async def test_unparseable_success_body_still_authenticates(self):
        provider = provider_answering(200, "token-issued")

        result = await provider.verify("bob", "pw")

        assert result.success is True
        assert result.display_name is None
        assert result.groups == []

    @pytest.mark.asyncio
    async def test_soap_fault_is_credential_failure(self):
        provider = provider_answering(500, FAULT_RESPONSE)

        result = await provider.verify("bob", "wrong")

        assert result.success is False
        assert result.provider_error is False

    @pytest.mark.asyncio
    async def test_soap11_client_fault_is_credential_failure(self):
        provider = provider_answering(500, SOAP11_CLIENT_FAULT_RESPONSE)

        result = await provider.verify("bob", "wrong")

        assert result.success is False
        assert result.provider_error is False

    @pytest.mark.asyncio
    async def test_receiver_fault_is_provider_error(self):
        provider = provider_answering(500, RECEIVER_FAULT_RESPONSE)

        result = await provider.verify("bob", "pw")

        assert result.success is False
        assert result.provider_error is True
        assert "Receiver" in result.error

    @pytest.mark.asyncio
    async def test_receiver_fault_stops_chain_without_fallback(self, scripted):
        adfs = FederationAuthProvider(
            CONFIG.model_copy(update={"priority": 1}),
            transport=httpx.MockTransport(
                lambda request: httpx.Response(500, text=RECEIVER_FAULT_RESPONSE)
            ),
        )
        local = scripted("Local", 2, "success")
        orchestrator = AuthOrchestrator(
            {adfs.name: adfs, local.name: local}, fallback_chain_enabled=False
        )

        result = await orchestrator.authenticate("bob", "pw")

        assert result.success is False
        assert result.provider == "ADFS"
        assert result.provider_error is True

    @pytest.mark.asyncio
    async def test_http_error_is_provider_error(self):
        provider = provider_answering(503, "Service Unavailable")

        result = await provider.verify("bob", "pw")

        assert result.success is False
        assert result.provider_error is True

    @pytest.mark.asyncio
    async def test_empty_body_is_provider_error(self):
        provider = provider_answering(200, "   ")

        result = await provider.verify("bob", "pw")

        assert result.success is False
        assert result.provider_error is True

    @pytest.mark.asyncio
    async def test_connection_failure_is_provider_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = FederationAuthProvider(CONFIG, transport=httpx.MockTransport(handler))

        result = await provider.verify("bob", "pw")

        assert result.success is False
        assert result.provider_error is True

    @pytest.mark.asyncio
    async def test_missing_endpoint_is_provider_error(self):
        config = CONFIG.model_copy(update={"endpoint": None})
        provider = FederationAuthProvider(config)

        result = await provider.verify("bob", "pw")

        assert result.success is False
        assert result.provider_error is True

    @pytest.mark.asyncio
    async def test_empty_password_is_rejected_without_request(self):
        requests = []
        provider = provider_answering(200, TOKEN_RESPONSE, requests)

        result = await provider.verify("bob", "")

        assert result.success is False
        assert result.provider_error is False
        assert requests == []


@pytest.mark.unit
class TestEnvelope:

    def test_credentials_are_xml_escaped(self):
        envelope = build_rst_envelope(ENDPOINT, "a<b", "p&w", "urn:test")

        assert "<o:Username>a&lt;b</o:Username>" in envelope
        assert "<o:Password>p&amp;w</o:Password>" in envelope
        assert "<a:Address>urn:test</a:Address>" in envelope

    def test_parse_claims(self):
        claims = parse_claims(TOKEN_RESPONSE)

        assert claims["name"] == ["Bob Builder"]
        assert claims["group"] == ["Operators", "Viewers"]

    def test_parse_claims_ignores_garbage(self):
        assert parse_claims("not xml") == {}

    def test_parse_claims_leaves_external_entities_unresolved(self):
        claims = parse_claims(EXTERNAL_ENTITY_RESPONSE)

        assert "root:" not in repr(claims)
        assert claims.get("name", []) == []

    def test_fault_code(self):
        assert soap_fault_code(FAULT_RESPONSE) == "Sender"
        assert soap_fault_code(RECEIVER_FAULT_RESPONSE) == "Receiver"
        assert soap_fault_code(SOAP11_CLIENT_FAULT_RESPONSE) == "Client"
        assert soap_fault_code(TOKEN_RESPONSE) is None
        assert soap_fault_code("not xml") is None

    def test_fault_without_code(self):
        body = '<s:Envelope xmlns:s="http://www.w3.org/2003/05/soap-envelope"><s:Body><s:Fault/></s:Body></s:Envelope>'

        assert soap_fault_code(body) == ""
