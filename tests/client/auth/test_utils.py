"""
Tests for the OAuth protocol operations.
"""

import base64
import hashlib
import json
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import pytest
from inline_snapshot import snapshot
from pydantic import AnyHttpUrl, AnyUrl

from mcp_oauth_flow.client.auth import (
    DebugOAuthClientProvider,
    InMemoryCredentialStorage,
    OAuthFlowError,
    OAuthMetadataError,
    OAuthRegistrationError,
    OAuthTokenError,
    PKCEParameters,
    ProtectedResourceMetadataError,
)
from mcp_oauth_flow.client.auth.utils import (
    MCP_PROTOCOL_VERSION,
    build_authorization_server_metadata_discovery_urls,
    build_protected_resource_metadata_discovery_urls,
    check_resource_allowed,
    discover_authorization_server_metadata,
    discover_protected_resource_metadata,
    discover_scopes,
    exchange_authorization,
    generate_oauth_state,
    get_authorization_base_url,
    register_client,
    resource_url_from_server_url,
    select_client_auth_method,
    select_resource_url,
    start_authorization,
)
from mcp_oauth_flow.settings import OAuthFlowSettings
from mcp_oauth_flow.shared.auth import (
    OAuthClientInformationFull,
    OAuthClientMetadata,
    OAuthMetadata,
    ProtectedResourceMetadata,
)

REDIRECT_URL = "http://localhost:3030/callback"


@pytest.fixture
def oauth_metadata():
    return OAuthMetadata(
        issuer=AnyHttpUrl("https://auth.example.com"),
        authorization_endpoint=AnyHttpUrl("https://auth.example.com/authorize"),
        token_endpoint=AnyHttpUrl("https://auth.example.com/token"),
        registration_endpoint=AnyHttpUrl("https://auth.example.com/register"),
    )


@pytest.fixture
def public_client():
    return OAuthClientInformationFull(
        client_id="test_client",
        redirect_uris=[AnyUrl(REDIRECT_URL)],
        token_endpoint_auth_method="none",
    )


@pytest.fixture
def confidential_client():
    return OAuthClientInformationFull(
        client_id="test client",
        client_secret="s3cret:!",
        redirect_uris=[AnyUrl(REDIRECT_URL)],
        token_endpoint_auth_method="client_secret_basic",
    )


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestPKCEParameters:
    """Test PKCE parameter generation."""

    def test_pkce_generation(self):
        """Test PKCE parameter generation creates valid values."""
        pkce = PKCEParameters.generate()

        # Verify lengths
        assert len(pkce.code_verifier) == 128
        assert 43 <= len(pkce.code_challenge) <= 128

        # Verify characters used in verifier
        allowed_chars = set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._~")
        assert all(c in allowed_chars for c in pkce.code_verifier)

        # Verify challenge is correct SHA256 hash
        digest = hashlib.sha256(pkce.code_verifier.encode()).digest()
        expected_challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        assert pkce.code_challenge == expected_challenge

    def test_pkce_uniqueness(self):
        """Test PKCE generates unique values each time."""
        pkce1 = PKCEParameters.generate()
        pkce2 = PKCEParameters.generate()

        assert pkce1.code_verifier != pkce2.code_verifier
        assert pkce1.code_challenge != pkce2.code_challenge

    def test_oauth_state_uniqueness(self):
        assert generate_oauth_state() != generate_oauth_state()
        assert len(generate_oauth_state()) == 64


class TestUrlHelpers:
    def test_authorization_base_url(self):
        assert get_authorization_base_url("https://api.example.com/v1/mcp?x=1#frag") == "https://api.example.com"
        assert get_authorization_base_url("http://localhost:8080/mcp") == "http://localhost:8080"

    def test_resource_url_from_server_url(self):
        assert resource_url_from_server_url("HTTPS://API.Example.com/MCP#frag") == "https://api.example.com/MCP"

    @pytest.mark.parametrize(
        "requested,configured,allowed",
        [
            ("https://mcp.example/", "https://mcp.example", True),
            ("https://mcp.example/mcp", "https://mcp.example/", True),
            ("https://mcp.example/mcp/tools", "https://mcp.example/mcp", True),
            ("https://mcp.example/mcpx", "https://mcp.example/mcp", False),
            ("https://mcp.example/", "https://mcp.example/mcp", False),
            ("http://mcp.example/", "https://mcp.example/", False),
            ("https://mcp.example/", "https://other.example/", False),
            ("https://MCP.example/mcp", "https://mcp.EXAMPLE/mcp", True),
        ],
    )
    def test_check_resource_allowed(self, requested: str, configured: str, allowed: bool):
        assert check_resource_allowed(requested, configured) is allowed

    def test_protected_resource_discovery_urls(self):
        assert build_protected_resource_metadata_discovery_urls("https://api.example.com/v1/mcp") == snapshot(
            [
                "https://api.example.com/.well-known/oauth-protected-resource/v1/mcp",
                "https://api.example.com/.well-known/oauth-protected-resource",
            ]
        )
        assert build_protected_resource_metadata_discovery_urls("https://api.example.com/") == snapshot(
            ["https://api.example.com/.well-known/oauth-protected-resource"]
        )

    def test_authorization_server_discovery_urls(self):
        assert build_authorization_server_metadata_discovery_urls("https://auth.example.com/tenant1/") == snapshot(
            [
                "https://auth.example.com/.well-known/oauth-authorization-server/tenant1",
                "https://auth.example.com/.well-known/openid-configuration/tenant1",
                "https://auth.example.com/tenant1/.well-known/openid-configuration",
            ]
        )
        assert build_authorization_server_metadata_discovery_urls("https://auth.example.com") == snapshot(
            [
                "https://auth.example.com/.well-known/oauth-authorization-server",
                "https://auth.example.com/.well-known/openid-configuration",
            ]
        )


class TestProtectedResourceDiscovery:
    @pytest.mark.anyio
    async def test_falls_back_to_root(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if request.url.path == "/.well-known/oauth-protected-resource":
                return httpx.Response(
                    200,
                    json={
                        "resource": "https://api.example.com/",
                        "authorization_servers": ["https://auth.example.com"],
                    },
                )
            return httpx.Response(404)

        async with mock_client(handler) as client:
            metadata = await discover_protected_resource_metadata(client, "https://api.example.com/v1/mcp")

        assert [str(r.url) for r in requests] == snapshot(
            [
                "https://api.example.com/.well-known/oauth-protected-resource/v1/mcp",
                "https://api.example.com/.well-known/oauth-protected-resource",
            ]
        )
        assert requests[0].headers[MCP_PROTOCOL_VERSION] == "2025-06-18"
        assert metadata.authorization_servers == [AnyHttpUrl("https://auth.example.com")]

    @pytest.mark.anyio
    async def test_not_implemented(self):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            with pytest.raises(ProtectedResourceMetadataError, match="does not implement"):
                await discover_protected_resource_metadata(client, "https://api.example.com/")

    @pytest.mark.anyio
    async def test_server_error(self):
        async with mock_client(lambda request: httpx.Response(503)) as client:
            with pytest.raises(ProtectedResourceMetadataError, match="HTTP 503"):
                await discover_protected_resource_metadata(client, "https://api.example.com/")

    @pytest.mark.anyio
    async def test_invalid_document(self):
        async with mock_client(lambda request: httpx.Response(200, json={"authorization_servers": []})) as client:
            with pytest.raises(ProtectedResourceMetadataError, match="Invalid protected resource metadata"):
                await discover_protected_resource_metadata(client, "https://api.example.com/")


class TestSelectResourceUrl:
    @pytest.fixture
    def provider(self, tmp_path):
        return DebugOAuthClientProvider(
            "https://api.example.com/v1/mcp", InMemoryCredentialStorage(), OAuthFlowSettings(storage_dir=tmp_path)
        )

    @pytest.mark.anyio
    async def test_without_metadata(self, provider: DebugOAuthClientProvider):
        assert await select_resource_url(provider.server_url, provider) is None

    @pytest.mark.anyio
    async def test_metadata_covering_server(self, provider: DebugOAuthClientProvider):
        metadata = ProtectedResourceMetadata(resource=AnyHttpUrl("https://api.example.com/v1"))
        assert await select_resource_url(provider.server_url, provider, metadata) == AnyHttpUrl(
            "https://api.example.com/v1"
        )

    @pytest.mark.anyio
    async def test_metadata_for_other_resource(self, provider: DebugOAuthClientProvider):
        metadata = ProtectedResourceMetadata(resource=AnyHttpUrl("https://api.example.com/v2"))
        with pytest.raises(OAuthFlowError, match="does not match"):
            await select_resource_url(provider.server_url, provider, metadata)

    @pytest.mark.anyio
    async def test_configured_resource_wins(self, tmp_path):
        settings = OAuthFlowSettings(storage_dir=tmp_path, resource=AnyHttpUrl("https://elsewhere.example/"))
        provider = DebugOAuthClientProvider("https://api.example.com/v1/mcp", InMemoryCredentialStorage(), settings)
        metadata = ProtectedResourceMetadata(resource=AnyHttpUrl("https://api.example.com/v2"))

        assert await select_resource_url(provider.server_url, provider, metadata) == AnyHttpUrl(
            "https://elsewhere.example/"
        )


class TestAuthorizationServerDiscovery:
    @pytest.mark.anyio
    async def test_openid_fallback(self):
        requested: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requested.append(request.url.path)
            if request.url.path == "/.well-known/openid-configuration/tenant1":
                return httpx.Response(200, json={"issuer": "https://auth.example.com/tenant1"})
            return httpx.Response(404)

        async with mock_client(handler) as client:
            document = await discover_authorization_server_metadata(client, "https://auth.example.com/tenant1")

        assert document == {"issuer": "https://auth.example.com/tenant1"}
        assert requested == [
            "/.well-known/oauth-authorization-server/tenant1",
            "/.well-known/openid-configuration/tenant1",
        ]

    @pytest.mark.anyio
    async def test_nothing_found(self):
        async with mock_client(lambda request: httpx.Response(404)) as client:
            assert await discover_authorization_server_metadata(client, "https://auth.example.com") is None

    @pytest.mark.anyio
    async def test_not_json(self):
        async with mock_client(lambda request: httpx.Response(200, text="<html></html>")) as client:
            with pytest.raises(OAuthMetadataError, match="not valid JSON"):
                await discover_authorization_server_metadata(client, "https://auth.example.com")

    @pytest.mark.anyio
    async def test_not_an_object(self):
        async with mock_client(lambda request: httpx.Response(200, json=["https://auth.example.com"])) as client:
            with pytest.raises(OAuthMetadataError, match="not a JSON object"):
                await discover_authorization_server_metadata(client, "https://auth.example.com")


class TestDiscoverScopes:
    @pytest.mark.anyio
    async def test_resource_scopes_win(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        metadata = ProtectedResourceMetadata(
            resource=AnyHttpUrl("https://api.example.com/"), scopes_supported=["a", "b"]
        )
        async with mock_client(handler) as client:
            assert await discover_scopes(client, "https://api.example.com/", metadata) == "a b"

    @pytest.mark.anyio
    async def test_authorization_server_scopes(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "auth.example.com"
            return httpx.Response(
                200,
                json={
                    "issuer": "https://auth.example.com",
                    "authorization_endpoint": "https://auth.example.com/authorize",
                    "token_endpoint": "https://auth.example.com/token",
                    "scopes_supported": ["read", "write"],
                },
            )

        metadata = ProtectedResourceMetadata(
            resource=AnyHttpUrl("https://api.example.com/"),
            authorization_servers=[AnyHttpUrl("https://auth.example.com")],
        )
        async with mock_client(handler) as client:
            assert await discover_scopes(client, "https://api.example.com/", metadata) == "read write"

    @pytest.mark.anyio
    async def test_failures_are_ignored(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with mock_client(handler) as client:
            assert await discover_scopes(client, "https://api.example.com/") is None


class TestStartAuthorization:
    def test_authorization_url(self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull):
        request = start_authorization(
            "https://api.example.com/v1/mcp",
            metadata=oauth_metadata,
            client_information=public_client,
            redirect_url=REDIRECT_URL,
            scope="read offline_access",
            state="state-1",
            resource=AnyHttpUrl("https://api.example.com/v1/mcp"),
        )

        parsed = urlparse(request.authorization_url)
        assert parsed.path == "/authorize"
        params = {key: values[0] for key, values in parse_qs(parsed.query).items()}
        digest = hashlib.sha256(request.code_verifier.encode()).digest()
        assert params == {
            "response_type": "code",
            "client_id": "test_client",
            "code_challenge": base64.urlsafe_b64encode(digest).decode().rstrip("="),
            "code_challenge_method": "S256",
            "redirect_uri": REDIRECT_URL,
            "state": "state-1",
            "scope": "read offline_access",
            "prompt": "consent",
            "resource": "https://api.example.com/v1/mcp",
        }

    def test_optional_parameters_omitted(self, public_client: OAuthClientInformationFull):
        request = start_authorization(
            "https://api.example.com/v1/mcp", metadata=None, client_information=public_client, redirect_url=REDIRECT_URL
        )

        assert request.authorization_url.startswith("https://api.example.com/authorize?")
        params = parse_qs(urlparse(request.authorization_url).query)
        assert set(params) == {"response_type", "client_id", "code_challenge", "code_challenge_method", "redirect_uri"}

    def test_endpoint_with_query(self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull):
        metadata = oauth_metadata.model_copy(
            update={"authorization_endpoint": AnyHttpUrl("https://auth.example.com/authorize?tenant=1")}
        )
        request = start_authorization(
            "https://api.example.com/", metadata=metadata, client_information=public_client, redirect_url=REDIRECT_URL
        )

        assert request.authorization_url.startswith("https://auth.example.com/authorize?tenant=1&response_type=code")

    def test_code_response_type_required(
        self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull
    ):
        metadata = oauth_metadata.model_copy(update={"response_types_supported": ["token"]})
        with pytest.raises(OAuthFlowError, match="response type code"):
            start_authorization(
                "https://api.example.com/",
                metadata=metadata,
                client_information=public_client,
                redirect_url=REDIRECT_URL,
            )

    def test_s256_required(self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull):
        metadata = oauth_metadata.model_copy(update={"code_challenge_methods_supported": ["plain"]})
        with pytest.raises(OAuthFlowError, match="S256"):
            start_authorization(
                "https://api.example.com/",
                metadata=metadata,
                client_information=public_client,
                redirect_url=REDIRECT_URL,
            )

    def test_client_id_required(self, oauth_metadata: OAuthMetadata):
        client = OAuthClientInformationFull(redirect_uris=[AnyUrl(REDIRECT_URL)])
        with pytest.raises(OAuthFlowError, match="client_id"):
            start_authorization(
                "https://api.example.com/",
                metadata=oauth_metadata,
                client_information=client,
                redirect_url=REDIRECT_URL,
            )


class TestClientAuthMethod:
    @pytest.mark.parametrize(
        "registered,has_secret,supported,expected",
        [
            ("none", False, None, "none"),
            ("client_secret_post", True, None, "client_secret_post"),
            ("client_secret_basic", True, ["client_secret_basic", "client_secret_post"], "client_secret_basic"),
            ("client_secret_post", True, ["client_secret_basic"], "client_secret_basic"),
            ("client_secret_basic", True, ["client_secret_post"], "client_secret_post"),
            ("client_secret_post", False, ["client_secret_post", "none"], "none"),
            ("none", False, ["private_key_jwt"], "none"),
        ],
    )
    def test_selection(
        self,
        oauth_metadata: OAuthMetadata,
        registered: str,
        has_secret: bool,
        supported: list[str] | None,
        expected: str,
    ):
        client = OAuthClientInformationFull.model_validate(
            {
                "client_id": "test_client",
                "client_secret": "s3cret" if has_secret else None,
                "redirect_uris": [REDIRECT_URL],
                "token_endpoint_auth_method": registered,
            }
        )
        metadata = oauth_metadata.model_copy(update={"token_endpoint_auth_methods_supported": supported})

        assert select_client_auth_method(client, metadata) == expected


class TestRegisterClient:
    @pytest.mark.anyio
    async def test_register(self, oauth_metadata: OAuthMetadata):
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == "https://auth.example.com/register"
            body = json.loads(request.content)
            return httpx.Response(201, json={**body, "client_id": "new_client"})

        client_metadata = OAuthClientMetadata(redirect_uris=[AnyUrl(REDIRECT_URL)], scope="read")
        async with mock_client(handler) as client:
            info = await register_client(
                client, "https://api.example.com/", metadata=oauth_metadata, client_metadata=client_metadata
            )

        assert info.client_id == "new_client"
        assert info.scope == "read"

    @pytest.mark.anyio
    async def test_register_without_metadata_uses_origin(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert str(request.url) == "https://api.example.com/register"
            return httpx.Response(200, json={"client_id": "new_client", "redirect_uris": [REDIRECT_URL]})

        client_metadata = OAuthClientMetadata(redirect_uris=[AnyUrl(REDIRECT_URL)])
        async with mock_client(handler) as client:
            info = await register_client(
                client, "https://api.example.com/v1/mcp", metadata=None, client_metadata=client_metadata
            )

        assert info.client_id == "new_client"

    @pytest.mark.anyio
    async def test_registration_rejected(self, oauth_metadata: OAuthMetadata):
        client_metadata = OAuthClientMetadata(redirect_uris=[AnyUrl(REDIRECT_URL)])
        async with mock_client(lambda request: httpx.Response(400, text="bad redirect_uri")) as client:
            with pytest.raises(OAuthRegistrationError) as exc_info:
                await register_client(
                    client, "https://api.example.com/", metadata=oauth_metadata, client_metadata=client_metadata
                )

        assert str(exc_info.value) == snapshot("Registration failed: 400 bad redirect_uri")

    @pytest.mark.anyio
    async def test_invalid_registration_response(self, oauth_metadata: OAuthMetadata):
        client_metadata = OAuthClientMetadata(redirect_uris=[AnyUrl(REDIRECT_URL)])
        async with mock_client(lambda request: httpx.Response(201, json={"client_id": "x"})) as client:
            with pytest.raises(OAuthRegistrationError, match="Invalid registration response"):
                await register_client(
                    client, "https://api.example.com/", metadata=oauth_metadata, client_metadata=client_metadata
                )


class TestExchangeAuthorization:
    @pytest.fixture
    def token_requests(self) -> list[httpx.Request]:
        return []

    @pytest.fixture
    def token_client(self, token_requests: list[httpx.Request]):
        def handler(request: httpx.Request) -> httpx.Response:
            token_requests.append(request)
            return httpx.Response(200, json={"access_token": "new_access_token", "token_type": "Bearer"})

        return mock_client(handler)

    async def exchange(
        self,
        client: httpx.AsyncClient,
        metadata: OAuthMetadata | None,
        client_information: OAuthClientInformationFull,
    ):
        async with client:
            return await exchange_authorization(
                client,
                "https://api.example.com/v1/mcp",
                metadata=metadata,
                client_information=client_information,
                authorization_code="test_auth_code",
                code_verifier="test_verifier",
                redirect_uri=REDIRECT_URL,
                resource="https://api.example.com/v1/mcp",
            )

    @pytest.mark.anyio
    async def test_public_client(
        self,
        token_client: httpx.AsyncClient,
        token_requests: list[httpx.Request],
        oauth_metadata: OAuthMetadata,
        public_client: OAuthClientInformationFull,
    ):
        tokens = await self.exchange(token_client, oauth_metadata, public_client)

        assert tokens.access_token == "new_access_token"
        request = token_requests[0]
        assert str(request.url) == "https://auth.example.com/token"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert request.headers["Accept"] == "application/json"
        assert "Authorization" not in request.headers
        assert dict(parse_qsl(request.content.decode())) == snapshot(
            {
                "grant_type": "authorization_code",
                "code": "test_auth_code",
                "code_verifier": "test_verifier",
                "redirect_uri": "http://localhost:3030/callback",
                "resource": "https://api.example.com/v1/mcp",
                "client_id": "test_client",
            }
        )

    @pytest.mark.anyio
    async def test_client_secret_basic(
        self,
        token_client: httpx.AsyncClient,
        token_requests: list[httpx.Request],
        oauth_metadata: OAuthMetadata,
        confidential_client: OAuthClientInformationFull,
    ):
        metadata = oauth_metadata.model_copy(update={"token_endpoint_auth_methods_supported": ["client_secret_basic"]})

        await self.exchange(token_client, metadata, confidential_client)

        request = token_requests[0]
        credentials = base64.b64decode(request.headers["Authorization"].removeprefix("Basic ")).decode()
        assert credentials == "test%20client:s3cret%3A%21"
        form = dict(parse_qsl(request.content.decode()))
        assert "client_id" not in form
        assert "client_secret" not in form

    @pytest.mark.anyio
    async def test_client_secret_post(
        self,
        token_client: httpx.AsyncClient,
        token_requests: list[httpx.Request],
        oauth_metadata: OAuthMetadata,
        confidential_client: OAuthClientInformationFull,
    ):
        metadata = oauth_metadata.model_copy(update={"token_endpoint_auth_methods_supported": ["client_secret_post"]})

        await self.exchange(token_client, metadata, confidential_client)

        form = dict(parse_qsl(token_requests[0].content.decode()))
        assert form["client_id"] == "test client"
        assert form["client_secret"] == "s3cret:!"
        assert "Authorization" not in token_requests[0].headers

    @pytest.mark.anyio
    async def test_default_token_endpoint(
        self,
        token_client: httpx.AsyncClient,
        token_requests: list[httpx.Request],
        public_client: OAuthClientInformationFull,
    ):
        await self.exchange(token_client, None, public_client)

        assert str(token_requests[0].url) == "https://api.example.com/token"

    @pytest.mark.anyio
    async def test_oauth_error_response(self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull):
        client = mock_client(
            lambda request: httpx.Response(400, json={"error": "invalid_grant", "error_description": "Code expired"})
        )

        with pytest.raises(OAuthTokenError) as exc_info:
            await self.exchange(client, oauth_metadata, public_client)

        assert str(exc_info.value) == snapshot("Token exchange failed: invalid_grant (Code expired)")
        assert exc_info.value.error == "invalid_grant"
        assert exc_info.value.error_description == "Code expired"

    @pytest.mark.anyio
    async def test_unstructured_error_response(
        self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull
    ):
        client = mock_client(lambda request: httpx.Response(502, text="Bad Gateway"))

        with pytest.raises(OAuthTokenError) as exc_info:
            await self.exchange(client, oauth_metadata, public_client)

        assert str(exc_info.value) == snapshot("Token exchange failed: 502 Bad Gateway")
        assert exc_info.value.error is None

    @pytest.mark.anyio
    async def test_invalid_token_response(
        self, oauth_metadata: OAuthMetadata, public_client: OAuthClientInformationFull
    ):
        client = mock_client(lambda request: httpx.Response(200, json={"token_type": "Bearer"}))

        with pytest.raises(OAuthTokenError, match="Invalid token response"):
            await self.exchange(client, oauth_metadata, public_client)

    @pytest.mark.anyio
    async def test_grant_type_unsupported(
        self,
        token_client: httpx.AsyncClient,
        token_requests: list[httpx.Request],
        oauth_metadata: OAuthMetadata,
        public_client: OAuthClientInformationFull,
    ):
        metadata = oauth_metadata.model_copy(update={"grant_types_supported": ["client_credentials"]})

        with pytest.raises(OAuthTokenError, match="authorization_code"):
            await self.exchange(token_client, metadata, public_client)

        assert token_requests == []
