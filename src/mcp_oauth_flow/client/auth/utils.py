"""
OAuth protocol operations used by the flow's steps.

Every network operation takes the httpx.AsyncClient to send requests with, so
callers control transports, timeouts and connection reuse.
"""

import base64
import hashlib
import logging
import secrets
import string
from typing import TYPE_CHECKING, Any, Literal
from urllib.parse import quote, urlencode, urljoin, urlparse, urlsplit, urlunsplit

import httpx
from pydantic import AnyHttpUrl, BaseModel, Field, ValidationError

from mcp_oauth_flow.client.auth.exceptions import (
    OAuthFlowError,
    OAuthMetadataError,
    OAuthRegistrationError,
    OAuthTokenError,
    ProtectedResourceMetadataError,
)
from mcp_oauth_flow.settings import LATEST_PROTOCOL_VERSION
from mcp_oauth_flow.shared.auth import (
    OAuthClientInformationFull,
    OAuthClientMetadata,
    OAuthErrorResponse,
    OAuthMetadata,
    OAuthToken,
    ProtectedResourceMetadata,
)

if TYPE_CHECKING:
    from mcp_oauth_flow.client.auth.provider import DebugOAuthClientProvider

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "MCP-Protocol-Version"

ClientAuthMethod = Literal["none", "client_secret_post", "client_secret_basic"]


class PKCEParameters(BaseModel):
    """PKCE (Proof Key for Code Exchange) parameters."""

    code_verifier: str = Field(..., min_length=43, max_length=128)
    code_challenge: str = Field(..., min_length=43, max_length=128)

    @classmethod
    def generate(cls) -> "PKCEParameters":
        """Generate new PKCE parameters."""
        code_verifier = "".join(secrets.choice(string.ascii_letters + string.digits + "-._~") for _ in range(128))
        digest = hashlib.sha256(code_verifier.encode()).digest()
        code_challenge = base64.urlsafe_b64encode(digest).decode().rstrip("=")
        return cls(code_verifier=code_verifier, code_challenge=code_challenge)


class AuthorizationRequest(BaseModel):
    """Where to send the user, and the verifier to present at the token endpoint."""

    authorization_url: str
    code_verifier: str


def generate_oauth_state() -> str:
    """Generate an unguessable state value for a single authorization attempt."""
    return secrets.token_hex(32)


def get_authorization_base_url(server_url: str) -> str:
    """Extract the origin by removing path, query and fragment."""
    parsed = urlparse(server_url)
    return f"{parsed.scheme}://{parsed.netloc}"


def resource_url_from_server_url(url: str) -> str:
    """Convert a server URL to its canonical resource identifier (RFC 8707)."""
    parsed = urlsplit(url)
    return urlunsplit((parsed.scheme.lower(), parsed.netloc.lower(), parsed.path, parsed.query, ""))


def check_resource_allowed(requested_resource: str, configured_resource: str) -> bool:
    """Check whether a requested resource is covered by a configured one.

    Same scheme and host are required, and the configured path must be a
    prefix of the requested path on a segment boundary.
    """
    requested = urlparse(requested_resource)
    configured = urlparse(configured_resource)

    if requested.scheme.lower() != configured.scheme.lower() or requested.netloc.lower() != configured.netloc.lower():
        return False

    requested_path = requested.path or "/"
    configured_path = configured.path or "/"
    if not requested_path.endswith("/"):
        requested_path += "/"
    if not configured_path.endswith("/"):
        configured_path += "/"
    return requested_path.startswith(configured_path)


def build_protected_resource_metadata_discovery_urls(server_url: str) -> list[str]:
    """Build the ordered list of URLs to try for protected resource metadata (RFC 9728)."""
    parsed = urlparse(server_url)
    base_url = f"{parsed.scheme}://{parsed.netloc}"
    urls: list[str] = []

    if parsed.path and parsed.path != "/":
        urls.append(urljoin(base_url, f"/.well-known/oauth-protected-resource{parsed.path.rstrip('/')}"))

    urls.append(urljoin(base_url, "/.well-known/oauth-protected-resource"))
    return urls


def build_authorization_server_metadata_discovery_urls(auth_server_url: str) -> list[str]:
    """
    Build the ordered list of URLs to try for authorization server metadata.

    Path-aware RFC 8414 and OpenID Connect locations come first when the
    authorization server URL has a path; root locations otherwise.
    """
    parsed = urlparse(auth_server_url)
    base_url = f"{parsed.scheme}://{parsed.netloc}"
    path = parsed.path.rstrip("/")

    if not path:
        return [
            urljoin(base_url, "/.well-known/oauth-authorization-server"),
            urljoin(base_url, "/.well-known/openid-configuration"),
        ]

    return [
        urljoin(base_url, f"/.well-known/oauth-authorization-server{path}"),
        urljoin(base_url, f"/.well-known/openid-configuration{path}"),
        urljoin(base_url, f"{path}/.well-known/openid-configuration"),
    ]


async def discover_protected_resource_metadata(
    client: httpx.AsyncClient,
    server_url: str,
    protocol_version: str = LATEST_PROTOCOL_VERSION,
) -> ProtectedResourceMetadata:
    """
    Fetch protected resource metadata for an MCP server.

    Raises:
        ProtectedResourceMetadataError: the server publishes no usable metadata
        httpx.HTTPError: the server could not be reached
    """
    for url in build_protected_resource_metadata_discovery_urls(server_url):
        logger.debug(f"Trying protected resource metadata at {url}")
        response = await client.get(url, headers={MCP_PROTOCOL_VERSION: protocol_version})

        if 400 <= response.status_code < 500:
            continue
        if response.status_code != 200:
            raise ProtectedResourceMetadataError(
                f"HTTP {response.status_code} trying to load protected resource metadata from {url}"
            )

        try:
            return ProtectedResourceMetadata.model_validate_json(response.content)
        except ValidationError as e:
            raise ProtectedResourceMetadataError(f"Invalid protected resource metadata from {url}: {e}") from e

    raise ProtectedResourceMetadataError("Resource server does not implement OAuth 2.0 Protected Resource Metadata.")


async def select_resource_url(
    server_url: str,
    provider: "DebugOAuthClientProvider",
    resource_metadata: ProtectedResourceMetadata | None = None,
) -> AnyHttpUrl | None:
    """
    Pick the resource indicator to send with authorization and token requests.

    A resource configured on the provider wins. Otherwise the resource comes
    from protected resource metadata, which must cover the server URL.
    """
    configured = provider.configured_resource
    if configured is not None:
        return configured

    if resource_metadata is None:
        return None

    default_resource = resource_url_from_server_url(server_url)
    prm_resource = str(resource_metadata.resource)
    if not check_resource_allowed(requested_resource=default_resource, configured_resource=prm_resource):
        raise OAuthFlowError(
            f"Protected resource {resource_metadata.resource} does not match expected {default_resource} "
            "(or origin)"
        )
    return resource_metadata.resource


async def discover_authorization_server_metadata(
    client: httpx.AsyncClient,
    auth_server_url: str,
    protocol_version: str = LATEST_PROTOCOL_VERSION,
) -> dict[str, Any] | None:
    """
    Fetch raw authorization server metadata, trying each well-known location in turn.

    Returns None when no location serves metadata; the caller validates the document.
    """
    for url in build_authorization_server_metadata_discovery_urls(auth_server_url):
        logger.debug(f"Trying authorization server metadata at {url}")
        response = await client.get(url, headers={MCP_PROTOCOL_VERSION: protocol_version, "Accept": "application/json"})

        if 400 <= response.status_code < 500:
            continue
        if response.status_code != 200:
            raise OAuthMetadataError(f"HTTP {response.status_code} trying to load OAuth metadata from {url}")

        try:
            document = response.json()
        except ValueError as e:
            raise OAuthMetadataError(f"OAuth metadata from {url} is not valid JSON") from e
        if not isinstance(document, dict):
            raise OAuthMetadataError(f"OAuth metadata from {url} is not a JSON object")
        return document

    return None


async def register_client(
    client: httpx.AsyncClient,
    server_url: str,
    *,
    metadata: OAuthMetadata | None,
    client_metadata: OAuthClientMetadata,
) -> OAuthClientInformationFull:
    """Register a client dynamically (RFC 7591)."""
    if metadata is not None:
        if metadata.registration_endpoint is None:
            raise OAuthRegistrationError("Incompatible auth server: does not support dynamic client registration")
        registration_url = str(metadata.registration_endpoint)
    else:
        registration_url = urljoin(get_authorization_base_url(server_url), "/register")

    registration_data = client_metadata.model_dump(by_alias=True, mode="json", exclude_none=True)
    logger.debug(f"Registering client at {registration_url}")
    response = await client.post(registration_url, json=registration_data)

    if response.status_code not in (200, 201):
        await response.aread()
        raise OAuthRegistrationError(f"Registration failed: {response.status_code} {response.text}")

    try:
        return OAuthClientInformationFull.model_validate_json(response.content)
    except ValidationError as e:
        raise OAuthRegistrationError(f"Invalid registration response: {e}") from e


async def discover_scopes(
    client: httpx.AsyncClient,
    server_url: str,
    resource_metadata: ProtectedResourceMetadata | None = None,
    protocol_version: str = LATEST_PROTOCOL_VERSION,
) -> str | None:
    """
    Work out the scope to request in the authorization URL.

    Scopes advertised by the protected resource win over the authorization
    server's. Best effort: when nothing can be discovered no scope is requested.
    """
    if resource_metadata is not None and resource_metadata.scopes_supported:
        return " ".join(resource_metadata.scopes_supported)

    if resource_metadata is not None and resource_metadata.authorization_servers:
        auth_server_url = str(resource_metadata.authorization_servers[0])
    else:
        auth_server_url = get_authorization_base_url(server_url)

    try:
        document = await discover_authorization_server_metadata(client, auth_server_url, protocol_version)
        metadata = OAuthMetadata.model_validate(document) if document is not None else None
    except (OAuthFlowError, ValidationError, httpx.HTTPError) as e:
        logger.debug(f"OAuth scope discovery failed: {e}")
        return None

    if metadata is not None and metadata.scopes_supported:
        return " ".join(metadata.scopes_supported)
    return None


def start_authorization(
    server_url: str,
    *,
    metadata: OAuthMetadata | None,
    client_information: OAuthClientInformationFull,
    redirect_url: str,
    scope: str | None = None,
    state: str | None = None,
    resource: AnyHttpUrl | str | None = None,
) -> AuthorizationRequest:
    """Build the authorization URL for the authorization code grant with PKCE."""
    if metadata is not None:
        if "code" not in metadata.response_types_supported:
            raise OAuthFlowError("Incompatible auth server: does not support response type code")
        if (
            metadata.code_challenge_methods_supported is not None
            and "S256" not in metadata.code_challenge_methods_supported
        ):
            raise OAuthFlowError("Incompatible auth server: does not support code challenge method S256")
        auth_endpoint = str(metadata.authorization_endpoint)
    else:
        auth_endpoint = urljoin(get_authorization_base_url(server_url), "/authorize")

    if not client_information.client_id:
        raise OAuthFlowError("No client_id available for authorization")

    pkce_params = PKCEParameters.generate()
    auth_params = {
        "response_type": "code",
        "client_id": client_information.client_id,
        "code_challenge": pkce_params.code_challenge,
        "code_challenge_method": "S256",
        "redirect_uri": redirect_url,
    }
    if state:
        auth_params["state"] = state
    if scope:
        auth_params["scope"] = scope
        # Refresh tokens for offline access are only issued after explicit consent
        if "offline_access" in scope.split():
            auth_params["prompt"] = "consent"
    if resource:
        auth_params["resource"] = str(resource)

    separator = "&" if urlparse(auth_endpoint).query else "?"
    return AuthorizationRequest(
        authorization_url=f"{auth_endpoint}{separator}{urlencode(auth_params)}",
        code_verifier=pkce_params.code_verifier,
    )


def select_client_auth_method(
    client_information: OAuthClientInformationFull,
    metadata: OAuthMetadata | None,
) -> ClientAuthMethod:
    """Choose how to authenticate the client at the token endpoint."""
    has_secret = client_information.client_secret is not None
    supported = (metadata.token_endpoint_auth_methods_supported if metadata else None) or []

    if not supported:
        return "client_secret_post" if has_secret else "none"
    if client_information.token_endpoint_auth_method in supported and (
        has_secret or client_information.token_endpoint_auth_method == "none"
    ):
        return client_information.token_endpoint_auth_method
    if has_secret and "client_secret_basic" in supported:
        return "client_secret_basic"
    if has_secret and "client_secret_post" in supported:
        return "client_secret_post"
    if "none" in supported:
        return "none"
    return "client_secret_post" if has_secret else "none"


def _apply_client_authentication(
    method: ClientAuthMethod,
    client_information: OAuthClientInformationFull,
    headers: dict[str, str],
    data: dict[str, str],
) -> None:
    client_id = client_information.client_id or ""
    if method == "client_secret_basic" and client_information.client_secret is not None:
        credentials = f"{quote(client_id, safe='')}:{quote(client_information.client_secret, safe='')}"
        headers["Authorization"] = f"Basic {base64.b64encode(credentials.encode()).decode()}"
        return

    data["client_id"] = client_id
    if method == "client_secret_post" and client_information.client_secret is not None:
        data["client_secret"] = client_information.client_secret


async def _handle_token_response(response: httpx.Response) -> OAuthToken:
    await response.aread()
    if response.status_code != 200:
        try:
            error = OAuthErrorResponse.model_validate_json(response.content)
        except ValidationError:
            error = None
        if error is None:
            raise OAuthTokenError(f"Token exchange failed: {response.status_code} {response.text}")
        message = f"Token exchange failed: {error.error}"
        if error.error_description:
            message += f" ({error.error_description})"
        raise OAuthTokenError(message, error=error.error, error_description=error.error_description)

    try:
        return OAuthToken.model_validate_json(response.content)
    except ValidationError as e:
        raise OAuthTokenError(f"Invalid token response: {e}") from e


async def exchange_authorization(
    client: httpx.AsyncClient,
    server_url: str,
    *,
    metadata: OAuthMetadata | None,
    client_information: OAuthClientInformationFull,
    authorization_code: str,
    code_verifier: str,
    redirect_uri: str,
    resource: AnyHttpUrl | str | None = None,
) -> OAuthToken:
    """Exchange an authorization code for tokens."""
    if metadata is not None:
        if metadata.grant_types_supported is not None and "authorization_code" not in metadata.grant_types_supported:
            raise OAuthTokenError("Incompatible auth server: does not support grant type authorization_code")
        token_url = str(metadata.token_endpoint)
    else:
        token_url = urljoin(get_authorization_base_url(server_url), "/token")

    data = {
        "grant_type": "authorization_code",
        "code": authorization_code,
        "code_verifier": code_verifier,
        "redirect_uri": redirect_uri,
    }
    if resource:
        data["resource"] = str(resource)

    headers = {"Accept": "application/json"}
    auth_method = select_client_auth_method(client_information, metadata)
    _apply_client_authentication(auth_method, client_information, headers, data)

    logger.debug(f"Exchanging authorization code at {token_url}")
    response = await client.post(token_url, data=data, headers=headers)
    return await _handle_token_response(response)
