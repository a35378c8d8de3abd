import logging
from typing import Any

from pydantic import AnyHttpUrl, AnyUrl

from mcp_oauth_flow.client.auth.exceptions import OAuthFlowError
from mcp_oauth_flow.client.auth.storage import CredentialStorage, StoredCredentials
from mcp_oauth_flow.settings import OAuthFlowSettings
from mcp_oauth_flow.shared.auth import OAuthClientInformationFull, OAuthClientMetadata, OAuthMetadata, OAuthToken

logger = logging.getLogger(__name__)


class DebugOAuthClientProvider:
    """
    Credential provider bound to a single MCP server URL.

    Reads and writes go straight to the underlying storage so that nothing
    needed after the authorization redirect lives only in memory.
    """

    def __init__(
        self,
        server_url: str,
        storage: CredentialStorage,
        settings: OAuthFlowSettings | None = None,
    ):
        self.server_url = server_url
        self.storage = storage
        self.settings = settings or OAuthFlowSettings()

    @property
    def redirect_url(self) -> str:
        return self.settings.redirect_url

    @property
    def configured_resource(self) -> AnyHttpUrl | None:
        return self.settings.resource

    @property
    def client_metadata(self) -> OAuthClientMetadata:
        """Registration template for this client; a new copy on every access."""
        return OAuthClientMetadata(
            redirect_uris=[AnyUrl(self.redirect_url)],
            token_endpoint_auth_method="none",
            grant_types=["authorization_code", "refresh_token"],
            response_types=["code"],
            client_name=self.settings.client_name,
            client_uri=self.settings.client_uri,
        )

    async def _load(self) -> StoredCredentials:
        return await self.storage.load(self.server_url)

    async def _update(self, **changes: Any) -> None:
        credentials = await self._load()
        await self.storage.save(self.server_url, credentials.model_copy(update=changes))

    async def save_server_metadata(self, metadata: OAuthMetadata) -> None:
        await self._update(server_metadata=metadata)

    async def get_server_metadata(self) -> OAuthMetadata | None:
        return (await self._load()).server_metadata

    async def client_information(self) -> OAuthClientInformationFull | None:
        """Pre-provisioned client information if any, else the registered one."""
        credentials = await self._load()
        if credentials.static_client_information is not None:
            return credentials.static_client_information
        return credentials.client_information

    async def save_client_information(self, client_information: OAuthClientInformationFull) -> None:
        await self._update(client_information=client_information)

    async def save_static_client_information(self, client_information: OAuthClientInformationFull) -> None:
        await self._update(static_client_information=client_information)

    async def save_code_verifier(self, code_verifier: str) -> None:
        await self._update(code_verifier=code_verifier)

    async def code_verifier(self) -> str:
        code_verifier = (await self._load()).code_verifier
        if not code_verifier:
            raise OAuthFlowError("No code verifier saved")
        return code_verifier

    async def save_tokens(self, tokens: OAuthToken) -> None:
        await self._update(tokens=tokens)

    async def tokens(self) -> OAuthToken | None:
        return (await self._load()).tokens

    async def clear(self) -> None:
        logger.debug(f"Clearing stored credentials for {self.server_url}")
        await self.storage.clear(self.server_url)
