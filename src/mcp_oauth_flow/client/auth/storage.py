"""
Durable storage for credentials gathered during the OAuth flow.

Everything the flow needs after the browser round trip (server metadata,
client information, the PKCE code verifier) goes through a CredentialStorage,
keyed by the MCP server URL.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Protocol

import anyio
from pydantic import BaseModel, ValidationError

from mcp_oauth_flow.client.auth.state import AuthDebuggerState
from mcp_oauth_flow.shared.auth import OAuthClientInformationFull, OAuthMetadata, OAuthToken

logger = logging.getLogger(__name__)


class StoredCredentials(BaseModel):
    """Everything persisted for a single server URL."""

    server_metadata: OAuthMetadata | None = None
    # Dynamically registered client
    client_information: OAuthClientInformationFull | None = None
    # Pre-provisioned client, takes precedence over the registered one
    static_client_information: OAuthClientInformationFull | None = None
    code_verifier: str | None = None
    tokens: OAuthToken | None = None


class CredentialStorage(Protocol):
    """Protocol for credential storage implementations."""

    async def load(self, server_url: str) -> StoredCredentials:
        """Load credentials for a server, empty if nothing was stored."""
        ...

    async def save(self, server_url: str, credentials: StoredCredentials) -> None:
        """Store credentials for a server, replacing what was there."""
        ...

    async def clear(self, server_url: str) -> None:
        """Forget everything stored for a server."""
        ...


class InMemoryCredentialStorage:
    """Credential storage that lives as long as the process."""

    def __init__(self) -> None:
        self._entries: dict[str, StoredCredentials] = {}

    async def load(self, server_url: str) -> StoredCredentials:
        entry = self._entries.get(server_url)
        if entry is None:
            return StoredCredentials()
        return entry.model_copy(deep=True)

    async def save(self, server_url: str, credentials: StoredCredentials) -> None:
        self._entries[server_url] = credentials.model_copy(deep=True)

    async def clear(self, server_url: str) -> None:
        self._entries.pop(server_url, None)


def _file_name(server_url: str, suffix: str) -> str:
    digest = hashlib.sha256(server_url.encode("utf-8")).hexdigest()
    return f"{digest}{suffix}"


async def _write_private(path: anyio.Path, text: str) -> None:
    """Write a file atomically, readable by the owner only."""
    await path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        await tmp_path.touch(mode=0o600)
        await tmp_path.chmod(0o600)
        await tmp_path.write_text(text, encoding="utf-8")
        await tmp_path.replace(path)
    except BaseException:
        await tmp_path.unlink(missing_ok=True)
        raise


class FileCredentialStorage:
    """
    Credential storage backed by one JSON file per server URL.

    Survives process restarts, so the flow can be resumed by a new process
    after the user comes back from the authorization server.
    """

    def __init__(self, directory: Path):
        self.directory = directory

    def path_for(self, server_url: str) -> Path:
        return self.directory / _file_name(server_url, ".credentials.json")

    async def load(self, server_url: str) -> StoredCredentials:
        path = anyio.Path(self.path_for(server_url))
        if not await path.is_file():
            return StoredCredentials()
        try:
            return StoredCredentials.model_validate_json(await path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"Ignoring unreadable credentials file {path}: {e}")
            return StoredCredentials()

    async def save(self, server_url: str, credentials: StoredCredentials) -> None:
        path = anyio.Path(self.path_for(server_url))
        await _write_private(path, credentials.model_dump_json(indent=2, exclude_none=True))
        logger.debug(f"Saved credentials for {server_url} to {path}")

    async def clear(self, server_url: str) -> None:
        await anyio.Path(self.path_for(server_url)).unlink(missing_ok=True)


class FileFlowStateStore:
    """Persists flow state snapshots between invocations of the command line driver."""

    def __init__(self, directory: Path):
        self.directory = directory

    def path_for(self, server_url: str) -> Path:
        return self.directory / _file_name(server_url, ".flow.json")

    async def load(self, server_url: str) -> AuthDebuggerState:
        path = anyio.Path(self.path_for(server_url))
        if not await path.is_file():
            return AuthDebuggerState()
        try:
            return AuthDebuggerState.model_validate_json(await path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            logger.warning(f"Starting over, flow state file {path} is unreadable: {e}")
            return AuthDebuggerState()

    async def save(self, server_url: str, state: AuthDebuggerState) -> None:
        await _write_private(anyio.Path(self.path_for(server_url)), state.model_dump_json(indent=2))

    async def clear(self, server_url: str) -> None:
        await anyio.Path(self.path_for(server_url)).unlink(missing_ok=True)
