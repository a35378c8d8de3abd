from mcp_oauth_flow.client.auth import (
    AuthDebuggerState,
    DebugOAuthClientProvider,
    FileCredentialStorage,
    InMemoryCredentialStorage,
    OAuthFlowError,
    OAuthStateMachine,
    OAuthStep,
)
from mcp_oauth_flow.settings import OAuthFlowSettings

__all__ = [
    "AuthDebuggerState",
    "DebugOAuthClientProvider",
    "FileCredentialStorage",
    "InMemoryCredentialStorage",
    "OAuthFlowError",
    "OAuthFlowSettings",
    "OAuthStateMachine",
    "OAuthStep",
]
