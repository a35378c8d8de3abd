"""
Step-by-step OAuth 2.0 authorization for MCP servers.

Implements discovery, client registration and the authorization code flow with
PKCE as a resumable sequence of steps.
"""

from mcp_oauth_flow.client.auth.exceptions import (
    AuthorizationCodeValidationError,
    OAuthFlowError,
    OAuthMetadataError,
    OAuthRegistrationError,
    OAuthStateTransitionError,
    OAuthTokenError,
    ProtectedResourceMetadataError,
)
from mcp_oauth_flow.client.auth.provider import DebugOAuthClientProvider
from mcp_oauth_flow.client.auth.state import AuthDebuggerState, OAuthStep
from mcp_oauth_flow.client.auth.state_machine import (
    OAUTH_TRANSITIONS,
    OAuthStateMachine,
    OAuthTransition,
    StateMachineContext,
)
from mcp_oauth_flow.client.auth.storage import (
    CredentialStorage,
    FileCredentialStorage,
    FileFlowStateStore,
    InMemoryCredentialStorage,
    StoredCredentials,
)
from mcp_oauth_flow.client.auth.utils import PKCEParameters

__all__ = [
    "OAUTH_TRANSITIONS",
    "AuthDebuggerState",
    "AuthorizationCodeValidationError",
    "CredentialStorage",
    "DebugOAuthClientProvider",
    "FileCredentialStorage",
    "FileFlowStateStore",
    "InMemoryCredentialStorage",
    "OAuthFlowError",
    "OAuthMetadataError",
    "OAuthRegistrationError",
    "OAuthStateMachine",
    "OAuthStateTransitionError",
    "OAuthStep",
    "OAuthTokenError",
    "OAuthTransition",
    "PKCEParameters",
    "ProtectedResourceMetadataError",
    "StateMachineContext",
    "StoredCredentials",
]
