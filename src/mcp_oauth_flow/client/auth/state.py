"""
Flow state for the step-by-step OAuth authorization flow.

Each executed step produces a new immutable snapshot; the caller owns the
snapshots and decides when to execute the next step.
"""

from enum import Enum
from typing import Annotated, Any

from pydantic import AnyHttpUrl, BaseModel, ConfigDict, PlainSerializer, PlainValidator

from mcp_oauth_flow.client.auth.exceptions import ProtectedResourceMetadataError
from mcp_oauth_flow.shared.auth import (
    OAuthClientInformationFull,
    OAuthMetadata,
    OAuthToken,
    ProtectedResourceMetadata,
)


class OAuthStep(str, Enum):
    """Steps of the authorization flow, in execution order."""

    PRM_DISCOVERY = "prm_discovery"
    OAUTH_METADATA_DISCOVERY = "oauth_metadata_discovery"
    CLIENT_REGISTRATION = "client_registration"
    AUTHORIZATION_REDIRECT = "authorization_redirect"
    AUTHORIZATION_CODE = "authorization_code"
    TOKEN_REQUEST = "token_request"
    COMPLETE = "complete"


def _as_error(value: Any) -> Exception | None:
    # Persisted snapshots only keep the message
    if value is None or isinstance(value, Exception):
        return value
    if isinstance(value, str):
        return ProtectedResourceMetadataError(value)
    raise ValueError(f"Expected an exception or an error message, got {type(value).__name__}")


def _error_message(error: Exception | None) -> str | None:
    return None if error is None else str(error)


CapturedError = Annotated[
    Exception | None,
    PlainValidator(_as_error),
    PlainSerializer(_error_message, return_type=str | None),
]


class AuthDebuggerState(BaseModel):
    """Snapshot of everything the flow has accumulated so far."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    oauth_step: OAuthStep = OAuthStep.PRM_DISCOVERY

    # Protected resource discovery; at most one of these is meaningful per attempt
    resource_metadata: ProtectedResourceMetadata | None = None
    resource_metadata_error: CapturedError = None
    resource: AnyHttpUrl | None = None

    auth_server_url: AnyHttpUrl | None = None
    oauth_metadata: OAuthMetadata | None = None
    oauth_client_info: OAuthClientInformationFull | None = None

    # Produced for the caller to navigate to; the code comes back from the caller
    authorization_url: str | None = None
    authorization_code: str | None = None
    validation_error: str | None = None

    oauth_tokens: OAuthToken | None = None

    @property
    def is_complete(self) -> bool:
        return self.oauth_step == OAuthStep.COMPLETE

    def with_authorization_code(self, authorization_code: str | None) -> "AuthDebuggerState":
        """Return a copy carrying the code captured after the user came back."""
        return self.model_copy(update={"authorization_code": authorization_code})
