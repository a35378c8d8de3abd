from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mcp_oauth_flow.client.auth.state import OAuthStep


class OAuthFlowError(Exception):
    """Base exception for OAuth flow errors."""


class OAuthStateTransitionError(OAuthFlowError):
    """Raised when a step is executed while its precondition does not hold.

    The terminal ``complete`` step always raises this error.
    """

    def __init__(self, step: OAuthStep):
        super().__init__(f"Cannot transition from {step.value}")
        self.step = step


class ProtectedResourceMetadataError(OAuthFlowError):
    """Raised when protected resource metadata cannot be discovered.

    The flow captures this error instead of failing, since the metadata is optional.
    """


class OAuthMetadataError(OAuthFlowError):
    """Raised when authorization server metadata is missing or malformed."""


class OAuthRegistrationError(OAuthFlowError):
    """Raised when client registration fails."""


class AuthorizationCodeValidationError(OAuthFlowError):
    """Raised when the authorization code supplied by the user is blank."""


class OAuthTokenError(OAuthFlowError):
    """Raised when token operations fail."""

    def __init__(self, message: str, error: str | None = None, error_description: str | None = None):
        super().__init__(message)
        self.error = error
        self.error_description = error_description
