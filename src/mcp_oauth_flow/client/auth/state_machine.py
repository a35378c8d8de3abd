"""
Step-by-step OAuth authorization flow.

Each step of the flow is a transition: a guard saying whether the step may run
given the current state, and an action that performs the step and reports the
next state. OAuthStateMachine executes exactly one transition per call and keeps
nothing between calls, so the flow can be suspended while the user visits the
authorization server and resumed later, even from another process.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlparse

import httpx
from pydantic import AnyHttpUrl, ValidationError

from mcp_oauth_flow.client.auth.exceptions import (
    AuthorizationCodeValidationError,
    OAuthFlowError,
    OAuthMetadataError,
    OAuthStateTransitionError,
)
from mcp_oauth_flow.client.auth.provider import DebugOAuthClientProvider
from mcp_oauth_flow.client.auth.state import AuthDebuggerState, OAuthStep
from mcp_oauth_flow.client.auth.storage import CredentialStorage
from mcp_oauth_flow.client.auth.utils import (
    discover_authorization_server_metadata,
    discover_protected_resource_metadata,
    discover_scopes,
    exchange_authorization,
    generate_oauth_state,
    register_client,
    select_resource_url,
    start_authorization,
)
from mcp_oauth_flow.settings import OAuthFlowSettings
from mcp_oauth_flow.shared.auth import OAuthClientMetadata, OAuthMetadata, ProtectedResourceMetadata

logger = logging.getLogger(__name__)

UpdateStateCallback = Callable[[AuthDebuggerState], None]

AUTHORIZATION_CODE_REQUIRED = "You need to provide an authorization code"


@dataclass
class StateMachineContext:
    """Everything a single step needs to run."""

    state: AuthDebuggerState
    server_url: str
    provider: DebugOAuthClientProvider
    http_client: httpx.AsyncClient
    settings: OAuthFlowSettings
    on_update: UpdateStateCallback

    def update_state(self, **changes: Any) -> AuthDebuggerState:
        """Derive the next snapshot and report it to the caller."""
        self.state = self.state.model_copy(update=changes)
        self.on_update(self.state)
        return self.state


@dataclass(frozen=True)
class OAuthTransition:
    """Guard and action for one step."""

    can_transition: Callable[[StateMachineContext], Awaitable[bool]]
    execute: Callable[[StateMachineContext], Awaitable[None]]


def build_registration_metadata(
    client_metadata: OAuthClientMetadata,
    oauth_metadata: OAuthMetadata,
    resource_metadata: ProtectedResourceMetadata | None = None,
) -> OAuthClientMetadata:
    """
    Build the metadata to register the client with.

    Registers every supported scope, preferring the scopes advertised by the
    protected resource over the authorization server's. The template is left
    untouched.
    """
    scopes_supported = (
        resource_metadata.scopes_supported if resource_metadata is not None else None
    ) or oauth_metadata.scopes_supported
    if not scopes_supported:
        return client_metadata.model_copy()
    return client_metadata.model_copy(update={"scope": " ".join(scopes_supported)})


async def _always(context: StateMachineContext) -> bool:
    return True


async def _never(context: StateMachineContext) -> bool:
    return False


async def _discover_protected_resource(context: StateMachineContext) -> None:
    resource_metadata: ProtectedResourceMetadata | None = None
    resource_metadata_error: Exception | None = None
    try:
        resource_metadata = await discover_protected_resource_metadata(
            context.http_client, context.server_url, context.settings.protocol_version
        )
    except Exception as e:
        # Protected resource metadata is optional, the flow goes on without it
        logger.warning(f"Protected resource metadata discovery failed for {context.server_url}: {e}")
        resource_metadata_error = e

    try:
        resource = await select_resource_url(context.server_url, context.provider, resource_metadata)
    except OAuthFlowError as e:
        logger.warning(f"Ignoring protected resource metadata for {context.server_url}: {e}")
        resource_metadata, resource_metadata_error, resource = None, e, None

    auth_server_url = AnyHttpUrl(urljoin(context.server_url, "/"))
    if resource_metadata is not None and resource_metadata.authorization_servers:
        auth_server_url = resource_metadata.authorization_servers[0]

    context.update_state(
        resource_metadata=resource_metadata,
        resource=resource,
        resource_metadata_error=resource_metadata_error,
        auth_server_url=auth_server_url,
        oauth_step=OAuthStep.OAUTH_METADATA_DISCOVERY,
    )


async def _has_auth_server_url(context: StateMachineContext) -> bool:
    return context.state.auth_server_url is not None


async def _discover_oauth_metadata(context: StateMachineContext) -> None:
    auth_server_url = str(context.state.auth_server_url)
    document = await discover_authorization_server_metadata(
        context.http_client, auth_server_url, context.settings.protocol_version
    )
    if not document:
        raise OAuthMetadataError("Failed to discover OAuth metadata")

    try:
        metadata = OAuthMetadata.model_validate(document)
    except ValidationError as e:
        raise OAuthMetadataError(f"Invalid OAuth metadata from {auth_server_url}: {e}") from e

    await context.provider.save_server_metadata(metadata)
    context.update_state(oauth_metadata=metadata, oauth_step=OAuthStep.CLIENT_REGISTRATION)


async def _has_oauth_metadata(context: StateMachineContext) -> bool:
    return context.state.oauth_metadata is not None


async def _register_client(context: StateMachineContext) -> None:
    metadata = context.state.oauth_metadata
    assert metadata is not None  # checked by the guard

    # Pre-provisioned or previously registered clients are reused as they are
    client_information = await context.provider.client_information()
    if client_information is None:
        client_metadata = build_registration_metadata(
            context.provider.client_metadata, metadata, context.state.resource_metadata
        )
        client_information = await register_client(
            context.http_client, context.server_url, metadata=metadata, client_metadata=client_metadata
        )
        await context.provider.save_client_information(client_information)
        logger.debug(f"Registered client {client_information.client_id}")
    else:
        logger.debug(f"Using stored client {client_information.client_id}, skipping registration")

    context.update_state(oauth_client_info=client_information, oauth_step=OAuthStep.AUTHORIZATION_REDIRECT)


async def _has_metadata_and_client(context: StateMachineContext) -> bool:
    return context.state.oauth_metadata is not None and context.state.oauth_client_info is not None


async def _start_authorization(context: StateMachineContext) -> None:
    metadata = context.state.oauth_metadata
    client_information = context.state.oauth_client_info
    assert metadata is not None and client_information is not None  # checked by the guard

    scope = await discover_scopes(
        context.http_client, context.server_url, context.state.resource_metadata, context.settings.protocol_version
    )
    authorization = start_authorization(
        context.server_url,
        metadata=metadata,
        client_information=client_information,
        redirect_url=context.provider.redirect_url,
        scope=scope,
        state=generate_oauth_state(),
        resource=context.state.resource,
    )

    # Needed by the token request, which may run in another process
    await context.provider.save_code_verifier(authorization.code_verifier)
    context.update_state(authorization_url=authorization.authorization_url, oauth_step=OAuthStep.AUTHORIZATION_CODE)


async def _validate_authorization_code(context: StateMachineContext) -> None:
    authorization_code = context.state.authorization_code
    if not authorization_code or not authorization_code.strip():
        context.update_state(validation_error=AUTHORIZATION_CODE_REQUIRED)
        raise AuthorizationCodeValidationError("Authorization code required")

    context.update_state(validation_error=None, oauth_step=OAuthStep.TOKEN_REQUEST)


async def _can_request_token(context: StateMachineContext) -> bool:
    return (
        bool(context.state.authorization_code)
        and await context.provider.get_server_metadata() is not None
        and await context.provider.client_information() is not None
    )


async def _request_token(context: StateMachineContext) -> None:
    authorization_code = context.state.authorization_code
    metadata = await context.provider.get_server_metadata()
    client_information = await context.provider.client_information()
    assert authorization_code and metadata is not None and client_information is not None  # checked by the guard

    resource = context.state.resource
    if isinstance(resource, str):
        resource = AnyHttpUrl(resource)

    tokens = await exchange_authorization(
        context.http_client,
        context.server_url,
        metadata=metadata,
        client_information=client_information,
        authorization_code=authorization_code,
        code_verifier=await context.provider.code_verifier(),
        redirect_uri=context.provider.redirect_url,
        resource=resource,
    )

    await context.provider.save_tokens(tokens)
    context.update_state(oauth_tokens=tokens, oauth_step=OAuthStep.COMPLETE)


async def _finished(context: StateMachineContext) -> None:
    pass


OAUTH_TRANSITIONS: dict[OAuthStep, OAuthTransition] = {
    OAuthStep.PRM_DISCOVERY: OAuthTransition(_always, _discover_protected_resource),
    OAuthStep.OAUTH_METADATA_DISCOVERY: OAuthTransition(_has_auth_server_url, _discover_oauth_metadata),
    OAuthStep.CLIENT_REGISTRATION: OAuthTransition(_has_oauth_metadata, _register_client),
    OAuthStep.AUTHORIZATION_REDIRECT: OAuthTransition(_has_metadata_and_client, _start_authorization),
    OAuthStep.AUTHORIZATION_CODE: OAuthTransition(_always, _validate_authorization_code),
    OAuthStep.TOKEN_REQUEST: OAuthTransition(_can_request_token, _request_token),
    OAuthStep.COMPLETE: OAuthTransition(_never, _finished),
}


class OAuthStateMachine:
    """
    Executes the OAuth flow one step at a time.

    Every new snapshot is reported through ``update_state``; errors propagate to
    the caller, who decides whether to retry the step, start over or give up.
    Callers must not execute steps concurrently for the same server.

    Raises:
        OAuthFlowError: the server URL is not an absolute http(s) URL
    """

    def __init__(
        self,
        server_url: str,
        update_state: UpdateStateCallback,
        *,
        storage: CredentialStorage,
        settings: OAuthFlowSettings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        parsed = urlparse(server_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise OAuthFlowError(f"Invalid MCP server URL {server_url!r}: expected an absolute http(s) URL")
        self.server_url = server_url
        self.update_state = update_state
        self.storage = storage
        self.settings = settings or OAuthFlowSettings()
        self.http_client = http_client

    async def execute_step(self, state: AuthDebuggerState) -> AuthDebuggerState:
        """
        Execute the step the state is at.

        Returns:
            the last snapshot reported for this step

        Raises:
            OAuthStateTransitionError: the step's precondition does not hold,
                or the flow is already complete
            OAuthFlowError: the step failed; the state did not advance
        """
        if self.http_client is not None:
            return await self._execute(state, self.http_client)
        async with httpx.AsyncClient(timeout=self.settings.http_timeout) as http_client:
            return await self._execute(state, http_client)

    async def _execute(self, state: AuthDebuggerState, http_client: httpx.AsyncClient) -> AuthDebuggerState:
        context = StateMachineContext(
            state=state,
            server_url=self.server_url,
            provider=DebugOAuthClientProvider(self.server_url, self.storage, self.settings),
            http_client=http_client,
            settings=self.settings,
            on_update=self.update_state,
        )

        transition = OAUTH_TRANSITIONS[state.oauth_step]
        if not await transition.can_transition(context):
            raise OAuthStateTransitionError(state.oauth_step)

        logger.debug(f"Executing OAuth step {state.oauth_step.value} for {self.server_url}")
        await transition.execute(context)
        return context.state

    async def run_until(self, state: AuthDebuggerState, stop_at: OAuthStep) -> AuthDebuggerState:
        """Execute steps until the flow reaches ``stop_at`` (or has passed it)."""
        steps = list(OAuthStep)
        while steps.index(state.oauth_step) < steps.index(stop_at):
            state = await self.execute_step(state)
        return state
