"""
Before running, start an MCP server protected by OAuth on http://localhost:8001.

Then run:
    python examples/snippets/clients/oauth_client.py
"""

import asyncio
from urllib.parse import parse_qs, urlparse

from mcp_oauth_flow import (
    AuthDebuggerState,
    InMemoryCredentialStorage,
    OAuthFlowSettings,
    OAuthStateMachine,
    OAuthStep,
)
from mcp_oauth_flow.client.auth import AuthorizationCodeValidationError


def print_state(state: AuthDebuggerState) -> None:
    """Report every snapshot the flow produces."""
    print(f"-> {state.oauth_step.value}")


def handle_callback() -> str:
    callback_url = input("Paste callback URL: ")
    params = parse_qs(urlparse(callback_url).query)
    return params.get("code", [""])[0]


async def main():
    """Run the OAuth flow against a local server, one step at a time."""
    settings = OAuthFlowSettings(redirect_url="http://localhost:3000/callback")
    machine = OAuthStateMachine(
        "http://localhost:8001/mcp",
        print_state,
        storage=InMemoryCredentialStorage(),
        settings=settings,
    )

    state = await machine.run_until(AuthDebuggerState(), OAuthStep.AUTHORIZATION_CODE)
    if state.resource_metadata_error is not None:
        print(f"No protected resource metadata: {state.resource_metadata_error}")
    print(f"Visit: {state.authorization_url}")

    while state.oauth_step == OAuthStep.AUTHORIZATION_CODE:
        try:
            state = await machine.execute_step(state.with_authorization_code(handle_callback()))
        except AuthorizationCodeValidationError:
            print("The callback URL carries no authorization code")

    state = await machine.run_until(state, OAuthStep.COMPLETE)
    assert state.oauth_tokens is not None
    print(f"Access token: {state.oauth_tokens.access_token[:8]}... expires in {state.oauth_tokens.expires_in}s")


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
