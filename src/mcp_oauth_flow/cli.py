"""Command line driver for the step-by-step OAuth flow."""

import webbrowser
from typing import Annotated

import anyio
import httpx
import typer

from mcp_oauth_flow.client.auth import (
    AuthDebuggerState,
    AuthorizationCodeValidationError,
    FileCredentialStorage,
    FileFlowStateStore,
    OAuthFlowError,
    OAuthStateMachine,
    OAuthStep,
)
from mcp_oauth_flow.settings import OAuthFlowSettings
from mcp_oauth_flow.utilities.logging import configure_logging


app = typer.Typer(
    name="mcp-oauth-flow",
    help="Step through the OAuth authorization flow of an MCP server",
    add_completion=False,
    no_args_is_help=True,
)

ServerUrl = Annotated[str, typer.Argument(help="URL of the MCP server to authorize against")]


class FlowSession:
    """Runs steps against the flow state and credentials persisted for one server."""

    def __init__(self, server_url: str, settings: OAuthFlowSettings):
        self.server_url = server_url
        self.settings = settings
        self.flow_store = FileFlowStateStore(settings.storage_dir)
        self.credential_storage = FileCredentialStorage(settings.storage_dir)
        self.snapshots: list[AuthDebuggerState] = []
        self.machine = OAuthStateMachine(
            server_url,
            self.snapshots.append,
            storage=self.credential_storage,
            settings=settings,
        )

    async def load(self) -> AuthDebuggerState:
        return await self.flow_store.load(self.server_url)

    async def step(self, state: AuthDebuggerState, stop_at: OAuthStep | None = None) -> AuthDebuggerState:
        """Execute one step (or up to ``stop_at``), persisting whatever was reported, even on failure."""
        await self.flow_store.save(self.server_url, state)
        try:
            if stop_at is None:
                return await self.machine.execute_step(state)
            return await self.machine.run_until(state, stop_at)
        finally:
            if self.snapshots:
                await self.flow_store.save(self.server_url, self.snapshots[-1])

    async def reset(self) -> None:
        await self.flow_store.clear(self.server_url)
        await self.credential_storage.clear(self.server_url)


def _settings() -> OAuthFlowSettings:
    return OAuthFlowSettings()


def _print_state(state: AuthDebuggerState) -> None:
    typer.echo(f"Step: {state.oauth_step.value}")
    if state.resource_metadata_error is not None:
        typer.echo(f"Protected resource metadata: unavailable ({state.resource_metadata_error})")
    elif state.resource_metadata is not None:
        typer.echo(f"Protected resource: {state.resource_metadata.resource}")
    if state.auth_server_url is not None:
        typer.echo(f"Authorization server: {state.auth_server_url}")
    if state.oauth_client_info is not None:
        typer.echo(f"Client ID: {state.oauth_client_info.client_id}")
    if state.authorization_url and state.oauth_step == OAuthStep.AUTHORIZATION_CODE:
        typer.echo(f"Authorization URL: {state.authorization_url}")
    if state.validation_error:
        typer.secho(state.validation_error, fg=typer.colors.YELLOW)
    if state.oauth_tokens is not None:
        typer.echo(f"Access token: {state.oauth_tokens.access_token[:8]}... ({state.oauth_tokens.token_type})")
    if state.is_complete:
        typer.secho("Authorization complete", fg=typer.colors.GREEN)


def _fail(error: Exception) -> typer.Exit:
    typer.secho(f"Error: {error}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=1)


def _session(server_url: str) -> FlowSession:
    try:
        return FlowSession(server_url, _settings())
    except OAuthFlowError as e:
        raise _fail(e) from e


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log every request and step")] = False,
) -> None:
    configure_logging("DEBUG" if verbose else _settings().log_level)


@app.command()
def status(server_url: ServerUrl) -> None:
    """Show the persisted flow state for a server."""
    session = _session(server_url)
    _print_state(anyio.run(session.load))


@app.command()
def step(
    server_url: ServerUrl,
    code: Annotated[str | None, typer.Option("--code", help="Authorization code captured after the redirect")] = None,
) -> None:
    """Execute the next step of the flow."""
    session = _session(server_url)
    state = anyio.run(session.load)
    if code is not None:
        state = state.with_authorization_code(code)

    try:
        state = anyio.run(session.step, state)
    except (OAuthFlowError, httpx.HTTPError) as e:
        raise _fail(e) from e
    _print_state(state)


@app.command()
def run(
    server_url: ServerUrl,
    open_browser: Annotated[
        bool, typer.Option("--open-browser/--no-open-browser", help="Open the authorization URL in a browser")
    ] = True,
) -> None:
    """Run the whole flow, prompting for the authorization code."""
    session = _session(server_url)
    state = anyio.run(session.load)

    try:
        state = anyio.run(session.step, state, OAuthStep.AUTHORIZATION_CODE)
        if state.oauth_step == OAuthStep.AUTHORIZATION_CODE:
            assert state.authorization_url is not None
            typer.echo(f"Visit: {state.authorization_url}")
            if open_browser:
                webbrowser.open(state.authorization_url)

            while state.oauth_step == OAuthStep.AUTHORIZATION_CODE:
                code = typer.prompt("Authorization code")
                try:
                    state = anyio.run(session.step, state.with_authorization_code(code))
                except AuthorizationCodeValidationError:
                    typer.secho(session.snapshots[-1].validation_error or "", fg=typer.colors.YELLOW)

        state = anyio.run(session.step, state, OAuthStep.COMPLETE)
    except (OAuthFlowError, httpx.HTTPError) as e:
        raise _fail(e) from e
    _print_state(state)


@app.command()
def reset(server_url: ServerUrl) -> None:
    """Forget the flow state and credentials stored for a server."""
    session = _session(server_url)
    anyio.run(session.reset)
    typer.echo(f"Cleared OAuth state for {server_url}")
