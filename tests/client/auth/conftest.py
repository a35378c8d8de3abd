import httpx
import pytest

from mcp_oauth_flow.client.auth import AuthDebuggerState, InMemoryCredentialStorage
from mcp_oauth_flow.settings import OAuthFlowSettings
from tests.fake_authorization_server import FakeAuthorizationServer

REDIRECT_URL = "http://localhost:6274/oauth/callback/debug"


class StateRecorder:
    """Collects every snapshot reported by the state machine."""

    def __init__(self):
        self.snapshots: list[AuthDebuggerState] = []

    def __call__(self, state: AuthDebuggerState) -> None:
        self.snapshots.append(state)

    @property
    def last(self) -> AuthDebuggerState:
        return self.snapshots[-1]


@pytest.fixture
def auth_server():
    return FakeAuthorizationServer()


@pytest.fixture
async def http_client(auth_server: FakeAuthorizationServer):
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=auth_server.app())) as client:
        yield client


@pytest.fixture
def storage():
    return InMemoryCredentialStorage()


@pytest.fixture
def settings(tmp_path):
    return OAuthFlowSettings(redirect_url=REDIRECT_URL, storage_dir=tmp_path)


@pytest.fixture
def recorder():
    return StateRecorder()
