import json

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, create_engine
from sqlmodel.pool import StaticPool

from planai.api.deps import get_chat_provider, get_transcriber
from planai.config import settings
from planai.database import get_session, init_db
from planai.main import app
from planai.services.providers import ChatProvider, ChatReply, ProviderKind
from planai.store.entity_store import EntityStore


class ScriptedProvider(ChatProvider):
    """Chat provider that plays back canned replies (or raises canned errors)."""

    kind = ProviderKind.CUSTOM

    def __init__(self, replies):
        super().__init__(model="test-model")
        self.replies = list(replies)
        self.calls: list[str] = []

    async def complete(self, system_prompt, user_message, tool=None):
        self.calls.append(user_message)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class StubTranscriber:
    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls: list[tuple[bytes, str, str]] = []

    async def transcribe(self, audio, filename, content_type):
        self.calls.append((audio, filename, content_type))
        if self.error:
            raise self.error
        return self.text


def tool_reply(**fields) -> ChatReply:
    return ChatReply(tool_arguments=json.dumps(fields))


@pytest.fixture(autouse=True)
def no_retry_backoff(monkeypatch):
    monkeypatch.setattr(settings, "ai_retry_backoff", 0.0)


@pytest.fixture(name="engine")
def engine_fixture():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


@pytest.fixture(name="session")
def session_fixture(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture(name="store")
def store_fixture() -> EntityStore:
    return EntityStore()


@pytest.fixture
def scripted_provider():
    return ScriptedProvider


@pytest.fixture
def stub_transcriber():
    return StubTranscriber


@pytest.fixture
def make_tool_reply():
    return tool_reply


@pytest.fixture(name="client")
def client_fixture(session: Session, store: EntityStore):
    def get_session_override():
        yield session

    app.dependency_overrides[get_session] = get_session_override
    app.state.store = store
    client = TestClient(app)
    yield client
    app.dependency_overrides.clear()


@pytest.fixture
def use_ai(client: TestClient):
    """Swap in fake AI collaborators for the HTTP layer."""

    def install(replies=(), transcriber=None):
        provider = ScriptedProvider(replies)
        app.dependency_overrides[get_chat_provider] = lambda: provider
        app.dependency_overrides[get_transcriber] = lambda: transcriber
        return provider

    return install
