"""Shared test fixtures for backend tests."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from listpilot.core.context import TurnContext
from listpilot.core.database import get_session
from listpilot.core.errors import UpstreamFailure
from listpilot.models.account import Organization, User
from listpilot.services.broadcast import RealtimeTransport
from listpilot.services.container import build_services
from listpilot.services.llm.base import BaseLLMProvider, LLMResponse, ToolCall, Usage
from listpilot.services.security.moderation import ModerationClassifier, ModerationVerdict, normalize_categories

# In-memory SQLite with StaticPool so all connections (including threads) share one DB
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def get_test_session():
    with Session(test_engine) as session:
        yield session


class FakeProvider(BaseLLMProvider):
    """Replays scripted responses; records what it was sent."""

    def __init__(self, responses: list[LLMResponse] | None = None, error: Exception | None = None):
        self.responses = list(responses or [])
        self.error = error
        self.calls: list[dict] = []

    async def chat(self, messages, tools=None, system_prompt=None) -> LLMResponse:
        self.calls.append({"messages": list(messages), "tools": tools, "system_prompt": system_prompt})
        if self.error:
            raise self.error
        if self.responses:
            return self.responses.pop(0)
        return LLMResponse(content="Done.", usage=Usage(1, 1, 2))


def tool_response(name: str, arguments: dict, call_id: str = "call_1") -> LLMResponse:
    return LLMResponse(content="", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


class FakeClassifier(ModerationClassifier):
    def __init__(self, flags: dict[str, bool] | None = None, scores: dict[str, float] | None = None,
                 unavailable: bool = False):
        self.flags = flags or {}
        self.scores = scores or {}
        self.unavailable = unavailable
        self.calls: list[str] = []

    async def classify(self, text: str) -> ModerationVerdict:
        self.calls.append(text)
        if self.unavailable:
            raise UpstreamFailure("moderation down")
        return normalize_categories(self.flags, self.scores)


class FakeTransport(RealtimeTransport):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.events: list[tuple[str, dict]] = []

    async def publish(self, scope, event):
        if self.fail:
            raise RuntimeError("socket gone")
        self.events.append((scope, event))


@pytest.fixture(autouse=True)
def setup_test_db():
    """Create all tables before each test, drop after."""
    import listpilot.models  # noqa: F401 - register models
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


def seed_user(name: str = "Ada", email: str = "ada@example.com", organization_id: int | None = None) -> TurnContext:
    with Session(test_engine) as session:
        if organization_id is None:
            org = Organization(name=f"{name}'s org")
            session.add(org)
            session.commit()
            session.refresh(org)
            organization_id = org.id
        user = User(organization_id=organization_id, name=name, email=email)
        session.add(user)
        session.commit()
        session.refresh(user)
        return TurnContext(user_id=user.id, organization_id=organization_id)


@pytest.fixture
def ctx() -> TurnContext:
    return seed_user()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def services(provider, classifier, transport):
    return build_services(test_engine, provider, classifier, transport)


async def noop_maintenance(state):
    """No-op replacement for maintenance_loop."""
    return


@pytest.fixture
def client(provider, classifier):
    """FastAPI TestClient with all external deps patched."""
    with (
        patch("listpilot.core.database.engine", test_engine),
        patch("listpilot.main.get_llm_provider", return_value=provider),
        patch("listpilot.main.get_moderation_classifier", return_value=classifier),
        patch("listpilot.main.maintenance_loop", noop_maintenance),
    ):
        from listpilot.main import app

        # Use FastAPI's dependency override for get_session
        app.dependency_overrides[get_session] = get_test_session

        with TestClient(app) as c:
            yield c

        app.dependency_overrides.clear()
