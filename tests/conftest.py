"""
Shared fixtures: in-memory SQLite, a scripted generation adapter and an
HTTP client bound to the ASGI app.
"""

from typing import AsyncGenerator, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from guestdesk.config import Settings
from guestdesk.context import AppContext, build_context
from guestdesk.db import make_engine
from guestdesk.services.llm import Completion, GenerationAdapter


class FakeGenerator(GenerationAdapter):
    """Returns a canned reply and remembers what it was asked."""

    provider = "fake"

    def __init__(self, reply: str = "好的，收到。", tokens: int = 42):
        super().__init__("fake-model")
        self.reply = reply
        self.tokens = tokens
        self.fail_with: Optional[Exception] = None
        self.calls: list[dict] = []

    async def _do_complete(self, system_prompt, history, message) -> Completion:
        self.calls.append({"system_prompt": system_prompt, "history": list(history), "message": message})
        if self.fail_with is not None:
            raise self.fail_with
        return Completion(text=self.reply, tokens_used=self.tokens, finish_reason="stop", model=self.model)

    async def health_check(self) -> bool:
        return True


@pytest.fixture
def settings() -> Settings:
    return Settings(DATABASE_URL="sqlite://", KNOWLEDGE_MODE="hybrid", _env_file=None)


@pytest.fixture
def generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def ctx(settings, generator) -> AppContext:
    engine = make_engine(settings.DATABASE_URL)
    context = build_context(settings, engine=engine, generator=generator)
    yield context
    engine.dispose()


@pytest.fixture
def knowledge(ctx):
    return ctx.knowledge


@pytest.fixture
def sessions(ctx):
    return ctx.sessions


@pytest.fixture
def orchestrator(ctx):
    return ctx.orchestrator


@pytest.fixture
async def client(ctx) -> AsyncGenerator[AsyncClient, None]:
    from guestdesk.main import create_app

    transport = ASGITransport(app=create_app(context=ctx))
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
