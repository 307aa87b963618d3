"""Shared test fixtures and helpers for agnt tests."""

import tempfile
from pathlib import Path

import pytest

from agnt.agent import Agent
from agnt.chats import ChatRepository
from agnt.config import Settings
from agnt.graph import GraphRepository
from agnt.provider import ResponseIncrement, ToolCall
from agnt.store import Store
from agnt.tools import ToolRegistry


# --- Fixtures ---


@pytest.fixture
def temp_home():
    """Provide a temporary agnt home directory.

    Yields a Path to a temporary directory that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store(temp_home):
    """Provide a freshly initialized store."""
    s = Store(temp_home / "agnt.db")
    yield s
    s.close()


@pytest.fixture
def graph(store):
    return GraphRepository(store)


@pytest.fixture
def chats(store):
    return ChatRepository(store)


@pytest.fixture
def tools(graph):
    return ToolRegistry(graph)


@pytest.fixture
def chat(chats):
    """An idle chat named c1."""
    return chats.create_chat("c1")


@pytest.fixture
def make_agent(chats, tools):
    """Build an Agent around a scripted provider.

    Usage: agent = make_agent(ScriptedProvider(...), max_tool_rounds=3)
    """
    def _make(provider, **settings):
        return Agent(chats, tools, provider, Settings(**settings))
    return _make


# --- Helper Functions (not fixtures) ---


class ScriptedProvider:
    """Provider that replays canned responses and records requests.

    Each response is a list of ResponseIncrements; an exception in the list
    is raised at that point of the stream.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    async def stream(self, request):
        self.requests.append(request)
        if not self.responses:
            raise AssertionError("provider called more times than scripted")
        for item in self.responses.pop(0):
            if isinstance(item, BaseException):
                raise item
            yield item


def text_reply(*chunks: str) -> list[ResponseIncrement]:
    """A plain-text response streamed as the given chunks."""
    return [ResponseIncrement(text=c) for c in chunks] + [
        ResponseIncrement(done=True, stop_reason="end_turn")
    ]


def tool_reply(name: str, args: dict, preamble: str = "") -> list[ResponseIncrement]:
    """A response requesting one tool call."""
    increments = [ResponseIncrement(text=preamble)] if preamble else []
    return increments + [
        ResponseIncrement(tool_call=ToolCall(id="toolu_1", name=name, arguments=args)),
        ResponseIncrement(done=True, stop_reason="tool_use"),
    ]
