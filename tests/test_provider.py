"""Tests for the Anthropic provider adapter, against a fake client."""

import asyncio
from types import SimpleNamespace

import pytest

from agnt.config import Settings
from agnt.errors import ConfigError, InvalidArgumentError
from agnt.provider import AnthropicProvider, ProviderRequest, _parse_tool_input


def ns(**kwargs):
    return SimpleNamespace(**kwargs)


class FakeStream:
    """Stands in for the SDK's MessageStream context manager."""

    def __init__(self, events, stop_reason):
        self._events = events
        self._stop_reason = stop_reason

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        for event in self._events:
            yield event

    async def get_final_message(self):
        return ns(stop_reason=self._stop_reason)


class FakeMessages:
    def __init__(self, events=(), stop_reason="end_turn", response=None):
        self.events = list(events)
        self.stop_reason = stop_reason
        self.response = response
        self.calls = []

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        return FakeStream(self.events, self.stop_reason)

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return self.response


def fake_client(**kwargs):
    return ns(messages=FakeMessages(**kwargs))


def collect(provider, request):
    async def _collect():
        return [inc async for inc in provider.stream(request)]
    return asyncio.run(_collect())


REQUEST = ProviderRequest(
    model="test-model",
    messages=[{"role": "user", "content": [{"type": "text", "text": "hi"}]}],
)


def test_parse_tool_input():
    assert _parse_tool_input("") == {}
    assert _parse_tool_input('{"id": 3}') == {"id": 3}
    with pytest.raises(InvalidArgumentError):
        _parse_tool_input("{not json")
    with pytest.raises(InvalidArgumentError):
        _parse_tool_input("[1, 2]")


def test_streaming_malformed_tool_arguments():
    """Undecodable arguments still yield the call, flagged with an error."""
    events = [
        ns(type="content_block_start", content_block=ns(type="tool_use", id="toolu_2", name="create_node")),
        ns(type="content_block_delta", delta=ns(type="input_json_delta", partial_json='{"type": ')),
        ns(type="content_block_stop"),
    ]
    provider = AnthropicProvider(fake_client(events=events, stop_reason="tool_use"))

    increments = collect(provider, REQUEST)

    (call,) = [i.tool_call for i in increments if i.tool_call]
    assert call.name == "create_node"
    assert call.arguments == {}
    assert call.error.startswith("failed to decode tool arguments")
    assert increments[-1].done


def test_api_kwargs_include_tools_and_system():
    provider = AnthropicProvider(fake_client())
    request = ProviderRequest(
        model="m",
        messages=[],
        tools=[{"name": "list_nodes", "description": "", "input_schema": {"type": "object"}}],
        system="be brief",
    )

    kwargs = provider._api_kwargs(request)

    assert kwargs["system"] == "be brief"
    assert kwargs["tools"][0]["name"] == "list_nodes"
    assert kwargs["tool_choice"]["disable_parallel_tool_use"] is True


def test_api_kwargs_minimal():
    kwargs = AnthropicProvider(fake_client())._api_kwargs(REQUEST)
    assert set(kwargs) == {"model", "max_tokens", "messages"}


def test_streaming_text_and_tool_call():
    events = [
        ns(type="message_start"),
        ns(type="content_block_start", content_block=ns(type="text")),
        ns(type="content_block_delta", delta=ns(type="text_delta", text="Let me ")),
        ns(type="content_block_delta", delta=ns(type="text_delta", text="check.")),
        ns(type="content_block_stop"),
        ns(type="content_block_start", content_block=ns(type="tool_use", id="toolu_9", name="get_node")),
        ns(type="content_block_delta", delta=ns(type="input_json_delta", partial_json='{"id"')),
        ns(type="content_block_delta", delta=ns(type="input_json_delta", partial_json=": 4}")),
        ns(type="content_block_stop"),
        ns(type="message_stop"),
    ]
    provider = AnthropicProvider(fake_client(events=events, stop_reason="tool_use"))

    increments = collect(provider, REQUEST)

    assert [i.text for i in increments if i.text] == ["Let me ", "check."]
    calls = [i.tool_call for i in increments if i.tool_call]
    assert len(calls) == 1
    assert (calls[0].id, calls[0].name, calls[0].arguments) == ("toolu_9", "get_node", {"id": 4})
    assert increments[-1].done
    assert increments[-1].stop_reason == "tool_use"


def test_non_streaming_response():
    response = ns(
        stop_reason="tool_use",
        content=[
            ns(type="text", text="One moment."),
            ns(type="tool_use", id="toolu_1", name="list_nodes", input={"node_type": "person"}),
        ],
    )
    client = fake_client(response=response)
    provider = AnthropicProvider(client, streaming=False)

    (increment,) = collect(provider, REQUEST)

    assert increment.done
    assert increment.text == "One moment."
    assert increment.tool_call.arguments == {"node_type": "person"}
    assert client.messages.calls[0]["model"] == "test-model"


def test_from_settings_requires_api_key():
    with pytest.raises(ConfigError, match="ANTHROPIC_API_KEY"):
        AnthropicProvider.from_settings(Settings())


def test_from_settings():
    provider = AnthropicProvider.from_settings(Settings(api_key="sk-test", stream=False))
    assert provider.streaming is False
