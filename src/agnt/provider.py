"""Model provider boundary.

A provider takes a ProviderRequest and yields ResponseIncrements: text
deltas, at most one tool call, and a final increment flagged done. Streaming
and one-shot responses look the same to the caller; a one-shot response is
just a single done increment.
"""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic
from anthropic import AsyncAnthropic

from .config import Settings
from .constants import DEFAULT_MAX_TOKENS
from .errors import ConfigError, InvalidArgumentError, TransportError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToolCall:
    """A function-call directive issued by the model.

    error is set when the arguments could not be decoded; arguments is then
    empty and the call is reported back to the model without running.
    """

    id: str
    name: str
    arguments: dict[str, Any]
    error: str = ""


@dataclass(frozen=True)
class ResponseIncrement:
    text: str = ""
    tool_call: ToolCall | None = None
    done: bool = False
    stop_reason: str | None = None


@dataclass
class ProviderRequest:
    model: str
    messages: list[dict]
    tools: list[dict] = field(default_factory=list)
    max_tokens: int = DEFAULT_MAX_TOKENS
    system: str = ""


class Provider(Protocol):
    def stream(self, request: ProviderRequest) -> AsyncIterator[ResponseIncrement]:
        """Issue the request and yield response increments."""
        ...


def _parse_tool_input(raw: str) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidArgumentError(f"failed to decode tool arguments: {e}") from e
    if not isinstance(parsed, dict):
        raise InvalidArgumentError("tool arguments must be an object")
    return parsed


def _tool_call(call_id: str, name: str, raw: str) -> ToolCall:
    try:
        return ToolCall(id=call_id, name=name, arguments=_parse_tool_input(raw))
    except InvalidArgumentError as e:
        logger.warning(f"Malformed arguments for tool {name}: {e}")
        return ToolCall(id=call_id, name=name, arguments={}, error=str(e))


class AnthropicProvider:
    """Anthropic Messages API provider."""

    def __init__(self, client: AsyncAnthropic, streaming: bool = True):
        self.client = client
        self.streaming = streaming

    @classmethod
    def from_settings(cls, settings: Settings) -> AnthropicProvider:
        if not settings.api_key:
            raise ConfigError("ANTHROPIC_API_KEY environment variable not set")
        return cls(AsyncAnthropic(api_key=settings.api_key), streaming=settings.stream)

    def _api_kwargs(self, request: ProviderRequest) -> dict:
        api_kwargs: dict[str, Any] = {
            "model": request.model,
            "max_tokens": request.max_tokens,
            "messages": request.messages,
        }
        if request.system:
            api_kwargs["system"] = request.system
        if request.tools:
            api_kwargs["tools"] = request.tools
            # One call per turn; the conversation stores a single call per message
            api_kwargs["tool_choice"] = {"type": "auto", "disable_parallel_tool_use": True}
        return api_kwargs

    async def stream(self, request: ProviderRequest) -> AsyncIterator[ResponseIncrement]:
        logger.debug(
            f"Provider request: model={request.model} turns={len(request.messages)} "
            f"tools={len(request.tools)} streaming={self.streaming}"
        )
        try:
            if self.streaming:
                async for increment in self._stream(request):
                    yield increment
            else:
                yield await self._complete(request)
        except anthropic.APIError as e:
            raise TransportError(f"failed to generate response: {e}") from e

    async def _stream(self, request: ProviderRequest) -> AsyncIterator[ResponseIncrement]:
        pending: dict[str, str] | None = None  # tool_use block being assembled

        async with self.client.messages.stream(**self._api_kwargs(request)) as stream:
            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type == "tool_use":
                        pending = {"id": block.id, "name": block.name, "input": ""}

                elif event.type == "content_block_delta":
                    delta = event.delta
                    if delta.type == "text_delta":
                        yield ResponseIncrement(text=delta.text)
                    elif delta.type == "input_json_delta" and pending is not None:
                        pending["input"] += delta.partial_json

                elif event.type == "content_block_stop" and pending is not None:
                    yield ResponseIncrement(
                        tool_call=_tool_call(pending["id"], pending["name"], pending["input"])
                    )
                    pending = None

            final = await stream.get_final_message()

        yield ResponseIncrement(done=True, stop_reason=final.stop_reason)

    async def _complete(self, request: ProviderRequest) -> ResponseIncrement:
        response = await self.client.messages.create(**self._api_kwargs(request))

        text = ""
        tool_call = None
        for block in response.content:
            if block.type == "text":
                text += block.text
            elif block.type == "tool_use" and tool_call is None:
                if isinstance(block.input, dict):
                    tool_call = ToolCall(id=block.id, name=block.name, arguments=dict(block.input))
                else:
                    tool_call = ToolCall(
                        id=block.id, name=block.name, arguments={},
                        error="tool arguments must be an object",
                    )

        return ResponseIncrement(
            text=text,
            tool_call=tool_call,
            done=True,
            stop_reason=response.stop_reason,
        )
