"""Agent - orchestrates history, provider calls and tool dispatch.

One call to Agent.generate is a round: read the chat history, ask the
provider for a response, persist it, and if it was a tool call run the tool
and go again, until the model answers in plain text.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .chats import ChatRepository
from .config import Settings
from .constants import (
    CHAT_IDLE,
    CHAT_RUNNING,
    INCOMPLETE_TOOL_ERROR,
    TOOL_LIMIT_ERROR,
    TOOL_USE_ID_PREFIX,
)
from .errors import AgntError, ToolLoopLimitError
from .models import AgentMessage, Message, ToolMessage, UserMessage
from .provider import Provider, ProviderRequest, ResponseIncrement, ToolCall
from .tools import ToolRegistry

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[], None]


def _text_turn(role: str, text: str) -> dict:
    return {"role": role, "content": [{"type": "text", "text": text}]}


def build_context(messages: list[Message]) -> list[dict]:
    """Translate stored messages into provider conversation turns.

    A tool message becomes two turns, the assistant's tool_use followed by
    the user's tool_result; the call always comes first. Agent messages with
    no text are skipped since providers reject empty text blocks.
    """
    turns = []
    for msg in messages:
        if isinstance(msg, UserMessage):
            turns.append(_text_turn("user", msg.text))

        elif isinstance(msg, AgentMessage):
            if msg.text:
                turns.append(_text_turn("assistant", msg.text))

        elif isinstance(msg, ToolMessage):
            tool_use_id = f"{TOOL_USE_ID_PREFIX}{msg.message_id}"
            turns.append({
                "role": "assistant",
                "content": [{
                    "type": "tool_use",
                    "id": tool_use_id,
                    "name": msg.tool_name,
                    "input": msg.tool_args,
                }],
            })

            if not msg.done:
                content, is_error = INCOMPLETE_TOOL_ERROR, True
            elif msg.tool_error:
                content, is_error = msg.tool_error, True
            else:
                content, is_error = msg.tool_result, False

            turns.append({
                "role": "user",
                "content": [{
                    "type": "tool_result",
                    "tool_use_id": tool_use_id,
                    "content": content,
                    "is_error": is_error,
                }],
            })

        else:
            raise TypeError(f"unknown message type {type(msg).__name__}")
    return turns


class ResponseAccumulator:
    """In-progress view of one provider response."""

    def __init__(self):
        self._parts: list[str] = []
        self.tool_call: ToolCall | None = None
        self.done = False
        self.stop_reason: str | None = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def add(self, increment: ResponseIncrement) -> bool:
        """Fold an increment in. Returns True if the text grew."""
        if increment.tool_call is not None:
            if self.tool_call is None:
                self.tool_call = increment.tool_call
            else:
                logger.warning(f"Ignoring extra tool call {increment.tool_call.name}")
        if increment.done:
            self.done = True
            self.stop_reason = increment.stop_reason
        if increment.text:
            self._parts.append(increment.text)
            return True
        return False


class Agent:
    """Runs generation rounds for chats."""

    def __init__(
        self,
        chats: ChatRepository,
        tools: ToolRegistry,
        provider: Provider,
        settings: Settings | None = None,
    ):
        self.chats = chats
        self.tools = tools
        self.provider = provider
        self.settings = settings or Settings()

    async def generate(self, chat_id: int, on_update: UpdateCallback | None = None) -> Message | None:
        """Run one round for a chat.

        The chat is marked running for the duration and always returned to
        idle, whether the round succeeds, fails or is cancelled.

        Returns:
            The final agent message, or None if the provider stopped without
            saying anything.

        Raises:
            InvalidArgumentError: the chat is already running.
            TransportError, StorageError: the round was aborted.
            ToolLoopLimitError: the model chained more tool calls than
                max_tool_rounds allows.
        """
        notify = on_update or (lambda: None)
        self.chats.update_chat_state(chat_id, CHAT_RUNNING, expected=CHAT_IDLE)
        logger.info(f"Generation started for chat {chat_id}")

        try:
            result = await self._run(chat_id, notify)
        except BaseException as e:
            logger.warning(f"Generation for chat {chat_id} aborted: {e!r}")
            self._set_idle(chat_id, reraise=False)
            raise

        self._set_idle(chat_id, reraise=True)
        logger.info(f"Generation completed for chat {chat_id}")
        return result

    def _set_idle(self, chat_id: int, reraise: bool) -> None:
        try:
            self.chats.update_chat_state(chat_id, CHAT_IDLE)
        except AgntError as e:
            logger.error(f"Failed to return chat {chat_id} to idle: {e}")
            if reraise:
                raise

    async def _run(self, chat_id: int, notify: UpdateCallback) -> Message | None:
        tool_calls = 0
        while True:
            msg = await self._exchange(chat_id, notify)
            if not isinstance(msg, ToolMessage):
                return msg

            limit = self.settings.max_tool_rounds
            if tool_calls >= limit:
                self.chats.update_message(msg.finish(error=TOOL_LIMIT_ERROR))
                notify()
                raise ToolLoopLimitError(
                    f"model requested more than {limit} chained tool calls in chat {chat_id}"
                )

            if not msg.done:
                self._dispatch(msg)
                notify()
            tool_calls += 1

    async def _exchange(self, chat_id: int, notify: UpdateCallback) -> Message | None:
        """One provider request/response; persists what the model produced."""
        request = ProviderRequest(
            model=self.settings.model,
            messages=build_context(self.chats.list_messages(chat_id)),
            tools=self.tools.definitions(),
            max_tokens=self.settings.max_tokens,
            system=self.settings.system_prompt,
        )

        acc = ResponseAccumulator()
        draft: Message | None = None  # persisted in-progress record

        async for increment in self.provider.stream(request):
            if acc.add(increment):
                draft = self._flush_text(chat_id, draft, acc.text)
                notify()

        if acc.tool_call is not None:
            if acc.text:
                logger.debug(f"Dropping text preceding tool call: {acc.text!r}")
            tool_msg = ToolMessage(
                chat_id=chat_id,
                tool_name=acc.tool_call.name,
                tool_args=acc.tool_call.arguments,
            )
            if acc.tool_call.error:
                tool_msg = tool_msg.finish(error=acc.tool_call.error)
            if draft is None:
                tool_msg = self.chats.create_message(tool_msg)
            else:
                tool_msg.message_id = draft.message_id
                self.chats.update_message(tool_msg)
            notify()
            return tool_msg

        if draft is None:
            logger.info(f"Provider returned no content (stop_reason={acc.stop_reason})")
        return draft

    def _flush_text(self, chat_id: int, draft: Message | None, text: str) -> Message:
        if draft is None:
            return self.chats.create_message(AgentMessage(chat_id=chat_id, text=text))
        return self.chats.update_message(draft.model_copy(update={"text": text}))

    def _dispatch(self, msg: ToolMessage) -> ToolMessage:
        outcome = self.tools.dispatch(msg.tool_name, msg.tool_args)
        finished = msg.finish(result=outcome.result, error=outcome.error)
        self.chats.update_message(finished)
        return finished
