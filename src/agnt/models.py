"""Core data models for chats, messages and the property graph.

Uses Pydantic v2 for validation. Ids are integers assigned by the store's
per-partition sequences, so a freshly built record carries id 0 until it is
persisted.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator

ChatState = Literal["idle", "running"]


class ChatThread(BaseModel):
    """A conversation with its own message partition."""

    id: int = 0
    name: str
    state: ChatState = "idle"


# ─────────────────────────────────────────────────────────────────────────────
# Messages
# ─────────────────────────────────────────────────────────────────────────────


class _MessageBase(BaseModel):
    chat_id: int
    message_id: int = 0  # assigned by the chat's sequence


class UserMessage(_MessageBase):
    """Text typed by the user."""

    kind: Literal["user"] = "user"
    text: str


class AgentMessage(_MessageBase):
    """Assistant reply, grown delta by delta while streaming."""

    kind: Literal["agent"] = "agent"
    text: str = ""


class ToolMessage(_MessageBase):
    """A model-issued tool call and, once done, its outcome.

    Exactly one of tool_result / tool_error is non-empty after done is set.
    """

    kind: Literal["tool"] = "tool"
    done: bool = False
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)
    tool_result: str = ""
    tool_error: str = ""

    @model_validator(mode="after")
    def _check_outcome(self) -> "ToolMessage":
        if self.done and bool(self.tool_result) == bool(self.tool_error):
            raise ValueError(
                "a finished tool message needs exactly one of tool_result or tool_error"
            )
        return self

    def finish(self, result: str = "", error: str = "") -> "ToolMessage":
        """Return a done copy carrying the dispatch outcome."""
        data = self.model_dump()
        data.update(done=True, tool_result=result, tool_error=error)
        return ToolMessage.model_validate(data)


Message = Annotated[
    Union[UserMessage, AgentMessage, ToolMessage],
    Field(discriminator="kind"),
]

message_adapter: TypeAdapter[Message] = TypeAdapter(Message)


def parse_message(raw: str | bytes) -> Message:
    """Decode a stored message record into its concrete kind."""
    return message_adapter.validate_json(raw)


# ─────────────────────────────────────────────────────────────────────────────
# Graph
# ─────────────────────────────────────────────────────────────────────────────


class GraphNode(BaseModel):
    """A typed node with free-form properties."""

    id: int = 0
    type: str
    properties: dict[str, Any] = Field(default_factory=dict)

    def to_summary(self) -> str:
        """Short one-line label used by the CLI."""
        name = self.properties.get("name")
        return f"#{self.id} {self.type}" + (f" {name!r}" if name else "")


class GraphEdge(BaseModel):
    """A typed, directed edge between two nodes."""

    id: int = 0
    type: str
    from_id: int
    to_id: int

    def touches(self, node_id: int) -> bool:
        """True if either endpoint is node_id."""
        return self.from_id == node_id or self.to_id == node_id


class EdgeFilter(BaseModel):
    """Criteria for list_edges. Empty string / zero means unset."""

    type: str = ""
    from_id: int = 0
    to_id: int = 0

    def matches(self, edge: GraphEdge) -> bool:
        if self.type and edge.type != self.type:
            return False
        if self.from_id and edge.from_id != self.from_id:
            return False
        if self.to_id and edge.to_id != self.to_id:
            return False
        return True
