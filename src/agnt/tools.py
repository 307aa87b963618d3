"""Graph tools exposed to the model.

Each tool declares a JSON-schema argument spec that is sent to the provider
as-is, and a handler that adapts validated arguments onto a GraphRepository
call. Repository lookup/validation failures become tool errors the model can
read and react to; storage failures propagate.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from .constants import KEY_WIDTH
from .errors import EdgeReferenceError, InvalidArgumentError, NotFoundError
from .graph import GraphRepository
from .models import EdgeFilter

logger = logging.getLogger(__name__)

# Failures the model can recover from on its next turn
RECOVERABLE_ERRORS = (NotFoundError, InvalidArgumentError, EdgeReferenceError)

_SUCCESS = {"success": True}

# Integer arguments are ids, stored as unsigned keys
MAX_ID = 2 ** (8 * KEY_WIDTH) - 1


@dataclass(frozen=True)
class Tool:
    """A callable graph operation."""

    name: str
    description: str
    input_schema: dict
    handler: Callable[[GraphRepository, dict[str, Any]], Any]

    def definition(self) -> dict:
        """Provider-facing function declaration."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True)
class ToolOutcome:
    """Result of one dispatch. Exactly one field is non-empty."""

    result: str = ""
    error: str = ""

    @property
    def ok(self) -> bool:
        return not self.error


def _schema(properties: dict, required: list[str] | None = None) -> dict:
    schema = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


def _check_type(name: str, value: Any, expected: str) -> Any:
    if expected == "integer":
        # JSON numbers may arrive as floats; bool is an int subclass
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            if not 0 <= value <= MAX_ID:
                raise InvalidArgumentError(
                    f"argument {name!r} must be between 0 and {MAX_ID}, got {value}"
                )
            return value
    elif expected == "string":
        if isinstance(value, str):
            return value
    elif expected == "object":
        if isinstance(value, dict):
            return value
    else:
        raise InvalidArgumentError(f"argument {name!r} has unsupported schema type {expected!r}")
    raise InvalidArgumentError(
        f"argument {name!r} must be {expected}, got {type(value).__name__}"
    )


def validate_args(schema: dict, args: Any) -> dict[str, Any]:
    """Check args against a tool schema; returns a cleaned copy.

    Raises:
        InvalidArgumentError: args is not an object, a required argument is
            missing, an argument is unknown, or a value has the wrong type.
    """
    if not isinstance(args, dict):
        raise InvalidArgumentError("tool arguments must be an object")
    properties = schema.get("properties", {})
    for name in schema.get("required", []):
        if name not in args:
            raise InvalidArgumentError(f"missing required argument {name!r}")

    clean = {}
    for name, value in args.items():
        if name not in properties:
            raise InvalidArgumentError(f"unknown argument {name!r}")
        clean[name] = _check_type(name, value, properties[name]["type"])
    return clean


def _to_jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_to_jsonable(item) for item in result]
    return result


# --- Handlers ---


def _get_node(graph: GraphRepository, args: dict) -> Any:
    return graph.get_node(args["id"])


def _list_nodes(graph: GraphRepository, args: dict) -> Any:
    return graph.list_nodes(args.get("node_type") or None)


def _create_node(graph: GraphRepository, args: dict) -> Any:
    return graph.create_node(args["type"], args.get("props"))


def _delete_node(graph: GraphRepository, args: dict) -> Any:
    graph.delete_node(args["id"])
    return _SUCCESS


def _get_edge(graph: GraphRepository, args: dict) -> Any:
    return graph.get_edge(args["id"])


def _list_edges(graph: GraphRepository, args: dict) -> Any:
    return graph.list_edges(EdgeFilter(
        type=args.get("type", ""),
        from_id=args.get("from_id", 0),
        to_id=args.get("to_id", 0),
    ))


def _create_edge(graph: GraphRepository, args: dict) -> Any:
    return graph.create_edge(args["type"], args["from_id"], args["to_id"])


def _delete_edge(graph: GraphRepository, args: dict) -> Any:
    graph.delete_edge(args["id"])
    return _SUCCESS


GRAPH_TOOLS: tuple[Tool, ...] = (
    Tool(
        name="get_node",
        description="Retrieves a single graph node by its ID. Returns the node's ID, type, and properties.",
        input_schema=_schema(
            {
                "id": {
                    "type": "integer",
                    "description": "The unique identifier of the node to retrieve.",
                },
            },
            required=["id"],
        ),
        handler=_get_node,
    ),
    Tool(
        name="list_nodes",
        description="Lists all graph nodes of a specific type. If no type is provided, returns all nodes.",
        input_schema=_schema({
            "node_type": {
                "type": "string",
                "description": "The type of nodes to list. If empty, all nodes will be returned.",
            },
        }),
        handler=_list_nodes,
    ),
    Tool(
        name="create_node",
        description=(
            "Creates a new graph node with the specified type and properties. "
            "Returns the created node with its assigned ID."
        ),
        input_schema=_schema(
            {
                "type": {
                    "type": "string",
                    "description": "The type of the node to create. For example, 'person', 'document', etc.",
                },
                "props": {
                    "type": "object",
                    "description": 'A map of properties to store with the node. For example, {"name": "John", "age": 30}.',
                },
            },
            required=["type"],
        ),
        handler=_create_node,
    ),
    Tool(
        name="delete_node",
        description="Deletes a graph node by its ID. Note that this will also delete all edges connected to this node.",
        input_schema=_schema(
            {
                "id": {
                    "type": "integer",
                    "description": "The unique identifier of the node to delete.",
                },
            },
            required=["id"],
        ),
        handler=_delete_node,
    ),
    Tool(
        name="get_edge",
        description=(
            "Retrieves a single graph edge by its ID. "
            "Returns the edge's ID, type, and the IDs of its connected nodes."
        ),
        input_schema=_schema(
            {
                "id": {
                    "type": "integer",
                    "description": "The unique identifier of the edge to retrieve.",
                },
            },
            required=["id"],
        ),
        handler=_get_edge,
    ),
    Tool(
        name="list_edges",
        description=(
            "Lists graph edges based on optional filters. "
            "Can filter by edge type, source node ID, and/or target node ID."
        ),
        input_schema=_schema({
            "type": {
                "type": "string",
                "description": "Filter edges by this type. For example, 'knows', 'contains', etc.",
            },
            "from_id": {
                "type": "integer",
                "description": "Filter edges that originate from this node ID.",
            },
            "to_id": {
                "type": "integer",
                "description": "Filter edges that point to this node ID.",
            },
        }),
        handler=_list_edges,
    ),
    Tool(
        name="create_edge",
        description=(
            "Creates a new graph edge connecting two nodes. "
            "Specify the edge type and the IDs of the source and target nodes."
        ),
        input_schema=_schema(
            {
                "type": {
                    "type": "string",
                    "description": "The type of the edge to create. For example, 'knows', 'contains', etc.",
                },
                "from_id": {
                    "type": "integer",
                    "description": "The ID of the source node where the edge starts.",
                },
                "to_id": {
                    "type": "integer",
                    "description": "The ID of the target node where the edge ends.",
                },
            },
            required=["type", "from_id", "to_id"],
        ),
        handler=_create_edge,
    ),
    Tool(
        name="delete_edge",
        description="Deletes a graph edge by its ID.",
        input_schema=_schema(
            {
                "id": {
                    "type": "integer",
                    "description": "The unique identifier of the edge to delete.",
                },
            },
            required=["id"],
        ),
        handler=_delete_edge,
    ),
)


class ToolRegistry:
    """Name -> Tool lookup bound to one graph repository."""

    def __init__(self, graph: GraphRepository, tools: tuple[Tool, ...] = GRAPH_TOOLS):
        self.graph = graph
        self._tools = {tool.name: tool for tool in tools}

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def definitions(self) -> list[dict]:
        """Function declarations for the provider request."""
        return [tool.definition() for tool in self._tools.values()]

    def dispatch(self, name: str, args: Any) -> ToolOutcome:
        """Run a tool call and capture its outcome.

        Recoverable failures (unknown tool, bad arguments, missing ids,
        dangling edge endpoints) come back as ToolOutcome.error. Anything
        else, including StorageError, is raised.
        """
        logger.info(f"Tool call: {name}")
        logger.debug(f"Arguments: {args}")

        tool = self._tools.get(name)
        if tool is None:
            return ToolOutcome(error=f"unknown tool: {name}")

        try:
            result = tool.handler(self.graph, validate_args(tool.input_schema, args))
        except RECOVERABLE_ERRORS as e:
            logger.info(f"Tool {name} failed: {e}")
            return ToolOutcome(error=str(e))

        try:
            return ToolOutcome(result=json.dumps(_to_jsonable(result)))
        except (TypeError, ValueError) as e:
            return ToolOutcome(error=f"failed to encode result: {e}")
