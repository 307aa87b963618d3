"""Typed CRUD over graph nodes and edges.

Every operation runs in exactly one store transaction. Edge endpoints are
checked inside the write transaction that creates the edge, and deleting a
node removes its incident edges in the same transaction.
"""

from __future__ import annotations

import logging
from typing import Any

from .constants import EDGE_PARTITION, NODE_PARTITION
from .errors import EdgeReferenceError, NotFoundError
from .models import EdgeFilter, GraphEdge, GraphNode
from .store import Store, dump_record, load_record

logger = logging.getLogger(__name__)


class GraphRepository:
    """Nodes and edges stored in the graph partitions."""

    def __init__(self, store: Store):
        self.store = store

    # --- Nodes ---

    def get_node(self, node_id: int) -> GraphNode:
        with self.store.read_tx() as tx:
            raw = tx.partition(NODE_PARTITION).get(node_id)
        if raw is None:
            raise NotFoundError(f"node with ID {node_id} not found")
        return load_record(GraphNode, raw)

    def list_nodes(self, node_type: str | None = None) -> list[GraphNode]:
        """All nodes in ascending id order, optionally of one type."""
        with self.store.read_tx() as tx:
            rows = tx.partition(NODE_PARTITION).scan()
        nodes = [load_record(GraphNode, raw) for _, raw in rows]
        if node_type:
            nodes = [n for n in nodes if n.type == node_type]
        return nodes

    def create_node(self, node_type: str, properties: dict[str, Any] | None = None) -> GraphNode:
        with self.store.write_tx() as tx:
            nodes = tx.partition(NODE_PARTITION)
            node = GraphNode(
                id=nodes.next_sequence(),
                type=node_type,
                properties=properties or {},
            )
            nodes.put(node.id, dump_record(node))
        logger.debug(f"Created node {node.id} ({node.type})")
        return node

    def delete_node(self, node_id: int) -> None:
        """Delete a node and every edge that touches it.

        Deleting an id that does not exist is a no-op.
        """
        removed = 0
        with self.store.write_tx() as tx:
            tx.partition(NODE_PARTITION).delete(node_id)
            edges = tx.partition(EDGE_PARTITION)
            for edge_id, raw in edges.scan():
                if load_record(GraphEdge, raw).touches(node_id):
                    edges.delete(edge_id)
                    removed += 1
        logger.debug(f"Deleted node {node_id} and {removed} incident edges")

    # --- Edges ---

    def get_edge(self, edge_id: int) -> GraphEdge:
        with self.store.read_tx() as tx:
            raw = tx.partition(EDGE_PARTITION).get(edge_id)
        if raw is None:
            raise NotFoundError(f"edge with ID {edge_id} not found")
        return load_record(GraphEdge, raw)

    def list_edges(self, edge_filter: EdgeFilter | None = None) -> list[GraphEdge]:
        """All edges matching the filter, in ascending id order."""
        edge_filter = edge_filter or EdgeFilter()
        with self.store.read_tx() as tx:
            rows = tx.partition(EDGE_PARTITION).scan()
        edges = (load_record(GraphEdge, raw) for _, raw in rows)
        return [e for e in edges if edge_filter.matches(e)]

    def create_edge(self, edge_type: str, from_id: int, to_id: int) -> GraphEdge:
        """Connect two existing nodes.

        Raises:
            EdgeReferenceError: either endpoint does not exist. Nothing is
                written in that case.
        """
        with self.store.write_tx() as tx:
            nodes = tx.partition(NODE_PARTITION)
            if not nodes.contains(from_id):
                raise EdgeReferenceError(f"source node {from_id} not found")
            if not nodes.contains(to_id):
                raise EdgeReferenceError(f"target node {to_id} not found")

            edges = tx.partition(EDGE_PARTITION)
            edge = GraphEdge(
                id=edges.next_sequence(),
                type=edge_type,
                from_id=from_id,
                to_id=to_id,
            )
            edges.put(edge.id, dump_record(edge))
        logger.debug(f"Created edge {edge.id}: {from_id} -[{edge_type}]-> {to_id}")
        return edge

    def delete_edge(self, edge_id: int) -> None:
        """Delete an edge by id, whether or not it exists."""
        with self.store.write_tx() as tx:
            tx.partition(EDGE_PARTITION).delete(edge_id)
