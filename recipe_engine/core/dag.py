"""
Graph Validator for Recipe DAGs

Proves a recipe's nodes + edges form a directed acyclic graph and computes
the order nodes execute in.

Checks performed by validate_dag(), in order:
0. Node ids are unique
a. Every edge endpoint references an existing node (or the external input)
b. The node set is non-empty
c. No cycles (depth-first search with a "currently visiting" set)
d. Edges only read outputs their source node declares
e. Declared `dependencies` (when present) match the node's incoming edges
"""

import heapq
import logging
from typing import Any, Dict, Iterable, List, Sequence, Set, Tuple

from .exceptions import InvalidGraphError
from .nodes import BaseNode, Edge, EXTERNAL_INPUT, create_edge_from_dict, create_node_from_dict

logger = logging.getLogger(__name__)


def parse_graph(
    nodes_data: Any,
    edges_data: Any
) -> Tuple[List[BaseNode], List[Edge]]:
    """
    Build typed nodes and edges from stored/submitted JSON.

    Raises:
        InvalidGraphError: If the payload is not a list or any item is malformed
    """
    if not isinstance(nodes_data, list):
        raise InvalidGraphError("Recipe 'nodes' must be an array")
    if not isinstance(edges_data, list):
        raise InvalidGraphError("Recipe 'edges' must be an array")

    try:
        nodes = [create_node_from_dict(n) for n in nodes_data]
        edges = [create_edge_from_dict(e) for e in edges_data]
    except ValueError as e:
        raise InvalidGraphError(str(e))

    return nodes, edges


def _adjacency(edges: Iterable[Edge]) -> Dict[str, List[str]]:
    """Successor lists, excluding the external input pseudo-node"""
    adjacency: Dict[str, List[str]] = {}
    for edge in edges:
        if edge.from_external:
            continue
        successors = adjacency.setdefault(edge.source, [])
        if edge.target not in successors:
            successors.append(edge.target)
    return adjacency


def validate_dag(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> None:
    """
    Validate recipe structure.

    Args:
        nodes: Parsed nodes (declaration order preserved)
        edges: Parsed edges

    Raises:
        InvalidGraphError: With the specific violated rule
    """
    node_ids: Set[str] = set()
    for node in nodes:
        if node.id in node_ids:
            raise InvalidGraphError(f"duplicate node id: {node.id}")
        node_ids.add(node.id)

    # (a) endpoints exist
    for edge in edges:
        if not edge.from_external and edge.source not in node_ids:
            raise InvalidGraphError(f"unknown node reference: {edge.source}")
        if edge.target not in node_ids:
            raise InvalidGraphError(f"unknown node reference: {edge.target}")

    # (b) non-empty
    if not nodes:
        raise InvalidGraphError("recipe must have at least one node")

    # (c) acyclic
    _check_acyclic(nodes, edges)

    # (d) outputs exist on their source node
    by_id = {node.id: node for node in nodes}
    for edge in edges:
        if edge.from_external:
            continue
        source = by_id[edge.source]
        if edge.source_output not in source.outputs:
            raise InvalidGraphError(
                f"node '{edge.source}' has no output '{edge.source_output}' "
                f"(declared outputs: {source.outputs})"
            )

    # (e) declared dependencies agree with the edges
    for node in nodes:
        if node.dependencies is None:
            continue
        from_edges = {e.source for e in edges if e.target == node.id and not e.from_external}
        declared = set(node.dependencies)
        if declared != from_edges:
            raise InvalidGraphError(
                f"node '{node.id}' declares dependencies {sorted(declared)} "
                f"but its incoming edges come from {sorted(from_edges)}"
            )

    logger.debug(f"DAG validated: {len(nodes)} nodes, {len(edges)} edges")


def _check_acyclic(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> None:
    adjacency = _adjacency(edges)
    visited: Set[str] = set()
    visiting: Set[str] = set()

    for node in nodes:
        if node.id in visited:
            continue

        # Iterative DFS: stack of (node_id, successor iterator)
        stack = [(node.id, iter(adjacency.get(node.id, [])))]
        visiting.add(node.id)

        while stack:
            current, successors = stack[-1]
            advanced = False
            for successor in successors:
                if successor in visiting:
                    raise InvalidGraphError(f"cycle detected involving node {successor}")
                if successor not in visited:
                    visiting.add(successor)
                    stack.append((successor, iter(adjacency.get(successor, []))))
                    advanced = True
                    break
            if not advanced:
                stack.pop()
                visiting.discard(current)
                visited.add(current)


def topological_order(nodes: Sequence[BaseNode], edges: Sequence[Edge]) -> List[str]:
    """
    Kahn's algorithm. Among nodes that are ready at the same time, the one
    declared first runs first, so the order is deterministic.

    Raises:
        InvalidGraphError: If not every node could be ordered (cycle)
    """
    index = {node.id: i for i, node in enumerate(nodes)}
    adjacency = _adjacency(edges)

    in_degree = {node.id: 0 for node in nodes}
    for source, successors in adjacency.items():
        for successor in successors:
            in_degree[successor] += 1

    ready = [index[node_id] for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)

    order: List[str] = []
    while ready:
        node_id = nodes[heapq.heappop(ready)].id
        order.append(node_id)
        for successor in adjacency.get(node_id, []):
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                heapq.heappush(ready, index[successor])

    if len(order) != len(nodes):
        remaining = [node.id for node in nodes if node.id not in set(order)]
        raise InvalidGraphError(f"cycle detected involving node {remaining[0]}")

    return order


def get_ancestors(node_id: str, edges: Sequence[Edge]) -> Set[str]:
    """All nodes with a path to node_id (external input excluded)"""
    predecessors: Dict[str, List[str]] = {}
    for edge in edges:
        if not edge.from_external:
            predecessors.setdefault(edge.target, []).append(edge.source)
    return _closure(node_id, predecessors)


def get_descendants(node_id: str, edges: Sequence[Edge]) -> Set[str]:
    """All nodes reachable from node_id"""
    return _closure(node_id, _adjacency(edges))


def _closure(start: str, neighbours: Dict[str, List[str]]) -> Set[str]:
    seen: Set[str] = set()
    frontier = list(neighbours.get(start, []))
    while frontier:
        current = frontier.pop()
        if current in seen:
            continue
        seen.add(current)
        frontier.extend(neighbours.get(current, []))
    seen.discard(start)
    return seen
