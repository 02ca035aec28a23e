#!/usr/bin/env python3
"""
Dependency resolution and execution planning.

Orders nodes so that every node comes after all of its upstream
dependencies, and derives the node list a run of a given scope executes.
"""
import heapq
from collections import defaultdict, deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from mediaflow.errors import CycleError


class ScopeKind(str, Enum):
    """What a run executes"""
    FULL = "full"  # Every node
    FROM_NODE = "from_node"  # A node and everything downstream of it
    ONLY_NODE = "only_node"  # A single node, upstream results reused


@dataclass(frozen=True)
class RunScope:
    kind: ScopeKind = ScopeKind.FULL
    node_id: Optional[str] = None

    def __post_init__(self):
        if self.kind != ScopeKind.FULL and not self.node_id:
            raise ValueError(f"Scope {self.kind.value} requires a node id")

    @classmethod
    def full(cls) -> "RunScope":
        return cls(ScopeKind.FULL)

    @classmethod
    def from_node(cls, node_id: str) -> "RunScope":
        return cls(ScopeKind.FROM_NODE, node_id)

    @classmethod
    def only_node(cls, node_id: str) -> "RunScope":
        return cls(ScopeKind.ONLY_NODE, node_id)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "node_id": self.node_id}


def build_dependency_graph(edges: Iterable[Any]) -> Dict[str, List[str]]:
    """
    Build dependency graph from edges.

    Returns:
        Dictionary mapping node_id to list of dependent node_ids
    """
    dependents: Dict[str, List[str]] = defaultdict(list)
    for edge in edges:
        if edge.target not in dependents[edge.source]:
            dependents[edge.source].append(edge.target)
    return dict(dependents)


def topological_order(node_ids: Sequence[str], edges: Iterable[Any]) -> List[str]:
    """
    Topologically sort nodes (Kahn's algorithm).

    Ready nodes are taken in ascending insertion order, so the result is
    deterministic for a given graph.

    Args:
        node_ids: Node ids in insertion order
        edges: Edges with ``source`` and ``target`` attributes

    Returns:
        Node ids, every node after all of its upstream dependencies

    Raises:
        CycleError: The edges contain a cycle
    """
    position = {node_id: index for index, node_id in enumerate(node_ids)}
    dependents = build_dependency_graph(
        edge for edge in edges if edge.source in position and edge.target in position
    )

    in_degree: Dict[str, int] = {node_id: 0 for node_id in node_ids}
    for targets in dependents.values():
        for target in targets:
            in_degree[target] += 1

    ready = [position[node_id] for node_id, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order: List[str] = []

    while ready:
        node_id = node_ids[heapq.heappop(ready)]
        order.append(node_id)
        for dependent_id in dependents.get(node_id, []):
            in_degree[dependent_id] -= 1
            if in_degree[dependent_id] == 0:
                heapq.heappush(ready, position[dependent_id])

    if len(order) != len(node_ids):
        remaining = [node_id for node_id in node_ids if in_degree[node_id] > 0]
        raise CycleError(f"Workflow contains a cycle involving: {', '.join(remaining)}", remaining)
    return order


def descendants(node_id: str, edges: Iterable[Any]) -> Set[str]:
    """All nodes reachable downstream of ``node_id`` (excluding itself unless on a cycle)"""
    dependents = build_dependency_graph(edges)
    seen: Set[str] = set()
    queue = deque(dependents.get(node_id, []))
    while queue:
        current = queue.popleft()
        if current in seen:
            continue
        seen.add(current)
        queue.extend(dependents.get(current, []))
    return seen


def plan_for(graph, scope: RunScope) -> List[str]:
    """
    Node ids a run of ``scope`` executes, in dependency order.

    Cycle detection always runs first, whatever the scope.

    Raises:
        CycleError: The graph contains a cycle
        UnknownNodeError: The scope names a node that does not exist
    """
    node_ids = graph.node_ids()
    edges = graph.edges
    order = topological_order(node_ids, edges)

    if scope.kind == ScopeKind.FULL:
        return order

    graph.get_node(scope.node_id)
    if scope.kind == ScopeKind.ONLY_NODE:
        return [scope.node_id]

    included = descendants(scope.node_id, edges)
    included.add(scope.node_id)
    return [node_id for node_id in order if node_id in included]
