#!/usr/bin/env python3
"""
Workflow graph model.

Owns the nodes and typed edges of one workflow. Structural edits are checked
before they are applied (endpoints exist, port kinds are compatible, no
cycle) and are recorded with the attached history manager; data patches are
not. Every change is published to subscribers.
"""
import copy
import re
import threading
from contextlib import nullcontext
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

from mediaflow.engine.data import resolve_node_inputs
from mediaflow.engine.events import Observable
from mediaflow.engine.history import (
    AddEdge,
    AddNode,
    HistoryManager,
    Mutation,
    RemoveEdge,
    RemoveNode,
    SetEdgePause,
)
from mediaflow.engine.planner import descendants, topological_order
from mediaflow.errors import (
    CycleError,
    IncompatiblePortsError,
    StructuralError,
    UnknownEdgeError,
    UnknownNodeError,
    UnknownPortError,
)
from mediaflow.nodes.base import NodeStatus
from mediaflow.nodes.registry import NodeRegistry, get_registry

_ID_SUFFIX = re.compile(r"-(\d+)$")


@dataclass
class Node:
    """A node instance: type tag, canvas position and its data record"""
    id: str
    type: str
    position: Dict[str, float] = field(default_factory=lambda: {"x": 0.0, "y": 0.0})
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def status(self) -> str:
        return self.data.get("status", NodeStatus.IDLE.value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": dict(self.position),
            "data": copy.deepcopy(self.data),
        }


@dataclass(frozen=True)
class Edge:
    """A typed connection from an output handle to an input handle"""
    id: str
    source: str
    source_handle: str
    target: str
    target_handle: str
    paused: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source,
            "sourceHandle": self.source_handle,
            "target": self.target,
            "targetHandle": self.target_handle,
            "data": {"hasPause": self.paused},
        }


@dataclass
class ValidationResult:
    """Outcome of ``WorkflowGraph.validate``"""
    valid: bool
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


def make_edge_id(source: str, source_handle: Optional[str], target: str, target_handle: Optional[str]) -> str:
    return f"edge-{source}-{target}-{source_handle or 'default'}-{target_handle or 'default'}"


class WorkflowGraph(Observable):
    """Nodes and edges of a workflow, with structural queries"""

    def __init__(self, registry: Optional[NodeRegistry] = None):
        super().__init__()
        self.registry = registry or get_registry()
        self._nodes: Dict[str, Node] = {}
        self._edges: List[Edge] = []
        self._id_counter = 0
        self._history: Optional[HistoryManager] = None
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Read accessors

    @property
    def nodes(self) -> List[Node]:
        """Nodes in insertion order"""
        with self._lock:
            return list(self._nodes.values())

    @property
    def edges(self) -> List[Edge]:
        """Edges in insertion order"""
        with self._lock:
            return list(self._edges)

    def node_ids(self) -> List[str]:
        with self._lock:
            return list(self._nodes.keys())

    def has_node(self, node_id: str) -> bool:
        return node_id in self._nodes

    def get_node(self, node_id: str) -> Node:
        with self._lock:
            node = self._nodes.get(node_id)
        if node is None:
            raise UnknownNodeError(node_id)
        return node

    def get_edge(self, edge_id: str) -> Edge:
        with self._lock:
            for edge in self._edges:
                if edge.id == edge_id:
                    return edge
        raise UnknownEdgeError(edge_id)

    def incoming_edges(self, node_id: str) -> List[Edge]:
        with self._lock:
            return [edge for edge in self._edges if edge.target == node_id]

    def outgoing_edges(self, node_id: str) -> List[Edge]:
        with self._lock:
            return [edge for edge in self._edges if edge.source == node_id]

    def __len__(self) -> int:
        return len(self._nodes)

    # ------------------------------------------------------------------
    # Structural edits (history-tracked)

    def add_node(self, node_type: str, position: Optional[Dict[str, float]] = None,
                 data: Optional[Dict[str, Any]] = None, node_id: Optional[str] = None) -> str:
        """
        Add a node with its type's default data.

        Args:
            node_type: Registered node type tag
            position: Canvas position, passed through untouched
            data: Optional fields merged over the defaults
            node_id: Explicit id (used when loading); generated when omitted

        Returns:
            The new node id
        """
        spec = self.registry.require(node_type)
        with self._lock:
            if node_id is None:
                node_id = self._next_node_id(node_type)
            elif node_id in self._nodes:
                raise StructuralError(f"Duplicate node id: {node_id}")

            node_data = spec.default_data()
            if data:
                node_data.update(copy.deepcopy(data))
            node = Node(
                id=node_id,
                type=node_type,
                position=dict(position or {"x": 0.0, "y": 0.0}),
                data=node_data,
            )
            index = len(self._nodes)
            self._insert_node(node, index)
            self._record(AddNode(node_id=node_id, index=index, node=copy.deepcopy(node)))
        return node_id

    def remove_node(self, node_id: str):
        """Remove a node and every edge incident to it, as one history entry"""
        with self._lock:
            if node_id not in self._nodes:
                raise UnknownNodeError(node_id)
            index, node, removed_edges = self._delete_node(node_id)
            self._record(RemoveNode(node_id=node_id, index=index, node=node, edges=removed_edges))

    def connect(self, source: str, source_handle: str, target: str, target_handle: str) -> Edge:
        """
        Connect an output handle to an input handle.

        Raises:
            UnknownNodeError: Either endpoint does not exist
            UnknownPortError: A handle is not declared by its node's type
            IncompatiblePortsError: The target port does not accept the source kind
            CycleError: The edge would close a cycle
            StructuralError: The same connection already exists
        """
        with self._lock:
            source_node = self.get_node(source)
            target_node = self.get_node(target)

            output = self.registry.require(source_node.type).get_output(source_handle)
            if output is None:
                raise UnknownPortError(f'Node "{source}" has no output "{source_handle}"')
            port = self.registry.require(target_node.type).get_input(target_handle)
            if port is None:
                raise UnknownPortError(f'Node "{target}" has no input "{target_handle}"')
            if not port.accepts(output.kind):
                raise IncompatiblePortsError(
                    f'Cannot connect {output.kind.value} output "{source}.{source_handle}" '
                    f'to {port.kind.value} input "{target}.{target_handle}"'
                )

            if source == target or self._reaches(target, source):
                raise CycleError(f'Connecting "{source}" to "{target}" would create a cycle', [source, target])

            edge_id = make_edge_id(source, source_handle, target, target_handle)
            if any(edge.id == edge_id for edge in self._edges):
                raise StructuralError(f"Connection already exists: {edge_id}")

            edge = Edge(edge_id, source, source_handle, target, target_handle)
            index = len(self._edges)
            self._insert_edge(edge, index)
            self._record(AddEdge(edge=edge, index=index))
        return edge

    def disconnect(self, edge_id: str):
        """Remove one edge, as one history entry"""
        with self._lock:
            edge = self.get_edge(edge_id)
            index = self._delete_edge(edge_id)
            self._record(RemoveEdge(edge=edge, index=index))

    def toggle_edge_pause(self, edge_id: str) -> Edge:
        """
        Flip the pause mark on an edge; a run stops before the edge's target.

        Returns:
            The updated edge
        """
        with self._lock:
            paused = not self.get_edge(edge_id).paused
            edge = self._set_edge_paused(edge_id, paused)
            self._record(SetEdgePause(edge_id=edge_id, paused=paused))
        return edge

    def duplicate_nodes(self, node_ids: List[str],
                        offset: Optional[Dict[str, float]] = None) -> Dict[str, str]:
        """
        Copy nodes, and the edges running between them, as one history entry.

        Copies get fresh ids, positions shifted by ``offset`` and a deep copy
        of the source data. Edges leaving or entering the selection are not
        copied.

        Args:
            node_ids: Nodes to copy
            offset: Position shift, ``{"x": 50, "y": 50}`` when omitted

        Returns:
            Mapping of source node id to the id of its copy
        """
        offset = offset or {"x": 50.0, "y": 50.0}
        with self._lock:
            for node_id in node_ids:
                self.get_node(node_id)
            wanted = set(node_ids)
            selected = [node for node in self._nodes.values() if node.id in wanted]
            edges = [edge for edge in self._edges if edge.source in wanted and edge.target in wanted]

            id_map: Dict[str, str] = {}
            with self._history.group() if self._history is not None else nullcontext():
                for node in selected:
                    position = {
                        "x": node.position.get("x", 0.0) + offset.get("x", 0.0),
                        "y": node.position.get("y", 0.0) + offset.get("y", 0.0),
                    }
                    id_map[node.id] = self.add_node(node.type, position, node.data)
                for edge in edges:
                    copied = self.connect(id_map[edge.source], edge.source_handle,
                                          id_map[edge.target], edge.target_handle)
                    if edge.paused:
                        self.toggle_edge_pause(copied.id)
        return id_map

    # ------------------------------------------------------------------
    # Data (not history-tracked)

    def update_node_data(self, node_id: str, patch: Dict[str, Any]):
        """Shallow-merge ``patch`` into the node's data"""
        with self._lock:
            node = self.get_node(node_id)
            node.data.update(patch)
        self._emit("node_data_changed", node_id=node_id, patch=copy.deepcopy(dict(patch)))

    def get_connected_inputs(self, node_id: str) -> Dict[str, Any]:
        """Per-port input values resolved from the current graph"""
        with self._lock:
            return resolve_node_inputs(self, node_id)

    def connected_handles(self, node_id: str) -> Dict[str, bool]:
        return {edge.target_handle: True for edge in self.incoming_edges(node_id)}

    def validate(self) -> ValidationResult:
        """Check the workflow is runnable; problems are reported as messages"""
        with self._lock:
            nodes = list(self._nodes.values())
            if not nodes:
                return ValidationResult(valid=False, errors=["Workflow is empty"])

            errors: List[str] = []
            for node in nodes:
                spec = self.registry.get_spec(node.type)
                if spec is None:
                    errors.append(f'Unknown node type "{node.type}" for node "{node.id}"')
                    continue
                errors.extend(spec.validate(node.id, node.data, self.connected_handles(node.id)))

            try:
                topological_order(self.node_ids(), self._edges)
            except CycleError as e:
                errors.append(str(e))

        return ValidationResult(valid=not errors, errors=errors)

    # ------------------------------------------------------------------
    # Whole-graph operations

    def replace_contents(self, other: "WorkflowGraph"):
        """Take over the nodes and edges of another graph (not history-tracked)"""
        with self._lock:
            self._nodes = {node.id: copy.deepcopy(node) for node in other.nodes}
            self._edges = list(other.edges)
            self.sync_id_counter()
        self._emit("graph_reset")

    def sync_id_counter(self):
        """Move the id counter past the highest numeric id suffix in use"""
        with self._lock:
            highest = 0
            for node_id in self._nodes:
                match = _ID_SUFFIX.search(node_id)
                if match:
                    highest = max(highest, int(match.group(1)))
            self._id_counter = highest

    def attach_history(self, history: HistoryManager):
        self._history = history

    # ------------------------------------------------------------------
    # Primitive edits shared with history mutations; never recorded

    def _insert_node(self, node: Node, index: int):
        items = list(self._nodes.items())
        items.insert(min(index, len(items)), (node.id, node))
        self._nodes = dict(items)
        self._emit("node_added", node=node.to_dict())

    def _delete_node(self, node_id: str) -> Tuple[int, Node, List[Tuple[int, Edge]]]:
        index = list(self._nodes).index(node_id)
        removed_edges = [
            (i, edge) for i, edge in enumerate(self._edges)
            if edge.source == node_id or edge.target == node_id
        ]
        for _, edge in reversed(removed_edges):
            self._delete_edge(edge.id)
        node = self._nodes.pop(node_id)
        self._emit("node_removed", node_id=node_id)
        return index, node, removed_edges

    def _insert_edge(self, edge: Edge, index: int):
        self._edges.insert(min(index, len(self._edges)), edge)
        self._emit("edge_added", edge=edge.to_dict())

    def _delete_edge(self, edge_id: str) -> int:
        for index, edge in enumerate(self._edges):
            if edge.id == edge_id:
                del self._edges[index]
                self._emit("edge_removed", edge_id=edge_id)
                return index
        raise UnknownEdgeError(edge_id)

    def _set_edge_paused(self, edge_id: str, paused: bool) -> Edge:
        for index, edge in enumerate(self._edges):
            if edge.id == edge_id:
                self._edges[index] = replace(edge, paused=paused)
                self._emit("edge_updated", edge=self._edges[index].to_dict())
                return self._edges[index]
        raise UnknownEdgeError(edge_id)

    def _next_node_id(self, node_type: str) -> str:
        while True:
            self._id_counter += 1
            node_id = f"{node_type}-{self._id_counter}"
            if node_id not in self._nodes:
                return node_id

    def _reaches(self, start: str, goal: str) -> bool:
        """Whether ``goal`` is reachable from ``start`` along edges"""
        return goal in descendants(start, self._edges)

    def _record(self, mutation: Mutation):
        if self._history is not None:
            self._history.record(mutation)
