#!/usr/bin/env python3
"""
Workflow session: one graph, its history and its scheduler.

This is the surface the CLI and the web server drive.
"""
import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from mediaflow.engine.executor import RunResult, Scheduler
from mediaflow.engine.graph import Edge, ValidationResult, WorkflowGraph
from mediaflow.engine.history import HISTORY_LIMIT, HistoryManager
from mediaflow.engine.planner import RunScope
from mediaflow.errors import RunInProgressError
from mediaflow.nodes.base import Operation
from mediaflow.nodes.registry import NodeRegistry
from mediaflow.workflows.serialization import WorkflowSerializer

logger = logging.getLogger(__name__)


class WorkflowSession:
    """Combined graph, history and scheduler surface"""

    def __init__(self, registry: Optional[NodeRegistry] = None, max_concurrency: int = 4,
                 history_limit: int = HISTORY_LIMIT,
                 operations: Optional[Mapping[str, Operation]] = None):
        self.graph = WorkflowGraph(registry)
        self.scheduler = Scheduler(self.graph, max_concurrency=max_concurrency, operations=operations)
        self.history = HistoryManager(self.graph, limit=history_limit,
                                      is_busy=lambda: self.scheduler.is_running)
        self.metadata: Dict[str, Any] = {}

    @property
    def registry(self) -> NodeRegistry:
        return self.graph.registry

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    def subscribe(self, listener: Callable[[Dict[str, Any]], None]) -> Callable[[], None]:
        """Receive graph and run events; returns an unsubscribe callable"""
        unsubscribers = [self.graph.subscribe(listener), self.scheduler.subscribe(listener)]

        def unsubscribe():
            for unsubscribe_one in unsubscribers:
                unsubscribe_one()
        return unsubscribe

    # ------------------------------------------------------------------
    # Graph surface

    def add_node(self, node_type: str, position: Optional[Dict[str, float]] = None,
                 data: Optional[Dict[str, Any]] = None) -> str:
        return self.graph.add_node(node_type, position, data)

    def remove_node(self, node_id: str):
        self._ensure_idle("remove a node")
        self.graph.remove_node(node_id)

    def connect(self, source: str, source_handle: str, target: str, target_handle: str) -> Edge:
        self._ensure_idle("connect nodes")
        return self.graph.connect(source, source_handle, target, target_handle)

    def disconnect(self, edge_id: str):
        self._ensure_idle("disconnect nodes")
        self.graph.disconnect(edge_id)

    def toggle_edge_pause(self, edge_id: str) -> Edge:
        return self.graph.toggle_edge_pause(edge_id)

    def duplicate_nodes(self, node_ids: List[str],
                        offset: Optional[Dict[str, float]] = None) -> Dict[str, str]:
        self._ensure_idle("duplicate nodes")
        return self.graph.duplicate_nodes(node_ids, offset)

    def update_node_data(self, node_id: str, patch: Dict[str, Any]):
        self.graph.update_node_data(node_id, patch)

    def get_connected_inputs(self, node_id: str) -> Dict[str, Any]:
        return self.graph.get_connected_inputs(node_id)

    def validate(self) -> ValidationResult:
        return self.graph.validate()

    # ------------------------------------------------------------------
    # History surface

    def undo(self) -> bool:
        return self.history.undo()

    def redo(self) -> bool:
        return self.history.redo()

    def begin_group(self):
        self.history.begin_group()

    def end_group(self):
        self.history.end_group()

    @contextmanager
    def group(self) -> Iterator[HistoryManager]:
        with self.history.group() as history:
            yield history

    # ------------------------------------------------------------------
    # Scheduler surface

    async def execute(self, scope: Optional[RunScope] = None) -> RunResult:
        return await self.scheduler.execute(scope)

    async def regenerate_node(self, node_id: str) -> RunResult:
        return await self.scheduler.regenerate_node(node_id)

    async def resume(self) -> RunResult:
        return await self.scheduler.resume()

    def cancel(self) -> bool:
        return self.scheduler.cancel()

    def status(self) -> Dict[str, Any]:
        """Current run, last result and per-node status"""
        active = self.scheduler.active_run
        last = self.scheduler.last_result
        return {
            "running": active is not None,
            "run": active.to_dict() if active else None,
            "last_result": last.to_dict() if last else None,
            "paused_at": self.scheduler.paused_at,
            "nodes": {
                node.id: {"status": node.status, "error": node.data.get("error")}
                for node in self.graph.nodes
            },
            "can_undo": self.history.can_undo,
            "can_redo": self.history.can_redo,
        }

    # ------------------------------------------------------------------
    # Interchange

    def to_dict(self) -> Dict[str, Any]:
        return WorkflowSerializer(self.registry).serialize(self.graph, self.metadata)

    def load(self, workflow: Dict[str, Any]):
        """
        Replace the workflow with a serialized one.

        The load itself is not undoable and clears the history.
        """
        self._ensure_idle("load a workflow")
        graph, metadata = WorkflowSerializer(self.registry).deserialize(workflow)
        self.graph.replace_contents(graph)
        self.metadata = metadata
        self.history.clear()
        logger.info("Loaded workflow: %d nodes, %d edges", len(self.graph.nodes), len(self.graph.edges))

    def _ensure_idle(self, action: str):
        if self.scheduler.is_running:
            raise RunInProgressError(f"Cannot {action} while a run is active")
