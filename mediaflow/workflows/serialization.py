#!/usr/bin/env python3
"""
Workflow serialization format.

Converts a workflow graph to and from a versioned dictionary and reads or
writes it as a JSON file. This is an exchange format for the CLI and the web
API; nothing is saved automatically.

Format::

    {
      "version": 1,
      "metadata": {...},
      "nodes": [{"id", "type", "position": {"x", "y"}, "data": {...}}],
      "edges": [{"id", "source", "sourceHandle", "target", "targetHandle",
                 "data": {"hasPause"}}]
    }
"""
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from mediaflow.engine.graph import WorkflowGraph
from mediaflow.errors import StructuralError
from mediaflow.nodes.registry import NodeRegistry, get_registry
from mediaflow.utils.common import load_json, save_json

FORMAT_VERSION = 1


class WorkflowSerializer:
    """Handles workflow serialization and deserialization"""

    def __init__(self, registry: Optional[NodeRegistry] = None):
        self.registry = registry or get_registry()

    def serialize(self, graph: WorkflowGraph, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Serialize a workflow to dictionary format.

        Args:
            graph: Workflow graph
            metadata: Optional workflow metadata

        Returns:
            Dictionary representation of workflow
        """
        return {
            "version": FORMAT_VERSION,
            "metadata": dict(metadata or {}),
            "nodes": [node.to_dict() for node in graph.nodes],
            "edges": [edge.to_dict() for edge in graph.edges],
        }

    def deserialize(self, workflow_data: Dict[str, Any]) -> Tuple[WorkflowGraph, Dict[str, Any]]:
        """
        Deserialize a workflow from dictionary format.

        Every edge goes through ``connect``, so a document with unknown
        ports, incompatible kinds or a cycle is rejected as a whole.

        Args:
            workflow_data: Dictionary representation of workflow

        Returns:
            Tuple of (new graph, metadata)

        Raises:
            StructuralError: Malformed document or an invalid edge
            UnknownNodeTypeError: A node has an unregistered type
        """
        if not isinstance(workflow_data, dict):
            raise StructuralError("Workflow must be a JSON object")

        version = workflow_data.get("version", FORMAT_VERSION)
        try:
            major = int(float(version))
        except (TypeError, ValueError):
            raise StructuralError(f"Invalid workflow version: {version!r}")
        if major > FORMAT_VERSION:
            raise StructuralError(f"Unsupported workflow version: {version}")

        graph = WorkflowGraph(self.registry)
        for node_data in workflow_data.get("nodes", []):
            try:
                node_id = node_data["id"]
                node_type = node_data["type"]
            except (KeyError, TypeError):
                raise StructuralError(f"Node entry needs an id and a type: {node_data!r}")
            graph.add_node(
                node_type,
                position=node_data.get("position"),
                data=node_data.get("data"),
                node_id=node_id,
            )

        for edge_data in workflow_data.get("edges", []):
            try:
                edge = graph.connect(
                    edge_data["source"],
                    edge_data.get("sourceHandle") or edge_data.get("source_handle"),
                    edge_data["target"],
                    edge_data.get("targetHandle") or edge_data.get("target_handle"),
                )
            except (KeyError, TypeError):
                raise StructuralError(f"Edge entry needs a source and a target: {edge_data!r}")
            if (edge_data.get("data") or {}).get("hasPause"):
                graph.toggle_edge_pause(edge.id)

        graph.sync_id_counter()
        return graph, dict(workflow_data.get("metadata") or {})

    def save_workflow(self, workflow_path: Path, graph: WorkflowGraph,
                      metadata: Optional[Dict[str, Any]] = None):
        """
        Save workflow to JSON file.

        Args:
            workflow_path: Path to save workflow file
            graph: Workflow graph
            metadata: Optional workflow metadata
        """
        save_json(self.serialize(graph, metadata), Path(workflow_path))

    def load_workflow(self, workflow_path: Path) -> Tuple[WorkflowGraph, Dict[str, Any]]:
        """
        Load workflow from JSON file.

        Args:
            workflow_path: Path to workflow file

        Returns:
            Tuple of (graph, metadata)
        """
        return self.deserialize(load_json(Path(workflow_path)))
