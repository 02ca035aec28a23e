#!/usr/bin/env python3
"""
Exception hierarchy for workflow editing and execution.
"""
from typing import List, Optional


class WorkflowError(Exception):
    """Base class for all workflow errors"""


class StructuralError(WorkflowError, ValueError):
    """An edit that would break graph invariants; rejected before it is applied"""


class CycleError(StructuralError):
    """The graph contains, or an edit would introduce, a cycle"""

    def __init__(self, message: str, nodes: Optional[List[str]] = None):
        super().__init__(message)
        self.nodes = list(nodes or [])


class IncompatiblePortsError(StructuralError):
    """Source and target handle kinds cannot be connected"""


class UnknownPortError(StructuralError):
    """A handle name is not declared by the node's type"""


class UnknownNodeError(WorkflowError, LookupError):
    """No node with the given id exists in the graph"""

    def __init__(self, node_id: str):
        super().__init__(f"Node not found: {node_id}")
        self.node_id = node_id


class UnknownEdgeError(WorkflowError, LookupError):
    """No edge with the given id exists in the graph"""

    def __init__(self, edge_id: str):
        super().__init__(f"Edge not found: {edge_id}")
        self.edge_id = edge_id


class UnknownNodeTypeError(WorkflowError, LookupError):
    """The node type tag is not registered"""

    def __init__(self, node_type: str, available: Optional[List[str]] = None):
        message = f"Unknown node type: {node_type!r}"
        if available:
            message += f". Registered: {', '.join(sorted(available))}"
        super().__init__(message)
        self.node_type = node_type


class WorkflowValidationError(WorkflowError):
    """The graph is well-formed but not runnable"""

    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors) or "Workflow is not valid")
        self.errors = list(errors)


class NodeOperationError(WorkflowError):
    """A node's operation failed"""

    def __init__(self, message: str, node_id: Optional[str] = None):
        super().__init__(message)
        self.node_id = node_id


class RunInProgressError(WorkflowError):
    """A run was requested while another run is active"""


class CancellationError(WorkflowError):
    """The active run was cancelled by request"""
