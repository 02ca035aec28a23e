"""
Execution engine for node-based workflows.

Graph model, dependency resolution, run scheduling and undo history. The
combined session surface lives in ``mediaflow.engine.session``.
"""
from .graph import WorkflowGraph, Node, Edge, ValidationResult
from .data import resolve_node_inputs
from .planner import RunScope, ScopeKind, topological_order, plan_for
from .executor import Scheduler, RunResult, RunState
from .history import HistoryManager

__all__ = [
    'WorkflowGraph',
    'Node',
    'Edge',
    'ValidationResult',
    'resolve_node_inputs',
    'RunScope',
    'ScopeKind',
    'topological_order',
    'plan_for',
    'Scheduler',
    'RunResult',
    'RunState',
    'HistoryManager',
]
