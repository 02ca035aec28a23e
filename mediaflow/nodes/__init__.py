"""
Node types for mediaflow workflows.

Each node type is a tagged NodeSpec (ports, default data, operation)
registered with ``@register_node``; built-in types load with the registry.
"""
from .base import NodeSpec, InputPort, OutputPort, PortKind, NodeStatus
from .registry import NodeRegistry, register_node, get_registry

__all__ = [
    'NodeSpec',
    'InputPort',
    'OutputPort',
    'PortKind',
    'NodeStatus',
    'NodeRegistry',
    'register_node',
    'get_registry',
]
