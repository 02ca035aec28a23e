#!/usr/bin/env python3
"""
Node registry for managing available node types.

Node modules in this package register their types with ``@register_node``;
the global registry imports them on first use.
"""
import importlib
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from mediaflow.errors import UnknownNodeTypeError
from mediaflow.nodes.base import InputPort, NodeSpec, Operation, OutputPort, Validator

logger = logging.getLogger(__name__)


class NodeRegistry:
    """Registry for all available node types"""

    def __init__(self):
        self._specs: Dict[str, NodeSpec] = {}

    def register(self, spec: NodeSpec):
        """
        Register a node type.

        Args:
            spec: Node type declaration; replaces any earlier spec with the same tag
        """
        if not spec.node_type or not spec.node_type.strip():
            raise ValueError("node_type must be non-empty")
        if spec.node_type in self._specs:
            logger.debug("Replacing registered node type %s", spec.node_type)
        self._specs[spec.node_type] = spec

    def get_spec(self, node_type: str) -> Optional[NodeSpec]:
        """Get node type declaration by tag"""
        return self._specs.get(node_type)

    def require(self, node_type: str) -> NodeSpec:
        spec = self._specs.get(node_type)
        if spec is None:
            raise UnknownNodeTypeError(node_type, list(self._specs))
        return spec

    def list_node_types(self) -> List[str]:
        """List all registered node types"""
        return list(self._specs.keys())

    def get_node_metadata(self, node_type: str) -> Dict[str, Any]:
        """Get metadata for a node type"""
        spec = self._specs.get(node_type)
        return dict(spec.metadata) if spec else {}

    def __contains__(self, node_type: str) -> bool:
        return node_type in self._specs

    def discover_nodes(self, package_path: Path, package: str):
        """
        Import every node module in a package so its types register themselves.

        Args:
            package_path: Directory of the package containing node modules
            package: Dotted package name used for the imports
        """
        if not package_path.exists():
            return

        for module_file in sorted(package_path.glob("*.py")):
            if module_file.name.startswith("_") or module_file.stem in ("base", "registry"):
                continue
            importlib.import_module(f"{package}.{module_file.stem}")


# Global registry instance
_registry: Optional[NodeRegistry] = None
_discovered = False


def _global_registry() -> NodeRegistry:
    global _registry
    if _registry is None:
        _registry = NodeRegistry()
    return _registry


def get_registry() -> NodeRegistry:
    """Get the global node registry with built-in node types loaded"""
    global _discovered
    registry = _global_registry()
    if not _discovered:
        _discovered = True
        registry.discover_nodes(Path(__file__).parent, __package__)
    return registry


def register_node(
    node_type: str,
    inputs: Optional[List[InputPort]] = None,
    outputs: Optional[List[OutputPort]] = None,
    defaults: Optional[Dict[str, Any]] = None,
    validator: Optional[Validator] = None,
    metadata: Optional[Dict[str, Any]] = None,
    registry: Optional[NodeRegistry] = None,
) -> Callable[[Operation], Operation]:
    """
    Decorator registering an operation function as a node type.

    Usage:
        @register_node("prompt", outputs=[OutputPort("text", PortKind.TEXT, "prompt")],
                       metadata={"category": "input"})
        def prompt(inputs, config):
            ...
    """
    def decorator(operation: Operation) -> Operation:
        spec = NodeSpec(
            node_type=node_type,
            operation=operation,
            inputs={port.name: port for port in inputs or []},
            outputs={port.name: port for port in outputs or []},
            defaults=dict(defaults or {}),
            validator=validator,
            metadata=dict(metadata or {}),
        )
        (registry or _global_registry()).register(spec)
        return operation
    return decorator
