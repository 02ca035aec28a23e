#!/usr/bin/env python3
"""
Data management for node-based workflows.

Resolves the values flowing into a node's input ports by following edges
back to the upstream nodes' output fields. Resolution always reads the
current graph; nothing is cached.

Multi-edge policy:
    - Collecting ports (image, reference, and any port declared
      ``multiple=True``) gather every connected value into a list, in edge
      insertion order. List-valued outputs are flattened in.
    - All other ports are single-valued: the most recently added edge with a
      present value wins. A list arriving on a single port contributes its
      first item.
    - Absent values (None, empty string, empty list) are skipped. An
      unconnected port falls back to its ``manual_field`` in the node's data
      when it declares one; otherwise it resolves to [] or None.
"""
from typing import Any, Dict, List

from mediaflow.nodes.base import NodeSpec


def is_absent(value: Any) -> bool:
    """Whether a port value counts as missing"""
    return value is None or (isinstance(value, (str, list, tuple)) and len(value) == 0)


def get_output_value(graph, node_id: str, handle: str) -> Any:
    """Current value of one output port, read from the node's data"""
    node = graph.get_node(node_id)
    spec = graph.registry.get_spec(node.type)
    port = spec.get_output(handle) if spec else None
    if port is None:
        return None
    return node.data.get(port.data_field)


def _collect(values: List[Any], value: Any):
    if isinstance(value, (list, tuple)):
        values.extend(item for item in value if not is_absent(item))
    else:
        values.append(value)


def resolve_inputs(graph, node_id: str, spec: NodeSpec) -> Dict[str, Any]:
    """
    Resolve all inputs for a node by following connections.

    Args:
        graph: Workflow graph holding the node
        node_id: Node to resolve inputs for
        spec: The node's type declaration

    Returns:
        Dictionary of input port name -> resolved value
    """
    node = graph.get_node(node_id)
    incoming: Dict[str, List[Any]] = {}
    for edge in graph.incoming_edges(node_id):
        incoming.setdefault(edge.target_handle, []).append(edge)

    resolved: Dict[str, Any] = {}
    for name, port in spec.inputs.items():
        values: List[Any] = []
        for edge in incoming.get(name, []):
            value = get_output_value(graph, edge.source, edge.source_handle)
            if is_absent(value):
                continue
            if port.collects:
                _collect(values, value)
            elif isinstance(value, (list, tuple)):
                values.append(value[0])
            else:
                values.append(value)

        if not values and port.manual_field and not is_absent(node.data.get(port.manual_field)):
            _collect(values, node.data[port.manual_field])

        if port.collects:
            resolved[name] = values
        else:
            resolved[name] = values[-1] if values else None
    return resolved


def resolve_node_inputs(graph, node_id: str) -> Dict[str, Any]:
    """
    Convenience function to resolve node inputs.

    Args:
        graph: Workflow graph holding the node
        node_id: Node to resolve inputs for

    Returns:
        Dictionary of resolved input values
    """
    node = graph.get_node(node_id)
    return resolve_inputs(graph, node_id, graph.registry.require(node.type))
