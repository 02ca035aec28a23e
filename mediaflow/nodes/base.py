#!/usr/bin/env python3
"""
Base declarations for the node-based workflow system.

Defines port kinds, the port declarations carried by each node type, and the
NodeSpec that ties a node type tag to its ports, default data and operation.
"""
import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Mapping, Optional, Union


class PortKind(Enum):
    """Media kinds carried by node ports"""
    IMAGE = "image"  # Image payload or URL
    REFERENCE = "reference"  # Reference image for style/identity
    TEXT = "text"  # Prompt or generated text
    CONTEXT = "context"  # Extra context for text generation
    VIDEO = "video"  # Video payload or URL
    AUDIO = "audio"  # Audio payload or URL

    @property
    def accepts(self) -> FrozenSet["PortKind"]:
        """Kinds an input port of this kind accepts"""
        return _ACCEPTED_KINDS.get(self, frozenset({self}))

    @property
    def collects(self) -> bool:
        """Whether ports of this kind gather every connection into a list"""
        return self in _COLLECTING_KINDS


_ACCEPTED_KINDS: Dict[PortKind, FrozenSet[PortKind]] = {
    PortKind.CONTEXT: frozenset({PortKind.CONTEXT, PortKind.TEXT, PortKind.IMAGE}),
    PortKind.REFERENCE: frozenset({PortKind.REFERENCE, PortKind.IMAGE}),
}

_COLLECTING_KINDS = frozenset({PortKind.IMAGE, PortKind.REFERENCE})


class NodeStatus(str, Enum):
    """Execution status mirrored into ``node.data["status"]``"""
    IDLE = "idle"
    LOADING = "loading"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass
class InputPort:
    """Represents an input port on a node type"""
    name: str
    kind: PortKind
    required: bool = False
    multiple: Optional[bool] = None
    manual_field: Optional[str] = None
    description: str = ""

    @property
    def collects(self) -> bool:
        """Whether this port resolves to a list of every connected value"""
        if self.multiple is not None:
            return self.multiple
        return self.kind.collects

    def accepts(self, kind: PortKind) -> bool:
        return kind in self.kind.accepts


@dataclass
class OutputPort:
    """Represents an output port on a node type"""
    name: str
    kind: PortKind
    data_field: str
    description: str = ""


OperationResult = Mapping[str, Any]
Operation = Callable[
    [Dict[str, Any], Dict[str, Any]],
    Union[OperationResult, Awaitable[OperationResult]],
]
Validator = Callable[[str, Dict[str, Any], Dict[str, bool]], List[str]]


@dataclass
class NodeSpec:
    """
    A node type: tag, ports, default data and the registered operation.

    Node types are tagged variants rather than subclasses. Everything that
    differs between two kinds of node lives in this record.
    """
    node_type: str
    operation: Operation
    inputs: Dict[str, InputPort] = field(default_factory=dict)
    outputs: Dict[str, OutputPort] = field(default_factory=dict)
    defaults: Dict[str, Any] = field(default_factory=dict)
    validator: Optional[Validator] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def get_title(self) -> str:
        """Get display title for this node type"""
        return self.metadata.get("title") or self.node_type

    def get_description(self) -> str:
        """Get description of what this node type does"""
        return self.metadata.get("description") or (self.operation.__doc__ or "").strip()

    def default_data(self) -> Dict[str, Any]:
        """Fresh data record for a new node of this type"""
        data = copy.deepcopy(self.defaults)
        data.setdefault("status", NodeStatus.IDLE.value)
        data.setdefault("error", None)
        return data

    def get_input(self, handle: str) -> Optional[InputPort]:
        return self.inputs.get(handle)

    def get_output(self, handle: str) -> Optional[OutputPort]:
        return self.outputs.get(handle)

    def validate(self, node_id: str, data: Dict[str, Any], connected: Dict[str, bool]) -> List[str]:
        """
        Check the node is runnable.

        Args:
            node_id: Node being checked (used in messages)
            data: Current node data
            connected: Input port name -> whether any edge targets it

        Returns:
            List of user-facing error strings (empty when runnable)
        """
        errors = []
        for name, port in self.inputs.items():
            if not port.required or connected.get(name):
                continue
            if port.manual_field and data.get(port.manual_field):
                continue
            errors.append(f'{self.get_title()} node "{node_id}" missing {name} input')
        if self.validator is not None:
            errors.extend(self.validator(node_id, data, connected))
        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the node type for catalogues"""
        return {
            "type": self.node_type,
            "title": self.get_title(),
            "description": self.get_description(),
            "category": self.metadata.get("category", "other"),
            "inputs": {name: {
                "kind": port.kind.value,
                "required": port.required,
                "multiple": port.collects,
                "description": port.description,
            } for name, port in self.inputs.items()},
            "outputs": {name: {
                "kind": port.kind.value,
                "field": port.data_field,
                "description": port.description,
            } for name, port in self.outputs.items()},
            "defaults": copy.deepcopy(self.defaults),
        }
