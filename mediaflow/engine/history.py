#!/usr/bin/env python3
"""
Undo/redo history for structural graph edits.

Each edit is recorded as a mutation that knows how to revert and re-apply
itself. Mutations recorded while a group is open form one history entry and
are undone or redone together.
"""
import copy
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


class Mutation:
    """A recorded structural edit"""

    def apply(self, graph: Any):
        raise NotImplementedError

    def revert(self, graph: Any):
        raise NotImplementedError


@dataclass
class AddNode(Mutation):
    node_id: str
    index: int
    node: Any

    def apply(self, graph):
        graph._insert_node(copy.deepcopy(self.node), self.index)

    def revert(self, graph):
        # Keep the latest state of the node so redo restores it as it was
        _, self.node, _ = graph._delete_node(self.node_id)


@dataclass
class RemoveNode(Mutation):
    node_id: str
    index: int
    node: Any
    edges: List[Tuple[int, Any]] = field(default_factory=list)

    def apply(self, graph):
        self.index, self.node, self.edges = graph._delete_node(self.node_id)

    def revert(self, graph):
        graph._insert_node(self.node, self.index)
        for index, edge in self.edges:
            graph._insert_edge(edge, index)


@dataclass
class AddEdge(Mutation):
    edge: Any
    index: int

    def apply(self, graph):
        graph._insert_edge(self.edge, self.index)

    def revert(self, graph):
        graph._delete_edge(self.edge.id)


@dataclass
class RemoveEdge(Mutation):
    edge: Any
    index: int

    def apply(self, graph):
        self.index = graph._delete_edge(self.edge.id)

    def revert(self, graph):
        graph._insert_edge(self.edge, self.index)


@dataclass
class SetEdgePause(Mutation):
    edge_id: str
    paused: bool

    def apply(self, graph):
        graph._set_edge_paused(self.edge_id, self.paused)

    def revert(self, graph):
        graph._set_edge_paused(self.edge_id, not self.paused)


class HistoryManager:
    """Two-stack undo/redo over grouped mutations"""

    def __init__(self, graph: Any, limit: int = HISTORY_LIMIT,
                 is_busy: Optional[Callable[[], bool]] = None):
        """
        Args:
            graph: Graph whose edits are recorded; the manager attaches itself
            limit: Maximum number of undo entries (oldest dropped)
            is_busy: Returns True while undo/redo must be refused (active run)
        """
        self.graph = graph
        self.limit = limit
        self.is_busy = is_busy or (lambda: False)
        self._undo: List[List[Mutation]] = []
        self._redo: List[List[Mutation]] = []
        self._group: Optional[List[Mutation]] = None
        self._depth = 0
        self._paused = 0
        graph.attach_history(self)

    @property
    def can_undo(self) -> bool:
        return bool(self._undo) or bool(self._group)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    @property
    def group_open(self) -> bool:
        return self._depth > 0

    def record(self, mutation: Mutation):
        """Append to the open group, or push as a single-mutation entry"""
        if self._paused:
            return
        self._redo.clear()
        if self._group is not None:
            self._group.append(mutation)
        else:
            self._push([mutation])

    def begin_group(self):
        """Open a group; nested calls extend the group already open"""
        if self._depth == 0:
            self._group = []
        self._depth += 1

    def end_group(self):
        """Close a group; only the outermost call commits it"""
        if self._depth == 0:
            logger.debug("end_group called with no open group")
            return
        self._depth -= 1
        if self._depth == 0:
            self._commit_group()

    @contextmanager
    def group(self) -> Iterator["HistoryManager"]:
        """Record everything inside the block as one entry"""
        self.begin_group()
        try:
            yield self
        finally:
            self.end_group()

    @contextmanager
    def paused(self) -> Iterator[None]:
        """Apply edits without recording them"""
        self._paused += 1
        try:
            yield
        finally:
            self._paused -= 1

    def undo(self) -> bool:
        """
        Revert the most recent entry.

        Returns:
            False when there is nothing to undo or a run is active
        """
        if self.is_busy():
            logger.info("Undo refused while a run is active")
            return False
        self._close_open_group()
        if not self._undo:
            return False

        entry = self._undo.pop()
        with self.paused():
            for mutation in reversed(entry):
                mutation.revert(self.graph)
        self._redo.append(entry)
        return True

    def redo(self) -> bool:
        """
        Re-apply the most recently undone entry.

        Returns:
            False when there is nothing to redo or a run is active
        """
        if self.is_busy():
            logger.info("Redo refused while a run is active")
            return False
        self._close_open_group()
        if not self._redo:
            return False

        entry = self._redo.pop()
        with self.paused():
            for mutation in entry:
                mutation.apply(self.graph)
        self._undo.append(entry)
        return True

    def clear(self):
        """Drop both stacks and any open group"""
        self._undo.clear()
        self._redo.clear()
        self._group = None
        self._depth = 0

    def _commit_group(self):
        group, self._group = self._group, None
        if group:
            self._push(group)

    def _close_open_group(self):
        if self._depth:
            logger.debug("Closing open history group before undo/redo")
            self._depth = 0
            self._commit_group()

    def _push(self, entry: List[Mutation]):
        self._undo.append(entry)
        if len(self._undo) > self.limit:
            del self._undo[:len(self._undo) - self.limit]
