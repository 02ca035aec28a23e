#!/usr/bin/env python3
"""
Workflow execution engine.

Runs node operations in dependency order with bounded concurrency, owns the
run/cancel lifecycle, and propagates failures to downstream nodes.
"""
import asyncio
import copy
import inspect
import logging
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

from mediaflow.engine.events import Observable
from mediaflow.engine.graph import WorkflowGraph
from mediaflow.engine.planner import RunScope, ScopeKind, build_dependency_graph, plan_for
from mediaflow.errors import (
    CancellationError,
    NodeOperationError,
    RunInProgressError,
    WorkflowError,
    WorkflowValidationError,
)
from mediaflow.nodes.base import NodeSpec, NodeStatus, Operation

logger = logging.getLogger(__name__)

BLOCKED_MESSAGE = "Blocked by upstream failure"


class RunState(str, Enum):
    """Run lifecycle: pending -> running -> completed | failed | cancelled | paused"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class CancellationToken:
    """Cooperative cancellation flag checked before each node starts"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class Run:
    """An active run"""
    run_id: str
    scope: RunScope
    plan: List[str]
    token: CancellationToken = field(default_factory=CancellationToken)
    state: RunState = RunState.PENDING
    started_at: float = field(default_factory=time.time)
    current: Set[str] = field(default_factory=set)
    pause_exempt: Optional[str] = None
    paused_at: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scope": self.scope.to_dict(),
            "state": self.state.value,
            "plan": list(self.plan),
            "running_nodes": sorted(self.current),
            "cancelled": self.cancelled,
            "paused_at": self.paused_at,
            "started_at": self.started_at,
        }


@dataclass
class RunResult:
    """Result of workflow execution"""
    run_id: str
    scope: RunScope
    state: RunState
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    blocked: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    paused_at: Optional[str] = None
    execution_time: float = 0.0
    total_nodes: int = 0

    @property
    def success(self) -> bool:
        return self.state == RunState.COMPLETED

    def raise_for_state(self):
        """Raise the error matching an unsuccessful run, like ``raise_for_status``"""
        if self.state == RunState.CANCELLED:
            raise CancellationError(f"Run {self.run_id} was cancelled")
        if self.failed:
            node_id, message = next(iter(self.failed.items()))
            raise NodeOperationError(message, node_id=node_id)
        if self.state not in (RunState.COMPLETED, RunState.PAUSED):
            raise WorkflowError(f"Run {self.run_id} ended {self.state.value}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scope": self.scope.to_dict(),
            "state": self.state.value,
            "success": self.success,
            "completed": list(self.completed),
            "failed": dict(self.failed),
            "blocked": list(self.blocked),
            "skipped": list(self.skipped),
            "paused_at": self.paused_at,
            "execution_time": self.execution_time,
            "total_nodes": self.total_nodes,
        }


class Scheduler(Observable):
    """Executes workflow runs; at most one run is active at a time"""

    def __init__(self, graph: WorkflowGraph, max_concurrency: int = 4,
                 operations: Optional[Mapping[str, Operation]] = None):
        """
        Initialize the scheduler.

        Args:
            graph: Workflow graph to execute
            max_concurrency: Maximum number of node operations in flight
            operations: Per-type operation overrides (defaults to the registered ones)
        """
        super().__init__()
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.graph = graph
        self.max_concurrency = max_concurrency
        self.operations: Dict[str, Operation] = dict(operations or {})
        self._active: Optional[Run] = None
        self._last_result: Optional[RunResult] = None
        self._paused_at: Optional[str] = None
        self._admission = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._active is not None

    @property
    def active_run(self) -> Optional[Run]:
        return self._active

    @property
    def last_result(self) -> Optional[RunResult]:
        return self._last_result

    @property
    def paused_at(self) -> Optional[str]:
        """Node the last run paused before, if it paused"""
        return self._paused_at

    def start(self, scope: Optional[RunScope] = None) -> Run:
        """
        Admit a run: validate, plan and mark it active.

        Raises:
            RunInProgressError: Another run is active (runs are never queued)
            WorkflowValidationError: The workflow is not runnable
            CycleError, UnknownNodeError: The scope cannot be planned
        """
        scope = scope or RunScope.full()
        with self._admission:
            if self._active is not None:
                raise RunInProgressError(f"Run {self._active.run_id} is already active")

            validation = self.graph.validate()
            if not validation.valid:
                raise WorkflowValidationError(validation.errors)

            plan = plan_for(self.graph, scope)
            run = Run(run_id=uuid.uuid4().hex[:12], scope=scope, plan=plan)
            # Single-node runs ignore pauses and keep the paused position
            if scope.kind == ScopeKind.ONLY_NODE:
                run.pause_exempt = scope.node_id
            else:
                if scope.kind == ScopeKind.FROM_NODE and scope.node_id == self._paused_at:
                    run.pause_exempt = scope.node_id
                self._paused_at = None
            self._active = run
        return run

    async def execute(self, scope: Optional[RunScope] = None) -> RunResult:
        """
        Execute a workflow run.

        Args:
            scope: What to run (default: the full workflow)

        Returns:
            RunResult with the final state and per-node outcomes
        """
        return await self.run(self.start(scope))

    async def regenerate_node(self, node_id: str) -> RunResult:
        """Re-run a single node with its currently resolved inputs"""
        return await self.execute(RunScope.only_node(node_id))

    async def resume(self) -> RunResult:
        """
        Continue a paused workflow from the node it stopped before.

        Raises:
            WorkflowError: The last run did not pause
        """
        if self._paused_at is None:
            raise WorkflowError("No paused run to resume")
        return await self.execute(RunScope.from_node(self._paused_at))

    def cancel(self) -> bool:
        """
        Request cancellation of the active run.

        Nodes already in flight finish; no further node starts.

        Returns:
            False when no run is active
        """
        run = self._active
        if run is None:
            return False
        run.token.cancel()
        logger.info("Cancellation requested for run %s", run.run_id)
        return True

    async def run(self, run: Run) -> RunResult:
        """Drive an admitted run to completion"""
        start_time = time.time()
        result = RunResult(run_id=run.run_id, scope=run.scope, state=RunState.RUNNING,
                           total_nodes=len(run.plan))
        try:
            run.state = RunState.RUNNING
            logger.info("Run %s started (%s, %d nodes)", run.run_id, run.scope.kind.value, len(run.plan))
            self._emit("run_started", run=run.to_dict())
            await self._run_plan(run, result)

            if run.cancelled:
                run.state = RunState.CANCELLED
                logger.info("Run %s cancelled; skipped %d nodes", run.run_id, len(result.skipped))
            elif result.failed or result.blocked:
                run.state = RunState.FAILED
            elif run.paused_at is not None:
                run.state = RunState.PAUSED
                self._paused_at = run.paused_at
                logger.info("Run %s paused before %s", run.run_id, run.paused_at)
            else:
                run.state = RunState.COMPLETED
        except BaseException:
            run.state = RunState.FAILED
            raise
        finally:
            result.state = run.state
            result.paused_at = run.paused_at
            result.execution_time = time.time() - start_time
            self._last_result = result
            self._active = None
            logger.info("Run %s finished: %s in %.2fs", run.run_id, run.state.value, result.execution_time)
            self._emit("run_finished", result=result.to_dict())
        return result

    async def _run_plan(self, run: Run, result: RunResult):
        plan_set = set(run.plan)
        dependents = build_dependency_graph(
            edge for edge in self.graph.edges if edge.source in plan_set and edge.target in plan_set
        )
        waiting_on: Dict[str, Set[str]] = {node_id: set() for node_id in run.plan}
        for source, targets in dependents.items():
            for target in targets:
                waiting_on[target].add(source)

        pending: List[str] = list(run.plan)
        blocked: Set[str] = set()

        # Upstream results from outside the plan are reused only once complete
        for node_id in run.plan:
            for edge in self.graph.incoming_edges(node_id):
                if edge.source in plan_set:
                    continue
                status = self.graph.get_node(edge.source).status
                if status == NodeStatus.ERROR.value:
                    self._block(run, node_id, dependents, blocked, result)
                    break
                if status != NodeStatus.COMPLETE.value:
                    self._block(run, node_id, dependents, blocked, result,
                                f'Waiting on upstream "{edge.source}"')
                    break
        pending = [node_id for node_id in pending if node_id not in blocked]

        running: Dict[asyncio.Task, str] = {}
        while pending or running:
            for node_id in list(pending):
                if len(running) >= self.max_concurrency or run.cancelled or run.paused_at:
                    break
                if waiting_on[node_id]:
                    continue
                if node_id != run.pause_exempt and any(
                        edge.paused for edge in self.graph.incoming_edges(node_id)):
                    run.paused_at = node_id
                    break
                pending.remove(node_id)
                run.current.add(node_id)
                task = asyncio.create_task(self._run_node(run, node_id))
                running[task] = node_id

            if not running:
                break

            done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                node_id = running.pop(task)
                run.current.discard(node_id)
                ok, error = task.result()
                if ok:
                    result.completed.append(node_id)
                    for dependent_id in dependents.get(node_id, []):
                        waiting_on[dependent_id].discard(node_id)
                else:
                    result.failed[node_id] = error
                    for dependent_id in dependents.get(node_id, []):
                        self._block(run, dependent_id, dependents, blocked, result)
                    pending = [p for p in pending if p not in blocked]

        result.skipped = [node_id for node_id in pending if node_id not in blocked]

    async def _run_node(self, run: Run, node_id: str) -> Tuple[bool, Optional[str]]:
        """
        Execute a single node.

        Returns:
            Tuple of (success, error_message)
        """
        try:
            node = self.graph.get_node(node_id)
            spec = self.graph.registry.require(node.type)
            operation = self.operations.get(node.type, spec.operation)

            # Snapshot inputs and settings at invocation start
            inputs = copy.deepcopy(self.graph.get_connected_inputs(node_id))
            config = copy.deepcopy(node.data)
        except Exception as e:
            return self._fail(run, node_id, str(e) or e.__class__.__name__)

        self._set_status(run, node_id, NodeStatus.LOADING)
        try:
            if inspect.iscoroutinefunction(operation):
                outcome = await operation(inputs, config)
            else:
                outcome = await asyncio.to_thread(operation, inputs, config)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
        except Exception as e:
            return self._fail(run, node_id, str(e) or e.__class__.__name__)

        error, patch = self._unpack(spec, outcome)
        if error:
            return self._fail(run, node_id, error)

        patch["status"] = NodeStatus.COMPLETE.value
        patch["error"] = None
        self.graph.update_node_data(node_id, patch)
        self._emit("node_status", run_id=run.run_id, node_id=node_id,
                   status=NodeStatus.COMPLETE.value, error=None)
        return True, None

    @staticmethod
    def _unpack(spec: NodeSpec, outcome: Any) -> Tuple[Optional[str], Dict[str, Any]]:
        """Split an operation's return value into (error, data patch)"""
        if outcome is None:
            return None, {}
        if not isinstance(outcome, Mapping):
            return f"Operation returned {type(outcome).__name__}, expected a mapping", {}
        if outcome.get("error"):
            return str(outcome["error"]), {}

        values = dict(outcome)
        envelope = values.pop("outputs", None)
        if isinstance(envelope, Mapping):
            values.update(envelope)
        elif envelope is not None:
            values["outputs"] = envelope

        patch: Dict[str, Any] = {}
        for key, value in values.items():
            if key in ("status", "error"):
                continue
            port = spec.get_output(key)
            patch[port.data_field if port else key] = value
        return None, patch

    def _fail(self, run: Run, node_id: str, message: str) -> Tuple[bool, str]:
        logger.error("Node %s failed: %s", node_id, message)
        self._set_status(run, node_id, NodeStatus.ERROR, message)
        return False, message

    def _block(self, run: Run, node_id: str, dependents: Dict[str, List[str]],
               blocked: Set[str], result: RunResult, message: str = BLOCKED_MESSAGE):
        """Mark a node and all of its dependents in the plan as blocked"""
        queue = deque([node_id])
        while queue:
            current = queue.popleft()
            if current in blocked or current in result.failed or current in result.completed:
                continue
            blocked.add(current)
            result.blocked.append(current)
            self._set_status(run, current, NodeStatus.ERROR, message if current == node_id else BLOCKED_MESSAGE)
            queue.extend(dependents.get(current, []))

    def _set_status(self, run: Run, node_id: str, status: NodeStatus, error: Optional[str] = None):
        if not self.graph.has_node(node_id):
            return
        self.graph.update_node_data(node_id, {"status": status.value, "error": error})
        self._emit("node_status", run_id=run.run_id, node_id=node_id, status=status.value, error=error)
