#!/usr/bin/env python3
"""
Web server for the workflow editor.

Exposes one in-process workflow session over a REST API, and streams graph
and run events to WebSocket clients.
"""
import asyncio
import logging
from typing import Any, Dict, List, Literal, Optional

import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from mediaflow.engine.planner import RunScope, ScopeKind
from mediaflow.engine.session import WorkflowSession
from mediaflow.errors import (
    RunInProgressError,
    StructuralError,
    UnknownEdgeError,
    UnknownNodeError,
    UnknownNodeTypeError,
    WorkflowError,
    WorkflowValidationError,
)
from mediaflow.utils.config import get_config_manager

logger = logging.getLogger(__name__)


class NodeCreateRequest(BaseModel):
    type: str
    position: Optional[Dict[str, float]] = None
    data: Dict[str, Any] = Field(default_factory=dict)


class NodeDataRequest(BaseModel):
    data: Dict[str, Any]


class EdgeCreateRequest(BaseModel):
    source: str
    sourceHandle: str
    target: str
    targetHandle: str


class DuplicateRequest(BaseModel):
    node_ids: List[str]
    offset: Optional[Dict[str, float]] = None


class WorkflowRequest(BaseModel):
    version: Any = 1
    metadata: Dict[str, Any] = Field(default_factory=dict)
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    edges: List[Dict[str, Any]] = Field(default_factory=list)


class ExecuteRequest(BaseModel):
    scope: Literal["full", "from_node", "only_node"] = "full"
    node_id: Optional[str] = None
    wait: bool = True


def error_status(error: WorkflowError) -> int:
    """HTTP status for a workflow error"""
    if isinstance(error, (UnknownNodeError, UnknownEdgeError)):
        return 404
    if isinstance(error, RunInProgressError):
        return 409
    if isinstance(error, WorkflowValidationError):
        return 422
    if isinstance(error, (StructuralError, UnknownNodeTypeError)):
        return 400
    return 500


# WebSocket fan-out of session events
class ConnectionManager:
    def __init__(self):
        self.queues: Dict[WebSocket, asyncio.Queue] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    async def connect(self, websocket: WebSocket) -> asyncio.Queue:
        await websocket.accept()
        self._loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue(maxsize=1000)
        self.queues[websocket] = queue
        return queue

    def disconnect(self, websocket: WebSocket):
        self.queues.pop(websocket, None)

    def publish(self, event: Dict[str, Any]):
        """Session listener; may be called from any thread"""
        loop = self._loop
        if loop is None or loop.is_closed() or not self.queues:
            return
        message = jsonable_encoder(event)
        loop.call_soon_threadsafe(self._deliver, message)

    def _deliver(self, message: Dict[str, Any]):
        for queue in list(self.queues.values()):
            try:
                queue.put_nowait(message)
            except asyncio.QueueFull:
                logger.warning("WebSocket client queue full, dropping %s event", message.get("type"))

    async def pump(self, websocket: WebSocket, queue: asyncio.Queue):
        while True:
            message = await queue.get()
            await websocket.send_json(message)


def _scope_from_request(request: ExecuteRequest) -> RunScope:
    try:
        return RunScope(ScopeKind(request.scope), request.node_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


def create_app(session: Optional[WorkflowSession] = None) -> FastAPI:
    """
    Build the API around a workflow session.

    Args:
        session: Session to expose (default: a new one configured from the config file)
    """
    if session is None:
        engine_config = get_config_manager().load().engine
        session = WorkflowSession(
            max_concurrency=engine_config.max_concurrency,
            history_limit=engine_config.history_limit,
        )

    app = FastAPI(title="mediaflow Workflow Editor")
    app.state.session = session
    app.state.background_runs = set()
    manager = ConnectionManager()
    session.subscribe(manager.publish)

    @app.exception_handler(WorkflowError)
    async def workflow_error_handler(request, exc: WorkflowError):
        content: Dict[str, Any] = {"detail": str(exc), "error": exc.__class__.__name__}
        if isinstance(exc, WorkflowValidationError):
            content["errors"] = exc.errors
        return JSONResponse(status_code=error_status(exc), content=content)

    @app.get("/api/nodes")
    async def list_nodes():
        """Get all available node types"""
        registry = session.registry
        return {"nodes": [registry.require(node_type).to_dict() for node_type in registry.list_node_types()]}

    @app.get("/api/workflow")
    async def get_workflow():
        return jsonable_encoder(session.to_dict())

    @app.put("/api/workflow")
    async def put_workflow(request: WorkflowRequest):
        """Replace the workflow"""
        session.load(request.model_dump())
        return jsonable_encoder(session.to_dict())

    @app.post("/api/workflow/nodes", status_code=201)
    async def add_node(request: NodeCreateRequest):
        node_id = session.add_node(request.type, request.position, request.data)
        return jsonable_encoder(session.graph.get_node(node_id).to_dict())

    @app.delete("/api/workflow/nodes/{node_id}")
    async def remove_node(node_id: str):
        session.remove_node(node_id)
        return {"success": True}

    @app.patch("/api/workflow/nodes/{node_id}/data")
    async def update_node_data(node_id: str, request: NodeDataRequest):
        session.update_node_data(node_id, request.data)
        return jsonable_encoder(session.graph.get_node(node_id).to_dict())

    @app.get("/api/workflow/nodes/{node_id}/inputs")
    async def get_connected_inputs(node_id: str):
        return {"node_id": node_id, "inputs": jsonable_encoder(session.get_connected_inputs(node_id))}

    @app.post("/api/workflow/nodes/duplicate", status_code=201)
    async def duplicate_nodes(request: DuplicateRequest):
        """Copy nodes and the edges between them"""
        return {"nodes": session.duplicate_nodes(request.node_ids, request.offset)}

    @app.post("/api/workflow/edges", status_code=201)
    async def connect(request: EdgeCreateRequest):
        edge = session.connect(request.source, request.sourceHandle, request.target, request.targetHandle)
        return edge.to_dict()

    @app.delete("/api/workflow/edges/{edge_id}")
    async def disconnect(edge_id: str):
        session.disconnect(edge_id)
        return {"success": True}

    @app.post("/api/workflow/edges/{edge_id}/pause")
    async def toggle_edge_pause(edge_id: str):
        """Toggle the pause mark on an edge"""
        return session.toggle_edge_pause(edge_id).to_dict()

    @app.post("/api/workflow/validate")
    async def validate_workflow():
        """Validate the workflow"""
        return session.validate().to_dict()

    async def _start(scope: RunScope, wait: bool):
        if wait:
            result = await session.execute(scope)
            return jsonable_encoder(result.to_dict())

        run = session.scheduler.start(scope)
        task = asyncio.create_task(session.scheduler.run(run))
        app.state.background_runs.add(task)
        task.add_done_callback(app.state.background_runs.discard)
        return JSONResponse(status_code=202, content=jsonable_encoder({"run": run.to_dict()}))

    @app.post("/api/workflow/execute")
    async def execute_workflow(request: ExecuteRequest):
        """Execute the workflow, or part of it"""
        return await _start(_scope_from_request(request), request.wait)

    @app.post("/api/workflow/nodes/{node_id}/regenerate")
    async def regenerate_node(node_id: str, wait: bool = True):
        """Re-run a single node with its current inputs"""
        return await _start(RunScope.only_node(node_id), wait)

    @app.post("/api/workflow/resume")
    async def resume(wait: bool = True):
        """Continue a paused run from the node it stopped before"""
        paused_at = session.scheduler.paused_at
        if paused_at is None:
            raise HTTPException(status_code=409, detail="No paused run to resume")
        return await _start(RunScope.from_node(paused_at), wait)

    @app.post("/api/workflow/cancel")
    async def cancel():
        return {"cancelled": session.cancel()}

    @app.get("/api/workflow/status")
    async def status():
        return jsonable_encoder(session.status())

    @app.post("/api/history/undo")
    async def undo():
        if session.is_running:
            raise HTTPException(status_code=409, detail="Cannot undo while a run is active")
        return {"success": session.undo(), "workflow": jsonable_encoder(session.to_dict())}

    @app.post("/api/history/redo")
    async def redo():
        if session.is_running:
            raise HTTPException(status_code=409, detail="Cannot redo while a run is active")
        return {"success": session.redo(), "workflow": jsonable_encoder(session.to_dict())}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """WebSocket endpoint for real-time updates"""
        queue = await manager.connect(websocket)
        await websocket.send_json(jsonable_encoder({
            "type": "snapshot",
            "workflow": session.to_dict(),
            "status": session.status(),
        }))
        sender = asyncio.create_task(manager.pump(websocket, queue))
        try:
            while True:
                data = await websocket.receive_json()
                if data.get("type") == "ping":
                    queue.put_nowait({"type": "pong"})
        except WebSocketDisconnect:
            pass
        finally:
            sender.cancel()
            manager.disconnect(websocket)

    return app


def run_server(host: str = "127.0.0.1", port: int = 8000, reload: bool = False):
    uvicorn.run(
        "mediaflow.web.server:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload
    )


def main():
    """Run the web server"""
    import argparse
    parser = argparse.ArgumentParser(description="mediaflow Web API")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    args = parser.parse_args()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
    run_server(args.host, args.port, args.reload)


if __name__ == "__main__":
    main()
