"""HTTP surface for live sessions (FastAPI).

Instrumented programs POST checkpoints; viewers follow them over a
server-sent-event stream at /remote/stream/{session_id}.

Usage:

    uvicorn --factory flowcanvas.remote:create_app --port 5000
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Iterator, Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict

from .config import CorrelatorSettings
from .errors import CapacityExceeded, SessionNotFound
from .runtime.correlator import SessionRegistry, SubscriberChannel

logger = logging.getLogger(__name__)

HEARTBEAT_S = 15.0


class CreateSessionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    code: Optional[str] = None


class CheckpointBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: Optional[str] = None
    checkpoint: Optional[Dict[str, Any]] = None


class CodeBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: Optional[str] = None
    code: Optional[str] = None


class EndSessionBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sessionId: Optional[str] = None


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail="Session not found")


def _sse(registry: SessionRegistry, session_id: str, channel: SubscriberChannel) -> Iterator[str]:
    try:
        for event in channel.events(timeout=HEARTBEAT_S):
            if event is None:
                yield ": keepalive\n\n"
                continue
            yield event.to_sse()
    finally:
        registry.remove_subscriber(session_id, channel)
        channel.close()


def build_router(registry: SessionRegistry) -> APIRouter:
    router = APIRouter(prefix="/remote")

    @router.post("/session")
    def create_session(body: CreateSessionBody, request: Request) -> Dict[str, Any]:
        try:
            session_id = registry.create_session(body.name, body.code)
        except CapacityExceeded as e:
            logger.warning("Rejected session creation: %s", e)
            raise HTTPException(status_code=503, detail="Maximum sessions reached. Try again later.") from e

        protocol = request.headers.get("x-forwarded-proto") or request.url.scheme
        host = request.headers.get("host") or "localhost:5000"
        base_url = f"{protocol}://{host}"
        return {
            "sessionId": session_id,
            "connectUrl": f"{base_url}/remote/{session_id}",
            "studioUrl": f"{base_url}/?session={session_id}",
            "streamUrl": f"{base_url}/remote/stream/{session_id}",
            "message": "Session created. Open studioUrl to view flowchart.",
        }

    @router.post("/checkpoint")
    def add_checkpoint(body: CheckpointBody) -> Dict[str, Any]:
        if not body.sessionId or body.checkpoint is None:
            raise HTTPException(status_code=400, detail="Missing sessionId or checkpoint")
        try:
            cp = registry.add_checkpoint(body.sessionId, body.checkpoint)
            count = registry.get_session_info(body.sessionId)["checkpointCount"]
        except SessionNotFound as e:
            raise _not_found() from e
        return {"success": True, "ignored": cp is None, "checkpointCount": count}

    @router.post("/code")
    def update_code(body: CodeBody) -> Dict[str, Any]:
        if not body.sessionId or not body.code:
            raise HTTPException(status_code=400, detail="Missing sessionId or code")
        try:
            registry.update_code(body.sessionId, body.code)
            version = registry.get_session_info(body.sessionId)["manifestVersion"]
        except SessionNotFound as e:
            raise _not_found() from e
        return {
            "success": True,
            "manifestVersion": version,
            "message": "Code registered for flowchart visualization",
        }

    @router.post("/session/end")
    def end_session(body: EndSessionBody) -> Dict[str, Any]:
        if not body.sessionId:
            raise HTTPException(status_code=400, detail="Missing sessionId")
        try:
            registry.end_session(body.sessionId)
        except SessionNotFound as e:
            raise _not_found() from e
        return {"ended": True}

    @router.get("/session/{session_id}")
    def session_info(session_id: str) -> Dict[str, Any]:
        try:
            return registry.get_session_info(session_id)
        except SessionNotFound as e:
            raise _not_found() from e

    @router.get("/session/{session_id}/graph")
    def session_graph(session_id: str) -> Dict[str, Any]:
        try:
            graph = registry.get_graph(session_id)
        except SessionNotFound as e:
            raise _not_found() from e
        if graph is None:
            raise HTTPException(status_code=404, detail="Session has no code")
        return {**graph.to_dict(), "error": graph.error}

    @router.get("/stream/{session_id}")
    def stream(session_id: str) -> StreamingResponse:
        try:
            channel = registry.add_subscriber(session_id)
        except SessionNotFound as e:
            raise _not_found() from e
        return StreamingResponse(
            _sse(registry, session_id, channel),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    return router


def create_app(registry: Optional[SessionRegistry] = None) -> FastAPI:
    """Build the app. A registry passed in is owned (started/stopped) by the caller."""
    owned = registry is None
    if registry is None:
        registry = SessionRegistry(CorrelatorSettings.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owned:
            registry.start()
        try:
            yield
        finally:
            if owned:
                registry.shutdown()

    app = FastAPI(title="FlowCanvas Remote", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    app.include_router(build_router(registry))
    app.state.registry = registry
    return app
