"""Editor sync API: connect, push, poll and session housekeeping."""
from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query

from treebridge.errors import AccessDenied, SessionNotFound, WriteFailure
from treebridge.models import (
    BindRequest,
    ChangeRecord,
    ConnectRequest,
    ProjectIdentity,
    ProxyWriteRequest,
    SessionDetail,
    SessionRequest,
    SyncRequest,
    UploadRequest,
)
from treebridge.session_manager import session_manager

logger = logging.getLogger("treebridge.sync")

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])


@sync_router.post("/upload")
def stage_upload(req: UploadRequest):
    """Stage one chunk of files ahead of the connect call."""
    staged = session_manager.stage_files(req.externalId, req.files)
    return {"status": "uploaded", "staged": staged}


@sync_router.post("/connect")
async def connect(req: ConnectRequest):
    identity = ProjectIdentity(
        externalId=req.externalId,
        displayName=req.displayName,
        sessionId=req.sessionId,
        resolvedProjectId=req.projectId,
    )
    logger.info(f"Connecting {identity.displayName!r} ({identity.sessionId})")
    project_id = await session_manager.register_session(identity, req.files)
    return {"status": "connected", "projectId": project_id}


@sync_router.post("/heartbeat")
def heartbeat(req: SessionRequest):
    return {"known": session_manager.refresh_heartbeat(req.sessionId)}


@sync_router.post("/disconnect")
async def disconnect(req: SessionRequest):
    logger.info(f"Disconnect request for {req.sessionId}")
    await session_manager.unregister_session(req.sessionId)
    return {"status": "disconnected"}


@sync_router.post("/bind")
async def bind(req: BindRequest):
    try:
        directory = await session_manager.bind_folder(req.sessionId, req.directoryPath)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OSError as e:
        raise HTTPException(status_code=500, detail=f"Cannot bind {req.directoryPath}: {e}")
    return {"status": "bound", "directory": str(directory)}


async def _apply_in_background(session_id: str, changes: list[ChangeRecord]) -> None:
    try:
        result = await session_manager.apply_inbound_changes(session_id, changes)
    except SessionNotFound as e:
        logger.warning(f"Dropped sync batch: {e}")
        return
    if result.failed:
        logger.warning(f"{len(result.failed)} of {len(changes)} changes failed for session {session_id}")


@sync_router.post("/sync")
def sync_changes(req: SyncRequest, background_tasks: BackgroundTasks):
    """Accept editor changes; files are written after the response is sent."""
    session = session_manager.get_session(req.sessionId)
    if session is None or not session.is_bound:
        raise HTTPException(status_code=404, detail="Session or folder binding not found")
    background_tasks.add_task(_apply_in_background, req.sessionId, req.changes)
    return {"status": "syncing", "changes": len(req.changes)}


@sync_router.get("/poll", response_model=list[ChangeRecord])
def poll_changes(sessionId: str = Query(..., min_length=1)):
    """Drain queued filesystem changes. Unknown sessions get an empty list."""
    return session_manager.drain_outbound(sessionId)


@sync_router.get("/sessions", response_model=list[ProjectIdentity])
def list_sessions():
    return session_manager.list_sessions()


@sync_router.get("/sessions/{session_id}", response_model=SessionDetail)
def get_session(session_id: str):
    session = session_manager.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return SessionDetail(
        **session.identity.model_dump(),
        boundDirectory=str(session.bound_directory) if session.bound_directory else None,
        files=session.initial_files,
    )


@sync_router.post("/proxy-write")
async def proxy_write(req: ProxyWriteRequest):
    """Write into the bound folder for a web client; the watcher relays it to the editor."""
    try:
        await session_manager.proxy_write(req.sessionId, req.relativePath, req.content)
    except SessionNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except AccessDenied as e:
        logger.warning(f"Rejected proxy write: {e}")
        raise HTTPException(status_code=403, detail=str(e))
    except WriteFailure as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"status": "written"}
