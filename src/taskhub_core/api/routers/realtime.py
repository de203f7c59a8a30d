"""WebSocket endpoint for real-time project and user updates.

Protocol (JSON text frames):
- client → {"action": "join-project", "project_id": "<uuid>"}
- client → {"action": "leave-project", "project_id": "<uuid>"}
- server → {"type": "joined" | "left" | "error", ...} acknowledgements
- server → event messages ({"channel", "type", "project_id", ...})

Every connection is subscribed to its own user channel on connect.
"""
import asyncio
import logging
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from fastapi.concurrency import run_in_threadpool

from ... import crud
from ...access_control import Operation
from ...errors import TaskHubError
from ...events import project_channel, user_channel
from ...realtime import ChannelBroker
from ..dependencies import resolve_principal

logger = logging.getLogger("taskhub-core.realtime")

router = APIRouter(tags=["realtime"])


def _authenticate(session_factory, token: str):
    db = session_factory()
    try:
        return resolve_principal(db, token)
    finally:
        db.close()


def _check_project_access(session_factory, principal, project_id: UUID) -> None:
    db = session_factory()
    try:
        crud.get_project(db, principal, project_id, Operation.PROJECT_READ)
    finally:
        db.close()


async def _handle_command(websocket: WebSocket, broker: ChannelBroker, queue: asyncio.Queue, principal, message) -> None:
    action = message.get("action") if isinstance(message, dict) else None
    raw_project_id = message.get("project_id") if isinstance(message, dict) else None

    if action not in ("join-project", "leave-project"):
        await websocket.send_json({"type": "error", "message": "Unknown action"})
        return

    try:
        project_id = UUID(str(raw_project_id))
    except ValueError:
        await websocket.send_json({"type": "error", "message": "Invalid project id"})
        return

    channel = project_channel(project_id)
    if action == "leave-project":
        broker.unsubscribe(channel, queue)
        await websocket.send_json({"type": "left", "project_id": str(project_id)})
        return

    try:
        await run_in_threadpool(_check_project_access, websocket.app.state.session_factory, principal, project_id)
    except TaskHubError as e:
        await websocket.send_json({"type": "error", "project_id": str(project_id), "message": e.message})
        return

    broker.subscribe(channel, queue, user_id=principal.id)
    logger.debug(f"User {principal.id} joined {channel}")
    await websocket.send_json({"type": "joined", "project_id": str(project_id)})


async def _forward(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        message = await queue.get()
        await websocket.send_json(message)


async def _stop_forwarder(forwarder: asyncio.Task) -> None:
    forwarder.cancel()
    try:
        await forwarder
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.debug(f"Forwarder ended with error: {e}")


@router.websocket("/ws")
async def realtime_updates(websocket: WebSocket, token: str = Query(None)):
    broker: ChannelBroker = websocket.app.state.broker

    try:
        principal = await run_in_threadpool(_authenticate, websocket.app.state.session_factory, token)
    except TaskHubError as e:
        logger.debug(f"Rejected WebSocket connection: {e.message}")
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    queue: asyncio.Queue = asyncio.Queue()
    broker.subscribe(user_channel(principal.id), queue, user_id=principal.id)
    forwarder = asyncio.create_task(_forward(websocket, queue))
    logger.info(f"WebSocket connected for user {principal.id}")

    try:
        while True:
            try:
                message = await websocket.receive_json()
            except ValueError:
                await websocket.send_json({"type": "error", "message": "Malformed message"})
                continue
            await _handle_command(websocket, broker, queue, principal, message)
    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for user {principal.id}")
    finally:
        broker.unsubscribe_all(queue)
        await _stop_forwarder(forwarder)
