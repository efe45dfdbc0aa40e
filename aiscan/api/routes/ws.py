import asyncio
import json
from pathlib import Path
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from aiscan.core.config import Config
from aiscan.schemas import ErrorEvent, StatusEvent
from aiscan.services.broadcaster import ProgressBroadcaster

router = APIRouter()


def resolve_video_path(video_path) -> Optional[Path]:
    """Existing file inside the upload directory, or None."""
    if not isinstance(video_path, str) or not video_path:
        return None
    upload_root = Config.UPLOAD_DIR.resolve()
    candidate = Path(video_path)
    if not candidate.is_absolute():
        # Accept both "uploads/<name>" (as returned in filePath) and bare "<name>".
        if candidate.parts and candidate.parts[0] == Config.UPLOAD_DIR.name:
            candidate = Path(*candidate.parts[1:]) if len(candidate.parts) > 1 else Path()
        candidate = upload_root / candidate
    candidate = candidate.resolve()
    if not candidate.is_relative_to(upload_root) or not candidate.is_file():
        return None
    return candidate


async def _pump(websocket: WebSocket, queue: asyncio.Queue):
    try:
        while True:
            event = await queue.get()
            await websocket.send_json(event)
    except (WebSocketDisconnect, RuntimeError):
        # Client went away; the receive loop sees the disconnect and unsubscribes.
        return


@router.websocket("/ws")
async def progress_socket(websocket: WebSocket):
    broadcaster: ProgressBroadcaster = websocket.app.state.broadcaster
    await websocket.accept()
    queue = broadcaster.subscribe()
    broadcaster.send(queue, StatusEvent(message="Connected. Ready to stream frames."))
    sender = asyncio.create_task(_pump(websocket, queue))
    streams: Set[asyncio.Task] = set()
    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except ValueError:
                broadcaster.send(queue, ErrorEvent(message="Invalid message"))
                continue
            if not isinstance(message, dict) or message.get("type") != "start":
                broadcaster.send(queue, ErrorEvent(message="Unsupported message type"))
                continue
            path = await asyncio.to_thread(resolve_video_path, message.get("videoPath"))
            if path is None:
                broadcaster.send(queue, ErrorEvent(message="File not found"))
                continue
            task = broadcaster.stream_to(queue, path)
            if task is not None:
                streams.add(task)
                task.add_done_callback(streams.discard)
    except WebSocketDisconnect:
        logger.debug("Progress socket disconnected")
    finally:
        sender.cancel()
        broadcaster.unsubscribe(queue)
        # Previews started by this socket have no other reader.
        await broadcaster.cancel_tasks(list(streams))
