import asyncio
import base64
from pathlib import Path
from typing import Callable, Dict, Optional, Set, Union

from loguru import logger

from aiscan.core.config import Config
from aiscan.helper.cleanup import safe_remove
from aiscan.schemas import (
    AnalysisStatusEvent,
    DoneEvent,
    ErrorEvent,
    FrameEvent,
    ProgressEvent,
    StatusEvent,
)
from aiscan.services import media_extractor

Deliver = Callable[[dict], None]


class ProgressBroadcaster:
    """
    Best-effort side channel for UI feedback.

    Holds the subscriber registry (one bounded queue per connection) and the
    preview streams currently running per video path. Created when the server
    starts and closed when it stops; nothing here may raise into callers.
    """

    def __init__(self, extract_frames=None, queue_size: int = 100, frame_delay: Optional[float] = None):
        self._extract_frames = extract_frames or media_extractor.extract_frames
        self._queue_size = queue_size
        self._frame_delay = frame_delay
        self._subscribers: Set[asyncio.Queue] = set()
        self._streams: Dict[str, Set[asyncio.Task]] = {}
        self._closed = False

    # ---------- registry ----------

    def subscribe(self) -> asyncio.Queue:
        q = asyncio.Queue(maxsize=self._queue_size)
        self._subscribers.add(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        self._subscribers.discard(q)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def active_streams(self, video_path=None) -> int:
        if video_path is not None:
            return len(self._streams.get(str(video_path), ()))
        return sum(len(tasks) for tasks in self._streams.values())

    # ---------- delivery ----------

    @staticmethod
    def _payload(event: Union[ProgressEvent, dict]) -> dict:
        return event if isinstance(event, dict) else event.model_dump(exclude_none=True)

    def send(self, q: asyncio.Queue, event: Union[ProgressEvent, dict]) -> bool:
        try:
            q.put_nowait(self._payload(event))
            return True
        except asyncio.QueueFull:
            return False

    def publish(self, event: Union[ProgressEvent, dict]) -> int:
        """Fan out to every subscriber; slow subscribers with a full queue miss the event."""
        payload = self._payload(event)
        delivered = 0
        for q in list(self._subscribers):
            if self.send(q, payload):
                delivered += 1
        return delivered

    def broadcast_status(self, status: str, message: Optional[str] = None) -> int:
        try:
            return self.publish(AnalysisStatusEvent(status=status, message=message))
        except Exception as e:
            logger.warning(f"Could not broadcast analysis status: {e}")
            return 0

    # ---------- preview streams ----------

    def trigger(self, video_path) -> Optional[asyncio.Task]:
        """Stream a quick preview of `video_path` to all current subscribers."""
        try:
            if self._closed or not self._subscribers:
                return None
            return self._start(video_path, self.publish)
        except Exception as e:
            logger.warning(f"Could not start preview stream: {e}")
            return None

    def stream_to(self, q: asyncio.Queue, video_path) -> Optional[asyncio.Task]:
        """Stream a preview of `video_path` to a single subscriber."""
        try:
            if self._closed:
                return None
            return self._start(video_path, lambda event: self.send(q, event))
        except Exception as e:
            logger.warning(f"Could not start preview stream: {e}")
            return None

    async def stop(self, video_path) -> int:
        """
        Cancel preview streams for `video_path` and wait until they have
        removed their frame directories. Safe to call repeatedly.
        """
        tasks = self._streams.pop(str(video_path), set())
        await self.cancel_tasks(tasks)
        return len(tasks)

    @staticmethod
    async def cancel_tasks(tasks) -> None:
        tasks = [task for task in tasks if task is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        self._closed = True
        tasks = [task for group in self._streams.values() for task in group]
        self._streams.clear()
        await self.cancel_tasks(tasks)
        self._subscribers.clear()

    def _start(self, video_path, deliver: Deliver) -> asyncio.Task:
        key = str(video_path)
        task = asyncio.create_task(self._stream_preview(Path(video_path), deliver))
        self._streams.setdefault(key, set()).add(task)
        task.add_done_callback(lambda t: self._forget(key, t))
        return task

    def _forget(self, key: str, task: asyncio.Task) -> None:
        tasks = self._streams.get(key)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                self._streams.pop(key, None)

    async def _stream_preview(self, video_path: Path, deliver: Deliver) -> None:
        delay = Config.PREVIEW_FRAME_DELAY if self._frame_delay is None else self._frame_delay
        deliver(StatusEvent(message="Extracting frames…").model_dump())
        extraction = None
        try:
            extraction = await self._extract_frames(
                video_path,
                fps=Config.PREVIEW_FPS,
                max_frames=Config.PREVIEW_MAX_FRAMES,
                size=Config.PREVIEW_SIZE,
                prefix="preview",
            )
            total = len(extraction.frames)
            for index, frame in enumerate(extraction.frames):
                try:
                    data = await asyncio.to_thread(frame.read_bytes)
                except OSError:
                    continue
                image = f"data:image/jpeg;base64,{base64.b64encode(data).decode('ascii')}"
                deliver(FrameEvent(index=index, total=total, image=image).model_dump())
                if delay:
                    await asyncio.sleep(delay)
            deliver(StatusEvent(message="Frame extraction complete. Analysis in progress…").model_dump())
            deliver(DoneEvent().model_dump())
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Preview stream for {video_path.name} failed: {e}")
            deliver(ErrorEvent(message="Frame extraction failed").model_dump())
        finally:
            if extraction is not None:
                await asyncio.to_thread(safe_remove, extraction.session_dir)
