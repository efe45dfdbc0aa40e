from fastapi import APIRouter, Depends

from aiscan.schemas import RecordingRequest, RecordingResponse
from aiscan.services.capture_store import save_recording
from aiscan.services.video_processor import PipelineRun, VideoProcessor, now_iso
from ..deps import get_video_processor

router = APIRouter()


@router.post("/recording", response_model=RecordingResponse)
async def save_and_analyze_recording(
    body: RecordingRequest,
    video_processor: VideoProcessor = Depends(get_video_processor),
):
    timestamp = body.timestamp or now_iso()
    source = body.source or "unknown"
    recording = await save_recording(body.frames, fps=body.fps, timestamp=timestamp, source=source)

    analysis = await video_processor.analyze_frames(recording.frames, run=PipelineRun(id=recording.session_id))
    await video_processor.store_if_flagged(analysis, source, session_id=recording.session_id)

    return RecordingResponse(
        message="Recording saved and analyzed successfully",
        sessionId=recording.session_id,
        frameCount=len(recording.frames),
        fps=recording.fps,
        duration=recording.duration,
        timestamp=timestamp,
        source=source,
        analysis=analysis,
    )
