from fastapi import APIRouter

from aiscan.schemas import AudioRequest, AudioResponse, ScreenshotRequest, ScreenshotResponse
from aiscan.services.capture_store import save_audio, save_screenshot
from aiscan.services.video_processor import now_iso

router = APIRouter()


@router.post("/screenshot", response_model=ScreenshotResponse)
async def upload_screenshot(body: ScreenshotRequest):
    asset = await save_screenshot(body.image)
    return ScreenshotResponse(
        message="Screenshot saved successfully",
        filename=asset.filename,
        timestamp=body.timestamp or now_iso(),
        source=body.source or "unknown",
        size=asset.size,
    )


@router.post("/audio", response_model=AudioResponse)
async def upload_audio(body: AudioRequest):
    asset = await save_audio(body.audio, body.mimeType)
    return AudioResponse(
        message="Audio saved successfully",
        filename=asset.filename,
        mimeType=asset.mime_type,
        timestamp=body.timestamp or now_iso(),
        source=body.source or "unknown",
        originalSize=body.size if body.size is not None else asset.size,
        savedSize=asset.size,
    )
