import asyncio
import shutil
import uuid
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from loguru import logger

from aiscan.core.config import Config
from aiscan.core.exceptions import ValidationError
from aiscan.helper.cleanup import safe_remove
from aiscan.schemas import UploadVideoResponse
from aiscan.services.video_processor import UploadedVideo, VideoProcessor
from ..deps import get_video_processor

router = APIRouter()


def save_upload(upload: UploadFile) -> Path:
    ext = Path(upload.filename or "").suffix.lower()
    path = Config.UPLOAD_DIR / f"{uuid.uuid4()}{ext}"
    Config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    try:
        with open(path, "wb") as buf:
            shutil.copyfileobj(upload.file, buf)
    except OSError:
        safe_remove(path)
        raise
    return path


@router.post("/upload-video", response_model=UploadVideoResponse)
async def upload_video(
    video: Optional[UploadFile] = File(None),
    description: Optional[str] = Form(None),
    video_processor: VideoProcessor = Depends(get_video_processor),
):
    if video is None or not video.filename:
        raise ValidationError(
            'No video file provided. Make sure to include a file with the key "video" in your form data.'
        )
    path = await asyncio.to_thread(save_upload, video)
    size = path.stat().st_size
    logger.info(f"Received {video.filename} ({size} bytes){': ' + description if description else ''}")

    return await video_processor.process_upload(UploadedVideo(
        path=path,
        original_name=video.filename,
        mime_type=video.content_type or "application/octet-stream",
        size_bytes=size,
    ))
