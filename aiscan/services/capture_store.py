import asyncio
import json
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from loguru import logger

from aiscan.core.config import Config
from aiscan.core.exceptions import ValidationError
from aiscan.helper.cleanup import make_session_dir, safe_remove, unique_dir_name
from aiscan.helper.data_urls import decode_base64_payload, decode_image

DEFAULT_RECORDING_FPS = 2.0

_AUDIO_EXTENSIONS = {"mp3": "mp3", "mpeg": "mp3", "wav": "wav", "ogg": "ogg"}


@dataclass
class SavedRecording:
    session_id: str
    folder: Path
    frames: List[Path]
    fps: float

    @property
    def duration(self) -> float:
        return round(len(self.frames) / self.fps, 3)


@dataclass
class SavedAsset:
    filename: str
    path: Path
    size: int
    mime_type: Optional[str] = None


def audio_extension(mime_type: str) -> str:
    subtype = (mime_type or "").split(";")[0].split("/")[-1].lower()
    return _AUDIO_EXTENSIONS.get(subtype, "webm")


def _write_recording(frames: List[str], fps: float, timestamp: str, source: str) -> SavedRecording:
    # Decode everything first so an invalid frame leaves nothing behind.
    decoded = [decode_image(frame) for frame in frames]
    folder = make_session_dir(Config.RECORDINGS_DIR, "recording")
    try:
        paths = []
        for index, (data, ext) in enumerate(decoded, start=1):
            path = folder / f"frame-{index:04d}.{ext}"
            path.write_bytes(data)
            paths.append(path)
        metadata = {
            "sessionId": folder.name,
            "frameCount": len(paths),
            "fps": fps,
            "duration": len(paths) / fps,
            "timestamp": timestamp,
            "source": source,
        }
        (folder / "metadata.json").write_text(json.dumps(metadata, indent=2))
    except OSError:
        safe_remove(folder)
        raise
    return SavedRecording(session_id=folder.name, folder=folder, frames=paths, fps=fps)


async def save_recording(frames: List[str], fps: float = None, timestamp: str = "",
                         source: str = "unknown") -> SavedRecording:
    if not frames:
        raise ValidationError("No frames provided")
    fps = fps or DEFAULT_RECORDING_FPS
    recording = await asyncio.to_thread(_write_recording, frames, fps, timestamp, source)
    logger.info(f"Saved recording {recording.session_id} with {len(recording.frames)} frames")
    return recording


def _write_asset(folder: Path, prefix: str, ext: str, data: bytes) -> SavedAsset:
    folder.mkdir(parents=True, exist_ok=True)
    filename = f"{unique_dir_name(prefix)}.{ext}"
    path = folder / filename
    path.write_bytes(data)
    return SavedAsset(filename=filename, path=path, size=len(data))


async def save_screenshot(image: str) -> SavedAsset:
    data, ext = await asyncio.to_thread(decode_image, image)
    asset = await asyncio.to_thread(_write_asset, Config.SCREENSHOTS_DIR, "screenshot", ext, data)
    logger.info(f"Saved screenshot {asset.filename} ({asset.size} bytes)")
    return asset


async def save_audio(audio: str, mime_type: str = None) -> SavedAsset:
    data_url_mime, data = await asyncio.to_thread(decode_base64_payload, audio)
    mime_type = mime_type or data_url_mime or "audio/webm"
    ext = audio_extension(mime_type)
    asset = await asyncio.to_thread(_write_asset, Config.AUDIO_DIR, "audio", ext, data)
    asset.mime_type = mime_type
    logger.info(f"Saved audio {asset.filename} ({asset.size} bytes)")
    return asset
