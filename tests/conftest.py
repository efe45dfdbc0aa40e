import base64
import io
from pathlib import Path
from typing import List

import pytest
from PIL import Image

from aiscan.ai.backends.base import AIBackend
from aiscan.core.config import Config
from aiscan.core.exceptions import MediaExtractionError
from aiscan.services.media_extractor import FrameExtraction

SUMMARY_JSON = (
    '{"aiGeneratedLikelihood":0.85,"artifactsDetected":["edge_halos_or_seams"],'
    '"rationale":["Soft seams around the face"],"whatIsIt":["Likely a face swap"],'
    '"howToBehave":["Do not share personal details"]}'
)


def png_bytes(color=(200, 30, 30), size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def png_data_url(color=(200, 30, 30)) -> str:
    return "data:image/png;base64," + base64.b64encode(png_bytes(color)).decode("ascii")


class FakeBackend(AIBackend):
    """Records each call and replays scripted replies (strings or exceptions)."""

    def __init__(self, replies=None, name="fake"):
        self.name = name
        self.available = True
        self.replies = list(replies or [SUMMARY_JSON])
        self.calls = []

    async def complete(self, system_prompt, user_text, images):
        self.calls.append({"system": system_prompt, "user": user_text, "images": list(images)})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        return reply


class FakeExtractor:
    """Stands in for media_extractor.extract_frames, writing real frame files."""

    def __init__(self, frame_count=50, error: Exception = None):
        self.frame_count = frame_count
        self.error = error
        self.session_dirs: List[Path] = []

    async def __call__(self, video_path, **kwargs):
        if self.error is not None:
            raise self.error
        folder = Path(video_path).parent / f"frames-test-{len(self.session_dirs)}"
        folder.mkdir()
        self.session_dirs.append(folder)
        frames = []
        for i in range(1, self.frame_count + 1):
            path = folder / f"frame-{i:05d}.jpg"
            path.write_bytes(b"\xff\xd8jpeg" + str(i).encode())
            frames.append(path)
        return FrameExtraction(frames=frames, session_dir=folder)


@pytest.fixture
def storage(tmp_path, monkeypatch):
    """Point every storage directory at a fresh temp tree."""
    dirs = {
        "UPLOAD_DIR": tmp_path / "uploads",
        "RECORDINGS_DIR": tmp_path / "recordings",
        "SCREENSHOTS_DIR": tmp_path / "screenshots",
        "AUDIO_DIR": tmp_path / "audio",
    }
    for name, path in dirs.items():
        path.mkdir()
        monkeypatch.setattr(Config, name, path)
    return dirs


@pytest.fixture
def fast_config(monkeypatch):
    monkeypatch.setattr(Config, "ANALYSIS_TIMEOUT", 5.0)
    monkeypatch.setattr(Config, "MAX_FRAMES_TO_MODEL", 6)
    monkeypatch.setattr(Config, "ANALYSIS_FAILURE_POLICY", "fallback")
    monkeypatch.setattr(Config, "ANALYSIS_RATE_LIMIT_RETRIES", 1)
    monkeypatch.setattr(Config, "PREVIEW_FRAME_DELAY", 0.0)
    monkeypatch.setattr(Config, "TRANSCRIBE_AUDIO", False)


@pytest.fixture
def uploaded_video(storage):
    path = storage["UPLOAD_DIR"] / "clip.mp4"
    path.write_bytes(b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 1024)
    return path


@pytest.fixture
def failing_extractor():
    return FakeExtractor(error=MediaExtractionError("ffmpeg exited with code 1", stderr="moov atom not found"))
