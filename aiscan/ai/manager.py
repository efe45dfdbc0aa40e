import asyncio
import base64
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from aiscan.core.config import Config
from aiscan.core.exceptions import AIScanError, AnalysisAPIError, AnalysisTimeoutError, NoFramesError
from .backends.base import AIBackend, EncodedImage
from .backends.ollama_backend import OllamaVisionBackend
from .backends.openai_backend import OpenAIVisionBackend
from .prompts import FORENSIC_SYSTEM_PROMPT, build_user_prompt

_MIME_BY_SUFFIX = {".png": "image/png", ".webp": "image/webp"}


def _default_backends() -> List[AIBackend]:
    if Config.AI_BACKEND in ("auto", "openai"):
        openai_backend = OpenAIVisionBackend()
        if openai_backend.available or Config.AI_BACKEND == "openai":
            return [openai_backend]
    return [OllamaVisionBackend()]


def usable_frames(frame_paths: Sequence) -> List[Path]:
    """Existing, non-empty frame files, input order kept."""
    frames = []
    for p in frame_paths:
        path = Path(p)
        try:
            if path.is_file() and path.stat().st_size > 0:
                frames.append(path)
        except OSError:
            continue
    return frames


def encode_image(path: Path) -> EncodedImage:
    data = base64.b64encode(path.read_bytes()).decode("ascii")
    return EncodedImage(data=data, mime_type=_MIME_BY_SUFFIX.get(path.suffix.lower(), "image/jpeg"))


class AIBackendManager:
    """
    Sends sampled frames (and optional transcript) to the selected vision
    model in a single request and hands back the raw text. Parsing is left to
    aiscan.ai.output_parser.
    """

    def __init__(self, backends: Optional[List[AIBackend]] = None,
                 max_frames: Optional[int] = None, timeout: Optional[float] = None):
        self.backends = backends if backends is not None else _default_backends()
        self.max_frames = max_frames
        self.timeout = timeout
        self.active_backend: Optional[AIBackend] = None
        self._select_backend()

    def _select_backend(self):
        for backend in self.backends:
            if backend.available:
                self.active_backend = backend
                logger.info(f"Using AI backend: {backend.name}")
                return
        logger.warning("No AI backend available, analysis requests will fail")

    @property
    def current_backend_name(self) -> str:
        return self.active_backend.name if self.active_backend else "none"

    def select_frames(self, frame_paths: Sequence) -> List[Path]:
        """First K usable frames in temporal order."""
        frames = usable_frames(frame_paths)
        if not frames:
            raise NoFramesError("No frame extracted to analyze")
        limit = self.max_frames or Config.MAX_FRAMES_TO_MODEL
        return frames[:limit]

    async def analyze(self, frame_paths: Sequence, audio_text: Optional[str] = None) -> str:
        selected = await asyncio.to_thread(self.select_frames, frame_paths)
        if self.active_backend is None:
            raise AnalysisAPIError("No AI backend available")

        images = await asyncio.to_thread(lambda: [encode_image(p) for p in selected])
        user_text = build_user_prompt(len(images), audio_text)
        timeout = self.timeout or Config.ANALYSIS_TIMEOUT

        logger.info(f"Sending {len(images)} frames to {self.active_backend.name}"
                    f"{' with transcript' if audio_text else ''}")
        try:
            return await asyncio.wait_for(
                self.active_backend.complete(FORENSIC_SYSTEM_PROMPT, user_text, images),
                timeout=timeout,
            )
        except asyncio.TimeoutError as e:
            raise AnalysisTimeoutError(f"AI analysis timed out after {timeout:.0f}s") from e
        except AIScanError:
            raise
        except Exception as e:
            logger.error(f"AI analysis failed: {e}")
            raise AnalysisAPIError(f"AI analysis failed: {e}") from e
