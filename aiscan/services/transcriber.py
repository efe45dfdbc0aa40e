import asyncio
from pathlib import Path

from loguru import logger
from openai import AsyncOpenAI

from aiscan.core.config import Config

try:
    from faster_whisper import WhisperModel

    FASTER_OK = True
except ImportError:
    FASTER_OK = False


class Transcriber:
    """Speech-to-text for the audio clip that accompanies the sampled frames."""

    def __init__(self, backend: str = None):
        self.backend = None
        self.client = None
        self.whisper_model = None

        if not Config.TRANSCRIBE_AUDIO:
            logger.info("Audio transcription disabled")
            return

        backend = backend or Config.TRANSCRIPTION_BACKEND
        if backend in ("auto", "openai") and Config.OPENAI_API_KEY:
            self.client = AsyncOpenAI(
                api_key=Config.OPENAI_API_KEY,
                base_url=Config.OPENAI_BASE_URL,
                timeout=Config.ANALYSIS_TIMEOUT,
            )
            self.backend = "openai-whisper"
        elif backend in ("auto", "local") and FASTER_OK:
            self.whisper_model = WhisperModel(Config.WHISPER_MODEL_SIZE, device="cpu", compute_type="int8")
            self.backend = "faster-whisper"
        else:
            logger.warning("No transcription backend available, audio will be ignored")

        if self.backend:
            logger.info(f"Transcription backend: {self.backend}")

    @property
    def available(self) -> bool:
        return self.backend is not None

    async def transcribe(self, audio_path: Path) -> str:
        """Transcript text, or "" when unavailable or on failure."""
        if not self.available:
            return ""
        try:
            if self.backend == "openai-whisper":
                return await self._transcribe_openai(Path(audio_path))
            return await asyncio.to_thread(self._transcribe_local, str(audio_path))
        except Exception as e:
            logger.warning(f"Error in transcription: {e}")
            return ""

    async def _transcribe_openai(self, audio_path: Path) -> str:
        audio_bytes = await asyncio.to_thread(audio_path.read_bytes)
        transcript = await self.client.audio.transcriptions.create(
            model="whisper-1",
            file=(audio_path.name, audio_bytes),
        )
        return (transcript.text or "").strip()

    def _transcribe_local(self, audio_path: str) -> str:
        segments, _info = self.whisper_model.transcribe(audio_path)
        return "".join(seg.text for seg in segments).strip()
