import os
from pathlib import Path
from dotenv import load_dotenv


load_dotenv()


def _flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Server
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", 3001))
    ENV = os.getenv("ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Files
    UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", "./uploads"))
    RECORDINGS_DIR = Path(os.getenv("RECORDINGS_DIR", "./recordings"))
    SCREENSHOTS_DIR = Path(os.getenv("SCREENSHOTS_DIR", "./screenshots"))
    AUDIO_DIR = Path(os.getenv("AUDIO_DIR", "./audio"))
    MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 100 * 1024 * 1024))
    ALLOWED_VIDEO_TYPES = os.getenv(
        "ALLOWED_VIDEO_TYPES",
        "video/mp4,video/avi,video/mov,video/quicktime,video/wmv,video/webm,video/mkv,video/x-msvideo"
    ).split(",")

    # Media extraction (ffmpeg)
    FFMPEG_BINARY = os.getenv("FFMPEG_BINARY")  # None -> binary bundled with imageio-ffmpeg
    EXTRACTION_TIMEOUT = float(os.getenv("EXTRACTION_TIMEOUT", 120))
    FRAME_FPS = float(os.getenv("FRAME_FPS", 10))
    FRAME_SIZE = os.getenv("FRAME_SIZE", "640x480")
    FRAME_MAX = int(os.getenv("FRAME_MAX", 0)) or None
    AUDIO_DURATION = float(os.getenv("AUDIO_DURATION", 30))
    AUDIO_SAMPLE_RATE = int(os.getenv("AUDIO_SAMPLE_RATE", 16000))
    AUDIO_CHANNELS = int(os.getenv("AUDIO_CHANNELS", 1))

    # AI backend selection
    AI_BACKEND = os.getenv("AI_BACKEND", "auto")  # auto|openai|ollama

    # OpenAI
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
    OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL")
    OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o")
    OPENAI_IMAGE_DETAIL = os.getenv("OPENAI_IMAGE_DETAIL", "low")
    OPENAI_MAX_TOKENS = int(os.getenv("OPENAI_MAX_TOKENS", 1000))

    # Ollama
    OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
    OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llava")

    # Analysis
    ANALYSIS_TIMEOUT = float(os.getenv("ANALYSIS_TIMEOUT", 30))
    MAX_FRAMES_TO_MODEL = int(os.getenv("MAX_FRAMES_TO_MODEL", 6))
    ANALYSIS_FAILURE_POLICY = os.getenv("ANALYSIS_FAILURE_POLICY", "fallback")  # fallback|fail
    ANALYSIS_RATE_LIMIT_RETRIES = int(os.getenv("ANALYSIS_RATE_LIMIT_RETRIES", 1))

    # Whisper
    TRANSCRIBE_AUDIO = _flag("TRANSCRIBE_AUDIO", True)
    TRANSCRIPTION_BACKEND = os.getenv("TRANSCRIPTION_BACKEND", "auto")  # auto|openai|local
    WHISPER_MODEL_SIZE = os.getenv("WHISPER_MODEL_SIZE", "base")

    # Live preview over /ws
    PREVIEW_FPS = float(os.getenv("PREVIEW_FPS", 1.5))
    PREVIEW_MAX_FRAMES = int(os.getenv("PREVIEW_MAX_FRAMES", 8))
    PREVIEW_SIZE = os.getenv("PREVIEW_SIZE", "640x360")
    PREVIEW_FRAME_DELAY = float(os.getenv("PREVIEW_FRAME_DELAY", 0.3))

    # Flagged results (optional)
    DATABASE_URL = os.getenv("DATABASE_URL")
    FLAG_THRESHOLD = float(os.getenv("FLAG_THRESHOLD", 0.5))

    @classmethod
    def validate(cls):
        """Validate configuration and create storage directories"""
        if cls.ANALYSIS_FAILURE_POLICY not in ("fallback", "fail"):
            raise ValueError("ANALYSIS_FAILURE_POLICY must be 'fallback' or 'fail'")
        if cls.AI_BACKEND not in ("auto", "openai", "ollama"):
            raise ValueError("AI_BACKEND must be one of auto, openai, ollama")

        for directory in (cls.UPLOAD_DIR, cls.RECORDINGS_DIR, cls.SCREENSHOTS_DIR, cls.AUDIO_DIR):
            directory.mkdir(parents=True, exist_ok=True)

        return True
