import asyncio
import inspect
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from aiscan.ai.manager import AIBackendManager
from aiscan.ai.output_parser import parse_analysis_output
from aiscan.core.config import Config
from aiscan.core.exceptions import (
    AIScanError,
    AnalysisError,
    AnalysisRateLimitError,
    MediaExtractionError,
    NoFramesError,
    ValidationError,
)
from aiscan.helper.cleanup import TempPaths
from aiscan.schemas import (
    AnalysisEnvelope,
    SummaryResult,
    UploadVideoData,
    UploadVideoResponse,
    VideoInfo,
    VideoMetadata,
)
from aiscan.services import media_extractor


class PipelineState(str, Enum):
    VALIDATING = "validating"
    EXTRACTING = "extracting"
    ANALYZING = "analyzing"
    PARSING = "parsing"
    RESPONDING = "responding"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UploadedVideo:
    path: Path
    original_name: str
    mime_type: str
    size_bytes: int


@dataclass
class PipelineRun:
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    states: List[PipelineState] = field(default_factory=list)

    @property
    def state(self) -> Optional[PipelineState]:
        return self.states[-1] if self.states else None


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def fallback_result(reason: str) -> SummaryResult:
    """Conservative stand-in used when the model cannot be reached or understood."""
    return SummaryResult(
        aiGeneratedLikelihood=0.0,
        label="uncertain",
        artifactsDetected=[],
        rationale=[f"Automated analysis unavailable: {reason}", "No likelihood estimate could be made."],
        whatIsIt=[],
        howToBehave=["Treat the content with normal caution and verify it through another channel."],
    )


class VideoProcessor:
    """
    Runs one upload through validate → extract → analyze → parse → respond,
    removing every temporary path it created (and the upload itself) on the
    way out. Holds per-request state, so build one per request.
    """

    def __init__(self, ai_manager: AIBackendManager, transcriber=None, broadcaster=None,
                 result_store=None, failure_policy: str = None):
        self.ai_manager = ai_manager
        self.transcriber = transcriber
        self.broadcaster = broadcaster
        self.result_store = result_store
        self.failure_policy = failure_policy or Config.ANALYSIS_FAILURE_POLICY
        self.retry_backoff = 1.0
        self.last_run: Optional[PipelineRun] = None

        self.extract_frames = media_extractor.extract_frames
        self.extract_audio = media_extractor.extract_audio
        self.probe_duration = media_extractor.probe_duration

    # ---------- state / side channel ----------

    @staticmethod
    def _transition(run: PipelineRun, state: PipelineState):
        run.states.append(state)
        logger.info(f"[{run.id}] {state.value}")

    def _notify(self, method: str, *args):
        if self.broadcaster is None:
            return
        try:
            getattr(self.broadcaster, method)(*args)
        except Exception as e:
            logger.warning(f"Broadcaster {method} failed: {e}")

    async def _stop_preview(self, video_path: Path):
        # Preview tasks write under the upload dir; they must be gone before cleanup runs.
        if self.broadcaster is None:
            return
        try:
            stopped = self.broadcaster.stop(video_path)
            if inspect.isawaitable(stopped):
                await stopped
        except Exception as e:
            logger.warning(f"Broadcaster stop failed: {e}")

    # ---------- steps ----------

    def validate(self, video: UploadedVideo):
        if not video.path.is_file():
            raise ValidationError("No video file provided")
        if video.mime_type not in Config.ALLOWED_VIDEO_TYPES:
            raise ValidationError("Invalid file type. Only video files are allowed.")
        if video.size_bytes <= 0:
            raise ValidationError("Uploaded video is empty")
        if video.size_bytes > Config.MAX_FILE_SIZE:
            limit_mb = Config.MAX_FILE_SIZE / (1024 * 1024)
            raise ValidationError(f"File too large. Maximum size is {limit_mb:.0f}MB.")

    async def _metadata(self, video: UploadedVideo, uploaded_at: str) -> VideoMetadata:
        duration = await self.probe_duration(video.path)
        return VideoMetadata(
            filename=video.path.name,
            originalName=video.original_name,
            size=video.size_bytes,
            sizeInMB=round(video.size_bytes / (1024 * 1024), 2),
            mimeType=video.mime_type,
            fileExtension=Path(video.original_name).suffix.lower(),
            durationSeconds=round(duration, 2),
            uploadedAt=uploaded_at,
        )

    async def _transcript(self, video_path: Path, temp: TempPaths) -> Optional[str]:
        if self.transcriber is None or not self.transcriber.available:
            return None
        try:
            audio = await self.extract_audio(video_path)
        except MediaExtractionError as e:
            logger.warning(f"Continuing without audio: {e.message}")
            return None
        temp.track(audio.session_dir)
        text = await self.transcriber.transcribe(audio.audio_path)
        return text or None

    async def _call_model(self, frame_paths: Sequence, audio_text: Optional[str]) -> str:
        retries = max(0, Config.ANALYSIS_RATE_LIMIT_RETRIES)
        attempt = 0
        while True:
            try:
                return await self.ai_manager.analyze(frame_paths, audio_text)
            except AnalysisRateLimitError as e:
                if attempt >= retries:
                    raise
                delay = self.retry_backoff * (2 ** attempt)
                attempt += 1
                logger.warning(f"{e.message}; retry {attempt}/{retries} in {delay:.1f}s")
                await asyncio.sleep(delay)

    async def analyze_frames(self, frame_paths: Sequence, audio_text: Optional[str] = None,
                             run: PipelineRun = None) -> AnalysisEnvelope:
        """
        Model call plus parse, with the failure policy applied. Under "fail"
        analysis errors propagate; parse failures never do.
        """
        run = run or PipelineRun()
        self._transition(run, PipelineState.ANALYZING)
        try:
            frames_sent = len(await asyncio.to_thread(self.ai_manager.select_frames, frame_paths))
            raw = await self._call_model(frame_paths, audio_text)
        except (AnalysisError, NoFramesError) as e:
            logger.warning(f"[{run.id}] analysis failed: {e.message}")
            if self.failure_policy == "fail":
                raise
            return AnalysisEnvelope(
                success=False,
                parsed=fallback_result(e.message),
                parseError=e.message,
                usedFallback=True,
            )

        self._transition(run, PipelineState.PARSING)
        outcome = parse_analysis_output(raw)
        if outcome.ok:
            return AnalysisEnvelope(success=True, raw=raw, parsed=outcome.data, framesAnalyzed=frames_sent)

        reason = outcome.error.message
        logger.warning(f"[{run.id}] {reason}")
        if self.failure_policy == "fail":
            return AnalysisEnvelope(success=False, raw=raw, parseError=reason, framesAnalyzed=frames_sent)
        return AnalysisEnvelope(
            success=False,
            raw=raw,
            parsed=fallback_result(reason),
            parseError=reason,
            usedFallback=True,
            framesAnalyzed=frames_sent,
        )

    async def store_if_flagged(self, envelope: AnalysisEnvelope, source: str,
                               session_id: str = None, filename: str = None):
        if self.result_store is None or not envelope.success or envelope.parsed is None:
            return None
        try:
            return await self.result_store.record_if_flagged(
                source, envelope.parsed, session_id=session_id, filename=filename, raw_text=envelope.raw
            )
        except Exception as e:
            logger.warning(f"Flagged result not stored: {e}")
            return None

    # ---------- pipeline ----------

    async def process_upload(self, video: UploadedVideo) -> UploadVideoResponse:
        run = self.last_run = PipelineRun()
        logger.info(f"[{run.id}] upload {video.original_name} ({video.size_bytes} bytes)")
        temp = TempPaths()
        temp.track(video.path)
        succeeded = False
        try:
            self._transition(run, PipelineState.VALIDATING)
            self.validate(video)
            uploaded_at = now_iso()
            metadata = await self._metadata(video, uploaded_at)

            self._notify("trigger", video.path)
            self._notify("broadcast_status", "starting", "Extracting frames")
            self._transition(run, PipelineState.EXTRACTING)
            extraction = await self.extract_frames(video.path, max_frames=Config.FRAME_MAX)
            temp.track(extraction.session_dir)
            audio_text = await self._transcript(video.path, temp)

            self._notify("broadcast_status", "processing", "Analyzing frames")
            envelope = await self.analyze_frames(extraction.frames, audio_text, run=run)

            self._transition(run, PipelineState.RESPONDING)
            await self.store_if_flagged(envelope, "web-upload", session_id=run.id, filename=video.original_name)
            self._notify("broadcast_status", "completed", "Analysis complete")
            message = ("Video uploaded, processed, and analyzed successfully" if envelope.success
                       else "Video uploaded and processed, but AI analysis was unavailable")
            response = UploadVideoResponse(
                message=message,
                data=UploadVideoData(
                    video=VideoInfo(
                        metadata=metadata,
                        uploadedAt=uploaded_at,
                        filePath=f"{Config.UPLOAD_DIR.name}/{video.path.name}",
                        frameCount=len(extraction.frames),
                    ),
                    analysis=envelope,
                ),
            )
            succeeded = True
            return response
        except AIScanError as e:
            logger.error(f"[{run.id}] failed: {e.message}")
            self._notify("broadcast_status", "error", e.message)
            raise
        finally:
            await self._stop_preview(video.path)
            self._transition(run, PipelineState.CLEANING_UP)
            await temp.aclose()
            self._transition(run, PipelineState.DONE if succeeded else PipelineState.FAILED)
