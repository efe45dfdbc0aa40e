import math
from typing import Annotated, List, Literal, Optional, Union

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def _clamp_likelihood(value):
    # Out-of-range model values are clamped, never rejected. Non-numbers are rejected.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("likelihood must be a number")
    if math.isnan(value):
        raise ValueError("likelihood must not be NaN")
    return min(1.0, max(0.0, float(value)))


Likelihood = Annotated[float, BeforeValidator(_clamp_likelihood)]


class _ModelOutput(BaseModel):
    model_config = ConfigDict(extra="ignore")


class FrameScore(_ModelOutput):
    frameIndex: int = Field(validation_alias=AliasChoices("frameIndex", "frame_index", "frame"))
    aiLikelihood: Likelihood = Field(validation_alias=AliasChoices("aiLikelihood", "ai_likelihood"))
    artifactsDetected: List[str] = Field(validation_alias=AliasChoices("artifactsDetected", "artifacts_detected"))
    rationale: str

    @field_validator("artifactsDetected")
    @classmethod
    def _unique_artifacts(cls, value: List[str]) -> List[str]:
        return list(dict.fromkeys(value))


class PerFrameResult(BaseModel):
    kind: Literal["per_frame"] = "per_frame"
    frames: List[FrameScore] = Field(min_length=1)


class SummaryResult(_ModelOutput):
    kind: Literal["summary"] = "summary"
    aiGeneratedLikelihood: Likelihood = Field(
        validation_alias=AliasChoices("aiGeneratedLikelihood", "ai_generated_likelihood")
    )
    label: Optional[Literal["ai", "human", "uncertain"]] = None
    artifactsDetected: List[str] = Field(validation_alias=AliasChoices("artifactsDetected", "artifacts_detected"))
    rationale: List[str]
    whatIsIt: List[str] = Field(default_factory=list, validation_alias=AliasChoices("whatIsIt", "what_is_it"))
    howToBehave: List[str] = Field(default_factory=list, validation_alias=AliasChoices("howToBehave", "how_to_behave"))

    @field_validator("label", mode="before")
    @classmethod
    def _normalize_label(cls, value):
        if isinstance(value, str) and value.strip().lower() in ("ai", "human", "uncertain"):
            return value.strip().lower()
        return None


AnalysisResult = Annotated[Union[SummaryResult, PerFrameResult], Field(discriminator="kind")]


def result_likelihood(result: Union[SummaryResult, PerFrameResult]) -> float:
    """Single headline likelihood for either result variant."""
    if isinstance(result, SummaryResult):
        return result.aiGeneratedLikelihood
    if isinstance(result, PerFrameResult):
        return max(frame.aiLikelihood for frame in result.frames)
    raise TypeError(f"Unknown analysis result type: {type(result).__name__}")


def result_artifacts(result: Union[SummaryResult, PerFrameResult]) -> List[str]:
    if isinstance(result, SummaryResult):
        return list(result.artifactsDetected)
    if isinstance(result, PerFrameResult):
        seen = {}
        for frame in result.frames:
            seen.update(dict.fromkeys(frame.artifactsDetected))
        return list(seen)
    raise TypeError(f"Unknown analysis result type: {type(result).__name__}")


def result_rationale(result: Union[SummaryResult, PerFrameResult]) -> List[str]:
    if isinstance(result, SummaryResult):
        return list(result.rationale)
    if isinstance(result, PerFrameResult):
        return [f"Frame {frame.frameIndex}: {frame.rationale}" for frame in result.frames]
    raise TypeError(f"Unknown analysis result type: {type(result).__name__}")


# ---------- HTTP envelopes ----------

class AnalysisEnvelope(BaseModel):
    success: bool
    raw: Optional[str] = None
    parsed: Optional[AnalysisResult] = None
    parseError: Optional[str] = None
    usedFallback: bool = False
    framesAnalyzed: int = 0


class VideoMetadata(BaseModel):
    filename: str
    originalName: str
    size: int
    sizeInMB: float
    mimeType: str
    fileExtension: str
    durationSeconds: float = 0.0
    uploadedAt: str


class VideoInfo(BaseModel):
    metadata: VideoMetadata
    uploadedAt: str
    filePath: str
    frameCount: int = 0


class UploadVideoData(BaseModel):
    video: VideoInfo
    analysis: AnalysisEnvelope


class UploadVideoResponse(BaseModel):
    success: bool = True
    message: str
    data: UploadVideoData


class RecordingRequest(BaseModel):
    frames: List[str]
    fps: Optional[float] = Field(default=None, gt=0)
    timestamp: Optional[str] = None
    source: Optional[str] = None


class RecordingResponse(BaseModel):
    success: bool = True
    message: str
    sessionId: str
    frameCount: int
    fps: float
    duration: float
    timestamp: str
    source: str
    analysis: AnalysisEnvelope


class ScreenshotRequest(BaseModel):
    image: str
    timestamp: Optional[str] = None
    source: Optional[str] = None


class ScreenshotResponse(BaseModel):
    success: bool = True
    message: str
    filename: str
    timestamp: str
    source: str
    size: int


class AudioRequest(BaseModel):
    audio: str
    mimeType: Optional[str] = None
    timestamp: Optional[str] = None
    source: Optional[str] = None
    size: Optional[int] = None


class AudioResponse(BaseModel):
    success: bool = True
    message: str
    filename: str
    mimeType: str
    timestamp: str
    source: str
    originalSize: int
    savedSize: int


class HealthCheck(BaseModel):
    status: str = "OK"
    timestamp: str
    env: Optional[str] = None
    aiBackend: str
    transcriber: str


class FlaggedResultOut(BaseModel):
    id: int
    source: str
    sessionId: Optional[str] = None
    filename: Optional[str] = None
    likelihood: float
    artifacts: List[str] = []
    rationale: List[str] = []
    createdAt: str


class FlaggedResultsResponse(BaseModel):
    success: bool = True
    message: str
    data: List[FlaggedResultOut] = []


# ---------- /ws progress events ----------

class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    message: str


class FrameEvent(BaseModel):
    type: Literal["frame"] = "frame"
    index: int
    total: int
    image: str


class AnalysisStatusEvent(BaseModel):
    type: Literal["analysis_status"] = "analysis_status"
    status: Literal["starting", "processing", "completed", "error"]
    message: Optional[str] = None


class DoneEvent(BaseModel):
    type: Literal["done"] = "done"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


ProgressEvent = Union[StatusEvent, FrameEvent, AnalysisStatusEvent, DoneEvent, ErrorEvent]
