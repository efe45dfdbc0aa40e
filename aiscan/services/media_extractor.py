import asyncio
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import imageio_ffmpeg
from loguru import logger
from moviepy import VideoFileClip

from aiscan.core.config import Config
from aiscan.core.exceptions import MediaExtractionError
from aiscan.helper.cleanup import make_session_dir, safe_remove

_FRAME_INDEX_RE = re.compile(r"^frame-(\d+)\.(\w+)$")
_SIZE_RE = re.compile(r"^\d+x\d+$")
_STDERR_TAIL = 2000


@dataclass
class FrameExtraction:
    frames: List[Path]
    session_dir: Path


@dataclass
class AudioExtraction:
    audio_path: Path
    session_dir: Path
    size_bytes: int = field(default=0)


def ffmpeg_binary() -> str:
    return Config.FFMPEG_BINARY or imageio_ffmpeg.get_ffmpeg_exe()


async def run_ffmpeg(args: Sequence[str], timeout: Optional[float] = None) -> None:
    """
    Run ffmpeg with `args` and wait for it. Raises MediaExtractionError on a
    nonzero exit, on a missing binary, or when `timeout` seconds pass (the
    process is killed first).
    """
    timeout = Config.EXTRACTION_TIMEOUT if timeout is None else timeout
    cmd = [ffmpeg_binary(), "-hide_banner", "-loglevel", "error", "-y", *args]
    logger.debug(f"ffmpeg: {' '.join(cmd)}")

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        raise MediaExtractionError(f"Could not start ffmpeg: {e}") from e

    try:
        _, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        raise MediaExtractionError(f"ffmpeg timed out after {timeout:.0f}s")
    except BaseException:
        await _terminate(process)
        raise

    if process.returncode != 0:
        diagnostic = (stderr or b"").decode(errors="replace").strip()[-_STDERR_TAIL:]
        logger.error(f"ffmpeg exited with {process.returncode}: {diagnostic}")
        raise MediaExtractionError(
            f"ffmpeg exited with code {process.returncode}",
            stderr=diagnostic,
            details={"returncode": process.returncode},
        )


async def _terminate(process) -> None:
    if process.returncode is not None:
        return
    try:
        process.kill()
    except ProcessLookupError:
        return
    await process.wait()


def list_frames(folder: Path, image_format: str) -> List[Path]:
    """
    Frames actually on disk, ignoring whatever ffmpeg claims to have written:
    only non-empty `frame-<n>.<fmt>` files, ordered by n.
    """
    frames = []
    for entry in os.scandir(folder):
        match = _FRAME_INDEX_RE.match(entry.name)
        if not match or match.group(2).lower() != image_format.lower():
            continue
        if not entry.is_file() or entry.stat().st_size == 0:
            continue
        frames.append((int(match.group(1)), Path(entry.path)))
    return [path for _, path in sorted(frames)]


async def extract_frames(
    video_path,
    fps: float = None,
    max_frames: Optional[int] = None,
    size: str = None,
    start_time: Optional[float] = None,
    duration: Optional[float] = None,
    image_format: str = "jpg",
    output_dir=None,
    timeout: Optional[float] = None,
    prefix: str = "frames",
) -> FrameExtraction:
    """
    Sample frames from `video_path` into a fresh session directory.

    The session directory is created under `output_dir` (default: the video's
    directory). A short video simply yields fewer frames. On any failure the
    session directory is removed before the error propagates, so callers only
    ever own directories of successful extractions.
    """
    fps = Config.FRAME_FPS if fps is None else fps
    size = size or Config.FRAME_SIZE
    if fps <= 0:
        raise ValueError("fps must be positive")
    if not _SIZE_RE.match(size):
        raise ValueError(f"size must look like WIDTHxHEIGHT, got {size!r}")

    video_path = Path(video_path)
    folder = await asyncio.to_thread(make_session_dir, output_dir or video_path.parent, prefix)

    args: List[str] = []
    if start_time is not None and start_time >= 0:
        args += ["-ss", f"{start_time}"]
    args += ["-i", str(video_path)]
    if duration is not None and duration > 0:
        args += ["-t", f"{duration}"]
    args += ["-vf", f"fps={fps}", "-s", size]
    if max_frames is not None and max_frames > 0:
        args += ["-frames:v", str(max_frames)]
    args.append(str(folder / f"frame-%05d.{image_format}"))

    try:
        await run_ffmpeg(args, timeout=timeout)
        frames = await asyncio.to_thread(list_frames, folder, image_format)
    except BaseException:
        await asyncio.to_thread(safe_remove, folder)
        raise

    logger.info(f"Extracted {len(frames)} frames from {video_path.name} into {folder.name}")
    return FrameExtraction(frames=frames, session_dir=folder)


async def extract_audio(
    video_path,
    duration_seconds: Optional[float] = None,
    audio_format: str = "wav",
    sample_rate: int = None,
    channels: int = None,
    start_time: Optional[float] = None,
    output_dir=None,
    timeout: Optional[float] = None,
) -> AudioExtraction:
    """
    Pull the audio track (first `duration_seconds`) out of a video into a fresh
    session directory. Fails with MediaExtractionError when the video has no
    audio stream or ffmpeg fails; the session directory is removed in that case.
    """
    duration_seconds = Config.AUDIO_DURATION if duration_seconds is None else duration_seconds
    sample_rate = sample_rate or Config.AUDIO_SAMPLE_RATE
    channels = channels or Config.AUDIO_CHANNELS

    video_path = Path(video_path)
    folder = await asyncio.to_thread(make_session_dir, output_dir or video_path.parent, "audio")
    audio_path = folder / f"audio.{audio_format}"

    args: List[str] = []
    if start_time is not None and start_time >= 0:
        args += ["-ss", f"{start_time}"]
    args += ["-i", str(video_path), "-vn", "-ar", str(sample_rate), "-ac", str(channels)]
    if duration_seconds and duration_seconds > 0:
        args += ["-t", f"{duration_seconds}"]
    args.append(str(audio_path))

    try:
        await run_ffmpeg(args, timeout=timeout)
        size_bytes = audio_path.stat().st_size if audio_path.exists() else 0
        if size_bytes == 0:
            raise MediaExtractionError("ffmpeg produced no audio")
    except BaseException:
        await asyncio.to_thread(safe_remove, folder)
        raise

    logger.info(f"Extracted audio from {video_path.name} ({size_bytes} bytes)")
    return AudioExtraction(audio_path=audio_path, session_dir=folder, size_bytes=size_bytes)


def _read_duration(video_path: str) -> float:
    try:
        with VideoFileClip(video_path, audio=False) as video:
            return float(video.duration or 0.0)
    except Exception as e:
        logger.warning(f"Error extracting duration: {e}")
        return 0.0


async def probe_duration(video_path) -> float:
    return await asyncio.to_thread(_read_duration, str(video_path))
