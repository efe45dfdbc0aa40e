import asyncio
import os
import secrets
import shutil
import time
from pathlib import Path
from typing import List, Union

from loguru import logger

from aiscan.core.exceptions import CleanupError

PathLike = Union[str, Path]


def unique_dir_name(prefix: str) -> str:
    """`<prefix>-<epoch ms>-<random>`; never reused across requests."""
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def make_session_dir(base_dir: PathLike, prefix: str) -> Path:
    path = Path(base_dir) / unique_dir_name(prefix)
    path.mkdir(parents=True, exist_ok=False)
    return path


def _remove(path: Path) -> None:
    if not os.path.lexists(path):
        return
    try:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()
    except OSError as e:
        raise CleanupError(f"Failed to remove {path}: {e}") from e


def safe_remove(path: PathLike) -> bool:
    """
    Best-effort removal of a file or a directory tree.

    Returns True when the path no longer exists. Errors are logged and
    swallowed, they never reach the caller.
    """
    path = Path(path)
    try:
        _remove(path)
    except CleanupError as e:
        logger.warning(str(e))
        return False
    return not os.path.lexists(path)


class TempPaths:
    """
    Tracks temporary files/directories created during one request and removes
    all of them on exit, whatever the exit path (return, exception,
    cancellation).

        async with TempPaths() as temp:
            session = await extract_frames(...)
            temp.track(session.session_dir)
            ...
    """

    def __init__(self):
        self._paths: List[Path] = []

    @property
    def paths(self) -> List[Path]:
        return list(self._paths)

    def track(self, path: PathLike) -> Path:
        path = Path(path)
        if path not in self._paths:
            self._paths.append(path)
        return path

    def cleanup(self) -> None:
        # Newest first, so files tracked inside a tracked directory go before it.
        while self._paths:
            path = self._paths.pop()
            if safe_remove(path):
                logger.debug(f"Removed temporary path {path}")

    async def aclose(self) -> None:
        # Shielded: removal keeps running in its thread even if the request task is cancelled.
        await asyncio.shield(asyncio.to_thread(self.cleanup))

    def __enter__(self) -> "TempPaths":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cleanup()

    async def __aenter__(self) -> "TempPaths":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()
