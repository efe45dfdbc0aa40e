from typing import Optional

from fastapi import Depends, Request

from aiscan.ai.manager import AIBackendManager
from aiscan.services.broadcaster import ProgressBroadcaster
from aiscan.services.result_store import ResultStore
from aiscan.services.transcriber import Transcriber
from aiscan.services.video_processor import VideoProcessor


# Process-wide objects are created in the app lifespan and live on app.state.

def get_ai_manager(request: Request) -> AIBackendManager:
    return request.app.state.ai_manager


def get_transcriber(request: Request) -> Transcriber:
    return request.app.state.transcriber


def get_broadcaster(request: Request) -> ProgressBroadcaster:
    return request.app.state.broadcaster


def get_result_store(request: Request) -> Optional[ResultStore]:
    return request.app.state.result_store


def get_video_processor(
    ai_manager: AIBackendManager = Depends(get_ai_manager),
    transcriber: Transcriber = Depends(get_transcriber),
    broadcaster: ProgressBroadcaster = Depends(get_broadcaster),
    result_store: Optional[ResultStore] = Depends(get_result_store),
) -> VideoProcessor:
    return VideoProcessor(ai_manager, transcriber=transcriber, broadcaster=broadcaster, result_store=result_store)
