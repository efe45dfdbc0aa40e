from fastapi import APIRouter, Depends

from aiscan.ai.manager import AIBackendManager
from aiscan.core.config import Config
from aiscan.schemas import HealthCheck
from aiscan.services.transcriber import Transcriber
from aiscan.services.video_processor import now_iso
from ..deps import get_ai_manager, get_transcriber

router = APIRouter()


@router.get("/health", response_model=HealthCheck)
async def health(
    ai_manager: AIBackendManager = Depends(get_ai_manager),
    transcriber: Transcriber = Depends(get_transcriber),
):
    return HealthCheck(
        timestamp=now_iso(),
        env=Config.ENV,
        aiBackend=ai_manager.current_backend_name,
        transcriber=transcriber.backend or "disabled",
    )
