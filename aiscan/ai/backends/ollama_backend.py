import asyncio
from typing import List

import requests
from loguru import logger

from aiscan.core.config import Config
from aiscan.core.exceptions import AnalysisAPIError, AnalysisRateLimitError, AnalysisTimeoutError
from .base import AIBackend, EncodedImage


class OllamaVisionBackend(AIBackend):
    def __init__(self, base_url: str = None, model: str = None):
        self.name = "ollama"
        self.base_url = (base_url or Config.OLLAMA_BASE_URL).rstrip("/")
        self.model = model or Config.OLLAMA_MODEL
        self.available = False
        try:
            r = requests.get(f"{self.base_url}/api/tags", timeout=5)
            self.available = (r.status_code == 200)
            if self.available:
                logger.info(f"Ollama available at {self.base_url} (model={self.model})")
        except requests.RequestException as e:
            logger.warning(f"Ollama not available: {e}")

    async def complete(self, system_prompt: str, user_text: str, images: List[EncodedImage]) -> str:
        if not self.available:
            raise AnalysisAPIError("Ollama backend not available")

        payload = {
            "model": self.model,
            "system": system_prompt,
            "prompt": user_text,
            "images": [image.data for image in images],
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.1},
        }
        try:
            resp = await asyncio.to_thread(
                requests.post, f"{self.base_url}/api/generate", json=payload, timeout=Config.ANALYSIS_TIMEOUT
            )
        except requests.Timeout as e:
            raise AnalysisTimeoutError("Ollama request timed out") from e
        except requests.RequestException as e:
            raise AnalysisAPIError(f"Ollama request failed: {e}") from e

        if resp.status_code == 429:
            raise AnalysisRateLimitError("Ollama is busy (429)")
        if resp.status_code >= 400:
            raise AnalysisAPIError(
                f"Ollama returned HTTP {resp.status_code}", details={"status": resp.status_code}
            )

        try:
            text = resp.json().get("response", "")
        except ValueError as e:
            raise AnalysisAPIError("Ollama returned a non-JSON body") from e
        if not text:
            raise AnalysisAPIError("No analysis received from Ollama")
        return text
