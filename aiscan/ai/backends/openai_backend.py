from typing import List

import openai
from loguru import logger
from openai import AsyncOpenAI

from aiscan.core.config import Config
from aiscan.core.exceptions import (
    AnalysisAPIError,
    AnalysisError,
    AnalysisQuotaError,
    AnalysisRateLimitError,
    AnalysisTimeoutError,
)
from .base import AIBackend, EncodedImage

_QUOTA_CODES = {"insufficient_quota", "billing_hard_limit_reached", "billing_not_active"}


def map_openai_error(exc: openai.OpenAIError) -> AnalysisError:
    """Translate an OpenAI SDK error into the service's error kinds."""
    if isinstance(exc, openai.APITimeoutError):
        return AnalysisTimeoutError("OpenAI request timed out")

    code = getattr(exc, "code", None)
    status = getattr(exc, "status_code", None)
    if code in _QUOTA_CODES or status == 402:
        return AnalysisQuotaError("OpenAI quota or billing limit reached", error_code=code)
    if isinstance(exc, openai.RateLimitError):
        return AnalysisRateLimitError("OpenAI rate limit reached", error_code=code)
    if isinstance(exc, openai.APIConnectionError):
        return AnalysisAPIError("Could not reach OpenAI", error_code="connection_error")
    return AnalysisAPIError(f"OpenAI request failed: {exc}", error_code=code, details={"status": status})


class OpenAIVisionBackend(AIBackend):
    def __init__(self, api_key: str = None, model: str = None, base_url: str = None):
        self.name = "openai"
        self.model = model or Config.OPENAI_MODEL
        self.client = None
        self.available = False

        api_key = api_key or Config.OPENAI_API_KEY
        if api_key:
            self.client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url or Config.OPENAI_BASE_URL,
                timeout=Config.ANALYSIS_TIMEOUT,
                max_retries=0,
            )
            self.available = True
            logger.info(f"OpenAI vision backend ready (model={self.model})")
        else:
            logger.warning("OPENAI_API_KEY is not set, OpenAI backend unavailable")

    def build_messages(self, system_prompt: str, user_text: str, images: List[EncodedImage]) -> list:
        content = [{"type": "text", "text": user_text}]
        for image in images:
            content.append({
                "type": "image_url",
                "image_url": {"url": image.data_url, "detail": Config.OPENAI_IMAGE_DETAIL},
            })
        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": content},
        ]

    async def complete(self, system_prompt: str, user_text: str, images: List[EncodedImage]) -> str:
        if not self.available:
            raise AnalysisAPIError("OpenAI backend not available")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=self.build_messages(system_prompt, user_text, images),
                max_tokens=Config.OPENAI_MAX_TOKENS,
                temperature=0.1,
            )
        except openai.OpenAIError as e:
            logger.error(f"OpenAI vision analysis failed: {e}")
            raise map_openai_error(e) from e

        text = response.choices[0].message.content if response.choices else None
        if not text:
            raise AnalysisAPIError("No analysis received from OpenAI")
        return text
