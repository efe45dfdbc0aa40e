from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class EncodedImage:
    data: str  # base64, no data-URL prefix
    mime_type: str = "image/jpeg"

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


class AIBackend:
    name: str = "base"
    available: bool = False

    async def complete(self, system_prompt: str, user_text: str, images: List[EncodedImage]) -> str:
        """
        One request carrying all images. Returns the model text verbatim.

        Implementations raise AnalysisTimeoutError, AnalysisQuotaError,
        AnalysisRateLimitError or AnalysisAPIError.
        """
        raise NotImplementedError
