import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest
import requests

from aiscan.ai.backends import ollama_backend
from aiscan.ai.backends.base import EncodedImage
from aiscan.ai.backends.ollama_backend import OllamaVisionBackend
from aiscan.ai.backends.openai_backend import OpenAIVisionBackend, map_openai_error
from aiscan.core.exceptions import (
    AnalysisAPIError,
    AnalysisQuotaError,
    AnalysisRateLimitError,
    AnalysisTimeoutError,
)

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
IMAGES = [EncodedImage(data="aGVsbG8="), EncodedImage(data="d29ybGQ=", mime_type="image/png")]


def status_error(cls, status, code=None):
    body = {"message": "nope", "code": code} if code else None
    response = httpx.Response(status, request=REQUEST)
    return cls("nope", response=response, body=body)


class TestOpenAIErrorMapping:

    def test_quota(self):
        err = map_openai_error(status_error(openai.RateLimitError, 429, code="insufficient_quota"))
        assert isinstance(err, AnalysisQuotaError)

    def test_rate_limit(self):
        err = map_openai_error(status_error(openai.RateLimitError, 429))
        assert type(err) is AnalysisRateLimitError

    def test_timeout(self):
        assert isinstance(map_openai_error(openai.APITimeoutError(request=REQUEST)), AnalysisTimeoutError)

    def test_connection(self):
        err = map_openai_error(openai.APIConnectionError(request=REQUEST))
        assert type(err) is AnalysisAPIError

    def test_other_status(self):
        err = map_openai_error(status_error(openai.InternalServerError, 500))
        assert type(err) is AnalysisAPIError
        assert err.details == {"status": 500}


class TestOpenAIVisionBackend:

    def test_unavailable_without_key(self, monkeypatch):
        monkeypatch.setattr("aiscan.core.config.Config.OPENAI_API_KEY", None)
        backend = OpenAIVisionBackend()
        assert not backend.available
        with pytest.raises(AnalysisAPIError):
            asyncio.run(backend.complete("sys", "user", IMAGES))

    def test_messages_carry_all_images(self):
        backend = OpenAIVisionBackend(api_key="sk-test")
        messages = backend.build_messages("sys", "look", IMAGES)
        parts = messages[1]["content"]
        assert messages[0] == {"role": "system", "content": "sys"}
        assert parts[0] == {"type": "text", "text": "look"}
        assert [p["image_url"]["url"] for p in parts[1:]] == [
            "data:image/jpeg;base64,aGVsbG8=",
            "data:image/png;base64,d29ybGQ=",
        ]

    def test_complete_returns_text_and_maps_errors(self):
        backend = OpenAIVisionBackend(api_key="sk-test")
        replies = [
            SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"a": 1}'))]),
            status_error(openai.RateLimitError, 429),
        ]

        async def create(**kwargs):
            reply = replies.pop(0)
            if isinstance(reply, Exception):
                raise reply
            return reply

        backend.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
        assert asyncio.run(backend.complete("sys", "user", IMAGES)) == '{"a": 1}'
        with pytest.raises(AnalysisRateLimitError):
            asyncio.run(backend.complete("sys", "user", IMAGES))


class FakeResponse:
    def __init__(self, status_code=200, payload=None):
        self.status_code = status_code
        self._payload = payload

    def json(self):
        if self._payload is None:
            raise ValueError("not json")
        return self._payload


@pytest.fixture
def ollama(monkeypatch):
    monkeypatch.setattr(ollama_backend.requests, "get", lambda url, timeout: FakeResponse(200, {"models": []}))
    return OllamaVisionBackend(base_url="http://ollama:11434/", model="llava")


class TestOllamaVisionBackend:

    def test_probe_failure_marks_unavailable(self, monkeypatch):
        def refuse(url, timeout):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(ollama_backend.requests, "get", refuse)
        assert not OllamaVisionBackend().available

    def test_posts_images_and_returns_response(self, ollama, monkeypatch):
        seen = {}

        def post(url, json, timeout):
            seen.update(url=url, payload=json)
            return FakeResponse(200, {"response": '{"aiGeneratedLikelihood": 0.1}'})

        monkeypatch.setattr(ollama_backend.requests, "post", post)
        text = asyncio.run(ollama.complete("sys", "user", IMAGES))

        assert text == '{"aiGeneratedLikelihood": 0.1}'
        assert seen["url"] == "http://ollama:11434/api/generate"
        assert seen["payload"]["images"] == ["aGVsbG8=", "d29ybGQ="]
        assert seen["payload"]["format"] == "json"

    @pytest.mark.parametrize("response, error", [
        (FakeResponse(429, {}), AnalysisRateLimitError),
        (FakeResponse(500, {}), AnalysisAPIError),
        (FakeResponse(200, None), AnalysisAPIError),
        (FakeResponse(200, {"response": ""}), AnalysisAPIError),
    ])
    def test_error_statuses(self, ollama, monkeypatch, response, error):
        monkeypatch.setattr(ollama_backend.requests, "post", lambda url, json, timeout: response)
        with pytest.raises(error):
            asyncio.run(ollama.complete("sys", "user", IMAGES))

    def test_timeout(self, ollama, monkeypatch):
        def slow(url, json, timeout):
            raise requests.Timeout("read timed out")

        monkeypatch.setattr(ollama_backend.requests, "post", slow)
        with pytest.raises(AnalysisTimeoutError):
            asyncio.run(ollama.complete("sys", "user", IMAGES))
