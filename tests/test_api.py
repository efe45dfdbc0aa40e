import base64
import time
from pathlib import Path
from types import SimpleNamespace

import pytest
from conftest import FakeBackend, FakeExtractor, png_data_url
from fastapi.testclient import TestClient

from aiscan.ai.manager import AIBackendManager
from aiscan.api.deps import get_ai_manager, get_transcriber
from aiscan.core.config import Config
from aiscan.core.exceptions import AnalysisTimeoutError
from aiscan.main import app
from aiscan.services import media_extractor
from aiscan.services.media_extractor import AudioExtraction
from aiscan.services.transcriber import Transcriber


@pytest.fixture
def api(storage, fast_config, monkeypatch):
    monkeypatch.setattr(Config, "AI_BACKEND", "openai")
    monkeypatch.setattr(Config, "OPENAI_API_KEY", None)
    monkeypatch.setattr(Config, "DATABASE_URL", "sqlite://")
    monkeypatch.setattr(Config, "FLAG_THRESHOLD", 0.5)

    extractor = FakeExtractor(frame_count=10)

    async def duration(path):
        return 3.0

    monkeypatch.setattr(media_extractor, "extract_frames", extractor)
    monkeypatch.setattr(media_extractor, "probe_duration", duration)

    backend = FakeBackend()
    app.dependency_overrides[get_ai_manager] = lambda: AIBackendManager(backends=[backend])
    with TestClient(app) as client:
        yield SimpleNamespace(client=client, backend=backend, extractor=extractor, storage=storage)
    app.dependency_overrides.clear()


def post_video(client, name="holiday.mp4", mime="video/mp4", data=b"\x00\x00\x00\x18ftypmp42"):
    return client.post(
        "/api/upload-video",
        files={"video": (name, data, mime)},
        data={"description": "family trip"},
    )


class TestUploadVideo:

    def test_success(self, api):
        res = post_video(api.client)

        assert res.status_code == 200
        body = res.json()
        assert body["success"] is True
        assert body["data"]["analysis"]["parsed"]["aiGeneratedLikelihood"] == 0.85
        assert body["data"]["analysis"]["parsed"]["kind"] == "summary"
        assert body["data"]["video"]["metadata"]["originalName"] == "holiday.mp4"
        assert body["data"]["video"]["metadata"]["durationSeconds"] == 3.0
        assert body["data"]["video"]["filePath"].startswith("uploads/")
        assert len(api.backend.calls[0]["images"]) == 6
        assert list(api.storage["UPLOAD_DIR"].iterdir()) == []

    def test_missing_file(self, api):
        res = api.client.post("/api/upload-video", data={"description": "nothing"})
        assert res.status_code == 400
        assert res.json()["success"] is False
        assert "No video file provided" in res.json()["error"]

    def test_wrong_type_is_rejected_and_deleted(self, api):
        res = post_video(api.client, name="notes.pdf", mime="application/pdf")
        assert res.status_code == 400
        assert res.json() == {"success": False, "error": "Invalid file type. Only video files are allowed."}
        assert list(api.storage["UPLOAD_DIR"].iterdir()) == []
        assert api.backend.calls == []

    def test_analysis_failure_under_fail_policy(self, api, monkeypatch):
        monkeypatch.setattr(Config, "ANALYSIS_FAILURE_POLICY", "fail")
        api.backend.replies = [AnalysisTimeoutError("AI analysis timed out after 30s")]

        res = post_video(api.client)

        assert res.status_code == 502
        assert res.json() == {"success": False, "error": "AI analysis timed out after 30s"}
        assert list(api.storage["UPLOAD_DIR"].iterdir()) == []

    def test_transcription_crash_does_not_fail_upload(self, api, monkeypatch):
        class BrokenWhisper:
            def transcribe(self, audio_path):
                raise ValueError("invalid data found when processing input")

        transcriber = Transcriber()
        transcriber.backend = "faster-whisper"
        transcriber.whisper_model = BrokenWhisper()

        async def extract_audio(video_path, **kwargs):
            folder = Path(video_path).parent / "audio-test"
            folder.mkdir()
            (folder / "audio.wav").write_bytes(b"RIFF")
            return AudioExtraction(audio_path=folder / "audio.wav", session_dir=folder, size_bytes=4)

        monkeypatch.setattr(media_extractor, "extract_audio", extract_audio)
        app.dependency_overrides[get_transcriber] = lambda: transcriber

        res = post_video(api.client)

        assert res.status_code == 200
        assert res.json()["data"]["analysis"]["success"] is True
        assert "Transcript" not in api.backend.calls[0]["user"]
        assert list(api.storage["UPLOAD_DIR"].iterdir()) == []

    def test_flagged_results_are_listed(self, api):
        assert api.client.get("/api/flagged").json()["data"] == []
        post_video(api.client)

        rows = api.client.get("/api/flagged", params={"limit": 10}).json()["data"]
        assert len(rows) == 1
        assert rows[0]["source"] == "web-upload"
        assert rows[0]["likelihood"] == 0.85
        assert rows[0]["artifacts"] == ["edge_halos_or_seams"]


class TestRecording:

    def test_saves_and_analyzes(self, api):
        res = api.client.post("/api/recording", json={
            "frames": [png_data_url((i * 40, 0, 0)) for i in range(3)],
            "fps": 2,
            "source": "extension",
        })

        assert res.status_code == 200
        body = res.json()
        assert body["frameCount"] == 3
        assert body["duration"] == 1.5
        assert body["source"] == "extension"
        assert body["analysis"]["parsed"]["aiGeneratedLikelihood"] == 0.85

        folder = api.storage["RECORDINGS_DIR"] / body["sessionId"]
        assert sorted(p.name for p in folder.iterdir()) == [
            "frame-0001.png", "frame-0002.png", "frame-0003.png", "metadata.json",
        ]

    @pytest.mark.parametrize("payload", [
        {"frames": []},
        {"frames": ["data:image/png;base64,bm90IGFuIGltYWdl"]},
        {"frames": ["%%%"]},
        {"frames": [png_data_url()], "fps": 0},
        {"fps": 2},
    ])
    def test_bad_payloads(self, api, payload):
        res = api.client.post("/api/recording", json=payload)
        assert res.status_code == 400
        assert res.json()["success"] is False
        assert list(api.storage["RECORDINGS_DIR"].iterdir()) == []


class TestCapture:

    def test_screenshot(self, api):
        res = api.client.post("/api/screenshot", json={"image": png_data_url(), "source": "popup"})
        body = res.json()
        assert res.status_code == 200
        assert body["filename"].endswith(".png")
        assert (api.storage["SCREENSHOTS_DIR"] / body["filename"]).stat().st_size == body["size"]

    def test_audio(self, api):
        clip = b"OggS\x00\x02fake-ogg-page"
        res = api.client.post("/api/audio", json={
            "audio": base64.b64encode(clip).decode("ascii"),
            "mimeType": "audio/ogg",
            "size": 999,
        })
        body = res.json()
        assert res.status_code == 200
        assert body["filename"].endswith(".ogg")
        assert body["savedSize"] == len(clip)
        assert body["originalSize"] == 999

    def test_audio_defaults_to_webm(self, api):
        res = api.client.post("/api/audio", json={"audio": "data:audio/webm;codecs=opus;base64,GkXfow=="})
        assert res.json()["filename"].endswith(".webm")
        assert res.json()["mimeType"] == "audio/webm"

    def test_audio_mime_from_data_url(self, api):
        clip = base64.b64encode(b"ID3\x04fake-mp3").decode("ascii")
        res = api.client.post("/api/audio", json={"audio": f"data:audio/mpeg;base64,{clip}"})
        body = res.json()
        assert res.status_code == 200
        assert body["filename"].endswith(".mp3")
        assert body["mimeType"] == "audio/mpeg"

    def test_bare_audio_without_mime_is_webm(self, api):
        res = api.client.post("/api/audio", json={"audio": base64.b64encode(b"\x1aE\xdf\xa3").decode("ascii")})
        assert res.json()["filename"].endswith(".webm")
        assert res.json()["mimeType"] == "audio/webm"


def test_health(api):
    body = api.client.get("/api/health").json()
    assert body["status"] == "OK"
    assert body["aiBackend"] == "fake"
    assert body["transcriber"] == "disabled"


class TestProgressSocket:

    def test_connect_and_reject_bad_messages(self, api):
        with api.client.websocket_connect("/ws") as ws:
            assert ws.receive_json() == {"type": "status", "message": "Connected. Ready to stream frames."}
            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "message": "Invalid message"}
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "error", "message": "Unsupported message type"}
            ws.send_json({"type": "start", "videoPath": "uploads/missing.mp4"})
            assert ws.receive_json() == {"type": "error", "message": "File not found"}
            ws.send_json({"type": "start", "videoPath": "/etc/passwd"})
            assert ws.receive_json() == {"type": "error", "message": "File not found"}

    def test_start_streams_preview(self, api):
        (api.storage["UPLOAD_DIR"] / "clip.mp4").write_bytes(b"video")
        with api.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "start", "videoPath": "uploads/clip.mp4"})
            events = [ws.receive_json()]
            while events[-1]["type"] != "done":
                events.append(ws.receive_json())

        frames = [e for e in events if e["type"] == "frame"]
        assert len(frames) == 10
        assert frames[-1]["total"] == 10

    def test_disconnect_stops_its_preview(self, api, monkeypatch):
        monkeypatch.setattr(Config, "PREVIEW_FRAME_DELAY", 30.0)
        (api.storage["UPLOAD_DIR"] / "clip.mp4").write_bytes(b"video")
        broadcaster = api.client.app.state.broadcaster

        with api.client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "start", "videoPath": "uploads/clip.mp4"})
            assert ws.receive_json()["type"] == "status"
            assert ws.receive_json()["type"] == "frame"
            assert broadcaster.active_streams() == 1

        deadline = time.monotonic() + 5
        while broadcaster.active_streams() and time.monotonic() < deadline:
            time.sleep(0.05)
        assert broadcaster.active_streams() == 0
        assert not api.extractor.session_dirs[0].exists()
