import asyncio

import pytest
from conftest import SUMMARY_JSON, FakeBackend

from aiscan.ai.manager import AIBackendManager, encode_image, usable_frames
from aiscan.core.exceptions import AnalysisAPIError, AnalysisTimeoutError, NoFramesError


def make_frames(folder, count):
    frames = []
    for i in range(count):
        path = folder / f"frame-{i + 1:05d}.jpg"
        path.write_bytes(f"frame {i}".encode())
        frames.append(path)
    return frames


class SlowBackend(FakeBackend):
    async def complete(self, system_prompt, user_text, images):
        self.calls.append(user_text)
        await asyncio.sleep(5)
        return SUMMARY_JSON


class TestAnalyze:

    def test_sends_first_k_frames_in_order(self, tmp_path, fast_config):
        frames = make_frames(tmp_path, 50)
        backend = FakeBackend()
        manager = AIBackendManager(backends=[backend], max_frames=6)

        raw = asyncio.run(manager.analyze(frames))

        assert raw == SUMMARY_JSON
        assert len(backend.calls) == 1
        images = backend.calls[0]["images"]
        assert len(images) == 6
        assert images[0].data_url.startswith("data:image/jpeg;base64,")
        assert [img.data for img in images] == [encode_image(p).data for p in frames[:6]]
        assert "6 frames" in backend.calls[0]["user"]

    def test_transcript_is_appended(self, tmp_path, fast_config):
        backend = FakeBackend()
        manager = AIBackendManager(backends=[backend])
        asyncio.run(manager.analyze(make_frames(tmp_path, 2), audio_text="send me the code now"))
        assert "send me the code now" in backend.calls[0]["user"]

    @pytest.mark.parametrize("frames", [[], "missing"])
    def test_no_frames_means_no_call(self, tmp_path, fast_config, frames):
        if frames == "missing":
            empty = tmp_path / "frame-00001.jpg"
            empty.write_bytes(b"")
            frames = [empty, tmp_path / "frame-00002.jpg"]
        backend = FakeBackend()
        manager = AIBackendManager(backends=[backend])

        with pytest.raises(NoFramesError):
            asyncio.run(manager.analyze(frames))
        assert backend.calls == []

    def test_no_frames_checked_before_backend(self, fast_config):
        manager = AIBackendManager(backends=[])
        with pytest.raises(NoFramesError):
            asyncio.run(manager.analyze([]))

    def test_no_backend_available(self, tmp_path, fast_config):
        backend = FakeBackend()
        backend.available = False
        manager = AIBackendManager(backends=[backend])
        assert manager.current_backend_name == "none"
        with pytest.raises(AnalysisAPIError):
            asyncio.run(manager.analyze(make_frames(tmp_path, 1)))

    def test_timeout(self, tmp_path, fast_config):
        manager = AIBackendManager(backends=[SlowBackend()], timeout=0.05)
        with pytest.raises(AnalysisTimeoutError):
            asyncio.run(manager.analyze(make_frames(tmp_path, 3)))

    def test_unexpected_backend_error_is_wrapped(self, tmp_path, fast_config):
        manager = AIBackendManager(backends=[FakeBackend(replies=[KeyError("choices")])])
        with pytest.raises(AnalysisAPIError):
            asyncio.run(manager.analyze(make_frames(tmp_path, 1)))

    def test_first_available_backend_wins(self, fast_config):
        offline = FakeBackend(name="offline")
        offline.available = False
        manager = AIBackendManager(backends=[offline, FakeBackend(name="online")])
        assert manager.current_backend_name == "online"


def test_usable_frames_keeps_order(tmp_path):
    frames = make_frames(tmp_path, 3)
    frames[1].write_bytes(b"")
    assert usable_frames(frames) == [frames[0], frames[2]]
