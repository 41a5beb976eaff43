"""AudioProcessingContext / AudioAnalyser 테스트."""

import asyncio

import numpy as np
import pytest
from aiortc import AudioStreamTrack
from av import AudioFrame

from voice_mesh.audio.context import (
    AudioProcessingContext,
    close_audio_context,
    frame_to_float,
    get_audio_context,
)


def s16_frame(values, layout: str = "mono") -> AudioFrame:
    array = np.array([values], dtype=np.int16)
    frame = AudioFrame.from_ndarray(array, format="s16", layout=layout)
    frame.sample_rate = 48000
    return frame


class TestFrameConversion:
    def test_int16_is_normalized(self) -> None:
        samples = frame_to_float(s16_frame([0, 16384, -32768]))

        assert samples.dtype == np.float32
        np.testing.assert_allclose(samples, [0.0, 0.5, -1.0])

    def test_interleaved_stereo_is_averaged(self) -> None:
        samples = frame_to_float(s16_frame([16384, 0, -16384, -16384], layout="stereo"))

        np.testing.assert_allclose(samples, [0.25, -0.5])


class TestContext:
    @pytest.mark.asyncio
    async def test_single_live_instance(self, audio_context) -> None:
        context = get_audio_context()

        assert get_audio_context() is context
        with pytest.raises(RuntimeError):
            AudioProcessingContext()

        await close_audio_context()
        assert context.closed
        assert get_audio_context() is not context

    @pytest.mark.asyncio
    async def test_close_is_idempotent_and_disconnects_analysers(self, audio_context) -> None:
        context = get_audio_context()
        analyser = context.create_analyser("bob")

        await context.close()
        await context.close()

        assert not analyser.connected
        assert context.analyser_count == 0
        with pytest.raises(RuntimeError):
            context.create_analyser("carol")

    @pytest.mark.asyncio
    async def test_close_without_context_is_noop(self) -> None:
        await close_audio_context()
        await close_audio_context()


class TestAnalyser:
    @pytest.mark.asyncio
    async def test_push_keeps_latest_window(self, audio_context) -> None:
        analyser = get_audio_context().create_analyser("bob")

        analyser.push(np.ones(100))
        data = analyser.get_time_domain_data()
        assert data.shape == (analyser.fft_size,)
        assert data[-100:].sum() == 100
        assert data[:-100].sum() == 0

        analyser.push(np.arange(analyser.fft_size * 2))
        assert analyser.get_time_domain_data()[-1] == analyser.fft_size * 2 - 1

    @pytest.mark.asyncio
    async def test_consumes_track_and_disconnects(self, audio_context) -> None:
        context = get_audio_context()
        source = AudioStreamTrack()
        analyser = context.create_analyser("bob", source)
        assert context.analyser_count == 1

        await asyncio.sleep(0.1)
        await analyser.disconnect()
        await analyser.disconnect()
        source.stop()

        assert not analyser.connected
        assert context.analyser_count == 0
        assert analyser.get_time_domain_data().max() == 0.0
