"""Tests for audio decoding, placement and mixing."""

import asyncio
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest

from framecast.assets import AssetLoader
from framecast.audio import (
    SAMPLE_RATE,
    AudioMixer,
    AudioNode,
    decode_audio,
    to_stereo,
)
from framecast.errors import AudioSourceUnavailable
from framecast.models import AudioTrack
from framecast.retry import RetryPolicy


def _ones(n):
    return np.ones((n, 2), dtype=np.float32)


class _SlowLoader:
    def materialize(self, source, suffix=""):
        time.sleep(0.5)
        return source


class _FlakyLoader:
    def __init__(self, failures):
        self.failures = list(failures)
        self.calls = 0

    def materialize(self, source, suffix=""):
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return source


class TestToStereo:
    def test_mono_vector(self):
        out = to_stereo(np.array([0.1, 0.2]))
        assert out.shape == (2, 2)
        assert out.dtype == np.float32
        np.testing.assert_allclose(out[:, 1], [0.1, 0.2])

    def test_mono_column(self):
        assert to_stereo(np.zeros((5, 1))).shape == (5, 2)

    def test_extra_channels_dropped(self):
        assert to_stereo(np.zeros((5, 6))).shape == (5, 2)


class TestAudioNode:
    def test_offset_window(self):
        node = AudioNode(_ones(100), AudioTrack("x", offset=50 / SAMPLE_RATE))
        block = node.window(0, 100)
        assert block[:50].max() == 0
        assert (block[50:] == 1).all()

    def test_past_end_is_silent(self):
        node = AudioNode(_ones(10), AudioTrack("x"))
        assert node.window(20, 30).max() == 0

    def test_source_start_and_max_duration(self):
        samples = np.arange(100, dtype=np.float32)[:, None].repeat(2, axis=1)
        track = AudioTrack("x", source_start=10 / SAMPLE_RATE, max_duration=5 / SAMPLE_RATE)
        node = AudioNode(samples, track)
        block = node.window(0, 8)
        np.testing.assert_array_equal(block[:5, 0], [10, 11, 12, 13, 14])
        assert block[5:].max() == 0

    def test_closed_node_is_silent(self):
        node = AudioNode(_ones(10), AudioTrack("x"))
        node.close()
        assert node.window(0, 10).max() == 0


class TestMix:
    def test_no_sources_is_silence(self):
        block = AudioMixer().mix(0, 1600)
        assert block.shape == (1600, 2)
        assert block.max() == 0

    def test_gain_sum_and_clip(self):
        mixer = AudioMixer()
        mixer.nodes = [
            AudioNode(_ones(10) * 0.5, AudioTrack("a", gain=0.3)),
            AudioNode(_ones(10), AudioTrack("b", gain=1.0, role="original")),
        ]
        block = mixer.mix(0, 10)
        assert (block == 1.0).all()
        mixer.nodes.pop()
        np.testing.assert_allclose(mixer.mix(0, 10), 0.15)

    def test_release(self):
        mixer = AudioMixer()
        mixer.nodes = [AudioNode(_ones(10), AudioTrack("a"))]
        mixer.release()
        assert mixer.nodes == []


class TestDecode:
    def test_sine_file(self, sine_audio):
        samples = decode_audio(sine_audio)
        assert samples.shape[1] == 2
        assert abs(len(samples) - 2 * SAMPLE_RATE) < SAMPLE_RATE // 10
        # lavfi sine peaks at 1/8; ffmpeg's mono to stereo upmix is -3 dB.
        assert np.abs(samples).max() == pytest.approx(0.125 / np.sqrt(2), rel=0.05)

    def test_video_original_audio(self, source_video):
        samples = decode_audio(source_video, role="original")
        assert abs(len(samples) - SAMPLE_RATE) < SAMPLE_RATE // 10
        assert np.abs(samples).max() > 0.05

    def test_audio_running_to_end_of_video(self, source_video):
        # The last tenth of a second still carries the tone.
        samples = decode_audio(source_video, role="original")
        tail = samples[-SAMPLE_RATE // 10:]
        assert np.abs(tail).max() > 0.05

    def test_video_without_audio(self, silent_video):
        with pytest.raises(AudioSourceUnavailable, match="No audio stream"):
            decode_audio(silent_video, role="original")

    def test_undecodable_file(self, tmp_path):
        junk = tmp_path / "junk.mp3"
        junk.write_bytes(b"not audio at all")
        with pytest.raises(OSError, match="could not decode"):
            decode_audio(junk)


class TestAcquire:
    def test_ready_source(self, sine_audio):
        mixer = AudioMixer()
        warnings = asyncio.run(
            mixer.acquire([AudioTrack(str(sine_audio), gain=0.3)], AssetLoader(), 30.0)
        )
        assert warnings == []
        assert len(mixer.nodes) == 1
        assert np.abs(mixer.mix(0, 4800)).max() > 0

    def test_missing_source_is_warning(self, tmp_path):
        mixer = AudioMixer()
        warnings = asyncio.run(
            mixer.acquire([AudioTrack(str(tmp_path / "gone.mp3"))], AssetLoader(), 5.0)
        )
        assert len(warnings) == 1
        assert warnings[0].role == "soundtrack"
        assert warnings[0].recoverable
        assert mixer.nodes == []

    def test_silent_video_is_warning(self, silent_video):
        mixer = AudioMixer()
        track = AudioTrack(str(silent_video), role="original")
        (warning,) = asyncio.run(mixer.acquire([track], AssetLoader(), 30.0))
        assert warning.role == "original"

    def test_timeout_is_warning(self):
        mixer = AudioMixer()
        (warning,) = asyncio.run(mixer.acquire([AudioTrack("slow.mp3")], _SlowLoader(), 0.05))
        assert "not ready" in str(warning)

    def test_too_many_sources(self):
        tracks = [AudioTrack(f"{i}.mp3") for i in range(3)]
        with pytest.raises(ValueError, match="At most 2"):
            asyncio.run(AudioMixer().acquire(tracks, AssetLoader(), 1.0))

    def test_transient_failure_retried(self, sine_audio):
        loader = _FlakyLoader([ConnectionResetError("reset")])
        mixer = AudioMixer(retry=RetryPolicy(max_attempts=2, backoff=(0.0,)))
        warnings = asyncio.run(mixer.acquire([AudioTrack(str(sine_audio))], loader, 30.0))
        assert warnings == []
        assert loader.calls == 2
        assert len(mixer.nodes) == 1

    def test_missing_file_not_retried(self):
        loader = _FlakyLoader([FileNotFoundError("gone.mp3")])
        mixer = AudioMixer(retry=RetryPolicy(max_attempts=3, backoff=(0.0,)))
        (warning,) = asyncio.run(mixer.acquire([AudioTrack("gone.mp3")], loader, 5.0))
        assert loader.calls == 1
        assert "gone.mp3" in str(warning)

    def test_runs_on_given_executor(self, sine_audio):
        mixer = AudioMixer()
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="audio-test") as executor:
            warnings = asyncio.run(mixer.acquire(
                [AudioTrack(str(sine_audio))], AssetLoader(), 30.0, executor,
            ))
        assert warnings == []
        assert len(mixer.nodes) == 1
