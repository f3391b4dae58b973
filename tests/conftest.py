"""Shared test fixtures for framecast tests."""

import subprocess

import imageio_ffmpeg
import pytest
from PIL import Image

from framecast.errors import NoFramesCaptured
from framecast.models import CompositionConfig, EncodedOutput

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


class RecordingSink:
    """In-memory encode sink. Keeps every pushed frame and audio block."""

    def __init__(self, fail_open=None):
        self.fail_open = fail_open
        self.config = None
        self.frames = []
        self.audio_blocks = []
        self.opened = False
        self.finalized = False
        self.aborted = False
        self.closed = False

    def open(self, config):
        if self.fail_open is not None:
            raise self.fail_open
        self.config = config
        self.opened = True

    def push_frame(self, frame):
        self.frames.append(frame.copy())

    def push_audio(self, samples):
        self.audio_blocks.append(samples.copy())

    def finalize(self):
        if not self.frames:
            raise NoFramesCaptured("No frames were captured; nothing to encode")
        self.finalized = True
        return EncodedOutput(
            data=b"recorded",
            mime_type="application/octet-stream",
            extension="raw",
            duration=len(self.frames) / self.config.fps,
            frame_count=len(self.frames),
        )

    def abort(self):
        self.aborted = True

    def close(self):
        self.closed = True


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def small_config():
    """64x36 landscape, 10fps, 2s, no wall-clock pacing."""
    return CompositionConfig(
        short_side=36,
        fps=10,
        total_duration_seconds=2.0,
        include_intro_fade=False,
        include_outro_fade=False,
        caption_display_mode="none",
        realtime=False,
        priming_timeout=30.0,
        audio_wait=30.0,
    )


@pytest.fixture
def color_images(tmp_path):
    """Four solid-color 80x45 PNGs: red, green, blue, white."""
    colors = [(220, 30, 30), (30, 200, 30), (30, 30, 220), (250, 250, 250)]
    paths = []
    for i, color in enumerate(colors):
        p = tmp_path / f"img-{i}.png"
        Image.new("RGB", (80, 45), color).save(p)
        paths.append(str(p))
    return paths


@pytest.fixture
def source_video(tmp_path):
    """Create a 1-second test video (64x36, 10fps) with a sine audio track."""
    out = tmp_path / "source.mp4"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "color=c=blue:s=64x36:d=1:r=10",
            "-f", "lavfi", "-i", "sine=frequency=440:sample_rate=48000:duration=1",
            "-shortest",
            "-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-b:a", "64k",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def silent_video(tmp_path):
    """A 1-second video with no audio stream."""
    out = tmp_path / "silent.mp4"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "color=c=green:s=64x36:d=1:r=10",
            "-c:v", "libx264", "-crf", "28", "-pix_fmt", "yuv420p",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def sine_audio(tmp_path):
    """A 2-second 440 Hz mono WAV at 48 kHz."""
    out = tmp_path / "sine.wav"
    subprocess.run(
        [
            _FFMPEG, "-y",
            "-f", "lavfi", "-i", "sine=frequency=440:sample_rate=48000:duration=2",
            str(out),
        ],
        check=True,
        capture_output=True,
    )
    return out


@pytest.fixture
def sink_factory():
    """Build extra RecordingSinks inside a test."""
    return RecordingSink
