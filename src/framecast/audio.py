"""Audio mixer: up to two sources summed into one stereo stream.

Sources are decoded up front to 48 kHz stereo float32 by piping them
through the imageio-ffmpeg binary. Per tick the scheduler asks for an
exact sample window, so audio stays locked to the frame count rather
than to wall clock.

Acquisition never blocks an export: a source that is missing, has no
audio stream, fails to decode, or is not ready within the wait budget
is dropped and reported as an AudioSourceUnavailable warning.
"""

import asyncio
import logging
import subprocess

import imageio_ffmpeg
import numpy as np

from .assets import describe_source
from .errors import AudioSourceUnavailable
from .models import AudioTrack
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

_FFMPEG = imageio_ffmpeg.get_ffmpeg_exe()


SAMPLE_RATE = 48000
CHANNELS = 2
SOUNDTRACK_GAIN = 0.3
ORIGINAL_GAIN = 1.0
MAX_SOURCES = 2

# One more try for a flaky fetch or decode; missing files fail at once.
AUDIO_RETRY = RetryPolicy(max_attempts=2, backoff=(0.25,))


def decode_audio(path, role: str = "soundtrack", sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    """Decode a file's first audio stream to an (n, 2) float32 array in [-1, 1].

    Runs the imageio-ffmpeg binary and reads raw f32le samples from its
    stdout, so both roles share one decoder.

    Raises:
        AudioSourceUnavailable: The file has no audio stream.
        OSError: ffmpeg could not read or decode the file.
    """
    cmd = [
        _FFMPEG, "-hide_banner", "-loglevel", "error",
        "-i", str(path),
        "-map", "0:a:0", "-vn",
        "-f", "f32le", "-acodec", "pcm_f32le",
        "-ac", str(CHANNELS), "-ar", str(sample_rate),
        "pipe:1",
    ]
    result = subprocess.run(cmd, capture_output=True)
    if result.returncode != 0:
        stderr = result.stderr.decode(errors="replace").strip()
        if "matches no streams" in stderr:
            raise AudioSourceUnavailable(f"No audio stream in {path}", role=role)
        raise OSError(f"ffmpeg could not decode audio from {path}: {stderr}")
    samples = np.frombuffer(result.stdout, dtype="<f4")
    samples = samples[:len(samples) // CHANNELS * CHANNELS]
    return to_stereo(samples.reshape(-1, CHANNELS))


def to_stereo(samples: np.ndarray) -> np.ndarray:
    samples = np.asarray(samples, dtype=np.float32)
    if samples.ndim == 1:
        samples = samples[:, None]
    if samples.shape[1] == 1:
        samples = np.repeat(samples, CHANNELS, axis=1)
    return np.ascontiguousarray(samples[:, :CHANNELS])


class AudioNode:
    """A decoded source positioned on the output sample grid."""

    def __init__(self, samples: np.ndarray, track: AudioTrack, sample_rate: int = SAMPLE_RATE):
        skip = int(round(track.source_start * sample_rate))
        samples = samples[skip:]
        if track.max_duration is not None:
            samples = samples[:int(round(track.max_duration * sample_rate))]
        self.samples = samples
        self.track = track
        self.gain = track.gain
        self.role = track.role
        self.start_sample = int(round(track.offset * sample_rate))

    def window(self, start: int, end: int) -> np.ndarray:
        """Samples for output range [start, end), zero outside the source."""
        out = np.zeros((end - start, CHANNELS), dtype=np.float32)
        if self.samples is None:
            return out
        src_start = start - self.start_sample
        src_end = end - self.start_sample
        lo, hi = max(0, src_start), min(len(self.samples), src_end)
        if lo < hi:
            out[lo - src_start:hi - src_start] = self.samples[lo:hi]
        return out

    def close(self) -> None:
        self.samples = None


class AudioMixer:
    def __init__(self, sample_rate: int = SAMPLE_RATE, retry: RetryPolicy = AUDIO_RETRY):
        self.sample_rate = sample_rate
        self.retry = retry
        self.nodes: list[AudioNode] = []

    async def acquire(self, tracks, loader, timeout: float,
                      executor=None) -> list[AudioSourceUnavailable]:
        """Decode all tracks concurrently, each bounded by timeout seconds.

        Decoding runs on executor (the loop default when None).

        Returns:
            One AudioSourceUnavailable per dropped source.
        """
        tracks = list(tracks)
        if len(tracks) > MAX_SOURCES:
            raise ValueError(f"At most {MAX_SOURCES} audio sources, got {len(tracks)}")
        results = await asyncio.gather(
            *(self._acquire_one(track, loader, timeout, executor) for track in tracks)
        )
        warnings = []
        for track, result in zip(tracks, results):
            if isinstance(result, AudioSourceUnavailable):
                warnings.append(result)
            else:
                self.nodes.append(AudioNode(result, track, self.sample_rate))
                logger.info("Audio source ready: %s (%s)", track.role, describe_source(track.source))
        return warnings

    async def _acquire_one(self, track: AudioTrack, loader, timeout: float, executor):
        loop = asyncio.get_running_loop()

        def decode():
            path = loader.materialize(track.source)
            return decode_audio(path, track.role, self.sample_rate)

        async def decode_track():
            return await loop.run_in_executor(executor, decode)

        try:
            return await asyncio.wait_for(self.retry.acall(decode_track), timeout=timeout)
        except asyncio.TimeoutError:
            warning = AudioSourceUnavailable(
                f"{track.role} audio not ready within {timeout:.1f}s", role=track.role,
            )
        except AudioSourceUnavailable as exc:
            warning = exc
        except Exception as exc:  # any decode failure drops the source
            warning = AudioSourceUnavailable(
                f"{track.role} audio unavailable: {exc}", role=track.role,
            )
        logger.warning("%s", warning)
        return warning

    def mix(self, start: int, end: int) -> np.ndarray:
        """Mixed (end - start, 2) float32 block, silence when no sources."""
        out = np.zeros((max(0, end - start), CHANNELS), dtype=np.float32)
        for node in self.nodes:
            out += node.window(start, end) * node.gain
        return np.clip(out, -1.0, 1.0)

    def release(self) -> None:
        for node in self.nodes:
            node.close()
        self.nodes.clear()
