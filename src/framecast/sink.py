"""Encode sink: streams frames and audio into an ffmpeg-encoded container.

Capture is abstracted behind a small interface so the scheduler never
knows how frames end up in a file:

    open(config)          negotiate a (codec, container) pair
    push_frame(frame)     one (H, W, 3) uint8 RGB frame
    push_audio(samples)   one (n, 2) float32 block
    finalize()            close the stream and return EncodedOutput
    abort()               stop without output
    close()               release temp files

FfmpegEncodeSink pipes raw RGB24 frames into an ffmpeg process as they
arrive. Audio is spooled to a raw f32le file and muxed in at finalize,
with the output duration pinned to frame_count / fps.
"""

import logging
import shutil
import subprocess
import tempfile
from contextlib import suppress
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Protocol

import imageio_ffmpeg
import numpy as np

from .audio import CHANNELS, SAMPLE_RATE
from .errors import EncodeFailure, EncoderUnsupported, NoFramesCaptured
from .models import CompositionConfig, EncodedOutput, RenderFrame
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


SINK_RETRY = RetryPolicy(max_attempts=2, backoff=(0.5,))


@dataclass(frozen=True)
class EncoderCandidate:
    video_codec: str
    audio_codec: str
    container: str
    mime_type: str
    video_args: tuple[str, ...] = ()

    @property
    def extension(self) -> str:
        return self.container

    @property
    def label(self) -> str:
        return f"{self.video_codec}+{self.audio_codec}/{self.container}"


# Preference order. The first pair the local ffmpeg can encode wins.
ENCODER_CANDIDATES = (
    EncoderCandidate(
        "libx264", "aac", "mp4", "video/mp4",
        ("-preset", "veryfast", "-crf", "23"),
    ),
    EncoderCandidate(
        "libvpx-vp9", "libopus", "webm", "video/webm",
        ("-b:v", "0", "-crf", "32", "-deadline", "realtime", "-cpu-used", "8"),
    ),
    EncoderCandidate(
        "libvpx", "libvorbis", "webm", "video/webm",
        ("-b:v", "2M", "-deadline", "realtime", "-cpu-used", "8"),
    ),
    EncoderCandidate(
        "mpeg4", "aac", "mp4", "video/mp4",
        ("-q:v", "5"),
    ),
)


# ── Encoder negotiation ──────────────────────────────────────────


def ffmpeg_exe() -> str:
    return imageio_ffmpeg.get_ffmpeg_exe()


def parse_encoder_list(output: str) -> frozenset[str]:
    """Encoder names from `ffmpeg -encoders` output."""
    names = set()
    in_table = False
    for line in output.splitlines():
        stripped = line.strip()
        if not in_table:
            in_table = stripped.startswith("------")
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            names.add(parts[1])
    return frozenset(names)


@lru_cache(maxsize=None)
def supported_encoders(exe: str | None = None) -> frozenset[str]:
    result = subprocess.run(
        [exe or ffmpeg_exe(), "-hide_banner", "-encoders"],
        check=True, capture_output=True, text=True,
    )
    return parse_encoder_list(result.stdout)


def select_candidate(
    available: frozenset[str],
    preferred: tuple[str, ...] | None = None,
) -> EncoderCandidate:
    """Pick the first candidate whose video and audio encoders are available.

    Args:
        available: Encoder names the ffmpeg binary supports.
        preferred: Optional override of the order, as candidate labels
            ("libvpx-vp9+libopus/webm") or video codec names ("mpeg4").

    Raises:
        EncoderUnsupported: No candidate is usable.
    """
    candidates = list(ENCODER_CANDIDATES)
    if preferred:
        ordered = []
        for name in preferred:
            for c in candidates:
                if name in (c.label, c.video_codec) and c not in ordered:
                    ordered.append(c)
        candidates = ordered

    for c in candidates:
        if c.video_codec in available and c.audio_codec in available:
            return c
    raise EncoderUnsupported(
        "No supported (codec, container) pair among "
        f"{[c.label for c in candidates]}",
        candidates=[c.label for c in candidates],
    )


# ── Sink interface ───────────────────────────────────────────────


class EncodeSink(Protocol):
    def open(self, config: CompositionConfig) -> None: ...

    def push_frame(self, frame: RenderFrame) -> None: ...

    def push_audio(self, samples: np.ndarray) -> None: ...

    def finalize(self) -> EncodedOutput: ...

    def abort(self) -> None: ...

    def close(self) -> None: ...


# ── ffmpeg sink ──────────────────────────────────────────────────


class FfmpegEncodeSink:
    """Encode sink backed by the imageio-ffmpeg binary."""

    def __init__(self, retry: RetryPolicy = SINK_RETRY, exe: str | None = None):
        self.retry = retry
        self.exe = exe or ffmpeg_exe()
        self.config: CompositionConfig | None = None
        self.candidate: EncoderCandidate | None = None
        self.frame_count = 0
        self.sample_count = 0
        self._work_dir: Path | None = None
        self._proc: subprocess.Popen | None = None
        self._stderr = None
        self._audio_file = None

    def open(self, config: CompositionConfig) -> None:
        self.config = config
        self.candidate = select_candidate(supported_encoders(self.exe), config.encoders)
        logger.info("Encoding with %s", self.candidate.label)
        self._work_dir = Path(tempfile.mkdtemp(prefix="framecast-encode-"))
        self._audio_file = open(self._work_dir / "audio.f32le", "wb")
        self.frame_count = 0
        self.sample_count = 0

    @property
    def video_path(self) -> Path:
        return self._work_dir / f"video.{self.candidate.container}"

    @property
    def output_path(self) -> Path:
        return self._work_dir / f"output.{self.candidate.container}"

    def _video_command(self) -> list[str]:
        w, h = self.config.size
        return [
            self.exe, "-y", "-loglevel", "error",
            "-f", "rawvideo", "-pix_fmt", "rgb24",
            "-s", f"{w}x{h}", "-r", str(self.config.fps),
            "-i", "-",
            "-an",
            "-c:v", self.candidate.video_codec,
            *self.candidate.video_args,
            "-pix_fmt", "yuv420p",
            str(self.video_path),
        ]

    def _spawn(self) -> subprocess.Popen:
        cmd = self._video_command()
        logger.debug("Starting encoder: %s", " ".join(cmd))
        if self._stderr is None:
            self._stderr = open(self._work_dir / "ffmpeg.log", "w+b")
        return subprocess.Popen(
            cmd, stdin=subprocess.PIPE,
            stdout=subprocess.DEVNULL, stderr=self._stderr,
        )

    def _read_stderr(self) -> str:
        if self._stderr is None:
            return ""
        self._stderr.flush()
        self._stderr.seek(0)
        return self._stderr.read().decode(errors="replace").strip()

    def push_frame(self, frame: RenderFrame) -> None:
        w, h = self.config.size
        if frame.shape != (h, w, 3) or frame.dtype != np.uint8:
            raise ValueError(
                f"Frame must be ({h}, {w}, 3) uint8, got {frame.shape} {frame.dtype}"
            )
        if self._proc is None:
            self._proc = self.retry.call(self._spawn)
        try:
            self._proc.stdin.write(np.ascontiguousarray(frame).tobytes())
        except (BrokenPipeError, OSError) as exc:
            self._proc.wait()
            raise EncodeFailure(
                f"Encoder exited while writing frame {self.frame_count}: {exc}",
                stderr=self._read_stderr(),
            ) from exc
        self.frame_count += 1

    def push_audio(self, samples: np.ndarray) -> None:
        block = np.asarray(samples, dtype="<f4").reshape(-1, CHANNELS)
        self._audio_file.write(block.tobytes())
        self.sample_count += len(block)

    def _finish_video(self) -> None:
        self._proc.stdin.close()
        code = self._proc.wait()
        self._proc = None
        if code != 0:
            raise EncodeFailure(f"ffmpeg exited with code {code}", stderr=self._read_stderr())

    def _mux_command(self, duration: float) -> list[str]:
        cmd = [self.exe, "-y", "-loglevel", "error", "-i", str(self.video_path)]
        if self.sample_count:
            cmd += [
                "-f", "f32le", "-ar", str(SAMPLE_RATE), "-ac", str(CHANNELS),
                "-i", str(self._work_dir / "audio.f32le"),
                "-map", "0:v:0", "-map", "1:a:0",
                "-c:a", self.candidate.audio_codec,
            ]
        cmd += ["-c:v", "copy", "-t", f"{duration:.6f}"]
        if self.candidate.container == "mp4":
            cmd += ["-movflags", "+faststart"]
        cmd.append(str(self.output_path))
        return cmd

    def _mux(self, duration: float) -> None:
        cmd = self._mux_command(duration)
        logger.debug("Muxing: %s", " ".join(cmd))
        result = subprocess.run(cmd, capture_output=True)
        if result.returncode != 0:
            raise EncodeFailure(
                f"Mux failed with code {result.returncode}",
                stderr=result.stderr.decode(errors="replace").strip(),
            )

    def finalize(self) -> EncodedOutput:
        """Close the stream, mux audio, and return the finished container.

        Raises:
            NoFramesCaptured: finalize() before any push_frame().
            EncodeFailure: ffmpeg exited non-zero.
        """
        if self.frame_count == 0:
            raise NoFramesCaptured("No frames were captured; nothing to encode")
        self._finish_video()
        self._audio_file.close()

        duration = self.frame_count / self.config.fps
        self.retry.call(self._mux, duration)
        data = self.output_path.read_bytes()
        logger.info(
            "Encoded %d frames (%.2fs, %d bytes) as %s",
            self.frame_count, duration, len(data), self.candidate.label,
        )
        return EncodedOutput(
            data=data,
            mime_type=self.candidate.mime_type,
            extension=self.candidate.extension,
            duration=duration,
            video_codec=self.candidate.video_codec,
            audio_codec=self.candidate.audio_codec if self.sample_count else "",
            frame_count=self.frame_count,
        )

    def abort(self) -> None:
        if self._proc is not None:
            self._proc.kill()
            with suppress(BrokenPipeError):
                self._proc.stdin.close()
            self._proc.wait()
            self._proc = None

    def close(self) -> None:
        self.abort()
        for handle in (self._audio_file, self._stderr):
            if handle is not None and not handle.closed:
                handle.close()
        if self._work_dir is not None:
            shutil.rmtree(self._work_dir, ignore_errors=True)
            self._work_dir = None
