"""Data model shared across the compositing pipeline."""

from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path

import numpy as np

from .common import coerce_color


class AspectRatio(str, Enum):
    LANDSCAPE = "landscape"
    PORTRAIT = "portrait"
    SQUARE = "square"


class TransitionKind(str, Enum):
    FADE = "fade"
    SLIDE = "slide"
    ZOOM = "zoom"
    CUT = "cut"
    RANDOM = "random"


class CaptionDisplayMode(str, Enum):
    NONE = "none"
    TEXT_ONLY = "text_only"
    TEXT_EMOJI = "text_emoji"
    REBUS = "rebus"
    EMOJI_ONLY = "emoji_only"
    HIGHLIGHT = "highlight"


class SessionState(str, Enum):
    IDLE = "idle"
    PRIMING = "priming"
    RUNNING = "running"
    DRAINING = "draining"
    COMPLETE = "complete"
    FAILED = "failed"


VALID_SOURCE_KINDS = {"image", "video"}

VALID_AUDIO_ROLES = {"soundtrack", "original"}

VALID_POSITIONS = {
    f"{v}-{h}"
    for v in ("top", "middle", "bottom")
    for h in ("left", "center", "right")
}

# (width, height) ratio of each aspect, applied to the short side.
ASPECT_PROPORTIONS = {
    AspectRatio.LANDSCAPE: (16 / 9, 1.0),
    AspectRatio.PORTRAIT: (1.0, 16 / 9),
    AspectRatio.SQUARE: (1.0, 1.0),
}

# One export frame: (H, W, 3) uint8 RGB. No alpha channel, so it is
# always fully opaque.
RenderFrame = np.ndarray


def _even(value: float) -> int:
    """Round to the nearest even integer (yuv420p needs even dimensions)."""
    return max(2, int(round(value / 2)) * 2)


def _enum_value(enum_cls, value, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        valid = sorted(m.value for m in enum_cls)
        raise ValueError(f"Invalid {name} '{value}'. Valid: {valid}") from None


# ── Timeline input and segments ──────────────────────────────────


@dataclass(frozen=True)
class TimelineEntry:
    """One item of the timeline input handed over by the content collaborator."""

    source: str | bytes
    duration_hint: float | None = None
    transition: TransitionKind | None = None
    effects: dict = field(default_factory=dict)
    kind: str | None = None


@dataclass(frozen=True)
class TimelineSegment:
    """A contiguous [start, end) range of the output assigned to one source."""

    id: str
    source: str | bytes
    start: float
    end: float
    transition_in: TransitionKind | None
    transition_out: TransitionKind | None
    effects: dict = field(default_factory=dict)
    kind: str = "image"

    @property
    def duration(self) -> float:
        return self.end - self.start

    def contains(self, t: float) -> bool:
        return self.start <= t < self.end


@dataclass(frozen=True)
class CaptionEvent:
    """A timed caption. Overlapping events are tolerated, never rejected."""

    id: str
    start: float
    end: float
    text: str
    display_mode: CaptionDisplayMode | None = None
    position: str = "bottom-center"
    color: tuple[int, int, int] | None = None
    # Optional real per-word (start, end) timings from transcription.
    word_times: tuple[tuple[float, float], ...] | None = None

    def __post_init__(self):
        if self.position not in VALID_POSITIONS:
            raise ValueError(
                f"Invalid caption position '{self.position}'. "
                f"Valid: {sorted(VALID_POSITIONS)}"
            )
        if self.display_mode is not None:
            object.__setattr__(
                self, "display_mode",
                _enum_value(CaptionDisplayMode, self.display_mode, "display_mode"),
            )
        if self.color is not None:
            object.__setattr__(self, "color", coerce_color(self.color))
        if self.word_times is not None:
            object.__setattr__(
                self, "word_times",
                tuple((float(s), float(e)) for s, e in self.word_times),
            )

    @property
    def duration(self) -> float:
        return self.end - self.start

    @property
    def words(self) -> list[str]:
        return self.text.split()


# ── Audio ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AudioTrack:
    """One audio source placed on the output timeline.

    ``offset`` is where the source starts in the output; ``source_start``
    skips into the source itself and ``max_duration`` caps how much of it
    plays.
    """

    source: str | bytes
    gain: float = 1.0
    offset: float = 0.0
    role: str = "soundtrack"
    source_start: float = 0.0
    max_duration: float | None = None

    def __post_init__(self):
        if self.role not in VALID_AUDIO_ROLES:
            raise ValueError(
                f"Invalid audio role '{self.role}'. Valid: {sorted(VALID_AUDIO_ROLES)}"
            )
        if self.gain < 0:
            raise ValueError(f"Audio gain must be >= 0, got {self.gain}")


# ── Composition config ───────────────────────────────────────────


@dataclass(frozen=True)
class CompositionConfig:
    """Settings for one composition; immutable for a session's lifetime."""

    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    fps: int = 30
    total_duration_seconds: float = 15.0
    transition_policy: TransitionKind = TransitionKind.FADE
    include_intro_fade: bool = True
    include_outro_fade: bool = True
    caption_display_mode: CaptionDisplayMode = CaptionDisplayMode.TEXT_ONLY
    short_side: int = 720
    background: tuple[int, int, int] = (0, 0, 0)
    caption_color: tuple[int, int, int] = (255, 255, 255)
    accent_color: tuple[int, int, int] = (251, 191, 36)
    watermark: str | None = None
    realtime: bool = True
    priming_timeout: float = 10.0
    audio_wait: float = 2.0
    encoders: tuple[str, ...] | None = None

    def __post_init__(self):
        # Normalize loose inputs (plain strings, lists) into canonical types.
        object.__setattr__(
            self, "aspect_ratio", _enum_value(AspectRatio, self.aspect_ratio, "aspect_ratio"),
        )
        object.__setattr__(
            self, "transition_policy",
            _enum_value(TransitionKind, self.transition_policy, "transition_policy"),
        )
        object.__setattr__(
            self, "caption_display_mode",
            _enum_value(CaptionDisplayMode, self.caption_display_mode, "caption_display_mode"),
        )
        object.__setattr__(self, "background", coerce_color(self.background))
        object.__setattr__(self, "caption_color", coerce_color(self.caption_color))
        object.__setattr__(self, "accent_color", coerce_color(self.accent_color))
        if self.encoders is not None:
            object.__setattr__(self, "encoders", tuple(self.encoders))

        if not isinstance(self.fps, int) or self.fps <= 0:
            raise ValueError(f"fps must be a positive integer, got {self.fps!r}")
        if self.total_duration_seconds <= 0:
            raise ValueError(
                f"total_duration_seconds must be > 0, got {self.total_duration_seconds!r}"
            )
        if self.short_side < 2:
            raise ValueError(f"short_side must be >= 2, got {self.short_side!r}")
        if self.priming_timeout <= 0:
            raise ValueError(f"priming_timeout must be > 0, got {self.priming_timeout!r}")
        if self.audio_wait < 0:
            raise ValueError(f"audio_wait must be >= 0, got {self.audio_wait!r}")

    @classmethod
    def from_dict(cls, values: dict) -> "CompositionConfig":
        """Build a config from the caller's settings dict, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(values) - known)
        if unknown:
            raise ValueError(f"Unknown composition settings: {unknown}")
        return cls(**values)

    @property
    def size(self) -> tuple[int, int]:
        """Output (width, height), derived from the aspect ratio."""
        w_ratio, h_ratio = ASPECT_PROPORTIONS[self.aspect_ratio]
        return _even(self.short_side * w_ratio), _even(self.short_side * h_ratio)

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps

    @property
    def total_ticks(self) -> int:
        return int(round(self.total_duration_seconds * self.fps))


# ── Output ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class EncodedOutput:
    """The finished container, owned by the caller once returned."""

    data: bytes
    mime_type: str
    extension: str
    duration: float
    video_codec: str = ""
    audio_codec: str = ""
    frame_count: int = 0

    def write(self, path: str | Path) -> Path:
        """Write the container to path, forcing the negotiated extension."""
        p = Path(path)
        if p.suffix != f".{self.extension}":
            p = p.with_suffix(f".{self.extension}")
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_bytes(self.data)
        return p
