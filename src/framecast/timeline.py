"""Timeline model: segment layout, per-tick lookup and the fade envelope.

The timeline is built once per composition. Everything that can vary
between runs (segment boundaries, which transition a ``random`` policy
picks) is fixed here, so every later lookup is a pure function of t.

Within a segment, progress p runs 0 → 1. The last TRANSITION_WINDOW of
each segment that has a successor is the transition window, where the
local transition progress t' = (p - 0.8) / 0.2 runs 0 → 1.
"""

from bisect import bisect_right
from dataclasses import dataclass

from .assets import detect_kind
from .effects import validate_effects
from .models import (
    CaptionEvent,
    CompositionConfig,
    TimelineEntry,
    TimelineSegment,
    TransitionKind,
    VALID_SOURCE_KINDS,
    _enum_value,
)


TRANSITION_WINDOW = 0.2
FADE_SECONDS = 1.5

# A random policy cycles through these by segment index.
RANDOM_CYCLE = (
    TransitionKind.FADE,
    TransitionKind.SLIDE,
    TransitionKind.ZOOM,
    TransitionKind.CUT,
)


@dataclass(frozen=True)
class Placement:
    """Where a timestamp falls on the timeline."""

    index: int
    progress: float
    next_index: int | None = None
    transition: TransitionKind | None = None
    transition_progress: float | None = None

    @property
    def in_transition(self) -> bool:
        return self.transition is not None


class Timeline:
    """Ordered, non-overlapping segments covering [0, total_duration)."""

    def __init__(self, segments: list[TimelineSegment], total_duration: float):
        self.segments = tuple(segments)
        self.total_duration = total_duration
        self._starts = [s.start for s in self.segments]

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    def __getitem__(self, index: int) -> TimelineSegment:
        return self.segments[index]

    @property
    def is_empty(self) -> bool:
        return not self.segments

    def index_at(self, t: float) -> int | None:
        """Index of the segment containing t, or None outside the timeline."""
        if not self.segments or t < 0 or t >= self.total_duration:
            return None
        return max(0, bisect_right(self._starts, t) - 1)

    def locate(self, t: float) -> Placement | None:
        index = self.index_at(t)
        if index is None:
            return None
        seg = self.segments[index]
        progress = (t - seg.start) / seg.duration if seg.duration > 0 else 0.0
        progress = max(0.0, min(1.0, progress))

        threshold = 1.0 - TRANSITION_WINDOW
        has_next = index + 1 < len(self.segments)
        if has_next and seg.transition_out is not None and progress >= threshold:
            local = (progress - threshold) / TRANSITION_WINDOW
            return Placement(
                index=index,
                progress=progress,
                next_index=index + 1,
                transition=seg.transition_out,
                transition_progress=max(0.0, min(1.0, local)),
            )
        return Placement(index=index, progress=progress)

    def source_ended(self, t: float, handles) -> bool:
        """True when the final segment is a video whose stream has run out.

        Earlier video segments hold their last frame instead, so only the
        last one can end the export early.
        """
        if not self.segments or not handles:
            return False
        index = self.index_at(t)
        last = len(self.segments) - 1
        if index != last:
            return False
        handle = handles[last]
        if handle is None or handle.kind != "video":
            return False
        return handle.has_ended(t - self.segments[last].start)


# ── Building ─────────────────────────────────────────────────────


def resolve_transition(policy: TransitionKind, index: int) -> TransitionKind:
    if policy is TransitionKind.RANDOM:
        return RANDOM_CYCLE[index % len(RANDOM_CYCLE)]
    return policy


def segment_durations(entries: list[TimelineEntry], total: float) -> list[float]:
    """Scale duration hints to fill total, or split it equally."""
    if not entries:
        return []
    hints = [e.duration_hint for e in entries]
    if all(h is not None and h > 0 for h in hints):
        scale = total / sum(hints)
        return [h * scale for h in hints]
    return [total / len(entries)] * len(entries)


def build_timeline(entries, config: CompositionConfig) -> Timeline:
    """Lay entries out over [0, total_duration_seconds).

    Args:
        entries: TimelineEntry objects in playback order.
        config: Composition settings (total duration, transition policy).

    Returns:
        A Timeline whose last segment ends exactly at the total duration.

    Raises:
        ValueError: Invalid kind, transition override, or effect.
    """
    entries = list(entries)
    total = config.total_duration_seconds
    durations = segment_durations(entries, total)

    segments = []
    cursor = 0.0
    previous_out = None
    for i, (entry, duration) in enumerate(zip(entries, durations)):
        label = f"Entry {i}"
        kind = entry.kind or detect_kind(entry.source)
        if kind not in VALID_SOURCE_KINDS:
            raise ValueError(
                f"{label}: invalid kind '{kind}'. Valid: {sorted(VALID_SOURCE_KINDS)}"
            )
        effects = validate_effects(entry.effects, label)

        if i == len(entries) - 1:
            end = total
            transition_out = None
        else:
            end = cursor + duration
            if entry.transition is not None:
                policy = _enum_value(TransitionKind, entry.transition, f"{label} transition")
            else:
                policy = config.transition_policy
            transition_out = resolve_transition(policy, i)

        segments.append(TimelineSegment(
            id=f"seg-{i:03d}",
            source=entry.source,
            start=cursor,
            end=end,
            transition_in=previous_out,
            transition_out=transition_out,
            effects=effects,
            kind=kind,
        ))
        previous_out = transition_out
        cursor = end

    return Timeline(segments, total)


# ── Envelope and captions ────────────────────────────────────────


def fade_envelope(t: float, config: CompositionConfig) -> float:
    """Global brightness multiplier for the intro/outro fades, in [0, 1]."""
    level = 1.0
    if config.include_intro_fade:
        level = min(level, t / FADE_SECONDS)
    if config.include_outro_fade:
        level = min(level, (config.total_duration_seconds - t) / FADE_SECONDS)
    return max(0.0, min(1.0, level))


def sort_captions(events) -> list[CaptionEvent]:
    """Order captions by start. Stable, so overlapping events keep input order."""
    return sorted(events, key=lambda e: e.start)
