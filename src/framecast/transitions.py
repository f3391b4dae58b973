"""Transition engine: blends an outgoing segment A into an incoming B.

The engine never touches pixels of a source directly. It decides which
layers to paint (with what zoom and horizontal offset) and how to mix
the painted frames, and delegates the painting to a callable supplied
by the compositor:

    paint(layers: list[LayerPlacement]) -> np.ndarray  # (H, W, 3) uint8

Endpoints are exact: at t' = 0 the result is A's steady frame and at
t' = 1 it is B's steady frame at progress 0, byte for byte.
"""

from dataclasses import dataclass, replace

import numpy as np

from .models import TransitionKind


ZOOM_OUT_SHRINK = 0.1     # A shrinks by 10% while fading out
ZOOM_IN_START = 0.9       # B starts at 90% and grows to 100%


@dataclass(frozen=True)
class LayerPlacement:
    """One source drawn on the surface for a tick."""

    index: int
    zoom: float = 1.0
    offset_x: float = 0.0
    local_time: float = 0.0


def blend_frames(a: np.ndarray, b: np.ndarray, weight: float) -> np.ndarray:
    """Linear mix (1 - weight) * a + weight * b of two uint8 frames."""
    if weight <= 0.0:
        return a
    if weight >= 1.0:
        return b
    mixed = a.astype(np.float32) * (1.0 - weight) + b.astype(np.float32) * weight
    return np.rint(mixed).clip(0, 255).astype(np.uint8)


def transition_frame(
    kind: TransitionKind,
    progress: float,
    outgoing: LayerPlacement,
    incoming: LayerPlacement,
    paint,
    frame_w: int,
) -> np.ndarray:
    """Render one tick inside a transition window.

    Args:
        kind: Resolved transition (never RANDOM).
        progress: Local transition progress t' in [0, 1].
        outgoing: Steady placement of A at its current progress.
        incoming: Steady placement of B at progress 0.
        paint: Compositor callback that paints a list of layers.
        frame_w: Output width, the slide distance.

    Returns:
        The blended base frame.
    """
    tp = max(0.0, min(1.0, progress))

    if kind is TransitionKind.CUT:
        return paint([incoming] if tp >= 1.0 else [outgoing])

    if kind is TransitionKind.FADE:
        if tp <= 0.0:
            return paint([outgoing])
        if tp >= 1.0:
            return paint([incoming])
        return blend_frames(paint([outgoing]), paint([incoming]), tp)

    if kind is TransitionKind.SLIDE:
        # A zoomed-in A can still overhang the left edge at t' = 1.
        if tp <= 0.0:
            return paint([outgoing])
        if tp >= 1.0:
            return paint([incoming])
        a = replace(outgoing, offset_x=outgoing.offset_x - tp * frame_w)
        b = replace(incoming, offset_x=incoming.offset_x + (1.0 - tp) * frame_w)
        return paint([a, b])

    if kind is TransitionKind.ZOOM:
        if tp <= 0.0:
            return paint([outgoing])
        if tp >= 1.0:
            return paint([incoming])
        a = replace(outgoing, zoom=outgoing.zoom * (1.0 - ZOOM_OUT_SHRINK * tp))
        b = replace(
            incoming,
            zoom=incoming.zoom * (ZOOM_IN_START + (1.0 - ZOOM_IN_START) * tp),
        )
        return blend_frames(paint([a]), paint([b]), tp)

    raise ValueError(f"Transition '{kind.value}' must be resolved before rendering")
