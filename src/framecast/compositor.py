"""Frame compositor: renders one opaque output frame per tick.

Draw order is fixed:
  1. clear the surface to the background color,
  2. base content, one segment or two during a transition,
  3. overlays, the active caption then the watermark,
  4. the global fade envelope,
  5. snapshot.
Transient blend state on the surface is reset after every frame, even
when rendering raises.

Sources are letterboxed: uniformly scaled to fit inside the frame,
centered, never cropped or stretched. Placement goes through an affine
resample so zoom and slide offsets land on sub-pixel positions.
"""

import numpy as np
from PIL import Image

from .common import fit_scale, letterbox_rect
from .effects import apply_effects, ken_burns_amount, ken_burns_zoom
from .models import CompositionConfig, RenderFrame
from .overlays import apply_captions, draw_watermark
from .timeline import Timeline, fade_envelope
from .transitions import LayerPlacement, transition_frame


class RenderSurface:
    """Off-screen RGBA canvas of the output size."""

    def __init__(self, size: tuple[int, int], background: tuple[int, int, int]):
        self.size = size
        self.background = background
        self.alpha = 1.0
        self._canvas: Image.Image | None = None
        self.clear()

    def clear(self) -> None:
        self._canvas = Image.new("RGBA", self.size, (*self.background, 255))

    def draw_layer(self, image: Image.Image, zoom: float = 1.0, offset_x: float = 0.0) -> bool:
        """Composite a letterboxed source onto the canvas.

        Returns False when the layer lies entirely outside the frame and
        was culled.
        """
        frame_w, frame_h = self.size
        src_w, src_h = image.size
        x, y, w, h = letterbox_rect(src_w, src_h, frame_w, frame_h, zoom, offset_x)
        if x >= frame_w or x + w <= 0 or y >= frame_h or y + h <= 0:
            return False

        scale = fit_scale(src_w, src_h, frame_w, frame_h) * zoom
        layer = image if image.mode == "RGBA" else image.convert("RGBA")
        placed = layer.transform(
            self.size,
            Image.Transform.AFFINE,
            (1 / scale, 0, -x / scale, 0, 1 / scale, -y / scale),
            resample=Image.Resampling.BILINEAR,
            fillcolor=(0, 0, 0, 0),
        )
        self._canvas.alpha_composite(placed)
        return True

    def pixels(self) -> np.ndarray:
        return np.array(self._canvas.convert("RGB"))

    def load(self, frame: np.ndarray) -> None:
        self._canvas = Image.fromarray(frame).convert("RGBA")

    def apply_envelope(self, level: float) -> None:
        self.alpha = max(0.0, min(1.0, level))

    def snapshot(self) -> RenderFrame:
        frame = self.pixels()
        if self.alpha < 1.0:
            frame = np.rint(frame.astype(np.float32) * self.alpha).astype(np.uint8)
        return frame

    def reset(self) -> None:
        self.alpha = 1.0

    def release(self) -> None:
        if self._canvas is not None:
            self._canvas.close()
            self._canvas = None


class FrameCompositor:
    """Turns a timestamp into a RenderFrame using the loaded handles.

    Args:
        timeline: Built timeline.
        handles: One loaded handle per segment, same order as the timeline.
        captions: Caption events sorted by start.
        config: Composition settings.
        surface: RenderSurface of config.size.
    """

    def __init__(self, timeline: Timeline, handles, captions, config: CompositionConfig,
                 surface: RenderSurface):
        self.timeline = timeline
        self.handles = list(handles)
        self.captions = list(captions)
        self.config = config
        self.surface = surface
        self._stills: dict[int, Image.Image] = {}

    def _source_image(self, index: int, local_time: float) -> Image.Image:
        handle = self.handles[index]
        effects = self.timeline[index].effects
        if handle.kind == "video":
            return apply_effects(handle.frame_at(local_time), effects)
        # Still images are prepared once and reused every tick.
        if index not in self._stills:
            self._stills[index] = apply_effects(handle.frame_at(0.0), effects).convert("RGBA")
        return self._stills[index]

    def paint(self, layers: list[LayerPlacement]) -> np.ndarray:
        """Paint layers in order over a cleared surface and return the pixels."""
        self.surface.clear()
        for layer in layers:
            image = self._source_image(layer.index, layer.local_time)
            self.surface.draw_layer(image, layer.zoom, layer.offset_x)
        return self.surface.pixels()

    def _placement(self, index: int, progress: float) -> LayerPlacement:
        seg = self.timeline[index]
        amount = ken_burns_amount(seg.effects, seg.kind)
        return LayerPlacement(
            index=index,
            zoom=ken_burns_zoom(progress, amount),
            local_time=progress * seg.duration,
        )

    def steady_frame(self, index: int, progress: float) -> np.ndarray:
        """Base content of one segment alone at the given progress."""
        return self.paint([self._placement(index, progress)])

    def base_frame(self, t: float) -> np.ndarray:
        placement = self.timeline.locate(t)
        if placement is None:
            self.surface.clear()
            return self.surface.pixels()
        current = self._placement(placement.index, placement.progress)
        if not placement.in_transition:
            return self.paint([current])
        incoming = self._placement(placement.next_index, 0.0)
        return transition_frame(
            placement.transition,
            placement.transition_progress,
            current,
            incoming,
            self.paint,
            self.config.size[0],
        )

    def render(self, t: float) -> RenderFrame:
        try:
            frame = self.base_frame(t).copy()
            frame = apply_captions(frame, self.captions, t, self.config)
            frame = draw_watermark(frame, self.config.watermark)
            self.surface.load(frame)
            self.surface.apply_envelope(fade_envelope(t, self.config))
            return self.surface.snapshot()
        finally:
            self.surface.reset()

    def release(self) -> None:
        for image in self._stills.values():
            image.close()
        self._stills.clear()
