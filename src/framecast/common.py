"""framecast.common: shared utilities for frame composition.

Contains: color parsing, path variable resolution, font loading,
letterbox fitting, and source clip loading.
"""

import functools
import re
from pathlib import Path

from PIL import ImageFont
from moviepy import VideoFileClip


# ── Font paths ─────────────────────────────────────────────────────
# Inter preferred for captions, DejaVu Sans Bold / DejaVu Sans as fallback.

FONT_PATHS = [
    Path.home() / ".local/share/fonts/Inter.ttc",
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"),
    Path("/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf"),
]


# ── Color utilities ────────────────────────────────────────────────

def parse_hex_color(hex_str: str) -> tuple[int, int, int]:
    """Convert '#RRGGBB' or 'RRGGBB' string to (R, G, B) tuple."""
    hex_str = hex_str.lstrip("#")
    if len(hex_str) != 6 or not all(c in "0123456789abcdefABCDEF" for c in hex_str):
        raise ValueError(f"Invalid hex color: '#{hex_str}'")
    return (int(hex_str[0:2], 16), int(hex_str[2:4], 16), int(hex_str[4:6], 16))


def coerce_color(value) -> tuple[int, int, int]:
    """Accept a hex string or an (R, G, B) sequence and return an RGB tuple."""
    if isinstance(value, str):
        return parse_hex_color(value)
    rgb = tuple(int(c) for c in value)
    if len(rgb) != 3 or any(c < 0 or c > 255 for c in rgb):
        raise ValueError(f"Invalid RGB color: {value!r}")
    return rgb


# ── Path utilities ─────────────────────────────────────────────────

def resolve_path_vars(text: str, paths: dict[str, str]) -> str:
    """Replace ${name} variables in a string using the paths dict."""
    def _replace(match):
        key = match.group(1)
        if key not in paths:
            raise ValueError(f"Unknown path variable: ${{{key}}}")
        return paths[key]
    return re.sub(r"\$\{(\w+)\}", _replace, text)


# ── Font loading ───────────────────────────────────────────────────

@functools.lru_cache(maxsize=None)
def load_font(size: int) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    """Load Inter (or fallback) at the given size, else Pillow's scalable default.

    Cached per size; overlays ask for the same sizes every tick.
    """
    for font_path in FONT_PATHS:
        if font_path.exists():
            try:
                return ImageFont.truetype(str(font_path), size=size, index=0)
            except (OSError, IndexError):
                continue
    return ImageFont.load_default(size=size)


# ── Letterbox fitting ──────────────────────────────────────────────

def fit_scale(src_w: int, src_h: int, frame_w: int, frame_h: int) -> float:
    """Uniform scale that fits a source inside the frame without cropping."""
    return min(frame_w / src_w, frame_h / src_h)


def letterbox_rect(
    src_w: int,
    src_h: int,
    frame_w: int,
    frame_h: int,
    zoom: float = 1.0,
    offset_x: float = 0.0,
) -> tuple[float, float, float, float]:
    """Return (x, y, w, h) of a source fitted, zoomed and centered in the frame.

    Coordinates are floats so callers can place content with sub-pixel
    precision. A zoom above 1.0 grows the content around the frame center.
    """
    s = fit_scale(src_w, src_h, frame_w, frame_h) * zoom
    w = src_w * s
    h = src_h * s
    x = (frame_w - w) / 2 + offset_x
    y = (frame_h - h) / 2
    return x, y, w, h


# ── Clip loading ───────────────────────────────────────────────────

def load_clip(path: str | Path, target_fps: int | None = None) -> VideoFileClip:
    """Load a single video clip, optionally resampled to target fps."""
    clip = VideoFileClip(str(path))
    if target_fps and clip.fps != target_fps:
        clip = clip.with_fps(target_fps)
    return clip
