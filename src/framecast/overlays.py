"""Overlay renderer: timed captions and the watermark.

Captions are drawn per tick on top of the base content. At most one
caption is visible at a time: when events overlap, the first one in
timeline order wins.

Overlays use the same 3x3 grid positioning system (top-left through
bottom-right) for captions and the watermark. Text is drawn in two
passes, a dark stroke layer first and the fill layer on top, so strokes
never eat into neighboring glyphs.
"""

import math

import numpy as np
from PIL import Image, ImageDraw

from .common import load_font
from .models import CaptionDisplayMode, CaptionEvent, CompositionConfig


# ── Constants ────────────────────────────────────────────────────

OVERLAY_MARGIN_FRAC = 0.03       # margin from edges as fraction of frame dimension
CAPTION_FONT_FRAC = 0.045        # caption font size as fraction of frame width
CAPTION_MIN_FONT = 12
CAPTION_WRAP_FRAC = 0.9          # lines wrap at 90% of frame width
CAPTION_STROKE_FRAC = 0.12       # stroke width as fraction of font size
CAPTION_LINE_SPACING = 0.25      # extra line gap as fraction of font size
HIGHLIGHT_DIM_ALPHA = 102        # 40% opacity for non-active words
STROKE_COLOR = (0, 0, 0)

WATERMARK_MIN_FONT = 14
WATERMARK_FONT_FRAC = 0.025
WATERMARK_ALPHA = 180
WATERMARK_POSITIONS = ("top-right", "bottom-center")


# ── Position computation ─────────────────────────────────────────


def compute_overlay_position(
    position: str,
    patch_w: int,
    patch_h: int,
    frame_w: int,
    frame_h: int,
) -> tuple[int, int]:
    """Compute (x, y) for an overlay patch on a 3x3 grid.

    Margin is OVERLAY_MARGIN_FRAC of the frame dimension from each edge.

    Args:
        position: One of the 9 grid positions (e.g. "bottom-center").
        patch_w: Rendered overlay patch width.
        patch_h: Rendered overlay patch height.
        frame_w: Target frame width.
        frame_h: Target frame height.

    Returns:
        (x, y) top-left corner for placing the overlay.
    """
    margin_x = int(frame_w * OVERLAY_MARGIN_FRAC)
    margin_y = int(frame_h * OVERLAY_MARGIN_FRAC)

    vert, horiz = position.split("-", 1)
    if horiz == "left":
        x = margin_x
    elif horiz == "right":
        x = frame_w - margin_x - patch_w
    else:  # center
        x = (frame_w - patch_w) // 2

    if vert == "top":
        y = margin_y
    elif vert == "bottom":
        y = frame_h - margin_y - patch_h
    else:  # middle
        y = (frame_h - patch_h) // 2

    return x, y


# ── Caption timing ───────────────────────────────────────────────


def find_active_caption(events, t: float) -> CaptionEvent | None:
    """First event with start <= t <= end, in the given order."""
    for event in events:
        if event.start <= t <= event.end:
            return event
    return None


def highlight_word_index(event: CaptionEvent, t: float) -> int | None:
    """Index of the word to emphasize at time t.

    Without word timings the event duration is split equally between
    its words. With ``word_times`` the word whose interval contains t
    wins, falling back to the last word that has started.
    """
    n = len(event.words)
    if n == 0:
        return None

    if event.word_times:
        current = 0
        for i, (start, end) in enumerate(event.word_times[:n]):
            if start <= t < end:
                return i
            if start <= t:
                current = i
        return current

    if event.duration <= 0:
        return 0
    index = math.floor((t - event.start) / (event.duration / n))
    return max(0, min(n - 1, index))


def effective_mode(event: CaptionEvent, config: CompositionConfig) -> CaptionDisplayMode:
    if config.caption_display_mode is CaptionDisplayMode.NONE:
        return CaptionDisplayMode.NONE
    return event.display_mode or config.caption_display_mode


# ── Text layout ──────────────────────────────────────────────────


def caption_font_size(frame_w: int) -> int:
    return max(CAPTION_MIN_FONT, round(frame_w * CAPTION_FONT_FRAC))


def wrap_words(words: list[str], font, max_width: float) -> list[list[tuple[int, str]]]:
    """Greedy word wrap. Returns lines of (word index, word).

    A single word wider than max_width gets a line of its own.
    """
    draw = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    space_w = draw.textlength(" ", font=font)
    lines: list[list[tuple[int, str]]] = []
    line: list[tuple[int, str]] = []
    line_w = 0.0
    for i, word in enumerate(words):
        word_w = draw.textlength(word, font=font)
        needed = word_w if not line else line_w + space_w + word_w
        if line and needed > max_width:
            lines.append(line)
            line, line_w = [(i, word)], word_w
        else:
            line.append((i, word))
            line_w = needed
    if line:
        lines.append(line)
    return lines


def render_text_patch(
    lines: list[list[tuple[int, str]]],
    font,
    stroke: int,
    word_fill,
) -> np.ndarray:
    """Render wrapped lines, stroke pass then fill pass, centered per line.

    Args:
        lines: Output of wrap_words.
        font: Pillow font.
        stroke: Stroke width in pixels.
        word_fill: Callable(word index) -> RGBA fill for that word.

    Returns:
        numpy array of shape (h, w, 4), dtype uint8 (RGBA).
    """
    measure = ImageDraw.Draw(Image.new("RGBA", (1, 1)))
    space_w = measure.textlength(" ", font=font)
    if hasattr(font, "getmetrics"):
        ascent, descent = font.getmetrics()
        line_h = ascent + descent
    else:  # bitmap fallback font
        line_h = font.getbbox("Ag")[3]
    gap = round(line_h * CAPTION_LINE_SPACING)

    widths = [
        sum(measure.textlength(w, font=font) for _, w in line) + space_w * (len(line) - 1)
        for line in lines
    ]
    patch_w = int(math.ceil(max(widths))) + 2 * stroke
    patch_h = len(lines) * line_h + (len(lines) - 1) * gap + 2 * stroke

    # Words sharing an opacity are drawn as one opaque group and faded
    # together, so stroke and fill never stack their alpha.
    size = (patch_w, patch_h)
    groups: dict[int, tuple[Image.Image, Image.Image]] = {}

    y = stroke
    for line, line_w in zip(lines, widths):
        x = stroke + (patch_w - 2 * stroke - line_w) / 2
        for index, word in line:
            *rgb, alpha = word_fill(index)
            if alpha not in groups:
                groups[alpha] = (
                    Image.new("RGBA", size, (0, 0, 0, 0)),
                    Image.new("RGBA", size, (0, 0, 0, 0)),
                )
            stroke_layer, fill_layer = groups[alpha]
            if stroke > 0:
                ImageDraw.Draw(stroke_layer).text(
                    (x, y), word, font=font, fill=(*STROKE_COLOR, 255),
                    stroke_width=stroke, stroke_fill=(*STROKE_COLOR, 255),
                )
            ImageDraw.Draw(fill_layer).text((x, y), word, font=font, fill=(*rgb, 255))
            x += measure.textlength(word, font=font) + space_w
        y += line_h + gap

    patch = Image.new("RGBA", size, (0, 0, 0, 0))
    for alpha, (stroke_layer, fill_layer) in groups.items():
        group = Image.alpha_composite(stroke_layer, fill_layer)
        if alpha < 255:
            group.putalpha(group.getchannel("A").point(lambda v: v * alpha // 255))
        patch = Image.alpha_composite(patch, group)
    return np.array(patch)


def render_caption_patch(
    event: CaptionEvent,
    t: float,
    frame_w: int,
    mode: CaptionDisplayMode,
    caption_color: tuple[int, int, int],
    accent_color: tuple[int, int, int],
) -> np.ndarray | None:
    """Render the caption active at t as an RGBA patch, or None if empty."""
    words = event.words
    if not words or mode is CaptionDisplayMode.NONE:
        return None

    size = caption_font_size(frame_w)
    font = load_font(size)
    stroke = max(1, round(size * CAPTION_STROKE_FRAC))
    lines = wrap_words(words, font, frame_w * CAPTION_WRAP_FRAC)
    color = event.color or caption_color

    if mode is CaptionDisplayMode.HIGHLIGHT:
        active = highlight_word_index(event, t)

        def word_fill(i):
            if i == active:
                return (*color, 255)
            return (*accent_color, HIGHLIGHT_DIM_ALPHA)
    else:
        def word_fill(i):
            return (*color, 255)

    return render_text_patch(lines, font, stroke, word_fill)


# ── Frame-level application ──────────────────────────────────────


def blend_patch(frame: np.ndarray, patch: np.ndarray, x: int, y: int) -> np.ndarray:
    """Alpha-blend an RGBA patch onto a frame in place, clipped to bounds."""
    frame_h, frame_w = frame.shape[:2]
    patch_h, patch_w = patch.shape[:2]

    x0, y0 = max(0, x), max(0, y)
    x1, y1 = min(frame_w, x + patch_w), min(frame_h, y + patch_h)
    if x0 >= x1 or y0 >= y1:
        return frame
    patch = patch[y0 - y:y1 - y, x0 - x:x1 - x]

    alpha = patch[:, :, 3:4].astype(np.float32) / 255.0
    rgb = patch[:, :, :3].astype(np.float32)
    dest = frame[y0:y1, x0:x1].astype(np.float32)
    blended = dest * (1 - alpha) + rgb * alpha
    frame[y0:y1, x0:x1] = np.rint(blended).astype(np.uint8)
    return frame


def place_patch(frame: np.ndarray, patch: np.ndarray, position: str) -> np.ndarray:
    frame_h, frame_w = frame.shape[:2]
    patch_h, patch_w = patch.shape[:2]
    x, y = compute_overlay_position(position, patch_w, patch_h, frame_w, frame_h)

    # Clamp to frame bounds.
    x = max(0, min(x, frame_w - patch_w))
    y = max(0, min(y, frame_h - patch_h))
    return blend_patch(frame, patch, x, y)


def apply_captions(
    frame: np.ndarray,
    events,
    t: float,
    config: CompositionConfig,
) -> np.ndarray:
    """Draw the caption active at t onto the frame. Mutates and returns it."""
    event = find_active_caption(events, t)
    if event is None:
        return frame
    mode = effective_mode(event, config)
    patch = render_caption_patch(
        event, t, frame.shape[1], mode, config.caption_color, config.accent_color,
    )
    if patch is None:
        return frame
    return place_patch(frame, patch, event.position)


def render_watermark_patch(text: str, frame_w: int) -> np.ndarray:
    size = max(WATERMARK_MIN_FONT, int(frame_w * WATERMARK_FONT_FRAC))
    font = load_font(size)
    stroke = max(1, size // 8)
    lines = [list(enumerate(text.split()))]
    return render_text_patch(
        lines, font, stroke, lambda i: (255, 255, 255, WATERMARK_ALPHA),
    )


def draw_watermark(frame: np.ndarray, text: str | None) -> np.ndarray:
    """Stamp the watermark text at each WATERMARK_POSITIONS slot."""
    if not text or not text.strip():
        return frame
    patch = render_watermark_patch(text, frame.shape[1])
    for position in WATERMARK_POSITIONS:
        frame = place_patch(frame, patch, position)
    return frame
