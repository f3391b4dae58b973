"""Per-segment visual effects.

Effects are a flat dict on each timeline entry:
  brightness, contrast, saturation  : multipliers, 1.0 = unchanged
  hue                               : rotation in degrees
  ken_burns                         : zoom gained over the segment
  trim_start, trim_end              : seconds into a video source
"""

from PIL import Image, ImageEnhance


DEFAULT_IMAGE_ZOOM = 0.05
DEFAULT_VIDEO_ZOOM = 0.0

ENHANCERS = {
    "brightness": ImageEnhance.Brightness,
    "contrast": ImageEnhance.Contrast,
    "saturation": ImageEnhance.Color,
}

VALID_EFFECTS = set(ENHANCERS) | {"hue", "ken_burns", "trim_start", "trim_end"}


def validate_effects(effects: dict | None, label: str = "") -> dict:
    """Check effect names and values, returning a plain float dict.

    Raises:
        ValueError: Unknown effect name or out-of-range value.
    """
    prefix = f"{label}: " if label else ""
    if not effects:
        return {}
    unknown = sorted(set(effects) - VALID_EFFECTS)
    if unknown:
        raise ValueError(
            f"{prefix}unknown effects {unknown}. Valid: {sorted(VALID_EFFECTS)}"
        )

    cleaned = {}
    for name, value in effects.items():
        try:
            cleaned[name] = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"{prefix}effect '{name}' must be a number, got {value!r}") from None

    for name in ENHANCERS:
        if cleaned.get(name, 1.0) < 0:
            raise ValueError(f"{prefix}effect '{name}' must be >= 0, got {cleaned[name]}")
    if cleaned.get("ken_burns", 0.0) < 0:
        raise ValueError(f"{prefix}ken_burns must be >= 0, got {cleaned['ken_burns']}")
    if cleaned.get("trim_start", 0.0) < 0:
        raise ValueError(f"{prefix}trim_start must be >= 0, got {cleaned['trim_start']}")
    if "trim_end" in cleaned and cleaned["trim_end"] <= cleaned.get("trim_start", 0.0):
        raise ValueError(
            f"{prefix}trim_end ({cleaned['trim_end']}) must be > "
            f"trim_start ({cleaned.get('trim_start', 0.0)})"
        )
    return cleaned


def ken_burns_amount(effects: dict, kind: str) -> float:
    default = DEFAULT_VIDEO_ZOOM if kind == "video" else DEFAULT_IMAGE_ZOOM
    return effects.get("ken_burns", default)


def ken_burns_zoom(progress: float, amount: float) -> float:
    """Zoom factor at a segment progress in [0, 1]. Continuous in progress."""
    return 1.0 + max(0.0, min(1.0, progress)) * amount


def has_color_effects(effects: dict) -> bool:
    return any(
        effects.get(name, 1.0) != 1.0 for name in ENHANCERS
    ) or effects.get("hue", 0.0) % 360 != 0


def rotate_hue(img: Image.Image, degrees: float) -> Image.Image:
    """Rotate the hue of an RGB image by the given angle."""
    shift = int(round((degrees % 360) / 360 * 256)) % 256
    if shift == 0:
        return img
    h, s, v = img.convert("HSV").split()
    h = h.point(lambda value: (value + shift) % 256)
    return Image.merge("HSV", (h, s, v)).convert("RGB")


def apply_effects(img: Image.Image, effects: dict) -> Image.Image:
    """Apply the color effects of a segment to one decoded frame."""
    if not has_color_effects(effects):
        return img
    out = img.convert("RGB")
    for name, enhancer in ENHANCERS.items():
        factor = effects.get(name, 1.0)
        if factor != 1.0:
            out = enhancer(out).enhance(factor)
    if effects.get("hue"):
        out = rotate_hue(out, effects["hue"])
    return out
