#!/usr/bin/env python3
"""Generate synthetic media for the framecast demo manifest.

Creates labeled stills and one short video in examples/demo-media/,
then writes examples/demo-export.yaml pointing at them. Stills have
mismatched aspect ratios so letterboxing is visible in the render.

Usage:
    python examples/generate_demo_media.py
    # Then render:
    framecast render --manifest examples/demo-export.yaml \
        --output examples/demo-renders/demo.mp4 --no-realtime
"""

from pathlib import Path

import yaml
from moviepy import ColorClip
from PIL import Image, ImageDraw

from framecast.common import load_font

EXAMPLES_DIR = Path(__file__).resolve().parent
OUTPUT_DIR = EXAMPLES_DIR / "demo-media"
FPS = 30

# (name, color, size): landscape, portrait and square stills.
STILLS = [
    ("still-01", (180, 60, 60), (640, 360)),    # red, 16:9
    ("still-02", (60, 60, 180), (360, 640)),    # blue, 9:16
    ("still-03", (60, 160, 60), (480, 480)),    # green, 1:1
    ("still-04", (200, 130, 40), (800, 300)),   # orange, wide
]
VIDEO = ("clip-01", (130, 60, 180), (320, 240), 3.0)


def _make_still(name: str, color: tuple[int, int, int], size: tuple[int, int]) -> Path:
    img = Image.new("RGB", size, color)
    draw = ImageDraw.Draw(img)
    font = load_font(max(16, min(size) // 6))
    bbox = draw.textbbox((0, 0), name, font=font)
    tw, th = bbox[2] - bbox[0], bbox[3] - bbox[1]
    draw.text(((size[0] - tw) / 2, (size[1] - th) / 2), name, fill=(255, 255, 255), font=font)
    out = OUTPUT_DIR / f"{name}.png"
    img.save(out)
    return out


def _make_video(name, color, size, duration) -> Path:
    out = OUTPUT_DIR / f"{name}.mp4"
    clip = ColorClip(size=size, color=color, duration=duration)
    clip.write_videofile(str(out), fps=FPS, codec="libx264", audio=False, logger=None)
    clip.close()
    return out


def main():
    OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    for name, color, size in STILLS:
        _make_still(name, color, size)
        print(f"  made {name}.png {size[0]}x{size[1]}")

    name, color, size, duration = VIDEO
    if (OUTPUT_DIR / f"{name}.mp4").exists():
        print(f"  skip {name} (exists)")
    else:
        _make_video(name, color, size, duration)
        print(f"  made {name}.mp4 {duration}s")

    manifest = {
        "video": {
            "aspect_ratio": "landscape",
            "fps": FPS,
            "total_duration_seconds": 12,
            "transition_policy": "random",
            "caption_display_mode": "highlight",
            "watermark": "framecast demo",
        },
        "paths": {"media": str(OUTPUT_DIR)},
        "timeline": [
            {"source": "${media}/still-01.png"},
            {"source": "${media}/still-02.png", "effects": {"saturation": 0.4}},
            {"source": "${media}/still-03.png", "effects": {"hue": 90, "ken_burns": 0.1}},
            {"source": "${media}/clip-01.mp4", "transition": "slide"},
            {"source": "${media}/still-04.png", "effects": {"brightness": 1.2}},
        ],
        "captions": [
            {"start": 0.5, "end": 3.5, "text": "Five sources, one timeline"},
            {"start": 4.0, "end": 7.0, "text": "Letterboxed, never cropped", "position": "top-center"},
            {"start": 8.0, "end": 11.5, "text": "Fades in and out", "display_mode": "text_only"},
        ],
    }
    manifest_path = EXAMPLES_DIR / "demo-export.yaml"
    with open(manifest_path, "w") as f:
        yaml.safe_dump(manifest, f, sort_keys=False)
    print(f"\nWrote {manifest_path}")


if __name__ == "__main__":
    main()
