"""Export manifest loader.

Parses a YAML manifest describing one export: composition settings, the
timeline, captions and an optional soundtrack. Follows the same ${var}
path resolution as the other manifests: every string under timeline,
captions and soundtrack may reference a ``paths`` entry.

Export manifest schema:
  video:
    aspect_ratio: landscape       # landscape | portrait | square
    fps: 30
    total_duration_seconds: 15
    transition_policy: fade       # fade | slide | zoom | cut | random
    caption_display_mode: highlight
    background: "#000000"
  paths:
    media: "/data/media"
  timeline:
    - source: "${media}/a.jpg"
      duration_hint: 3
      transition: slide
      effects: {brightness: 1.1}
  captions:
    - {start: 0, end: 2, text: "Hello", position: bottom-center}
  soundtrack: {source: "${media}/music.mp3", gain: 0.3}
  source_audio: true
"""

from pathlib import Path
from urllib.parse import urlparse

import yaml

from .audio import SOUNDTRACK_GAIN
from .common import resolve_path_vars
from .models import AudioTrack, CaptionEvent, CompositionConfig, TimelineEntry


TIMELINE_FIELDS = {"source", "duration_hint", "transition", "effects", "kind"}
CAPTION_FIELDS = {"id", "start", "end", "text", "display_mode", "position", "color", "word_times"}
SOUNDTRACK_FIELDS = {"source", "gain", "offset"}


# ── Manifest loading ──────────────────────────────────────────────


def load_export_manifest(manifest_path: str | Path) -> dict:
    """Load, validate, and normalize an export manifest.

    Processing pipeline:
      1. Parse YAML.
      2. Build a CompositionConfig from the video block.
      3. Resolve ${path} variables in timeline, captions and soundtrack.
      4. Validate and convert each item to its model type.

    Args:
        manifest_path: Path to the YAML manifest file.

    Returns:
        Dict with keys config, entries, captions, soundtrack, source_audio.

    Raises:
        ValueError: Missing/invalid fields.
        FileNotFoundError: Missing manifest file.
    """
    with open(manifest_path) as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ValueError("Export manifest: top level must be a mapping")

    video = raw.get("video") or {}
    if not isinstance(video, dict):
        raise ValueError("Export manifest: 'video' must be a mapping")
    config = CompositionConfig.from_dict(video)

    paths = raw.get("paths", {})

    timeline = raw.get("timeline") or []
    if not isinstance(timeline, list):
        raise ValueError("Export manifest: 'timeline' must be a list")
    entries = [
        _parse_entry(_resolve_paths(item, paths), i)
        for i, item in enumerate(timeline)
    ]

    captions_raw = raw.get("captions") or []
    if not isinstance(captions_raw, list):
        raise ValueError("Export manifest: 'captions' must be a list")
    captions = []
    seen_ids = set()
    for i, item in enumerate(captions_raw):
        event = _parse_caption(_resolve_paths(item, paths), i)
        if event.id in seen_ids:
            raise ValueError(f"Duplicate caption id: '{event.id}'")
        seen_ids.add(event.id)
        captions.append(event)

    soundtrack = None
    if raw.get("soundtrack") is not None:
        soundtrack = _parse_soundtrack(_resolve_paths(raw["soundtrack"], paths))

    source_audio = raw.get("source_audio", True)
    if not isinstance(source_audio, bool):
        raise ValueError("Export manifest: 'source_audio' must be true or false")

    return {
        "config": config,
        "entries": entries,
        "captions": captions,
        "soundtrack": soundtrack,
        "source_audio": source_audio,
    }


def _resolve_paths(obj, paths: dict):
    """Recursively resolve ${var} in all string values."""
    if isinstance(obj, str):
        return resolve_path_vars(obj, paths)
    elif isinstance(obj, dict):
        return {k: _resolve_paths(v, paths) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_resolve_paths(item, paths) for item in obj]
    return obj


def _check_fields(item, allowed: set, prefix: str) -> None:
    if not isinstance(item, dict):
        raise ValueError(f"{prefix}: must be a mapping")
    unknown = sorted(set(item) - allowed)
    if unknown:
        raise ValueError(f"{prefix}: unknown fields {unknown}")


def _parse_entry(item: dict, index: int) -> TimelineEntry:
    prefix = f"Timeline entry {index}"
    _check_fields(item, TIMELINE_FIELDS, prefix)
    if "source" not in item:
        raise ValueError(f"{prefix}: missing required field 'source'")

    hint = item.get("duration_hint")
    if hint is not None:
        hint = float(hint)
        if hint <= 0:
            raise ValueError(f"{prefix}: duration_hint must be > 0, got {hint}")

    effects = item.get("effects") or {}
    if not isinstance(effects, dict):
        raise ValueError(f"{prefix}: 'effects' must be a mapping")

    return TimelineEntry(
        source=str(item["source"]),
        duration_hint=hint,
        transition=item.get("transition"),
        effects=effects,
        kind=item.get("kind"),
    )


def _parse_caption(item: dict, index: int) -> CaptionEvent:
    prefix = f"Caption {index}"
    _check_fields(item, CAPTION_FIELDS, prefix)
    for key in ("start", "end", "text"):
        if key not in item:
            raise ValueError(f"{prefix}: missing required field '{key}'")

    start = float(item["start"])
    end = float(item["end"])
    if start < 0:
        raise ValueError(f"{prefix}: start must be >= 0, got {start}")
    if start >= end:
        raise ValueError(f"{prefix}: start ({start}) must be < end ({end})")

    text = str(item["text"])
    word_times = item.get("word_times")
    if word_times is not None:
        if not isinstance(word_times, list) or len(word_times) != len(text.split()):
            raise ValueError(f"{prefix}: 'word_times' must list one [start, end] per word")

    try:
        return CaptionEvent(
            id=str(item.get("id", f"cap-{index:03d}")),
            start=start,
            end=end,
            text=text,
            display_mode=item.get("display_mode"),
            position=item.get("position", "bottom-center"),
            color=item.get("color"),
            word_times=word_times,
        )
    except ValueError as exc:
        raise ValueError(f"{prefix}: {exc}") from None


def _parse_soundtrack(item: dict) -> AudioTrack:
    prefix = "Soundtrack"
    if isinstance(item, str):
        item = {"source": item}
    _check_fields(item, SOUNDTRACK_FIELDS, prefix)
    if "source" not in item:
        raise ValueError(f"{prefix}: missing required field 'source'")
    try:
        return AudioTrack(
            source=str(item["source"]),
            gain=float(item.get("gain", SOUNDTRACK_GAIN)),
            offset=float(item.get("offset", 0.0)),
        )
    except ValueError as exc:
        raise ValueError(f"{prefix}: {exc}") from None


# ── Path validation ───────────────────────────────────────────────


def _is_local(source) -> bool:
    if not isinstance(source, str) or source.startswith("data:"):
        return False
    return urlparse(source).scheme not in ("http", "https")


def validate_manifest_paths(manifest: dict) -> None:
    """Check that every local media file in the manifest exists on disk.

    URLs and data URIs are skipped. Reports all missing paths at once.

    Raises:
        FileNotFoundError: Lists all missing files.
    """
    sources = [e.source for e in manifest["entries"]]
    if manifest.get("soundtrack") is not None:
        sources.append(manifest["soundtrack"].source)

    missing = [s for s in sources if _is_local(s) and not Path(s).exists()]
    if missing:
        msg = f"Missing {len(missing)} file(s):\n"
        for p in missing:
            msg += f"  - {p}\n"
        raise FileNotFoundError(msg)
