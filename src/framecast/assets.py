"""Asset loader: resolves source references into ready-to-render handles.

A source reference is one of:
  - a filesystem path,
  - an http(s) URL (fetched with requests),
  - a data: URI with base64 payload (what browser uploads hand over),
  - raw bytes.

Images decode to an in-memory Pillow image. Videos need a real file for
ffmpeg, so URL/bytes/data sources are spooled into a private temp
directory first; that directory lives until ``release()``.

``open`` blocks; the scheduler runs it on worker threads so several
assets can load concurrently while the session is priming. Bytes that
are not an image raise ValueError, so they are never retried.
"""

import base64
import binascii
import io
import logging
import shutil
import tempfile
import threading
import uuid
from pathlib import Path
from urllib.parse import urlparse

import requests
from PIL import Image, UnidentifiedImageError

from .common import load_clip
from .errors import AssetLoadFailure
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


VIDEO_EXTENSIONS = {".mp4", ".webm", ".mov", ".mkv", ".avi", ".m4v"}

LOADER_RETRY = RetryPolicy(
    max_attempts=3,
    backoff=(0.25, 0.5),
    give_up_on=(FileNotFoundError, IsADirectoryError, PermissionError),
)

PLACEHOLDER_COLOR = (24, 24, 27)


# ── Reference helpers ────────────────────────────────────────────


def describe_source(source: str | bytes) -> str:
    """Short human-readable label for logs and warnings."""
    if isinstance(source, (bytes, bytearray)):
        return f"<{len(source)} bytes>"
    if source.startswith("data:"):
        return source[:source.find(",") + 1] + "..." if "," in source else "data:..."
    return source


def _is_url(source: str) -> bool:
    return urlparse(source).scheme in ("http", "https")


def _data_uri_parts(source: str) -> tuple[str, bytes]:
    """Split a data: URI into (mime type, decoded payload)."""
    header, sep, payload = source.partition(",")
    if not sep:
        raise ValueError("Malformed data URI: missing ',' separator")
    mime = header[len("data:"):].split(";")[0] or "application/octet-stream"
    if header.endswith(";base64"):
        try:
            return mime, base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise ValueError(f"Malformed data URI payload: {exc}") from exc
    return mime, payload.encode()


def detect_kind(source: str | bytes) -> str:
    """Guess 'image' or 'video' from a source reference."""
    if isinstance(source, (bytes, bytearray)):
        return "image"
    if source.startswith("data:"):
        mime = source[len("data:"):].split(";")[0].split(",")[0]
        return "video" if mime.startswith("video/") else "image"
    path = urlparse(source).path if _is_url(source) else source
    return "video" if Path(path).suffix.lower() in VIDEO_EXTENSIONS else "image"


# ── Handles ──────────────────────────────────────────────────────


class ImageHandle:
    """A decoded still image. Its frame never changes."""

    kind = "image"
    substituted = False

    def __init__(self, image: Image.Image, label: str = ""):
        self.image = image.convert("RGB")
        self.label = label

    @property
    def size(self) -> tuple[int, int]:
        return self.image.size

    @property
    def duration(self) -> float | None:
        return None

    def frame_at(self, t: float) -> Image.Image:
        return self.image

    def has_ended(self, t: float) -> bool:
        return False

    def close(self) -> None:
        self.image.close()


class PlaceholderHandle(ImageHandle):
    """Stand-in content for a segment whose asset failed to load."""

    substituted = True

    def __init__(self, size: tuple[int, int], label: str = "", color=PLACEHOLDER_COLOR):
        super().__init__(Image.new("RGB", size, color), label)


class VideoHandle:
    """A decoded video source, optionally trimmed to [trim_start, trim_end)."""

    kind = "video"
    substituted = False

    def __init__(self, clip, label: str = "", trim_start: float = 0.0,
                 trim_end: float | None = None):
        self.clip = clip
        self.label = label
        self.path = getattr(clip, "filename", None)
        self.trim_start = max(0.0, trim_start)
        end = clip.duration if trim_end is None else min(trim_end, clip.duration)
        if end <= self.trim_start:
            raise ValueError(
                f"Empty trim window [{self.trim_start}, {end}) for {label}"
            )
        self.trim_end = end

    @property
    def size(self) -> tuple[int, int]:
        return tuple(self.clip.size)

    @property
    def duration(self) -> float:
        return self.trim_end - self.trim_start

    def frame_at(self, t: float) -> Image.Image:
        # Hold the last frame instead of reading past the end.
        last = self.trim_end - 1.0 / (self.clip.fps or 30)
        local = min(self.trim_start + max(0.0, t), max(self.trim_start, last))
        return Image.fromarray(self.clip.get_frame(local))

    def has_ended(self, t: float) -> bool:
        return t >= self.duration

    def close(self) -> None:
        self.clip.close()


# ── Loader ───────────────────────────────────────────────────────


class AssetLoader:
    """Fetches and decodes source references, applying one retry policy."""

    def __init__(self, retry: RetryPolicy = LOADER_RETRY, request_timeout: float = 30.0):
        self.retry = retry
        self.request_timeout = request_timeout
        self._work_dir: Path | None = None
        self._lock = threading.Lock()

    # -- raw access --

    def fetch_bytes(self, source: str | bytes) -> bytes:
        """Return the raw bytes behind a reference."""
        if isinstance(source, (bytes, bytearray)):
            return bytes(source)
        if source.startswith("data:"):
            return _data_uri_parts(source)[1]
        if _is_url(source):
            response = requests.get(source, timeout=self.request_timeout)
            response.raise_for_status()
            return response.content
        return Path(source).read_bytes()

    def materialize(self, source: str | bytes, suffix: str = "") -> Path:
        """Return a local file path for a reference, spooling it if needed."""
        if isinstance(source, str) and not source.startswith("data:") and not _is_url(source):
            p = Path(source)
            if not p.exists():
                raise FileNotFoundError(f"Source not found: {source}")
            return p
        if not suffix and isinstance(source, str):
            suffix = Path(urlparse(source).path).suffix if _is_url(source) else ""
        data = self.fetch_bytes(source)
        dest = self.work_dir() / f"asset-{uuid.uuid4().hex}{suffix}"
        dest.write_bytes(data)
        logger.debug("Spooled %s to %s", describe_source(source), dest)
        return dest

    def work_dir(self) -> Path:
        with self._lock:
            if self._work_dir is None:
                self._work_dir = Path(tempfile.mkdtemp(prefix="framecast-assets-"))
            return self._work_dir

    # -- decoding --

    def open_image(self, source: str | bytes) -> ImageHandle:
        data = self.fetch_bytes(source)
        try:
            img = Image.open(io.BytesIO(data))
            img.load()
        except UnidentifiedImageError as exc:
            raise ValueError(f"Undecodable image {describe_source(source)}: {exc}") from exc
        return ImageHandle(img, describe_source(source))

    def open_video(self, source: str | bytes, trim_start: float = 0.0,
                   trim_end: float | None = None) -> VideoHandle:
        suffix = ".mp4"
        if isinstance(source, str) and source.startswith("data:"):
            mime = _data_uri_parts(source)[0]
            suffix = "." + mime.split("/")[-1] if "/" in mime else suffix
        path = self.materialize(source, suffix=suffix)
        clip = load_clip(path)
        return VideoHandle(clip, describe_source(source), trim_start, trim_end)

    def open(self, source: str | bytes, kind: str | None = None,
             effects: dict | None = None):
        """Decode one source into a handle, or raise AssetLoadFailure."""
        kind = kind or detect_kind(source)
        effects = effects or {}
        label = describe_source(source)
        try:
            if kind == "video":
                return self.retry.call(
                    self.open_video, source,
                    effects.get("trim_start", 0.0), effects.get("trim_end"),
                )
            return self.retry.call(self.open_image, source)
        except (OSError, ValueError) as exc:
            raise AssetLoadFailure(f"Could not load {kind} {label}: {exc}", source=label) from exc

    def release(self) -> None:
        """Delete any spooled files."""
        with self._lock:
            if self._work_dir is not None:
                shutil.rmtree(self._work_dir, ignore_errors=True)
                self._work_dir = None
