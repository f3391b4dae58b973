"""Error taxonomy for export sessions.

Recoverable kinds never end a session: they are collected on
``ExportSession.warnings`` and the pipeline substitutes or omits the
affected content. Every other kind is fatal and is what
``ExportSession.run()`` raises after the Draining phase has run.
"""


class FramecastError(Exception):
    """Base class for all typed pipeline failures."""

    recoverable = False

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class AssetLoadFailure(FramecastError):
    """A segment's source could not be fetched or decoded."""

    recoverable = True

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.source = source


class AudioSourceUnavailable(FramecastError):
    """An audio source could not be acquired; the mix proceeds without it."""

    recoverable = True

    def __init__(self, message: str, role: str | None = None):
        super().__init__(message)
        self.role = role


class AssetLoadTimeout(FramecastError):
    """Required assets were not decodable before the priming timeout."""

    def __init__(self, message: str, timeout: float | None = None):
        super().__init__(message)
        self.timeout = timeout


class EncoderUnsupported(FramecastError):
    """No candidate (codec, container) pair is supported by the encoder."""

    def __init__(self, message: str, candidates: list[str] | None = None):
        super().__init__(message)
        self.candidates = candidates or []


class NoFramesCaptured(FramecastError):
    """The sink was finalized without a single frame having been pushed."""


class EncodeFailure(FramecastError):
    """The encoder process failed while writing or muxing the container."""

    def __init__(self, message: str, stderr: str | None = None):
        super().__init__(message)
        self.stderr = stderr


class SessionBusy(FramecastError):
    """An export session is already active on this composition."""
