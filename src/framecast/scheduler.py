"""Scheduler: composition ownership and the export session state machine.

    Idle → Priming → Running → Draining → Complete | Failed

Priming loads every segment asset concurrently (bounded by
``priming_timeout``), acquires audio (bounded by ``audio_wait``) and
negotiates the encoder. Running renders one frame per tick, mixes the
matching sample window, and pushes both to the sink. Draining always
runs: the sink is finalized (or aborted on failure) and every handle,
audio node, render surface and temp file is released. Loads run on a
session-owned thread pool that Draining shuts down without waiting, so
a hung load cannot stretch an AssetLoadTimeout.

Usage:
    comp = Composition(config, entries, captions)
    output = comp.render()                      # blocking

    session = comp.start(sink)                  # inside a running loop
    output = await session.run()
    session.discard()                           # or give it up unrun
"""

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import ExitStack

from .assets import AssetLoader, PlaceholderHandle, describe_source
from .audio import ORIGINAL_GAIN, SAMPLE_RATE, SOUNDTRACK_GAIN, AudioMixer
from .compositor import FrameCompositor, RenderSurface
from .errors import AssetLoadFailure, AssetLoadTimeout, FramecastError, SessionBusy
from .models import AudioTrack, CompositionConfig, EncodedOutput, SessionState
from .sink import FfmpegEncodeSink
from .timeline import build_timeline, sort_captions

logger = logging.getLogger(__name__)

LOAD_WORKERS = 4


def pace_delay(interval: float, elapsed: float, realtime: bool = True) -> float:
    """Seconds to wait before the next tick. Open loop: no drift correction."""
    if not realtime:
        return 0.0
    return max(0.0, interval - elapsed)


def sample_window(tick: int, fps: int, sample_rate: int = SAMPLE_RATE) -> tuple[int, int]:
    """[start, end) sample range that belongs to one tick."""
    return (
        int(round(tick * sample_rate / fps)),
        int(round((tick + 1) * sample_rate / fps)),
    )


class _HandleTracker:
    """Collects decoded handles from worker threads.

    A load that finishes after the session has already released its
    resources closes its handle on arrival.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._handles = []
        self._closed = False

    def add(self, handle):
        with self._lock:
            if not self._closed:
                self._handles.append(handle)
                return handle
        handle.close()
        return handle

    def close(self):
        with self._lock:
            self._closed = True
            handles, self._handles = self._handles, []
        for handle in handles:
            handle.close()


# ── Session ──────────────────────────────────────────────────────


class ExportSession:
    """One run of a composition into a sink. Not reusable."""

    def __init__(self, composition: "Composition", sink, on_progress=None):
        self.composition = composition
        self.config = composition.config
        self.sink = sink
        self.on_progress = on_progress
        self.state = SessionState.IDLE
        self.warnings: list[FramecastError] = []
        self.frames_pushed = 0
        self.cancelled = False
        self.output: EncodedOutput | None = None
        self.error: BaseException | None = None
        self._cancel_requested = False
        self._handles = []

    def cancel(self) -> None:
        """Ask the session to stop after the in-flight frame."""
        self._cancel_requested = True

    def discard(self) -> None:
        """Drop a session that was never run and free its composition.

        Raises:
            RuntimeError: run() has already been called.
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session already {self.state.value}")
        self.sink.close()
        self.composition._session_finished(self)
        self._set_state(SessionState.FAILED)

    @property
    def is_active(self) -> bool:
        return self.state not in (SessionState.COMPLETE, SessionState.FAILED)

    def _set_state(self, state: SessionState) -> None:
        logger.info("Session %s → %s", self.state.value, state.value)
        self.state = state

    def _warn(self, warning: FramecastError) -> None:
        logger.warning("%s", warning)
        self.warnings.append(warning)

    async def run(self) -> EncodedOutput:
        """Drive the session to completion.

        Returns:
            The finished EncodedOutput (partial if cancelled).

        Raises:
            FramecastError: The fatal error that moved the session to Failed.
        """
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session already {self.state.value}")

        with ExitStack() as resources:
            resources.callback(self.composition._session_finished, self)
            resources.callback(self.sink.close)

            failure: BaseException | None = None
            try:
                compositor, mixer = await self._prime(resources)
                await self._run_ticks(compositor, mixer)
            except BaseException as exc:
                failure = exc

            self._set_state(SessionState.DRAINING)
            if failure is None:
                try:
                    self.output = self.sink.finalize()
                except BaseException as exc:
                    failure = exc

            if failure is not None:
                self.sink.abort()

        if failure is not None:
            self.error = failure
            self._set_state(SessionState.FAILED)
            logger.error("Export failed: %s", failure)
            raise failure

        self._set_state(SessionState.COMPLETE)
        return self.output

    # -- priming --

    async def _prime(self, resources: ExitStack):
        self._set_state(SessionState.PRIMING)
        config = self.config
        comp = self.composition

        self.sink.open(config)

        loader = comp.loader
        resources.callback(loader.release)
        tracker = _HandleTracker()
        resources.callback(tracker.close)
        # Hung loads must not hold up Draining; late results land in the tracker.
        executor = ThreadPoolExecutor(max_workers=LOAD_WORKERS, thread_name_prefix="framecast-load")
        resources.callback(executor.shutdown, wait=False, cancel_futures=True)

        self._handles = await self._load_assets(loader, tracker, executor)

        mixer = AudioMixer()
        resources.callback(mixer.release)
        tracks = comp.audio_tracks()
        for warning in await mixer.acquire(tracks, loader, config.audio_wait, executor):
            self.warnings.append(warning)

        surface = RenderSurface(config.size, config.background)
        resources.callback(surface.release)
        compositor = FrameCompositor(comp.timeline, self._handles, comp.captions, config, surface)
        resources.callback(compositor.release)
        return compositor, mixer

    async def _load_assets(self, loader, tracker: _HandleTracker, executor) -> list:
        config = self.config
        loop = asyncio.get_running_loop()

        def open_segment(segment):
            return tracker.add(loader.open(segment.source, segment.kind, segment.effects))

        async def load_one(segment):
            try:
                return await loop.run_in_executor(executor, open_segment, segment)
            except AssetLoadFailure as exc:
                self._warn(exc)
                return tracker.add(PlaceholderHandle(config.size, describe_source(segment.source)))

        segments = self.composition.timeline.segments
        try:
            return await asyncio.wait_for(
                asyncio.gather(*(load_one(s) for s in segments)),
                timeout=config.priming_timeout,
            )
        except asyncio.TimeoutError:
            raise AssetLoadTimeout(
                f"Assets not ready within {config.priming_timeout:.1f}s",
                timeout=config.priming_timeout,
            ) from None

    # -- running --

    async def _run_ticks(self, compositor: FrameCompositor, mixer: AudioMixer) -> None:
        self._set_state(SessionState.RUNNING)
        config = self.config
        timeline = self.composition.timeline
        total = config.total_ticks

        if timeline.is_empty:
            logger.info("Empty timeline; nothing to render")
            return

        loop = asyncio.get_running_loop()
        for tick in range(total):
            if self._cancel_requested:
                self.cancelled = True
                logger.info("Cancelled after %d frames", self.frames_pushed)
                break

            started = loop.time()
            t = tick / config.fps
            if timeline.source_ended(t, self._handles):
                logger.info("Source video ended at %.3fs", t)
                break

            frame = compositor.render(t)
            samples = mixer.mix(*sample_window(tick, config.fps))
            self.sink.push_frame(frame)
            self.sink.push_audio(samples)
            self.frames_pushed += 1

            if self.on_progress is not None:
                self.on_progress((tick + 1) / total)
            await asyncio.sleep(
                pace_delay(config.frame_interval, loop.time() - started, config.realtime)
            )


# ── Composition ──────────────────────────────────────────────────


class Composition:
    """A configured timeline that owns at most one active export session.

    Args:
        config: CompositionConfig (or a settings dict).
        entries: TimelineEntry objects in playback order.
        captions: CaptionEvent objects, any order.
        soundtrack: AudioTrack or a bare source reference.
        source_audio: Mix the first video segment's own audio.
        loader: AssetLoader; a default one is created when omitted.
    """

    def __init__(self, config, entries=(), captions=(), soundtrack=None,
                 source_audio: bool = True, loader=None):
        if isinstance(config, dict):
            config = CompositionConfig.from_dict(config)
        self.config = config
        self.timeline = build_timeline(entries, config)
        self.captions = sort_captions(captions)
        if soundtrack is not None and not isinstance(soundtrack, AudioTrack):
            soundtrack = AudioTrack(source=soundtrack, gain=SOUNDTRACK_GAIN)
        self.soundtrack = soundtrack
        self.source_audio = source_audio
        self.loader = loader or AssetLoader()
        self._session: ExportSession | None = None

    @property
    def active_session(self) -> ExportSession | None:
        return self._session

    def audio_tracks(self) -> list[AudioTrack]:
        tracks = []
        if self.soundtrack is not None:
            tracks.append(self.soundtrack)
        if self.source_audio:
            video = next((s for s in self.timeline if s.kind == "video"), None)
            if video is not None:
                trim_start = video.effects.get("trim_start", 0.0)
                tracks.append(AudioTrack(
                    source=video.source,
                    gain=ORIGINAL_GAIN,
                    offset=video.start,
                    role="original",
                    source_start=trim_start,
                    max_duration=video.duration,
                ))
        return tracks

    def start(self, sink=None, on_progress=None) -> ExportSession:
        """Create the export session.

        Raises:
            SessionBusy: A session is already active. Nothing is changed.
        """
        if self._session is not None:
            raise SessionBusy(
                f"An export session is already {self._session.state.value}"
            )
        self._session = ExportSession(self, sink or FfmpegEncodeSink(), on_progress)
        return self._session

    def _session_finished(self, session: ExportSession) -> None:
        if self._session is session:
            self._session = None

    def render(self, sink=None, on_progress=None) -> EncodedOutput:
        """Blocking export. Must not be called from inside a running loop."""
        session = self.start(sink, on_progress)
        return asyncio.run(session.run())
