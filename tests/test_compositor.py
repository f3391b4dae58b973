"""Tests for the frame compositor and render surface."""

import numpy as np
import pytest
from PIL import Image

from framecast.assets import ImageHandle
from framecast.compositor import FrameCompositor, RenderSurface
from framecast.models import CaptionEvent, CompositionConfig, TimelineEntry
from framecast.timeline import build_timeline
from framecast.transitions import transition_frame


RED = (220, 30, 30)
GREEN = (30, 200, 30)


def _gradient(size, tint):
    w, h = size
    ramp = np.linspace(0, 255, w, dtype=np.uint8)[None, :].repeat(h, axis=0)
    pixels = np.stack([ramp, ramp[:, ::-1], np.full_like(ramp, tint)], axis=-1)
    pixels[: h // 3] = (255, 255, 255)
    return Image.fromarray(pixels)


def _compositor(policy="fade", colors=(RED, GREEN), src_size=(64, 36), images=None,
                **config_overrides):
    settings = dict(
        short_side=36, fps=10, total_duration_seconds=4.0,
        transition_policy=policy,
        include_intro_fade=False, include_outro_fade=False,
        caption_display_mode="none", realtime=False,
    )
    settings.update(config_overrides)
    config = CompositionConfig(**settings)
    entries = [TimelineEntry(f"/m/{i}.png") for i in range(len(images or colors))]
    timeline = build_timeline(entries, config)
    images = images or [Image.new("RGB", src_size, c) for c in colors]
    handles = [ImageHandle(img) for img in images]
    surface = RenderSurface(config.size, config.background)
    return FrameCompositor(timeline, handles, [], config, surface)


class TestRenderSurface:
    def test_clear_to_background(self):
        surface = RenderSurface((8, 4), (10, 20, 30))
        assert (surface.pixels() == (10, 20, 30)).all()

    def test_letterbox_bars(self):
        # A 2:1 source on a 64x36 frame fills the width with 2px bars.
        surface = RenderSurface((64, 36), (0, 0, 0))
        surface.draw_layer(Image.new("RGB", (200, 100), (255, 255, 255)))
        px = surface.pixels()
        assert (px[0] == 0).all()
        assert (px[-1] == 0).all()
        assert (px[18] == 255).all()

    def test_layer_outside_frame_culled(self):
        surface = RenderSurface((64, 36), (0, 0, 0))
        drawn = surface.draw_layer(Image.new("RGB", (64, 36), (255, 0, 0)), offset_x=64)
        assert drawn is False
        assert surface.pixels().max() == 0

    def test_envelope_and_reset(self):
        surface = RenderSurface((4, 4), (200, 200, 200))
        surface.apply_envelope(0.5)
        assert (surface.snapshot() == 100).all()
        surface.reset()
        assert (surface.snapshot() == 200).all()


class TestSteadyFrames:
    def test_output_shape_and_dtype(self):
        comp = _compositor()
        frame = comp.render(0.0)
        assert frame.shape == (36, 64, 3)
        assert frame.dtype == np.uint8

    def test_segment_content(self):
        comp = _compositor()
        frame = comp.render(0.5)
        assert tuple(frame[18, 32]) == RED
        frame = comp.render(2.5)
        assert tuple(frame[18, 32]) == GREEN

    def test_ken_burns_keeps_center(self):
        comp = _compositor(colors=(RED, GREEN))
        early = comp.steady_frame(0, 0.0)
        late = comp.steady_frame(0, 1.0)
        assert tuple(early[18, 32]) == tuple(late[18, 32]) == RED


class TestTransitionEndpoints:
    @pytest.mark.parametrize("policy", ["fade", "slide", "zoom"])
    def test_start_matches_outgoing_steady(self, policy):
        comp = _compositor(policy=policy, src_size=(48, 36))
        placement = comp.timeline.locate(1.6)
        assert placement.in_transition
        current = comp._placement(0, placement.progress)
        incoming = comp._placement(1, 0.0)
        frame = transition_frame(placement.transition, 0.0, current, incoming, comp.paint, 64)
        np.testing.assert_array_equal(frame, comp.steady_frame(0, placement.progress))

    @pytest.mark.parametrize("policy", ["fade", "slide", "zoom"])
    def test_end_matches_incoming_steady(self, policy):
        comp = _compositor(policy=policy, src_size=(48, 36))
        placement = comp.timeline.locate(1.6)
        current = comp._placement(0, placement.progress)
        incoming = comp._placement(1, 0.0)
        frame = transition_frame(placement.transition, 1.0, current, incoming, comp.paint, 64)
        np.testing.assert_array_equal(frame, comp.steady_frame(1, 0.0))

    def test_fade_mid_window_blends(self):
        comp = _compositor(policy="fade")
        # Segment 0 spans [0, 2); the window is [1.6, 2.0).
        r, g, _ = comp.render(1.8)[18, 32]
        assert 30 < r < 220
        assert 30 < g < 200

    def test_cut_holds_outgoing(self):
        comp = _compositor(policy="cut")
        assert tuple(comp.render(1.9)[18, 32]) == RED
        assert tuple(comp.render(2.0)[18, 32]) == GREEN

    def test_cut_mid_window_is_outgoing_steady(self):
        comp = _compositor(policy="cut", images=[_gradient((48, 36), 40), _gradient((48, 36), 200)])
        placement = comp.timeline.locate(1.8)
        assert placement.in_transition
        current = comp._placement(0, placement.progress)
        incoming = comp._placement(1, 0.0)
        steady = comp.steady_frame(0, placement.progress)
        frame = transition_frame(placement.transition, 0.5, current, incoming, comp.paint, 64)
        np.testing.assert_array_equal(frame, steady)
        np.testing.assert_array_equal(comp.render(1.8), steady)

    def test_slide_moves_incoming_from_right(self):
        comp = _compositor(policy="slide")
        frame = comp.render(1.8)
        assert tuple(frame[18, 2]) == RED
        assert tuple(frame[18, 61]) == GREEN


class TestOverlaysAndEnvelope:
    def test_intro_fade_starts_black(self):
        comp = _compositor(include_intro_fade=True)
        assert comp.render(0.0).max() == 0

    def test_outro_fade_darkens(self):
        comp = _compositor(include_outro_fade=True)
        g = comp.render(3.9)[18, 32][1]
        assert g < GREEN[1]

    def test_caption_drawn(self):
        comp = _compositor(caption_display_mode="text_only", short_side=180)
        comp.captions = [CaptionEvent("c", 0, 4, "Hi")]
        plain = _compositor(short_side=180).render(1.0)
        captioned = comp.render(1.0)
        assert not np.array_equal(plain, captioned)

    def test_surface_reset_after_error(self):
        comp = _compositor(include_intro_fade=True)

        def boom(t):
            raise RuntimeError("broken")

        comp.base_frame = boom
        comp.surface.apply_envelope(0.2)
        with pytest.raises(RuntimeError):
            comp.render(1.0)
        assert comp.surface.alpha == 1.0
