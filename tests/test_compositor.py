"""
Compositor Tests
================

Mode dispatch, passthrough fallbacks and mask/frame identity.
"""

import numpy as np
import pytest

from backdrop.background.renderer import render_gradient
from backdrop.compositing.compositor import Compositor
from backdrop.core.contracts import CompositingConfig, PerformanceState
from backdrop.filters.mask_filters import gaussian_blur
from backdrop.pacing.frame_pacer import FramePacer
from backdrop.segmentation.adapter import SegmentationAdapter

from conftest import (
    ArrayModel,
    BrokenLoadModel,
    ConstantModel,
    make_frame,
    make_pattern_frame,
)


def _ready_adapter(model, executor):
    adapter = SegmentationAdapter(model, executor=executor)
    adapter.initialize().result(timeout=1)
    return adapter


def _cycle_until_composited(compositor, frame, config, limit=3):
    for _ in range(limit):
        output = compositor.run_cycle(frame, config)
        if output.mask_applied:
            return output
    raise AssertionError("mask never applied")


class TestPassthrough:
    """Tests for cycles that present the raw frame."""

    def test_original_mode_never_segments(self, inline_executor, sink):
        """Original mode presents the frame without asking for a mask."""
        model = ConstantModel()
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(model, inline_executor),
            display_sink=sink.present,
        )
        frame = make_frame()
        output = compositor.run_cycle(frame, CompositingConfig(mode="original"))

        assert output.output_frame is frame.pixels
        assert not output.mask_applied
        assert not output.fallback_to_passthrough
        assert model.predictions == 0
        assert sink.buffers == [frame.pixels]

    def test_no_adapter(self):
        """Without a model every cycle is passthrough."""
        compositor = Compositor(FramePacer(30))
        frame = make_frame()
        output = compositor.run_cycle(frame, CompositingConfig(mode="blur"))
        assert output.fallback_to_passthrough
        assert output.fallback_reason == "No segmentation model"
        assert output.output_frame is frame.pixels

    def test_model_never_ready(self, manual_executor, sink):
        """A model stuck loading yields the untouched frame on every cycle."""
        adapter = SegmentationAdapter(ConstantModel(), executor=manual_executor)
        compositor = Compositor(FramePacer(30), adapter=adapter, display_sink=sink.present)

        frames = [make_frame(frame_id=i, color=(i, 2 * i, 3 * i)) for i in range(1, 21)]
        for frame in frames:
            output = compositor.run_cycle(frame, CompositingConfig(mode="gradient"))
            assert output.fallback_reason == "Segmentation model loading"

        assert len(sink.buffers) == 20
        for frame, buffer in zip(frames, sink.buffers):
            np.testing.assert_array_equal(buffer, frame.pixels)

    def test_failed_model(self, inline_executor):
        """A model that failed to load keeps the pipeline in passthrough."""
        adapter = _ready_adapter(BrokenLoadModel(), inline_executor)
        compositor = Compositor(FramePacer(30), adapter=adapter)
        frame = make_frame()
        for _ in range(3):
            output = compositor.run_cycle(frame, CompositingConfig(mode="solid"))
            assert output.fallback_reason == "Segmentation model failed"
            assert output.output_frame is frame.pixels

    def test_uninitialized_adapter_is_started(self, inline_executor):
        """The compositor starts loading a model nobody initialized."""
        adapter = SegmentationAdapter(ConstantModel(), executor=inline_executor)
        compositor = Compositor(FramePacer(30), adapter=adapter)
        output = compositor.run_cycle(make_frame(), CompositingConfig(mode="blur"))
        assert output.fallback_to_passthrough
        assert adapter.is_ready

    def test_compositing_error_falls_back(self, inline_executor):
        """An exception inside a mode presents the raw frame."""

        class BrokenRenderer:
            def render(self, mode, width, height):
                raise RuntimeError("out of memory")

            def invalidate(self):
                pass

        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(), inline_executor),
            renderer=BrokenRenderer(),
        )
        frame = make_frame()
        config = CompositingConfig(mode="solid")
        compositor.run_cycle(frame, config)
        output = compositor.run_cycle(frame, config)

        assert output.fallback_to_passthrough
        assert output.fallback_reason.startswith("Compositing error")
        assert output.output_frame is frame.pixels


class TestModes:
    """Tests for the compositing modes."""

    def test_blur_background_from_blurred_buffer(self, inline_executor):
        """Blur strength 50 uses radius 10; background pixels come from the blurred frame."""
        frame = make_pattern_frame(width=16, height=12)
        mask = np.full((12, 16), 100, dtype=np.uint8)
        mask[:, :4] = 255
        compositor = Compositor(FramePacer(30), adapter=_ready_adapter(ArrayModel(mask), inline_executor))

        output = _cycle_until_composited(compositor, frame, CompositingConfig(mode="blur", blur_strength=50))

        blurred = gaussian_blur(frame.pixels, 10)
        np.testing.assert_array_equal(output.output_frame[:, 4:], blurred[:, 4:])
        np.testing.assert_array_equal(output.output_frame[:, :4], frame.pixels[:, :4])
        assert not np.array_equal(blurred[6, 8], frame.pixels[6, 8])

    def test_solid_background_where_mask_empty(self, inline_executor):
        """Mask 0 everywhere shows only the solid color."""
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=0.0), inline_executor),
        )
        output = _cycle_until_composited(
            compositor, make_frame(), CompositingConfig(mode="solid", solid_color="#102030")
        )
        assert np.all(output.output_frame[..., :3] == (0x10, 0x20, 0x30))
        assert np.all(output.output_frame[..., 3] == 255)

    def test_foreground_kept_where_mask_full(self, inline_executor):
        """Mask 255 everywhere shows only the live frame."""
        frame = make_frame(color=(1, 2, 3))
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=1.0), inline_executor),
        )
        output = _cycle_until_composited(compositor, frame, CompositingConfig(mode="gradient"))
        np.testing.assert_array_equal(output.output_frame, frame.pixels)
        assert output.output_frame is not frame.pixels

    def test_gradient_background(self, inline_executor):
        """Mask 0 everywhere shows the selected gradient."""
        frame = make_frame(width=6, height=4)
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=0.0), inline_executor),
        )
        output = _cycle_until_composited(
            compositor, frame, CompositingConfig(mode="gradient", gradient_id="sunset")
        )
        expected = render_gradient((0xF9, 0x73, 0x16), (0xEC, 0x48, 0x99), 6, 4)
        np.testing.assert_array_equal(output.output_frame, expected)

    def test_mask_resampled_to_frame(self, inline_executor):
        """A mask at the model's resolution is resampled to the frame."""
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=0.0, width=3, height=2), inline_executor),
        )
        frame = make_frame(width=12, height=8)
        output = _cycle_until_composited(compositor, frame, CompositingConfig(mode="solid"))
        assert output.output_frame.shape == (8, 12, 4)

    def test_working_resolution_follows_scale(self, inline_executor):
        """Composited output uses the pacer's working resolution."""
        pacer = FramePacer(30)
        pacer._scale_factor = 0.5
        compositor = Compositor(pacer, adapter=_ready_adapter(ConstantModel(), inline_executor))
        frame = make_frame(width=16, height=12)

        first = compositor.run_cycle(frame, CompositingConfig(mode="solid"))
        assert first.output_frame.shape == (12, 16, 4)

        output = _cycle_until_composited(compositor, frame, CompositingConfig(mode="solid"))
        assert output.output_frame.shape == (6, 8, 4)

    def test_mode_switch_takes_effect_next_cycle(self, inline_executor):
        """Each cycle reads its own configuration snapshot."""
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=0.0), inline_executor),
        )
        frame = make_frame()
        _cycle_until_composited(compositor, frame, CompositingConfig(mode="solid", solid_color="#000000"))
        output = compositor.run_cycle(frame, CompositingConfig(mode="solid", solid_color="#ffffff"))
        assert output.mask_applied
        assert np.all(output.output_frame[..., :3] == 255)


class TestMaskIdentity:
    """Tests for mask/frame pairing."""

    def test_expired_mask_discarded(self, manual_executor):
        """A mask older than the age limit is dropped, not presented."""
        adapter = SegmentationAdapter(ConstantModel(value=0.0), executor=manual_executor)
        adapter.initialize()
        manual_executor.run_all()
        compositor = Compositor(FramePacer(30), adapter=adapter, max_mask_age_ms=250.0)
        config = CompositingConfig(mode="solid")

        first = make_frame(frame_id=1)
        compositor.run_cycle(first, config)  # request for frame 1 queued

        second = make_frame(frame_id=2, timestamp_ms=10_000.0)
        manual_executor.run_all()  # frame 1's mask arrives long after
        output = compositor.run_cycle(second, config)

        assert not output.mask_applied
        assert output.output_frame is second.pixels
        assert compositor.stale_masks == 1
        assert adapter.masks_dropped == 1

        manual_executor.run_all()
        output = compositor.run_cycle(second, config)
        assert output.mask_applied
        assert output.frame_id == 2

    def test_late_mask_composited_against_its_frame(self, manual_executor):
        """A mask that arrives after the source moved on is paired with its own frame."""
        adapter = SegmentationAdapter(ConstantModel(value=1.0), executor=manual_executor)
        adapter.initialize()
        manual_executor.run_all()
        compositor = Compositor(FramePacer(30), adapter=adapter)
        config = CompositingConfig(mode="solid", solid_color="#ffffff")

        first = make_frame(frame_id=1, color=(1, 2, 3))
        compositor.run_cycle(first, config)

        second = make_frame(frame_id=2, color=(9, 9, 9))
        manual_executor.run_all()
        output = compositor.run_cycle(second, config)

        assert output.mask_applied
        assert output.frame_id == 1
        assert output.timestamp_ms == first.timestamp_ms
        np.testing.assert_array_equal(output.output_frame, first.pixels)
        assert compositor.stale_masks == 0
        assert adapter.has_pending_request  # frame 2 requested

    def test_source_advancing_every_cycle(self, inline_executor):
        """A new frame id on every cycle still gets masks applied."""
        frames = [make_frame(frame_id=i, color=(i, 2 * i, 3 * i)) for i in range(1, 21)]
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=1.0), inline_executor),
        )
        config = CompositingConfig(mode="solid")

        outputs = [compositor.run_cycle(frame, config) for frame in frames]

        assert not outputs[0].mask_applied
        assert all(output.mask_applied for output in outputs[1:])
        assert compositor.composited_cycles == 19
        assert compositor.stale_masks == 0
        for previous, output in zip(frames, outputs[1:]):
            assert output.frame_id == previous.frame_id
            np.testing.assert_array_equal(output.output_frame, previous.pixels)

    def test_older_mask_never_replaces_newer(self, inline_executor):
        """A mask for an earlier frame than the one held is dropped."""
        adapter = _ready_adapter(ConstantModel(value=1.0), inline_executor)
        compositor = Compositor(FramePacer(30), adapter=adapter)
        config = CompositingConfig(mode="blur")

        frame = make_frame(frame_id=5)
        _cycle_until_composited(compositor, frame, config)

        adapter.request_mask(make_frame(frame_id=4))
        output = compositor.run_cycle(frame, config)

        assert output.mask_applied
        assert output.frame_id == 5
        assert compositor.stale_masks == 1

    def test_one_request_per_frame(self, inline_executor):
        """Repeated cycles on the same frame reuse its mask."""
        model = ConstantModel()
        compositor = Compositor(FramePacer(30), adapter=_ready_adapter(model, inline_executor))
        frame = make_frame()
        for _ in range(5):
            compositor.run_cycle(frame, CompositingConfig(mode="blur"))
        assert model.predictions == 1
        assert compositor.composited_cycles == 4

    def test_mask_dilation_applied(self, inline_executor):
        """Dilation grows the foreground before compositing."""
        mask = np.zeros((5, 5), dtype=np.uint8)
        mask[2, 2] = 255
        frame = make_pattern_frame(width=5, height=5)
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ArrayModel(mask), inline_executor),
            mask_dilate_iterations=1,
        )
        output = _cycle_until_composited(
            compositor, frame, CompositingConfig(mode="blur", blur_strength=50)
        )

        blurred = gaussian_blur(frame.pixels, 10)
        np.testing.assert_array_equal(output.output_frame[1:4, 1:4], frame.pixels[1:4, 1:4])
        np.testing.assert_array_equal(output.output_frame[0, 0], blurred[0, 0])
        assert not np.array_equal(blurred[1, 1], frame.pixels[1, 1])


class TestTelemetry:
    """Tests for presentation and reporting."""

    def test_every_cycle_presents_and_reports(self, inline_executor, sink):
        """Each cycle sends one buffer and one performance snapshot."""
        compositor = Compositor(
            FramePacer(24),
            adapter=_ready_adapter(ConstantModel(), inline_executor),
            display_sink=sink.present,
            telemetry_sink=sink.report,
        )
        frame = make_frame()
        for _ in range(3):
            compositor.run_cycle(frame, CompositingConfig(mode="blur"))

        assert len(sink.buffers) == 3
        assert len(sink.reports) == 3
        assert all(isinstance(r, PerformanceState) for r in sink.reports)
        assert sink.reports[-1].target_rate == 24

    def test_cycle_output_timing(self):
        """Outputs carry the measured rate and a non-negative latency."""
        compositor = Compositor(FramePacer(30))
        output = compositor.run_cycle(make_frame(), CompositingConfig())
        assert output.measured_rate == 0.0
        assert output.latency_ms >= 0.0

    @pytest.mark.parametrize("mode", ["blur", "gradient", "solid", "image"])
    def test_every_mode_composites(self, inline_executor, mode):
        """All replacement and blur modes produce a frame-sized buffer."""
        compositor = Compositor(
            FramePacer(30),
            adapter=_ready_adapter(ConstantModel(value=0.5), inline_executor),
        )
        frame = make_pattern_frame()
        output = _cycle_until_composited(compositor, frame, CompositingConfig(mode=mode))
        assert output.output_frame.shape == frame.pixels.shape
        assert output.mode == mode
