"""
Compositor.

Runs one processing cycle per admitted tick:

1. Collect the newest finished mask (masks older than the age limit are
   dropped) and request one for the current frame if none is outstanding
2. Without a mask: present the raw frame (never wait for the model)
3. Resample the mask to the working resolution chosen by the frame pacer
4. Dispatch on the compositing mode:
   - original: raw frame
   - blur: blurred frame wherever mask < 128, sharp frame elsewhere
   - gradient / solid / image: smoothed mask alpha-blends frame over background
5. Present the result and report the pacer's performance state

Failures inside a cycle degrade to passthrough; nothing here raises into the
drive loop.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, assert_never
import numpy as np
from numpy.typing import NDArray
from loguru import logger

from backdrop.core.contracts import (
    Frame,
    Mask,
    CompositingConfig,
    CompositingMode,
    OriginalMode,
    BlurMode,
    GradientMode,
    SolidMode,
    ImageMode,
    CycleOutput,
    PerformanceState,
    SegmenterStatus,
)
from backdrop.filters.mask_filters import (
    gaussian_blur,
    dilate,
    erode,
    smooth_edges,
    blend_alpha,
    select_by_threshold,
    resize_mask,
    resize_buffer,
)
from backdrop.filters.buffer_pool import BufferPool
from backdrop.background.renderer import BackgroundRenderer
from backdrop.pacing.frame_pacer import FramePacer
from backdrop.segmentation.adapter import SegmentationAdapter


DisplaySink = Callable[[NDArray[np.uint8]], None]
TelemetrySink = Callable[[PerformanceState], None]


class Compositor:
    """
    Per-cycle orchestration of mask, filters and background.

    Guarantees:
    - A mask is only composited against the frame it was computed for
    - Every cycle presents a buffer, raw or composited
    - Scratch buffers are reused across cycles
    """

    def __init__(
        self,
        pacer: FramePacer,
        adapter: Optional[SegmentationAdapter] = None,
        renderer: Optional[BackgroundRenderer] = None,
        display_sink: Optional[DisplaySink] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        mask_dilate_iterations: int = 0,
        mask_erode_iterations: int = 0,
        max_mask_age_ms: float = 250.0,
    ):
        """
        Initialize compositor.

        Args:
            pacer: Frame pacer providing the working resolution and rate
            adapter: Segmentation adapter (None = always passthrough)
            renderer: Background renderer
            display_sink: Receives every finished buffer
            telemetry_sink: Receives the performance state once per cycle
            mask_dilate_iterations: Grow the foreground before smoothing
            mask_erode_iterations: Shrink the foreground before smoothing
            max_mask_age_ms: Masks whose frame is older than this (relative
                to the live frame) are dropped instead of presented
        """
        self.pacer = pacer
        self.adapter = adapter
        self.renderer = renderer or BackgroundRenderer()
        self.display_sink = display_sink
        self.telemetry_sink = telemetry_sink
        self.mask_dilate_iterations = mask_dilate_iterations
        self.mask_erode_iterations = mask_erode_iterations
        self.max_mask_age_ms = max_mask_age_ms

        self._pool = BufferPool()

        # Mask state for the frame currently on screen
        self._current_mask: Optional[Mask] = None
        self._last_requested_frame_id: Optional[int] = None
        self._failure_logged = False

        # Stats
        self._cycles = 0
        self._composited = 0
        self._stale_masks = 0

    # ============================================================
    # CYCLE
    # ============================================================

    def run_cycle(self, frame: Frame, config: CompositingConfig) -> CycleOutput:
        """
        Process one frame and present the result.

        Args:
            frame: Latest frame from the video source
            config: Configuration snapshot for this cycle

        Returns:
            CycleOutput with the presented buffer
        """
        cycle_start = time.perf_counter()
        self._cycles += 1

        mode = config.active_mode()
        output = self._process(frame, mode)

        output.measured_rate = self.pacer.measured_rate
        output.latency_ms = (time.perf_counter() - cycle_start) * 1000

        self._present(output)
        return output

    def _process(self, frame: Frame, mode: CompositingMode) -> CycleOutput:
        if isinstance(mode, OriginalMode):
            return self._passthrough(frame, mode.name)

        mask = self._collect_mask(frame)

        if mask is None:
            return self._passthrough(frame, mode.name, self._missing_mask_reason())

        # A late mask is composited against the frame it was computed from
        source = self._source_frame(mask, frame)

        try:
            output_frame = self._composite(source, mask, mode)
        except Exception as e:
            logger.error(f"Compositing failed for frame {source.frame_id}: {e}")
            return self._passthrough(frame, mode.name, f"Compositing error: {e}")

        self._composited += 1
        return CycleOutput(
            frame_id=source.frame_id,
            timestamp_ms=source.timestamp_ms,
            output_frame=output_frame,
            mode=mode.name,
            mask_applied=True,
        )

    def _passthrough(
        self,
        frame: Frame,
        mode_name: str,
        reason: Optional[str] = None,
    ) -> CycleOutput:
        return CycleOutput(
            frame_id=frame.frame_id,
            timestamp_ms=frame.timestamp_ms,
            output_frame=frame.pixels,
            mode=mode_name,
            fallback_to_passthrough=reason is not None,
            fallback_reason=reason,
        )

    def _present(self, output: CycleOutput):
        if self.display_sink is not None:
            self.display_sink(output.output_frame)
        if self.telemetry_sink is not None:
            self.telemetry_sink(self.pacer.snapshot())

    # ============================================================
    # MASKS
    # ============================================================

    def _collect_mask(self, frame: Frame) -> Optional[Mask]:
        """
        Get the newest usable mask while ``frame`` is live; keep the model busy.

        The returned mask may belong to an earlier frame when the source
        advances faster than the model.
        """
        if self.adapter is None:
            return None

        status = self.adapter.status
        if status is SegmenterStatus.UNINITIALIZED:
            self.adapter.initialize()
            return None
        if status is not SegmenterStatus.READY:
            if status is SegmenterStatus.FAILED and not self._failure_logged:
                logger.warning("Segmentation unavailable, presenting passthrough")
                self._failure_logged = True
            return None

        self._failure_logged = False

        arrived = self.adapter.poll()
        if arrived is not None:
            if self._is_fresh(arrived, frame):
                self._current_mask = arrived
            else:
                self._stale_masks += 1
                self.adapter.discard(arrived)

        if self._current_mask is not None and self._is_expired(self._current_mask, frame):
            self._current_mask = None

        has_own_mask = (
            self._current_mask is not None
            and self._current_mask.frame_id == frame.frame_id
        )
        if not has_own_mask and self._last_requested_frame_id != frame.frame_id:
            if self.adapter.request_mask(frame) is not None:
                self._last_requested_frame_id = frame.frame_id

        return self._current_mask

    def _is_fresh(self, mask: Mask, frame: Frame) -> bool:
        """Whether a newly arrived mask should replace the current one."""
        if self._is_expired(mask, frame):
            return False
        current = self._current_mask
        return current is None or mask.frame_id > current.frame_id

    def _is_expired(self, mask: Mask, frame: Frame) -> bool:
        """Whether ``mask`` is too old to present while ``frame`` is live."""
        source = self._source_frame(mask, frame)
        if source is None:
            return True
        return frame.timestamp_ms - source.timestamp_ms > self.max_mask_age_ms

    @staticmethod
    def _source_frame(mask: Mask, frame: Frame) -> Optional[Frame]:
        """The frame ``mask`` was computed from, if it is still known."""
        if mask.frame is not None:
            return mask.frame
        if mask.frame_id == frame.frame_id:
            return frame
        return None

    def _missing_mask_reason(self) -> str:
        if self.adapter is None:
            return "No segmentation model"

        status = self.adapter.status
        if status is SegmenterStatus.FAILED:
            return "Segmentation model failed"
        if status is not SegmenterStatus.READY:
            return "Segmentation model loading"
        return "Mask pending"

    def _prepare_mask(self, mask: Mask, width: int, height: int) -> NDArray[np.uint8]:
        """Resample to the working resolution and apply morphology."""
        if mask.values.shape == (height, width):
            values = mask.values
        else:
            values = resize_mask(
                mask.values, width, height,
                out=self._pool.acquire("mask", (height, width)),
            )

        if self.mask_dilate_iterations > 0:
            values = dilate(values, iterations=self.mask_dilate_iterations)
        if self.mask_erode_iterations > 0:
            values = erode(values, iterations=self.mask_erode_iterations)

        return values

    # ============================================================
    # COMPOSITING
    # ============================================================

    def _composite(
        self,
        frame: Frame,
        mask: Mask,
        mode: CompositingMode,
    ) -> NDArray[np.uint8]:
        width, height = self.pacer.optimized_dimensions(frame.width, frame.height)

        if (width, height) == (frame.width, frame.height):
            working = frame.pixels
        else:
            working = resize_buffer(
                frame.pixels, width, height,
                out=self._pool.acquire("frame", (height, width, 4)),
            )

        mask_values = self._prepare_mask(mask, width, height)

        if isinstance(mode, OriginalMode):
            return frame.pixels
        elif isinstance(mode, BlurMode):
            return self._composite_blur(working, mask_values, mode)
        elif isinstance(mode, (GradientMode, SolidMode, ImageMode)):
            return self._composite_replacement(working, mask_values, mode)
        else:
            assert_never(mode)

    def _composite_blur(
        self,
        working: NDArray[np.uint8],
        mask_values: NDArray[np.uint8],
        mode: BlurMode,
    ) -> NDArray[np.uint8]:
        # Hard cutout at 128, no edge smoothing in this mode
        blurred = gaussian_blur(
            working,
            mode.blur_radius,
            out=self._pool.acquire("blurred", working.shape),
        )
        return select_by_threshold(working, blurred, mask_values)

    def _composite_replacement(
        self,
        working: NDArray[np.uint8],
        mask_values: NDArray[np.uint8],
        mode: CompositingMode,
    ) -> NDArray[np.uint8]:
        height, width = working.shape[:2]
        background = self.renderer.render(mode, width, height)

        smoothed = smooth_edges(
            mask_values,
            out=self._pool.acquire("smoothed", (height, width)),
        )
        return blend_alpha(working, background, smoothed)

    # ============================================================
    # LIFECYCLE / STATS
    # ============================================================

    def reset(self):
        """Forget per-stream state (after the video source restarts)."""
        self._current_mask = None
        self._last_requested_frame_id = None
        self._pool.clear()
        self.renderer.invalidate()

    @property
    def cycles(self) -> int:
        return self._cycles

    @property
    def composited_cycles(self) -> int:
        return self._composited

    @property
    def stale_masks(self) -> int:
        return self._stale_masks
