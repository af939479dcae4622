"""
Pipeline Orchestrator.

The drive loop. On every tick of an external clock (display refresh or a
timer):

1. Ask the frame pacer whether to run a cycle (never blocks)
2. Take the video source's current frame
3. Run one compositor cycle on it with the current configuration snapshot
   (the compositor presents the buffer and reports telemetry)

Teardown stops the loop, releases the video source and shuts the
segmentation adapter down; a mask that resolves afterwards is dropped.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional
from loguru import logger

from backdrop.core.contracts import CycleOutput
from backdrop.core.errors import VideoSourceUnavailableError
from backdrop.capture.base import VideoSource
from backdrop.compositing.compositor import Compositor, DisplaySink, TelemetrySink
from backdrop.config.store import ConfigStore
from backdrop.pacing.frame_pacer import FramePacer
from backdrop.segmentation.adapter import SegmentationAdapter


Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Default drive-loop clock in milliseconds."""
    return time.perf_counter() * 1000


@dataclass
class PipelineConfig:
    """Configuration for the pipeline."""
    target_fps: float = 30.0

    # Drive loop sleep when a tick is not admitted
    idle_sleep_ms: float = 1.0

    # Latency budget for one cycle, warnings only
    cycle_budget_ms: float = 50.0

    # Mask refinement
    mask_dilate_iterations: int = 0
    mask_erode_iterations: int = 0

    # Oldest mask (relative to the current frame) still composited
    max_mask_age_ms: float = 250.0


class PipelineOrchestrator:
    """
    Main pipeline orchestrator.

    Guarantees:
    - At most one compositor cycle per tick
    - Fails safely to unmodified passthrough
    - ``stop()`` is synchronous and idempotent
    """

    def __init__(
        self,
        video_source: VideoSource,
        config_store: ConfigStore,
        adapter: Optional[SegmentationAdapter] = None,
        display_sink: Optional[DisplaySink] = None,
        telemetry_sink: Optional[TelemetrySink] = None,
        config: Optional[PipelineConfig] = None,
        clock: Clock = monotonic_ms,
    ):
        """
        Initialize pipeline orchestrator.

        Args:
            video_source: Source of the current frame
            config_store: Compositing configuration, read once per cycle
            adapter: Segmentation adapter (None = passthrough only)
            display_sink: Receives every presented buffer
            telemetry_sink: Receives the performance state once per cycle
            config: Pipeline configuration
            clock: Millisecond clock used for admission control
        """
        self.config = config or PipelineConfig()
        self.video_source = video_source
        self.config_store = config_store
        self.adapter = adapter
        self.clock = clock

        self.pacer = FramePacer(self.config.target_fps)
        self.compositor = Compositor(
            pacer=self.pacer,
            adapter=adapter,
            display_sink=display_sink,
            telemetry_sink=telemetry_sink,
            mask_dilate_iterations=self.config.mask_dilate_iterations,
            mask_erode_iterations=self.config.mask_erode_iterations,
            max_mask_age_ms=self.config.max_mask_age_ms,
        )

        self._running = False
        self._stop_event = threading.Event()
        self._last_output: Optional[CycleOutput] = None

        # Performance tracking
        self._ticks = 0
        self._budget_overruns = 0

        logger.info(f"Pipeline orchestrator initialized ({self.config.target_fps:.0f}fps target)")

    def start(self):
        """
        Acquire the video source and begin loading the model.

        Raises:
            VideoSourceUnavailableError: If the video source cannot be started
        """
        if self._running:
            return

        if not self.video_source.start():
            raise VideoSourceUnavailableError("Failed to start video source")

        if self.adapter is not None:
            self.adapter.initialize()

        self._stop_event.clear()
        self._running = True
        logger.info("Pipeline started")

    def stop(self):
        """Stop the loop, release the source and the model."""
        if not self._running:
            return

        self._running = False
        self._stop_event.set()

        self.video_source.stop()
        if self.adapter is not None:
            self.adapter.shutdown()
        self.compositor.reset()

        logger.info("Pipeline stopped")

    def tick(self, now_ms: Optional[float] = None) -> Optional[CycleOutput]:
        """
        Handle one clock tick.

        Args:
            now_ms: Tick time (default: the pipeline clock)

        Returns:
            CycleOutput if a cycle ran, None if the tick was not admitted or
            no frame is available yet
        """
        if not self._running:
            return None

        self._ticks += 1

        if now_ms is None:
            now_ms = self.clock()

        if not self.pacer.should_admit(now_ms):
            return None

        frame = self.video_source.current_frame()
        if frame is None:
            return None

        output = self.compositor.run_cycle(frame, self.config_store.snapshot())

        if output.latency_ms > self.config.cycle_budget_ms:
            self._budget_overruns += 1
            logger.debug(
                f"Cycle budget exceeded: {output.latency_ms:.1f}ms > "
                f"{self.config.cycle_budget_ms:.0f}ms"
            )

        self._last_output = output
        return output

    def run(
        self,
        on_output: Optional[Callable[[CycleOutput], bool]] = None,
    ):
        """
        Drive the pipeline until ``stop()`` is called.

        Args:
            on_output: Called after every cycle; returning False stops the loop
        """
        self.start()

        try:
            while self._running:
                output = self.tick()

                if output is not None and on_output is not None:
                    if on_output(output) is False:
                        break
                elif output is None:
                    self._stop_event.wait(self.config.idle_sleep_ms / 1000)

        except KeyboardInterrupt:
            logger.info("Interrupted by user")
        finally:
            self.stop()

    # ============================================================
    # STATE
    # ============================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_output(self) -> Optional[CycleOutput]:
        return self._last_output

    @property
    def ticks(self) -> int:
        return self._ticks

    @property
    def budget_overruns(self) -> int:
        return self._budget_overruns
