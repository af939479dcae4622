"""
Frame Pacer / Adaptive Quality Controller.

Admission control for the drive loop plus a once-per-second quality loop:
- A tick is admitted only if at least ``1000 / target_rate`` ms passed since
  the last admitted tick
- Every second the admitted-frame counter becomes the measured rate
- Below 0.7x target: THROTTLED, scale factor x0.9 (floor 0.5)
- Above 1.2x target: NORMAL, scale factor x1.05 (ceiling 1.0)
"""

from __future__ import annotations

from typing import Optional, Tuple
from loguru import logger

from backdrop.core.colors import round_half_up
from backdrop.core.contracts import PacerState, PerformanceState


class FramePacer:
    """
    Decides per tick whether to run a processing cycle and adapts the
    working-resolution scale factor to the achieved rate.

    All times are in milliseconds on the caller's clock.
    """

    THROTTLE_BELOW = 0.7
    RECOVER_ABOVE = 1.2
    DECAY_FACTOR = 0.9
    RECOVERY_FACTOR = 1.05
    MIN_SCALE = 0.5
    MAX_SCALE = 1.0
    REPORT_INTERVAL_MS = 1000.0

    # Tolerance for clocks that tick at exactly the frame interval
    TIMING_EPSILON_MS = 1e-3

    def __init__(self, target_rate: float = 30.0):
        """
        Initialize frame pacer.

        Args:
            target_rate: Target processed frames per second
        """
        if target_rate <= 0:
            raise ValueError(f"Target rate must be > 0, got {target_rate}")

        self.target_rate = float(target_rate)
        self.frame_interval_ms = 1000.0 / self.target_rate

        self._last_admitted_ms: Optional[float] = None
        self._last_report_ms: Optional[float] = None
        self._frame_counter = 0

        self._measured_rate = 0.0
        self._scale_factor = self.MAX_SCALE
        self._state = PacerState.NORMAL

    def should_admit(self, now_ms: float) -> bool:
        """
        Decide whether this tick runs a cycle.

        Never blocks. The report window is evaluated first, independent of
        the admission outcome.

        Args:
            now_ms: Current time in milliseconds

        Returns:
            True if a cycle should run now
        """
        self.update_report(now_ms)

        if self._last_admitted_ms is not None:
            elapsed = now_ms - self._last_admitted_ms
            if elapsed + self.TIMING_EPSILON_MS < self.frame_interval_ms:
                return False

        self._last_admitted_ms = now_ms
        self._frame_counter += 1
        return True

    def update_report(self, now_ms: float) -> bool:
        """
        Close the one-second measurement window if it has elapsed.

        Args:
            now_ms: Current time in milliseconds

        Returns:
            True if a window was closed and quality re-evaluated
        """
        if self._last_report_ms is None:
            self._last_report_ms = now_ms
            return False

        if now_ms - self._last_report_ms < self.REPORT_INTERVAL_MS:
            return False

        self._measured_rate = float(self._frame_counter)
        self._frame_counter = 0
        self._last_report_ms = now_ms

        self._adjust_quality()
        return True

    def _adjust_quality(self):
        """Hysteresis step, evaluated once per report window."""
        previous_scale = self._scale_factor
        previous_state = self._state

        if self._measured_rate < self.target_rate * self.THROTTLE_BELOW:
            self._state = PacerState.THROTTLED
            self._scale_factor = max(self.MIN_SCALE, self._scale_factor * self.DECAY_FACTOR)
        elif self._measured_rate > self.target_rate * self.RECOVER_ABOVE:
            self._state = PacerState.NORMAL
            self._scale_factor = min(self.MAX_SCALE, self._scale_factor * self.RECOVERY_FACTOR)

        if self._state is not previous_state:
            if self._state is PacerState.THROTTLED:
                logger.warning(
                    f"Throttling: {self._measured_rate:.0f}fps < "
                    f"{self.THROTTLE_BELOW:.0%} of {self.target_rate:.0f}fps target"
                )
            else:
                logger.info(f"Throttling lifted at {self._measured_rate:.0f}fps")

        if self._scale_factor != previous_scale:
            logger.debug(
                f"Scale factor {previous_scale:.3f} -> {self._scale_factor:.3f} "
                f"({self._measured_rate:.0f}fps)"
            )

    def optimized_dimensions(self, width: int, height: int) -> Tuple[int, int]:
        """
        Working resolution for a source of ``width`` x ``height``.

        The source frame itself is never resized in place.
        """
        return (
            max(1, round_half_up(width * self._scale_factor)),
            max(1, round_half_up(height * self._scale_factor)),
        )

    def snapshot(self) -> PerformanceState:
        """Immutable view of the current performance state."""
        return PerformanceState(
            target_rate=self.target_rate,
            measured_rate=self._measured_rate,
            scale_factor=self._scale_factor,
            state=self._state,
        )

    @property
    def measured_rate(self) -> float:
        return self._measured_rate

    @property
    def scale_factor(self) -> float:
        return self._scale_factor

    @property
    def state(self) -> PacerState:
        return self._state

    @property
    def is_throttled(self) -> bool:
        return self._state is PacerState.THROTTLED
