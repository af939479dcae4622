#!/usr/bin/env python3
"""
Live Backdrop

Real-time background blur and replacement for a local camera.

Usage:
    python main.py [--config CONFIG_PATH] [--device DEVICE_INDEX] [--mode MODE]

Keyboard Controls:
    1-5   - Mode: original, blur, gradient, solid, image
    G     - Next gradient preset
    + / - - Blur strength up / down
    C     - Compare: show the unprocessed camera image
    M     - Toggle mirrored display
    Q/ESC - Quit
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Optional

import cv2
import numpy as np
from loguru import logger

from backdrop.capture.video_capture import VideoCapture
from backdrop.config.settings import AppSettings
from backdrop.config.store import ConfigStore
from backdrop.core.contracts import CycleOutput, MODE_NAMES, PerformanceState
from backdrop.core.errors import BackdropError, VideoSourceUnavailableError
from backdrop.pacing.device import DeviceCapabilities
from backdrop.pipeline.orchestrator import PipelineOrchestrator, PipelineConfig
from backdrop.segmentation.adapter import SegmentationAdapter
from backdrop.segmentation.selfie_model import SelfieSegmentationModel


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()  # Remove default handler

    # Console output with colors
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    # File output
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )


# ============================================================
# OUTPUT RENDERER
# ============================================================

class OutputRenderer:
    """Display sink: shows presented buffers in an OpenCV window."""

    def __init__(
        self,
        window_name: str = "Live Backdrop",
        mirror: bool = True,
        show_stats: bool = True,
        headless: bool = False,
    ):
        self.window_name = window_name
        self.mirror = mirror
        self.show_stats = show_stats
        self.headless = headless
        self.compare = False

        self._latest: Optional[np.ndarray] = None
        self._performance: Optional[PerformanceState] = None

        if not headless:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)

    def present(self, buffer: np.ndarray):
        """Display sink callback."""
        self._latest = buffer

    def update_performance(self, performance: PerformanceState):
        """Telemetry sink callback."""
        self._performance = performance

    def render(self, raw_frame: Optional[np.ndarray] = None, mode: str = ""):
        """Show the latest buffer (or the raw frame when comparing)."""
        if self.headless:
            return

        source = raw_frame if self.compare and raw_frame is not None else self._latest
        if source is None:
            return

        display_frame = cv2.cvtColor(source, cv2.COLOR_RGBA2BGR)
        if self.mirror:
            display_frame = cv2.flip(display_frame, 1)

        if self.show_stats:
            self._draw_info_overlay(display_frame, mode)

        cv2.imshow(self.window_name, display_frame)

    def _draw_info_overlay(self, frame: np.ndarray, mode: str):
        """Draw performance information on the frame."""
        h = frame.shape[0]

        overlay = frame.copy()
        cv2.rectangle(overlay, (10, 10), (260, 100), (0, 0, 0), -1)
        cv2.addWeighted(overlay, 0.6, frame, 0.4, 0, frame)

        perf = self._performance
        fps = perf.measured_rate if perf else 0.0

        # Same bands as the original performance panel
        if fps >= 50:
            color = (0, 255, 0)
        elif fps >= 30:
            color = (0, 255, 255)
        else:
            color = (0, 0, 255)

        cv2.putText(
            frame, f"FPS: {fps:.0f}", (20, 35),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 1
        )
        if perf is not None:
            cv2.putText(
                frame, f"Scale: {perf.scale_factor:.2f}", (20, 55),
                cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1
            )
            if perf.is_throttled:
                cv2.putText(
                    frame, "THROTTLED", (150, 55),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, (0, 0, 255), 1
                )

        label = "ORIGINAL (compare)" if self.compare else mode.upper()
        cv2.putText(
            frame, f"Mode: {label}", (20, 80),
            cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 200, 100), 1
        )

        help_text = "1-5:Mode  G:Gradient  +/-:Blur  C:Compare  M:Mirror  Q:Quit"
        cv2.putText(
            frame, help_text, (10, h - 10),
            cv2.FONT_HERSHEY_SIMPLEX, 0.5, (200, 200, 200), 1
        )

    def close(self):
        """Close the renderer."""
        if not self.headless:
            cv2.destroyAllWindows()


# ============================================================
# MAIN APPLICATION
# ============================================================

class LiveBackdropApp:
    """Main application class."""

    def __init__(self, settings: AppSettings):
        self.settings = settings

        target_fps = settings.pacing.target_fps or DeviceCapabilities.optimal_target_fps()
        width, height = DeviceCapabilities.optimal_resolution(
            settings.video.width, settings.video.height
        )

        self.config_store = ConfigStore(settings.compositing.to_config())
        if settings.compositing.background_image:
            self.config_store.load_background_image(settings.compositing.background_image)

        self.video_source = VideoCapture(
            device_index=settings.video.device_index,
            width=width,
            height=height,
            fps=settings.video.fps,
        )

        self.adapter = None
        if settings.segmentation.enabled:
            self.adapter = SegmentationAdapter(
                SelfieSegmentationModel(
                    model_selection=settings.segmentation.model_selection,
                    input_width=settings.segmentation.input_width,
                )
            )

        self.renderer = OutputRenderer(
            window_name=settings.display.window_name,
            mirror=settings.display.mirror,
            show_stats=settings.display.show_stats,
            headless=settings.display.headless,
        )

        self.pipeline = PipelineOrchestrator(
            video_source=self.video_source,
            config_store=self.config_store,
            adapter=self.adapter,
            display_sink=self.renderer.present,
            telemetry_sink=self.renderer.update_performance,
            config=PipelineConfig(
                target_fps=target_fps,
                idle_sleep_ms=settings.pacing.idle_sleep_ms,
                mask_dilate_iterations=settings.compositing.mask_dilate_iterations,
                mask_erode_iterations=settings.compositing.mask_erode_iterations,
                max_mask_age_ms=settings.compositing.max_mask_age_ms,
            ),
        )

    def _on_output(self, output: CycleOutput) -> bool:
        """Show the cycle's output and handle keys. False quits."""
        raw = None
        if self.renderer.compare:
            frame = self.video_source.current_frame()
            raw = frame.pixels if frame is not None else None

        self.renderer.render(raw, output.mode)

        if self.renderer.headless:
            return True

        key = cv2.waitKey(1) & 0xFF
        return self.handle_key(key)

    def handle_key(self, key: int) -> bool:
        """Apply a keyboard command. Returns False to quit."""
        if key in (ord('q'), 27):
            return False

        try:
            if ord('1') <= key <= ord('5'):
                self.config_store.set_mode(MODE_NAMES[key - ord('1')])
            elif key == ord('g'):
                self.config_store.cycle_gradient()
            elif key in (ord('+'), ord('=')):
                self.config_store.adjust_blur_strength(5)
            elif key == ord('-'):
                self.config_store.adjust_blur_strength(-5)
            elif key == ord('c'):
                self.renderer.compare = not self.renderer.compare
            elif key == ord('m'):
                self.renderer.mirror = not self.renderer.mirror
        except BackdropError as e:
            logger.warning(f"Ignoring key: {e}")

        return True

    def run(self) -> int:
        """Run the main application loop."""
        logger.info("Starting Live Backdrop")
        logger.info("Press Q to quit, 1-5 to switch background mode")

        try:
            self.pipeline.run(on_output=self._on_output)
        except VideoSourceUnavailableError as e:
            logger.error(f"{e}: camera {self.settings.video.device_index}")
            return 1
        finally:
            self.renderer.close()
            logger.info("Live Backdrop stopped")

        return 0


# ============================================================
# ENTRY POINT
# ============================================================

def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Real-time background blur and replacement",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--device", "-d",
        type=int,
        default=None,
        help="Video device index (default: from settings)",
    )

    parser.add_argument(
        "--mode",
        type=str,
        default=None,
        choices=list(MODE_NAMES),
        help="Initial background mode",
    )

    parser.add_argument(
        "--image",
        type=str,
        default=None,
        help="Background image for image mode",
    )

    parser.add_argument(
        "--target-fps",
        type=int,
        default=None,
        help="Target processing rate (default: from device capabilities)",
    )

    parser.add_argument(
        "--headless",
        action="store_true",
        help="Run without a display window",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default="logs/live_backdrop.log",
        help="Log file path (default: logs/live_backdrop.log)",
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging(args.log_level, args.log_file)

    try:
        settings = AppSettings.load(args.config)
    except BackdropError as e:
        logger.error(str(e))
        return 2

    if args.device is not None:
        settings.video.device_index = args.device
    if args.mode is not None:
        settings.compositing.mode = args.mode
    if args.image is not None:
        settings.compositing.background_image = args.image
    if args.target_fps is not None:
        settings.pacing.target_fps = args.target_fps
    if args.headless:
        settings.display.headless = True

    try:
        app = LiveBackdropApp(settings)
    except BackdropError as e:
        logger.error(str(e))
        return 2

    return app.run()


if __name__ == "__main__":
    sys.exit(main())
