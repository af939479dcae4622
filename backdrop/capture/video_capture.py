"""
Video Capture from a local camera.

Handles:
- Webcam acquisition through OpenCV
- Background grabbing so the drive loop never waits on the device
- BGR -> RGBA conversion and frame numbering
"""

from __future__ import annotations

import threading
import time
from typing import Optional, Tuple
import numpy as np
import cv2
from loguru import logger

from backdrop.capture.base import VideoSource
from backdrop.core.contracts import Frame


class VideoCapture(VideoSource):
    """
    Threaded camera source.

    Guarantees:
    - RGBA uint8 output
    - Monotonic frame ids, one per captured image
    - Thread-safe access to the latest frame
    """

    def __init__(
        self,
        device_index: int = 0,
        width: int = 1280,
        height: int = 720,
        fps: int = 30,
        buffer_frames: int = 1,
    ):
        """
        Initialize video capture.

        Args:
            device_index: Camera device index
            width: Requested capture width
            height: Requested capture height
            fps: Requested capture rate
            buffer_frames: Driver-side frame buffer (1 = lowest latency)
        """
        self.device_index = device_index
        self.width = width
        self.height = height
        self.fps = fps
        self.buffer_frames = buffer_frames

        # State
        self._capture: Optional[cv2.VideoCapture] = None
        self._is_running = False
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

        # Latest frame
        self._latest_frame: Optional[Frame] = None
        self._frame_count: int = 0

        # Performance tracking
        self._frame_times: list[float] = []
        self._actual_fps: float = 0.0

    def start(self) -> bool:
        """
        Open the camera and start the grabber thread.

        Returns:
            True if started successfully
        """
        if self._is_running:
            return True

        try:
            self._capture = cv2.VideoCapture(self.device_index)

            if not self._capture.isOpened():
                logger.error(f"Failed to open camera {self.device_index}")
                self._capture.release()
                self._capture = None
                return False

            # Configure capture
            self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
            self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
            self._capture.set(cv2.CAP_PROP_FPS, self.fps)
            self._capture.set(cv2.CAP_PROP_BUFFERSIZE, self.buffer_frames)

            actual_width, actual_height = self.frame_size
            actual_fps = self._capture.get(cv2.CAP_PROP_FPS)

            logger.info(
                f"Video capture started: {actual_width}x{actual_height} @ {actual_fps}fps"
            )

        except Exception as e:
            logger.error(f"Failed to start video capture: {e}")
            return False

        self._is_running = True
        self._thread = threading.Thread(
            target=self._grab_loop, name="video-capture", daemon=True
        )
        self._thread.start()
        return True

    def stop(self):
        """Stop the grabber and release the camera."""
        self._is_running = False

        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

        if self._capture is not None:
            self._capture.release()
            self._capture = None

        with self._lock:
            self._latest_frame = None

        logger.info("Video capture stopped")

    def _grab_loop(self):
        consecutive_failures = 0

        while self._is_running:
            capture = self._capture
            if capture is None:
                break

            ret, bgr = capture.read()

            if not ret or bgr is None:
                consecutive_failures += 1
                if consecutive_failures == 30:
                    logger.warning(f"Camera {self.device_index} is not delivering frames")
                time.sleep(0.01)
                continue

            consecutive_failures = 0
            self._store(bgr)

    def _store(self, bgr: np.ndarray):
        rgba = cv2.cvtColor(bgr, cv2.COLOR_BGR2RGBA)
        now = time.perf_counter()

        with self._lock:
            self._frame_count += 1
            self._latest_frame = Frame(
                frame_id=self._frame_count,
                timestamp_ms=now * 1000,
                pixels=rgba,
            )

            # Track frame timing
            self._frame_times.append(now)
            if len(self._frame_times) > 30:
                self._frame_times.pop(0)
            self._update_fps()

    def current_frame(self) -> Optional[Frame]:
        """
        Get the most recently captured frame.

        Returns:
            Latest Frame, or None if nothing has been captured yet
        """
        with self._lock:
            return self._latest_frame

    def _update_fps(self):
        """Calculate actual FPS from frame times."""
        if len(self._frame_times) < 2:
            return

        duration = self._frame_times[-1] - self._frame_times[0]
        if duration > 0:
            self._actual_fps = (len(self._frame_times) - 1) / duration

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def actual_fps(self) -> float:
        return self._actual_fps

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def frame_size(self) -> Tuple[int, int]:
        """Get actual frame size (width, height)."""
        if self._capture is not None:
            return (
                int(self._capture.get(cv2.CAP_PROP_FRAME_WIDTH)),
                int(self._capture.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            )
        return (self.width, self.height)
