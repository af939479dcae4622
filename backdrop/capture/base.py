"""
Base class for video sources.

To add a new video source:
1. Inherit from VideoSource
2. Implement start(), stop() and current_frame()
3. Pass an instance to PipelineOrchestrator

The drive loop never pulls frames from the device itself: on every tick it
asks the source for its current frame, which may be the same frame as on the
previous tick when the display refreshes faster than the camera delivers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from backdrop.core.contracts import Frame


class VideoSource(ABC):
    """Abstract base class for video sources."""

    @abstractmethod
    def start(self) -> bool:
        """Acquire the device and start delivering frames.

        Returns:
            True if started successfully, False otherwise
        """

    @abstractmethod
    def stop(self) -> None:
        """Release the device. Safe to call more than once."""

    @abstractmethod
    def current_frame(self) -> Optional[Frame]:
        """Latest captured frame, or None before the first capture.

        Must not block.
        """

    @property
    def is_running(self) -> bool:
        return False
