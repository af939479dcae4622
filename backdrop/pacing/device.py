"""
Device capability probe.

Picks a target rate and capture resolution the machine can sustain.
"""

from __future__ import annotations

import os
import platform
from typing import Optional, Tuple
from loguru import logger


LOW_END_MEMORY_GB = 4.0
LOW_END_TARGET_FPS = 24
DEFAULT_TARGET_FPS = 30
LOW_END_RESOLUTION = (640, 480)
DEFAULT_RESOLUTION = (1280, 720)


class DeviceCapabilities:
    """
    Static helpers describing the host device.
    """

    @staticmethod
    def physical_memory_gb() -> Optional[float]:
        """Total physical memory in GB, or None if it cannot be determined."""
        try:
            page_size = os.sysconf("SC_PAGE_SIZE")
            pages = os.sysconf("SC_PHYS_PAGES")
        except (AttributeError, ValueError, OSError):
            return None

        if page_size <= 0 or pages <= 0:
            return None

        return page_size * pages / (1024 ** 3)

    @staticmethod
    def is_arm_board() -> bool:
        """Single-board ARM machines (Raspberry Pi and similar)."""
        return platform.machine().lower() in ("armv6l", "armv7l")

    @classmethod
    def is_low_end_device(cls, memory_gb: Optional[float] = None) -> bool:
        """
        Check for a memory-constrained device.

        Args:
            memory_gb: Override for the detected physical memory

        Returns:
            True if the device has 4 GB or less, or is a 32-bit ARM board
        """
        if memory_gb is None:
            memory_gb = cls.physical_memory_gb()

        if memory_gb is None:
            return cls.is_arm_board()

        return memory_gb <= LOW_END_MEMORY_GB or cls.is_arm_board()

    @classmethod
    def optimal_target_fps(cls, memory_gb: Optional[float] = None) -> int:
        """Target processing rate: 24 on low-end devices, otherwise 30."""
        if cls.is_low_end_device(memory_gb):
            logger.info(f"Low-end device detected, targeting {LOW_END_TARGET_FPS}fps")
            return LOW_END_TARGET_FPS
        return DEFAULT_TARGET_FPS

    @classmethod
    def optimal_resolution(
        cls,
        width: int,
        height: int,
        memory_gb: Optional[float] = None,
    ) -> Tuple[int, int]:
        """
        Cap a requested capture resolution to what the device handles.

        Returns:
            (width, height) capped to 640x480 on low-end devices, else 1280x720
        """
        cap_w, cap_h = LOW_END_RESOLUTION if cls.is_low_end_device(memory_gb) else DEFAULT_RESOLUTION
        return (min(width, cap_w), min(height, cap_h))
