"""
Scratch buffer pool.

Per-cycle intermediates (blurred copies, resampled and smoothed masks,
downscaled frames) are reused across cycles instead of being allocated on
every tick. A buffer is reallocated only when the requested shape or dtype
changes, e.g. after the frame pacer adjusts the working resolution.
"""

from __future__ import annotations

from typing import Dict, Tuple
import numpy as np
from numpy.typing import NDArray
from loguru import logger


class BufferPool:
    """
    Named, reusable scratch buffers.

    Buffers handed out by the pool are only valid until the next ``acquire``
    with the same name, so they must never escape a compositor cycle.
    """

    def __init__(self):
        self._buffers: Dict[str, NDArray] = {}
        self._allocations = 0

    def acquire(
        self,
        name: str,
        shape: Tuple[int, ...],
        dtype: np.dtype = np.uint8,
    ) -> NDArray:
        """
        Get the scratch buffer registered under ``name``.

        Args:
            name: Buffer slot name
            shape: Required shape
            dtype: Required dtype

        Returns:
            Buffer with undefined contents
        """
        buffer = self._buffers.get(name)

        if buffer is None or buffer.shape != tuple(shape) or buffer.dtype != np.dtype(dtype):
            buffer = np.empty(shape, dtype=dtype)
            self._buffers[name] = buffer
            self._allocations += 1
            logger.debug(f"Scratch buffer '{name}' allocated: {shape} {np.dtype(dtype)}")

        return buffer

    def clear(self):
        """Release all buffers."""
        self._buffers.clear()

    @property
    def allocations(self) -> int:
        """Total number of allocations since creation."""
        return self._allocations

    def __len__(self) -> int:
        return len(self._buffers)
