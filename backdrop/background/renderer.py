"""
Background Renderer.

Produces the replacement background for the active compositing mode:
- solid: flat color
- gradient: two-stop linear gradient along the top-left/bottom-right diagonal
- image: uploaded picture resampled (bilinear) to the target size
- blur / original: no buffer, the live frame is its own background

Rendered buffers are cached per (mode, size) since the configuration changes
far less often than frames arrive.
"""

from __future__ import annotations

from typing import Optional, Tuple, assert_never
import numpy as np
from numpy.typing import NDArray
import cv2
from loguru import logger

from backdrop.core.colors import RGB
from backdrop.core.contracts import (
    CompositingMode,
    OriginalMode,
    BlurMode,
    GradientMode,
    SolidMode,
    ImageMode,
)


# Fill used in image mode while no picture has been uploaded
NEUTRAL_FILL: RGB = (0x1F, 0x29, 0x37)


def render_solid(color: RGB, width: int, height: int) -> NDArray[np.uint8]:
    """Fill an RGBA buffer with one opaque color."""
    buffer = np.empty((height, width, 4), dtype=np.uint8)
    buffer[..., :3] = color
    buffer[..., 3] = 255
    return buffer


def render_gradient(
    start: RGB,
    end: RGB,
    width: int,
    height: int,
) -> NDArray[np.uint8]:
    """
    Render a diagonal two-stop gradient.

    Each pixel is projected onto the axis from pixel (0, 0) to pixel
    (width - 1, height - 1); the projection t in [0, 1] interpolates
    linearly from ``start`` to ``end``, so the two corner pixels carry the
    exact stop colors.
    """
    axis_x = float(width - 1)
    axis_y = float(height - 1)
    length_sq = axis_x * axis_x + axis_y * axis_y

    if length_sq == 0:
        t = np.zeros((height, width), dtype=np.float32)
    else:
        xs = np.arange(width, dtype=np.float32)[np.newaxis, :]
        ys = np.arange(height, dtype=np.float32)[:, np.newaxis]
        t = (xs * axis_x + ys * axis_y) / length_sq

    start_arr = np.asarray(start, dtype=np.float32)
    end_arr = np.asarray(end, dtype=np.float32)
    colors = start_arr + (end_arr - start_arr) * t[..., np.newaxis]

    buffer = np.empty((height, width, 4), dtype=np.uint8)
    buffer[..., :3] = np.clip(np.floor(colors + 0.5), 0, 255)
    buffer[..., 3] = 255
    return buffer


def render_image(
    image: NDArray[np.uint8],
    width: int,
    height: int,
) -> NDArray[np.uint8]:
    """
    Resample an RGB or RGBA picture to the target size (bilinear).

    The result is always fully opaque.
    """
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2RGB)

    resized = cv2.resize(
        np.ascontiguousarray(image[..., :3]),
        (width, height),
        interpolation=cv2.INTER_LINEAR,
    )

    buffer = np.empty((height, width, 4), dtype=np.uint8)
    buffer[..., :3] = resized
    buffer[..., 3] = 255
    return buffer


class BackgroundRenderer:
    """
    Renders (and caches) background buffers for compositing modes.
    """

    def __init__(self):
        self._cache_key: Optional[Tuple] = None
        self._cache_buffer: Optional[NDArray[np.uint8]] = None
        # Keeps the cached image alive so its id cannot be reused
        self._cache_source: Optional[NDArray[np.uint8]] = None
        self._renders = 0

    def render(
        self,
        mode: CompositingMode,
        width: int,
        height: int,
    ) -> Optional[NDArray[np.uint8]]:
        """
        Get the background for ``mode`` at ``width`` x ``height``.

        Args:
            mode: Active compositing mode
            width: Target width
            height: Target height

        Returns:
            Read-only H x W x 4 buffer, or None for modes that reuse the frame
        """
        if isinstance(mode, (OriginalMode, BlurMode)):
            return None

        key = self._key_for(mode, width, height)
        if key == self._cache_key and self._cache_buffer is not None:
            return self._cache_buffer

        if isinstance(mode, SolidMode):
            buffer = render_solid(mode.color, width, height)
        elif isinstance(mode, GradientMode):
            start, end = mode.stops
            buffer = render_gradient(start, end, width, height)
        elif isinstance(mode, ImageMode):
            if mode.image is None:
                logger.debug("No background image uploaded, using neutral fill")
                buffer = render_solid(NEUTRAL_FILL, width, height)
            else:
                buffer = render_image(mode.image, width, height)
        else:
            assert_never(mode)

        buffer.flags.writeable = False
        self._cache_key = key
        self._cache_buffer = buffer
        self._cache_source = mode.image if isinstance(mode, ImageMode) else None
        self._renders += 1

        return buffer

    @staticmethod
    def _key_for(mode: CompositingMode, width: int, height: int) -> Tuple:
        if isinstance(mode, ImageMode):
            # Identity of the uploaded array; a new upload is a new array
            image_id = id(mode.image) if mode.image is not None else None
            return ("image", image_id, width, height)
        return (mode, width, height)

    def invalidate(self):
        """Drop the cached buffer."""
        self._cache_key = None
        self._cache_buffer = None
        self._cache_source = None

    @property
    def render_count(self) -> int:
        """Number of buffers rendered (cache misses)."""
        return self._renders
