"""
Mask Filter Library.

Pure pixel-array operations used by the compositor:
- Separable Gaussian blur (masks and RGBA color buffers)
- Dilation / erosion over a square neighborhood
- Edge smoothing for sub-pixel alpha at the foreground boundary
- Alpha-weighted blend and hard-threshold selection of two color buffers
- Resampling of masks and color buffers

Every operation clamps at the image border (replicates the nearest in-bounds
pixel) so edges are never darkened, and never mutates its inputs. Functions
that accept ``out`` write their result into that buffer instead of
allocating a new one.
"""

from __future__ import annotations

from typing import Optional
import numpy as np
from numpy.typing import NDArray
import cv2


EDGE_SMOOTHING_RADIUS = 2
EDGE_SMOOTHING_SIGMA = 1.5
FOREGROUND_THRESHOLD = 128


def gaussian_kernel(radius: int, sigma: Optional[float] = None) -> NDArray[np.float32]:
    """
    Build a normalized 1-D Gaussian kernel of length ``2 * radius + 1``.

    Args:
        radius: Kernel half-width in pixels
        sigma: Standard deviation (default ``radius / 2.5``)

    Returns:
        Kernel values ``exp(-x^2 / (2 sigma^2))`` summing to 1
    """
    if radius < 0:
        raise ValueError(f"Blur radius must be >= 0, got {radius}")

    if radius == 0:
        return np.ones(1, dtype=np.float32)

    if sigma is None:
        sigma = radius / 2.5
    if sigma <= 0:
        raise ValueError(f"Blur sigma must be > 0, got {sigma}")

    x = np.arange(-radius, radius + 1, dtype=np.float64)
    kernel = np.exp(-(x * x) / (2.0 * sigma * sigma))
    kernel /= kernel.sum()

    return kernel.astype(np.float32)


def _to_uint8(values: NDArray[np.float32], out: Optional[NDArray[np.uint8]] = None) -> NDArray[np.uint8]:
    """Round and clamp float values into [0, 255]."""
    rounded = np.clip(np.rint(values), 0, 255)
    if out is None:
        return rounded.astype(np.uint8)
    out[...] = rounded
    return out


def gaussian_blur(
    buffer: NDArray[np.uint8],
    radius: int,
    sigma: Optional[float] = None,
    out: Optional[NDArray[np.uint8]] = None,
) -> NDArray[np.uint8]:
    """
    Two-pass separable Gaussian blur (horizontal, then vertical).

    Works on single-channel masks (H x W) and on color buffers (H x W x 3 or
    H x W x 4). The alpha channel of an RGBA buffer is passed through
    unfiltered.

    Args:
        buffer: Input buffer, uint8
        radius: Kernel half-width in pixels (0 returns a copy)
        sigma: Standard deviation (default ``radius / 2.5``)
        out: Optional destination with the same shape as ``buffer``

    Returns:
        Blurred buffer
    """
    if out is not None and out.shape != buffer.shape:
        raise ValueError(f"Output shape {out.shape} does not match input {buffer.shape}")

    has_alpha = buffer.ndim == 3 and buffer.shape[2] == 4
    channels = buffer[..., :3] if has_alpha else buffer

    if radius == 0:
        if out is None:
            return buffer.copy()
        out[...] = buffer
        return out

    kernel = gaussian_kernel(radius, sigma)

    # Float accumulation, rounded once at the end
    filtered = cv2.sepFilter2D(
        np.ascontiguousarray(channels, dtype=np.float32),
        cv2.CV_32F,
        kernel,
        kernel,
        borderType=cv2.BORDER_REPLICATE,
    )

    if out is None:
        out = np.empty_like(buffer)

    if has_alpha:
        _to_uint8(filtered, out[..., :3])
        out[..., 3] = buffer[..., 3]
    else:
        _to_uint8(filtered.reshape(buffer.shape), out)

    return out


def _square_kernel(radius: int) -> NDArray[np.uint8]:
    size = 2 * radius + 1
    return np.ones((size, size), dtype=np.uint8)


def dilate(
    mask: NDArray[np.uint8],
    radius: int = 1,
    iterations: int = 1,
) -> NDArray[np.uint8]:
    """
    Grow the foreground: iterative max filter over a square neighborhood.

    Args:
        mask: Single-channel mask
        radius: Neighborhood half-width
        iterations: Number of passes

    Returns:
        Dilated mask
    """
    if radius <= 0 or iterations <= 0:
        return mask.copy()

    return cv2.dilate(
        mask,
        _square_kernel(radius),
        iterations=iterations,
        borderType=cv2.BORDER_REPLICATE,
    )


def erode(
    mask: NDArray[np.uint8],
    radius: int = 1,
    iterations: int = 1,
) -> NDArray[np.uint8]:
    """
    Shrink the foreground: iterative min filter over a square neighborhood.

    Args:
        mask: Single-channel mask
        radius: Neighborhood half-width
        iterations: Number of passes

    Returns:
        Eroded mask
    """
    if radius <= 0 or iterations <= 0:
        return mask.copy()

    return cv2.erode(
        mask,
        _square_kernel(radius),
        iterations=iterations,
        borderType=cv2.BORDER_REPLICATE,
    )


def smooth_edges(
    mask: NDArray[np.uint8],
    out: Optional[NDArray[np.uint8]] = None,
) -> NDArray[np.uint8]:
    """Soften the foreground/background boundary into a short alpha ramp."""
    return gaussian_blur(mask, EDGE_SMOOTHING_RADIUS, EDGE_SMOOTHING_SIGMA, out=out)


def blend_alpha(
    foreground: NDArray[np.uint8],
    background: NDArray[np.uint8],
    mask: NDArray[np.uint8],
    out: Optional[NDArray[np.uint8]] = None,
) -> NDArray[np.uint8]:
    """
    Alpha-blend two color buffers with a mask.

    Per color channel: ``out = fg * a + bg * (1 - a)`` with ``a = mask / 255``.
    The result keeps the foreground's own alpha channel.

    Args:
        foreground: H x W x 4 (or x 3) buffer shown where the mask is 255
        background: Buffer of the same height/width shown where the mask is 0
        mask: H x W confidence mask
        out: Optional destination shaped like ``foreground``

    Returns:
        Blended buffer
    """
    if foreground.shape[:2] != background.shape[:2] or foreground.shape[:2] != mask.shape:
        raise ValueError(
            f"Shape mismatch: fg {foreground.shape}, bg {background.shape}, mask {mask.shape}"
        )

    alpha = (mask.astype(np.float32) / 255.0)[..., np.newaxis]
    fg = foreground[..., :3].astype(np.float32)
    bg = background[..., :3].astype(np.float32)
    blended = fg * alpha + bg * (1.0 - alpha)

    if out is None:
        out = np.empty_like(foreground)

    _to_uint8(blended, out[..., :3])
    if foreground.shape[2] == 4:
        out[..., 3] = foreground[..., 3]

    return out


def select_by_threshold(
    foreground: NDArray[np.uint8],
    background: NDArray[np.uint8],
    mask: NDArray[np.uint8],
    threshold: int = FOREGROUND_THRESHOLD,
    out: Optional[NDArray[np.uint8]] = None,
) -> NDArray[np.uint8]:
    """
    Hard cutout: background color where ``mask < threshold``, foreground elsewhere.

    Alpha is always taken from the foreground.
    """
    if foreground.shape != background.shape or foreground.shape[:2] != mask.shape:
        raise ValueError(
            f"Shape mismatch: fg {foreground.shape}, bg {background.shape}, mask {mask.shape}"
        )

    if out is None:
        out = np.empty_like(foreground)

    is_background = (mask < threshold)[..., np.newaxis]
    np.copyto(out, foreground)
    np.copyto(out[..., :3], background[..., :3], where=is_background)

    return out


def resize_mask(
    mask: NDArray[np.uint8],
    width: int,
    height: int,
    out: Optional[NDArray[np.uint8]] = None,
) -> NDArray[np.uint8]:
    """
    Resample a mask to ``width`` x ``height`` (bilinear).

    Returns the input unchanged when it already has the requested size.
    """
    if mask.shape == (height, width):
        return mask

    if out is not None:
        return cv2.resize(mask, (width, height), dst=out, interpolation=cv2.INTER_LINEAR)
    return cv2.resize(mask, (width, height), interpolation=cv2.INTER_LINEAR)


def resize_buffer(
    buffer: NDArray[np.uint8],
    width: int,
    height: int,
    out: Optional[NDArray[np.uint8]] = None,
) -> NDArray[np.uint8]:
    """Resample a color buffer to ``width`` x ``height`` (bilinear)."""
    if buffer.shape[:2] == (height, width):
        return buffer

    if out is not None:
        return cv2.resize(buffer, (width, height), dst=out, interpolation=cv2.INTER_LINEAR)
    return cv2.resize(buffer, (width, height), interpolation=cv2.INTER_LINEAR)
