"""
Mask and color buffer filters.

Responsibilities:
- Gaussian blur, dilation, erosion, edge smoothing
- Alpha blend and threshold cutout
- Resampling to the working resolution
- Scratch buffer reuse across cycles
"""

from .mask_filters import (
    gaussian_blur,
    dilate,
    erode,
    smooth_edges,
    blend_alpha,
    select_by_threshold,
    resize_mask,
    resize_buffer,
)
from .buffer_pool import BufferPool
