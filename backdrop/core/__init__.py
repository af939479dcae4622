"""
Core contracts shared by every pipeline component.

Per-cycle order (NEVER REORDER):
1. Admit the tick (frame pacer)
2. Take the current frame from the video source
3. Collect a finished mask for that frame, or issue a new request
4. Render the background for the active mode
5. Filter the mask and composite
6. Present and report the measured rate
"""

from .contracts import (
    Frame,
    Mask,
    CompositingConfig,
    CompositingMode,
    OriginalMode,
    BlurMode,
    GradientMode,
    SolidMode,
    ImageMode,
    PerformanceState,
    PacerState,
    SegmenterStatus,
    CycleOutput,
    GRADIENT_PRESETS,
)
from .errors import (
    BackdropError,
    VideoSourceUnavailableError,
    SegmentationModelError,
    ConfigurationError,
)
