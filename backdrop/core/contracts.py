"""
Core data contracts for the compositing pipeline.

All components must adhere to these contracts for:
- A single pixel layout (RGBA, uint8) across capture, filters and display
- Frame identity, so masks are never applied to the wrong frame
- Immutable configuration snapshots read once per cycle
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import ClassVar, Dict, Optional, Tuple, Union
import numpy as np
from numpy.typing import NDArray

from .colors import RGB, round_half_up, to_rgb
from .errors import ConfigurationError


# ============================================================
# ENUMERATIONS
# ============================================================

class PacerState(Enum):
    """Adaptive quality state of the frame pacer."""
    NORMAL = "normal"
    THROTTLED = "throttled"


class SegmenterStatus(Enum):
    """Lifecycle of the segmentation adapter."""
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


# Two-stop gradient presets: id -> (start color, end color)
GRADIENT_PRESETS: Dict[str, Tuple[RGB, RGB]] = {
    "purple-blue": ((0x63, 0x66, 0xF1), (0x3B, 0x82, 0xF6)),
    "sunset": ((0xF9, 0x73, 0x16), (0xEC, 0x48, 0x99)),
    "forest": ((0x05, 0x96, 0x69), (0x1E, 0x40, 0xAF)),
}

MODE_NAMES: Tuple[str, ...] = ("original", "blur", "gradient", "solid", "image")

MAX_BLUR_RADIUS = 20


# ============================================================
# PIXEL BUFFERS
# ============================================================

@dataclass(frozen=True)
class Frame:
    """
    One captured video image.

    Pixels are H x W x 4 (RGBA) uint8 and are never modified after capture;
    filters always produce new buffers.
    """
    frame_id: int
    timestamp_ms: float
    pixels: NDArray[np.uint8] = field(repr=False)

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Frame pixels must be H x W x 4, got {self.pixels.shape}")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Frame pixels must be uint8, got {self.pixels.dtype}")
        self.pixels.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class Mask:
    """
    Foreground confidence for one frame.

    0 = definitely background, 255 = definitely foreground. The resolution is
    the model's native one and may differ from the frame it belongs to.

    ``frame`` is the frame the mask was computed from, when known. A mask is
    only ever composited against that frame, even if the video source has
    moved on by the time the mask arrives.
    """
    frame_id: int
    values: NDArray[np.uint8] = field(repr=False)
    frame: Optional[Frame] = field(default=None, repr=False, compare=False)

    def __post_init__(self):
        if self.values.ndim != 2:
            raise ValueError(f"Mask must be H x W, got {self.values.shape}")
        if self.values.dtype != np.uint8:
            raise ValueError(f"Mask must be uint8, got {self.values.dtype}")
        if self.frame is not None and self.frame.frame_id != self.frame_id:
            raise ValueError(
                f"Mask for frame {self.frame_id} attached to frame {self.frame.frame_id}"
            )
        self.values.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.values.shape[1])

    @property
    def height(self) -> int:
        return int(self.values.shape[0])


# ============================================================
# COMPOSITING MODES
# ============================================================

@dataclass(frozen=True)
class OriginalMode:
    """Present the live video untouched."""
    name: ClassVar[str] = "original"


@dataclass(frozen=True)
class BlurMode:
    """Blur the background of the live video itself."""
    name: ClassVar[str] = "blur"
    blur_strength: int = 25  # 0-100

    @property
    def blur_radius(self) -> int:
        return round_half_up(self.blur_strength / 100 * MAX_BLUR_RADIUS)


@dataclass(frozen=True)
class GradientMode:
    """Replace the background with a two-stop diagonal gradient."""
    name: ClassVar[str] = "gradient"
    gradient_id: str = "purple-blue"

    @property
    def stops(self) -> Tuple[RGB, RGB]:
        return GRADIENT_PRESETS[self.gradient_id]


@dataclass(frozen=True)
class SolidMode:
    """Replace the background with a flat color."""
    name: ClassVar[str] = "solid"
    color: RGB = (0x1F, 0x29, 0x37)


@dataclass(frozen=True)
class ImageMode:
    """Replace the background with an uploaded picture (RGB or RGBA)."""
    name: ClassVar[str] = "image"
    image: Optional[NDArray[np.uint8]] = field(default=None, compare=False, repr=False)


CompositingMode = Union[OriginalMode, BlurMode, GradientMode, SolidMode, ImageMode]


@dataclass(frozen=True)
class CompositingConfig:
    """
    User-selected compositing configuration.

    Holds the parameters of every mode; only the active mode's parameters are
    read. Instances are immutable snapshots, so a reader never sees a
    half-applied update.
    """
    mode: str = "gradient"
    blur_strength: int = 25
    solid_color: RGB = (0x1F, 0x29, 0x37)
    gradient_id: str = "purple-blue"
    background_image: Optional[NDArray[np.uint8]] = field(
        default=None, compare=False, repr=False
    )

    def __post_init__(self):
        if self.mode not in MODE_NAMES:
            raise ConfigurationError(f"Unknown compositing mode: {self.mode!r}")
        if not 0 <= self.blur_strength <= 100:
            raise ConfigurationError(
                f"Blur strength must be within [0, 100], got {self.blur_strength}"
            )
        if self.gradient_id not in GRADIENT_PRESETS:
            raise ConfigurationError(f"Unknown gradient: {self.gradient_id!r}")
        object.__setattr__(self, "solid_color", to_rgb(self.solid_color))

    def active_mode(self) -> CompositingMode:
        """Build the mode variant for the active mode, carrying only its parameters."""
        if self.mode == "original":
            return OriginalMode()
        if self.mode == "blur":
            return BlurMode(blur_strength=self.blur_strength)
        if self.mode == "gradient":
            return GradientMode(gradient_id=self.gradient_id)
        if self.mode == "solid":
            return SolidMode(color=self.solid_color)
        return ImageMode(image=self.background_image)

    def with_changes(self, **changes) -> CompositingConfig:
        return replace(self, **changes)


# ============================================================
# PERFORMANCE / OUTPUT
# ============================================================

@dataclass(frozen=True)
class PerformanceState:
    """Snapshot of the frame pacer's adaptive quality state."""
    target_rate: float
    measured_rate: float = 0.0
    scale_factor: float = 1.0
    state: PacerState = PacerState.NORMAL

    @property
    def is_throttled(self) -> bool:
        return self.state is PacerState.THROTTLED


@dataclass
class CycleOutput:
    """
    Result of one compositor cycle.
    """
    frame_id: int
    timestamp_ms: float
    output_frame: NDArray[np.uint8]  # H x W x 4
    mode: str

    # Composited with a mask, or presented raw
    mask_applied: bool = False
    fallback_to_passthrough: bool = False
    fallback_reason: Optional[str] = None

    # Performance
    measured_rate: float = 0.0
    latency_ms: float = 0.0
