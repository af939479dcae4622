"""
Compositing configuration store.

Single owner of the user's compositing choices. Writers replace the whole
immutable CompositingConfig; the compositor reads one snapshot per cycle, so
a cycle never sees a half-applied change (last write wins, no locks).
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union
import numpy as np
from numpy.typing import NDArray
import cv2
from loguru import logger

from backdrop.core.colors import RGB
from backdrop.core.contracts import CompositingConfig, GRADIENT_PRESETS, MODE_NAMES
from backdrop.core.errors import ConfigurationError


class ConfigStore:
    """
    Holds the current CompositingConfig.

    Parameters of inactive modes are kept when the mode changes, so
    switching back restores the previous choice.
    """

    def __init__(self, initial: Optional[CompositingConfig] = None):
        self._config = initial or CompositingConfig()

    def snapshot(self) -> CompositingConfig:
        """Current configuration (immutable)."""
        return self._config

    def update(self, **changes) -> CompositingConfig:
        """
        Replace fields of the configuration.

        Raises:
            ConfigurationError: If the resulting configuration is invalid
        """
        config = self._config.with_changes(**changes)
        self._config = config
        return config

    # ------------------------------------------------------------
    # Setters
    # ------------------------------------------------------------

    def set_mode(self, mode: str) -> CompositingConfig:
        logger.info(f"Background mode: {mode}")
        return self.update(mode=mode)

    def set_blur_strength(self, strength: int) -> CompositingConfig:
        return self.update(blur_strength=int(strength))

    def set_solid_color(self, color: Union[str, RGB]) -> CompositingConfig:
        return self.update(solid_color=color)

    def set_gradient(self, gradient_id: str) -> CompositingConfig:
        return self.update(gradient_id=gradient_id)

    def set_background_image(self, image: Optional[NDArray[np.uint8]]) -> CompositingConfig:
        """Set (or clear, with None) the uploaded background picture (RGB/RGBA)."""
        if image is not None:
            if image.dtype != np.uint8 or image.ndim not in (2, 3):
                raise ConfigurationError(
                    f"Background image must be uint8 H x W (x C), got {image.dtype} {image.shape}"
                )
            image = image.copy()
            image.flags.writeable = False
        return self.update(background_image=image)

    def load_background_image(self, path: Union[str, Path]) -> CompositingConfig:
        """
        Decode a picture from disk and use it as the background.

        Raises:
            ConfigurationError: If the file cannot be decoded
        """
        bgr = cv2.imread(str(path), cv2.IMREAD_COLOR)
        if bgr is None:
            raise ConfigurationError(f"Could not read background image: {path}")

        logger.info(f"Background image loaded: {path} ({bgr.shape[1]}x{bgr.shape[0]})")
        return self.set_background_image(cv2.cvtColor(bgr, cv2.COLOR_BGR2RGB))

    # ------------------------------------------------------------
    # Keyboard helpers
    # ------------------------------------------------------------

    def cycle_gradient(self) -> CompositingConfig:
        """Switch to the next gradient preset."""
        ids = list(GRADIENT_PRESETS)
        current = ids.index(self._config.gradient_id)
        return self.set_gradient(ids[(current + 1) % len(ids)])

    def adjust_blur_strength(self, delta: int) -> CompositingConfig:
        """Change blur strength by ``delta``, clamped to [0, 100]."""
        strength = min(100, max(0, self._config.blur_strength + delta))
        return self.set_blur_strength(strength)

    @staticmethod
    def mode_names() -> tuple:
        return MODE_NAMES
