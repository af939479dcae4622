"""
Person segmentation using MediaPipe Selfie Segmentation.

Produces a per-pixel person confidence at the model's native resolution;
the compositor resamples it to the working resolution.
"""

from __future__ import annotations

from typing import Optional
import numpy as np
from numpy.typing import NDArray
import cv2
from loguru import logger

try:
    import mediapipe as mp
    MEDIAPIPE_AVAILABLE = True
except ImportError:
    MEDIAPIPE_AVAILABLE = False
    logger.warning("MediaPipe not available")

from backdrop.core.errors import SegmentationModelError
from backdrop.segmentation.adapter import SegmentationModel


class SelfieSegmentationModel(SegmentationModel):
    """
    MediaPipe selfie segmentation.

    The landscape model (``model_selection=1``) runs at 144x256 internally
    and is the faster of the two at webcam distances.
    """

    def __init__(
        self,
        model_selection: int = 1,  # 0=general (256x256), 1=landscape (144x256)
        input_width: Optional[int] = 640,
    ):
        """
        Initialize selfie segmentation model.

        Args:
            model_selection: MediaPipe model variant
            input_width: Downscale frames wider than this before inference
                (None = full resolution)
        """
        self.model_selection = model_selection
        self.input_width = input_width

        self._segmenter = None

    def load(self) -> None:
        """Build the MediaPipe graph."""
        if not MEDIAPIPE_AVAILABLE:
            raise SegmentationModelError("MediaPipe not available")

        try:
            self._segmenter = mp.solutions.selfie_segmentation.SelfieSegmentation(
                model_selection=self.model_selection
            )
        except Exception as e:
            raise SegmentationModelError(f"Failed to initialize MediaPipe: {e}") from e

        logger.info(f"Selfie segmentation initialized (model {self.model_selection})")

    def predict(self, pixels: NDArray[np.uint8]) -> NDArray[np.float32]:
        """Person confidence in [0, 1]."""
        if self._segmenter is None:
            raise SegmentationModelError("Selfie segmentation not loaded")

        rgb = cv2.cvtColor(pixels, cv2.COLOR_RGBA2RGB)

        h, w = rgb.shape[:2]
        if self.input_width is not None and w > self.input_width:
            scale = self.input_width / w
            rgb = cv2.resize(
                rgb,
                (self.input_width, max(1, int(h * scale))),
                interpolation=cv2.INTER_AREA,
            )

        results = self._segmenter.process(rgb)

        if results.segmentation_mask is None:
            return np.zeros(rgb.shape[:2], dtype=np.float32)

        return results.segmentation_mask

    def close(self) -> None:
        if self._segmenter is not None:
            self._segmenter.close()
            self._segmenter = None
