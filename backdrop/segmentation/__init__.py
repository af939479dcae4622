"""
Person segmentation behind an asynchronous adapter.

Responsibilities:
- Model lifecycle (load once, fail into passthrough)
- One outstanding mask request at a time
- Dropping results that arrive after teardown
"""

from .adapter import SegmentationAdapter, SegmentationModel, to_mask_values
from .selfie_model import SelfieSegmentationModel
