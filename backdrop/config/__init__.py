"""
Configuration.

Responsibilities:
- Application settings from YAML
- The live compositing configuration store
"""

from .settings import (
    AppSettings,
    VideoSettings,
    PacingSettings,
    SegmentationSettings,
    CompositingSettings,
    DisplaySettings,
)
from .store import ConfigStore
