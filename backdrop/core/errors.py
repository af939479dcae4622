"""
Exception taxonomy.

Only a missing video source is fatal to the caller. Every other failure
degrades output quality (coarser compositing or passthrough) instead.
"""


class BackdropError(Exception):
    """Base class for all backdrop errors."""


class VideoSourceUnavailableError(BackdropError):
    """The video source could not be acquired; there is nothing to composite."""


class SegmentationModelError(BackdropError):
    """The segmentation model failed to load or to produce a mask."""


class ConfigurationError(BackdropError, ValueError):
    """A configuration value is malformed or out of range."""
