"""
Video capture.

Responsibilities:
- Camera acquisition on a background thread
- Conversion to RGBA frames with identity and timestamp
- Exposing the current frame to the drive loop without blocking
"""

from .base import VideoSource
from .video_capture import VideoCapture
