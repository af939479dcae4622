"""
Frame pacing and adaptive quality.

Responsibilities:
- Admission control against a target rate
- Once-per-second rate measurement
- Working-resolution scale factor with hysteresis
- Device-dependent target rate and capture resolution
"""

from .frame_pacer import FramePacer
from .device import DeviceCapabilities
