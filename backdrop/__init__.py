"""
Live Backdrop - real-time background compositing for a single video stream.

Composites live camera video against a blurred, solid, gradient or image
background using a per-pixel foreground mask from a person segmentation model.

Top Priorities (strict order):
1. Never stall the output: every tick presents something
2. Masks are only ever applied to the frame they were computed for
3. Hold the target display rate by trading working resolution
4. Degrade to passthrough instead of failing
"""

__version__ = "0.1.0"
__author__ = "Live Backdrop Team"
