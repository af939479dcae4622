"""
Compositing.

Responsibilities:
- Per-cycle mask collection (each mask paired with its own frame, expired masks dropped)
- Mode dispatch: original, blur, gradient, solid, image
- Passthrough on any missing mask or failure
"""

from .compositor import Compositor
