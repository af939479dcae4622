"""
Background rendering for replacement modes.

Responsibilities:
- Solid, gradient and image backgrounds at the working resolution
- Caching between configuration changes
"""

from .renderer import BackgroundRenderer, render_solid, render_gradient, render_image
