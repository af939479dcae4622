"""
Application settings.

Loaded from YAML (``config/settings.yaml`` by default). Every key is
optional; missing keys keep the dataclass defaults and unknown keys are
ignored.

Example:
    video:
      device_index: 0
      width: 1280
      height: 720
    pacing:
      target_fps: 30
    compositing:
      mode: blur
      blur_strength: 40
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union
import yaml
from loguru import logger

from backdrop.core.contracts import CompositingConfig
from backdrop.core.errors import ConfigurationError


DEFAULT_SETTINGS_PATH = Path(__file__).resolve().parents[2] / "config" / "settings.yaml"


@dataclass
class VideoSettings:
    """Camera settings."""
    device_index: int = 0
    width: int = 1280
    height: int = 720
    fps: int = 30


@dataclass
class PacingSettings:
    """Frame pacing settings."""
    target_fps: Optional[int] = None  # None = pick from device capabilities
    idle_sleep_ms: float = 1.0  # Drive loop sleep when a tick is not admitted


@dataclass
class SegmentationSettings:
    """Segmentation model settings."""
    enabled: bool = True
    model_selection: int = 1  # 0=general, 1=landscape
    input_width: Optional[int] = 640


@dataclass
class CompositingSettings:
    """Initial compositing choices and mask refinement."""
    mode: str = "gradient"
    blur_strength: int = 25
    solid_color: str = "#1f2937"
    gradient: str = "purple-blue"
    background_image: Optional[str] = None
    mask_dilate_iterations: int = 0
    mask_erode_iterations: int = 0
    max_mask_age_ms: float = 250.0

    def to_config(self) -> CompositingConfig:
        return CompositingConfig(
            mode=self.mode,
            blur_strength=self.blur_strength,
            solid_color=self.solid_color,
            gradient_id=self.gradient,
        )


@dataclass
class DisplaySettings:
    """Display window settings."""
    window_name: str = "Live Backdrop"
    mirror: bool = True
    show_stats: bool = True
    headless: bool = False


@dataclass
class AppSettings:
    """Top-level settings."""
    video: VideoSettings = field(default_factory=VideoSettings)
    pacing: PacingSettings = field(default_factory=PacingSettings)
    segmentation: SegmentationSettings = field(default_factory=SegmentationSettings)
    compositing: CompositingSettings = field(default_factory=CompositingSettings)
    display: DisplaySettings = field(default_factory=DisplaySettings)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> AppSettings:
        """
        Build settings from a parsed YAML document.

        Raises:
            ConfigurationError: If a section is not a mapping
        """
        data = data or {}
        if not isinstance(data, dict):
            raise ConfigurationError("Settings document must be a mapping")

        sections = {}
        for section in fields(cls):
            raw = data.get(section.name) or {}
            if not isinstance(raw, dict):
                raise ConfigurationError(f"Settings section '{section.name}' must be a mapping")
            section_cls = section.default_factory
            known = {f.name for f in fields(section_cls)}
            unknown = set(raw) - known
            if unknown:
                logger.warning(f"Ignoring unknown {section.name} settings: {sorted(unknown)}")
            sections[section.name] = section_cls(**{k: v for k, v in raw.items() if k in known})

        return cls(**sections)

    @classmethod
    def load(cls, path: Optional[Union[str, Path]] = None) -> AppSettings:
        """
        Load settings from ``path``, or from the default location.

        A missing file yields the defaults.
        """
        candidates = [Path(path)] if path else [DEFAULT_SETTINGS_PATH]

        for candidate in candidates:
            if candidate.exists():
                with open(candidate) as f:
                    try:
                        data = yaml.safe_load(f)
                    except yaml.YAMLError as e:
                        raise ConfigurationError(f"Invalid settings file {candidate}: {e}") from e
                logger.info(f"Settings loaded from {candidate}")
                return cls.from_dict(data)

        if path:
            logger.warning(f"Settings file not found: {path}, using defaults")
        return cls()
