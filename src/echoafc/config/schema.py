"""Dataclass-based configuration schema for echoafc."""

from dataclasses import dataclass, field
from typing import Literal


@dataclass(slots=True)
class ExtractionConfig:
    """Frame sampling options."""

    sampling_rate_hz: float = 30.0
    # Frame rate assumed for image directories, which carry no timing.
    source_fps: float = 30.0
    max_frames: int | None = None


@dataclass(slots=True)
class SegmentationConfig:
    """Segmentation dispatch options."""

    backend: Literal["threshold", "precomputed"] = "threshold"
    max_workers: int = 4
    task_timeout_s: float | None = 10.0
    intensity_threshold: float = 0.35
    min_foreground_px: int = 16
    roi_fraction: float = 0.8
    # Directory of mask_<idx>.png files for the precomputed backend.
    mask_dir: str | None = None


@dataclass(slots=True)
class AreaConfig:
    """Mask area options."""

    foreground_threshold: float = 0.5


@dataclass(slots=True)
class PipelineConfig:
    """Top-level pipeline configuration."""

    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    area: AreaConfig = field(default_factory=AreaConfig)
    wait_timeout_s: float = 300.0
