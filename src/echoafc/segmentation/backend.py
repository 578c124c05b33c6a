"""Segmentation backend contract and adapter resolution."""

from __future__ import annotations

from pathlib import Path
from typing import Protocol

import numpy as np

from echoafc.config.schema import SegmentationConfig
from echoafc.segmentation.adapters.precomputed import PrecomputedMaskBackend
from echoafc.segmentation.adapters.threshold import ThresholdSegmenter
from echoafc.types import Frame


class SegmentationBackend(Protocol):
    """Segments one frame.

    Returns a mask array, raises on failure. Returning None (neither mask nor
    error) is treated by the orchestrator as an unknown failure.
    """

    def segment(self, frame: Frame) -> np.ndarray | None:
        ...


def resolve_backend(config: SegmentationConfig) -> SegmentationBackend:
    """Build the backend adapter named by `config.backend`."""

    normalized = config.backend.strip().lower()
    if normalized in {"threshold", "intensity"}:
        return ThresholdSegmenter(
            intensity_threshold=config.intensity_threshold,
            min_foreground_px=config.min_foreground_px,
            roi_fraction=config.roi_fraction,
        )
    if normalized in {"precomputed", "masks"}:
        if not config.mask_dir:
            raise ValueError("The precomputed backend requires segmentation.mask_dir.")
        return PrecomputedMaskBackend(mask_dir=Path(config.mask_dir))
    raise ValueError(f"Unsupported segmentation backend: {config.backend}")
