"""Local intensity-threshold segmenter standing in for a trained LV model."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from echoafc.types import Frame


def to_unit_gray(pixels: np.ndarray) -> np.ndarray:
    """Convert a grayscale or RGB frame to float32 intensities in [0, 1]."""

    arr = np.asarray(pixels)
    if arr.ndim == 3:
        arr = arr[:, :, :3].mean(axis=2)
    if arr.ndim != 2:
        raise ValueError(f"Expected a 2-D or 3-D frame, got shape {pixels.shape}")
    gray = arr.astype(np.float32)
    if np.issubdtype(np.asarray(pixels).dtype, np.integer):
        gray /= 255.0
    return gray


@dataclass(slots=True)
class ThresholdSegmenter:
    """Marks the dark blood pool inside a central region of interest.

    In apical echo views the LV cavity is the large hypoechoic region near the
    sector centre, so a dark-pixel threshold restricted to a central window is
    a usable stand-in for a learned model.
    """

    intensity_threshold: float = 0.35
    min_foreground_px: int = 16
    roi_fraction: float = 0.8

    def _roi_window(self, height: int, width: int) -> tuple[slice, slice]:
        fraction = min(max(self.roi_fraction, 0.0), 1.0)
        roi_h = max(1, int(round(height * fraction)))
        roi_w = max(1, int(round(width * fraction)))
        top = (height - roi_h) // 2
        left = (width - roi_w) // 2
        return slice(top, top + roi_h), slice(left, left + roi_w)

    def segment(self, frame: Frame) -> np.ndarray:
        gray = to_unit_gray(frame.pixels)
        height, width = gray.shape
        if height == 0 or width == 0:
            raise ValueError(f"Frame {frame.index} is empty")

        mask = np.zeros((height, width), dtype=np.uint8)
        rows, cols = self._roi_window(height, width)
        mask[rows, cols] = gray[rows, cols] <= self.intensity_threshold

        if int(np.count_nonzero(mask)) < self.min_foreground_px:
            mask[:] = 0
        return mask
