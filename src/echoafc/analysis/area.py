"""Pixel-area computation for segmentation masks."""

from __future__ import annotations

from typing import Any

import numpy as np

from echoafc.errors import INVALID_MASK, AreaError
from echoafc.types import Absent, AreaSample, InvalidArea, MaskBatch, Pending, Present


DEFAULT_FOREGROUND_THRESHOLD = 0.5


def _as_plane(mask: Any) -> np.ndarray:
    if mask is None:
        raise AreaError(INVALID_MASK, "mask is missing")
    if not isinstance(mask, np.ndarray):
        raise AreaError(INVALID_MASK, f"mask must be a numpy array, got {type(mask).__name__}")
    if mask.dtype.kind not in "biuf":
        raise AreaError(INVALID_MASK, f"unsupported mask dtype {mask.dtype}")

    plane = mask
    if plane.ndim == 3 and plane.shape[2] == 1:
        plane = plane[:, :, 0]
    if plane.ndim != 2:
        raise AreaError(INVALID_MASK, f"expected a 2-D mask, got shape {mask.shape}")
    if plane.shape[0] == 0 or plane.shape[1] == 0:
        raise AreaError(INVALID_MASK, f"mask has zero width or height: {mask.shape}")
    if plane.dtype.kind == "f" and not np.all(np.isfinite(plane)):
        raise AreaError(INVALID_MASK, "mask contains non-finite values")
    return plane


def compute_area(mask: Any, threshold: float = DEFAULT_FOREGROUND_THRESHOLD) -> int:
    """Count foreground pixels (values strictly above `threshold`).

    Boolean masks count True pixels. An all-background mask yields 0, which
    is a valid area.
    """

    plane = _as_plane(mask)
    if plane.dtype.kind == "b":
        return int(np.count_nonzero(plane))
    return int(np.count_nonzero(plane > threshold))


def compute_area_samples(
    batch: MaskBatch,
    threshold: float = DEFAULT_FOREGROUND_THRESHOLD,
) -> list[AreaSample | InvalidArea]:
    """Return one area sample per slot, in frame order."""

    samples: list[AreaSample | InvalidArea] = []
    for index, slot in enumerate(batch):
        if isinstance(slot, Present):
            try:
                samples.append(AreaSample(frame_index=index, area=compute_area(slot.pixels, threshold)))
            except AreaError as exc:
                samples.append(InvalidArea(frame_index=index, reason=exc.message))
        elif isinstance(slot, Absent):
            samples.append(InvalidArea(frame_index=index, reason=f"{slot.kind}: {slot.reason}"))
        elif isinstance(slot, Pending):
            samples.append(InvalidArea(frame_index=index, reason="segmentation pending"))
    return samples
