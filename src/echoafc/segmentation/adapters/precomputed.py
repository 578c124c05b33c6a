"""Replay masks exported by an offline segmentation model."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from PIL import Image

from echoafc.ingest.sequence import MASK_PREFIX, parse_sequence_index
from echoafc.types import Frame


@dataclass(slots=True)
class PrecomputedMaskBackend:
    """Looks up `mask_<idx>.<ext>` for each frame's source index.

    A frame with no exported mask raises, which the orchestrator records as
    a backend failure for that frame only.
    """

    mask_dir: Path
    _index: dict[int, Path] = field(init=False, default_factory=dict)

    def __post_init__(self) -> None:
        if not self.mask_dir.is_dir():
            raise NotADirectoryError(f"Mask directory does not exist: {self.mask_dir}")
        for child in self.mask_dir.iterdir():
            if not child.is_file():
                continue
            idx = parse_sequence_index(child, MASK_PREFIX)
            if idx is not None:
                self._index[idx] = child

    def segment(self, frame: Frame) -> np.ndarray:
        key = frame.source_index if frame.source_index is not None else frame.index
        path = self._index.get(key)
        if path is None:
            raise FileNotFoundError(f"No precomputed mask for frame {key} in {self.mask_dir}")
        with Image.open(path) as image:
            mask = np.asarray(image.convert("L"), dtype=np.uint8)
        return (mask > 127).astype(np.uint8)
