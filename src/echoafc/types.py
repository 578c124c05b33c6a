"""Frame, mask and result models shared by every pipeline stage."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

import numpy as np


PLACEHOLDER_DISPLAY = "--%"


@dataclass(frozen=True, slots=True, eq=False)
class Frame:
    """One decoded frame; `index` is its position in the sampled batch."""

    index: int
    pixels: np.ndarray
    # Position in the decoded stream before sampling.
    source_index: int | None = None

    def __post_init__(self) -> None:
        ndim = getattr(self.pixels, "ndim", None)
        if ndim not in (2, 3):
            raise ValueError(f"frame {self.index} pixels must be 2-D or 3-D, got ndim={ndim}")

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])


@dataclass(frozen=True, slots=True)
class FrameBatch:
    """Ordered frames produced by one extraction, tagged with its epoch."""

    epoch: int
    frames: tuple[Frame, ...]
    source: str = ""
    sampling_rate_hz: float = 0.0

    def __len__(self) -> int:
        return len(self.frames)


@dataclass(frozen=True, slots=True)
class Pending:
    """Slot whose segmentation task has not resolved yet."""


PENDING = Pending()


@dataclass(frozen=True, slots=True, eq=False)
class Present:
    """Slot holding a mask returned by the backend."""

    pixels: np.ndarray


@dataclass(frozen=True, slots=True)
class Absent:
    """Slot whose segmentation failed."""

    kind: str
    reason: str


Mask = Pending | Present | Absent


class MaskBatch:
    """Fixed-length mask slots indexed 1:1 with the originating frames.

    Each slot leaves `Pending` at most once. The batch is not synchronised;
    concurrent writers must serialise calls to `resolve`.
    """

    __slots__ = ("epoch", "_slots", "_frozen")

    def __init__(self, epoch: int, size: int) -> None:
        if size < 0:
            raise ValueError(f"size must be >= 0, got {size}")
        self.epoch = epoch
        self._slots: list[Mask] = [PENDING] * size
        self._frozen = False

    @classmethod
    def from_masks(cls, epoch: int, masks: list[Mask]) -> MaskBatch:
        batch = cls(epoch, len(masks))
        for index, mask in enumerate(masks):
            if not isinstance(mask, Pending):
                batch.resolve(index, mask)
        return batch

    def __len__(self) -> int:
        return len(self._slots)

    def __getitem__(self, index: int) -> Mask:
        return self._slots[index]

    def __iter__(self) -> Iterator[Mask]:
        return iter(tuple(self._slots))

    def resolve(self, index: int, mask: Mask) -> bool:
        """Write `mask` into slot `index`; return False if it was already resolved."""

        if isinstance(mask, Pending):
            raise ValueError("A slot cannot be resolved back to Pending.")
        if self._frozen:
            raise RuntimeError("MaskBatch is finalized and can no longer change.")
        if not isinstance(self._slots[index], Pending):
            return False
        self._slots[index] = mask
        return True

    def freeze(self) -> MaskBatch:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def is_complete(self) -> bool:
        return not any(isinstance(slot, Pending) for slot in self._slots)

    def present_indices(self) -> list[int]:
        return [i for i, slot in enumerate(self._slots) if isinstance(slot, Present)]

    def absent_indices(self) -> list[int]:
        return [i for i, slot in enumerate(self._slots) if isinstance(slot, Absent)]


@dataclass(frozen=True, slots=True)
class AreaSample:
    """Foreground pixel count of one frame's mask."""

    frame_index: int
    area: int


@dataclass(frozen=True, slots=True)
class InvalidArea:
    """A frame whose mask could not yield an area."""

    frame_index: int
    reason: str


@dataclass(frozen=True, slots=True)
class CardiacCycleResult:
    ed_index: int
    es_index: int
    ed_area: int
    es_area: int


@dataclass(frozen=True, slots=True)
class EFResult:
    """Area fractional change between the ED and ES frames."""

    percentage: float
    ed_area: int
    es_area: int
    ed_index: int = -1
    es_index: int = -1
    band: str = ""

    def display(self) -> str:
        return f"{self.percentage:.2f}%"

    def to_dict(self) -> dict[str, object]:
        return {
            "percentage": float(self.percentage),
            "display": self.display(),
            "ed_area": int(self.ed_area),
            "es_area": int(self.es_area),
            "ed_index": int(self.ed_index),
            "es_index": int(self.es_index),
            "band": self.band,
        }


@dataclass(frozen=True, slots=True)
class ErrorState:
    """Terminal, stage-tagged failure handed to the presenter."""

    stage: str
    kind: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"stage": self.stage, "kind": self.kind, "message": self.message}
