"""Stage-tagged error taxonomy."""

from __future__ import annotations

from typing import Literal

from echoafc.types import ErrorState


Stage = Literal["Extracting", "Segmenting", "Analyzing", "EFEngine"]

NO_FRAMES = "NoFrames"
DECODE_FAILURE = "DecodeFailure"
BACKEND_FAILURE = "BackendFailure"
UNKNOWN_FAILURE = "UnknownFailure"
NO_MASKS_SEGMENTED = "NoMasksSegmented"
INSUFFICIENT_MASKS = "InsufficientMasks"
INVALID_MASK = "InvalidMask"
DEGENERATE_CYCLE = "DegenerateCycle"
DIVISION_BY_ZERO = "DivisionByZero"
INVALID_AREA_RELATIONSHIP = "InvalidAreaRelationship"


class EchoAFCError(Exception):
    """Base error carrying the pipeline stage and a machine-readable kind."""

    stage: str = "Analyzing"
    kinds: frozenset[str] = frozenset()

    def __init__(self, kind: str, message: str) -> None:
        if self.kinds and kind not in self.kinds:
            raise ValueError(f"{type(self).__name__} does not accept kind {kind!r}")
        super().__init__(message)
        self.kind = kind
        self.message = message

    def to_state(self) -> ErrorState:
        return ErrorState(stage=self.stage, kind=self.kind, message=self.message)

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class ExtractionError(EchoAFCError):
    stage = "Extracting"
    kinds = frozenset({NO_FRAMES, DECODE_FAILURE})


class SegmentationError(EchoAFCError):
    stage = "Segmenting"
    kinds = frozenset({BACKEND_FAILURE, UNKNOWN_FAILURE, NO_MASKS_SEGMENTED, INSUFFICIENT_MASKS})


class AreaError(EchoAFCError):
    stage = "Analyzing"
    kinds = frozenset({INVALID_MASK})


class CycleError(EchoAFCError):
    stage = "Analyzing"
    kinds = frozenset({INSUFFICIENT_MASKS, DEGENERATE_CYCLE})


class EFError(EchoAFCError):
    stage = "EFEngine"
    kinds = frozenset({DIVISION_BY_ZERO, INVALID_AREA_RELATIONSHIP})
