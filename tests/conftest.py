"""Shared fixtures: synthetic frames, masks, fake backends and presenters."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Any

import numpy as np
import pytest

from echoafc.types import EFResult, ErrorState, Frame, FrameBatch


FRAME_SHAPE = (16, 16)


def mask_with_area(area: int, shape: tuple[int, int] = FRAME_SHAPE) -> np.ndarray:
    """Binary mask with exactly `area` foreground pixels."""

    mask = np.zeros(shape, dtype=np.uint8)
    mask.flat[:area] = 1
    return mask


def make_frames(count: int, marker: int = 0) -> list[Frame]:
    return [
        Frame(index=i, pixels=np.full(FRAME_SHAPE, marker, dtype=np.uint8), source_index=i)
        for i in range(count)
    ]


def make_batch(count: int, epoch: int = 1, marker: int = 0) -> FrameBatch:
    return FrameBatch(epoch=epoch, frames=tuple(make_frames(count, marker)), source="synthetic")


class FakeBackend:
    """Answers by frame index: an int is a mask area, an exception is raised, None is returned."""

    def __init__(
        self,
        responses: dict[int, Any] | list[Any],
        delays: dict[int, float] | list[float] | None = None,
        gate: threading.Event | None = None,
        gated_marker: int | None = None,
    ) -> None:
        self.responses = dict(enumerate(responses)) if isinstance(responses, list) else responses
        if isinstance(delays, list):
            delays = dict(enumerate(delays))
        self.delays = delays or {}
        self.gate = gate
        self.gated_marker = gated_marker
        self.calls: list[int] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def segment(self, frame: Frame) -> np.ndarray | None:
        with self._lock:
            self.calls.append(frame.index)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None and (
                self.gated_marker is None or int(frame.pixels[0, 0]) == self.gated_marker
            ):
                self.gate.wait(5.0)
            delay = self.delays.get(frame.index, 0.0)
            if delay:
                time.sleep(delay)
            response = self.responses[frame.index]
            if isinstance(response, BaseException):
                raise response
            if response is None:
                return None
            return mask_with_area(int(response))
        finally:
            with self._lock:
                self.active -= 1


class FakeFrameSource:
    """Returns canned frames per handle name, optionally blocking or failing."""

    def __init__(
        self,
        frames: dict[str, list[Frame]] | None = None,
        errors: dict[str, Exception] | None = None,
        gates: dict[str, threading.Event] | None = None,
    ) -> None:
        self.frames = frames or {}
        self.errors = errors or {}
        self.gates = gates or {}
        self.calls: list[tuple[str, float]] = []

    def extract(self, handle: Path, sampling_rate_hz: float) -> list[Frame]:
        name = Path(handle).name
        self.calls.append((name, sampling_rate_hz))
        gate = self.gates.get(name)
        if gate is not None:
            gate.wait(5.0)
        if name in self.errors:
            raise self.errors[name]
        return list(self.frames.get(name, []))


class RecordingPresenter:
    def __init__(self) -> None:
        self.phases: list[tuple[int, str]] = []
        self.progress: list[tuple[int, int, int]] = []
        self.results: list[tuple[int, EFResult]] = []
        self.errors: list[tuple[int, ErrorState]] = []
        self._lock = threading.Lock()

    def on_phase(self, epoch: int, phase: str) -> None:
        with self._lock:
            self.phases.append((epoch, phase))

    def on_progress(self, epoch: int, segmented: int, total: int) -> None:
        with self._lock:
            self.progress.append((epoch, segmented, total))

    def on_result(self, epoch: int, result: EFResult) -> None:
        with self._lock:
            self.results.append((epoch, result))

    def on_error(self, epoch: int, error: ErrorState) -> None:
        with self._lock:
            self.errors.append((epoch, error))

    def phases_for(self, epoch: int) -> list[str]:
        return [phase for item_epoch, phase in self.phases if item_epoch == epoch]


@pytest.fixture
def presenter() -> RecordingPresenter:
    return RecordingPresenter()
