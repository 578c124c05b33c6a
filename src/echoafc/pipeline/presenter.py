"""Presenter sinks that receive per-run pipeline updates."""

from __future__ import annotations

import logging
import sys
from typing import Protocol, TextIO

from echoafc.observability.logging import get_logger, log_event
from echoafc.types import EFResult, ErrorState


STAGE_MESSAGES: dict[str, str] = {
    "Extracting": "Could not read frames from the selected video.",
    "Segmenting": "Left-ventricle segmentation did not produce enough usable masks.",
    "Analyzing": "Could not identify distinct end-diastolic and end-systolic frames.",
    "EFEngine": "Could not compute the area fractional change from the selected frames.",
}


def describe_error(error: ErrorState) -> str:
    """User-facing message for a terminal failure."""

    headline = STAGE_MESSAGES.get(error.stage, "Analysis failed.")
    return f"{headline} ({error.kind}: {error.message})"


class Presenter(Protocol):
    def on_phase(self, epoch: int, phase: str) -> None:
        ...

    def on_progress(self, epoch: int, segmented: int, total: int) -> None:
        ...

    def on_result(self, epoch: int, result: EFResult) -> None:
        ...

    def on_error(self, epoch: int, error: ErrorState) -> None:
        ...


class LogPresenter:
    """Forwards every update to the structured log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or get_logger("echoafc.presenter")

    def on_phase(self, epoch: int, phase: str) -> None:
        log_event(self._logger, "phase_changed", epoch=epoch, phase=phase)

    def on_progress(self, epoch: int, segmented: int, total: int) -> None:
        log_event(
            self._logger,
            "segmentation_progress",
            level=logging.DEBUG,
            epoch=epoch,
            segmented=segmented,
            total=total,
        )

    def on_result(self, epoch: int, result: EFResult) -> None:
        log_event(self._logger, "afc_computed", epoch=epoch, **result.to_dict())

    def on_error(self, epoch: int, error: ErrorState) -> None:
        log_event(self._logger, "run_failed", level=logging.WARNING, epoch=epoch, **error.to_dict())


class ConsolePresenter:
    """Human-readable progress for the CLI."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._last_progress: tuple[int, int] | None = None

    def _write(self, text: str) -> None:
        self._stream.write(text + "\n")
        self._stream.flush()

    def on_phase(self, epoch: int, phase: str) -> None:
        if phase == "Idle":
            return
        self._write(f"[{epoch}] {phase}")

    def on_progress(self, epoch: int, segmented: int, total: int) -> None:
        if self._last_progress == (segmented, total):
            return
        self._last_progress = (segmented, total)
        self._write(f"[{epoch}] {segmented} of {total} frames segmented")

    def on_result(self, epoch: int, result: EFResult) -> None:
        self._write(
            f"[{epoch}] AFC: {result.display()} ({result.band}; "
            f"ED frame {result.ed_index} area {result.ed_area}px, "
            f"ES frame {result.es_index} area {result.es_area}px)"
        )

    def on_error(self, epoch: int, error: ErrorState) -> None:
        self._write(f"[{epoch}] {describe_error(error)}")
