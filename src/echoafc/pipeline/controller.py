"""Pipeline state machine: Idle -> Extracting -> Segmenting -> Analyzing -> Done | Failed.

Every video selection opens a new epoch. All transitions go through one lock
and are dropped when the epoch they were issued under is no longer current,
so a superseded run can never touch the state of a newer one.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from functools import partial
import logging
from pathlib import Path
import threading
import time
from typing import Literal

from echoafc.analysis import cycle as cycle_analyzer
from echoafc.analysis import ef as ef_engine
from echoafc.config.schema import PipelineConfig
from echoafc.errors import (
    DECODE_FAILURE,
    INSUFFICIENT_MASKS,
    NO_FRAMES,
    NO_MASKS_SEGMENTED,
    EchoAFCError,
)
from echoafc.ingest.scanner import FrameSource
from echoafc.observability.logging import get_logger, log_event
from echoafc.pipeline.presenter import LogPresenter, Presenter
from echoafc.segmentation.backend import SegmentationBackend
from echoafc.segmentation.orchestrator import (
    ALL_FAILED,
    AggregationEvent,
    ProgressEvent,
    SegmentationEvent,
    SegmentationOrchestrator,
    SegmentationRun,
)
from echoafc.types import PLACEHOLDER_DISPLAY, EFResult, ErrorState, Frame, FrameBatch


_LOGGER = get_logger("echoafc.controller")

IDLE = "Idle"
EXTRACTING = "Extracting"
SEGMENTING = "Segmenting"
ANALYZING = "Analyzing"
DONE = "Done"
FAILED = "Failed"
# Failure stage for AFC computation; not a phase of its own.
EF_ENGINE = "EFEngine"

Phase = Literal["Idle", "Extracting", "Segmenting", "Analyzing", "Done", "Failed"]

TERMINAL_PHASES = frozenset({DONE, FAILED})
NO_VIDEO_SELECTED = "No video selected"
UNEXPECTED_ERROR = "UnexpectedError"


@dataclass(frozen=True, slots=True)
class PipelineSnapshot:
    """Immutable view of one epoch's pipeline state."""

    epoch: int
    phase: Phase
    video_name: str = NO_VIDEO_SELECTED
    segmented: int = 0
    failed: int = 0
    total: int = 0
    result: EFResult | None = None
    error: ErrorState | None = None

    @property
    def terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def display(self) -> str:
        if self.result is None:
            return PLACEHOLDER_DISPLAY
        return self.result.display()


def _normalize_frames(frames: list[Frame]) -> tuple[Frame, ...]:
    normalized: list[Frame] = []
    for position, frame in enumerate(frames):
        if frame.index == position:
            normalized.append(frame)
            continue
        source_index = frame.source_index if frame.source_index is not None else frame.index
        normalized.append(Frame(index=position, pixels=frame.pixels, source_index=source_index))
    return tuple(normalized)


class PipelineController:
    """Owns the epoch counter, pipeline state and cancellation."""

    def __init__(
        self,
        frame_source: FrameSource,
        backend: SegmentationBackend,
        presenter: Presenter | None = None,
        config: PipelineConfig | None = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._frame_source = frame_source
        self._presenter: Presenter = presenter or LogPresenter()
        self._lock = threading.RLock()
        self._changed = threading.Condition(self._lock)
        self._epoch = 0
        self._snapshot = PipelineSnapshot(epoch=0, phase=IDLE)
        self._run: SegmentationRun | None = None
        self._closed = False
        self._started_perf = 0.0
        self._orchestrator = SegmentationOrchestrator(
            backend,
            self.config.segmentation,
            current_epoch=self._current_epoch,
        )

    def _current_epoch(self) -> int:
        return self._epoch

    @property
    def current_epoch(self) -> int:
        return self._epoch

    def snapshot(self) -> PipelineSnapshot:
        with self._lock:
            return self._snapshot

    def select_video(self, handle: str | Path) -> int:
        """Start a new run for `handle`, superseding any run in flight."""

        path = Path(handle)
        with self._lock:
            if self._closed:
                raise RuntimeError("PipelineController has been shut down.")
            self._epoch += 1
            epoch = self._epoch
            previous, self._run = self._run, None
            self._started_perf = time.perf_counter()
            self._snapshot = PipelineSnapshot(epoch=epoch, phase=IDLE, video_name=path.name)
            self._presenter.on_phase(epoch, IDLE)
            self._set_phase(epoch, EXTRACTING)
            log_event(_LOGGER, "run_started", epoch=epoch, video=str(path))

        # Cancel outside our lock: run callbacks acquire it.
        if previous is not None:
            previous.cancel()

        worker = threading.Thread(
            target=self._run_pipeline,
            args=(epoch, path),
            name=f"echoafc-run-{epoch}",
            daemon=True,
        )
        worker.start()
        return epoch

    def wait(self, timeout: float | None = None) -> PipelineSnapshot:
        """Block until the current epoch is Done or Failed (or `timeout` elapses)."""

        with self._changed:
            self._changed.wait_for(
                lambda: self._snapshot.terminal
                or self._snapshot.epoch == 0
                or self._snapshot.epoch != self._epoch,
                timeout=timeout,
            )
            return self._snapshot

    def analyze(self, handle: str | Path, timeout: float | None = None) -> PipelineSnapshot:
        self.select_video(handle)
        return self.wait(self.config.wait_timeout_s if timeout is None else timeout)

    def shutdown(self) -> None:
        with self._lock:
            self._closed = True
            self._epoch += 1
            run, self._run = self._run, None
            self._changed.notify_all()
        if run is not None:
            run.cancel()
        self._orchestrator.shutdown(wait=False)

    def __enter__(self) -> PipelineController:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    def _is_current(self, epoch: int) -> bool:
        return epoch == self._epoch and not self._snapshot.terminal

    def _set_phase(self, epoch: int, phase: Phase) -> None:
        # Caller holds the lock.
        self._snapshot = replace(self._snapshot, phase=phase)
        log_event(_LOGGER, "phase_changed", level=logging.DEBUG, epoch=epoch, phase=phase)
        self._presenter.on_phase(epoch, phase)
        self._changed.notify_all()

    def _fail(self, epoch: int, error: ErrorState) -> None:
        with self._lock:
            if not self._is_current(epoch):
                return
            self._snapshot = replace(self._snapshot, error=error)
            self._set_phase(epoch, FAILED)
            self._presenter.on_error(epoch, error)
            log_event(
                _LOGGER,
                "run_finished",
                epoch=epoch,
                phase=FAILED,
                stage=error.stage,
                kind=error.kind,
                duration_seconds=time.perf_counter() - self._started_perf,
            )

    def _complete(self, epoch: int, result: EFResult) -> None:
        with self._lock:
            if not self._is_current(epoch):
                return
            self._snapshot = replace(self._snapshot, result=result)
            self._set_phase(epoch, DONE)
            self._presenter.on_result(epoch, result)
            log_event(
                _LOGGER,
                "run_finished",
                epoch=epoch,
                phase=DONE,
                afc=result.percentage,
                duration_seconds=time.perf_counter() - self._started_perf,
            )

    def _run_pipeline(self, epoch: int, handle: Path) -> None:
        sampling_rate_hz = self.config.extraction.sampling_rate_hz
        try:
            frames = self._frame_source.extract(handle, sampling_rate_hz)
        except EchoAFCError as exc:
            self._fail(epoch, ErrorState(stage=EXTRACTING, kind=exc.kind, message=exc.message))
            return
        except Exception as exc:
            _LOGGER.exception("frame extraction crashed", extra={"epoch": epoch})
            self._fail(
                epoch,
                ErrorState(stage=EXTRACTING, kind=DECODE_FAILURE, message=f"{type(exc).__name__}: {exc}"),
            )
            return

        if not frames:
            self._fail(
                epoch,
                ErrorState(stage=EXTRACTING, kind=NO_FRAMES, message=f"no frames extracted from {handle.name}"),
            )
            return

        batch = FrameBatch(
            epoch=epoch,
            frames=_normalize_frames(list(frames)),
            source=str(handle),
            sampling_rate_hz=sampling_rate_hz,
        )
        with self._lock:
            if not self._is_current(epoch):
                return
            self._snapshot = replace(self._snapshot, total=len(batch))
            self._set_phase(epoch, SEGMENTING)
            self._presenter.on_progress(epoch, 0, len(batch))

        try:
            run = self._orchestrator.submit(
                batch,
                epoch,
                listener=partial(self._on_segmentation_event, epoch),
            )
        except Exception as exc:
            _LOGGER.exception("segmentation dispatch failed", extra={"epoch": epoch})
            self._fail(
                epoch,
                ErrorState(stage=SEGMENTING, kind=UNEXPECTED_ERROR, message=f"{type(exc).__name__}: {exc}"),
            )
            return
        with self._lock:
            if epoch == self._epoch:
                self._run = run
                return
        run.cancel()

    def _on_segmentation_event(self, epoch: int, event: SegmentationEvent) -> None:
        with self._lock:
            if not self._is_current(epoch) or self._snapshot.phase != SEGMENTING:
                log_event(
                    _LOGGER,
                    "stale_event_ignored",
                    level=logging.DEBUG,
                    epoch=epoch,
                    current_epoch=self._epoch,
                    event=type(event).__name__,
                )
                return
            if isinstance(event, ProgressEvent):
                self._snapshot = replace(
                    self._snapshot,
                    segmented=event.segmented,
                    failed=event.failed,
                )
                self._presenter.on_progress(epoch, event.segmented, event.total)
                return
            self._on_aggregation(epoch, event)

    def _on_aggregation(self, epoch: int, event: AggregationEvent) -> None:
        # Caller holds the lock.
        if event.outcome == ALL_FAILED:
            self._fail(
                epoch,
                ErrorState(
                    stage=SEGMENTING,
                    kind=NO_MASKS_SEGMENTED,
                    message=f"all {event.total} frames failed segmentation",
                ),
            )
            return
        if event.succeeded < cycle_analyzer.MIN_CANDIDATES:
            self._fail(
                epoch,
                ErrorState(
                    stage=SEGMENTING,
                    kind=INSUFFICIENT_MASKS,
                    message=f"only {event.succeeded} of {event.total} frames segmented",
                ),
            )
            return

        self._set_phase(epoch, ANALYZING)
        try:
            cycle = cycle_analyzer.identify_ed_es(
                event.masks,
                threshold=self.config.area.foreground_threshold,
            )
        except EchoAFCError as exc:
            self._fail(epoch, ErrorState(stage=ANALYZING, kind=exc.kind, message=exc.message))
            return
        except Exception as exc:
            _LOGGER.exception("cardiac cycle analysis crashed", extra={"epoch": epoch})
            self._fail(
                epoch,
                ErrorState(stage=ANALYZING, kind=UNEXPECTED_ERROR, message=f"{type(exc).__name__}: {exc}"),
            )
            return

        try:
            result = ef_engine.build_ef_result(cycle)
        except EchoAFCError as exc:
            self._fail(epoch, exc.to_state())
            return
        except Exception as exc:
            _LOGGER.exception("AFC computation crashed", extra={"epoch": epoch})
            self._fail(
                epoch,
                ErrorState(stage=EF_ENGINE, kind=UNEXPECTED_ERROR, message=f"{type(exc).__name__}: {exc}"),
            )
            return
        self._complete(epoch, result)
