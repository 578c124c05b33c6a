"""Concurrent per-frame segmentation with order-preserving fan-in.

Every frame of a submitted batch becomes one task on a bounded thread pool.
Each task owns exactly one slot of the run's MaskBatch. Slot writes, the
completion counter and event emission are confined under the run's lock, so
the "last task resolved, emit the aggregation" decision happens exactly once.

A run is tagged with the epoch it was submitted under. When the controller's
current epoch moves past it, every later resolution is discarded and the run
finishes without an aggregation event.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
import logging
import queue
import threading
import time
from typing import Callable, Iterator, Literal

import numpy as np

from echoafc.config.schema import SegmentationConfig
from echoafc.errors import BACKEND_FAILURE, UNKNOWN_FAILURE
from echoafc.observability.logging import get_logger, log_event
from echoafc.segmentation.backend import SegmentationBackend
from echoafc.types import Absent, Frame, FrameBatch, Mask, MaskBatch, Present
from echoafc.workers.pool import normalize_worker_count


_LOGGER = get_logger("echoafc.orchestrator")

ALL_SUCCEEDED = "AllSucceeded"
PARTIAL_FAILURE = "PartialFailure"
ALL_FAILED = "AllFailed"

Outcome = Literal["AllSucceeded", "PartialFailure", "AllFailed"]


@dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One slot resolved; counts cover the whole run so far."""

    epoch: int
    frame_index: int
    segmented: int
    failed: int
    total: int

    @property
    def resolved(self) -> int:
        return self.segmented + self.failed


@dataclass(frozen=True, slots=True, eq=False)
class AggregationEvent:
    """Terminal event emitted once every task of a run has resolved."""

    epoch: int
    outcome: Outcome
    succeeded: int
    total: int
    masks: MaskBatch

    @property
    def failed(self) -> int:
        return self.total - self.succeeded


SegmentationEvent = ProgressEvent | AggregationEvent
Listener = Callable[[SegmentationEvent], None]

_END = object()


def run_deadline(total: int, max_workers: int, task_timeout_s: float | None) -> float | None:
    """Upper bound on a run where every task finishes or times out in turn.

    Frames run in `ceil(total / max_workers)` waves of at most
    `task_timeout_s` each; one extra wave of slack covers scheduling.
    """

    if task_timeout_s is None or total == 0:
        return None
    waves = -(-total // max(1, max_workers))
    return task_timeout_s * (waves + 1)


def _outcome(succeeded: int, total: int) -> Outcome:
    if succeeded == total:
        return ALL_SUCCEEDED
    if succeeded == 0:
        return ALL_FAILED
    return PARTIAL_FAILURE


class SegmentationRun:
    """Handle for one submitted batch."""

    def __init__(
        self,
        *,
        epoch: int,
        total: int,
        current_epoch: Callable[[], int],
        listener: Listener | None,
        task_timeout_s: float | None,
    ) -> None:
        self.epoch = epoch
        self.total = total
        self.masks = MaskBatch(epoch, total)
        self._current_epoch = current_epoch
        self._listener = listener
        self._task_timeout_s = task_timeout_s

        self._lock = threading.Lock()
        self._settled = [False] * total
        self._resolved = 0
        self._segmented = 0
        self._failed = 0
        self._discarded = 0
        self._cancelled = False
        self._aggregation: AggregationEvent | None = None
        self._timers: dict[int, threading.Timer] = {}
        self._deadline: threading.Timer | None = None
        self._futures: dict[int, Future[None]] = {}
        self._events: queue.SimpleQueue[object] = queue.SimpleQueue()
        self._done = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def discarded(self) -> int:
        return self._discarded

    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: float | None = None) -> AggregationEvent | None:
        """Block until the run finishes; None if it was superseded or timed out."""

        self._done.wait(timeout)
        return self._aggregation

    def events(self) -> Iterator[SegmentationEvent]:
        """Yield progress events, then the aggregation (if any), then stop."""

        while True:
            item = self._events.get()
            if item is _END:
                self._events.put(_END)
                return
            yield item  # type: ignore[misc]

    def cancel(self) -> None:
        """Discard this run: queued tasks are dropped, late results ignored."""

        self._cancelled = True
        for index in range(self.total):
            future = self._futures.get(index)
            if future is None or future.cancel():
                self._resolve(index, None)

    def _attach(self, index: int, future: Future[None]) -> None:
        self._futures[index] = future

    def _arm_deadline(self, seconds: float) -> None:
        timer = threading.Timer(seconds, self._expire_run, args=(seconds,))
        timer.daemon = True
        with self._lock:
            if self._done.is_set():
                return
            self._deadline = timer
            timer.start()

    def _expire_run(self, seconds: float) -> None:
        # Workers held by hung backend calls never pick up the queued frames.
        pending = [index for index, settled in enumerate(self._settled) if not settled]
        if not pending:
            return
        log_event(
            _LOGGER,
            "segmentation_deadline_expired",
            level=logging.WARNING,
            epoch=self.epoch,
            pending=len(pending),
            deadline_seconds=seconds,
        )
        for index in pending:
            future = self._futures.get(index)
            if future is not None:
                future.cancel()
            self._resolve(
                index,
                Absent(kind=BACKEND_FAILURE, reason=f"timed out after {seconds:.3g}s waiting for the run to finish"),
            )

    def _is_stale(self) -> bool:
        return self._cancelled or self._current_epoch() > self.epoch

    def _emit(self, event: object) -> None:
        self._events.put(event)
        if self._listener is None or event is _END:
            return
        try:
            self._listener(event)  # type: ignore[arg-type]
        except Exception:
            _LOGGER.exception("segmentation listener failed", extra={"epoch": self.epoch})

    def _resolve(self, index: int, mask: Mask | None) -> None:
        """Settle slot `index` once; `mask=None` marks a discarded task."""

        with self._lock:
            if self._settled[index]:
                return
            self._settled[index] = True
            self._resolved += 1

            timer = self._timers.pop(index, None)
            if timer is not None:
                timer.cancel()

            if mask is None or self._is_stale():
                self._cancelled = True
                self._discarded += 1
                log_event(
                    _LOGGER,
                    "stale_result_discarded",
                    level=logging.DEBUG,
                    epoch=self.epoch,
                    frame_index=index,
                )
            else:
                self.masks.resolve(index, mask)
                if isinstance(mask, Present):
                    self._segmented += 1
                else:
                    self._failed += 1
                self._emit(
                    ProgressEvent(
                        epoch=self.epoch,
                        frame_index=index,
                        segmented=self._segmented,
                        failed=self._failed,
                        total=self.total,
                    )
                )

            if self._resolved < self.total:
                return
            self._finish()

    def _finish(self) -> None:
        # Caller holds the lock, or the run is empty and not yet shared.
        if self._deadline is not None:
            self._deadline.cancel()
        if not self._cancelled:
            self.masks.freeze()
            self._aggregation = AggregationEvent(
                epoch=self.epoch,
                outcome=_outcome(self._segmented, self.total),
                succeeded=self._segmented,
                total=self.total,
                masks=self.masks,
            )
            log_event(
                _LOGGER,
                "segmentation_aggregated",
                epoch=self.epoch,
                outcome=self._aggregation.outcome,
                succeeded=self._segmented,
                total=self.total,
            )
            self._emit(self._aggregation)
        else:
            log_event(
                _LOGGER,
                "segmentation_superseded",
                epoch=self.epoch,
                discarded=self._discarded,
                total=self.total,
            )
        self._emit(_END)
        self._done.set()

    def _run_task(self, frame: Frame, backend: SegmentationBackend) -> None:
        index = frame.index
        if self._is_stale():
            self._resolve(index, None)
            return

        if self._task_timeout_s is not None:
            timer = threading.Timer(
                self._task_timeout_s,
                self._expire,
                args=(index,),
            )
            timer.daemon = True
            with self._lock:
                if not self._settled[index]:
                    self._timers[index] = timer
                    timer.start()

        started = time.perf_counter()
        try:
            response = backend.segment(frame)
        except Exception as exc:
            log_event(
                _LOGGER,
                "frame_failed",
                level=logging.WARNING,
                epoch=self.epoch,
                frame_index=index,
                kind=BACKEND_FAILURE,
                error=f"{type(exc).__name__}: {exc}",
            )
            self._resolve(index, Absent(kind=BACKEND_FAILURE, reason=f"{type(exc).__name__}: {exc}"))
            return

        if response is None:
            log_event(
                _LOGGER,
                "frame_failed",
                level=logging.WARNING,
                epoch=self.epoch,
                frame_index=index,
                kind=UNKNOWN_FAILURE,
            )
            self._resolve(index, Absent(kind=UNKNOWN_FAILURE, reason="backend returned neither mask nor error"))
            return
        if not isinstance(response, np.ndarray):
            self._resolve(
                index,
                Absent(kind=UNKNOWN_FAILURE, reason=f"unexpected backend response {type(response).__name__}"),
            )
            return

        log_event(
            _LOGGER,
            "frame_segmented",
            level=logging.DEBUG,
            epoch=self.epoch,
            frame_index=index,
            latency_seconds=time.perf_counter() - started,
        )
        self._resolve(index, Present(pixels=response))

    def _expire(self, index: int) -> None:
        log_event(
            _LOGGER,
            "frame_failed",
            level=logging.WARNING,
            epoch=self.epoch,
            frame_index=index,
            kind=BACKEND_FAILURE,
            error="timeout",
        )
        self._resolve(
            index,
            Absent(kind=BACKEND_FAILURE, reason=f"timed out after {self._task_timeout_s}s"),
        )


class SegmentationOrchestrator:
    """Fans frames out to a backend on a bounded pool and fans results back in."""

    def __init__(
        self,
        backend: SegmentationBackend,
        config: SegmentationConfig | None = None,
        current_epoch: Callable[[], int] | None = None,
    ) -> None:
        self.backend = backend
        self.config = config or SegmentationConfig()
        self.max_workers = normalize_worker_count(self.config.max_workers)
        self._current_epoch = current_epoch
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers,
            thread_name_prefix="echoafc-seg",
        )
        self._runs: list[SegmentationRun] = []
        self._runs_lock = threading.Lock()

    def submit(
        self,
        batch: FrameBatch,
        epoch: int | None = None,
        listener: Listener | None = None,
    ) -> SegmentationRun:
        """Dispatch one task per frame and return immediately."""

        for position, frame in enumerate(batch.frames):
            if frame.index != position:
                raise ValueError(
                    f"Frame at position {position} has index {frame.index}; batches must be 0..N-1"
                )

        run_epoch = batch.epoch if epoch is None else epoch
        current_epoch = self._current_epoch or (lambda: run_epoch)
        run = SegmentationRun(
            epoch=run_epoch,
            total=len(batch),
            current_epoch=current_epoch,
            listener=listener,
            task_timeout_s=self.config.task_timeout_s,
        )

        if len(batch) == 0:
            run._finish()
            return run

        log_event(
            _LOGGER,
            "segmentation_dispatched",
            epoch=run_epoch,
            frames=len(batch),
            max_workers=self.max_workers,
        )
        with self._runs_lock:
            self._runs = [item for item in self._runs if not item.done()]
            self._runs.append(run)
        try:
            for frame in batch.frames:
                future = self._executor.submit(run._run_task, frame, self.backend)
                run._attach(frame.index, future)
        except RuntimeError:
            # Pool shut down mid-dispatch; settle every slot so waiters return.
            run.cancel()
            raise
        deadline = run_deadline(len(batch), self.max_workers, self.config.task_timeout_s)
        if deadline is not None:
            run._arm_deadline(deadline)
        return run

    def shutdown(self, wait: bool = False) -> None:
        """Cancel unfinished runs and stop the pool."""

        with self._runs_lock:
            runs, self._runs = self._runs, []
        for run in runs:
            run.cancel()
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> SegmentationOrchestrator:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown(wait=True)
