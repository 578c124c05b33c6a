from __future__ import annotations

import threading
import time

import pytest
from pytest import approx

from conftest import FakeBackend, FakeFrameSource, RecordingPresenter, make_frames
from echoafc.analysis import cycle as cycle_module
from echoafc.analysis import ef as ef_module
from echoafc.config.schema import PipelineConfig, SegmentationConfig
from echoafc.errors import DECODE_FAILURE, ExtractionError
from echoafc.pipeline.controller import PipelineController


def _controller(
    backend: FakeBackend,
    source: FakeFrameSource,
    presenter: RecordingPresenter,
    max_workers: int = 4,
) -> PipelineController:
    config = PipelineConfig(segmentation=SegmentationConfig(max_workers=max_workers, task_timeout_s=5.0))
    return PipelineController(source, backend, presenter=presenter, config=config)


def _wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


def test_initial_snapshot_shows_placeholder() -> None:
    controller = PipelineController(FakeFrameSource(), FakeBackend([]))
    try:
        snapshot = controller.snapshot()
        assert snapshot.phase == "Idle"
        assert snapshot.display == "--%"
        assert snapshot.video_name == "No video selected"
        assert controller.wait(0.01).epoch == 0
    finally:
        controller.shutdown()


def test_end_to_end_with_one_failed_frame(presenter: RecordingPresenter) -> None:
    backend = FakeBackend([80, 60, RuntimeError("decoder glitch"), 90, 70])
    source = FakeFrameSource(frames={"clip.avi": make_frames(5)})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("/videos/clip.avi", timeout=10.0)

    assert snapshot.phase == "Done"
    assert snapshot.video_name == "clip.avi"
    assert snapshot.result is not None
    assert snapshot.result.percentage == approx(33.3333, abs=1e-3)
    assert snapshot.display == "33.33%"
    assert (snapshot.result.ed_index, snapshot.result.es_index) == (3, 1)
    assert (snapshot.segmented, snapshot.failed, snapshot.total) == (4, 1, 5)
    assert presenter.phases_for(1) == ["Idle", "Extracting", "Segmenting", "Analyzing", "Done"]
    assert presenter.results[0][0] == 1
    assert presenter.errors == []

    counts = [segmented for epoch, segmented, _ in presenter.progress if epoch == 1]
    assert counts[0] == 0
    assert counts == sorted(counts)
    assert counts[-1] == 4


def test_all_frames_failing_never_reaches_ef_engine(
    presenter: RecordingPresenter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    calls: list[tuple[int, int]] = []

    def recording_compute_afc(ed_area: int, es_area: int) -> float:
        calls.append((ed_area, es_area))
        return 0.0

    monkeypatch.setattr(ef_module, "compute_afc", recording_compute_afc)
    backend = FakeBackend([RuntimeError("x")] * 4)
    source = FakeFrameSource(frames={"clip.avi": make_frames(4)})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("clip.avi", timeout=10.0)

    assert snapshot.phase == "Failed"
    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Segmenting", "NoMasksSegmented")
    assert snapshot.display == "--%"
    assert calls == []
    assert "Analyzing" not in presenter.phases_for(1)


def test_single_mask_is_insufficient(presenter: RecordingPresenter) -> None:
    backend = FakeBackend([70, RuntimeError("x"), None])
    source = FakeFrameSource(frames={"clip.avi": make_frames(3)})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("clip.avi", timeout=10.0)

    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Segmenting", "InsufficientMasks")


def test_empty_masks_leave_too_few_candidates(presenter: RecordingPresenter) -> None:
    backend = FakeBackend([0, 0, 40])
    source = FakeFrameSource(frames={"clip.avi": make_frames(3)})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("clip.avi", timeout=10.0)

    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Analyzing", "InsufficientMasks")


def test_constant_area_is_degenerate(presenter: RecordingPresenter) -> None:
    backend = FakeBackend([50, 50, 50])
    source = FakeFrameSource(frames={"clip.avi": make_frames(3)})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("clip.avi", timeout=10.0)

    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Analyzing", "DegenerateCycle")
    assert presenter.errors[0][1] == snapshot.error


def test_ef_failure_is_tagged_with_ef_stage(
    presenter: RecordingPresenter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_cycle(batch, threshold=0.5):
        return cycle_module.CardiacCycleResult(ed_index=0, es_index=1, ed_area=0, es_area=0)

    monkeypatch.setattr(cycle_module, "identify_ed_es", broken_cycle)
    backend = FakeBackend([10, 20])
    source = FakeFrameSource(frames={"clip.avi": make_frames(2)})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("clip.avi", timeout=10.0)

    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("EFEngine", "DivisionByZero")


def test_no_frames_fails_extraction(presenter: RecordingPresenter) -> None:
    backend = FakeBackend([])
    source = FakeFrameSource(frames={"empty.avi": []})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("empty.avi", timeout=10.0)

    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Extracting", "NoFrames")
    assert backend.calls == []


@pytest.mark.parametrize(
    "error",
    [ExtractionError(DECODE_FAILURE, "corrupt header"), OSError("disk went away")],
)
def test_extraction_errors_become_decode_failures(
    presenter: RecordingPresenter,
    error: Exception,
) -> None:
    source = FakeFrameSource(errors={"bad.avi": error})

    with _controller(FakeBackend([]), source, presenter) as controller:
        snapshot = controller.analyze("bad.avi", timeout=10.0)

    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Extracting", "DecodeFailure")


def test_frames_are_reindexed_in_order(presenter: RecordingPresenter) -> None:
    frames = make_frames(6)[::2]
    backend = FakeBackend([30, 10, 20])
    source = FakeFrameSource(frames={"clip.avi": frames})

    with _controller(backend, source, presenter) as controller:
        snapshot = controller.analyze("clip.avi", timeout=10.0)

    assert snapshot.phase == "Done"
    assert sorted(backend.calls) == [0, 1, 2]
    assert (snapshot.result.ed_index, snapshot.result.es_index) == (0, 1)


def test_selection_during_extraction_supersedes_old_run(presenter: RecordingPresenter) -> None:
    gate = threading.Event()
    backend = FakeBackend([80, 40, 60])
    source = FakeFrameSource(
        frames={"a.avi": make_frames(3), "b.avi": make_frames(3)},
        gates={"a.avi": gate},
    )

    with _controller(backend, source, presenter) as controller:
        first = controller.select_video("a.avi")
        _wait_until(lambda: ("a.avi", 30.0) in source.calls)
        second = controller.select_video("b.avi")
        snapshot = controller.wait(10.0)
        gate.set()
        for thread in threading.enumerate():
            if thread.name == f"echoafc-run-{first}":
                thread.join(5.0)

        assert controller.snapshot() == snapshot

    assert (first, second) == (1, 2)
    assert snapshot.epoch == 2
    assert snapshot.video_name == "b.avi"
    assert snapshot.display == "50.00%"
    assert presenter.phases_for(1) == ["Idle", "Extracting"]
    assert [epoch for epoch, _ in presenter.results] == [2]


def test_selection_during_segmentation_discards_old_masks(presenter: RecordingPresenter) -> None:
    gate = threading.Event()
    backend = FakeBackend([80, 40, 60], gate=gate, gated_marker=1)
    source = FakeFrameSource(
        frames={"a.avi": make_frames(2, marker=1), "b.avi": make_frames(3, marker=2)},
    )

    with _controller(backend, source, presenter, max_workers=4) as controller:
        controller.select_video("a.avi")
        _wait_until(lambda: controller.snapshot().phase == "Segmenting")
        controller.select_video("b.avi")
        snapshot = controller.wait(10.0)
        gate.set()
        _wait_until(lambda: backend.active == 0)

        assert controller.snapshot() == snapshot

    assert snapshot.epoch == 2
    assert snapshot.phase == "Done"
    assert (snapshot.segmented, snapshot.total) == (3, 3)
    assert presenter.phases_for(1) == ["Idle", "Extracting", "Segmenting"]
    assert [epoch for epoch, *_ in presenter.progress if epoch == 1] == [1]
    assert [epoch for epoch, _ in presenter.results] == [2]
    assert presenter.errors == []


def test_wait_returns_after_shutdown() -> None:
    gate = threading.Event()
    source = FakeFrameSource(frames={"a.avi": make_frames(2)}, gates={"a.avi": gate})
    controller = PipelineController(source, FakeBackend([1, 2]))
    controller.select_video("a.avi")

    releaser = threading.Timer(0.05, controller.shutdown)
    releaser.start()
    try:
        snapshot = controller.wait(5.0)
    finally:
        gate.set()
        releaser.join()

    assert not snapshot.terminal


def test_select_video_after_shutdown_is_refused() -> None:
    source = FakeFrameSource(frames={"clip.avi": make_frames(2)})
    backend = FakeBackend([10, 20])
    controller = PipelineController(source, backend)
    controller.shutdown()

    with pytest.raises(RuntimeError, match="shut down"):
        controller.select_video("clip.avi")

    assert controller.snapshot().phase == "Idle"
    assert backend.calls == []


def test_dispatch_failure_fails_segmentation(
    presenter: RecordingPresenter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    backend = FakeBackend([10, 20])
    source = FakeFrameSource(frames={"clip.avi": make_frames(2)})

    with _controller(backend, source, presenter) as controller:

        def refuse(*args, **kwargs):
            raise RuntimeError("cannot schedule new futures after shutdown")

        monkeypatch.setattr(controller._orchestrator, "submit", refuse)
        snapshot = controller.analyze("clip.avi", timeout=5.0)

    assert snapshot.terminal
    assert snapshot.phase == "Failed"
    assert snapshot.error is not None
    assert (snapshot.error.stage, snapshot.error.kind) == ("Segmenting", "UnexpectedError")
    assert "cannot schedule new futures" in snapshot.error.message
    assert presenter.phases_for(1) == ["Idle", "Extracting", "Segmenting", "Failed"]
    assert backend.calls == []
