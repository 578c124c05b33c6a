"""`echoafc areas` command."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import tyro

from echoafc.analysis.area import compute_area_samples
from echoafc.analysis.cycle import identify_ed_es
from echoafc.cli.options import PipelineOptions, resolve_config
from echoafc.errors import EchoAFCError
from echoafc.ingest.scanner import AutoFrameSource
from echoafc.observability.logging import configure_logging
from echoafc.segmentation.backend import resolve_backend
from echoafc.segmentation.orchestrator import SegmentationOrchestrator
from echoafc.types import AreaSample, CardiacCycleResult, FrameBatch


@dataclass(slots=True)
class AreasCommand:
    """Print the per-frame LV area curve with ED/ES markers."""

    input: Path
    options: tyro.conf.OmitArgPrefixes[PipelineOptions] = field(default_factory=PipelineOptions)


def _marker(index: int, cycle: CardiacCycleResult | None) -> str:
    if cycle is None:
        return ""
    if index == cycle.ed_index:
        return "ED"
    if index == cycle.es_index:
        return "ES"
    return ""


def execute(command: AreasCommand) -> int:
    configure_logging(command.options.log_level)
    cfg = resolve_config(command.options)
    source = AutoFrameSource(cfg.extraction)

    try:
        frames = source.extract(command.input, cfg.extraction.sampling_rate_hz)
    except (EchoAFCError, ValueError) as exc:
        print(f"extraction failed: {exc}")
        return 1
    if not frames:
        print("no frames extracted")
        return 1

    batch = FrameBatch(
        epoch=1,
        frames=tuple(frames),
        source=str(command.input),
        sampling_rate_hz=cfg.extraction.sampling_rate_hz,
    )
    with SegmentationOrchestrator(resolve_backend(cfg.segmentation), cfg.segmentation) as orchestrator:
        aggregation = orchestrator.submit(batch).wait(cfg.wait_timeout_s)
    if aggregation is None:
        print(f"segmentation did not finish within {cfg.wait_timeout_s}s")
        return 2

    cycle: CardiacCycleResult | None
    try:
        cycle = identify_ed_es(aggregation.masks, threshold=cfg.area.foreground_threshold)
    except EchoAFCError as exc:
        cycle = None
        print(f"cycle: {exc}")

    print(f"{'frame':>6} {'source':>7} {'area_px':>9}  marker")
    for sample in compute_area_samples(aggregation.masks, cfg.area.foreground_threshold):
        frame = batch.frames[sample.frame_index]
        source_index = frame.source_index if frame.source_index is not None else frame.index
        if isinstance(sample, AreaSample):
            value = str(sample.area)
        else:
            value = f"- ({sample.reason})"
        print(f"{sample.frame_index:>6} {source_index:>7} {value:>9}  {_marker(sample.frame_index, cycle)}")
    print(f"outcome={aggregation.outcome} segmented={aggregation.succeeded}/{aggregation.total}")
    return 0
