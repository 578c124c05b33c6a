"""`echoafc analyze` command."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import tyro

from echoafc.cli.options import PipelineOptions, resolve_config
from echoafc.ingest.scanner import AutoFrameSource
from echoafc.observability.logging import configure_logging
from echoafc.pipeline.controller import DONE, PipelineController, PipelineSnapshot
from echoafc.pipeline.presenter import ConsolePresenter
from echoafc.segmentation.backend import resolve_backend
from echoafc.storage.reports import write_report


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_TIMEOUT = 2


@dataclass(slots=True)
class AnalyzeCommand:
    """Compute the area fractional change (AFC) of one echo clip."""

    input: Path
    output: Path | None = None
    options: tyro.conf.OmitArgPrefixes[PipelineOptions] = field(default_factory=PipelineOptions)


def build_report(command: AnalyzeCommand, snapshot: PipelineSnapshot, config: Any) -> dict[str, Any]:
    return {
        "input": str(command.input.resolve()),
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "epoch": snapshot.epoch,
        "phase": snapshot.phase,
        "display": snapshot.display,
        "frames": {
            "total": snapshot.total,
            "segmented": snapshot.segmented,
            "failed": snapshot.failed,
        },
        "result": snapshot.result.to_dict() if snapshot.result is not None else None,
        "error": snapshot.error.to_dict() if snapshot.error is not None else None,
        "config": asdict(config),
    }


def execute(command: AnalyzeCommand) -> int:
    configure_logging(command.options.log_level)
    cfg = resolve_config(command.options)
    backend = resolve_backend(cfg.segmentation)

    with PipelineController(
        frame_source=AutoFrameSource(cfg.extraction),
        backend=backend,
        presenter=ConsolePresenter(),
        config=cfg,
    ) as controller:
        snapshot = controller.analyze(command.input)

    if command.output is not None:
        write_report(command.output, build_report(command, snapshot, cfg))
        print(f"report written to {command.output}")

    if not snapshot.terminal:
        print(f"timed out after {cfg.wait_timeout_s}s in phase {snapshot.phase}")
        return EXIT_TIMEOUT
    return EXIT_OK if snapshot.phase == DONE else EXIT_FAILED
