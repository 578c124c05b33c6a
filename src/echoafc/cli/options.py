"""Shared CLI options and config overrides."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from echoafc.config.loader import load_pipeline_config
from echoafc.config.profiles import apply_profile
from echoafc.config.schema import PipelineConfig


@dataclass(slots=True)
class PipelineOptions:
    """Options shared by commands that run segmentation."""

    config: str | None = None
    profile: str | None = None
    workers: int | None = None
    sampling_rate_hz: float | None = None
    task_timeout_s: float | None = None
    backend: str | None = None
    mask_dir: Path | None = None
    max_frames: int | None = None
    log_level: str = "WARNING"


def resolve_config(options: PipelineOptions) -> PipelineConfig:
    """Load the base config, then apply profile and explicit overrides in that order."""

    cfg = load_pipeline_config(options.config)
    if options.profile:
        apply_profile(cfg, options.profile)
    if options.workers is not None:
        cfg.segmentation.max_workers = int(options.workers)
    if options.sampling_rate_hz is not None:
        cfg.extraction.sampling_rate_hz = float(options.sampling_rate_hz)
    if options.task_timeout_s is not None:
        cfg.segmentation.task_timeout_s = float(options.task_timeout_s)
    if options.backend is not None:
        cfg.segmentation.backend = options.backend  # type: ignore[assignment]
    if options.mask_dir is not None:
        cfg.segmentation.mask_dir = str(options.mask_dir.resolve())
        if options.backend is None:
            cfg.segmentation.backend = "precomputed"
    if options.max_frames is not None:
        cfg.extraction.max_frames = int(options.max_frames)
    return cfg
