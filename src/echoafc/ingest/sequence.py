"""Helpers for indexed image sequences and frame sampling."""

from __future__ import annotations

from pathlib import Path
import re


FRAME_PREFIX = "frame"
MASK_PREFIX = "mask"


def _pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}_(?P<idx>\d+)(?:\.[A-Za-z0-9]+)?$")


def parse_sequence_index(path: Path, prefix: str = FRAME_PREFIX) -> int | None:
    """Extract the index from a filename like frame_123.png."""

    match = _pattern(prefix).match(path.name)
    if match is None:
        return None
    return int(match.group("idx"))


def find_missing_indices(indices: list[int]) -> list[int]:
    """Find missing indices in a sorted integer sequence."""

    if not indices:
        return []
    present = set(indices)
    return [idx for idx in range(indices[0], indices[-1]) if idx not in present]


def sampling_step(source_fps: float, sampling_rate_hz: float) -> int:
    """Return how many source frames to advance per sampled frame."""

    if sampling_rate_hz <= 0:
        raise ValueError(f"sampling_rate_hz must be > 0, got {sampling_rate_hz}")
    if source_fps <= 0:
        return 1
    return max(1, int(round(source_fps / sampling_rate_hz)))
