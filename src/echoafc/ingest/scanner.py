"""Frame sources: indexed image directories and video files."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import numpy as np
from PIL import Image, UnidentifiedImageError

from echoafc.config.schema import ExtractionConfig
from echoafc.errors import DECODE_FAILURE, ExtractionError
from echoafc.ingest.sequence import FRAME_PREFIX, find_missing_indices, parse_sequence_index, sampling_step
from echoafc.observability.logging import get_logger, log_event
from echoafc.types import Frame


_LOGGER = get_logger("echoafc.ingest")

VIDEO_SUFFIXES = {".mp4", ".mov", ".avi", ".m4v", ".mkv"}


class FrameSource(Protocol):
    """Decodes a video handle into ordered frames at a sampling rate."""

    def extract(self, handle: Path, sampling_rate_hz: float) -> list[Frame]:
        ...


@dataclass(slots=True)
class FrameRef:
    frame_idx: int
    path: Path


@dataclass(slots=True)
class StreamScanResult:
    stream_path: Path
    frames: list[FrameRef]
    missing_indices: list[int]

    @property
    def frame_count(self) -> int:
        return len(self.frames)


def scan_stream(stream_path: Path) -> StreamScanResult:
    """Return ordered frame files and sequence gaps for a directory."""

    if not stream_path.exists():
        raise ExtractionError(DECODE_FAILURE, f"Input path does not exist: {stream_path}")
    if not stream_path.is_dir():
        raise ExtractionError(DECODE_FAILURE, f"Input path must be a directory: {stream_path}")

    parsed: list[FrameRef] = []
    for child in stream_path.iterdir():
        if not child.is_file():
            continue
        idx = parse_sequence_index(child, FRAME_PREFIX)
        if idx is None:
            continue
        parsed.append(FrameRef(frame_idx=idx, path=child))

    parsed.sort(key=lambda item: item.frame_idx)
    missing = find_missing_indices([item.frame_idx for item in parsed])
    return StreamScanResult(stream_path=stream_path, frames=parsed, missing_indices=missing)


def _load_grayscale(path: Path) -> np.ndarray:
    try:
        with Image.open(path) as image:
            return np.asarray(image.convert("L"), dtype=np.uint8)
    except (OSError, UnidentifiedImageError) as exc:
        raise ExtractionError(DECODE_FAILURE, f"Could not decode frame {path.name}: {exc}") from exc


@dataclass(slots=True)
class DirectoryFrameSource:
    """Reads `frame_<idx>.<ext>` images as a pre-split video."""

    source_fps: float = 30.0
    max_frames: int | None = None

    def extract(self, handle: Path, sampling_rate_hz: float) -> list[Frame]:
        scan = scan_stream(handle)
        if scan.missing_indices:
            log_event(
                _LOGGER,
                "sequence_gaps",
                stream=str(handle),
                missing=len(scan.missing_indices),
                first_missing=scan.missing_indices[0],
            )

        step = sampling_step(self.source_fps, sampling_rate_hz)
        frames: list[Frame] = []
        for ref in scan.frames[::step]:
            if self.max_frames is not None and len(frames) >= self.max_frames:
                break
            frames.append(
                Frame(
                    index=len(frames),
                    pixels=_load_grayscale(ref.path),
                    source_index=ref.frame_idx,
                )
            )
        log_event(
            _LOGGER,
            "frames_extracted",
            stream=str(handle),
            available=scan.frame_count,
            sampled=len(frames),
            step=step,
        )
        return frames


@dataclass(slots=True)
class VideoFileFrameSource:
    """Decodes a video file with OpenCV (the `video` extra)."""

    max_frames: int | None = None

    def extract(self, handle: Path, sampling_rate_hz: float) -> list[Frame]:
        try:
            import cv2
        except ModuleNotFoundError as error:
            raise ExtractionError(
                DECODE_FAILURE,
                "opencv-python is required to decode video files. Install with: pip install -e '.[video]'",
            ) from error

        if not handle.exists():
            raise ExtractionError(DECODE_FAILURE, f"Video does not exist: {handle}")

        capture = cv2.VideoCapture(str(handle))
        if not capture.isOpened():
            raise ExtractionError(DECODE_FAILURE, f"Failed to open video: {handle}")

        fps = capture.get(cv2.CAP_PROP_FPS)
        if fps <= 0:
            fps = 30.0
        step = sampling_step(fps, sampling_rate_hz)

        frames: list[Frame] = []
        source_index = 0
        try:
            while True:
                ok, image = capture.read()
                if not ok:
                    break
                if source_index % step == 0:
                    gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY) if image.ndim == 3 else image
                    frames.append(
                        Frame(index=len(frames), pixels=np.ascontiguousarray(gray), source_index=source_index)
                    )
                    if self.max_frames is not None and len(frames) >= self.max_frames:
                        break
                source_index += 1
        finally:
            capture.release()

        log_event(
            _LOGGER,
            "frames_extracted",
            stream=str(handle),
            fps=fps,
            decoded=source_index,
            sampled=len(frames),
            step=step,
        )
        return frames


def resolve_frame_source(handle: Path, config: ExtractionConfig | None = None) -> FrameSource:
    """Pick a frame source for a path: directories of frames or video files."""

    cfg = config or ExtractionConfig()
    if handle.is_dir():
        return DirectoryFrameSource(source_fps=cfg.source_fps, max_frames=cfg.max_frames)
    if handle.suffix.lower() in VIDEO_SUFFIXES:
        return VideoFileFrameSource(max_frames=cfg.max_frames)
    raise ExtractionError(DECODE_FAILURE, f"Unsupported input (expected a frame directory or video): {handle}")


@dataclass(slots=True)
class AutoFrameSource:
    """Dispatches each handle to the matching source."""

    config: ExtractionConfig

    def extract(self, handle: Path, sampling_rate_hz: float) -> list[Frame]:
        return resolve_frame_source(Path(handle), self.config).extract(Path(handle), sampling_rate_hz)
