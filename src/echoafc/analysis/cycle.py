"""End-diastolic / end-systolic frame selection."""

from __future__ import annotations

import logging

from echoafc.analysis.area import DEFAULT_FOREGROUND_THRESHOLD, compute_area_samples
from echoafc.errors import DEGENERATE_CYCLE, INSUFFICIENT_MASKS, CycleError
from echoafc.observability.logging import get_logger, log_event
from echoafc.types import AreaSample, CardiacCycleResult, MaskBatch


_LOGGER = get_logger("echoafc.cycle")

MIN_CANDIDATES = 2


def candidate_samples(
    batch: MaskBatch,
    threshold: float = DEFAULT_FOREGROUND_THRESHOLD,
) -> list[AreaSample]:
    """Return valid, non-zero area samples in frame order."""

    candidates: list[AreaSample] = []
    for sample in compute_area_samples(batch, threshold):
        if not isinstance(sample, AreaSample):
            log_event(
                _LOGGER,
                "frame_excluded",
                level=logging.DEBUG,
                frame_index=sample.frame_index,
                reason=sample.reason,
            )
            continue
        if sample.area == 0:
            log_event(
                _LOGGER,
                "frame_excluded",
                level=logging.DEBUG,
                frame_index=sample.frame_index,
                reason="empty mask",
            )
            continue
        candidates.append(sample)
    return candidates


def identify_ed_es(
    batch: MaskBatch,
    threshold: float = DEFAULT_FOREGROUND_THRESHOLD,
) -> CardiacCycleResult:
    """Pick the maximal-area (ED) and minimal-area (ES) frames.

    Ties go to the lowest frame index, independently for ED and ES.
    """

    candidates = candidate_samples(batch, threshold)
    if len(candidates) < MIN_CANDIDATES:
        raise CycleError(
            INSUFFICIENT_MASKS,
            f"need at least {MIN_CANDIDATES} usable masks, found {len(candidates)} of {len(batch)}",
        )

    # Candidates are in ascending frame order, so the strict comparisons keep
    # the earliest frame on ties.
    ed = candidates[0]
    es = candidates[0]
    for sample in candidates[1:]:
        if sample.area > ed.area:
            ed = sample
        if sample.area < es.area:
            es = sample

    if ed.frame_index == es.frame_index:
        raise CycleError(
            DEGENERATE_CYCLE,
            f"ED and ES resolve to the same frame {ed.frame_index} (area {ed.area})",
        )
    if ed.area < es.area:
        raise CycleError(
            DEGENERATE_CYCLE,
            f"ED area {ed.area} is smaller than ES area {es.area}",
        )

    log_event(
        _LOGGER,
        "cycle_identified",
        candidates=len(candidates),
        ed_index=ed.frame_index,
        ed_area=ed.area,
        es_index=es.frame_index,
        es_area=es.area,
    )
    return CardiacCycleResult(
        ed_index=ed.frame_index,
        es_index=es.frame_index,
        ed_area=ed.area,
        es_area=es.area,
    )
