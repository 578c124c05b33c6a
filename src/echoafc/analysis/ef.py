"""Area fractional change (AFC) computation."""

from __future__ import annotations

from echoafc.errors import DIVISION_BY_ZERO, INVALID_AREA_RELATIONSHIP, EFError
from echoafc.types import CardiacCycleResult, EFResult


# Reference bands for ejection fraction (AHA adult ranges).
REDUCED_BELOW = 55.0
HYPERDYNAMIC_ABOVE = 70.0


def compute_afc(ed_area: int, es_area: int) -> float:
    """Return `(ed_area - es_area) / ed_area * 100` without clamping."""

    if ed_area == 0:
        raise EFError(DIVISION_BY_ZERO, "end-diastolic area is zero")
    if ed_area < 0 or es_area < 0:
        raise EFError(
            INVALID_AREA_RELATIONSHIP,
            f"areas must be non-negative (ED={ed_area}, ES={es_area})",
        )
    if es_area > ed_area:
        raise EFError(
            INVALID_AREA_RELATIONSHIP,
            f"end-systolic area {es_area} exceeds end-diastolic area {ed_area}",
        )
    return (ed_area - es_area) / ed_area * 100.0


def classify_afc(percentage: float) -> str:
    """Coarse label for presentation; never used to alter the value."""

    if percentage < REDUCED_BELOW:
        return "reduced"
    if percentage > HYPERDYNAMIC_ABOVE:
        return "hyperdynamic"
    return "normal"


def build_ef_result(cycle: CardiacCycleResult) -> EFResult:
    percentage = compute_afc(cycle.ed_area, cycle.es_area)
    return EFResult(
        percentage=percentage,
        ed_area=cycle.ed_area,
        es_area=cycle.es_area,
        ed_index=cycle.ed_index,
        es_index=cycle.es_index,
        band=classify_afc(percentage),
    )
