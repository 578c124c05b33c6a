from __future__ import annotations

import pytest
from pytest import approx

from echoafc.analysis.ef import build_ef_result, classify_afc, compute_afc
from echoafc.errors import DIVISION_BY_ZERO, INVALID_AREA_RELATIONSHIP, EFError
from echoafc.types import CardiacCycleResult


def test_compute_afc_reference_values() -> None:
    assert compute_afc(100, 40) == approx(60.0)
    assert compute_afc(100, 100) == 0.0
    assert compute_afc(90, 60) == approx(33.3333, abs=1e-4)


def test_es_larger_than_ed_is_rejected() -> None:
    with pytest.raises(EFError) as excinfo:
        compute_afc(100, 150)
    assert excinfo.value.kind == INVALID_AREA_RELATIONSHIP
    assert excinfo.value.stage == "EFEngine"


def test_zero_ed_area_is_division_by_zero_even_when_es_is_zero() -> None:
    with pytest.raises(EFError) as excinfo:
        compute_afc(0, 0)
    assert excinfo.value.kind == DIVISION_BY_ZERO


def test_negative_areas_are_rejected() -> None:
    with pytest.raises(EFError) as excinfo:
        compute_afc(100, -5)
    assert excinfo.value.kind == INVALID_AREA_RELATIONSHIP


def test_full_contraction_yields_one_hundred_percent() -> None:
    assert compute_afc(250, 0) == 100.0


def test_build_ef_result_carries_frames_and_band() -> None:
    result = build_ef_result(CardiacCycleResult(ed_index=3, es_index=1, ed_area=90, es_area=60))

    assert result.percentage == approx(100.0 / 3.0)
    assert result.display() == "33.33%"
    assert (result.ed_index, result.es_index) == (3, 1)
    assert result.band == "reduced"


@pytest.mark.parametrize(
    ("value", "band"),
    [(20.0, "reduced"), (55.0, "normal"), (70.0, "normal"), (81.0, "hyperdynamic")],
)
def test_classify_afc_bands(value: float, band: str) -> None:
    assert classify_afc(value) == band
