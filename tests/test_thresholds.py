from __future__ import annotations

import pytest
from pydantic import ValidationError

from aquadash.errors import ThresholdValidationError
from aquadash.services.thresholds import ThresholdSet, recommended


def test_filled_pairs_are_renamed_for_the_device():
    thresholds = ThresholdSet(ph_min=6.5, ph_max=8.5, temp_min=20, temp_max=30)
    assert thresholds.to_backend() == {
        "ph_good": 6.5,
        "ph_bad": 8.5,
        "temp_low": 20,
        "temp_high": 30,
    }


def test_half_filled_pair_is_invalid():
    errors = ThresholdSet(tds_min=50).validate_pairs()
    assert errors == {"tds": "both min and max are required"}


@pytest.mark.parametrize("low,high", [(8.0, 8.0), (9.0, 6.0)])
def test_min_must_be_below_max(low, high):
    with pytest.raises(ThresholdValidationError):
        ThresholdSet(do_min=low, do_max=high).to_backend()


def test_empty_set_is_rejected():
    with pytest.raises(ThresholdValidationError, match="at least one"):
        ThresholdSet().to_backend()


def test_zero_is_a_filled_value():
    assert ThresholdSet(tds_min=0, tds_max=500).to_backend() == {"tds_good": 0, "tds_bad": 500}


def test_recommended_presets_are_valid():
    preset = recommended()
    assert preset.to_backend()["do_bad"] == 15
    assert preset.ph_min == 6.5


@pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf")])
def test_non_finite_values_are_rejected(value):
    with pytest.raises(ValidationError):
        ThresholdSet(ph_min=value, ph_max=8.5)
