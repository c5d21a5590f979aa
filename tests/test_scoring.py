from datetime import date
from decimal import Decimal

import pytest

from ledger_recon.matching.scoring import (
    amount_proximity,
    amounts_equal,
    date_distance_days,
    description_similarity,
    fuzzy_confidence,
)


def test_description_similarity_is_case_insensitive_jaccard():
    assert description_similarity("ACME Corp Payment", "acme corp") == pytest.approx(2 / 3)


def test_description_similarity_empty_inputs():
    assert description_similarity("", "") == 0.0
    assert description_similarity(None, "ACME") == 0.0
    assert description_similarity("   ", "ACME") == 0.0


def test_amount_proximity_near_amounts_score_one():
    assert amount_proximity(Decimal("100.00"), Decimal("100.50")) == 1.0


def test_amount_proximity_compares_magnitudes():
    assert amount_proximity(Decimal("-150.00"), Decimal("150.00")) == 1.0


def test_amount_proximity_decays_linearly_and_clamps():
    assert amount_proximity(100, 150) == pytest.approx(0.5)
    assert amount_proximity(0, 500) == 0.0


def test_amount_proximity_custom_scale():
    assert amount_proximity(100, 150, near_threshold=1.0, scale=200.0) == pytest.approx(0.75)


def test_fuzzy_confidence_weights():
    assert fuzzy_confidence(1.0, 0.5) == pytest.approx(0.8)
    assert fuzzy_confidence(1.0, 1.0) == pytest.approx(1.0)
    assert fuzzy_confidence(0.5, 0.5, description_weight=0.5, amount_weight=0.5) == pytest.approx(0.5)


def test_fuzzy_confidence_is_clamped():
    assert fuzzy_confidence(1.0, 1.0, description_weight=0.9, amount_weight=0.9) == 1.0


def test_amounts_equal_is_strict_about_tolerance():
    assert amounts_equal(Decimal("10.00"), Decimal("10.009"))
    assert not amounts_equal(Decimal("10.00"), Decimal("10.01"))
    assert amounts_equal(Decimal("-42.17"), Decimal("42.17"))


def test_date_distance_is_symmetric():
    assert date_distance_days(date(2024, 1, 1), date(2024, 1, 4)) == 3
    assert date_distance_days(date(2024, 1, 4), date(2024, 1, 1)) == 3
