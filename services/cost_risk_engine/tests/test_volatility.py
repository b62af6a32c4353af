import math
from datetime import datetime, timedelta

import pytest

from cost_risk_engine.exceptions import NumericInstability
from cost_risk_engine.models import ConfidenceLevel
from cost_risk_engine.risk.volatility import (
    CategoryAccumulator,
    aggregate,
    annualized_returns,
    confidence_for,
    contract_volatility,
)
from cost_risk_engine.schemas import Observation

START = datetime(2024, 1, 1)


def _series(*points: tuple[int, float]) -> list[Observation]:
    """[(день от старта, ratio), ...] → ряд наблюдений."""
    return [
        Observation(
            contract_id=1,
            observation_date=START + timedelta(days=day),
            ceiling_value=1000.0,
            obligation_value=ratio * 1000,
            ratio=ratio,
        )
        for day, ratio in points
    ]


def test_fewer_than_three_observations_has_no_sigma() -> None:
    assert contract_volatility(_series((0, 0.2), (365, 0.4))) is None


def test_three_observations_with_one_valid_return_has_no_sigma() -> None:
    # первая пара пропускается: предыдущий ratio = 0
    assert contract_volatility(_series((0, 0.0), (30, 0.3), (60, 0.35))) is None


def test_annual_spacing_uses_bessel_corrected_variance() -> None:
    sigma = contract_volatility(_series((0, 0.2), (365, 0.4), (730, 0.5)))

    # доходности 1.0 и 0.25, среднее 0.625, дисперсия (0.375² * 2) / 1
    assert sigma == pytest.approx(math.sqrt(0.28125))


def test_returns_are_annualized_by_day_count() -> None:
    returns = annualized_returns(_series((0, 0.5), (91, 0.55), (456, 0.605)))

    assert returns[0] == pytest.approx(0.1 * math.sqrt(365 / 91))
    assert returns[1] == pytest.approx(0.1)


def test_same_day_observations_count_as_one_day() -> None:
    returns = annualized_returns(_series((0, 0.5), (0, 0.55)))

    assert returns == [pytest.approx(0.1 * math.sqrt(365))]


def test_flat_series_has_zero_sigma() -> None:
    assert contract_volatility(_series((0, 0.5), (365, 0.5), (730, 0.5))) == 0.0


@pytest.mark.parametrize(
    "count, expected",
    [
        (0, ConfidenceLevel.low),
        (19, ConfidenceLevel.low),
        (20, ConfidenceLevel.medium),
        (49, ConfidenceLevel.medium),
        (50, ConfidenceLevel.high),
        (500, ConfidenceLevel.high),
    ],
)
def test_confidence_grade_boundaries(count: int, expected: ConfidenceLevel) -> None:
    assert confidence_for(count) == expected


def test_weighted_mean_by_obligated_amount() -> None:
    acc = aggregate([(0.2, 100), (0.4, 300)], key="R425")

    assert acc.count == 2
    assert acc.sigma() == pytest.approx(0.35)
    assert acc.confidence == ConfidenceLevel.low


def test_missing_or_zero_obligation_weighs_one() -> None:
    acc = aggregate([(0.2, None), (0.4, 0), (0.6, 1)])

    assert acc.sigma() == pytest.approx(0.4)


def test_null_and_non_finite_sigmas_are_discarded() -> None:
    acc = CategoryAccumulator("R425")

    assert acc.add(None, 100) is False
    assert acc.add(float("nan"), 100) is False
    assert acc.add(float("inf"), 100) is False
    assert acc.add(0.3, 100) is True
    assert acc.count == 1
    assert acc.sigma() == pytest.approx(0.3)


def test_empty_accumulator_has_no_sigma() -> None:
    assert CategoryAccumulator("R425").sigma() is None


def test_accumulator_rejects_non_finite_mean() -> None:
    acc = aggregate([(0.3, 100)], key="R425")
    acc.weighted_sum = float("inf")

    with pytest.raises(NumericInstability):
        acc.sigma()


def test_twenty_contracts_grade_medium() -> None:
    acc = aggregate([(0.1 + i / 100, 1000) for i in range(20)])

    assert acc.confidence == ConfidenceLevel.medium
