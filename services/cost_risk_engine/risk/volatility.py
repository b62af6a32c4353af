# services/cost_risk_engine/risk/volatility.py

import math
from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..exceptions import NumericInstability
from ..models import ConfidenceLevel

DAYS_PER_YEAR = 365

MIN_OBSERVATIONS = 3
MIN_RETURNS = 2

# Пороги степени доверия (число контрактов/наблюдений)
HIGH_CONFIDENCE_COUNT = 50
MEDIUM_CONFIDENCE_COUNT = 20


class RatioPoint(Protocol):
    observation_date: datetime
    ratio: float


def confidence_for(count: int) -> ConfidenceLevel:
    """<20 → low, 20..49 → medium, >=50 → high."""
    if count >= HIGH_CONFIDENCE_COUNT:
        return ConfidenceLevel.high
    if count >= MEDIUM_CONFIDENCE_COUNT:
        return ConfidenceLevel.medium
    return ConfidenceLevel.low


def annualized_returns(observations: Sequence[RatioPoint]) -> list[float]:
    """
    Относительные изменения ratio между соседними наблюдениями,
    приведённые к году множителем sqrt(365 / дней между наблюдениями).
    Пары с нулевым предыдущим ratio пропускаются; интервал не меньше суток.
    """
    returns: list[float] = []
    for prev, curr in zip(observations, observations[1:]):
        if prev.ratio <= 0:
            continue
        change = (curr.ratio - prev.ratio) / prev.ratio
        days = (curr.observation_date - prev.observation_date).total_seconds() / 86400
        days = max(1.0, days)
        returns.append(change * math.sqrt(DAYS_PER_YEAR / days))
    return returns


def contract_volatility(observations: Sequence[RatioPoint]) -> Optional[float]:
    """\
    Годовая волатильность ratio одного контракта.

    None, если наблюдений меньше трёх, валидных доходностей меньше двух
    или результат не конечен (NaN/Infinity в БД не пишем).
    Дисперсия: выборочная, с поправкой Бесселя (n - 1).
    """
    if len(observations) < MIN_OBSERVATIONS:
        return None

    returns = annualized_returns(observations)
    if len(returns) < MIN_RETURNS:
        return None

    mean = sum(returns) / len(returns)
    variance = sum((r - mean) ** 2 for r in returns) / (len(returns) - 1)
    sigma = math.sqrt(variance)

    if not math.isfinite(sigma):
        return None
    return sigma


class CategoryAccumulator:
    """
    Потоковый аккумулятор взвешенной sigma для одного ключа
    (категория или категория+агентство).

    Хранит только сумму sigma*weight, сумму весов и число контрактов,
    поэтому наблюдения категории не нужно держать в памяти целиком.
    """

    def __init__(self, key):
        self.key = key
        self.weighted_sum = 0.0
        self.total_weight = 0.0
        self.count = 0

    @staticmethod
    def weight_for(obligated_amount) -> float:
        """Вес: сумма обязательств контракта; 1, если она не задана или не положительна."""
        weight = float(obligated_amount) if obligated_amount is not None else 0.0
        if not math.isfinite(weight) or weight <= 0:
            return 1.0
        return weight

    def add(self, sigma: Optional[float], obligated_amount=None) -> bool:
        if sigma is None or not math.isfinite(sigma):
            return False
        weight = self.weight_for(obligated_amount)
        self.weighted_sum += sigma * weight
        self.total_weight += weight
        self.count += 1
        return True

    @property
    def confidence(self) -> ConfidenceLevel:
        return confidence_for(self.count)

    def sigma(self) -> Optional[float]:
        """Взвешенная средняя sigma; None, если не было ни одного контракта."""
        if self.count == 0:
            return None
        value = self.weighted_sum / self.total_weight
        if not math.isfinite(value) or value < 0:
            raise NumericInstability(self.key, value)
        return value


def aggregate(contract_sigmas: Sequence[tuple[Optional[float], object]], key=None) -> CategoryAccumulator:
    """Удобная обёртка: [(sigma, obligated_amount), ...] → заполненный аккумулятор."""
    acc = CategoryAccumulator(key)
    for sigma, obligated in contract_sigmas:
        acc.add(sigma, obligated)
    return acc
