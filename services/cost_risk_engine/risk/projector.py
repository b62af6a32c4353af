# services/cost_risk_engine/risk/projector.py

import math
from datetime import datetime
from typing import Callable, NamedTuple, Optional

from ..exceptions import InvalidCeiling
from ..models import ConfidenceLevel
from ..schemas import CategoryVolatility, ContractRecord, RiskAssessment

DEFAULT_SIGMA = 0.25
DEFAULT_YEARS_REMAINING = 1.0
DAYS_PER_YEAR = 365

# Ранние контракты исторически волатильнее, поздние: спокойнее
LIFECYCLE_MULTIPLIERS = {
    "early": 1.5,  # stage < 25
    "mid": 1.0,
    "late": 0.7,   # stage > 75
}

# Квантили стандартного нормального: 10-й / 50-й / 90-й перцентиль
Z_LOW = -1.28
Z_MID = 0.0
Z_HIGH = 1.28

WARNING_BREACH_PROBABILITY = 50.0
NEAR_CEILING_RATIO = 0.9
REFERENCE_SIGMA = 0.5

# Abramowitz–Stegun 26.2.17
_P = 0.2316419
_B = (0.319381530, -0.356563782, 1.781477937, -1.821255978, 1.330274429)
_INV_SQRT_2PI = 1.0 / math.sqrt(2.0 * math.pi)

VolatilityLookup = Callable[[Optional[str], Optional[str]], Optional[CategoryVolatility]]


class RatioBand(NamedTuple):
    low: float
    mid: float
    high: float


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def normal_cdf(x: float) -> float:
    """\
    Функция распределения стандартного нормального закона,
    рациональная аппроксимация A&S 26.2.17 (|ошибка| < 7.5e-8).
    """
    if x == 0.0:
        return 0.5
    if math.isinf(x):
        return 1.0 if x > 0 else 0.0

    z = abs(x)
    t = 1.0 / (1.0 + _P * z)
    poly = t * (_B[0] + t * (_B[1] + t * (_B[2] + t * (_B[3] + t * _B[4]))))
    tail = _INV_SQRT_2PI * math.exp(-0.5 * z * z) * poly
    return 1.0 - tail if x > 0 else tail


def lifecycle_stage(
    period_start: Optional[datetime],
    period_end: Optional[datetime],
    now: datetime,
) -> int:
    """Сколько процентов периода исполнения прошло (0..100); 50, если границ нет."""
    if period_start is None or period_end is None:
        return 50
    if now <= period_start:
        return 0
    if now >= period_end:
        return 100
    elapsed = (now - period_start).total_seconds()
    total = (period_end - period_start).total_seconds()
    return round_half_up(elapsed / total * 100)


def lifecycle_multiplier(stage: float) -> float:
    if stage < 25:
        return LIFECYCLE_MULTIPLIERS["early"]
    if stage > 75:
        return LIFECYCLE_MULTIPLIERS["late"]
    return LIFECYCLE_MULTIPLIERS["mid"]


def years_remaining(period_end: Optional[datetime], now: datetime) -> float:
    if period_end is None:
        return DEFAULT_YEARS_REMAINING
    days = (period_end - now).total_seconds() / 86400
    return max(0.0, days / DAYS_PER_YEAR)


def project_ratio(current_ratio: float, sigma: float, years: float) -> RatioBand:
    """\
    Геометрическое броуновское движение без дрейфа:
        ratio_T = ratio_0 * exp(-σ²T/2 + σ√T·Z)
    при Z = -1.28 / 0 / +1.28.
    """
    if years <= 0 or sigma <= 0:
        return RatioBand(current_ratio, current_ratio, current_ratio)

    sqrt_t = math.sqrt(years)
    drift = -0.5 * sigma * sigma * years

    def at(z: float) -> float:
        return current_ratio * math.exp(drift + sigma * sqrt_t * z)

    return RatioBand(at(Z_LOW), at(Z_MID), at(Z_HIGH))


def breach_probability(current_ratio: float, sigma: float, years: float) -> float:
    """\
    P(ratio_T > 1) в процентах для той же лог-нормальной модели.

    d = (-ln(ratio) + σ²T/2) / (σ√T): расстояние до потолка в сигмах,
    вероятность = (1 - Φ(d)) * 100. Уже на потолке или выше: 100.
    """
    if current_ratio >= 1:
        return 100.0
    if years <= 0 or sigma <= 0 or current_ratio <= 0:
        return 0.0

    d = (-math.log(current_ratio) + 0.5 * sigma * sigma * years) / (sigma * math.sqrt(years))
    return (1.0 - normal_cdf(d)) * 100.0


def months_to_warning(
    current_ratio: float,
    sigma: float,
    months_remaining: int,
    threshold: float = WARNING_BREACH_PROBABILITY,
    near_ceiling: float = NEAR_CEILING_RATIO,
) -> Optional[int]:
    """Первый месяц, когда вероятность пробоя >= threshold; None: до конца контракта не наступит."""
    # ниже потолка вероятность пробоя всегда < 50%, так что при пороге 50 ответ None
    if current_ratio >= near_ceiling:
        return 0
    for months in range(1, months_remaining + 1):
        if breach_probability(current_ratio, sigma, months / 12) >= threshold:
            return months
    return None


def composite_score(
    current_ratio: float,
    effective_sigma: float,
    multiplier: float,
    breach_prob: float,
    reweight_volatility: bool = True,
) -> int:
    """\
    Сводный балл 0..100:
      - позиция относительно потолка, до 40,
      - волатильность относительно типичной (0.5), до 30,
      - вероятность пробоя, до 30.

    effective_sigma уже содержит lifecycle-множитель; при reweight_volatility
    он применяется к volatilityScore ещё раз (так считает исходная модель).
    """
    position_score = min(40.0, current_ratio * 40)
    volatility_score = (effective_sigma / REFERENCE_SIGMA) * 30
    if reweight_volatility:
        volatility_score *= multiplier
    volatility_score = min(30.0, volatility_score)
    breach_score = breach_prob * 0.3

    total = min(100.0, position_score + volatility_score + breach_score)
    return max(0, round_half_up(total))


def project(
    contract: ContractRecord,
    volatility_lookup: VolatilityLookup,
    now: datetime,
    default_sigma: float = DEFAULT_SIGMA,
    warning_threshold: float = WARNING_BREACH_PROBABILITY,
    near_ceiling: float = NEAR_CEILING_RATIO,
    reweight_volatility: bool = True,
) -> RiskAssessment:
    """
    Оценка риска превышения потолка для одного контракта.
    Без положительного потолка: InvalidCeiling (фаза считает это пропуском).
    """
    ceiling = float(contract.ceiling) if contract.ceiling is not None else 0.0
    if not ceiling > 0:
        raise InvalidCeiling(contract.id, contract.ceiling)

    obligated = float(contract.obligated_amount) if contract.obligated_amount is not None else 0.0
    current_ratio = obligated / ceiling

    found = None
    if contract.category_code:
        found = volatility_lookup(contract.category_code, contract.agency_code)
    if found is not None:
        sigma, confidence = found.sigma, found.confidence
    else:
        sigma, confidence = default_sigma, ConfidenceLevel.low

    stage = lifecycle_stage(contract.period_start, contract.period_end, now)
    multiplier = lifecycle_multiplier(stage)
    effective_sigma = sigma * multiplier

    years = years_remaining(contract.period_end, now)
    months = round_half_up(years * 12)

    band = project_ratio(current_ratio, effective_sigma, years)
    breach = breach_probability(current_ratio, effective_sigma, years)
    warning = months_to_warning(current_ratio, effective_sigma, months, warning_threshold, near_ceiling)
    score = composite_score(current_ratio, effective_sigma, multiplier, breach, reweight_volatility)

    return RiskAssessment(
        contract_id=contract.id,
        current_ratio=current_ratio,
        implied_volatility=effective_sigma,
        lifecycle_stage=stage,
        lifecycle_multiplier=multiplier,
        risk_score=score,
        expected_cost_low=band.low * ceiling,
        expected_cost_mid=band.mid * ceiling,
        expected_cost_high=band.high * ceiling,
        ceiling_breach_prob=breach,
        months_to_warning=warning,
        confidence_level=confidence,
    )
