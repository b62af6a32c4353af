# services/cost_risk_engine/risk/observations.py

import math
from decimal import Decimal
from typing import Iterable, Optional

from ..schemas import ContractRecord, ModificationRecord, Observation

# Изменение ratio меньше этого порога считаем шумом
# (административные модификации без реального эффекта)
MIN_RATIO_CHANGE = 0.001


def _to_float(value: Optional[Decimal]) -> float:
    if value is None:
        return 0.0
    number = float(value)
    return 0.0 if math.isnan(number) else number


def extract(
    contract: ContractRecord,
    modifications: Iterable[ModificationRecord],
    min_ratio_change: float = MIN_RATIO_CHANGE,
) -> list[Observation]:
    """\
    Превращает историю модификаций контракта в ряд наблюдений утилизации потолка.

      - стартовое наблюдение: на дату award (нужны потолок > 0 и дата award),
      - дальше идём по модификациям по возрастанию даты (без даты: пропуск),
        ведём накопленные обязательства: абсолютный итог модификации (> 0)
        заменяет текущее значение, иначе прибавляем приращение,
      - новое наблюдение пишем только если ratio сдвинулся больше чем на min_ratio_change.

    Потолок считается постоянным на всей истории.
    """
    ceiling = _to_float(contract.ceiling)
    obligation = _to_float(contract.obligated_amount)

    # без потолка или даты award ряда нет вовсе
    if ceiling <= 0 or contract.award_date is None:
        return []

    observations: list[Observation] = [
        Observation(
            contract_id=contract.id,
            observation_date=contract.award_date,
            ceiling_value=ceiling,
            obligation_value=obligation,
            ratio=obligation / ceiling,
        )
    ]

    # sorted() стабилен: модификации с одной датой сохраняют исходный порядок
    dated = sorted(
        (m for m in modifications if m.action_date is not None),
        key=lambda m: m.action_date,
    )

    for mod in dated:
        total = _to_float(mod.obligated_total)
        if total > 0:
            obligation = total
        else:
            obligation += _to_float(mod.obligated_delta)

        ratio = obligation / ceiling
        last = observations[-1]

        if abs(ratio - last.ratio) > min_ratio_change:
            observed_at = mod.action_date
            # модификация задним числом раньше award: не ломаем порядок дат
            if observed_at < last.observation_date:
                observed_at = last.observation_date
            observations.append(
                Observation(
                    contract_id=contract.id,
                    observation_date=observed_at,
                    ceiling_value=ceiling,
                    obligation_value=obligation,
                    ratio=ratio,
                )
            )

    return observations
