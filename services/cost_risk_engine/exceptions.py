"""
Ошибки движка риска.

Политика: ни одна ошибка отдельного контракта/категории не прерывает фазу.
MissingEntity и InvalidCeiling: это пропуск, а не сбой;
NumericInstability и PersistenceFailure считаются в счётчик errors.
"""


class CostRiskError(Exception):
    """Базовая ошибка движка. code: машиночитаемый код для логов и API."""

    code: str = "COST_RISK_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.details = details


class MissingEntity(CostRiskError):
    """Контракт или категория отсутствует."""

    code = "MISSING_ENTITY"

    def __init__(self, entity: str, key):
        super().__init__(f"{entity} {key!r} not found", entity=entity, key=key)
        self.entity = entity
        self.key = key


class InvalidCeiling(CostRiskError):
    """Потолок контракта <= 0 или не задан."""

    code = "INVALID_CEILING"

    def __init__(self, contract_id: int, ceiling):
        super().__init__(
            f"Contract {contract_id} has no usable ceiling ({ceiling})",
            contract_id=contract_id,
            ceiling=ceiling,
        )
        self.contract_id = contract_id
        self.ceiling = ceiling


class NumericInstability(CostRiskError):
    """Sigma получилась NaN/Infinity: в БД такое не пишем."""

    code = "NUMERIC_INSTABILITY"

    def __init__(self, key, value: float):
        super().__init__(f"Non-finite sigma for {key!r}: {value}", key=key, value=value)
        self.key = key
        self.value = value


class PersistenceFailure(CostRiskError):
    """Ошибка записи одного элемента (контракта/категории)."""

    code = "PERSISTENCE_FAILURE"

    def __init__(self, key, cause: Exception):
        super().__init__(f"Failed to persist {key!r}: {cause}", key=key)
        self.key = key
        self.__cause__ = cause


SKIPPABLE = (MissingEntity, InvalidCeiling)
