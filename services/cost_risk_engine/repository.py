# services/cost_risk_engine/repository.py

from datetime import datetime
from itertools import groupby
from typing import Iterable, Iterator, Optional

from sqlalchemy import delete, insert, or_, select
from sqlalchemy.orm import Session

from .exceptions import MissingEntity
from .models import (
    ConfidenceLevel,
    ContractCostObservation,
    ContractModification,
    ContractRiskScore,
    ServiceContract,
    VolatilityParameter,
)
from .schemas import (
    CategoryVolatility,
    ContractRecord,
    ModificationRecord,
    Observation,
    RiskAssessment,
)

# Сколько строк наблюдений тянуть с курсора за раз
STREAM_CHUNK = 1000


# ---------- Контракты и модификации ----------


def list_contract_ids(session: Session) -> list[int]:
    """
    Все контракты, включая потолок <= 0: фазы 1 и 3 должны
    вычистить наблюдения и оценку, если потолок стал непригодным.
    """
    stmt = select(ServiceContract.id).order_by(ServiceContract.id)
    return list(session.scalars(stmt))


def load_contract(session: Session, contract_id: int) -> ContractRecord:
    contract = session.get(ServiceContract, contract_id)
    if contract is None:
        raise MissingEntity("contract", contract_id)
    return ContractRecord.model_validate(contract)


def load_modifications(session: Session, contract_id: int) -> list[ModificationRecord]:
    stmt = (
        select(ContractModification)
        .where(ContractModification.contract_id == contract_id)
        .order_by(ContractModification.action_date.asc(), ContractModification.id.asc())
    )
    return [ModificationRecord.model_validate(m) for m in session.scalars(stmt)]


# ---------- Наблюдения ----------


def replace_observations(session: Session, contract_id: int, observations: list[Observation]) -> int:
    """
    Полная пересборка ряда контракта: delete-then-insert.
    История модификаций может быть исправлена задним числом,
    поэтому инкрементально ряд не патчим.
    """
    session.execute(
        delete(ContractCostObservation).where(ContractCostObservation.contract_id == contract_id)
    )
    if observations:
        session.execute(
            insert(ContractCostObservation),
            [obs.model_dump() for obs in observations],
        )
    return len(observations)


def load_observations(session: Session, contract_id: int) -> list[ContractCostObservation]:
    stmt = (
        select(ContractCostObservation)
        .where(ContractCostObservation.contract_id == contract_id)
        .order_by(ContractCostObservation.observation_date, ContractCostObservation.id)
    )
    return list(session.scalars(stmt))


def categories_with_observations(session: Session) -> list[str]:
    stmt = (
        select(ServiceContract.category_code)
        .join(ContractCostObservation, ContractCostObservation.contract_id == ServiceContract.id)
        .where(ServiceContract.category_code.is_not(None))
        .distinct()
        .order_by(ServiceContract.category_code)
    )
    return [code for code in session.scalars(stmt) if code]


def categories_with_parameters(session: Session) -> list[str]:
    stmt = select(VolatilityParameter.category_code).distinct().order_by(VolatilityParameter.category_code)
    return list(session.scalars(stmt))


def stream_category_series(
    session: Session, category_code: str
) -> Iterator[tuple[ContractRecord, list[ContractCostObservation]]]:
    """
    Ряды наблюдений всех контрактов категории, по одному контракту за раз.
    Строки читаются курсором порциями; в памяти: только текущий контракт.
    """
    stmt = (
        select(ServiceContract, ContractCostObservation)
        .join(ContractCostObservation, ContractCostObservation.contract_id == ServiceContract.id)
        .where(ServiceContract.category_code == category_code)
        .order_by(
            ServiceContract.id,
            ContractCostObservation.observation_date,
            ContractCostObservation.id,
        )
        .execution_options(yield_per=STREAM_CHUNK)
    )
    rows = session.execute(stmt)
    for contract, group in groupby(rows, key=lambda row: row[0]):
        yield ContractRecord.model_validate(contract), [row[1] for row in group]


# ---------- Параметры волатильности ----------


def upsert_volatility_parameter(
    session: Session,
    category_code: str,
    agency_code: Optional[str],
    sigma: float,
    observation_count: int,
    confidence: ConfidenceLevel,
    calculated_at: datetime,
) -> VolatilityParameter:
    """Одна строка на (категория, агентство); NULL-агентство: базовая строка."""
    stmt = select(VolatilityParameter).where(VolatilityParameter.category_code == category_code)
    if agency_code is None:
        stmt = stmt.where(VolatilityParameter.agency_code.is_(None))
    else:
        stmt = stmt.where(VolatilityParameter.agency_code == agency_code)

    param = session.scalars(stmt).first()
    if param is None:
        param = VolatilityParameter(category_code=category_code, agency_code=agency_code)
        session.add(param)

    param.sigma = sigma
    param.observation_count = observation_count
    param.confidence_level = confidence
    param.last_calculated = calculated_at
    return param


def prune_volatility_parameters(
    session: Session,
    category_code: str,
    keep_agencies: Iterable[str] = (),
    keep_baseline: bool = True,
) -> int:
    """Удаляет строки категории, которые не пересчитаны в текущем прогоне."""
    stmt = delete(VolatilityParameter).where(VolatilityParameter.category_code == category_code)
    if keep_baseline:
        stmt = stmt.where(VolatilityParameter.agency_code.is_not(None))
    agencies = list(keep_agencies)
    if agencies:
        stmt = stmt.where(
            or_(
                VolatilityParameter.agency_code.is_(None),
                VolatilityParameter.agency_code.not_in(agencies),
            )
        )
    return session.execute(stmt).rowcount


def find_volatility_parameter(
    session: Session, category_code: Optional[str], agency_code: Optional[str]
) -> Optional[VolatilityParameter]:
    """Сначала строка конкретного агентства, затем базовая строка категории."""
    if not category_code:
        return None

    if agency_code:
        specific = session.scalars(
            select(VolatilityParameter).where(
                VolatilityParameter.category_code == category_code,
                VolatilityParameter.agency_code == agency_code,
            )
        ).first()
        if specific is not None:
            return specific

    return session.scalars(
        select(VolatilityParameter).where(
            VolatilityParameter.category_code == category_code,
            VolatilityParameter.agency_code.is_(None),
        )
    ).first()


def volatility_lookup(session: Session):
    """Функция поиска sigma для Risk Projector поверх текущей сессии."""

    def lookup(category_code: Optional[str], agency_code: Optional[str]) -> Optional[CategoryVolatility]:
        param = find_volatility_parameter(session, category_code, agency_code)
        if param is None:
            return None
        return CategoryVolatility(sigma=param.sigma, confidence=param.confidence_level)

    return lookup


# ---------- Оценки риска ----------


def upsert_risk_score(session: Session, assessment: RiskAssessment, calculated_at: datetime) -> ContractRiskScore:
    """Полная замена строки оценки контракта."""
    score = session.scalars(
        select(ContractRiskScore).where(ContractRiskScore.contract_id == assessment.contract_id)
    ).first()
    if score is None:
        score = ContractRiskScore(contract_id=assessment.contract_id)
        session.add(score)

    for field, value in assessment.model_dump(exclude={"contract_id"}).items():
        setattr(score, field, value)
    score.calculated_at = calculated_at
    return score


def delete_risk_score(session: Session, contract_id: int) -> int:
    result = session.execute(
        delete(ContractRiskScore).where(ContractRiskScore.contract_id == contract_id)
    )
    return result.rowcount
