# services/cost_risk_engine/routers/risk.py

import math
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import case, func, select
from sqlalchemy.orm import Session, sessionmaker

from ..database import get_db, get_session_factory
from ..models import (
    ConfidenceLevel,
    ContractRiskScore,
    ServiceContract,
    VolatilityParameter,
)
from ..repository import find_volatility_parameter, load_observations
from ..schemas import (
    BucketCount,
    ConfidenceCount,
    ContractOut,
    ExtractionSummary,
    ObservationOut,
    Pagination,
    RiskContractDetail,
    RiskContractList,
    RiskContractRow,
    RiskScoreOut,
    RiskStats,
    ScoringSummary,
    SimilarContract,
    StatsOverview,
    SyncReport,
    TopRiskContract,
    VolatileCategory,
    VolatilityParameterList,
    VolatilityParameterOut,
    VolatilitySummary,
)
from ..sync import (
    run_all,
    run_observation_extraction,
    run_risk_scoring,
    run_volatility_estimation,
)
from ..utils.logging import setup_logging

logger = setup_logging()

router = APIRouter(prefix="/api/v1/risk", tags=["risk"])

# Диапазоны стадии жизненного цикла для фильтра списка
LIFECYCLE_RANGES = {
    "early": (0, 25),
    "mid": (25, 75),
    "late": (75, None),
}

# Минимальная степень доверия → допустимые уровни
CONFIDENCE_AT_LEAST = {
    ConfidenceLevel.high: [ConfidenceLevel.high],
    ConfidenceLevel.medium: [ConfidenceLevel.high, ConfidenceLevel.medium],
    ConfidenceLevel.low: [ConfidenceLevel.high, ConfidenceLevel.medium, ConfidenceLevel.low],
}

SORT_COLUMNS = {
    "riskScore": ContractRiskScore.risk_score,
    "breachProbability": ContractRiskScore.ceiling_breach_prob,
    "monthsToWarning": ContractRiskScore.months_to_warning,
    "obligatedAmount": ServiceContract.obligated_amount,
}


# ---------- Вспомогательные функции ----------


def _parameter_out(param: VolatilityParameter) -> VolatilityParameterOut:
    return VolatilityParameterOut(
        category_code=param.category_code,
        agency_code=param.agency_code,
        sigma=param.sigma,
        sigma_percent=f"{param.sigma * 100:.1f}%",
        observation_count=param.observation_count,
        confidence_level=param.confidence_level,
        last_calculated=param.last_calculated,
    )


def _score_bucket():
    return case(
        (ContractRiskScore.risk_score >= 80, "critical"),
        (ContractRiskScore.risk_score >= 60, "high"),
        (ContractRiskScore.risk_score >= 40, "medium"),
        (ContractRiskScore.risk_score >= 20, "low"),
        else_="minimal",
    )


# ---------- Пакетные фазы ----------


@router.post("/sync", response_model=SyncReport)
def sync_all(session_factory: sessionmaker = Depends(get_session_factory)):
    """Полный прогон: наблюдения → волатильность → оценки."""
    return run_all(session_factory)


@router.post("/sync/observations", response_model=ExtractionSummary)
def sync_observations(session_factory: sessionmaker = Depends(get_session_factory)):
    return run_observation_extraction(session_factory)


@router.post("/sync/volatility", response_model=VolatilitySummary)
def sync_volatility(session_factory: sessionmaker = Depends(get_session_factory)):
    return run_volatility_estimation(session_factory)


@router.post("/sync/scores", response_model=ScoringSummary)
def sync_scores(session_factory: sessionmaker = Depends(get_session_factory)):
    return run_risk_scoring(session_factory)


# ---------- Эндпойнты чтения ----------


@router.get("/contracts", response_model=RiskContractList)
def list_risk_contracts(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    sort_by: Literal["riskScore", "breachProbability", "monthsToWarning", "obligatedAmount"] = "riskScore",
    sort_order: Literal["asc", "desc"] = "desc",
    psc: Optional[str] = None,
    agency: Optional[str] = None,
    min_risk_score: Optional[int] = Query(None, ge=0, le=100),
    max_risk_score: Optional[int] = Query(None, ge=0, le=100),
    confidence: Optional[ConfidenceLevel] = None,
    lifecycle: Optional[Literal["early", "mid", "late"]] = None,
    db: Session = Depends(get_db),
):
    """
    Контракты с рассчитанным риском: фильтры, сортировка, пагинация.
    """
    stmt = select(ServiceContract, ContractRiskScore).join(
        ContractRiskScore, ContractRiskScore.contract_id == ServiceContract.id
    )

    if psc:
        stmt = stmt.where(ServiceContract.category_code.startswith(psc))
    if agency:
        stmt = stmt.where(ServiceContract.agency_code.ilike(f"%{agency}%"))
    if min_risk_score is not None:
        stmt = stmt.where(ContractRiskScore.risk_score >= min_risk_score)
    if max_risk_score is not None:
        stmt = stmt.where(ContractRiskScore.risk_score <= max_risk_score)
    if confidence is not None:
        stmt = stmt.where(ContractRiskScore.confidence_level == confidence)
    if lifecycle is not None:
        low, high = LIFECYCLE_RANGES[lifecycle]
        stmt = stmt.where(ContractRiskScore.lifecycle_stage >= low)
        if high is not None:
            stmt = stmt.where(ContractRiskScore.lifecycle_stage < high)

    total = db.scalar(select(func.count()).select_from(stmt.subquery()))

    column = SORT_COLUMNS[sort_by]
    order = column.asc() if sort_order == "asc" else column.desc()
    rows = db.execute(
        stmt.order_by(order, ServiceContract.id).offset((page - 1) * limit).limit(limit)
    ).all()

    results = [
        RiskContractRow(
            id=contract.id,
            piid=contract.piid,
            vendor_name=contract.vendor_name,
            obligated_amount=contract.obligated_amount,
            ceiling=contract.ceiling,
            category_code=contract.category_code,
            agency_code=contract.agency_code,
            risk_score=score.risk_score,
            current_ratio=score.current_ratio,
            breach_probability=score.ceiling_breach_prob,
            months_to_warning=score.months_to_warning,
            lifecycle_stage=score.lifecycle_stage,
            confidence_level=score.confidence_level,
        )
        for contract, score in rows
    ]

    return RiskContractList(
        results=results,
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit),
        ),
    )


@router.get("/contracts/{contract_id}", response_model=RiskContractDetail)
def get_risk_contract(contract_id: int, db: Session = Depends(get_db)):
    """
    Детали контракта: оценка, ряд наблюдений, использованный параметр
    волатильности и до 5 похожих контрактов той же категории.
    """
    contract = db.get(ServiceContract, contract_id)
    if contract is None:
        raise HTTPException(status_code=404, detail="Contract not found")

    score = db.scalars(
        select(ContractRiskScore).where(ContractRiskScore.contract_id == contract_id)
    ).first()
    param = find_volatility_parameter(db, contract.category_code, contract.agency_code)

    similar = []
    if contract.category_code:
        similar_rows = db.execute(
            select(ServiceContract, ContractRiskScore)
            .join(ContractRiskScore, ContractRiskScore.contract_id == ServiceContract.id)
            .where(
                ServiceContract.category_code == contract.category_code,
                ServiceContract.id != contract_id,
            )
            .order_by(ContractRiskScore.risk_score.desc(), ServiceContract.id)
            .limit(5)
        ).all()
        similar = [
            SimilarContract(
                id=c.id,
                piid=c.piid,
                vendor_name=c.vendor_name,
                risk_score=s.risk_score,
                breach_probability=s.ceiling_breach_prob,
            )
            for c, s in similar_rows
        ]

    return RiskContractDetail(
        contract=ContractOut.model_validate(contract),
        risk_score=RiskScoreOut.model_validate(score) if score is not None else None,
        observations=[ObservationOut.model_validate(o) for o in load_observations(db, contract_id)],
        volatility_parameter=_parameter_out(param) if param is not None else None,
        similar_contracts=similar,
    )


@router.get("/volatility", response_model=VolatilityParameterList)
def list_volatility_parameters(
    psc: Optional[str] = None,
    agency: Optional[str] = None,
    min_confidence: Optional[ConfidenceLevel] = None,
    db: Session = Depends(get_db),
):
    """Параметры волатильности, по убыванию sigma."""
    stmt = select(VolatilityParameter)
    if psc:
        stmt = stmt.where(VolatilityParameter.category_code.startswith(psc))
    if agency:
        stmt = stmt.where(VolatilityParameter.agency_code == agency)
    if min_confidence is not None:
        stmt = stmt.where(VolatilityParameter.confidence_level.in_(CONFIDENCE_AT_LEAST[min_confidence]))

    params = db.scalars(
        stmt.order_by(VolatilityParameter.sigma.desc(), VolatilityParameter.observation_count.desc())
    ).all()

    return VolatilityParameterList(
        parameters=[_parameter_out(p) for p in params],
        total=len(params),
    )


@router.get("/stats", response_model=RiskStats)
def get_risk_stats(db: Session = Depends(get_db)):
    """Сводка для дашборда."""
    total_contracts = db.scalar(
        select(func.count()).select_from(ServiceContract).where(ServiceContract.ceiling > 0)
    )
    with_scores = db.scalar(select(func.count()).select_from(ContractRiskScore))
    urgent = db.scalar(
        select(func.count())
        .select_from(ContractRiskScore)
        .where(
            ContractRiskScore.months_to_warning.is_not(None),
            ContractRiskScore.months_to_warning < 12,
        )
    )

    confidence_rows = db.execute(
        select(ContractRiskScore.confidence_level, func.count())
        .group_by(ContractRiskScore.confidence_level)
        .order_by(ContractRiskScore.confidence_level)
    ).all()

    bucket = _score_bucket()
    bucket_counts = dict(
        db.execute(select(bucket, func.count()).group_by(bucket)).all()
    )
    score_distribution = [
        BucketCount(bucket=name, count=bucket_counts[name])
        for name in ("critical", "high", "medium", "low", "minimal")
        if name in bucket_counts
    ]

    top_rows = db.execute(
        select(ServiceContract, ContractRiskScore)
        .join(ContractRiskScore, ContractRiskScore.contract_id == ServiceContract.id)
        .order_by(ContractRiskScore.risk_score.desc(), ServiceContract.id)
        .limit(10)
    ).all()

    top_volatile = db.scalars(
        select(VolatilityParameter)
        .where(
            VolatilityParameter.agency_code.is_(None),
            VolatilityParameter.confidence_level.in_([ConfidenceLevel.high, ConfidenceLevel.medium]),
        )
        .order_by(VolatilityParameter.sigma.desc())
        .limit(5)
    ).all()

    logger.debug(f"📊 Risk stats: contracts={total_contracts}, scored={with_scores}, urgent={urgent}")

    return RiskStats(
        overview=StatsOverview(
            total_contracts=total_contracts,
            contracts_with_scores=with_scores,
            urgent_warnings=urgent,
        ),
        confidence_distribution=[
            ConfidenceCount(level=level, count=count) for level, count in confidence_rows
        ],
        score_distribution=score_distribution,
        top_risk=[
            TopRiskContract(
                id=c.id,
                piid=c.piid,
                vendor_name=c.vendor_name,
                risk_score=s.risk_score,
                breach_probability=s.ceiling_breach_prob,
                months_to_warning=s.months_to_warning,
            )
            for c, s in top_rows
        ],
        top_volatile_categories=[
            VolatileCategory(
                category_code=p.category_code,
                sigma=p.sigma,
                observation_count=p.observation_count,
                confidence_level=p.confidence_level,
            )
            for p in top_volatile
        ],
    )
