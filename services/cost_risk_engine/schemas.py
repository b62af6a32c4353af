from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict

from .models import ConfidenceLevel


# ------------------------------------------------------------
#  ВХОДНЫЕ ЗАПИСИ (из внешнего процесса синхронизации)
# ------------------------------------------------------------

class ContractRecord(BaseModel):
    """
    Контракт в том виде, в каком его видит движок.
    Строится из ORM ServiceContract через model_validate.
    """
    id: int
    category_code: Optional[str] = None
    agency_code: Optional[str] = None
    ceiling: Optional[Decimal] = Field(default=None, description="Контрактный потолок")
    obligated_amount: Optional[Decimal] = Field(default=None, description="Накопленные обязательства")
    award_date: Optional[datetime] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ModificationRecord(BaseModel):
    """Модификация: дата, приращение и (иногда) итог обязательств."""
    action_date: Optional[datetime] = None
    obligated_delta: Optional[Decimal] = None
    obligated_total: Optional[Decimal] = None

    model_config = ConfigDict(from_attributes=True)


# ------------------------------------------------------------
#  ПРОИЗВОДНЫЕ ЗНАЧЕНИЯ
# ------------------------------------------------------------

class Observation(BaseModel):
    """Точка временного ряда утилизации потолка."""
    contract_id: int
    observation_date: datetime
    ceiling_value: float
    obligation_value: float
    ratio: float = Field(description="obligation / ceiling")

    model_config = ConfigDict(from_attributes=True, frozen=True)


class CategoryVolatility(BaseModel):
    """Результат поиска sigma для контракта."""
    sigma: float = Field(ge=0)
    confidence: ConfidenceLevel


class RiskAssessment(BaseModel):
    """
    Итог проекции риска одного контракта.
    implied_volatility: эффективная sigma (с lifecycle-множителем).
    """
    contract_id: int
    current_ratio: float
    implied_volatility: float = Field(ge=0)
    lifecycle_stage: int = Field(ge=0, le=100)
    lifecycle_multiplier: float
    risk_score: int = Field(ge=0, le=100)
    expected_cost_low: float
    expected_cost_mid: float
    expected_cost_high: float
    ceiling_breach_prob: float = Field(ge=0, le=100)
    months_to_warning: Optional[int] = None
    confidence_level: ConfidenceLevel


# ------------------------------------------------------------
#  ИТОГИ ПАКЕТНЫХ ФАЗ
# ------------------------------------------------------------

class ExtractionSummary(BaseModel):
    processed: int = 0
    total_observations: int = 0
    errors: int = 0


class VolatilitySummary(BaseModel):
    parameters: int = 0
    errors: int = 0


class ScoringSummary(BaseModel):
    processed: int = 0
    errors: int = 0


class SyncReport(BaseModel):
    """Отчёт полного прогона: три фазы по порядку."""
    observations: ExtractionSummary
    volatility: VolatilitySummary
    scores: ScoringSummary
    started_at: datetime
    finished_at: datetime


# ------------------------------------------------------------
#  DTO ДЛЯ ЧТЕНИЯ (API / дашборд)
# ------------------------------------------------------------

class ObservationOut(BaseModel):
    date: datetime = Field(validation_alias="observation_date")
    ceiling: float = Field(validation_alias="ceiling_value")
    obligation: float = Field(validation_alias="obligation_value")
    ratio: float

    model_config = ConfigDict(from_attributes=True)


class VolatilityParameterOut(BaseModel):
    category_code: str
    agency_code: Optional[str] = None
    sigma: float
    sigma_percent: str
    observation_count: int
    confidence_level: ConfidenceLevel
    last_calculated: datetime


class VolatilityParameterList(BaseModel):
    parameters: list[VolatilityParameterOut]
    total: int


class RiskScoreOut(BaseModel):
    risk_score: int
    current_ratio: float
    implied_volatility: float
    lifecycle_stage: int
    lifecycle_multiplier: float
    expected_cost_low: Optional[float] = None
    expected_cost_mid: Optional[float] = None
    expected_cost_high: Optional[float] = None
    ceiling_breach_prob: float
    months_to_warning: Optional[int] = None
    confidence_level: ConfidenceLevel
    calculated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ContractOut(BaseModel):
    id: int
    piid: Optional[str] = None
    vendor_name: Optional[str] = None
    category_code: Optional[str] = None
    agency_code: Optional[str] = None
    ceiling: Optional[float] = None
    obligated_amount: Optional[float] = None
    award_date: Optional[datetime] = None
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class RiskContractRow(BaseModel):
    """Строка списка контрактов с риском."""
    id: int
    piid: Optional[str] = None
    vendor_name: Optional[str] = None
    obligated_amount: Optional[float] = None
    ceiling: Optional[float] = None
    category_code: Optional[str] = None
    agency_code: Optional[str] = None
    risk_score: int
    current_ratio: float
    breach_probability: float
    months_to_warning: Optional[int] = None
    lifecycle_stage: int
    confidence_level: ConfidenceLevel


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class RiskContractList(BaseModel):
    results: list[RiskContractRow]
    pagination: Pagination


class SimilarContract(BaseModel):
    id: int
    piid: Optional[str] = None
    vendor_name: Optional[str] = None
    risk_score: int
    breach_probability: float


class RiskContractDetail(BaseModel):
    contract: ContractOut
    risk_score: Optional[RiskScoreOut] = None
    observations: list[ObservationOut]
    volatility_parameter: Optional[VolatilityParameterOut] = None
    similar_contracts: list[SimilarContract]


class BucketCount(BaseModel):
    bucket: str
    count: int


class ConfidenceCount(BaseModel):
    level: ConfidenceLevel
    count: int


class StatsOverview(BaseModel):
    total_contracts: int
    contracts_with_scores: int
    urgent_warnings: int


class TopRiskContract(BaseModel):
    id: int
    piid: Optional[str] = None
    vendor_name: Optional[str] = None
    risk_score: int
    breach_probability: float
    months_to_warning: Optional[int] = None


class VolatileCategory(BaseModel):
    category_code: str
    sigma: float
    observation_count: int
    confidence_level: ConfidenceLevel


class RiskStats(BaseModel):
    overview: StatsOverview
    confidence_distribution: list[ConfidenceCount]
    score_distribution: list[BucketCount]
    top_risk: list[TopRiskContract]
    top_volatile_categories: list[VolatileCategory]
