# services/cost_risk_engine/models.py

import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Integer,
    Float,
    String,
    Numeric,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base, RISK_SCHEMA
from .utils.clock import utcnow


class ConfidenceLevel(str, enum.Enum):
    """Степень доверия к оценке: зависит от числа наблюдений/контрактов."""
    low = "low"
    medium = "medium"
    high = "high"


# -------------------------------------------------------------------
# 1. Внешние таблицы (их наполняет процесс синхронизации контрактов)
# -------------------------------------------------------------------

class ServiceContract(Base):
    """
    Контракт на услуги. Для движка: только чтение.
    Атрибуты названы в терминах движка, колонки: как в исходной схеме.
    """
    __tablename__ = "service_contracts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    piid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    vendor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    category_code: Mapped[str | None] = mapped_column("psc_code", String(16), nullable=True, index=True)
    agency_code: Mapped[str | None] = mapped_column("awarding_agency", String(255), nullable=True)

    ceiling: Mapped[Decimal | None] = mapped_column("award_ceiling", Numeric(15, 2), nullable=True)
    obligated_amount: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    award_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    period_start: Mapped[datetime | None] = mapped_column(
        "period_of_performance_start", DateTime, nullable=True
    )
    period_end: Mapped[datetime | None] = mapped_column(
        "period_of_performance_end", DateTime, nullable=True
    )

    modifications: Mapped[list["ContractModification"]] = relationship(
        back_populates="contract",
        order_by="ContractModification.action_date",
    )


class ContractModification(Base):
    """Модификация контракта (append-only с точки зрения движка)."""
    __tablename__ = "contract_modifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    contract_id: Mapped[int] = mapped_column(
        ForeignKey("service_contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    modification_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    obligated_delta: Mapped[Decimal | None] = mapped_column("obligated_change", Numeric(15, 2), nullable=True)
    obligated_total: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)

    contract: Mapped[ServiceContract] = relationship(back_populates="modifications")


# -------------------------------------------------------------------
# 2. Производные таблицы движка (схема risk)
# -------------------------------------------------------------------

class ContractCostObservation(Base):
    """
    Наблюдение утилизации потолка: obligation / ceiling на дату.
    Для контракта пересоздаётся целиком при каждом прогоне извлечения.
    """
    __tablename__ = "contract_cost_observations"
    __table_args__ = (
        Index("ix_cost_observations_contract_date", "contract_id", "observation_date"),
        {"schema": RISK_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_id: Mapped[int] = mapped_column(
        ForeignKey("service_contracts.id", ondelete="CASCADE"), nullable=False
    )
    observation_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ceiling_value: Mapped[float] = mapped_column(Float, nullable=False)
    obligation_value: Mapped[float] = mapped_column(Float, nullable=False)
    ratio: Mapped[float] = mapped_column(Float, nullable=False)


class VolatilityParameter(Base):
    """
    Годовая волатильность (sigma) по категории.
    agency_code = NULL: базовая строка категории.
    """
    __tablename__ = "volatility_parameters"
    __table_args__ = (
        UniqueConstraint("psc_code", "agency_code", name="uq_volatility_psc_agency"),
        {"schema": RISK_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    category_code: Mapped[str] = mapped_column("psc_code", String(16), nullable=False, index=True)
    agency_code: Mapped[str | None] = mapped_column(String(255), nullable=True)

    sigma: Mapped[float] = mapped_column(Float, nullable=False)
    observation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence_level: Mapped[ConfidenceLevel] = mapped_column(
        Enum(ConfidenceLevel, name="confidence_level", native_enum=False),
        nullable=False,
    )
    last_calculated: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ContractRiskScore(Base):
    """Итоговая оценка риска контракта (одна строка на контракт, upsert)."""
    __tablename__ = "contract_risk_scores"
    __table_args__ = (
        Index("ix_contract_risk_scores_score", "risk_score"),
        {"schema": RISK_SCHEMA},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_id: Mapped[int] = mapped_column(
        ForeignKey("service_contracts.id", ondelete="CASCADE"), nullable=False, unique=True
    )

    current_ratio: Mapped[float] = mapped_column(Float, nullable=False)
    implied_volatility: Mapped[float] = mapped_column(Float, nullable=False)
    lifecycle_stage: Mapped[int] = mapped_column(Integer, nullable=False)
    lifecycle_multiplier: Mapped[float] = mapped_column(Float, nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)

    expected_cost_low: Mapped[float | None] = mapped_column(Float, nullable=True)
    expected_cost_mid: Mapped[float | None] = mapped_column(Float, nullable=True)
    expected_cost_high: Mapped[float | None] = mapped_column(Float, nullable=True)

    ceiling_breach_prob: Mapped[float] = mapped_column(Float, nullable=False)
    months_to_warning: Mapped[int | None] = mapped_column(Integer, nullable=True)
    confidence_level: Mapped[ConfidenceLevel] = mapped_column(
        Enum(ConfidenceLevel, name="confidence_level", native_enum=False),
        nullable=False,
    )

    calculated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        index=True,
    )

    contract: Mapped[ServiceContract] = relationship()
