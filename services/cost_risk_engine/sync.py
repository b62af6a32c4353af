# services/cost_risk_engine/sync.py

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Callable, Iterable, Optional, TypeVar

from loguru import logger
from sqlalchemy.exc import DBAPIError, DisconnectionError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .database import SessionLocal
from .exceptions import SKIPPABLE, InvalidCeiling, PersistenceFailure
from .repository import (
    categories_with_observations,
    categories_with_parameters,
    delete_risk_score,
    list_contract_ids,
    load_contract,
    load_modifications,
    prune_volatility_parameters,
    replace_observations,
    stream_category_series,
    upsert_risk_score,
    upsert_volatility_parameter,
    volatility_lookup,
)
from .risk.observations import extract
from .risk.projector import project
from .risk.volatility import CategoryAccumulator, contract_volatility
from .schemas import ExtractionSummary, ScoringSummary, SyncReport, VolatilitySummary
from .utils.clock import utcnow

K = TypeVar("K")

# Результат обработки одного элемента: None: пропуск (фиксируется только чистка), иначе число строк
ItemWorker = Callable[[Session, K], Optional[int]]


def _connection_lost(error: SQLAlchemyError) -> bool:
    # потеря хранилища не относится к элементу: фаза прерывается целиком
    if isinstance(error, DisconnectionError):
        return True
    return isinstance(error, DBAPIError) and error.connection_invalidated


def _run_item(session_factory: sessionmaker, worker: ItemWorker, key) -> tuple[str, int]:
    """
    Обрабатывает один контракт/категорию в собственной сессии и транзакции.
    Возвращает ("ok" | "skipped" | "error", число записанных строк).
    """
    session = session_factory()
    try:
        written = worker(session, key)
        session.commit()
        if written is None:
            return "skipped", 0
        return "ok", written
    except SKIPPABLE as e:
        session.rollback()
        logger.debug(f"⏭️ {key}: skipped ({e.code})")
        return "skipped", 0
    except SQLAlchemyError as e:
        if _connection_lost(e):
            logger.critical(f"💥 Storage connection lost while processing {key}: {e}")
            raise
        session.rollback()
        failure = PersistenceFailure(key, e)
        logger.error(f"❌ {failure.code}: {failure}")
        return "error", 0
    except Exception as e:
        session.rollback()
        logger.error(f"❌ Failed to process {key}: {e}")
        return "error", 0
    finally:
        session.close()


def _run_phase(
    keys: Iterable,
    worker: ItemWorker,
    session_factory: sessionmaker,
    max_workers: int,
) -> tuple[int, int, int]:
    """
    Прогоняет worker по всем ключам. Элементы независимы и пишут
    непересекающиеся строки, поэтому внутри фазы можно параллелить.
    Возвращает (processed, rows, errors).
    """
    keys = list(keys)
    if max_workers <= 1:
        outcomes = [_run_item(session_factory, worker, key) for key in keys]
    else:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(lambda key: _run_item(session_factory, worker, key), keys))

    processed = sum(1 for status, _ in outcomes if status == "ok")
    rows = sum(written for _, written in outcomes)
    errors = sum(1 for status, _ in outcomes if status == "error")
    return processed, rows, errors


def _contract_ids(session_factory: sessionmaker) -> list[int]:
    # сбой здесь не привязан к элементу: пусть уходит вызывающему
    with session_factory() as session:
        return list_contract_ids(session)


# ---------- Фаза 1: наблюдения ----------


def extract_contract_observations(session: Session, contract_id: int) -> int:
    contract = load_contract(session, contract_id)
    modifications = load_modifications(session, contract_id)
    observations = extract(contract, modifications, min_ratio_change=settings.MIN_RATIO_CHANGE)
    return replace_observations(session, contract_id, observations)


def run_observation_extraction(
    session_factory: sessionmaker = SessionLocal,
    max_workers: Optional[int] = None,
) -> ExtractionSummary:
    """Пересобирает ряды наблюдений всех контрактов; без потолка ряд становится пустым."""
    ids = _contract_ids(session_factory)
    logger.info(f"🧮 Extracting cost observations for {len(ids)} contracts")

    processed, total, errors = _run_phase(
        ids,
        extract_contract_observations,
        session_factory,
        max_workers or settings.MAX_WORKERS,
    )

    summary = ExtractionSummary(processed=processed, total_observations=total, errors=errors)
    logger.info(
        f"✅ Observations: processed={summary.processed}, "
        f"observations={summary.total_observations}, errors={summary.errors}"
    )
    return summary


# ---------- Фаза 2: волатильность ----------


def estimate_category(session: Session, category_code: str, now: datetime) -> Optional[int]:
    """
    Взвешенная sigma категории по потоку контрактов.
    Базовая строка (agency = NULL) пишется всегда; строки по агентствам
    пишутся только при ESTIMATE_AGENCY_PARAMETERS.
    """
    baseline = CategoryAccumulator(category_code)
    by_agency: dict[str, CategoryAccumulator] = defaultdict(lambda: CategoryAccumulator(category_code))

    for contract, observations in stream_category_series(session, category_code):
        sigma = contract_volatility(observations)
        if sigma is None:
            continue
        baseline.add(sigma, contract.obligated_amount)
        if settings.ESTIMATE_AGENCY_PARAMETERS and contract.agency_code:
            by_agency[contract.agency_code].add(sigma, contract.obligated_amount)

    if baseline.count == 0:
        removed = prune_volatility_parameters(session, category_code, keep_baseline=False)
        logger.debug(f"⏭️ {category_code}: no contract with a usable volatility, removed {removed} stale rows")
        return None

    prune_volatility_parameters(session, category_code, keep_agencies=by_agency.keys())
    accumulators = [(None, baseline)] + sorted(by_agency.items())
    for agency_code, acc in accumulators:
        upsert_volatility_parameter(
            session,
            category_code,
            agency_code,
            sigma=acc.sigma(),
            observation_count=acc.count,
            confidence=acc.confidence,
            calculated_at=now,
        )
    return len(accumulators)


def run_volatility_estimation(
    session_factory: sessionmaker = SessionLocal,
    max_workers: Optional[int] = None,
    now: Optional[datetime] = None,
) -> VolatilitySummary:
    """Пересчитывает параметры волатильности; строки без свежей оценки удаляются."""
    now = now or utcnow()
    with session_factory() as session:
        # категории с устаревшими параметрами тоже обходим, чтобы их вычистить
        categories = sorted(
            set(categories_with_observations(session)) | set(categories_with_parameters(session))
        )
    logger.info(f"📈 Estimating volatility for {len(categories)} categories")

    _, rows, errors = _run_phase(
        categories,
        lambda session, code: estimate_category(session, code, now),
        session_factory,
        max_workers or settings.MAX_WORKERS,
    )

    summary = VolatilitySummary(parameters=rows, errors=errors)
    logger.info(f"✅ Volatility: parameters={summary.parameters}, errors={summary.errors}")
    return summary


# ---------- Фаза 3: оценки риска ----------


def score_contract(session: Session, contract_id: int, now: datetime) -> Optional[int]:
    contract = load_contract(session, contract_id)
    try:
        assessment = project(
            contract,
            volatility_lookup(session),
            now,
            default_sigma=settings.DEFAULT_SIGMA,
            warning_threshold=settings.WARNING_BREACH_PROBABILITY,
            near_ceiling=settings.NEAR_CEILING_RATIO,
            reweight_volatility=settings.REWEIGHT_VOLATILITY_SCORE,
        )
    except InvalidCeiling as e:
        # оценка по непригодному потолку больше не действует
        delete_risk_score(session, contract_id)
        logger.debug(f"⏭️ {contract_id}: skipped ({e.code})")
        return None
    upsert_risk_score(session, assessment, now)
    return 1


def run_risk_scoring(
    session_factory: sessionmaker = SessionLocal,
    max_workers: Optional[int] = None,
    now: Optional[datetime] = None,
) -> ScoringSummary:
    """Пересчитывает оценки риска; у контрактов без потолка оценка удаляется."""
    now = now or utcnow()
    ids = _contract_ids(session_factory)
    logger.info(f"🎯 Scoring {len(ids)} contracts")

    processed, _, errors = _run_phase(
        ids,
        lambda session, contract_id: score_contract(session, contract_id, now),
        session_factory,
        max_workers or settings.MAX_WORKERS,
    )

    summary = ScoringSummary(processed=processed, errors=errors)
    logger.info(f"✅ Scores: processed={summary.processed}, errors={summary.errors}")
    return summary


# ---------- Полный прогон ----------


def run_all(
    session_factory: sessionmaker = SessionLocal,
    max_workers: Optional[int] = None,
    now: Optional[datetime] = None,
) -> SyncReport:
    """Три фазы строго по порядку: каждая зависит от результата предыдущей."""
    started_at = utcnow()
    now = now or started_at
    logger.info("🚀 Starting risk model sync")

    observations = run_observation_extraction(session_factory, max_workers)
    volatility = run_volatility_estimation(session_factory, max_workers, now=now)
    scores = run_risk_scoring(session_factory, max_workers, now=now)

    report = SyncReport(
        observations=observations,
        volatility=volatility,
        scores=scores,
        started_at=started_at,
        finished_at=utcnow(),
    )
    logger.info(
        f"🏁 Risk model sync complete: observations={observations.total_observations}, "
        f"parameters={volatility.parameters}, scored={scores.processed}"
    )
    return report
