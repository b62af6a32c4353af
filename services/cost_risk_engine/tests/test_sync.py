from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from cost_risk_engine import sync
from cost_risk_engine.config import settings
from cost_risk_engine.exceptions import MissingEntity
from cost_risk_engine.models import (
    ConfidenceLevel,
    ContractCostObservation,
    ContractModification,
    ContractRiskScore,
    ServiceContract,
    VolatilityParameter,
)
from cost_risk_engine.repository import find_volatility_parameter, upsert_volatility_parameter


def _observation_rows(session) -> list[tuple]:
    rows = session.execute(
        select(
            ContractCostObservation.contract_id,
            ContractCostObservation.observation_date,
            ContractCostObservation.ceiling_value,
            ContractCostObservation.obligation_value,
            ContractCostObservation.ratio,
        ).order_by(ContractCostObservation.contract_id, ContractCostObservation.observation_date)
    ).all()
    return [tuple(r) for r in rows]


# ---------- Фаза 1 ----------


def test_extraction_counts_and_rows(session_factory, db_session, seeded) -> None:
    summary = sync.run_observation_extraction(session_factory, max_workers=1)

    # no_ceiling тоже обходится: ряд пересобирается пустым
    assert summary.processed == 4
    assert summary.errors == 0
    assert summary.total_observations == len(_observation_rows(db_session))

    ratios = [
        obs.ratio
        for obs in db_session.scalars(
            select(ContractCostObservation)
            .where(ContractCostObservation.contract_id == seeded["volatile"])
            .order_by(ContractCostObservation.observation_date)
        )
    ]
    assert ratios == pytest.approx([0.1, 0.25, 0.4, 0.7, 0.75])


def test_extraction_is_idempotent(session_factory, db_session, seeded) -> None:
    sync.run_observation_extraction(session_factory, max_workers=1)
    first = _observation_rows(db_session)

    sync.run_observation_extraction(session_factory, max_workers=1)
    db_session.expire_all()
    second = _observation_rows(db_session)

    assert first == second


def test_extraction_rebuilds_after_retroactive_correction(session_factory, db_session, seeded) -> None:
    sync.run_observation_extraction(session_factory, max_workers=1)

    mod = db_session.scalars(
        select(ContractModification).where(
            ContractModification.contract_id == seeded["volatile"],
            ContractModification.action_date == datetime(2025, 1, 15),
        )
    ).one()
    mod.obligated_total = Decimal("900000.00")
    db_session.commit()

    sync.run_observation_extraction(session_factory, max_workers=1)
    db_session.expire_all()

    ratios = [
        row[4] for row in _observation_rows(db_session) if row[0] == seeded["volatile"]
    ]
    assert ratios == pytest.approx([0.1, 0.25, 0.4, 0.9, 0.95])


def test_contract_without_ceiling_gets_nothing(session_factory, db_session, seeded) -> None:
    sync.run_all(session_factory, max_workers=1, now=datetime(2025, 7, 1))

    contract_id = seeded["no_ceiling"]
    assert not [row for row in _observation_rows(db_session) if row[0] == contract_id]
    assert db_session.scalars(
        select(ContractRiskScore).where(ContractRiskScore.contract_id == contract_id)
    ).first() is None


def test_ceiling_corrected_to_zero_clears_derived_rows(session_factory, db_session, seeded, now) -> None:
    sync.run_all(session_factory, max_workers=1, now=now)
    contract_id = seeded["volatile"]
    assert db_session.scalars(select(VolatilityParameter)).one().observation_count == 2

    db_session.get(ServiceContract, contract_id).ceiling = Decimal("0")
    db_session.commit()

    sync.run_all(session_factory, max_workers=1, now=datetime(2025, 8, 1))
    db_session.expire_all()

    assert not [row for row in _observation_rows(db_session) if row[0] == contract_id]
    assert db_session.scalars(
        select(ContractRiskScore).where(ContractRiskScore.contract_id == contract_id)
    ).first() is None
    # в оценке категории остался только zero_start
    params = db_session.scalars(select(VolatilityParameter)).all()
    assert all(p.observation_count == 1 for p in params)


# ---------- Фаза 2 ----------


def test_volatility_baseline_row_per_category(session_factory, db_session, seeded, now) -> None:
    sync.run_observation_extraction(session_factory, max_workers=1)
    summary = sync.run_volatility_estimation(session_factory, max_workers=1, now=now)

    # D399: одно наблюдение, sigma не считается, строки нет
    assert summary.parameters == 1
    assert summary.errors == 0

    params = db_session.scalars(select(VolatilityParameter)).all()
    assert len(params) == 1
    param = params[0]
    assert param.category_code == "R425"
    assert param.agency_code is None
    assert param.observation_count == 2
    assert param.confidence_level == ConfidenceLevel.low
    assert param.sigma > 0
    assert param.last_calculated == now


def test_volatility_rerun_updates_in_place(session_factory, db_session, seeded, now) -> None:
    sync.run_observation_extraction(session_factory, max_workers=1)
    sync.run_volatility_estimation(session_factory, max_workers=1, now=now)
    first = db_session.scalars(select(VolatilityParameter)).one()
    first_id, first_sigma = first.id, first.sigma

    sync.run_volatility_estimation(session_factory, max_workers=1, now=datetime(2025, 8, 1))
    db_session.expire_all()

    again = db_session.scalars(select(VolatilityParameter)).one()
    assert again.id == first_id
    assert again.sigma == pytest.approx(first_sigma)
    assert again.last_calculated == datetime(2025, 8, 1)


def test_agency_rows_when_enabled(session_factory, db_session, seeded, now, monkeypatch) -> None:
    monkeypatch.setattr(settings, "ESTIMATE_AGENCY_PARAMETERS", True)
    sync.run_observation_extraction(session_factory, max_workers=1)

    summary = sync.run_volatility_estimation(session_factory, max_workers=1, now=now)

    assert summary.parameters == 3
    agencies = {
        p.agency_code for p in db_session.scalars(select(VolatilityParameter))
    }
    assert agencies == {None, "DEPT OF THE ARMY", "DEPT OF THE NAVY"}


def test_agency_rows_removed_when_disabled(session_factory, db_session, seeded, now, monkeypatch) -> None:
    monkeypatch.setattr(settings, "ESTIMATE_AGENCY_PARAMETERS", True)
    sync.run_observation_extraction(session_factory, max_workers=1)
    sync.run_volatility_estimation(session_factory, max_workers=1, now=now)

    monkeypatch.setattr(settings, "ESTIMATE_AGENCY_PARAMETERS", False)
    summary = sync.run_volatility_estimation(session_factory, max_workers=1, now=now)
    db_session.expire_all()

    assert summary.parameters == 1
    param = db_session.scalars(select(VolatilityParameter)).one()
    assert param.agency_code is None


def test_category_without_usable_sigma_loses_parameters(session_factory, db_session, seeded, now) -> None:
    upsert_volatility_parameter(db_session, "Z999", None, 0.4, 12, ConfidenceLevel.low, now)
    upsert_volatility_parameter(db_session, "Z999", "DEPT OF THE ARMY", 0.6, 3, ConfidenceLevel.low, now)
    db_session.commit()

    sync.run_observation_extraction(session_factory, max_workers=1)
    summary = sync.run_volatility_estimation(session_factory, max_workers=1, now=now)
    db_session.expire_all()

    assert summary.errors == 0
    assert find_volatility_parameter(db_session, "Z999", "DEPT OF THE ARMY") is None
    assert {p.category_code for p in db_session.scalars(select(VolatilityParameter))} == {"R425"}


def test_lookup_prefers_agency_row(db_session, seeded, now) -> None:
    upsert_volatility_parameter(db_session, "R425", None, 0.2, 30, ConfidenceLevel.medium, now)
    upsert_volatility_parameter(db_session, "R425", "DEPT OF THE ARMY", 0.5, 5, ConfidenceLevel.low, now)
    db_session.commit()

    assert find_volatility_parameter(db_session, "R425", "DEPT OF THE ARMY").sigma == 0.5
    assert find_volatility_parameter(db_session, "R425", "DEPT OF THE NAVY").sigma == 0.2
    assert find_volatility_parameter(db_session, "R425", None).sigma == 0.2
    assert find_volatility_parameter(db_session, None, "DEPT OF THE ARMY") is None
    assert find_volatility_parameter(db_session, "Z999", None) is None


# ---------- Фаза 3 ----------


def test_scoring_uses_category_parameter(session_factory, db_session, seeded, now) -> None:
    sync.run_observation_extraction(session_factory, max_workers=1)
    sync.run_volatility_estimation(session_factory, max_workers=1, now=now)

    summary = sync.run_risk_scoring(session_factory, max_workers=1, now=now)

    assert summary.processed == 3
    assert summary.errors == 0

    param = db_session.scalars(select(VolatilityParameter)).one()
    scores = {
        s.contract_id: s for s in db_session.scalars(select(ContractRiskScore))
    }
    assert set(scores) == {seeded["volatile"], seeded["zero_start"], seeded["single"]}

    volatile = scores[seeded["volatile"]]
    assert volatile.current_ratio == pytest.approx(0.1)
    assert volatile.lifecycle_multiplier == 1.0
    assert volatile.implied_volatility == pytest.approx(param.sigma)
    assert volatile.calculated_at == now

    # D399 без параметра: sigma по умолчанию, степень доверия low
    single = scores[seeded["single"]]
    assert single.confidence_level == ConfidenceLevel.low
    assert single.implied_volatility == pytest.approx(0.25 * 0.7)

    for score in scores.values():
        assert isinstance(score.risk_score, int)
        assert 0 <= score.risk_score <= 100


def test_scoring_upserts_single_row(session_factory, db_session, seeded, now) -> None:
    sync.run_risk_scoring(session_factory, max_workers=1, now=now)
    sync.run_risk_scoring(session_factory, max_workers=1, now=datetime(2025, 9, 1))

    rows = db_session.scalars(
        select(ContractRiskScore).where(ContractRiskScore.contract_id == seeded["volatile"])
    ).all()
    assert len(rows) == 1
    assert rows[0].calculated_at == datetime(2025, 9, 1)


def test_run_all_report(session_factory, seeded, now) -> None:
    report = sync.run_all(session_factory, max_workers=1, now=now)

    assert report.observations.processed == 4
    assert report.volatility.parameters == 1
    assert report.scores.processed == 3
    assert report.started_at <= report.finished_at


# ---------- Изоляция ошибок ----------


def test_failing_item_does_not_abort_phase(session_factory) -> None:
    def worker(session, key):
        if key == 2:
            raise ValueError("boom")
        if key == 3:
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        if key == 4:
            raise MissingEntity("contract", key)
        return 10

    processed, rows, errors = sync._run_phase([1, 2, 3, 4, 5], worker, session_factory, max_workers=1)

    assert (processed, rows, errors) == (2, 20, 2)


def test_worker_pool_processes_every_item(session_factory) -> None:
    seen = []

    def worker(session, key):
        seen.append(key)
        return key

    processed, rows, errors = sync._run_phase(range(1, 11), worker, session_factory, max_workers=4)

    assert sorted(seen) == list(range(1, 11))
    assert (processed, rows, errors) == (10, 55, 0)


def test_skipped_worker_result_is_not_counted(session_factory) -> None:
    processed, rows, errors = sync._run_phase(["R425"], lambda session, key: None, session_factory, 1)

    assert (processed, rows, errors) == (0, 0, 0)


def test_lost_connection_aborts_phase(session_factory) -> None:
    seen = []

    def worker(session, key):
        seen.append(key)
        if key == 2:
            raise OperationalError("SELECT 1", {}, Exception("server closed the connection"), connection_invalidated=True)
        return 1

    with pytest.raises(OperationalError):
        sync._run_phase([1, 2, 3], worker, session_factory, max_workers=1)

    assert seen == [1, 2]
