import os
import sys
from datetime import datetime
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[3]
SERVICES_DIR = ROOT / "services"
if str(SERVICES_DIR) not in sys.path:
    sys.path.insert(0, str(SERVICES_DIR))

# до импорта пакета: модульный движок не должен смотреть в PostgreSQL
os.environ["DATABASE_URL"] = "sqlite://"

from sqlalchemy.orm import sessionmaker  # noqa: E402

from cost_risk_engine.database import Base, create_db_engine  # noqa: E402
from cost_risk_engine.models import ContractModification, ServiceContract  # noqa: E402

NOW = datetime(2025, 7, 1)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def engine(tmp_path):
    eng = create_db_engine(f"sqlite:///{tmp_path / 'risk.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def add_contract(session, modifications=(), **fields) -> int:
    """Добавляет контракт с модификациями [(date, delta, total), ...]."""
    contract = ServiceContract(**fields)
    session.add(contract)
    session.flush()
    for action_date, delta, total in modifications:
        session.add(
            ContractModification(
                contract_id=contract.id,
                action_date=action_date,
                obligated_delta=Decimal(str(delta)) if delta is not None else None,
                obligated_total=Decimal(str(total)) if total is not None else None,
            )
        )
    session.commit()
    return contract.id


@pytest.fixture
def seeded(db_session) -> dict[str, int]:
    """
    Небольшой портфель:
      - volatile: категория R425, история с заметными скачками ratio,
      - zero_start: R425, старт с нулевых обязательств,
      - no_ceiling: потолок 0, без модификаций,
      - single: категория D399, одно наблюдение (sigma не считается).
    """
    volatile = add_contract(
        db_session,
        modifications=[
            (datetime(2024, 4, 1), None, 250_000),
            (datetime(2024, 8, 1), 150_000, None),
            (datetime(2025, 1, 15), None, 700_000),
            (datetime(2025, 6, 1), 50_000, None),
        ],
        piid="W91-001",
        vendor_name="Acme Logistics",
        category_code="R425",
        agency_code="DEPT OF THE ARMY",
        ceiling=Decimal("1000000.00"),
        obligated_amount=Decimal("100000.00"),
        award_date=datetime(2024, 1, 1),
        period_start=datetime(2024, 1, 1),
        period_end=datetime(2027, 1, 1),
    )
    zero_start = add_contract(
        db_session,
        modifications=[
            (datetime(2024, 3, 1), 100_000, None),
            (datetime(2024, 9, 1), 200_000, None),
            (datetime(2025, 3, 1), None, 600_000),
            (datetime(2025, 5, 1), 50_000, None),
        ],
        piid="N00-002",
        vendor_name="Blue Harbor",
        category_code="R425",
        agency_code="DEPT OF THE NAVY",
        ceiling=Decimal("800000.00"),
        obligated_amount=Decimal("0"),
        award_date=datetime(2024, 1, 15),
        period_start=datetime(2024, 1, 15),
        period_end=datetime(2026, 1, 15),
    )
    no_ceiling = add_contract(
        db_session,
        piid="FA8-003",
        category_code="R425",
        ceiling=Decimal("0"),
        obligated_amount=Decimal("5000.00"),
        award_date=datetime(2024, 2, 1),
    )
    single = add_contract(
        db_session,
        piid="HQ0-004",
        vendor_name="Delta Works",
        category_code="D399",
        ceiling=Decimal("500000.00"),
        obligated_amount=Decimal("450000.00"),
        award_date=datetime(2023, 6, 1),
        period_start=datetime(2023, 6, 1),
        period_end=datetime(2025, 6, 1),
    )
    return {
        "volatile": volatile,
        "zero_start": zero_start,
        "no_ceiling": no_ceiling,
        "single": single,
    }


@pytest.fixture
def make_contract(db_session):
    def _make(modifications=(), **fields) -> int:
        return add_contract(db_session, modifications, **fields)

    return _make
