# services/cost_risk_engine/database.py

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import settings

# Отдельная схема для таблиц, которыми владеет движок
RISK_SCHEMA = settings.DB_SCHEMA


def create_db_engine(url: str = settings.DATABASE_URL) -> Engine:
    """
    Создаёт движок SQLAlchemy.
    В SQLite схем нет, поэтому схему risk транслируем в основную базу.
    """
    if url.startswith("sqlite"):
        return create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            execution_options={"schema_translate_map": {RISK_SCHEMA: None}},
        )
    return create_engine(
        url,
        pool_pre_ping=True,
        future=True,
    )


# Движок SQLAlchemy
engine = create_db_engine()

# Фабрика сессий
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
)


class Base(DeclarativeBase):
    """Базовый класс моделей SQLAlchemy для cost_risk_engine."""
    pass


def ensure_schema(bind: Engine = engine) -> None:
    """Создаёт схему risk, если она ещё не существует (только PostgreSQL)."""
    if bind.dialect.name != "postgresql":
        return
    with bind.begin() as conn:
        conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{RISK_SCHEMA}"'))


def init_db(bind: Engine = engine) -> None:
    """Схема + все таблицы из метаданных."""
    from . import models  # noqa: F401  регистрирует таблицы в Base.metadata

    ensure_schema(bind)
    Base.metadata.create_all(bind=bind)


def get_db():
    """Зависимость FastAPI для получения сессии БД."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> sessionmaker:
    """Зависимость FastAPI: фабрика сессий для пакетных фаз (по сессии на элемент)."""
    return SessionLocal
