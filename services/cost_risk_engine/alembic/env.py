# services/cost_risk_engine/alembic/env.py

import os
import sys
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool, text
from alembic import context

# --- Добавляем каталог services, чтобы импортировался пакет cost_risk_engine ---
SERVICES_DIR = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
if SERVICES_DIR not in sys.path:
    sys.path.insert(0, SERVICES_DIR)

from cost_risk_engine.database import Base, RISK_SCHEMA  # noqa: E402
from cost_risk_engine import models  # noqa: E402,F401
from cost_risk_engine.config import settings  # noqa: E402


# --- Конфигурация Alembic ---
config = context.config

db_url = os.getenv("DATABASE_URL", settings.DATABASE_URL)
if db_url:
    config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Внешние таблицы (service_contracts, contract_modifications) ведёт сервис синхронизации
OWNED_TABLES = {"contract_cost_observations", "volatility_parameters", "contract_risk_scores"}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table":
        return name in OWNED_TABLES
    return True


# --- OFFLINE режим (генерация SQL без подключения к БД) ---
def run_migrations_offline() -> None:
    url = config.get_main_option("sqlalchemy.url")

    context.configure(
        url=url,
        target_metadata=target_metadata,
        include_schemas=True,
        include_object=include_object,
        version_table_schema=RISK_SCHEMA,
        literal_binds=True,
    )

    with context.begin_transaction():
        context.execute(f'CREATE SCHEMA IF NOT EXISTS "{RISK_SCHEMA}"')
        context.run_migrations()


# --- ONLINE режим (с реальным подключением к БД) ---
def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{RISK_SCHEMA}"'))
        connection.commit()

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_schemas=True,
            include_object=include_object,
            version_table_schema=RISK_SCHEMA,
        )

        with context.begin_transaction():
            context.run_migrations()


# --- Точка входа ---
if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
