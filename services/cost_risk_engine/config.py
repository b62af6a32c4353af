# services/cost_risk_engine/config.py

import os
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Конфигурация cost_risk_engine: расчёт риска превышения потолка контракта.
    """

    # --- Основная информация ---
    SERVICE_NAME: str = "Contract Cost Risk Engine"
    VERSION: str = "1.0.0"
    ENV: str = os.getenv("ENV", "dev")

    # --- Подключение к БД ---
    DATABASE_URL: str = os.getenv(
        "DATABASE_URL",
        "postgresql://postgres:postgres@db:5432/diploma"
    )
    DB_SCHEMA: str = "risk"

    # --- Пул воркеров внутри фазы (1 = строго последовательно) ---
    MAX_WORKERS: int = 4

    # --- Параметры модели ---
    DEFAULT_SIGMA: float = 0.25              # если для категории нет параметра
    MIN_RATIO_CHANGE: float = 0.001          # порог шума административных модификаций
    WARNING_BREACH_PROBABILITY: float = 50.0  # % для months_to_warning
    NEAR_CEILING_RATIO: float = 0.9

    # Повторное применение lifecycle-множителя в volatilityScore.
    # Выключать только для экспериментов.
    REWEIGHT_VOLATILITY_SCORE: bool = True

    # Считать ли параметры (категория, агентство) помимо базовых
    ESTIMATE_AGENCY_PARAMETERS: bool = False

    # --- Логирование ---
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # --- Файл .env ---
    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
