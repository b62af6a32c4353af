"""
cost_risk_engine: расчёт риска превышения потолка стоимости контрактов.
Три фазы: наблюдения из истории модификаций → волатильность категорий → прогноз риска.
"""

from .config import settings
from .database import engine, Base, get_db, ensure_schema, init_db

__all__ = [
    "settings",
    "engine",
    "Base",
    "get_db",
    "ensure_schema",
    "init_db",
]
