"""
Чистые (без БД) расчёты движка:
observations → volatility → projector.
"""
