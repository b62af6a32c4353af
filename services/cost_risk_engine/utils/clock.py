from datetime import datetime, timezone


def utcnow() -> datetime:
    """Текущее время UTC без tzinfo: в БД все даты хранятся naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
