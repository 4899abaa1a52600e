from datetime import datetime, timezone


def utcnow() -> datetime:
    """현재 UTC 시각 (DB 저장 형식과 맞추기 위해 naive)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
