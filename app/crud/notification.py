from typing import List, Optional
from sqlalchemy.orm import Session
from app.models.database import NotificationEvent

def add_event(
    db: Session,
    *,
    user_id: str,
    event_type: str,
    user_plan_id: Optional[str] = None,
    payload: Optional[dict] = None,
) -> NotificationEvent:
    """알림 이벤트 추가 (커밋은 호출자 트랜잭션에서)"""
    event = NotificationEvent(
        user_id=user_id,
        user_plan_id=user_plan_id,
        type=event_type,
        payload=payload or {},
    )
    db.add(event)
    return event

def list_for_user(db: Session, user_id: str) -> List[NotificationEvent]:
    return (
        db.query(NotificationEvent)
        .filter(NotificationEvent.user_id == user_id)
        .order_by(NotificationEvent.created_at.desc())
        .all()
    )
