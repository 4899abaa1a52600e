import logging
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.credits import is_low_balance
from app.crud import notification as notification_crud
from app.models.database import NotificationEvent, User, UserPlan

logger = logging.getLogger(__name__)

LOW_BALANCE_EVENT_PREFIX = "LowBalance_"


def low_balance_threshold_for(user: Optional[User]) -> int:
    """사용자별 잔액 알림 기준 (없으면 설정값)"""
    if user is not None and user.low_balance_threshold is not None:
        return user.low_balance_threshold
    return settings.LOW_BALANCE_THRESHOLD


def emit_low_balance_if_needed(
    db: Session,
    user_plan: UserPlan,
    credits_remaining: int,
) -> Optional[NotificationEvent]:
    """차감 후 잔액이 기준 이하이면 알림 이벤트 기록 (호출자 트랜잭션 안에서)"""
    threshold = low_balance_threshold_for(user_plan.user)
    if not is_low_balance(credits_remaining, threshold):
        return None

    event = notification_crud.add_event(
        db,
        user_id=user_plan.user_id,
        user_plan_id=user_plan.id,
        event_type=f"{LOW_BALANCE_EVENT_PREFIX}{credits_remaining}",
        payload={
            "creditsRemaining": credits_remaining,
            "threshold": threshold,
            "planName": user_plan.plan.name if user_plan.plan else None,
        },
    )
    logger.info(
        f"Low balance event queued for user {user_plan.user_id}: "
        f"{credits_remaining} credits (threshold {threshold})"
    )
    return event
