"""
사용자 플랜 크레딧 차감/환불 유틸리티

비즈니스 로직:
- 차감은 조건부 UPDATE (잔액 >= 요청량, 활성 플랜)로 동시 요청에도 한 번만 성공
- 환불은 원래 지급 크레딧(credits)을 넘지 않도록 상한 적용
- 0 <= credits_remaining <= credits 불변식 유지
- 커밋은 호출자가 담당 (같은 트랜잭션 경계 안에서 사용)
"""

import logging
from typing import Optional

from sqlalchemy import case, update
from sqlalchemy.orm import Session

from app.models.database import UserPlan
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def debit_credits(db: Session, user_plan_id: str, amount: int) -> Optional[int]:
    """사용자 플랜 크레딧 차감 (compare-and-swap)

    Args:
        db: 데이터베이스 세션 (트랜잭션 진행 중)
        user_plan_id: 사용자 플랜 ID
        amount: 차감할 크레딧 수

    Returns:
        Optional[int]: 차감 후 잔액, 조건 불충족 시 None
    """
    if amount <= 0:
        raise ValueError("amount must be positive")

    result = db.execute(
        update(UserPlan)
        .where(
            UserPlan.id == user_plan_id,
            UserPlan.is_active.is_(True),
            UserPlan.credits_remaining >= amount,
        )
        .values(
            credits_remaining=UserPlan.credits_remaining - amount,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        logger.warning(f"Credit debit rejected for user plan {user_plan_id}: amount={amount}")
        return None

    remaining = db.query(UserPlan.credits_remaining).filter(UserPlan.id == user_plan_id).scalar()
    logger.info(f"Debited {amount} credits from user plan {user_plan_id}. remaining={remaining}")
    return remaining


def refund_credits(db: Session, user_plan_id: str, amount: int) -> Optional[int]:
    """사용자 플랜 크레딧 환불 (credits 상한)

    Returns:
        Optional[int]: 환불 후 잔액, 플랜이 없으면 None
    """
    if amount <= 0:
        raise ValueError("amount must be positive")

    new_remaining = UserPlan.credits_remaining + amount
    result = db.execute(
        update(UserPlan)
        .where(UserPlan.id == user_plan_id)
        .values(
            credits_remaining=case(
                (new_remaining > UserPlan.credits, UserPlan.credits),
                else_=new_remaining,
            ),
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        logger.error(f"Credit refund target user plan {user_plan_id} not found")
        return None

    remaining = db.query(UserPlan.credits_remaining).filter(UserPlan.id == user_plan_id).scalar()
    logger.info(f"Refunded {amount} credits to user plan {user_plan_id}. remaining={remaining}")
    return remaining


def is_low_balance(credits_remaining: int, threshold: int) -> bool:
    """잔액이 알림 기준 이하인지 여부"""
    return credits_remaining <= threshold


def get_user_plan_credits(user_plan: UserPlan) -> dict:
    """사용자 플랜 크레딧 정보 조회"""
    return {
        "user_plan_id": user_plan.id,
        "credits": user_plan.credits,
        "credits_remaining": user_plan.credits_remaining,
        "credits_used": user_plan.credits_used,
        "status": "sufficient" if user_plan.credits_remaining > 0 else "insufficient"
    }
