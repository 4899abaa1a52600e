from typing import List, Optional
from datetime import datetime
from sqlalchemy.orm import Session, joinedload
from app.crud.base import CRUDBase
from app.models.database import UserPlan
from app.utils.clock import utcnow


class CRUDUserPlan(CRUDBase[UserPlan]):
    def get_fresh(self, db: Session, user_plan_id: str) -> Optional[UserPlan]:
        """캐시(identity map)를 무시하고 DB에서 다시 조회"""
        return (
            db.query(UserPlan)
            .options(joinedload(UserPlan.plan), joinedload(UserPlan.user))
            .populate_existing()
            .filter(UserPlan.id == user_plan_id)
            .first()
        )

    def get_by_user(self, db: Session, user_id: str) -> List[UserPlan]:
        """사용자의 전체 플랜 (최신 구매순)"""
        return (
            db.query(UserPlan)
            .options(joinedload(UserPlan.plan))
            .filter(UserPlan.user_id == user_id)
            .order_by(UserPlan.created_at.desc())
            .all()
        )

    def get_redeemable_for_user(
        self, db: Session, user_id: str, now: Optional[datetime] = None
    ) -> Optional[UserPlan]:
        """QR 발급 가능한 플랜 중 가장 먼저 만료되는 플랜"""
        now = now or utcnow()
        return (
            db.query(UserPlan)
            .filter(
                UserPlan.user_id == user_id,
                UserPlan.is_active.is_(True),
                UserPlan.credits_remaining > 0,
                UserPlan.expiration_date > now,
            )
            .order_by(UserPlan.expiration_date.asc())
            .first()
        )

user_plan = CRUDUserPlan(UserPlan)
