from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
import logging

from app.core.auth import get_current_user, require
from app.core.credits import get_user_plan_credits
from app.core.database import get_db
from app.core.permissions import Action
from app.crud.user_plan import user_plan as user_plan_crud
from app.models.database import User, UserPlan
from app.schemas.user_plans import UserPlanListResponse, UserPlanResponse

logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(plan: UserPlan) -> UserPlanResponse:
    credit_info = get_user_plan_credits(plan)
    return UserPlanResponse(
        id=plan.id,
        planId=plan.plan_id,
        planName=plan.plan.name if plan.plan else "",
        credits=plan.credits,
        creditsRemaining=plan.credits_remaining,
        creditsUsed=credit_info["credits_used"],
        isActive=plan.is_active,
        isExpired=plan.is_expired(),
        expiresAt=plan.expiration_date,
        status=credit_info["status"],
    )


@router.get("/me", response_model=UserPlanListResponse)
def get_my_plans(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """내 플랜 및 크레딧 잔액 조회"""
    plans = user_plan_crud.get_by_user(db, current_user.id)
    return UserPlanListResponse(
        plans=[to_response(plan) for plan in plans],
        total_count=len(plans),
    )


@router.get("/{user_plan_id}", response_model=UserPlanResponse)
def get_user_plan(
    user_plan_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """사용자 플랜 단건 조회"""
    plan = user_plan_crud.get(db, user_plan_id)
    if not plan:
        raise HTTPException(status_code=404, detail="사용자 플랜을 찾을 수 없습니다.")

    require(current_user, Action.VIEW_USER_PLAN, plan)
    return to_response(plan)
