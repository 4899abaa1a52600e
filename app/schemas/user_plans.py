"""
사용자 플랜(크레딧 잔액) 응답 스키마
"""

from pydantic import BaseModel
from typing import List
from datetime import datetime


class UserPlanResponse(BaseModel):
    """사용자 플랜 개별 응답"""
    id: str
    planId: str
    planName: str
    credits: int
    creditsRemaining: int
    creditsUsed: int
    isActive: bool
    isExpired: bool
    expiresAt: datetime
    status: str  # "sufficient" | "insufficient"


class UserPlanListResponse(BaseModel):
    """사용자 플랜 목록 응답"""
    plans: List[UserPlanResponse]
    total_count: int
