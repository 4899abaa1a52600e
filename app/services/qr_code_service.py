"""
QR 코드 발급 오케스트레이터

비즈니스 로직:
- 요청한 사용자 소유의 활성/미만료 플랜이고 잔여 크레딧이 있어야 발급
- 플랜 ID가 없으면 가장 먼저 만료되는 사용 가능 플랜 자동 선택
- 만료 시간은 설정 범위(기본 5~60분) 안에서만 허용
- 발급 결과는 저장하지 않음 (토큰 자체가 자격 증명)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidUserPlanError
from app.crud.user_plan import user_plan as user_plan_crud
from app.models.database import UserPlan
from app.services.qr_generator import QRCodeGenerator, qr_code_generator
from app.services.qr_token_service import QRTokenClaims, QRTokenService, qr_token_service
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class QRCodeResult:
    """QR 코드 발급 결과"""
    qr_code_data_url: str
    token: str
    nonce: str
    user_plan_id: str
    issued_at: datetime
    expires_at: datetime


class QRCodeService:
    """QR 코드 발급 서비스"""

    def __init__(
        self,
        token_service: QRTokenService = qr_token_service,
        generator: QRCodeGenerator = qr_code_generator,
    ):
        self.token_service = token_service
        self.generator = generator

    def validate_expiration(self, expiration_minutes: int) -> None:
        if not (settings.QR_MIN_EXPIRATION_MINUTES <= expiration_minutes <= settings.QR_MAX_EXPIRATION_MINUTES):
            raise ValueError(
                f"QR Code expiration must be between {settings.QR_MIN_EXPIRATION_MINUTES} "
                f"and {settings.QR_MAX_EXPIRATION_MINUTES} minutes"
            )

    def validate_size(self, size: int) -> None:
        if not (settings.QR_MIN_SIZE <= size <= settings.QR_MAX_SIZE):
            raise ValueError(f"Size must be between {settings.QR_MIN_SIZE} and {settings.QR_MAX_SIZE} pixels")

    def resolve_user_plan(
        self,
        db: Session,
        user_id: str,
        user_plan_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UserPlan:
        """발급 대상 플랜 확인

        Raises:
            InvalidUserPlanError: 플랜 없음, 타인 소유, 비활성, 만료, 잔액 없음
        """
        now = now or utcnow()

        if user_plan_id is None:
            plan = user_plan_crud.get_redeemable_for_user(db, user_id, now=now)
            if plan is None:
                logger.warning(f"User {user_id} has no valid plan for QR Code generation")
                raise InvalidUserPlanError(None)
            return plan

        plan = user_plan_crud.get(db, user_plan_id)
        if (
            plan is None
            or plan.user_id != user_id
            or not plan.is_active
            or plan.is_expired(now)
            or plan.credits_remaining <= 0
        ):
            if plan is not None:
                logger.warning(
                    f"User plan {user_plan_id} validation failed - owner match: {plan.user_id == user_id}, "
                    f"active: {plan.is_active}, expired: {plan.is_expired(now)}, credits: {plan.credits_remaining}"
                )
            raise InvalidUserPlanError(user_plan_id)
        return plan

    def generate_qr_code(
        self,
        db: Session,
        user_id: str,
        user_plan_id: Optional[str] = None,
        size: Optional[int] = None,
        expiration_minutes: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> QRCodeResult:
        """사용자 플랜용 QR 코드 발급"""
        if size is None:
            size = settings.QR_DEFAULT_SIZE
        if expiration_minutes is None:
            expiration_minutes = settings.QR_DEFAULT_EXPIRATION_MINUTES
        self.validate_size(size)
        self.validate_expiration(expiration_minutes)

        plan = self.resolve_user_plan(db, user_id, user_plan_id, now=now)

        issued = self.token_service.generate_token(
            user_plan_id=plan.id,
            user_id=user_id,
            expiration_minutes=expiration_minutes,
            now=now,
        )
        data_url = self.generator.generate_data_url(issued.token, size)

        # 감사 로그
        logger.info(
            f"AUDIT: QR Code generated - UserPlan: {plan.id}, User: {user_id}, "
            f"Nonce: {issued.nonce}, ExpiresAt: {issued.expires_at.isoformat()}"
        )

        return QRCodeResult(
            qr_code_data_url=data_url,
            token=issued.token,
            nonce=issued.nonce,
            user_plan_id=plan.id,
            issued_at=issued.issued_at,
            expires_at=issued.expires_at,
        )

    def parse_qr_code(self, token: str) -> QRTokenClaims:
        """nonce 소비 없이 토큰 해석"""
        return self.token_service.parse_token(token)

# 서비스 인스턴스
qr_code_service = QRCodeService()
