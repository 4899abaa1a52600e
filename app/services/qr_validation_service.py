"""
QR 코드 검증 및 크레딧 차감 서비스

비즈니스 로직 (순차 단락 평가, 처음 실패한 검사가 결과를 결정):
1. 서명/형식 검증          -> INVALID_QR
2. 만료 검사               -> QR_EXPIRED
3. nonce 재사용 검사       -> QR_ALREADY_USED
4. 사용자 플랜 재조회/검사  -> INVALID_USER_PLAN
5. 잔여 크레딧 검사        -> INSUFFICIENT_CREDITS (부분 차감 없음)
6. 클리닉 권한 검사        -> UNAUTHORIZED_CLINIC
7. 커밋: nonce 기록 + 크레딧 차감 + 트랜잭션 생성 + 잔액 알림을 하나의 DB 트랜잭션으로

- nonce는 마지막 관문(커밋)에서만 기록하므로 앞 단계에서 거부된 토큰은 소모되지 않음
- 동시 검증 시 nonce PK 제약과 조건부 UPDATE가 단 한 번의 성공을 보장
- 비즈니스 실패는 RedemptionResult로 반환, 저장소 장애만 TransientStorageError로 전파
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.credits import debit_credits
from app.core.errors import (
    InsufficientCreditsError,
    InvalidUserPlanError,
    QRAlreadyUsedError,
    QRCodeError,
    QRExpiredError,
    RedemptionError,
    RedemptionResult,
    TransientStorageError,
    UnauthorizedClinicError,
)
from app.crud import nonce as nonce_crud
from app.crud.clinic import clinic as clinic_crud
from app.crud.transaction import generate_transaction_code
from app.crud.user_plan import user_plan as user_plan_crud
from app.models.database import Transaction, TransactionStatus, UserPlan
from app.schemas.qrcode import (
    PatientInfo,
    QRCodeValidateRequest,
    QRCodeValidateResponse,
    TransactionInfo,
    UserPlanInfo,
)
from app.services.notification_service import emit_low_balance_if_needed
from app.services.qr_token_service import QRTokenClaims, QRTokenService, qr_token_service
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RequestMetadata:
    """검증 요청 메타데이터"""
    validated_by: str = "System"
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class QRCodeValidationService:
    """클리닉의 QR 코드 검증(리딤) 서비스"""

    def __init__(self, token_service: QRTokenService = qr_token_service):
        self.token_service = token_service

    def validate_qr_code(
        self,
        db: Session,
        request: QRCodeValidateRequest,
        metadata: Optional[RequestMetadata] = None,
        now: Optional[datetime] = None,
    ) -> RedemptionResult:
        """QR 코드 검증 후 크레딧 차감

        Returns:
            RedemptionResult: 성공 시 QRCodeValidateResponse, 실패 시 RedemptionError

        Raises:
            TransientStorageError: 원자적 커밋 실패 (부분 상태 없음, 재시도 가능)
        """
        metadata = metadata or RequestMetadata()
        now = now or utcnow()
        credits_required = request.creditsRequired

        logger.info(f"Starting QR Code validation for clinic {request.clinicId}")

        try:
            claims = self.token_service.parse_token(request.qrToken)

            if claims.is_expired(now):
                raise QRExpiredError(claims.expires_at)

            if nonce_crud.is_nonce_used(db, claims.nonce):
                raise QRAlreadyUsedError(claims.nonce)

            user_plan = user_plan_crud.get_fresh(db, claims.user_plan_id)
            self._check_user_plan(user_plan, claims, now)

            if user_plan.credits_remaining < credits_required:
                raise InsufficientCreditsError(user_plan.credits_remaining, credits_required)

            if not clinic_crud.is_authorized(db, request.clinicId):
                raise UnauthorizedClinicError(request.clinicId)

            transaction = self._commit(db, claims, user_plan, request, metadata, now)

        except QRCodeError as e:
            db.rollback()
            logger.warning(f"QR Code validation failed: {e.code.value} - {e.message}")
            return RedemptionResult.failure(RedemptionError.from_exception(e))

        logger.info(
            f"QR Code validation successful - Transaction: {transaction.code}, "
            f"UserPlan: {user_plan.id}, Clinic: {request.clinicId}"
        )
        return RedemptionResult.success(self._build_response(user_plan, transaction, now))

    def _check_user_plan(self, user_plan: Optional[UserPlan], claims: QRTokenClaims, now: datetime) -> None:
        if (
            user_plan is None
            or not user_plan.is_active
            or user_plan.is_expired(now)
            or user_plan.user_id != claims.user_id
        ):
            raise InvalidUserPlanError(claims.user_plan_id)

    def _commit(
        self,
        db: Session,
        claims: QRTokenClaims,
        user_plan: UserPlan,
        request: QRCodeValidateRequest,
        metadata: RequestMetadata,
        now: datetime,
    ) -> Transaction:
        """nonce 기록, 크레딧 차감, 트랜잭션 생성을 하나의 단위로 커밋"""
        credits_required = request.creditsRequired
        try:
            nonce_crud.mark_nonce_used(
                db,
                nonce=claims.nonce,
                user_plan_id=user_plan.id,
                clinic_id=request.clinicId,
                expires_at=claims.expires_at,
            )

            remaining = debit_credits(db, user_plan.id, credits_required)
            if remaining is None:
                # 동시 차감으로 잔액이 바뀐 경우
                db.rollback()
                current = user_plan_crud.get_fresh(db, user_plan.id)
                if current is None or not current.is_active:
                    raise InvalidUserPlanError(user_plan.id)
                raise InsufficientCreditsError(current.credits_remaining, credits_required)

            transaction = Transaction(
                code=generate_transaction_code(now),
                user_plan_id=user_plan.id,
                clinic_id=request.clinicId,
                status=TransactionStatus.VALIDATED.value,
                credits_used=credits_required,
                amount=request.amount if request.amount is not None else Decimal(str(settings.DEFAULT_TRANSACTION_AMOUNT)),
                service_type=request.serviceType,
                service_description=request.serviceDescription or request.serviceType or "QR Code Service",
                validation_date=now,
                validated_by=metadata.validated_by,
                qr_token=request.qrToken,
                qr_nonce=claims.nonce,
                ip_address=metadata.ip_address,
                user_agent=metadata.user_agent,
                latitude=request.latitude,
                longitude=request.longitude,
                created_at=now,
                updated_at=now,
            )
            db.add(transaction)

            emit_low_balance_if_needed(db, user_plan, remaining)

            db.commit()
        except nonce_crud.NonceAlreadyUsed:
            db.rollback()
            raise QRAlreadyUsedError(claims.nonce)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Redemption commit failed - UserPlan: {user_plan.id}, Clinic: {request.clinicId}, "
                f"Nonce: {claims.nonce}: {e}"
            )
            raise TransientStorageError("Failed to commit QR Code redemption") from e

        db.refresh(user_plan)
        return transaction

    def _build_response(self, user_plan: UserPlan, transaction: Transaction, now: datetime) -> QRCodeValidateResponse:
        user = user_plan.user
        return QRCodeValidateResponse(
            success=True,
            transactionId=transaction.id,
            transactionCode=transaction.code,
            patient=PatientInfo(
                userId=user.id,
                name=user.full_name,
                email=user.email,
                phone=user.phone_number,
            ),
            userPlan=UserPlanInfo(
                id=user_plan.id,
                planName=user_plan.plan.name if user_plan.plan else "",
                creditsRemaining=user_plan.credits_remaining,
                creditsUsed=user_plan.credits_used,
                isActive=user_plan.is_active,
                expiresAt=user_plan.expiration_date,
            ),
            transaction=TransactionInfo(
                id=transaction.id,
                code=transaction.code,
                creditsUsed=transaction.credits_used,
                amount=transaction.amount,
                serviceType=transaction.service_type,
                serviceDescription=transaction.service_description,
                createdAt=transaction.created_at,
            ),
            validatedAt=now,
        )

# 서비스 인스턴스
qr_validation_service = QRCodeValidationService()
