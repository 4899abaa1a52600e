"""
QR 코드 API 엔드포인트

비즈니스 로직:
- 환자: 자신의 플랜으로 1회용 QR 코드 발급
- 클리닉: QR 코드 검증 후 크레딧 차감 및 트랜잭션 생성
- 클리닉: nonce 소비 없이 토큰 내용 확인
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
import logging

from app.core.auth import get_current_user, require
from app.core.database import get_db
from app.core.errors import ERROR_STATUS_CODES, QRCodeError, TransientStorageError
from app.core.permissions import Action
from app.crud.user_plan import user_plan as user_plan_crud
from app.models.database import User
from app.schemas.qrcode import (
    QRCodeGenerateRequest,
    QRCodeGenerateResponse,
    QRCodeParseRequest,
    QRCodeValidateRequest,
    QRCodeValidateResponse,
    QRTokenClaimsResponse,
    ValidationErrorInfo,
)
from app.services.qr_code_service import qr_code_service
from app.services.qr_validation_service import RequestMetadata, qr_validation_service
from app.utils.clock import utcnow
from app.utils.geo_utils import get_client_ip, get_user_agent

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_detail(e: QRCodeError) -> dict:
    return {"error": e.code.value, "message": e.message, **e.details}


@router.post("/generate", response_model=QRCodeGenerateResponse)
def generate_qr_code(
    body: QRCodeGenerateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """현재 사용자의 플랜으로 QR 코드 발급"""
    target = user_plan_crud.get(db, body.userPlanId) if body.userPlanId else None
    require(current_user, Action.GENERATE_QR, target)

    try:
        result = qr_code_service.generate_qr_code(
            db,
            user_id=current_user.id,
            user_plan_id=body.userPlanId,
            size=body.size,
            expiration_minutes=body.expirationMinutes,
        )
    except QRCodeError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_error_detail(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    logger.info(f"QR Code generated successfully for user {current_user.id} with nonce {result.nonce}")
    return QRCodeGenerateResponse(
        success=True,
        qrCode=result.qr_code_data_url,
        token=result.token,
        nonce=result.nonce,
        userPlanId=result.user_plan_id,
        issuedAt=result.issued_at,
        expiresAt=result.expires_at,
    )


@router.post("/validate", response_model=QRCodeValidateResponse)
def validate_qr_code(
    body: QRCodeValidateRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """클리닉의 QR 코드 검증 및 크레딧 차감"""
    require(current_user, Action.VALIDATE_QR, body.clinicId)

    metadata = RequestMetadata(
        validated_by=current_user.email,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )

    try:
        result = qr_validation_service.validate_qr_code(db, body, metadata)
    except TransientStorageError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "error": "TRANSIENT_FAILURE",
                "message": "일시적인 오류로 검증을 완료하지 못했습니다. 다시 시도해주세요.",
                "retryable": True,
            },
        )

    if result.ok:
        return result.value

    error = result.error
    raise HTTPException(
        status_code=error.status_code,
        detail=QRCodeValidateResponse(
            success=False,
            validatedAt=utcnow(),
            error=ValidationErrorInfo(code=error.code.value, message=error.message, details=error.details),
        ).model_dump(mode="json"),
    )


@router.post("/parse", response_model=QRTokenClaimsResponse)
def parse_qr_code(
    body: QRCodeParseRequest,
    current_user: User = Depends(get_current_user),
):
    """nonce 소비 없이 QR 토큰 내용 확인"""
    require(current_user, Action.VALIDATE_QR, current_user.clinic_id)

    try:
        claims = qr_code_service.parse_qr_code(body.qrToken)
    except QRCodeError as e:
        raise HTTPException(status_code=ERROR_STATUS_CODES[e.code], detail=_error_detail(e))

    return QRTokenClaimsResponse(
        userPlanId=claims.user_plan_id,
        userId=claims.user_id,
        nonce=claims.nonce,
        issuedAt=claims.issued_at,
        expiresAt=claims.expires_at,
        isExpired=claims.is_expired(),
    )
