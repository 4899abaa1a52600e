"""
트랜잭션 API 엔드포인트

비즈니스 로직:
- 트랜잭션 단건 조회 (ID, 코드)
- 클리닉/사용자 플랜/상태/기간별 목록 조회
- 트랜잭션 취소 및 크레딧 환불
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import logging

from app.core.auth import get_current_user, require
from app.core.database import get_db
from app.core.errors import InvalidPlanOperationError, TransactionNotFoundError, TransientStorageError
from app.core.permissions import Action
from app.models.database import Transaction, User, UserRole
from app.schemas.transactions import (
    TransactionCancelRequest,
    TransactionListResponse,
    TransactionResponse,
)
from app.services.transaction_service import transaction_service

logger = logging.getLogger(__name__)

router = APIRouter()


def to_response(tx: Transaction) -> TransactionResponse:
    return TransactionResponse(
        id=tx.id,
        code=tx.code,
        status=tx.status,
        userPlanId=tx.user_plan_id,
        clinicId=tx.clinic_id,
        clinicName=tx.clinic.name if tx.clinic else None,
        creditsUsed=tx.credits_used,
        amount=tx.amount,
        serviceType=tx.service_type,
        serviceDescription=tx.service_description,
        validationDate=tx.validation_date,
        validatedBy=tx.validated_by,
        validationNotes=tx.validation_notes,
        ipAddress=tx.ip_address,
        latitude=tx.latitude,
        longitude=tx.longitude,
        cancellationReason=tx.cancellation_reason,
        cancellationDate=tx.cancellation_date,
        cancelledBy=tx.cancelled_by,
        creditsRefunded=tx.credits_refunded,
        createdAt=tx.created_at,
        updatedAt=tx.updated_at,
    )


@router.get("/", response_model=TransactionListResponse)
def list_transactions(
    clinic_id: Optional[str] = None,
    user_plan_id: Optional[str] = None,
    status_filter: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    include_cancelled: bool = True,
    limit: int = 50,
    offset: int = 0,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """트랜잭션 목록 조회 (최신순)"""
    # 클리닉 직원은 자기 클리닉만 조회
    if current_user.role == UserRole.CLINIC.value and clinic_id is None:
        clinic_id = current_user.clinic_id
    require(current_user, Action.LIST_TRANSACTIONS, clinic_id)

    limit = max(1, min(limit, 200))
    offset = max(0, offset)
    items, total = transaction_service.list_transactions(
        db,
        clinic_id=clinic_id,
        user_plan_id=user_plan_id,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        include_cancelled=include_cancelled,
        offset=offset,
        limit=limit,
    )

    return TransactionListResponse(
        items=[to_response(tx) for tx in items],
        total_count=total,
        has_more=offset + len(items) < total,
    )


@router.get("/code/{code}", response_model=TransactionResponse)
def get_transaction_by_code(
    code: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """코드로 트랜잭션 조회"""
    try:
        tx = transaction_service.get_by_code(db, code)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="트랜잭션을 찾을 수 없습니다.")

    require(current_user, Action.VIEW_TRANSACTION, tx)
    return to_response(tx)


@router.get("/{transaction_id}", response_model=TransactionResponse)
def get_transaction(
    transaction_id: str,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """ID로 트랜잭션 조회"""
    try:
        tx = transaction_service.get_transaction(db, transaction_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="트랜잭션을 찾을 수 없습니다.")

    require(current_user, Action.VIEW_TRANSACTION, tx)
    return to_response(tx)


@router.post("/{transaction_id}/cancel", response_model=TransactionResponse)
def cancel_transaction(
    transaction_id: str,
    body: TransactionCancelRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """트랜잭션 취소 (기본: 크레딧 환불)"""
    try:
        tx = transaction_service.get_transaction(db, transaction_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="트랜잭션을 찾을 수 없습니다.")

    require(current_user, Action.CANCEL_TRANSACTION, tx)

    try:
        tx = transaction_service.cancel_transaction(
            db,
            transaction_id,
            reason=body.cancellationReason,
            cancelled_by=current_user.email,
            refund_credits_requested=body.refundCredits,
            notes=body.notes,
        )
    except InvalidPlanOperationError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"error": e.code, "message": e.message, "operation": e.operation},
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except TransientStorageError:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "TRANSIENT_FAILURE", "message": "잠시 후 다시 시도해주세요.", "retryable": True},
        )

    return to_response(tx)
