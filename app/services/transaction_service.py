"""
트랜잭션 조회/취소 서비스

비즈니스 로직:
- Validated 상태만 취소 가능 (Pending은 차감 전이므로 환불 대상 아님)
- 환불 요청 시 사용 크레딧을 플랜에 되돌리되 원래 지급량(credits)을 넘지 않음
- 환불은 트랜잭션당 한 번만 (credits_refunded 플래그)
- 상태 변경과 환불은 하나의 DB 트랜잭션으로 커밋
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.credits import refund_credits
from app.core.errors import InvalidPlanOperationError, TransactionNotFoundError, TransientStorageError
from app.crud.transaction import transaction as transaction_crud
from app.models.database import Transaction, TransactionStatus
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class TransactionService:
    """트랜잭션 원장 서비스"""

    def get_transaction(self, db: Session, transaction_id: str) -> Transaction:
        tx = transaction_crud.get_with_relations(db, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    def get_by_code(self, db: Session, code: str) -> Transaction:
        tx = transaction_crud.get_by_code(db, code)
        if tx is None:
            raise TransactionNotFoundError(code)
        return tx

    def list_transactions(self, db: Session, **filters) -> Tuple[List[Transaction], int]:
        return transaction_crud.list_filtered(db, **filters)

    def cancel_transaction(
        self,
        db: Session,
        transaction_id: str,
        reason: str,
        cancelled_by: str,
        refund_credits_requested: bool = True,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Transaction:
        """트랜잭션 취소 (선택적으로 크레딧 환불)

        Raises:
            ValueError: 취소 사유 누락
            TransactionNotFoundError: 트랜잭션 없음
            InvalidPlanOperationError: 취소 불가능한 상태
            TransientStorageError: 커밋 실패
        """
        if not reason or not reason.strip():
            raise ValueError("Cancellation reason is required")

        now = now or utcnow()
        logger.info(
            f"Cancelling transaction {transaction_id} by user {cancelled_by} with reason: {reason}"
        )

        tx = self.get_transaction(db, transaction_id)
        if not transaction_crud.can_cancel(tx):
            raise InvalidPlanOperationError(
                "cancel",
                f"Transaction cannot be cancelled in its current status ({tx.status})",
                target_id=tx.id,
            )

        try:
            # 동시 취소 요청 중 하나만 상태 전이 성공
            if not transaction_crud.claim_cancellation(db, tx.id, now):
                raise InvalidPlanOperationError(
                    "cancel", "Transaction was cancelled concurrently", target_id=tx.id
                )

            tx.status = TransactionStatus.CANCELLED.value
            tx.cancellation_reason = reason.strip()
            tx.cancellation_date = now
            tx.cancelled_by = cancelled_by
            tx.updated_at = now

            note_lines = [tx.validation_notes] if tx.validation_notes else []
            note_lines.append(f"Cancelled by: {cancelled_by}")
            if notes:
                note_lines.append(f"Notes: {notes}")
            tx.validation_notes = "\n".join(note_lines)

            if refund_credits_requested and not tx.credits_refunded and tx.credits_used > 0:
                remaining = refund_credits(db, tx.user_plan_id, tx.credits_used)
                if remaining is None:
                    raise InvalidPlanOperationError(
                        "refund", f"User plan {tx.user_plan_id} not found", target_id=tx.user_plan_id
                    )
                tx.credits_refunded = True

            db.commit()
        except InvalidPlanOperationError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Error cancelling transaction {transaction_id}: {e}")
            raise TransientStorageError("Failed to cancel transaction") from e

        # 환불된 잔액 반영
        if tx.user_plan is not None:
            db.refresh(tx.user_plan)

        logger.info(
            f"Transaction {transaction_id} cancelled successfully, credits refunded: {tx.credits_refunded}"
        )
        return tx

# 서비스 인스턴스
transaction_service = TransactionService()
