from typing import List, Optional, Tuple
from datetime import datetime
from sqlalchemy import desc, update
from sqlalchemy.orm import Session, joinedload
from app.crud.base import CRUDBase
from app.models.database import Transaction, TransactionStatus, UserPlan
from app.utils.clock import utcnow
import random
import logging

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (TransactionStatus.VALIDATED.value,)

def generate_transaction_code(now: Optional[datetime] = None) -> str:
    """트랜잭션 코드 생성: TXN{yyyyMMddHHmmss}{4자리 난수}"""
    timestamp = (now or utcnow()).strftime("%Y%m%d%H%M%S")
    return f"TXN{timestamp}{random.randint(1000, 9999)}"


class CRUDTransaction(CRUDBase[Transaction]):
    def get_with_relations(self, db: Session, transaction_id: str) -> Optional[Transaction]:
        return (
            db.query(Transaction)
            .options(
                joinedload(Transaction.user_plan).joinedload(UserPlan.user),
                joinedload(Transaction.user_plan).joinedload(UserPlan.plan),
                joinedload(Transaction.clinic),
            )
            .filter(Transaction.id == transaction_id)
            .first()
        )

    def get_by_code(self, db: Session, code: str) -> Optional[Transaction]:
        return (
            db.query(Transaction)
            .options(joinedload(Transaction.user_plan), joinedload(Transaction.clinic))
            .filter(Transaction.code == code)
            .first()
        )

    def list_filtered(
        self,
        db: Session,
        *,
        clinic_id: Optional[str] = None,
        user_plan_id: Optional[str] = None,
        status: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        include_cancelled: bool = True,
        offset: int = 0,
        limit: int = 50,
    ) -> Tuple[List[Transaction], int]:
        """조건별 트랜잭션 목록 (최신순) + 전체 건수"""
        query = db.query(Transaction)

        if clinic_id:
            query = query.filter(Transaction.clinic_id == clinic_id)
        if user_plan_id:
            query = query.filter(Transaction.user_plan_id == user_plan_id)
        if status:
            query = query.filter(Transaction.status == status)
        elif not include_cancelled:
            query = query.filter(Transaction.status != TransactionStatus.CANCELLED.value)
        if start_date:
            query = query.filter(Transaction.created_at >= start_date)
        if end_date:
            query = query.filter(Transaction.created_at <= end_date)

        total = query.count()
        items = (
            query.options(joinedload(Transaction.clinic))
            .order_by(desc(Transaction.created_at))
            .offset(offset)
            .limit(limit)
            .all()
        )
        return items, total

    def can_cancel(self, tx: Transaction) -> bool:
        return tx.status in CANCELLABLE_STATUSES

    def claim_cancellation(self, db: Session, transaction_id: str, now: datetime) -> bool:
        """취소 가능 상태일 때만 Cancelled로 전이 (조건부 UPDATE)"""
        result = db.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.status.in_(CANCELLABLE_STATUSES),
            )
            .values(status=TransactionStatus.CANCELLED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

transaction = CRUDTransaction(Transaction)
