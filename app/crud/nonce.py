from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from app.models.database import UsedNonce
from app.utils.clock import utcnow
import logging

logger = logging.getLogger(__name__)


class NonceAlreadyUsed(Exception):
    def __init__(self, nonce: str):
        super().__init__(nonce)
        self.nonce = nonce


def is_nonce_used(db: Session, nonce: str) -> bool:
    """이미 커밋된 nonce인지 확인"""
    return db.query(UsedNonce.nonce).filter(UsedNonce.nonce == nonce).first() is not None


def mark_nonce_used(
    db: Session,
    nonce: str,
    user_plan_id: str,
    clinic_id: str,
    expires_at: datetime,
) -> UsedNonce:
    """nonce 사용 기록 (진행 중인 트랜잭션 안에서 flush)

    PK 충돌 시 NonceAlreadyUsed. 세션 롤백은 호출자 책임.
    """
    entry = UsedNonce(
        nonce=nonce,
        user_plan_id=user_plan_id,
        clinic_id=clinic_id,
        expires_at=expires_at,
        used_at=utcnow(),
    )
    db.add(entry)
    try:
        db.flush()
    except IntegrityError as e:
        logger.warning(f"Nonce {nonce} rejected by uniqueness constraint: {e.orig}")
        raise NonceAlreadyUsed(nonce) from e
    return entry


def prune_expired_nonces(
    db: Session, now: Optional[datetime] = None, retention_minutes: int = 0
) -> int:
    """토큰 만료 이후의 nonce 삭제 (만료 토큰은 어차피 거부됨)"""
    cutoff = (now or utcnow()) - timedelta(minutes=retention_minutes)
    deleted = (
        db.query(UsedNonce)
        .filter(UsedNonce.expires_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.info(f"Pruned {deleted} expired nonces (cutoff={cutoff.isoformat()})")
    return deleted
