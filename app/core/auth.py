from fastapi import Depends, HTTPException, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError
from app.core.database import get_db
from app.core.permissions import Action, can
from app.models.database import User
from app.core.security import verify_token
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer()

def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """현재 인증된 사용자 정보 조회"""
    # JWT 토큰 검증
    payload = verify_token(credentials.credentials)
    user_id = payload.get("sub") if payload else None

    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="유효하지 않은 토큰입니다."
        )

    # 데이터베이스에서 사용자 조회 (안전한 에러 처리)
    try:
        user = db.query(User).filter(User.id == user_id).first()
    except SQLAlchemyError as e:
        logger.error(f"Database error during user authentication: {e}")
        db.rollback()
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="인증 처리 중 오류가 발생했습니다."
        )

    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="사용자를 찾을 수 없습니다."
        )

    request.state.user_id = user.id
    return user

def require(actor: User, action: Action, resource=None) -> None:
    """권한 확인 후 거부 시 403"""
    if not can(actor, action, resource):
        logger.warning(f"Permission denied: user={actor.id} role={actor.role} action={action.value}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="이 작업을 수행할 권한이 없습니다."
        )
