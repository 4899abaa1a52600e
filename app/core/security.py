from datetime import timedelta
from typing import Any, Dict, Optional, Union
from jose import jwt, JWTError
from app.core.config import settings
from app.utils.clock import utcnow
import logging

logger = logging.getLogger(__name__)

QR_TOKEN_TYPE = "qr_code"

def create_access_token(
    subject: Union[str, Any], expires_delta: timedelta = None
) -> str:
    """JWT 액세스 토큰 생성 (외부 인증 시스템과 같은 형식)"""
    if expires_delta:
        expire = utcnow() + expires_delta
    else:
        expire = utcnow() + timedelta(minutes=30)

    to_encode = {"exp": expire, "sub": str(subject), "type": "access"}
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt

def verify_token(token: str, token_type: str = "access") -> Optional[Dict[str, Any]]:
    """JWT 액세스 토큰 검증 및 페이로드 반환"""
    try:
        payload = jwt.decode(
            token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM]
        )
        user_id: str = payload.get("sub")
        token_type_in_token: str = payload.get("type")

        if user_id is None or token_type_in_token != token_type:
            return None

        return payload
    except JWTError as e:
        logger.error(f"JWT validation error: {e}")
        return None

def _signing_key() -> str:
    if not settings.SECRET_KEY:
        raise RuntimeError("SECRET_KEY configuration is missing")
    return settings.SECRET_KEY

def sign_qr_claims(claims: Dict[str, Any]) -> str:
    """QR 토큰 클레임 서명 (iss/aud 포함)"""
    to_encode = dict(claims)
    to_encode["tokenType"] = QR_TOKEN_TYPE
    to_encode["iss"] = settings.JWT_ISSUER
    to_encode["aud"] = settings.JWT_AUDIENCE
    return jwt.encode(to_encode, _signing_key(), algorithm=settings.ALGORITHM)

def decode_qr_token(token: str) -> Dict[str, Any]:
    """QR 토큰 서명/발급자/대상 검증 후 클레임 반환

    Raises:
        jose.ExpiredSignatureError: 만료된 토큰
        jose.JWTError: 위조/손상된 토큰
    """
    return jwt.decode(
        token,
        _signing_key(),
        algorithms=[settings.ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        issuer=settings.JWT_ISSUER,
    )

def get_unverified_qr_claims(token: str) -> Dict[str, Any]:
    """서명 검증 후 만료된 토큰의 클레임 조회용"""
    return jwt.get_unverified_claims(token)
