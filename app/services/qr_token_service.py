"""
QR 코드 JWT 토큰 서비스

비즈니스 로직:
- 사용자 플랜 ID, 사용자 ID, 1회용 nonce, 발급/만료 시각을 담은 서명 토큰 발급
- 토큰에는 크레딧 수량을 넣지 않음 (차감량은 검증 시 클리닉이 결정)
- 발급은 상태 없음 (nonce는 검증 커밋 시점에만 기록)
- 파싱 시 서명/발급자/대상/토큰 타입/필수 클레임 검증
"""

import calendar
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError

from app.core.errors import InvalidQRError, QRExpiredError
from app.core.security import (
    QR_TOKEN_TYPE,
    decode_qr_token,
    get_unverified_qr_claims,
    sign_qr_claims,
)
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass
class IssuedQRToken:
    """발급된 QR 토큰"""
    token: str
    nonce: str
    user_plan_id: str
    user_id: str
    issued_at: datetime
    expires_at: datetime


@dataclass
class QRTokenClaims:
    """검증된 QR 토큰 클레임"""
    user_plan_id: str
    user_id: str
    nonce: str
    issued_at: datetime
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) > self.expires_at


def _to_unix(value: datetime) -> int:
    return calendar.timegm(value.utctimetuple())


def _from_unix(value) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


class QRTokenService:
    """QR 코드 토큰 발급/검증 서비스"""

    def generate_nonce(self) -> str:
        return secrets.token_urlsafe(24)

    def generate_token(
        self,
        user_plan_id: str,
        user_id: str,
        expiration_minutes: int,
        now: Optional[datetime] = None,
    ) -> IssuedQRToken:
        """QR 토큰 발급 (순수 계산, 저장 없음)"""
        issued_at = (now or utcnow()).replace(microsecond=0)
        expires_at = issued_at + timedelta(minutes=expiration_minutes)
        nonce = self.generate_nonce()

        token = sign_qr_claims({
            "userPlanId": str(user_plan_id),
            "userId": str(user_id),
            "nonce": nonce,
            "iat": _to_unix(issued_at),
            "nbf": _to_unix(issued_at),
            "exp": _to_unix(expires_at),
            "jti": str(uuid.uuid4()),
        })

        logger.info(f"Generated QR Code token for user plan {user_plan_id} with expiration {expires_at.isoformat()}")
        return IssuedQRToken(
            token=token,
            nonce=nonce,
            user_plan_id=str(user_plan_id),
            user_id=str(user_id),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def parse_token(self, token: str) -> QRTokenClaims:
        """토큰 검증 후 클레임 반환 (nonce 소비 없음)

        Raises:
            InvalidQRError: 형식 오류, 위조, 필수 클레임 누락
            QRExpiredError: 서명 라이브러리가 만료로 판단한 토큰
        """
        if not token or not token.strip():
            raise InvalidQRError("empty token")

        try:
            payload = decode_qr_token(token.strip())
        except ExpiredSignatureError:
            # 서명은 유효하지만 만료된 토큰
            expires_at = self._expiry_of(token.strip())
            logger.warning(f"QR Code token has expired at {expires_at.isoformat()}")
            raise QRExpiredError(expires_at)
        except JWTError as e:
            logger.warning(f"Invalid QR Code token: {e}")
            raise InvalidQRError("token validation failed")

        user_plan_id = payload.get("userPlanId")
        user_id = payload.get("userId")
        nonce = payload.get("nonce")

        if not user_plan_id or not user_id or not nonce or payload.get("tokenType") != QR_TOKEN_TYPE:
            logger.warning("QR Code token missing required claims")
            raise InvalidQRError("missing required claims")

        try:
            issued_at = _from_unix(payload["iat"])
            expires_at = _from_unix(payload["exp"])
        except (KeyError, TypeError, ValueError):
            raise InvalidQRError("invalid timestamps")

        logger.debug(f"Successfully parsed QR Code token for user plan {user_plan_id}")
        return QRTokenClaims(
            user_plan_id=str(user_plan_id),
            user_id=str(user_id),
            nonce=str(nonce),
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def _expiry_of(self, token: str) -> datetime:
        try:
            return _from_unix(get_unverified_qr_claims(token)["exp"])
        except (JWTError, KeyError, TypeError, ValueError):
            raise InvalidQRError("invalid expiration claim")

# 서비스 인스턴스
qr_token_service = QRTokenService()
