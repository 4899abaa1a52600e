"""
QR 코드 / 트랜잭션 오류 분류

- 검증(리딤) 단계의 비즈니스 실패는 RedemptionResult 값으로 반환
- 발급/취소 실패는 QRCodeError, InvalidPlanOperationError 예외
- 저장소 장애는 TransientStorageError (클라이언트 재시도 가능)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class QRErrorCode(str, Enum):
    INVALID_QR = "INVALID_QR"
    QR_EXPIRED = "QR_EXPIRED"
    QR_ALREADY_USED = "QR_ALREADY_USED"
    INVALID_USER_PLAN = "INVALID_USER_PLAN"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    UNAUTHORIZED_CLINIC = "UNAUTHORIZED_CLINIC"


# API 응답 상태 코드
ERROR_STATUS_CODES = {
    QRErrorCode.INVALID_QR: 400,
    QRErrorCode.QR_EXPIRED: 410,
    QRErrorCode.QR_ALREADY_USED: 409,
    QRErrorCode.INVALID_USER_PLAN: 400,
    QRErrorCode.INSUFFICIENT_CREDITS: 402,  # Payment Required
    QRErrorCode.UNAUTHORIZED_CLINIC: 403,
}


class QRCodeError(Exception):
    """QR 코드 검증 관련 예외 기본 클래스"""

    code: QRErrorCode = QRErrorCode.INVALID_QR

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class InvalidQRError(QRCodeError):
    code = QRErrorCode.INVALID_QR

    def __init__(self, reason: str):
        super().__init__(f"Invalid QR Code: {reason}")


class QRExpiredError(QRCodeError):
    code = QRErrorCode.QR_EXPIRED

    def __init__(self, expires_at: datetime):
        super().__init__(
            f"QR Code expired at {expires_at:%Y-%m-%d %H:%M:%S} UTC",
            {"expiresAt": expires_at.isoformat()}
        )
        self.expires_at = expires_at


class QRAlreadyUsedError(QRCodeError):
    code = QRErrorCode.QR_ALREADY_USED

    def __init__(self, nonce: str):
        super().__init__(
            f"QR Code with nonce {nonce} has already been used",
            {"nonce": nonce}
        )
        self.nonce = nonce


class InvalidUserPlanError(QRCodeError):
    code = QRErrorCode.INVALID_USER_PLAN

    def __init__(self, user_plan_id: Optional[str]):
        super().__init__(
            f"User plan {user_plan_id} is not found or inactive",
            {"userPlanId": user_plan_id}
        )
        self.user_plan_id = user_plan_id


class InsufficientCreditsError(QRCodeError):
    code = QRErrorCode.INSUFFICIENT_CREDITS

    def __init__(self, available: int, required: int):
        super().__init__(
            f"Insufficient credits. Available: {available}, Required: {required}",
            {"availableCredits": available, "requiredCredits": required}
        )
        self.available = available
        self.required = required


class UnauthorizedClinicError(QRCodeError):
    code = QRErrorCode.UNAUTHORIZED_CLINIC

    def __init__(self, clinic_id: str):
        super().__init__(
            f"Clinic {clinic_id} is not authorized for this operation",
            {"clinicId": clinic_id}
        )
        self.clinic_id = clinic_id


class InvalidPlanOperationError(Exception):
    """취소 불가 상태 등 잘못된 플랜/트랜잭션 조작"""

    code = "INVALID_PLAN_OPERATION"

    def __init__(self, operation: str, message: str, target_id: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.message = message
        self.target_id = target_id


class TransactionNotFoundError(Exception):
    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction {transaction_id} not found")
        self.transaction_id = transaction_id


class TransientStorageError(Exception):
    """원자적 커밋 실패 - 부분 상태 없음, 요청 전체 재시도 가능"""


@dataclass
class RedemptionError:
    code: QRErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> int:
        return ERROR_STATUS_CODES[self.code]

    @classmethod
    def from_exception(cls, exc: QRCodeError) -> "RedemptionError":
        return cls(code=exc.code, message=exc.message, details=dict(exc.details))


@dataclass
class RedemptionResult:
    """Ok(value) | Err(RedemptionError)"""
    ok: bool
    value: Any = None
    error: Optional[RedemptionError] = None

    @classmethod
    def success(cls, value: Any) -> "RedemptionResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: RedemptionError) -> "RedemptionResult":
        return cls(ok=False, error=error)
