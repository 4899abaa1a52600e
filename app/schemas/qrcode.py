"""
QR 코드 관련 Pydantic 스키마

- QR 코드 발급 요청/응답
- 클리닉 QR 코드 검증 요청/응답
- 토큰 파싱 응답
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
from datetime import datetime
from decimal import Decimal


class QRCodeGenerateRequest(BaseModel):
    userPlanId: Optional[str] = Field(None, description="사용자 플랜 ID (없으면 가장 먼저 만료되는 플랜)")
    size: Optional[int] = Field(None, description="QR 코드 이미지 크기 (px, 없으면 기본값)")
    expirationMinutes: Optional[int] = Field(None, description="만료 시간 (분, 없으면 기본값)")


class QRCodeGenerateResponse(BaseModel):
    success: bool = True
    qrCode: str = Field(..., description="PNG data URL")
    token: str
    nonce: str
    userPlanId: str
    issuedAt: datetime
    expiresAt: datetime


class QRCodeValidateRequest(BaseModel):
    qrToken: str = Field(..., min_length=1, max_length=2000, description="QR 코드에서 읽은 토큰")
    clinicId: str = Field(..., description="검증하는 클리닉 ID")
    serviceType: Optional[str] = Field(None, max_length=200)
    serviceDescription: Optional[str] = Field(None, max_length=500)
    amount: Optional[Decimal] = Field(None, ge=Decimal("0.01"), le=Decimal("1000.00"))
    creditsRequired: int = Field(1, ge=1, description="차감할 크레딧 수")
    latitude: Optional[float] = Field(None, ge=-90, le=90)
    longitude: Optional[float] = Field(None, ge=-180, le=180)


class PatientInfo(BaseModel):
    userId: str
    name: str
    email: str
    phone: Optional[str] = None


class UserPlanInfo(BaseModel):
    id: str
    planName: str
    creditsRemaining: int
    creditsUsed: int
    isActive: bool
    expiresAt: datetime


class TransactionInfo(BaseModel):
    id: str
    code: str
    creditsUsed: int
    amount: Decimal
    serviceType: Optional[str] = None
    serviceDescription: Optional[str] = None
    createdAt: datetime


class ValidationErrorInfo(BaseModel):
    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class QRCodeValidateResponse(BaseModel):
    success: bool
    transactionId: Optional[str] = None
    transactionCode: Optional[str] = None
    patient: Optional[PatientInfo] = None
    userPlan: Optional[UserPlanInfo] = None
    transaction: Optional[TransactionInfo] = None
    validatedAt: datetime
    error: Optional[ValidationErrorInfo] = None


class QRCodeParseRequest(BaseModel):
    qrToken: str = Field(..., min_length=1, max_length=2000)


class QRTokenClaimsResponse(BaseModel):
    userPlanId: str
    userId: str
    nonce: str
    issuedAt: datetime
    expiresAt: datetime
    isExpired: bool
