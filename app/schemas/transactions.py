from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime
from decimal import Decimal


class TransactionCancelRequest(BaseModel):
    cancellationReason: str = Field(..., min_length=1, max_length=500, description="취소 사유 (필수)")
    notes: Optional[str] = Field(None, max_length=1000)
    refundCredits: bool = Field(True, description="플랜에 크레딧 환불 여부")


class TransactionResponse(BaseModel):
    id: str
    code: str
    status: str
    userPlanId: str
    clinicId: str
    clinicName: Optional[str] = None
    creditsUsed: int
    amount: Decimal
    serviceType: Optional[str] = None
    serviceDescription: Optional[str] = None
    validationDate: Optional[datetime] = None
    validatedBy: Optional[str] = None
    validationNotes: Optional[str] = None
    ipAddress: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    cancellationReason: Optional[str] = None
    cancellationDate: Optional[datetime] = None
    cancelledBy: Optional[str] = None
    creditsRefunded: bool = False
    createdAt: datetime
    updatedAt: datetime


class TransactionListResponse(BaseModel):
    items: List[TransactionResponse]
    total_count: int
    has_more: bool
