from sqlalchemy import (
    Column, String, Boolean, DateTime, Float, Integer, Text, ForeignKey, JSON,
    Numeric, CheckConstraint, Index
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.core.database import Base
from app.utils.clock import utcnow
from enum import Enum
import uuid

def generate_uuid():
    return str(uuid.uuid4())


class UserRole(str, Enum):
    PATIENT = "patient"
    CLINIC = "clinic"
    ADMINISTRATOR = "administrator"


class ClinicType(str, Enum):
    REGULAR = "regular"
    ORIGIN = "origin"
    PARTNER = "partner"
    ADMINISTRATIVE = "administrative"


class TransactionStatus(str, Enum):
    PENDING = "Pending"
    VALIDATED = "Validated"
    CANCELLED = "Cancelled"
    EXPIRED = "Expired"


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, default=generate_uuid)
    email = Column(String, unique=True, nullable=False)
    first_name = Column(String, nullable=False)
    last_name = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=True)
    role = Column(String, nullable=False, default=UserRole.PATIENT.value)  # patient, clinic, administrator
    clinic_id = Column(String, ForeignKey("clinics.id"), nullable=True)  # 클리닉 직원인 경우 소속 클리닉
    is_active = Column(Boolean, nullable=False, default=True)
    low_balance_threshold = Column(Integer, nullable=True)  # 없으면 설정값 사용
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # 관계
    clinic = relationship("Clinic", back_populates="staff")
    user_plans = relationship("UserPlan", back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Plan(Base):
    __tablename__ = "plans"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    credits = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    validity_days = Column(Integer, nullable=False, default=365)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    # 관계
    user_plans = relationship("UserPlan", back_populates="plan")


class Clinic(Base):
    __tablename__ = "clinics"

    id = Column(String, primary_key=True, default=generate_uuid)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default=ClinicType.REGULAR.value)
    address = Column(String, nullable=False, default="")
    phone_number = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)
    created_at = Column(DateTime, server_default=func.now())

    # 관계
    staff = relationship("User", back_populates="clinic")
    transactions = relationship("Transaction", back_populates="clinic")


class UserPlan(Base):
    __tablename__ = "user_plans"
    __table_args__ = (
        CheckConstraint(
            "credits_remaining >= 0 AND credits_remaining <= credits",
            name="ck_user_plans_credits_remaining_range"
        ),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    plan_id = Column(String, ForeignKey("plans.id"), nullable=False)
    credits = Column(Integer, nullable=False)
    credits_remaining = Column(Integer, nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False, default=0)
    expiration_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # 관계
    user = relationship("User", back_populates="user_plans")
    plan = relationship("Plan", back_populates="user_plans")
    transactions = relationship("Transaction", back_populates="user_plan")

    @property
    def credits_used(self) -> int:
        return self.credits - self.credits_remaining

    def is_expired(self, now=None) -> bool:
        return (now or utcnow()) > self.expiration_date


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_clinic_created", "clinic_id", "created_at"),
        Index("ix_transactions_user_plan_created", "user_plan_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=generate_uuid)
    code = Column(String, unique=True, nullable=False)
    user_plan_id = Column(String, ForeignKey("user_plans.id"), nullable=False)
    clinic_id = Column(String, ForeignKey("clinics.id"), nullable=False)
    status = Column(String, nullable=False, default=TransactionStatus.PENDING.value)
    credits_used = Column(Integer, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    service_type = Column(String, nullable=True)
    service_description = Column(String, nullable=False, default="")

    # 검증 정보
    validation_date = Column(DateTime, nullable=True)
    validated_by = Column(String, nullable=True)
    validation_notes = Column(Text, nullable=True)
    qr_token = Column(Text, nullable=True)
    qr_nonce = Column(String, nullable=True, index=True)

    # 요청 메타데이터
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    latitude = Column(Float, nullable=True)
    longitude = Column(Float, nullable=True)

    # 취소 정보
    cancellation_reason = Column(Text, nullable=True)
    cancellation_date = Column(DateTime, nullable=True)
    cancelled_by = Column(String, nullable=True)
    credits_refunded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    # 관계
    user_plan = relationship("UserPlan", back_populates="transactions")
    clinic = relationship("Clinic", back_populates="transactions")


class UsedNonce(Base):
    """사용 완료된 QR nonce (PK 제약으로 재사용 차단)"""
    __tablename__ = "used_nonces"

    nonce = Column(String, primary_key=True)
    user_plan_id = Column(String, ForeignKey("user_plans.id"), nullable=False)
    clinic_id = Column(String, ForeignKey("clinics.id"), nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    used_at = Column(DateTime, nullable=False, default=utcnow)


class NotificationEvent(Base):
    """알림 발송기가 소비하는 이벤트 (outbox)"""
    __tablename__ = "notification_events"

    id = Column(String, primary_key=True, default=generate_uuid)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    user_plan_id = Column(String, ForeignKey("user_plans.id"), nullable=True)
    type = Column(String, nullable=False)  # LowBalance_{n}
    payload = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
