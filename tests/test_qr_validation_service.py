from datetime import timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest
from jose import jwt
from sqlalchemy.exc import OperationalError

from app.core.database import SessionLocal
from app.core.errors import QRErrorCode, TransientStorageError
from app.crud import nonce as nonce_crud
from app.crud import notification as notification_crud
from app.models.database import NotificationEvent, Transaction, TransactionStatus, UsedNonce
from app.schemas.qrcode import QRCodeValidateRequest
from app.services.qr_validation_service import RequestMetadata, qr_validation_service
from app.utils.clock import utcnow


def _request(token, clinic_id, **kwargs):
    return QRCodeValidateRequest(qrToken=token, clinicId=clinic_id, **kwargs)


def _validate(db, token, clinic_id, **kwargs):
    return qr_validation_service.validate_qr_code(db, _request(token, clinic_id, **kwargs))


def test_valid_token_debits_credit_and_records_transaction(db, seed, issue_token):
    issued = issue_token(seed.user_plan)
    metadata = RequestMetadata(validated_by=seed.staff.email, ip_address="10.0.0.7", user_agent="clinic-app/2.1")

    result = qr_validation_service.validate_qr_code(
        db, _request(issued.token, seed.clinic.id, serviceType="Consulta"), metadata
    )

    assert result.ok
    response = result.value
    assert response.success
    assert response.userPlan.creditsRemaining == 9
    assert response.userPlan.creditsUsed == 1
    assert response.patient.userId == seed.patient.id
    assert response.patient.name == "Ana Silva"

    tx = db.query(Transaction).one()
    assert tx.id == response.transactionId
    assert tx.status == TransactionStatus.VALIDATED.value
    assert tx.credits_used == 1
    assert tx.clinic_id == seed.clinic.id
    assert tx.qr_nonce == issued.nonce
    assert tx.validated_by == seed.staff.email
    assert tx.ip_address == "10.0.0.7"
    assert tx.amount == Decimal("10.00")
    assert tx.service_description == "Consulta"
    assert tx.code.startswith("TXN") and len(tx.code) == 21

    assert db.get(UsedNonce, issued.nonce) is not None


def test_defaults_when_request_has_no_service_info(db, seed, issue_token):
    issued = issue_token(seed.user_plan)

    result = _validate(db, issued.token, seed.clinic.id)

    tx = db.query(Transaction).one()
    assert result.ok
    assert tx.service_description == "QR Code Service"
    assert tx.validated_by == "System"


def test_multiple_credits_debited_at_once(db, seed, issue_token):
    issued = issue_token(seed.user_plan)

    result = _validate(db, issued.token, seed.clinic.id, creditsRequired=3, amount=Decimal("45.50"))

    assert result.ok
    assert result.value.userPlan.creditsRemaining == 7
    assert result.value.transaction.amount == Decimal("45.50")


def test_second_redemption_is_rejected_at_any_clinic(db, seed, issue_token):
    issued = issue_token(seed.user_plan)
    assert _validate(db, issued.token, seed.clinic.id).ok

    same_clinic = _validate(db, issued.token, seed.clinic.id)
    other_clinic = _validate(db, issued.token, seed.other_clinic.id)

    for result in (same_clinic, other_clinic):
        assert not result.ok
        assert result.error.code == QRErrorCode.QR_ALREADY_USED
        assert result.error.status_code == 409

    db.refresh(seed.user_plan)
    assert seed.user_plan.credits_remaining == 9
    assert db.query(Transaction).count() == 1


def test_token_expired_by_signature(db, seed, issue_token):
    issued = issue_token(seed.user_plan, minutes=5, now=utcnow() - timedelta(minutes=10))

    result = _validate(db, issued.token, seed.clinic.id)

    assert result.error.code == QRErrorCode.QR_EXPIRED
    assert result.error.status_code == 410
    assert result.error.details["expiresAt"] == issued.expires_at.isoformat()
    db.refresh(seed.user_plan)
    assert seed.user_plan.credits_remaining == 10


def test_token_expired_at_validation_time(db, seed, issue_token):
    issued = issue_token(seed.user_plan, minutes=30)

    result = qr_validation_service.validate_qr_code(
        db, _request(issued.token, seed.clinic.id), now=utcnow() + timedelta(minutes=31)
    )

    assert result.error.code == QRErrorCode.QR_EXPIRED
    assert db.get(UsedNonce, issued.nonce) is None


def test_expiry_is_reported_before_reuse(db, seed, issue_token):
    issued = issue_token(seed.user_plan, minutes=30)
    assert _validate(db, issued.token, seed.clinic.id).ok

    result = qr_validation_service.validate_qr_code(
        db, _request(issued.token, seed.clinic.id), now=utcnow() + timedelta(minutes=31)
    )

    assert result.error.code == QRErrorCode.QR_EXPIRED


def test_insufficient_credits_leaves_plan_and_nonce_untouched(db, seed, make_user_plan, issue_token):
    user_plan = make_user_plan(credits=10, credits_remaining=1)
    issued = issue_token(user_plan)

    result = _validate(db, issued.token, seed.clinic.id, creditsRequired=2)

    assert result.error.code == QRErrorCode.INSUFFICIENT_CREDITS
    assert result.error.status_code == 402
    assert result.error.details == {"availableCredits": 1, "requiredCredits": 2}
    db.refresh(user_plan)
    assert user_plan.credits_remaining == 1
    assert db.get(UsedNonce, issued.nonce) is None
    assert db.query(Transaction).count() == 0

    # 거부된 토큰은 소모되지 않음
    retry = _validate(db, issued.token, seed.clinic.id, creditsRequired=1)
    assert retry.ok
    assert retry.value.userPlan.creditsRemaining == 0


def test_deactivated_plan_is_rejected(db, seed, issue_token):
    issued = issue_token(seed.user_plan)
    seed.user_plan.is_active = False
    db.commit()

    result = _validate(db, issued.token, seed.clinic.id)

    assert result.error.code == QRErrorCode.INVALID_USER_PLAN
    assert result.error.status_code == 400


def test_expired_plan_is_rejected(db, seed, make_user_plan, issue_token):
    user_plan = make_user_plan(expires_in=timedelta(days=1))
    issued = issue_token(user_plan)
    user_plan.expiration_date = utcnow() - timedelta(minutes=1)
    db.commit()

    result = _validate(db, issued.token, seed.clinic.id)

    assert result.error.code == QRErrorCode.INVALID_USER_PLAN


def test_plan_owner_must_match_token_user(db, seed, issue_token):
    issued = issue_token(seed.user_plan, user_id=seed.other_patient.id)

    result = _validate(db, issued.token, seed.clinic.id)

    assert result.error.code == QRErrorCode.INVALID_USER_PLAN


def test_unknown_plan_is_rejected(db, seed, issue_token):
    issued = issue_token(SimpleNamespace(id="missing-plan", user_id=seed.patient.id))

    result = _validate(db, issued.token, seed.clinic.id)

    assert result.error.code == QRErrorCode.INVALID_USER_PLAN
    assert result.error.details["userPlanId"] == "missing-plan"


@pytest.mark.parametrize("clinic_attr", ["closed_clinic", None])
def test_unauthorized_clinic_is_rejected(db, seed, issue_token, clinic_attr):
    clinic_id = getattr(seed, clinic_attr).id if clinic_attr else "no-such-clinic"
    issued = issue_token(seed.user_plan)

    result = _validate(db, issued.token, clinic_id)

    assert result.error.code == QRErrorCode.UNAUTHORIZED_CLINIC
    assert result.error.status_code == 403
    db.refresh(seed.user_plan)
    assert seed.user_plan.credits_remaining == 10
    assert db.get(UsedNonce, issued.nonce) is None


def test_credit_check_runs_before_clinic_check(db, seed, make_user_plan, issue_token):
    user_plan = make_user_plan(credits=10, credits_remaining=0)
    issued = issue_token(user_plan)

    result = _validate(db, issued.token, seed.closed_clinic.id)

    assert result.error.code == QRErrorCode.INSUFFICIENT_CREDITS


def test_forged_token_is_rejected(db, seed, issue_token):
    issued = issue_token(seed.user_plan)
    forged = jwt.encode(jwt.get_unverified_claims(issued.token), "attacker-key", algorithm="HS256")

    result = _validate(db, forged, seed.clinic.id)

    assert result.error.code == QRErrorCode.INVALID_QR
    assert result.error.status_code == 400
    db.refresh(seed.user_plan)
    assert seed.user_plan.credits_remaining == 10


def test_concurrent_redemption_succeeds_once(db, seed, issue_token, monkeypatch):
    issued = issue_token(seed.user_plan)
    # 두 요청 모두 nonce 미사용 상태를 본 경우: 커밋 시점 제약이 승자를 결정
    monkeypatch.setattr(nonce_crud, "is_nonce_used", lambda session, nonce: False)

    first_session = SessionLocal()
    second_session = SessionLocal()
    try:
        first = _validate(first_session, issued.token, seed.clinic.id)
        second = _validate(second_session, issued.token, seed.other_clinic.id)
    finally:
        first_session.close()
        second_session.close()

    assert first.ok
    assert second.error.code == QRErrorCode.QR_ALREADY_USED
    db.refresh(seed.user_plan)
    assert seed.user_plan.credits_remaining == 9
    assert db.query(Transaction).count() == 1


def test_low_balance_event_emitted_at_threshold(db, seed, make_user_plan, issue_token):
    user_plan = make_user_plan(credits=10, credits_remaining=4)
    issued = issue_token(user_plan)

    assert _validate(db, issued.token, seed.clinic.id).ok

    events = notification_crud.list_for_user(db, seed.patient.id)
    assert len(events) == 1
    event = events[0]
    assert event.type == "LowBalance_3"
    assert event.user_id == seed.patient.id
    assert event.user_plan_id == user_plan.id
    assert event.payload["creditsRemaining"] == 3


def test_no_low_balance_event_above_threshold(db, seed, issue_token):
    issued = issue_token(seed.user_plan)

    assert _validate(db, issued.token, seed.clinic.id).ok

    assert db.query(NotificationEvent).count() == 0


def test_user_threshold_overrides_default(db, seed, issue_token):
    seed.patient.low_balance_threshold = 9
    db.commit()
    issued = issue_token(seed.user_plan)

    assert _validate(db, issued.token, seed.clinic.id).ok

    assert db.query(NotificationEvent).one().type == "LowBalance_9"


def test_storage_failure_is_transient_and_leaves_no_partial_state(db, seed, issue_token, monkeypatch):
    issued = issue_token(seed.user_plan)

    def failing_debit(session, user_plan_id, amount):
        raise OperationalError("UPDATE user_plans", {}, Exception("database is locked"))

    monkeypatch.setattr("app.services.qr_validation_service.debit_credits", failing_debit)

    with pytest.raises(TransientStorageError):
        _validate(db, issued.token, seed.clinic.id)

    assert db.get(UsedNonce, issued.nonce) is None
    assert db.query(Transaction).count() == 0
    db.refresh(seed.user_plan)
    assert seed.user_plan.credits_remaining == 10
