from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from app.core.security import create_access_token
from app.main import app
from app.utils.clock import utcnow

API = "/api/v1"


@pytest.fixture
def client():
    return TestClient(app)


def _auth(user):
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


def _validate(client, staff, token, clinic_id, **extra):
    body = {"qrToken": token, "clinicId": clinic_id, **extra}
    return client.post(f"{API}/qrcode/validate", json=body, headers=_auth(staff))


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_invalid_access_token_is_rejected(client, seed):
    resp = client.post(
        f"{API}/qrcode/generate", json={}, headers={"Authorization": "Bearer not-a-token"}
    )

    assert resp.status_code == 401


def test_patient_generates_qr_code(client, seed):
    resp = client.post(
        f"{API}/qrcode/generate", json={"expirationMinutes": 15, "size": 250}, headers=_auth(seed.patient)
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["qrCode"].startswith("data:image/png;base64,")
    assert body["userPlanId"] == seed.user_plan.id
    assert body["nonce"]


def test_clinic_staff_cannot_generate(client, seed):
    resp = client.post(f"{API}/qrcode/generate", json={}, headers=_auth(seed.staff))

    assert resp.status_code == 403


def test_generate_with_other_users_plan_is_forbidden(client, seed, make_user_plan):
    other_plan = make_user_plan(user=seed.other_patient)

    resp = client.post(
        f"{API}/qrcode/generate", json={"userPlanId": other_plan.id}, headers=_auth(seed.patient)
    )

    assert resp.status_code == 403


def test_generate_without_usable_plan(client, seed):
    resp = client.post(f"{API}/qrcode/generate", json={}, headers=_auth(seed.other_patient))

    assert resp.status_code == 400
    assert resp.json()["detail"]["error"] == "INVALID_USER_PLAN"


@pytest.mark.parametrize("body", [{"expirationMinutes": 2}, {"expirationMinutes": 90}, {"size": 50}, {"size": 0}])
def test_generate_rejects_out_of_range_options(client, seed, body):
    resp = client.post(f"{API}/qrcode/generate", json=body, headers=_auth(seed.patient))

    assert resp.status_code == 400
    assert "between" in resp.json()["detail"]


def test_validate_then_replay(client, seed, issue_token):
    issued = issue_token(seed.user_plan)

    first = _validate(client, seed.staff, issued.token, seed.clinic.id, serviceType="Consulta")
    second = _validate(client, seed.staff, issued.token, seed.clinic.id)

    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["userPlan"]["creditsRemaining"] == 9
    assert body["transactionCode"].startswith("TXN")

    assert second.status_code == 409
    detail = second.json()["detail"]
    assert detail["success"] is False
    assert detail["error"]["code"] == "QR_ALREADY_USED"


def test_validate_reports_insufficient_credits(client, seed, make_user_plan, issue_token):
    user_plan = make_user_plan(credits=10, credits_remaining=1)
    issued = issue_token(user_plan)

    resp = _validate(client, seed.staff, issued.token, seed.clinic.id, creditsRequired=2)

    assert resp.status_code == 402
    error = resp.json()["detail"]["error"]
    assert error["code"] == "INSUFFICIENT_CREDITS"
    assert error["details"] == {"availableCredits": 1, "requiredCredits": 2}


def test_validate_reports_expired_token(client, seed, issue_token):
    issued = issue_token(seed.user_plan, minutes=5, now=utcnow() - timedelta(minutes=10))

    resp = _validate(client, seed.staff, issued.token, seed.clinic.id)

    assert resp.status_code == 410
    assert resp.json()["detail"]["error"]["code"] == "QR_EXPIRED"


def test_validate_reports_invalid_token(client, seed):
    resp = _validate(client, seed.staff, "garbage-token", seed.clinic.id)

    assert resp.status_code == 400
    assert resp.json()["detail"]["error"]["code"] == "INVALID_QR"


def test_staff_cannot_validate_for_another_clinic(client, seed, issue_token):
    issued = issue_token(seed.user_plan)

    resp = _validate(client, seed.other_staff, issued.token, seed.clinic.id)

    assert resp.status_code == 403


def test_admin_validation_at_inactive_clinic(client, seed, issue_token):
    issued = issue_token(seed.user_plan)

    resp = _validate(client, seed.admin, issued.token, seed.closed_clinic.id)

    assert resp.status_code == 403
    assert resp.json()["detail"]["error"]["code"] == "UNAUTHORIZED_CLINIC"


def test_parse_does_not_consume_token(client, seed, issue_token):
    issued = issue_token(seed.user_plan)

    parsed = client.post(f"{API}/qrcode/parse", json={"qrToken": issued.token}, headers=_auth(seed.staff))

    assert parsed.status_code == 200
    assert parsed.json()["nonce"] == issued.nonce
    assert parsed.json()["isExpired"] is False
    assert _validate(client, seed.staff, issued.token, seed.clinic.id).status_code == 200


def test_transaction_lifecycle(client, seed, issue_token):
    issued = issue_token(seed.user_plan)
    validated = _validate(client, seed.staff, issued.token, seed.clinic.id, creditsRequired=2).json()
    tx_id = validated["transactionId"]

    as_owner = client.get(f"{API}/transactions/{tx_id}", headers=_auth(seed.patient))
    assert as_owner.status_code == 200
    assert as_owner.json()["status"] == "Validated"
    assert as_owner.json()["clinicName"] == "Clinica Centro"

    assert client.get(f"{API}/transactions/{tx_id}", headers=_auth(seed.other_patient)).status_code == 403
    assert client.get(
        f"{API}/transactions/code/{validated['transactionCode']}", headers=_auth(seed.admin)
    ).status_code == 200

    own_list = client.get(f"{API}/transactions/", headers=_auth(seed.staff)).json()
    assert own_list["total_count"] == 1
    assert own_list["items"][0]["id"] == tx_id
    assert client.get(f"{API}/transactions/", headers=_auth(seed.other_staff)).json()["total_count"] == 0

    cancel_body = {"cancellationReason": "Procedimento nao realizado"}
    assert client.post(
        f"{API}/transactions/{tx_id}/cancel", json=cancel_body, headers=_auth(seed.other_staff)
    ).status_code == 403

    cancelled = client.post(f"{API}/transactions/{tx_id}/cancel", json=cancel_body, headers=_auth(seed.staff))
    assert cancelled.status_code == 200
    assert cancelled.json()["status"] == "Cancelled"
    assert cancelled.json()["creditsRefunded"] is True
    assert cancelled.json()["cancelledBy"] == seed.staff.email

    plans = client.get(f"{API}/user-plans/me", headers=_auth(seed.patient)).json()
    assert plans["plans"][0]["creditsRemaining"] == 10

    again = client.post(f"{API}/transactions/{tx_id}/cancel", json=cancel_body, headers=_auth(seed.staff))
    assert again.status_code == 409
    assert again.json()["detail"]["error"] == "INVALID_PLAN_OPERATION"


def test_cancel_requires_reason(client, seed, issue_token):
    issued = issue_token(seed.user_plan)
    tx_id = _validate(client, seed.staff, issued.token, seed.clinic.id).json()["transactionId"]

    resp = client.post(f"{API}/transactions/{tx_id}/cancel", json={}, headers=_auth(seed.staff))

    assert resp.status_code == 422


def test_cancel_unknown_transaction(client, seed):
    resp = client.post(
        f"{API}/transactions/missing/cancel", json={"cancellationReason": "x"}, headers=_auth(seed.admin)
    )

    assert resp.status_code == 404


def test_patient_cannot_list_transactions(client, seed):
    assert client.get(f"{API}/transactions/", headers=_auth(seed.patient)).status_code == 403


def test_negative_offset_is_treated_as_first_page(client, seed, issue_token):
    issued = issue_token(seed.user_plan)
    assert _validate(client, seed.staff, issued.token, seed.clinic.id).status_code == 200

    resp = client.get(f"{API}/transactions/", params={"offset": -5}, headers=_auth(seed.staff))

    assert resp.status_code == 200
    body = resp.json()
    assert body["total_count"] == 1
    assert len(body["items"]) == 1
    assert body["has_more"] is False


def test_user_plan_endpoints(client, seed):
    mine = client.get(f"{API}/user-plans/me", headers=_auth(seed.patient))
    assert mine.status_code == 200
    assert mine.json()["total_count"] == 1
    plan = mine.json()["plans"][0]
    assert plan["planName"] == "Plano Basico"
    assert plan["status"] == "sufficient"

    plan_url = f"{API}/user-plans/{seed.user_plan.id}"
    assert client.get(plan_url, headers=_auth(seed.admin)).status_code == 200
    assert client.get(plan_url, headers=_auth(seed.other_patient)).status_code == 403
    assert client.get(f"{API}/user-plans/missing", headers=_auth(seed.patient)).status_code == 404
