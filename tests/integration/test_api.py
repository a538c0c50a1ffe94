"""API tests through the FastAPI app with a fake wallet rail"""

from unittest.mock import AsyncMock, patch

from conftest import LENDER_ID, LENDER_PIN
from formbank.api.errors import LOCKOUT_SUGGESTION
from formbank.domain.exceptions import GatewayFailure, GatewayLockout, GatewayTimeout


def as_user(user_id: int) -> dict:
    return {"X-User-Id": str(user_id)}


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client):
    client.get("/health")
    response = client.get("/metrics")

    assert response.status_code == 200
    assert "formbank_loans_issued_total" in response.text
    assert "http_request_duration_seconds" in response.text


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "abc123"})

    assert response.headers["X-Request-ID"] == "abc123"


def test_missing_identity_is_unauthorized(client):
    response = client.get("/v1/credit")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "User ID not found in session"


def test_credit_summary_for_new_borrower(client):
    response = client.get("/v1/credit", headers=as_user(7))

    assert response.status_code == 200
    data = response.json()
    assert data["credit_limit"] == 250
    assert data["credit_balance"] == 0
    assert data["active_loan"] is None
    assert data["loan_history"] == []


def test_borrow_then_repay_full(client, gateway):
    """Test borrow 100 -> owe 120, then full repayment pays the loan off"""
    response = client.post("/v1/credit/borrow", json={"amount": 100}, headers=as_user(7))

    assert response.status_code == 200
    assert response.json()["amount_owed"] == 120
    assert gateway.calls[0].from_id == LENDER_ID

    response = client.post("/v1/credit/repay/full", json={"pin": "1234"}, headers=as_user(7))

    assert response.status_code == 200
    data = response.json()
    assert data["amount_applied"] == 120
    assert data["paid_off"] is True
    assert "Loan paid off!" in data["message"]

    summary = client.get("/v1/credit", headers=as_user(7)).json()
    assert summary["active_loan"] is None
    assert summary["loan_history"][0]["status"] == "paid"


def test_partial_repay_with_overpayment(client):
    client.post("/v1/credit/borrow", json={"amount": 100}, headers=as_user(7))

    response = client.post("/v1/credit/repay", json={"amount": 150, "pin": 1234}, headers=as_user(7))

    data = response.json()
    assert response.status_code == 200
    assert data["overpayment_credited"] == 30
    assert "30 digipogs credited" in data["message"]
    assert client.get("/v1/credit", headers=as_user(7)).json()["credit_balance"] == 30


def test_borrow_over_limit_is_bad_request(client, gateway):
    response = client.post("/v1/credit/borrow", json={"amount": 500}, headers=as_user(7))

    assert response.status_code == 400
    assert "credit limit" in response.json()["detail"]["error"]
    assert gateway.calls == []


def test_borrow_non_positive_amount_fails_validation(client):
    response = client.post("/v1/credit/borrow", json={"amount": 0}, headers=as_user(7))

    assert response.status_code == 422


def test_second_borrow_conflicts(client):
    client.post("/v1/credit/borrow", json={"amount": 50}, headers=as_user(7))

    response = client.post("/v1/credit/borrow", json={"amount": 50}, headers=as_user(7))

    assert response.status_code == 409


def test_repay_without_loan_conflicts(client):
    response = client.post("/v1/credit/repay", json={"amount": 10, "pin": 1234}, headers=as_user(7))

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "No active loan found"


def test_borrow_lockout_returns_locked(client, gateway):
    gateway.fail_next(GatewayLockout("Account locked for 5 minutes"))

    response = client.post("/v1/credit/borrow", json={"amount": 100}, headers=as_user(7))

    assert response.status_code == 423
    detail = response.json()["detail"]
    assert detail["locked"] is True
    assert detail["suggestion"] == LOCKOUT_SUGGESTION


def test_borrow_decline_returns_bad_gateway(client, gateway):
    gateway.fail_next(GatewayFailure("Insufficient funds"))

    response = client.post("/v1/credit/borrow", json={"amount": 100}, headers=as_user(7))

    assert response.status_code == 502
    assert response.json()["detail"]["error"] == "Insufficient funds"


def test_repay_timeout_is_flagged_ambiguous(client, gateway):
    client.post("/v1/credit/borrow", json={"amount": 100}, headers=as_user(7))
    gateway.fail_next(GatewayTimeout("Transfer timeout"))

    response = client.post("/v1/credit/repay", json={"amount": 20, "pin": 1234}, headers=as_user(7))

    assert response.status_code == 504
    assert response.json()["detail"]["ambiguous"] is True


def test_write_and_list_checks(client):
    response = client.post(
        "/v1/checks/write",
        json={"receiver_id": 9, "amount": 80, "pin": 1234, "memo": "rent"},
        headers=as_user(7),
    )

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "completed"
    assert data["fee"] == 5
    assert data["link"] == f"http://testserver/v1/checks/{data['check_id']}"

    sent = client.get("/v1/checks", headers=as_user(7)).json()["checks"]
    received = client.get("/v1/checks", headers=as_user(9)).json()["checks"]
    assert [c["id"] for c in sent] == [data["check_id"]]
    assert [c["id"] for c in received] == [data["check_id"]]
    assert "redemption_secret" not in sent[0]


def test_write_check_to_self_is_bad_request(client):
    response = client.post("/v1/checks/write", json={"receiver_id": 7, "amount": 80, "pin": 1234}, headers=as_user(7))

    assert response.status_code == 400


def test_blank_check_redeemed_by_viewer(client, gateway):
    check_id = client.post("/v1/checks/write", json={"amount": 80, "pin": 1234}, headers=as_user(7)).json()["check_id"]

    response = client.get(f"/v1/checks/{check_id}", headers=as_user(9))

    assert response.status_code == 200
    data = response.json()
    assert data["redeemed_now"] is True
    assert data["redemption_success"] is True
    assert data["check"]["receiver_id"] == 9
    assert data["check"]["status"] == "completed"
    assert gateway.calls[-1].to_id == 9

    # Second claimant loses
    response = client.get(f"/v1/checks/{check_id}", headers=as_user(10))
    assert response.status_code == 403


def test_public_link_redeems_without_identity(client):
    check_id = client.post("/v1/checks/write", json={"amount": 80, "pin": 1234}, headers=as_user(7)).json()["check_id"]

    response = client.get(f"/v1/checks/{check_id}", params={"receiver_id": 9})

    assert response.status_code == 200
    assert response.json()["redemption_success"] is True

    response = client.get(f"/v1/checks/{check_id}", params={"receiver_id": 10})
    assert response.status_code == 409


def test_redemption_lockout_is_reported_on_check_detail(client, gateway):
    check_id = client.post("/v1/checks/write", json={"amount": 80, "pin": 1234}, headers=as_user(7)).json()["check_id"]
    gateway.fail_next(GatewayLockout("Account locked for 5 minutes"))

    response = client.get(f"/v1/checks/{check_id}", params={"receiver_id": 9})

    assert response.status_code == 200
    data = response.json()
    assert data["redemption_success"] is False
    assert data["redemption_locked"] is True
    assert data["suggestion"] == LOCKOUT_SUGGESTION
    assert data["check"]["status"] == "failed"


def test_successful_redemption_is_not_locked(client):
    check_id = client.post("/v1/checks/write", json={"amount": 80, "pin": 1234}, headers=as_user(7)).json()["check_id"]

    data = client.get(f"/v1/checks/{check_id}", params={"receiver_id": 9}).json()

    assert data["redemption_locked"] is False
    assert data["suggestion"] is None


def test_sender_views_own_blank_check(client, gateway):
    check_id = client.post("/v1/checks/write", json={"amount": 80, "pin": 1234}, headers=as_user(7)).json()["check_id"]

    response = client.get(f"/v1/checks/{check_id}", headers=as_user(7))

    data = response.json()
    assert response.status_code == 200
    assert data["is_sender"] is True
    assert data["redeemed_now"] is False
    assert len(gateway.calls) == 1  # fee only


def test_view_check_requires_identity(client):
    response = client.get("/v1/checks/1")

    assert response.status_code == 401


def test_unknown_check_is_not_found(client):
    response = client.get("/v1/checks/999", headers=as_user(7))

    assert response.status_code == 404


def test_admin_overview_is_lender_only(client):
    client.get("/v1/credit", headers=as_user(7))

    assert client.get("/v1/admin/credit", headers=as_user(7)).status_code == 403

    response = client.get("/v1/admin/credit", headers=as_user(LENDER_ID))
    assert response.status_code == 200
    assert {"user_id": 7, "current_limit": 250, "credit_balance": 0} in response.json()["users"]


def test_lender_pin_used_for_principal(client, gateway):
    client.post("/v1/credit/borrow", json={"amount": 10}, headers=as_user(7))

    assert gateway.calls[0].secret == LENDER_PIN


def test_write_check_wallet_outage(client, gateway):
    """Test wallet service error on the fee leg surfaces as 502 and records a failed check"""
    with patch.object(gateway, "transfer", new=AsyncMock(side_effect=GatewayFailure("Wallet service error: 503"))):
        response = client.post("/v1/checks/write", json={"amount": 80, "pin": 1234}, headers=as_user(7))

    assert response.status_code == 502
    checks = client.get("/v1/checks", headers=as_user(7)).json()["checks"]
    assert [c["status"] for c in checks] == ["failed"]
