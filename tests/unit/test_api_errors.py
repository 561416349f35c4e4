"""
HTTP surface: error envelope, status codes and the internal job guard.

Services are patched where the route module looks them up; the DB session
is the AsyncMock from conftest.
"""

import uuid
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from trading_api.config import settings
from trading_api.exceptions import AlreadyApprovedNoOp, IntegrityViolation
from trading_api.services.expense_service import ApprovalOutcome, ExpenseDeletion
from trading_api.services.payable_outbox import DrainResult


def test_missing_identity_header_is_401(client):
    resp = client.get(f"/api/v1/purchases/{uuid.uuid4()}")

    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "AUTH_REQUIRED"


def test_unknown_purchase_is_404(client, auth_headers):
    resp = client.get(f"/api/v1/purchases/{uuid.uuid4()}", headers=auth_headers)

    assert resp.status_code == 404
    body = resp.json()
    assert body["error"]["code"] == "NOT_FOUND"
    assert body["error"]["message"] == "Purchase not found"


def test_malformed_path_id_is_422(client, auth_headers):
    resp = client.get("/api/v1/purchases/not-a-uuid", headers=auth_headers)

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_create_purchase_without_lines_is_422(client, auth_headers):
    resp = client.post(
        "/api/v1/purchases",
        json={"company_id": str(uuid.uuid4()), "lines": []},
        headers=auth_headers,
    )

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_negative_expense_amount_is_422(client, auth_headers):
    resp = client.post(
        f"/api/v1/purchases/{uuid.uuid4()}/approve",
        json={"expenses": [{"category_id": str(uuid.uuid4()), "amount": "-5", "currency": "LYD"}]},
        headers=auth_headers,
    )

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_supplemental_approval_without_expenses_is_409(client, auth_headers):
    with patch(
        "trading_api.services.expense_service.approve_purchase",
        AsyncMock(side_effect=AlreadyApprovedNoOp("Purchase is already approved")),
    ):
        resp = client.post(
            f"/api/v1/purchases/{uuid.uuid4()}/approve",
            json={"expenses": []},
            headers=auth_headers,
        )

    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "ALREADY_APPROVED_NO_OP"


def test_blocked_delete_is_409_with_details(client, auth_headers):
    receipt_id = str(uuid.uuid4())
    with patch(
        "trading_api.services.purchase_service.delete_purchase",
        AsyncMock(side_effect=IntegrityViolation("Receipts settled", details={"receipt_ids": [receipt_id]})),
    ):
        resp = client.delete(f"/api/v1/purchases/{uuid.uuid4()}", headers=auth_headers)

    assert resp.status_code == 409
    error = resp.json()["error"]
    assert error["code"] == "INTEGRITY_VIOLATION"
    assert error["details"]["receipt_ids"] == [receipt_id]


def test_delete_purchase_returns_204(client, auth_headers):
    with patch("trading_api.services.purchase_service.delete_purchase", AsyncMock()) as mock_delete:
        resp = client.delete(f"/api/v1/purchases/{uuid.uuid4()}", headers=auth_headers)

    assert resp.status_code == 204
    assert mock_delete.await_args.kwargs["actor_id"] == "user-0001"


def test_approve_returns_totals(client, auth_headers):
    purchase_id = uuid.uuid4()
    outcome = ApprovalOutcome(
        purchase_id=purchase_id,
        is_approved=True,
        status="APPROVED",
        approval_round=1,
        total_expenses=Decimal("20"),
        final_total=Decimal("120"),
    )
    with patch(
        "trading_api.services.expense_service.approve_purchase", AsyncMock(return_value=outcome)
    ) as mock_approve, patch(
        "trading_api.routes.purchases.drain_after_commit", AsyncMock()
    ) as mock_drain:
        resp = client.post(
            f"/api/v1/purchases/{purchase_id}/approve",
            json={
                "expenses": [
                    {
                        "category_id": str(uuid.uuid4()),
                        "amount": "20",
                        "currency": "lyd",
                        "is_actual_expense": False,
                    }
                ]
            },
            headers=auth_headers,
        )

    assert resp.status_code == 200
    body = resp.json()
    assert body["purchase_id"] == str(purchase_id)
    assert body["is_approved"] is True
    assert body["approval_round"] == 1
    assert Decimal(str(body["total_expenses"])) == Decimal("20")
    assert Decimal(str(body["final_total"])) == Decimal("120")

    expenses = mock_approve.await_args.args[2]
    assert expenses[0].currency == "LYD"
    assert mock_approve.await_args.kwargs["approved_by"] == "user-0001"
    # No receipts, nothing to drain
    mock_drain.assert_not_called()


def test_delete_expense_returns_recomputed_totals(client, auth_headers):
    purchase_id = uuid.uuid4()
    deletion = ExpenseDeletion(
        purchase_id=purchase_id,
        remaining_total_expenses=Decimal("30"),
        final_total=Decimal("130"),
        retracted_receipt_count=1,
    )
    with patch(
        "trading_api.routes.purchase_expenses.delete_expense", AsyncMock(return_value=deletion)
    ):
        resp = client.delete(f"/api/v1/purchase-expenses/{uuid.uuid4()}", headers=auth_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert Decimal(str(body["remaining_total_expenses"])) == Decimal("30")
    assert body["retracted_receipt_count"] == 1


def test_movement_report_rejects_inverted_window(client, auth_headers, db_session):
    resp = client.get(
        "/api/v1/reports/product-movements",
        params={
            "product_id": str(uuid.uuid4()),
            "company_id": str(uuid.uuid4()),
            "start_date": "2024-06-01T00:00:00",
            "end_date": "2024-05-01T00:00:00",
        },
        headers=auth_headers,
    )

    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"
    db_session.get.assert_not_awaited()


def test_supplier_balances_unknown_supplier(client, auth_headers):
    resp = client.get(f"/api/v1/suppliers/{uuid.uuid4()}/balances", headers=auth_headers)

    assert resp.status_code == 404


def test_health_ok(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    assert resp.json()["checks"]["db"] == "ok"


def test_health_reports_db_failure(client, db_session):
    db_session.execute.side_effect = RuntimeError("connection refused")

    resp = client.get("/health")

    assert resp.status_code == 503
    assert resp.json()["status"] == "unhealthy"


def test_internal_job_unconfigured_secret_is_503(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", None)
    monkeypatch.setattr(settings, "DEBUG", False)

    resp = client.post("/internal/jobs/drain-payable-postings")

    assert resp.status_code == 503


def test_internal_job_wrong_secret_is_403(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", "s3cret")

    resp = client.post(
        "/internal/jobs/drain-payable-postings", headers={"X-Internal-Secret": "guess"}
    )

    assert resp.status_code == 403


def test_internal_job_drains_with_valid_secret(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_JOB_SECRET", "s3cret")

    with patch(
        "trading_api.jobs.payable_postings.run_payable_posting_drain",
        AsyncMock(return_value=DrainResult(posted=3, failed=1, retried=0)),
    ):
        resp = client.post(
            "/internal/jobs/drain-payable-postings", headers={"X-Internal-Secret": "s3cret"}
        )

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "posted": 3, "failed": 1, "retried": 0}
