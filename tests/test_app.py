"""Tests for the Flask JSON API."""

from typing import Any, Dict

import pytest

from loan_engine.config import EngineConfig
from loan_engine_web.app import create_app
from loan_engine_web.loan_store import LoanStore

LOAN_ID = "loan-api-001"


def loan_payload(**overrides: Any) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "name": "API mortgage",
        "principal_initial": "180000",
        "signing_date": "2025-01-15",
        "total_term_months": 360,
        "rate": {"kind": "FIXED", "annual_nominal_rate": "0.03"},
        "property_id": "prop-api",
        "partial_prepayment_fee_rate": "0.01",
        "evaluation_date": "2025-06-30",
        "bonifications": [
            {
                "id": "payroll",
                "name": "Payroll",
                "rate_reduction_points": "0.003",
                "rule": {"kind": "PAYROLL", "min_monthly_amount": "1200"},
                "lookback_months": 6,
            }
        ],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client():
    """A test client over an empty in-memory store."""
    app = create_app(store=LoanStore("sqlite:///:memory:"), config=EngineConfig())
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def stored_client(client):
    """A test client with the reference loan already stored."""
    response = client.put(f"/loans/{LOAN_ID}", json=loan_payload())
    assert response.status_code == 200
    return client


class TestLoans:
    """Tests for storing and reading loans."""

    def test_put_returns_summary(self, client) -> None:
        """Test that storing a loan returns it with its plan summary."""
        response = client.put(f"/loans/{LOAN_ID}", json=loan_payload())

        data = response.get_json()
        assert response.status_code == 200
        assert data["loan"]["id"] == LOAN_ID
        assert data["summary"]["installment"] == "758.89"
        assert data["summary"]["payments"] == 360
        assert data["warnings"] == []

    def test_put_warns_about_cap(self, client) -> None:
        """Test that points above the cap are reported, not rejected."""
        response = client.put(f"/loans/{LOAN_ID}", json=loan_payload(max_bonification_rate="0.001"))

        assert response.status_code == 200
        assert len(response.get_json()["warnings"]) == 1

    def test_get_and_list(self, stored_client) -> None:
        """Test reading back and listing a stored loan."""
        loan = stored_client.get(f"/loans/{LOAN_ID}").get_json()["loan"]
        assert loan["principal_outstanding"] == "180000"

        listed = stored_client.get("/loans?property_id=prop-api").get_json()["loans"]
        assert [item["id"] for item in listed] == [LOAN_ID]
        assert listed[0]["has_plan"] is True

    def test_plan(self, stored_client) -> None:
        """Test fetching the stored plan."""
        plan = stored_client.get(f"/loans/{LOAN_ID}/plan").get_json()["plan"]

        assert plan["number_of_periods"] == 360
        assert plan["periods"][0]["interest"] == "450.00"

    def test_delete(self, stored_client) -> None:
        """Test deleting a loan."""
        assert stored_client.delete(f"/loans/{LOAN_ID}").status_code == 204
        assert stored_client.get(f"/loans/{LOAN_ID}").status_code == 404

    def test_unknown_loan(self, client) -> None:
        """Test that unknown loans answer 404 with the error name."""
        response = client.get("/loans/nope")

        assert response.status_code == 404
        assert response.get_json()["error"] == "LoanNotFoundError"

    def test_missing_field(self, client) -> None:
        """Test that parse errors name the missing field."""
        payload = loan_payload()
        del payload["principal_initial"]

        response = client.put(f"/loans/{LOAN_ID}", json=payload)

        assert response.status_code == 400
        assert response.get_json()["field"] == "principal_initial"

    def test_body_must_be_an_object(self, client) -> None:
        """Test that a non-object body is rejected."""
        response = client.put(f"/loans/{LOAN_ID}", data="not json", content_type="text/plain")

        assert response.status_code == 400

    def test_incomplete_rate(self, client) -> None:
        """Test that a variable rate without spread cannot be scheduled."""
        payload = loan_payload(rate={"kind": "VARIABLE", "current_index_value": "0.025"})

        response = client.put(f"/loans/{LOAN_ID}", json=payload)

        assert response.status_code == 422
        assert response.get_json()["error"] == "ConfigurationError"


class TestPrepayments:
    """Tests for simulating and applying prepayments."""

    def test_simulate(self, stored_client) -> None:
        """Test a what-if prepayment."""
        response = stored_client.post(
            f"/loans/{LOAN_ID}/simulate",
            json={"amount": "20000", "date": "2025-12-15", "mode": "REDUCE_TERM"},
        )

        simulation = response.get_json()["simulation"]
        assert response.status_code == 200
        assert simulation["fee"] == "200.00"
        assert simulation["mode"] == "REDUCE_TERM"
        assert simulation["months_saved"] > 0

    def test_simulate_rejects_zero_amount(self, stored_client) -> None:
        """Test that the violated bound is reported."""
        response = stored_client.post(
            f"/loans/{LOAN_ID}/simulate", json={"amount": "0", "date": "2025-12-15"}
        )

        data = response.get_json()
        assert response.status_code == 400
        assert data["field"] == "amount"
        assert data["bound"] == "lower"

    def test_simulate_requires_date(self, stored_client) -> None:
        """Test that the prepayment date is required."""
        response = stored_client.post(f"/loans/{LOAN_ID}/simulate", json={"amount": "1000"})

        assert response.status_code == 400
        assert response.get_json()["field"] == "date"

    def test_apply(self, stored_client) -> None:
        """Test that applying a prepayment updates the stored loan."""
        response = stored_client.post(f"/loans/{LOAN_ID}/prepayments", json={"amount": "20000"})

        data = response.get_json()
        assert response.status_code == 201
        assert data["loan"]["principal_outstanding"] == "160000"
        assert len(data["loan"]["prepayments"]) == 1

        stored = stored_client.get(f"/loans/{LOAN_ID}").get_json()["loan"]
        assert stored["principal_outstanding"] == "160000"


class TestBonifications:
    """Tests for bonification evaluation and savings."""

    def test_evaluate_recomputes_on_change(self, stored_client) -> None:
        """Test that a status change is stored with a new plan."""
        response = stored_client.post(
            f"/loans/{LOAN_ID}/bonifications/evaluate",
            json={"as_of": "2025-06-10", "facts": {"payroll": {"monthly_amounts": ["1500"] * 6}}},
        )

        data = response.get_json()
        assert response.status_code == 200
        assert data["recomputed"] is True
        assert data["evaluation"]["statuses"][0]["status"] == "MET"
        assert data["evaluation"]["statuses"][0]["changed"] is True

        loan = stored_client.get(f"/loans/{LOAN_ID}").get_json()["loan"]
        assert loan["bonifications"][0]["status"] == "MET"
        plan = stored_client.get(f"/loans/{LOAN_ID}/plan").get_json()["plan"]
        assert plan["periods"][0]["annual_rate"] == "0.027"

    def test_evaluate_alerts(self, stored_client) -> None:
        """Test that a bonification at risk raises an alert."""
        response = stored_client.post(
            f"/loans/{LOAN_ID}/bonifications/evaluate",
            json={
                "as_of": "2025-06-10",
                "facts": {"payroll": {"monthly_amounts": ["1500"] * 5 + ["900"], "missing": "payroll"}},
            },
        )

        evaluation = response.get_json()["evaluation"]
        assert evaluation["statuses"][0]["status"] == "AT_RISK"
        assert evaluation["alerts"][0]["alert_type"] == "T-21"

    def test_evaluate_bad_facts(self, stored_client) -> None:
        """Test that malformed facts are rejected."""
        response = stored_client.post(
            f"/loans/{LOAN_ID}/bonifications/evaluate", json={"as_of": "2025-06-10", "facts": ["payroll"]}
        )

        assert response.status_code == 400

    def test_savings(self, stored_client) -> None:
        """Test the savings of a loan without met bonifications."""
        savings = stored_client.get(f"/loans/{LOAN_ID}/bonifications/savings").get_json()["savings"]

        assert savings["base_payment"] == "758.89"
        assert savings["total_savings_per_month"] == "0.00"
