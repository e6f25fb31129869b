"""JSON API over stored loans.

Every write goes through the same sequence under the loan's lock: read the
current loan, compute the new snapshot and its plan, store both.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, Optional, Tuple

from flask import Flask, jsonify, request

from loan_engine.bonifications import (
    calculate_bonification_savings,
    evaluate_bonifications,
    with_statuses,
)
from loan_engine.config import EngineConfig
from loan_engine.data_models import Loan, PaymentPlan
from loan_engine.engine import build_schedule, plan_summary
from loan_engine.exceptions import (
    ArithmeticDegenerateError,
    ConfigurationError,
    LoanEngineError,
    LoanNotFoundError,
    ValidationError,
)
from loan_engine.logging import get_logger, setup_logging
from loan_engine.prepayment import apply_prepayment, simulate
from loan_engine.serialization import (
    evaluation_to_dict,
    facts_from_dict,
    loan_from_dict,
    loan_to_dict,
    plan_to_dict,
    savings_to_dict,
    serialize_value,
    simulation_to_dict,
)
from loan_engine.utils import optional_date, to_decimal
from loan_engine.validation import validate_loan
from loan_engine_web.loan_store import LoanStore, create_store_from_env

logger = get_logger(__name__)

ERROR_STATUS = {
    ValidationError: 400,
    LoanNotFoundError: 404,
    ConfigurationError: 422,
    ArithmeticDegenerateError: 422,
}


def _json_body() -> Dict[str, Any]:
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _date_param(body: Dict[str, Any], key: str, default: Optional[date] = None) -> date:
    try:
        value = optional_date(body.get(key))
    except ValueError as exc:
        raise ValidationError(str(exc), field=key) from exc
    if value is None:
        if default is None:
            raise ValidationError(f"{key} is required", field=key)
        return default
    return value


def _amount_param(body: Dict[str, Any]) -> Any:
    if body.get("amount") is None:
        raise ValidationError("amount is required", field="amount")
    try:
        return to_decimal(body["amount"])
    except ValueError as exc:
        raise ValidationError(str(exc), field="amount") from exc


def _loan_response(loan: Loan, plan: PaymentPlan) -> Dict[str, Any]:
    return {
        "loan": loan_to_dict(loan),
        "summary": serialize_value(plan_summary(loan, plan)),
    }


def create_app(store: Optional[LoanStore] = None, config: Optional[EngineConfig] = None) -> Flask:
    """Build the Flask app around a loan store."""
    config = config or EngineConfig.from_env()
    store = store or create_store_from_env(config.database_url)

    app = Flask(__name__)
    app.config["ENGINE_CONFIG"] = config
    app.config["LOAN_STORE"] = store

    @app.errorhandler(LoanEngineError)
    def handle_engine_error(exc: LoanEngineError) -> Tuple[Any, int]:
        status = ERROR_STATUS.get(type(exc), 422)
        payload: Dict[str, Any] = {"error": type(exc).__name__, "message": str(exc)}
        if isinstance(exc, ValidationError):
            payload["field"] = exc.field
            payload["bound"] = exc.bound
        return jsonify(payload), status

    @app.get("/loans")
    def list_loans():
        return jsonify({"loans": store.list_loans(request.args.get("property_id"))})

    @app.get("/loans/<loan_id>")
    def get_loan(loan_id: str):
        return jsonify({"loan": loan_to_dict(store.get(loan_id))})

    @app.put("/loans/<loan_id>")
    def put_loan(loan_id: str):
        body = _json_body()
        body["id"] = loan_id
        loan = loan_from_dict(body)
        warnings = validate_loan(loan)
        with store.locked(loan_id):
            plan = build_schedule(loan)
            store.put(loan, plan)
        response = _loan_response(loan, plan)
        response["warnings"] = warnings
        return jsonify(response)

    @app.delete("/loans/<loan_id>")
    def delete_loan(loan_id: str):
        with store.locked(loan_id):
            store.delete(loan_id)
        return "", 204

    @app.get("/loans/<loan_id>/plan")
    def get_plan(loan_id: str):
        plan = store.get_plan(loan_id)
        if plan is None:
            plan = build_schedule(store.get(loan_id))
        return jsonify({"plan": plan_to_dict(plan)})

    @app.post("/loans/<loan_id>/simulate")
    def simulate_prepayment(loan_id: str):
        body = _json_body()
        loan = store.get(loan_id)
        result = simulate(loan, _amount_param(body), _date_param(body, "date"), body.get("mode", "REDUCE_PAYMENT"))
        return jsonify({"simulation": simulation_to_dict(result)})

    @app.post("/loans/<loan_id>/prepayments")
    def post_prepayment(loan_id: str):
        body = _json_body()
        amount = _amount_param(body)
        on_date = _date_param(body, "date") if body.get("date") else None
        with store.locked(loan_id):
            loan = store.get(loan_id)
            updated = apply_prepayment(loan, amount, on_date, body.get("mode", "REDUCE_PAYMENT"))
            plan = build_schedule(updated)
            store.put(updated, plan)
        return jsonify(_loan_response(updated, plan)), 201

    @app.post("/loans/<loan_id>/bonifications/evaluate")
    def evaluate(loan_id: str):
        body = request.get_json(silent=True) or {}
        as_of = _date_param(body, "as_of", date.today())
        facts = facts_from_dict(body.get("facts"))
        with store.locked(loan_id):
            loan = store.get(loan_id)
            evaluation = evaluate_bonifications(loan, as_of, facts, config.alert_days)
            changed = any(report.changed for report in evaluation.statuses)
            if changed:
                loan = with_statuses(loan, evaluation)
                store.put(loan, build_schedule(loan))
                logger.info(
                    "Loan %s: bonification statuses changed, plan recomputed", loan_id, extra={"loan_id": loan_id}
                )
        return jsonify({"evaluation": evaluation_to_dict(evaluation), "recomputed": changed})

    @app.get("/loans/<loan_id>/bonifications/savings")
    def savings(loan_id: str):
        return jsonify({"savings": savings_to_dict(calculate_bonification_savings(store.get(loan_id)))})

    return app


if __name__ == "__main__":
    engine_config = EngineConfig.from_env()
    setup_logging(engine_config.log_level, engine_config.log_format)
    print("Starting Loan Engine web app...")
    create_app(config=engine_config).run(host="0.0.0.0", port=8710, debug=True)
