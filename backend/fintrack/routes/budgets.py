# Overview: Flask API routes for payment center budgets; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g

from ..decorators import require_auth, require_permission
from ..permissions import Permission
from ..services import budget_service
from ..services.budget_service import BudgetValidationError

budgets_bp = Blueprint("budgets", __name__, url_prefix="/api/budgets")


def _year_arg(value):
    if value in (None, ""):
        return budget_service.current_year()
    return int(value)


@budgets_bp.get("")
@require_auth
@require_permission(Permission.READ)
def list_budgets():
    """Every payment center with its budget for ?year= (default: current year)."""
    try:
        year = _year_arg(request.args.get("year"))
    except ValueError:
        return jsonify({"error": "year must be an integer"}), 400
    rows = budget_service.budget_rows(g.workspace.cache, year)
    return jsonify({"year": year, "budgets": rows})


@budgets_bp.put("")
@require_auth
@require_permission(Permission.WRITE)
def save_budgets():
    """
    Body: {"year": 2025, "budgets": {"<paymentCenterId>": "150000", ...}}

    The whole batch is rejected when any amount is invalid.
    """
    data = request.get_json(silent=True) or {}
    amounts = data.get("budgets")
    if not isinstance(amounts, dict) or not amounts:
        return jsonify({"error": "budgets must be an object of paymentCenterId -> amount"}), 400
    try:
        year = _year_arg(data.get("year"))
    except (TypeError, ValueError):
        return jsonify({"error": "year must be an integer"}), 400

    try:
        result = budget_service.save_budgets(g.workspace.cache, year, amounts)
    except BudgetValidationError as e:
        return jsonify({"error": str(e), "invalid": e.invalid}), 400

    payload = result.to_dict()
    payload["budgets"] = budget_service.budget_rows(g.workspace.cache, year)
    return jsonify(payload), (200 if not result.failed else 207)
