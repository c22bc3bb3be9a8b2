# Overview: Flask API routes for customer credit views; parses input and returns JSON responses.

# backend/creditdesk/routes/customers.py
"""
Customer Credit API Routes

WHY: The counter UI shows who owes what before goods leave the shop, and
warns when a pickup would push a customer over their limit.

Customers themselves are provisioned elsewhere; this API only reads them,
projects balances and deactivates accounts.
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import CreditDeskError
from ..services import credit_transaction_service, customer_service, ledger_service
from ..validation import coerce_int

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    try:
        customer = customer_service.get_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/code/<string:code>")
def get_customer_by_code_route(code: str):
    try:
        customer = customer_service.get_customer_by_code(code)
        return jsonify({"customer": customer.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get customer by code")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/credit")
def get_credit_summary_route(customer_id: int):
    """
    Credit overview: limit, balance, available credit and utilization band.

    Returns:
        200: {"credit": {...}}
        404: Customer not found
    """
    try:
        customer = customer_service.get_customer(customer_id)
        return jsonify({"credit": ledger_service.credit_summary(customer)}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get credit summary")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/projection")
def project_balance_route(customer_id: int):
    """
    Preview the balance a transaction would produce, without creating it.

    Request body:
    {
        "transaction_type": "PICKUP",
        "lines": [{"product_code": "A", "quantity": 2}]
    }

    Returns:
        200: {"projection": {projected_balance_cents, is_over_limit, ...}}
        400: Invalid input
    """
    try:
        data = request.get_json(silent=True) or {}
        projection = credit_transaction_service.preview_transaction(
            customer_id=customer_id,
            transaction_type=data.get("transaction_type"),
            lines=data.get("lines"),
        )
        return jsonify({"projection": projection}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to project balance")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/top-balances")
def top_balances_route():
    """Customers owing the most, plus the count of customers over their limit."""
    try:
        limit = coerce_int("limit", request.args.get("limit", "10"))
        limit = max(1, min(limit, 100))
        return jsonify(customer_service.get_top_balances(limit=limit)), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get top balances")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.post("/<int:customer_id>/deactivate")
def deactivate_customer_route(customer_id: int):
    try:
        customer = customer_service.deactivate_customer(customer_id)
        return jsonify({"customer": customer.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to deactivate customer")
        return jsonify({"error": "Internal server error"}), 500


@customers_bp.get("/<int:customer_id>/ledger")
def customer_ledger_route(customer_id: int):
    """Newest-first audit trail of everything that happened to this customer's credit."""
    try:
        customer_service.get_customer(customer_id)
        limit = coerce_int("limit", request.args.get("limit", "100"))
        limit = max(1, min(limit, 500))
        events = ledger_service.list_ledger_events(customer_id=customer_id, limit=limit)
        return jsonify({"events": [ev.to_dict() for ev in events]}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customer ledger")
        return jsonify({"error": "Internal server error"}), 500
