# Overview: Flask API routes for credit pickups and returns; parses input and returns JSON responses.

# backend/creditdesk/routes/credit_transactions.py
"""
Credit Transaction API Routes

WHY: Counter staff and customers record goods taken on credit and goods
brought back. A transaction only moves the balance after it is confirmed
with a signature.

DESIGN:
- Create PICKUP/RETURN transactions (status: PENDING) with a credit warning
- Confirm with signature (CONFIRMED, balance moves)
- Cancel pending transactions with a reason
- Invoice confirmed transactions in billing batches
- Administrative reversal of confirmed transactions
- Customer views: recent, pending, monthly statement, frequent products
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import CreditDeskError, ValidationError
from ..services import credit_transaction_service, customer_service
from ..time_utils import parse_iso_datetime
from ..validation import coerce_int, page_params

credit_transactions_bp = Blueprint("credit_transactions", __name__, url_prefix="/api/credit-transactions")


def _page_args() -> tuple[int, int]:
    return page_params(
        request.args.get("page"),
        request.args.get("size"),
        default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
        max_size=current_app.config.get("MAX_PAGE_SIZE", 200),
    )


def _date_arg(name: str):
    try:
        return parse_iso_datetime(request.args.get(name))
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", {"field": name})


def _created_response(txn, credit):
    return jsonify({"transaction": txn.to_dict(), "credit_check": credit}), 201


# =============================================================================
# CREATION
# =============================================================================

@credit_transactions_bp.post("/")
def create_transaction_route():
    """
    Create a PICKUP or RETURN (status: PENDING).

    Request body:
    {
        "customer_code": "C001",          (or "customer_id": 1)
        "transaction_type": "PICKUP",
        "lines": [{"product_code": "A", "quantity": 2, "notes": "..."}],
        "performed_by": "Jonas",
        "performed_by_role": "EMPLOYEE",
        "notes": "...",                   (optional)
        "transaction_number": "P-000900"  (optional, must be unused)
    }

    Returns:
        201: {"transaction": {...}, "credit_check": {projected_balance_cents, is_over_limit, ...}}
        400: Invalid input
        409: Transaction number already exists
    """
    try:
        data = request.get_json(silent=True) or {}
        txn, credit = credit_transaction_service.create_transaction(
            transaction_type=data.get("transaction_type"),
            lines=data.get("lines"),
            performed_by=data.get("performed_by"),
            performed_by_role=data.get("performed_by_role"),
            customer_id=data.get("customer_id"),
            customer_code=data.get("customer_code"),
            notes=data.get("notes"),
            original_transaction_number=data.get("original_transaction_number"),
            transaction_number=data.get("transaction_number"),
        )
        return _created_response(txn, credit)
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create credit transaction")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.post("/quick-pickup")
def quick_pickup_route():
    """
    Counter shortcut: customer code plus product codes.

    Request body:
    {
        "customer_code": "C001",
        "items": [{"product_code": "A", "quantity": 1}],
        "performed_by": "Jonas",
        "performed_by_role": "EMPLOYEE"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        txn, credit = credit_transaction_service.create_quick_pickup(
            customer_code=data.get("customer_code"),
            items=data.get("items"),
            performed_by=data.get("performed_by"),
            performed_by_role=data.get("performed_by_role"),
            notes=data.get("notes"),
        )
        return _created_response(txn, credit)
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create quick pickup")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.post("/<int:transaction_id>/return")
def return_from_pickup_route(transaction_id: int):
    """
    Give back goods from a confirmed pickup as a new, independent RETURN.

    Request body:
    {
        "lines": [{"product_code": "A", "quantity": 1}],
        "performed_by": "Jonas",
        "performed_by_role": "EMPLOYEE"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        txn, credit = credit_transaction_service.create_return_from_pickup(
            pickup_id=transaction_id,
            lines=data.get("lines"),
            performed_by=data.get("performed_by"),
            performed_by_role=data.get("performed_by_role"),
            notes=data.get("notes"),
        )
        return _created_response(txn, credit)
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return from pickup")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# TRANSITIONS
# =============================================================================

@credit_transactions_bp.post("/<int:transaction_id>/confirm")
def confirm_transaction_route(transaction_id: int):
    """
    Confirm with signature (PENDING -> CONFIRMED). Moves the balance.

    Request body:
    {
        "confirmed_by": "Petras",
        "signature_data": "data:image/png;base64,...",
        "photo_data": "...",   (optional)
        "notes": "..."         (optional)
    }

    Returns:
        200: Transaction confirmed
        400: Missing confirmed_by or signature
        409: Not PENDING, or confirmed concurrently
    """
    try:
        data = request.get_json(silent=True) or {}
        txn = credit_transaction_service.confirm_transaction(
            transaction_id,
            confirmed_by=data.get("confirmed_by"),
            signature_data=data.get("signature_data"),
            photo_data=data.get("photo_data"),
            notes=data.get("notes"),
        )
        return jsonify({"transaction": txn.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to confirm credit transaction")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.post("/<int:transaction_id>/cancel")
def cancel_transaction_route(transaction_id: int):
    """
    Cancel a pending transaction. Request body: {"reason": "...", "cancelled_by": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        txn = credit_transaction_service.cancel_transaction(
            transaction_id,
            reason=data.get("reason"),
            cancelled_by=data.get("cancelled_by"),
        )
        return jsonify({"transaction": txn.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel credit transaction")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.post("/<int:transaction_id>/reverse")
def reverse_transaction_route(transaction_id: int):
    """
    Administrative reversal of a CONFIRMED transaction; the balance effect is inverted.

    Request body: {"reason": "...", "reversed_by": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        txn = credit_transaction_service.reverse_transaction(
            transaction_id,
            reason=data.get("reason"),
            reversed_by=data.get("reversed_by"),
        )
        return jsonify({"transaction": txn.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reverse credit transaction")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.post("/invoice")
def invoice_transactions_route():
    """
    Mark confirmed transactions as invoiced (all-or-nothing).

    Request body: {"transaction_ids": [1, 2], "invoice_reference": "INV-2026-10"}
    """
    try:
        data = request.get_json(silent=True) or {}
        txns = credit_transaction_service.mark_invoiced(
            data.get("transaction_ids"),
            invoice_reference=data.get("invoice_reference"),
        )
        return jsonify({"transactions": [t.to_summary_dict() for t in txns]}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to invoice credit transactions")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@credit_transactions_bp.get("/<int:transaction_id>")
def get_transaction_route(transaction_id: int):
    try:
        txn = credit_transaction_service.get_transaction(transaction_id)
        return jsonify({"transaction": txn.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get credit transaction")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/number/<string:transaction_number>")
def get_transaction_by_number_route(transaction_number: str):
    try:
        txn = credit_transaction_service.get_transaction_by_number(transaction_number)
        return jsonify({"transaction": txn.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get credit transaction by number")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/")
def list_transactions_route():
    """
    List transactions, newest first.

    Query params: customer_id, status, transaction_type, date_from, date_to
    (ISO-8601, date_to exclusive), page (0-based), size.
    """
    try:
        page, size = _page_args()
        customer_id = request.args.get("customer_id")
        result = credit_transaction_service.list_transactions(
            customer_id=coerce_int("customer_id", customer_id) if customer_id else None,
            status=request.args.get("status") or None,
            transaction_type=request.args.get("transaction_type") or None,
            date_from=_date_arg("date_from"),
            date_to=_date_arg("date_to"),
            page=page,
            size=size,
        )
        return jsonify(result), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list credit transactions")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/search")
def search_transactions_route():
    try:
        page, size = _page_args()
        result = credit_transaction_service.search_transactions(request.args.get("q"), page=page, size=size)
        return jsonify(result), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to search credit transactions")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/customer/<int:customer_id>")
def customer_transactions_route(customer_id: int):
    try:
        page, size = _page_args()
        customer_service.get_customer(customer_id)
        result = credit_transaction_service.list_transactions(customer_id=customer_id, page=page, size=size)
        return jsonify(result), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list customer transactions")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/customer/<int:customer_id>/recent")
def recent_customer_transactions_route(customer_id: int):
    try:
        limit = max(1, min(coerce_int("limit", request.args.get("limit", "10")), 100))
        txns = credit_transaction_service.get_recent_customer_transactions(customer_id, limit=limit)
        return jsonify({"transactions": [t.to_summary_dict() for t in txns]}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get recent customer transactions")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/customer/<int:customer_id>/pending")
def pending_customer_transactions_route(customer_id: int):
    try:
        txns = credit_transaction_service.get_pending_customer_transactions(customer_id)
        return jsonify({"transactions": [t.to_dict() for t in txns]}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get pending customer transactions")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/customer/<int:customer_id>/statement/<int:year>/<int:month>")
def monthly_statement_route(customer_id: int, year: int, month: int):
    """Confirmed and invoiced transactions for one calendar month, with totals."""
    try:
        statement = credit_transaction_service.get_monthly_statement(customer_id, year, month)
        return jsonify({"statement": statement}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to build monthly statement")
        return jsonify({"error": "Internal server error"}), 500


@credit_transactions_bp.get("/customer/<int:customer_id>/frequent-products")
def frequent_products_route(customer_id: int):
    try:
        limit = max(1, min(coerce_int("limit", request.args.get("limit", "10")), 50))
        products = credit_transaction_service.get_frequent_products(customer_id, limit=limit)
        return jsonify({"products": products}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get frequent products")
        return jsonify({"error": "Internal server error"}), 500
