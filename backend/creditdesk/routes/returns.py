# Overview: Flask API routes for warehouse return cases; parses input and returns JSON responses.

# backend/creditdesk/routes/returns.py
"""
Return Case API Routes

WHY: Goods from completed orders come back through the warehouse and are
approved, received, inspected, restocked and refunded step by step.

DESIGN:
- Create return cases referencing a completed order
- Approval / rejection while pending
- Custody: shipped back (optional), received
- Line-by-line inspection producing a draft refund
- Restock eligible lines and/or pay the refund
"""

from flask import Blueprint, current_app, jsonify, request

from ..errors import CreditDeskError
from ..services import return_service
from ..validation import coerce_int, page_params


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


# =============================================================================
# RETURN CREATION
# =============================================================================

@returns_bp.post("/")
def create_return_route():
    """
    Create a new return case (status: PENDING).

    Request body:
    {
        "order_id": 12,
        "lines": [{"order_line_id": 40, "quantity": 10, "reason_code": "DEFECTIVE", "notes": "..."}],
        "requested_by": "Ona",
        "notes": "..."   (optional)
    }

    Returns:
        201: Return created with PENDING status
        400: Invalid input or quantity exceeds what is left to return
        404: Order not found
        409: Order not COMPLETED
    """
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.create_return(
            order_id=data.get("order_id"),
            lines=data.get("lines"),
            requested_by=data.get("requested_by"),
            notes=data.get("notes"),
            internal_notes=data.get("internal_notes"),
            return_number=data.get("return_number"),
        )
        return jsonify({"return": case.to_dict()}), 201
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create return")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# RETURN APPROVAL WORKFLOW
# =============================================================================

@returns_bp.post("/<int:return_id>/approve")
def approve_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.approve_return(
            return_id,
            notes=data.get("notes"),
            approved_by=data.get("approved_by"),
        )
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/reject")
def reject_return_route(return_id: int):
    """
    Reject a pending return. Terminal.

    Request body:
    {
        "reason": "Outside return window"
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.reject_return(
            return_id,
            reason=data.get("reason"),
            rejected_by=data.get("rejected_by"),
        )
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/ship")
def ship_return_route(return_id: int):
    try:
        case = return_service.mark_in_transit(return_id)
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to mark return in transit")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/receive")
def receive_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.mark_received(return_id, received_by=data.get("received_by"))
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to receive return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/inspect")
def inspect_return_route(return_id: int):
    """
    Inspect every line of a received return.

    Request body:
    {
        "inspections": [
            {"line_id": 7, "quantity_accepted": 7, "quantity_rejected": 3,
             "condition": "GOOD", "inspection_notes": "..."}
        ]
    }

    Returns:
        200: Return inspected, draft refund computed
        400: Quantities do not add up, unknown line, or missing condition
        409: Return not RECEIVED
    """
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.inspect_return(
            return_id,
            data.get("inspections"),
            inspected_by=data.get("inspected_by"),
        )
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to inspect return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/restock")
def restock_return_route(return_id: int):
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.restock_return(return_id, restocked_by=data.get("restocked_by"))
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.post("/<int:return_id>/refund")
def refund_return_route(return_id: int):
    """
    Pay out the refund.

    Request body:
    {
        "refund_method": "BANK_TRANSFER",
        "amount_cents": 7000,
        "reference": "TRX-123",   (optional)
        "notes": "..."            (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        case = return_service.process_refund(
            return_id,
            refund_method=data.get("refund_method"),
            amount_cents=data.get("amount_cents"),
            reference=data.get("reference"),
            notes=data.get("notes"),
            processed_by=data.get("processed_by"),
        )
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to process refund")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# QUERIES
# =============================================================================

@returns_bp.get("/reasons")
def list_reasons_route():
    try:
        include_inactive = request.args.get("include_inactive", "").lower() in ("1", "true", "yes")
        reasons = return_service.list_return_reasons(active_only=not include_inactive)
        return jsonify({"reasons": [r.to_dict() for r in reasons]}), 200
    except Exception:
        current_app.logger.exception("Failed to list return reasons")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/<int:return_id>")
def get_return_route(return_id: int):
    try:
        case = return_service.get_return(return_id)
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/number/<string:return_number>")
def get_return_by_number_route(return_number: str):
    try:
        case = return_service.get_return_by_number(return_number)
        return jsonify({"return": case.to_dict()}), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to get return by number")
        return jsonify({"error": "Internal server error"}), 500


@returns_bp.get("/")
def list_returns_route():
    """
    List return cases, newest first.

    Query params: status, customer_id, page (0-based), size.
    """
    try:
        page, size = page_params(
            request.args.get("page"),
            request.args.get("size"),
            default_size=current_app.config.get("DEFAULT_PAGE_SIZE", 20),
            max_size=current_app.config.get("MAX_PAGE_SIZE", 200),
        )
        customer_id = request.args.get("customer_id")
        result = return_service.list_returns(
            status=request.args.get("status") or None,
            customer_id=coerce_int("customer_id", customer_id) if customer_id else None,
            page=page,
            size=size,
        )
        return jsonify(result), 200
    except CreditDeskError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list returns")
        return jsonify({"error": "Internal server error"}), 500
