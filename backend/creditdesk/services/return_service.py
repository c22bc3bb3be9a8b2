# Overview: Service-layer operations for warehouse return cases; approval, custody, inspection, restock and refund.

# backend/creditdesk/services/return_service.py
"""
Return Case Workflow

WHY: Goods from a completed order come back physically. They are approved,
shipped or brought in, received, inspected line by line, and only then
restocked and/or refunded. Nothing financial happens before inspection.

DESIGN PRINCIPLES:
- A case references one COMPLETED order; returned quantities per order line
  never exceed what was ordered, across all non-rejected cases
- Stages are strictly sequential (see state_machines.RETURN_TRANSITIONS)
- Inspection is validated for the whole batch before any line is touched
- Draft refund = sum(accepted x unit price); the paid refund may be lower, never higher
- Restock writes inventory movements only for eligible lines, once
- Refund completes once

LIFECYCLE:
1. create    -> PENDING
2. approve   PENDING    -> APPROVED (expected back within RETURN_EXPECTED_DAYS)
   reject    PENDING    -> REJECTED (terminal)
3. ship      APPROVED   -> IN_TRANSIT (optional)
4. receive   APPROVED | IN_TRANSIT -> RECEIVED
5. inspect   RECEIVED   -> INSPECTED
6. restock / refund     INSPECTED -> COMPLETED, the other may follow on COMPLETED
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import Order, ReturnCase, ReturnLine, ReturnReason
from ..time_utils import utcnow
from ..validation import (
    normalize_code,
    optional_text,
    require_amount_cents,
    require_enum,
    require_list,
    require_non_negative_int,
    require_object,
    require_positive_int,
    require_text,
)
from . import inventory_service, ledger_service
from .concurrency import bump_version, compare_and_set, run_atomic
from .document_service import (
    RETURN_CASE_SEQUENCE,
    allocate_document_number,
    claim_explicit_number,
    flush_new_document,
)
from .pagination import paginate
from .state_machines import (
    RESTOCKABLE_CONDITIONS,
    ProductCondition,
    RefundStatus,
    ReturnAction,
    ReturnStatus,
    ReturnType,
    next_return_status,
)


ORDER_STATUS_COMPLETED = "COMPLETED"


# =============================================================================
# RETURN CREATION
# =============================================================================

def get_order(order_id: int) -> Order:
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFoundError("Order", order_id)
    return order


def _already_returned(order_id: int) -> dict[int, int]:
    """order_line_id -> quantity on non-rejected return cases for this order."""
    rows = (
        db.session.query(ReturnLine.order_line_id, func.sum(ReturnLine.quantity_returned))
        .join(ReturnCase, ReturnLine.return_id == ReturnCase.id)
        .filter(
            ReturnCase.order_id == order_id,
            ReturnCase.status != ReturnStatus.REJECTED.value,
        )
        .group_by(ReturnLine.order_line_id)
        .all()
    )
    return {order_line_id: int(qty or 0) for order_line_id, qty in rows}


def _get_reason(index: int, code) -> ReturnReason:
    field = f"lines[{index}].reason_code"
    if not isinstance(code, str) or not code.strip():
        raise ValidationError(f"{field} is required", {"field": field})
    reason = db.session.query(ReturnReason).filter_by(code=code.strip().upper()).first()
    if not reason or not reason.is_active:
        raise ValidationError(f"Unknown return reason '{code}'", {"field": field, "value": code})
    return reason


def create_return(
    *,
    order_id,
    lines,
    requested_by,
    notes=None,
    internal_notes=None,
    return_number=None,
) -> ReturnCase:
    """
    Open a PENDING return case against a completed order.

    Args:
        order_id: Order the goods were sold on
        lines: [{order_line_id, quantity, reason_code, notes?}]
        requested_by: Who asked for the return
        return_number: Explicit number; allocated from the RET sequence when omitted

    Raises:
        NotFoundError: Order does not exist
        InvalidStateError: Order is not COMPLETED
        ValidationError: Bad lines, unknown reason, or quantity above what is left to return
        ConflictError: Explicit return_number already taken
    """
    order_id = require_positive_int("order_id", order_id)
    requester = require_text("requested_by", requested_by, max_length=200)
    note_text = optional_text("notes", notes)
    internal_text = optional_text("internal_notes", internal_notes)
    explicit_number = optional_text("return_number", return_number, max_length=50)
    items = require_list("lines", lines)
    if not items:
        raise ValidationError("Return must have at least one line", {"field": "lines"})

    def _op():
        order = get_order(order_id)
        if order.status != ORDER_STATUS_COMPLETED:
            raise InvalidStateError(order.status, "RETURN", entity="order")
        bump_version(order)

        order_lines = {ol.id: ol for ol in order.lines}
        already = _already_returned(order.id)
        requested: dict[int, int] = {}
        new_lines = []

        for index, raw in enumerate(items):
            item = require_object(f"lines[{index}]", raw)
            order_line_id = require_positive_int(f"lines[{index}].order_line_id", item.get("order_line_id"))
            order_line = order_lines.get(order_line_id)
            if order_line is None:
                raise ValidationError(
                    f"Order line {order_line_id} is not on order {order.order_number}",
                    {"field": f"lines[{index}].order_line_id", "value": order_line_id},
                )
            quantity = require_positive_int(f"lines[{index}].quantity", item.get("quantity"))
            reason = _get_reason(index, item.get("reason_code"))

            requested[order_line_id] = requested.get(order_line_id, 0) + quantity
            available = order_line.quantity - already.get(order_line_id, 0)
            if requested[order_line_id] > available:
                raise ValidationError(
                    f"Cannot return {requested[order_line_id]} of order line {order_line_id}; "
                    f"only {available} left to return",
                    {"field": f"lines[{index}].quantity", "available": available},
                )

            new_lines.append(ReturnLine(
                order_line_id=order_line.id,
                product_id=order_line.product_id,
                reason_id=reason.id,
                quantity_ordered=order_line.quantity,
                quantity_returned=quantity,
                quantity_accepted=0,
                quantity_rejected=0,
                condition=ProductCondition.UNKNOWN.value,
                unit_price_cents=order_line.unit_price_cents,
                line_total_cents=quantity * order_line.unit_price_cents,
                refund_amount_cents=0,
                notes=optional_text(f"lines[{index}].notes", item.get("notes")),
            ))

        is_full = all(
            already.get(ol.id, 0) + requested.get(ol.id, 0) >= ol.quantity
            for ol in order.lines
        )

        if explicit_number:
            number = claim_explicit_number(ReturnCase, "return_number", explicit_number)
        else:
            document_type, prefix = RETURN_CASE_SEQUENCE
            number = allocate_document_number(
                ReturnCase, "return_number", document_type=document_type, prefix=prefix
            )

        case = ReturnCase(
            return_number=number,
            order_id=order.id,
            customer_id=order.customer_id,
            status=ReturnStatus.PENDING.value,
            return_type=(ReturnType.FULL if is_full else ReturnType.PARTIAL).value,
            total_amount_cents=sum(line.line_total_cents for line in new_lines),
            refund_amount_cents=0,
            refund_status=RefundStatus.PENDING.value,
            notes=note_text,
            internal_notes=internal_text,
            requested_by=requester,
            created_at=utcnow(),
        )
        case.lines.extend(new_lines)
        db.session.add(case)
        flush_new_document(case, "return_number")

        _record(case, "RETURN_CREATED", requester)
        db.session.commit()

        current_app.logger.info(
            "Created return %s for order %s: %d lines, %d cents (%s)",
            case.return_number, order.order_number, len(new_lines),
            case.total_amount_cents, case.return_type,
        )
        return case

    return run_atomic(_op)


# =============================================================================
# APPROVAL WORKFLOW / CUSTODY
# =============================================================================

def _record(case: ReturnCase, event_type: str, actor: str | None, note: str | None = None):
    ledger_service.append_ledger_event(
        event_type=event_type,
        entity_type=ledger_service.ENTITY_RETURN,
        entity_id=case.id,
        customer_id=case.customer_id,
        actor=actor,
        note=note or case.return_number,
    )


def _load_for(return_id: int, action: ReturnAction) -> tuple[ReturnCase, ReturnStatus, str]:
    """Return case, target status, and the status it was read in."""
    case = get_return(return_id)
    target = next_return_status(case.status, action)
    return case, target, case.status


def approve_return(return_id: int, *, notes=None, approved_by=None) -> ReturnCase:
    """PENDING -> APPROVED. No financial side effect."""
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.APPROVE)
        note_text = optional_text("notes", notes)
        actor = optional_text("approved_by", approved_by, max_length=200)

        now = utcnow()
        days = current_app.config.get("RETURN_EXPECTED_DAYS", 7)
        values = {
            "status": target.value,
            "approved_at": now,
            "expected_date": now + timedelta(days=days),
        }
        if note_text:
            values["internal_notes"] = note_text
        compare_and_set(case, expected={"status": current}, values=values)
        _record(case, "RETURN_APPROVED", actor, note=note_text)

        db.session.commit()
        current_app.logger.info("Approved return %s", case.return_number)
        return case

    return run_atomic(_op)


def reject_return(return_id: int, *, reason, rejected_by=None) -> ReturnCase:
    """PENDING -> REJECTED (terminal). A reason is required."""
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.REJECT)
        reason_text = require_text("reason", reason)
        actor = optional_text("rejected_by", rejected_by, max_length=200)

        compare_and_set(
            case,
            expected={"status": current},
            values={
                "status": target.value,
                "rejection_reason": reason_text,
                "rejected_at": utcnow(),
            },
        )
        _record(case, "RETURN_REJECTED", actor, note=reason_text)

        db.session.commit()
        current_app.logger.info("Rejected return %s: %s", case.return_number, reason_text)
        return case

    return run_atomic(_op)


def mark_in_transit(return_id: int) -> ReturnCase:
    """APPROVED -> IN_TRANSIT: the customer has shipped the goods."""
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.SHIP)
        compare_and_set(case, expected={"status": current}, values={"status": target.value, "shipped_at": utcnow()})
        _record(case, "RETURN_SHIPPED", None)
        db.session.commit()
        current_app.logger.info("Return %s in transit", case.return_number)
        return case

    return run_atomic(_op)


def mark_received(return_id: int, *, received_by=None) -> ReturnCase:
    """APPROVED or IN_TRANSIT -> RECEIVED: goods are physically in the warehouse."""
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.RECEIVE)
        actor = optional_text("received_by", received_by, max_length=200)
        compare_and_set(case, expected={"status": current}, values={"status": target.value, "received_at": utcnow()})
        _record(case, "RETURN_RECEIVED", actor)
        db.session.commit()
        current_app.logger.info("Received return %s", case.return_number)
        return case

    return run_atomic(_op)


# =============================================================================
# INSPECTION
# =============================================================================

def _parse_inspections(case: ReturnCase, inspections) -> list[tuple[ReturnLine, int, int, ProductCondition, str | None]]:
    items = require_list("inspections", inspections)
    lines_by_id = {line.id: line for line in case.lines}
    parsed = []
    seen = set()

    for index, raw in enumerate(items):
        item = require_object(f"inspections[{index}]", raw)
        line_id = require_positive_int(f"inspections[{index}].line_id", item.get("line_id"))
        line = lines_by_id.get(line_id)
        if line is None:
            raise ValidationError(
                f"Line {line_id} is not on return {case.return_number}",
                {"field": f"inspections[{index}].line_id", "value": line_id},
            )
        if line_id in seen:
            raise ValidationError(
                f"Line {line_id} inspected twice",
                {"field": f"inspections[{index}].line_id", "value": line_id},
            )
        seen.add(line_id)

        accepted = require_non_negative_int(f"inspections[{index}].quantity_accepted", item.get("quantity_accepted"))
        rejected = require_non_negative_int(f"inspections[{index}].quantity_rejected", item.get("quantity_rejected"))
        if accepted + rejected != line.quantity_returned:
            raise ValidationError(
                f"Accepted ({accepted}) + rejected ({rejected}) must equal returned "
                f"({line.quantity_returned}) for line {line_id}",
                {
                    "field": f"inspections[{index}]",
                    "line_id": line_id,
                    "quantity_returned": line.quantity_returned,
                    "quantity_accepted": accepted,
                    "quantity_rejected": rejected,
                },
            )

        condition = require_enum(f"inspections[{index}].condition", item.get("condition"), ProductCondition)
        if condition == ProductCondition.UNKNOWN:
            raise ValidationError(
                f"inspections[{index}].condition must be assessed",
                {"field": f"inspections[{index}].condition"},
            )

        notes = optional_text(f"inspections[{index}].inspection_notes", item.get("inspection_notes"))
        parsed.append((line, accepted, rejected, condition, notes))

    missing = sorted(set(lines_by_id) - seen)
    if missing:
        raise ValidationError(
            f"Every line must be inspected; missing {missing}",
            {"field": "inspections", "missing_line_ids": missing},
        )
    return parsed


def is_restock_eligible(reason: ReturnReason, condition: ProductCondition, quantity_accepted: int) -> bool:
    return bool(reason.allows_restock) and condition in RESTOCKABLE_CONDITIONS and quantity_accepted > 0


def inspect_return(return_id: int, inspections, *, inspected_by=None) -> ReturnCase:
    """
    RECEIVED -> INSPECTED.

    Every line must be inspected exactly once with accepted + rejected equal to
    the returned quantity. The whole batch is validated before anything is
    written; any failure leaves the case RECEIVED and its lines untouched.

    Sets the draft refund to sum(accepted x unit price).
    """
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.INSPECT)
        actor = optional_text("inspected_by", inspected_by, max_length=200)
        parsed = _parse_inspections(case, inspections)

        draft_refund = sum(accepted * line.unit_price_cents for line, accepted, _, _, _ in parsed)

        compare_and_set(
            case,
            expected={"status": current},
            values={
                "status": target.value,
                "inspected_at": utcnow(),
                "refund_amount_cents": draft_refund,
            },
        )

        for line, accepted, rejected, condition, notes in parsed:
            line.quantity_accepted = accepted
            line.quantity_rejected = rejected
            line.condition = condition.value
            line.refund_amount_cents = accepted * line.unit_price_cents
            line.restock_eligible = is_restock_eligible(line.reason, condition, accepted)
            line.inspection_notes = notes

        _record(case, "RETURN_INSPECTED", actor, note=f"draft refund {draft_refund}")
        db.session.commit()
        current_app.logger.info(
            "Inspected return %s: draft refund %d cents", case.return_number, draft_refund
        )
        return case

    return run_atomic(_op)


# =============================================================================
# COMPLETION: RESTOCK / REFUND
# =============================================================================

def restock_return(return_id: int, *, restocked_by=None) -> ReturnCase:
    """
    Put eligible lines back on the shelf.

    INSPECTED -> COMPLETED, or on an already refunded COMPLETED case. Runs once
    per case; each eligible line writes one RETURN inventory movement.
    """
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.RESTOCK)
        if case.restocked_at is not None:
            raise InvalidStateError(current, ReturnAction.RESTOCK.value, entity="already restocked return")
        actor = optional_text("restocked_by", restocked_by, max_length=200)

        now = utcnow()
        eligible = [line for line in case.lines if line.restock_eligible and not line.restocked]
        compare_and_set(
            case,
            expected={"status": current, "restocked_at": None},
            values={
                "status": target.value,
                "restocked_at": now,
                "completed_at": case.completed_at or now,
            },
        )

        restocked_units = 0
        for line in eligible:
            inventory_service.restock_from_return(line, return_number=case.return_number)
            line.restocked = True
            line.restocked_at = now
            restocked_units += line.quantity_accepted

        _record(case, "RETURN_RESTOCKED", actor, note=f"{len(eligible)} lines, {restocked_units} units")
        db.session.commit()
        current_app.logger.info(
            "Restocked return %s: %d lines, %d units", case.return_number, len(eligible), restocked_units
        )
        return case

    return run_atomic(_op)


def process_refund(
    return_id: int,
    *,
    refund_method,
    amount_cents,
    reference=None,
    notes=None,
    processed_by=None,
) -> ReturnCase:
    """
    Pay out the refund for an inspected case.

    INSPECTED -> COMPLETED, or on an already restocked COMPLETED case. Completes
    once; the amount may not exceed the draft refund from inspection.
    """
    def _op():
        case, target, current = _load_for(return_id, ReturnAction.REFUND)
        if case.refund_status == RefundStatus.COMPLETED.value:
            raise InvalidStateError(case.refund_status, ReturnAction.REFUND.value, entity="refund")

        method = require_text("refund_method", refund_method, max_length=50)
        amount = require_amount_cents("amount_cents", amount_cents)
        if amount > case.refund_amount_cents:
            raise ValidationError(
                f"Refund {amount} exceeds the inspected amount {case.refund_amount_cents}",
                {"field": "amount_cents", "value": amount, "max": case.refund_amount_cents},
            )
        ref = optional_text("reference", reference, max_length=255)
        note_text = optional_text("notes", notes)
        actor = optional_text("processed_by", processed_by, max_length=200)

        now = utcnow()
        values = {
            "status": target.value,
            "refund_status": RefundStatus.COMPLETED.value,
            "refunded_amount_cents": amount,
            "refund_method": method,
            "refund_reference": ref,
            "refund_date": now,
            "completed_at": case.completed_at or now,
        }
        if note_text:
            values["notes"] = note_text
        compare_and_set(case, expected={"status": current, "refund_status": case.refund_status}, values=values)

        _record(case, "RETURN_REFUNDED", actor, note=f"{method} {amount}")
        db.session.commit()
        current_app.logger.info(
            "Refunded return %s: %d cents via %s", case.return_number, amount, method
        )
        return case

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> ReturnCase:
    case = db.session.get(ReturnCase, return_id)
    if not case:
        raise NotFoundError("Return", return_id)
    return case


def get_return_by_number(return_number: str) -> ReturnCase:
    number = normalize_code(return_number or "")
    case = db.session.query(ReturnCase).filter_by(return_number=number).first()
    if not case:
        raise NotFoundError("Return", number)
    return case


def list_returns(*, status=None, customer_id: int | None = None, page: int = 0, size: int = 20) -> dict:
    q = db.session.query(ReturnCase)
    if status is not None:
        q = q.filter(ReturnCase.status == require_enum("status", status, ReturnStatus).value)
    if customer_id is not None:
        q = q.filter(ReturnCase.customer_id == customer_id)
    q = q.order_by(ReturnCase.created_at.desc(), ReturnCase.id.desc())
    return paginate(q, page=page, size=size, serialize=lambda c: c.to_dict())


def list_return_reasons(active_only: bool = True) -> list[ReturnReason]:
    q = db.session.query(ReturnReason)
    if active_only:
        q = q.filter(ReturnReason.is_active.is_(True))
    return q.order_by(ReturnReason.code.asc()).all()
