# Overview: Service-layer operations for credit pickups and returns; lifecycle, numbering and queries.

# backend/creditdesk/services/credit_transaction_service.py
"""
Credit Transaction Lifecycle

WHY: Customers take goods on credit (PICKUP) and give goods back (RETURN).
Nothing touches the customer's balance until a person confirms the
transaction with a signature; that confirmation is the authorization gate,
not the credit limit.

DESIGN PRINCIPLES:
- Transactions are created PENDING with a non-empty, immutable line list
- Unit prices are snapshots of the product price at creation
- Totals are always recomputed from lines
- Every transition is a check-and-set on the current status, so a second
  confirm can never apply the ledger twice
- Status flip, balance increment and ledger event commit together or not at all
- The credit limit only produces a warning

LIFECYCLE:
1. create   -> PENDING
2. confirm  PENDING   -> CONFIRMED  (balance += signed total)
3. cancel   PENDING   -> CANCELLED  (balance untouched)
4. invoice  CONFIRMED -> INVOICED   (billing cycle, balance untouched)
5. reverse  CONFIRMED -> CANCELLED  (administrative correction, balance -= signed total)
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import (
    EmptyTransactionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from ..models import CreditTransaction, CreditTransactionLine, Customer, Product
from ..time_utils import month_bounds_utc, to_utc_z, utcnow
from ..validation import (
    coerce_int,
    normalize_code,
    optional_text,
    require_enum,
    require_list,
    require_object,
    require_positive_int,
    require_text,
)
from . import customer_service, ledger_service
from .concurrency import bump_version, compare_and_set, run_atomic
from .document_service import (
    PICKUP_SEQUENCE,
    RETURN_SEQUENCE,
    allocate_document_number,
    claim_explicit_number,
    flush_new_document,
)
from .pagination import paginate
from .state_machines import (
    BALANCE_AFFECTING_STATUSES,
    PerformedByRole,
    TransactionAction,
    TransactionStatus,
    TransactionType,
    next_transaction_status,
)


@dataclass
class ResolvedLine:
    """A requested line with its product looked up and price snapshotted."""

    product: Product
    quantity: int
    unit_price_cents: int
    notes: str | None = None

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents


# =============================================================================
# INPUT RESOLUTION
# =============================================================================

def _resolve_customer(*, customer_id=None, customer_code=None) -> Customer:
    if customer_code is not None:
        if not isinstance(customer_code, str) or not customer_code.strip():
            raise ValidationError("customer_code is required", {"field": "customer_code"})
        code = normalize_code(customer_code)
        customer = db.session.query(Customer).filter_by(code=code).first()
        if not customer:
            raise ValidationError(
                f"Unknown customer code '{code}'",
                {"field": "customer_code", "value": code},
            )
    elif customer_id is not None:
        customer = customer_service.get_customer(require_positive_int("customer_id", customer_id))
    else:
        raise ValidationError("customer_code or customer_id is required", {"field": "customer_code"})

    if not customer.is_active:
        raise ValidationError(
            f"Customer {customer.code} is inactive",
            {"field": "customer_code", "value": customer.code},
        )
    return customer


def _resolve_product(index: int, item: dict) -> Product:
    code = item.get("product_code")
    if code is not None:
        if not isinstance(code, str) or not code.strip():
            raise ValidationError(
                f"lines[{index}].product_code is required", {"field": f"lines[{index}].product_code"}
            )
        product = db.session.query(Product).filter_by(code=normalize_code(code)).first()
        field = f"lines[{index}].product_code"
        value = normalize_code(code)
    elif item.get("product_id") is not None:
        product_id = require_positive_int(f"lines[{index}].product_id", item.get("product_id"))
        product = db.session.get(Product, product_id)
        field = f"lines[{index}].product_id"
        value = product_id
    else:
        raise ValidationError(
            f"lines[{index}] needs product_code or product_id", {"field": f"lines[{index}].product_code"}
        )

    if not product:
        raise ValidationError(f"Unknown product '{value}'", {"field": field, "value": value})
    if not product.is_active:
        raise ValidationError(f"Product {product.code} is inactive", {"field": field, "value": value})
    return product


def resolve_lines(lines) -> list[ResolvedLine]:
    """
    Validate requested lines and snapshot current product prices.

    Raises:
        EmptyTransactionError: If no lines were given
        ValidationError: On bad quantities or unresolvable products
    """
    items = require_list("lines", lines)
    if not items:
        raise EmptyTransactionError()

    resolved = []
    for index, raw in enumerate(items):
        item = require_object(f"lines[{index}]", raw)
        product = _resolve_product(index, item)
        quantity = require_positive_int(f"lines[{index}].quantity", item.get("quantity"))
        resolved.append(ResolvedLine(
            product=product,
            quantity=quantity,
            unit_price_cents=product.base_price_cents,
            notes=optional_text(f"lines[{index}].notes", item.get("notes")),
        ))
    return resolved


def preview_transaction(*, transaction_type, lines, customer_id=None, customer_code=None) -> dict:
    """
    Credit projection for a transaction that has not been created yet.

    Read-only: nothing is added to the session.
    """
    txn_type = require_enum("transaction_type", transaction_type, TransactionType)
    customer = _resolve_customer(customer_id=customer_id, customer_code=customer_code)
    resolved = resolve_lines(lines)
    total_amount, total_items = ledger_service.compute_totals(resolved)
    check = ledger_service.credit_check(customer, txn_type.value, total_amount)
    check.update({
        "customer_id": customer.id,
        "transaction_type": txn_type.value,
        "total_amount_cents": total_amount,
        "total_items": total_items,
    })
    return check


# =============================================================================
# CREATION
# =============================================================================

def _sequence_for(txn_type: TransactionType) -> tuple[str, str]:
    return PICKUP_SEQUENCE if txn_type == TransactionType.PICKUP else RETURN_SEQUENCE


def _create(
    *,
    customer: Customer,
    txn_type: TransactionType,
    resolved: list[ResolvedLine],
    performed_by: str,
    role: PerformedByRole,
    notes: str | None,
    original_transaction_number: str | None,
    transaction_number: str | None,
) -> tuple[CreditTransaction, dict]:
    if transaction_number:
        number = claim_explicit_number(CreditTransaction, "transaction_number", transaction_number)
    else:
        document_type, prefix = _sequence_for(txn_type)
        number = allocate_document_number(
            CreditTransaction, "transaction_number", document_type=document_type, prefix=prefix
        )

    txn = CreditTransaction(
        transaction_number=number,
        customer_id=customer.id,
        transaction_type=txn_type.value,
        status=TransactionStatus.PENDING.value,
        performed_by=performed_by,
        performed_by_role=role.value,
        original_transaction_number=original_transaction_number,
        notes=notes,
        created_at=utcnow(),
    )
    for r in resolved:
        txn.lines.append(CreditTransactionLine(
            product_id=r.product.id,
            product_code=r.product.code,
            product_name=r.product.name,
            quantity=r.quantity,
            unit_price_cents=r.unit_price_cents,
            line_total_cents=r.line_total_cents,
            notes=r.notes,
        ))
    txn.recalculate_totals()

    db.session.add(txn)
    flush_new_document(txn, "transaction_number")
    ledger_service.assert_totals_consistent(txn)

    ledger_service.append_ledger_event(
        event_type="TRANSACTION_CREATED",
        entity_type=ledger_service.ENTITY_CREDIT_TRANSACTION,
        entity_id=txn.id,
        customer_id=customer.id,
        actor=performed_by,
        note=txn.transaction_number,
    )

    credit = ledger_service.credit_check(customer, txn_type.value, txn.total_amount_cents)
    db.session.commit()

    current_app.logger.info(
        "Created %s %s for customer %s: %d cents, %d items",
        txn.transaction_type, txn.transaction_number, customer.code,
        txn.total_amount_cents, txn.total_items,
    )
    if credit["is_over_limit"]:
        current_app.logger.warning(
            "%s would put customer %s over credit limit: projected %d > limit %d",
            txn.transaction_number, customer.code,
            credit["projected_balance_cents"], credit["credit_limit_cents"],
        )
    return txn, credit


def create_transaction(
    *,
    transaction_type,
    lines,
    performed_by,
    performed_by_role,
    customer_id=None,
    customer_code=None,
    notes=None,
    original_transaction_number=None,
    transaction_number=None,
) -> tuple[CreditTransaction, dict]:
    """
    Create a PENDING pickup or return.

    Returns the transaction and the credit check. A pickup that would exceed
    the credit limit is still created; `is_over_limit` tells the caller to
    warn. Returns never check the limit.

    Raises:
        ValidationError: Empty lines, bad quantity, blank performed_by,
            unknown type/role, unresolvable customer or product
        ConflictError: Explicit transaction_number already taken
    """
    txn_type = require_enum("transaction_type", transaction_type, TransactionType)
    role = require_enum("performed_by_role", performed_by_role, PerformedByRole)
    actor = require_text("performed_by", performed_by, max_length=200)
    note_text = optional_text("notes", notes)
    original_number = optional_text("original_transaction_number", original_transaction_number, max_length=50)
    explicit_number = optional_text("transaction_number", transaction_number, max_length=50)

    def _op():
        customer = _resolve_customer(customer_id=customer_id, customer_code=customer_code)
        resolved = resolve_lines(lines)
        return _create(
            customer=customer,
            txn_type=txn_type,
            resolved=resolved,
            performed_by=actor,
            role=role,
            notes=note_text,
            original_transaction_number=original_number,
            transaction_number=explicit_number,
        )

    return run_atomic(_op)


def create_quick_pickup(*, customer_code, items, performed_by, performed_by_role, notes=None):
    """Code-based shortcut used at the counter: customer code plus product codes."""
    return create_transaction(
        transaction_type=TransactionType.PICKUP,
        customer_code=customer_code,
        lines=items,
        performed_by=performed_by,
        performed_by_role=performed_by_role,
        notes=notes,
    )


def _returned_quantities(pickup: CreditTransaction) -> dict[int, int]:
    """product_id -> quantity already returned against this pickup (non-cancelled returns)."""
    rows = (
        db.session.query(CreditTransactionLine.product_id, func.sum(CreditTransactionLine.quantity))
        .join(CreditTransaction, CreditTransactionLine.transaction_id == CreditTransaction.id)
        .filter(
            CreditTransaction.original_transaction_number == pickup.transaction_number,
            CreditTransaction.transaction_type == TransactionType.RETURN.value,
            CreditTransaction.status != TransactionStatus.CANCELLED.value,
        )
        .group_by(CreditTransactionLine.product_id)
        .all()
    )
    return {product_id: int(qty or 0) for product_id, qty in rows}


def create_return_from_pickup(*, pickup_id, lines, performed_by, performed_by_role, notes=None):
    """
    Give back goods from a confirmed pickup.

    Produces an independent RETURN linked by original_transaction_number; the
    pickup itself is never modified. Returned unit prices are the pickup's
    snapshot prices, and per product the total returned across non-cancelled
    returns may not exceed what was picked up.
    """
    role = require_enum("performed_by_role", performed_by_role, PerformedByRole)
    actor = require_text("performed_by", performed_by, max_length=200)
    note_text = optional_text("notes", notes)

    def _op():
        pickup = get_transaction(pickup_id)
        if pickup.transaction_type != TransactionType.PICKUP.value:
            raise ValidationError(
                f"{pickup.transaction_number} is not a pickup",
                {"field": "pickup_id", "value": pickup.id},
            )
        if TransactionStatus(pickup.status) not in BALANCE_AFFECTING_STATUSES:
            raise InvalidStateError(pickup.status, "RETURN", entity="transaction")
        bump_version(pickup)

        picked: dict[int, int] = {}
        picked_price: dict[int, int] = {}
        for line in pickup.lines:
            picked[line.product_id] = picked.get(line.product_id, 0) + line.quantity
            picked_price.setdefault(line.product_id, line.unit_price_cents)

        already = _returned_quantities(pickup)
        resolved = resolve_lines(lines)

        requested: dict[int, int] = {}
        for index, r in enumerate(resolved):
            if r.product.id not in picked:
                raise ValidationError(
                    f"Product {r.product.code} is not on {pickup.transaction_number}",
                    {"field": f"lines[{index}].product_code", "value": r.product.code},
                )
            requested[r.product.id] = requested.get(r.product.id, 0) + r.quantity
            available = picked[r.product.id] - already.get(r.product.id, 0)
            if requested[r.product.id] > available:
                raise ValidationError(
                    f"Cannot return {requested[r.product.id]} of {r.product.code}; "
                    f"only {available} left to return from {pickup.transaction_number}",
                    {"field": f"lines[{index}].quantity", "available": available},
                )
            r.unit_price_cents = picked_price[r.product.id]

        return _create(
            customer=pickup.customer,
            txn_type=TransactionType.RETURN,
            resolved=resolved,
            performed_by=actor,
            role=role,
            notes=note_text or f"Return from {pickup.transaction_number}",
            original_transaction_number=pickup.transaction_number,
            transaction_number=None,
        )

    return run_atomic(_op)


# =============================================================================
# TRANSITIONS
# =============================================================================

def _record_transition(txn: CreditTransaction, event_type: str, actor: str | None, note: str | None = None):
    ledger_service.append_ledger_event(
        event_type=event_type,
        entity_type=ledger_service.ENTITY_CREDIT_TRANSACTION,
        entity_id=txn.id,
        customer_id=txn.customer_id,
        actor=actor,
        note=note or txn.transaction_number,
    )


def confirm_transaction(transaction_id: int, *, confirmed_by, signature_data, photo_data=None, notes=None) -> CreditTransaction:
    """
    PENDING -> CONFIRMED, applying the signed total to the customer's balance.

    Raises:
        InvalidStateError: Transaction is not PENDING (double confirm included)
        ValidationError: Missing confirmed_by or signature
        ConflictError: Another writer changed the status first
    """
    def _op():
        txn = get_transaction(transaction_id)
        target = next_transaction_status(txn.status, TransactionAction.CONFIRM)

        confirmer = require_text("confirmed_by", confirmed_by, max_length=200)
        signature = require_text("signature_data", signature_data, max_length=None)
        photo = optional_text("photo_data", photo_data, max_length=None)
        note_text = optional_text("notes", notes)

        ledger_service.assert_totals_consistent(txn)

        now = utcnow()
        values = {
            "status": target.value,
            "confirmed_by": confirmer,
            "confirmed_at": now,
            "signature_data": signature,
            "photo_data": photo,
            "updated_at": now,
        }
        if note_text:
            values["notes"] = note_text
        compare_and_set(txn, expected={"status": TransactionStatus.PENDING.value}, values=values)

        customer = customer_service.get_customer(txn.customer_id)
        ledger_service.apply_confirmed(customer, txn, actor=confirmer)
        _record_transition(txn, "TRANSACTION_CONFIRMED", confirmer)

        db.session.commit()
        current_app.logger.info("Confirmed %s by %s", txn.transaction_number, confirmer)
        return txn

    return run_atomic(_op)


def cancel_transaction(transaction_id: int, *, reason, cancelled_by=None) -> CreditTransaction:
    """PENDING -> CANCELLED. The balance is never touched."""
    def _op():
        txn = get_transaction(transaction_id)
        target = next_transaction_status(txn.status, TransactionAction.CANCEL)
        reason_text = require_text("reason", reason)
        actor = optional_text("cancelled_by", cancelled_by, max_length=200)

        now = utcnow()
        compare_and_set(
            txn,
            expected={"status": TransactionStatus.PENDING.value},
            values={
                "status": target.value,
                "cancellation_reason": reason_text,
                "cancelled_by": actor,
                "cancelled_at": now,
                "updated_at": now,
            },
        )
        _record_transition(txn, "TRANSACTION_CANCELLED", actor, note=reason_text)

        db.session.commit()
        current_app.logger.info("Cancelled %s: %s", txn.transaction_number, reason_text)
        return txn

    return run_atomic(_op)


def mark_invoiced(transaction_ids, *, invoice_reference) -> list[CreditTransaction]:
    """
    CONFIRMED -> INVOICED for a billing cycle.

    All-or-nothing: one transaction in the wrong state rejects the batch.
    """
    ids = require_list("transaction_ids", transaction_ids)
    if not ids:
        raise ValidationError("transaction_ids must not be empty", {"field": "transaction_ids"})
    ids = list(dict.fromkeys(coerce_int("transaction_ids", i) for i in ids))
    reference = require_text("invoice_reference", invoice_reference, max_length=100)

    def _op():
        now = utcnow()
        invoiced = []
        for transaction_id in ids:
            txn = get_transaction(transaction_id)
            target = next_transaction_status(txn.status, TransactionAction.INVOICE)
            compare_and_set(
                txn,
                expected={"status": TransactionStatus.CONFIRMED.value},
                values={
                    "status": target.value,
                    "invoiced_at": now,
                    "invoice_reference": reference,
                    "updated_at": now,
                },
            )
            _record_transition(txn, "TRANSACTION_INVOICED", None, note=reference)
            invoiced.append(txn)

        db.session.commit()
        current_app.logger.info("Invoiced %d transactions under %s", len(invoiced), reference)
        return invoiced

    return run_atomic(_op)


def reverse_transaction(transaction_id: int, *, reason, reversed_by) -> CreditTransaction:
    """
    Administrative correction: CONFIRMED -> CANCELLED with the balance effect inverted.

    Invoiced transactions are already billed and cannot be reversed here.
    """
    def _op():
        txn = get_transaction(transaction_id)
        target = next_transaction_status(txn.status, TransactionAction.REVERSE)
        reason_text = require_text("reason", reason)
        actor = require_text("reversed_by", reversed_by, max_length=200)

        now = utcnow()
        compare_and_set(
            txn,
            expected={"status": TransactionStatus.CONFIRMED.value},
            values={
                "status": target.value,
                "reversed_at": now,
                "reversed_by": actor,
                "reversal_reason": reason_text,
                "cancellation_reason": reason_text,
                "cancelled_by": actor,
                "cancelled_at": now,
                "updated_at": now,
            },
        )
        customer = customer_service.get_customer(txn.customer_id)
        ledger_service.reverse_confirmed(customer, txn, actor=actor, note=reason_text)
        _record_transition(txn, "TRANSACTION_REVERSED", actor, note=reason_text)

        db.session.commit()
        current_app.logger.info("Reversed %s by %s: %s", txn.transaction_number, actor, reason_text)
        return txn

    return run_atomic(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_transaction(transaction_id: int) -> CreditTransaction:
    txn = db.session.get(CreditTransaction, transaction_id)
    if not txn:
        raise NotFoundError("Transaction", transaction_id)
    return txn


def get_transaction_by_number(transaction_number: str) -> CreditTransaction:
    number = normalize_code(transaction_number or "")
    txn = db.session.query(CreditTransaction).filter_by(transaction_number=number).first()
    if not txn:
        raise NotFoundError("Transaction", number)
    return txn


def _newest_first(query):
    return query.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())


def list_transactions(
    *,
    customer_id: int | None = None,
    status=None,
    transaction_type=None,
    date_from=None,
    date_to=None,
    page: int = 0,
    size: int = 20,
) -> dict:
    """Filtered, newest-first page of transaction summaries. date_to is exclusive."""
    q = db.session.query(CreditTransaction)
    if customer_id is not None:
        q = q.filter(CreditTransaction.customer_id == customer_id)
    if status is not None:
        q = q.filter(CreditTransaction.status == require_enum("status", status, TransactionStatus).value)
    if transaction_type is not None:
        q = q.filter(
            CreditTransaction.transaction_type
            == require_enum("transaction_type", transaction_type, TransactionType).value
        )
    if date_from is not None:
        q = q.filter(CreditTransaction.created_at >= date_from)
    if date_to is not None:
        q = q.filter(CreditTransaction.created_at < date_to)
    return paginate(_newest_first(q), page=page, size=size, serialize=lambda t: t.to_summary_dict())


def search_transactions(q: str, *, page: int = 0, size: int = 20) -> dict:
    """Match by transaction number, customer code or customer name."""
    term = require_text("q", q, max_length=100)
    pattern = f"%{term.lower()}%"
    query = db.session.query(CreditTransaction).filter(
        func.lower(CreditTransaction.transaction_number).like(pattern)
        | CreditTransaction.customer_id.in_(customer_service.find_customer_ids_matching(term))
    )
    return paginate(_newest_first(query), page=page, size=size, serialize=lambda t: t.to_summary_dict())


def get_recent_customer_transactions(customer_id: int, limit: int = 10) -> list[CreditTransaction]:
    customer_service.get_customer(customer_id)
    q = db.session.query(CreditTransaction).filter(CreditTransaction.customer_id == customer_id)
    return _newest_first(q).limit(limit).all()


def get_pending_customer_transactions(customer_id: int) -> list[CreditTransaction]:
    customer_service.get_customer(customer_id)
    return (
        db.session.query(CreditTransaction)
        .filter(
            CreditTransaction.customer_id == customer_id,
            CreditTransaction.status == TransactionStatus.PENDING.value,
        )
        .order_by(CreditTransaction.created_at.asc(), CreditTransaction.id.asc())
        .all()
    )


def get_monthly_statement(customer_id: int, year: int, month: int) -> dict:
    """
    Confirmed and invoiced transactions created within a calendar month.

    Month boundaries are local midnight in STATEMENT_TIMEZONE.
    """
    customer = customer_service.get_customer(customer_id)
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12", {"field": "month", "value": month})
    if not 1900 <= year <= 9999:
        raise ValidationError("year is out of range", {"field": "year", "value": year})

    tz_name = current_app.config.get("STATEMENT_TIMEZONE", "UTC")
    start, end = month_bounds_utc(year, month, tz_name)

    transactions = (
        db.session.query(CreditTransaction)
        .filter(
            CreditTransaction.customer_id == customer_id,
            CreditTransaction.status.in_([s.value for s in BALANCE_AFFECTING_STATUSES]),
            CreditTransaction.created_at >= start,
            CreditTransaction.created_at < end,
        )
        .order_by(CreditTransaction.created_at.asc(), CreditTransaction.id.asc())
        .all()
    )

    pickups = sum(t.total_amount_cents for t in transactions if t.transaction_type == TransactionType.PICKUP.value)
    returns = sum(t.total_amount_cents for t in transactions if t.transaction_type == TransactionType.RETURN.value)

    return {
        "customer": customer.to_dict(),
        "year": year,
        "month": month,
        "timezone": tz_name,
        "period_start": to_utc_z(start),
        "period_end": to_utc_z(end),
        "transactions": [t.to_dict() for t in transactions],
        "pickup_total_cents": pickups,
        "return_total_cents": returns,
        "net_change_cents": pickups - returns,
    }


def get_frequent_products(customer_id: int, limit: int = 10) -> list[dict]:
    """Products this customer picks up most, from confirmed and invoiced pickups."""
    customer_service.get_customer(customer_id)
    total_qty = func.sum(CreditTransactionLine.quantity).label("total_quantity")
    rows = (
        db.session.query(
            CreditTransactionLine.product_id,
            CreditTransactionLine.product_code,
            CreditTransactionLine.product_name,
            total_qty,
            func.count(func.distinct(CreditTransaction.id)).label("pickup_count"),
        )
        .join(CreditTransaction, CreditTransactionLine.transaction_id == CreditTransaction.id)
        .filter(
            CreditTransaction.customer_id == customer_id,
            CreditTransaction.transaction_type == TransactionType.PICKUP.value,
            CreditTransaction.status.in_([s.value for s in BALANCE_AFFECTING_STATUSES]),
        )
        .group_by(
            CreditTransactionLine.product_id,
            CreditTransactionLine.product_code,
            CreditTransactionLine.product_name,
        )
        .order_by(total_qty.desc(), CreditTransactionLine.product_code.asc())
        .limit(limit)
        .all()
    )
    return [
        {
            "product_id": row.product_id,
            "product_code": row.product_code,
            "product_name": row.product_name,
            "total_quantity": int(row.total_quantity or 0),
            "pickup_count": int(row.pickup_count or 0),
        }
        for row in rows
    ]
