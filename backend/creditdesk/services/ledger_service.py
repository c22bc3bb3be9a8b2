# Overview: Service-layer operations for the credit ledger; balance arithmetic and the audit log.

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy import case, func, update

from ..extensions import db
from ..errors import EmptyTransactionError, InvalidStateError, ValidationError
from ..models import CreditTransaction, Customer, LedgerEvent
from ..time_utils import utcnow
from .state_machines import (
    BALANCE_AFFECTING_STATUSES,
    TransactionStatus,
    TransactionType,
)
"""
Credit Ledger Invariants (authoritative)

- current_balance_cents == sum(CONFIRMED/INVOICED PICKUP totals)
                           - sum(CONFIRMED/INVOICED RETURN totals).
- PENDING and CANCELLED transactions never touch the balance.
- The balance is only moved by apply_confirmed / reverse_confirmed, always
  inside the same DB transaction as the status change that justifies it.
- Balance moves are SQL increments, so concurrent confirmations for the same
  customer never lose an update.
- The credit limit is advisory: exceeding it is a warning, never a block.
"""


ENTITY_CREDIT_TRANSACTION = "CREDIT_TRANSACTION"
ENTITY_RETURN = "RETURN"


# =============================================================================
# PURE ARITHMETIC
# =============================================================================

def signed_amount(transaction_type: str, total_amount_cents: int) -> int:
    """PICKUP adds to what the customer owes, RETURN subtracts."""
    if TransactionType(transaction_type) == TransactionType.PICKUP:
        return total_amount_cents
    return -total_amount_cents


def projected_balance(customer: Customer, transaction_type: str, total_amount_cents: int) -> int:
    """Balance the customer would have if this transaction were confirmed now."""
    return customer.current_balance_cents + signed_amount(transaction_type, total_amount_cents)


def is_over_limit(customer: Customer, projected_balance_cents: int) -> bool:
    """
    Strictly greater than the limit. A balance exactly at the limit is fine.

    Advisory only; callers must never evaluate it for RETURN transactions.
    """
    return projected_balance_cents > customer.credit_limit_cents


def compute_totals(lines: Iterable) -> tuple[int, int]:
    """
    (total_amount_cents, total_items) recomputed from quantity x unit price.

    Raises:
        EmptyTransactionError: If there are no lines
    """
    lines = list(lines)
    if not lines:
        raise EmptyTransactionError()
    total_amount = sum(line.quantity * line.unit_price_cents for line in lines)
    total_items = sum(line.quantity for line in lines)
    return total_amount, total_items


def assert_totals_consistent(transaction: CreditTransaction) -> None:
    """Stored totals must equal the totals recomputed from lines."""
    total_amount, total_items = compute_totals(transaction.lines)
    stored_line_totals = sum(line.line_total_cents for line in transaction.lines)
    if (
        total_amount != transaction.total_amount_cents
        or total_items != transaction.total_items
        or stored_line_totals != total_amount
    ):
        raise ValidationError(
            f"Transaction {transaction.transaction_number} totals disagree with its lines",
            details={
                "stored_total_amount_cents": transaction.total_amount_cents,
                "computed_total_amount_cents": total_amount,
                "stored_total_items": transaction.total_items,
                "computed_total_items": total_items,
            },
        )


def credit_check(customer: Customer, transaction_type: str, total_amount_cents: int) -> dict:
    """
    Credit warning shown before confirmation.

    RETURNs can only move the balance down, so the limit is not checked.
    """
    projected = projected_balance(customer, transaction_type, total_amount_cents)
    checked = TransactionType(transaction_type) == TransactionType.PICKUP
    return {
        "current_balance_cents": customer.current_balance_cents,
        "credit_limit_cents": customer.credit_limit_cents,
        "projected_balance_cents": projected,
        "limit_checked": checked,
        "is_over_limit": is_over_limit(customer, projected) if checked else False,
    }


def credit_summary(customer: Customer, warning_percent: int | None = None) -> dict:
    """
    Credit overview for balance widgets.

    utilization_level:
    - ok: below the warning threshold
    - warning: at or above the threshold (default 80%) but within the limit
    - over_limit: balance strictly above the limit
    """
    if warning_percent is None:
        warning_percent = current_app.config.get("CREDIT_WARNING_PERCENT", 80)

    limit = customer.credit_limit_cents
    balance = customer.current_balance_cents
    over = balance > limit

    if limit > 0:
        utilization = round(balance * 100 / limit, 1)
    else:
        utilization = None

    if over:
        level = "over_limit"
    elif limit > 0 and balance * 100 >= warning_percent * limit:
        level = "warning"
    else:
        level = "ok"

    return {
        "customer_id": customer.id,
        "customer_code": customer.code,
        "customer_name": customer.display_name,
        "credit_limit_cents": limit,
        "current_balance_cents": balance,
        "available_credit_cents": max(limit - balance, 0),
        "utilization_percent": utilization,
        "utilization_level": level,
        "is_over_limit": over,
    }


# =============================================================================
# BALANCE MUTATION
# =============================================================================

def apply_confirmed(customer: Customer, transaction: CreditTransaction, *, actor: str | None = None) -> Customer:
    """
    Move the balance by the transaction's signed amount.

    Only valid for a transaction that has just been flipped to CONFIRMED in
    the current DB transaction; the lifecycle guarantees a single CONFIRMED
    transition per transaction so this can never double-apply.
    """
    if transaction.status != TransactionStatus.CONFIRMED.value:
        raise InvalidStateError(transaction.status, "APPLY", entity="transaction")
    _require_same_customer(customer, transaction)
    assert_totals_consistent(transaction)

    delta = signed_amount(transaction.transaction_type, transaction.total_amount_cents)
    balance_after = _adjust_balance(customer, delta)

    append_ledger_event(
        event_type="BALANCE_APPLIED",
        entity_type=ENTITY_CREDIT_TRANSACTION,
        entity_id=transaction.id,
        customer_id=customer.id,
        amount_cents=delta,
        balance_after_cents=balance_after,
        actor=actor,
        note=transaction.transaction_number,
    )
    current_app.logger.info(
        "Balance applied for %s: %+d cents -> %d (customer %s)",
        transaction.transaction_number, delta, balance_after, customer.code,
    )
    return customer


def reverse_confirmed(
    customer: Customer,
    transaction: CreditTransaction,
    *,
    actor: str | None = None,
    note: str | None = None,
) -> Customer:
    """
    Invert a previously applied transaction (administrative correction).

    Called by the lifecycle while reversing a CONFIRMED transaction, after
    its status has been moved to CANCELLED with reversed_at stamped.
    """
    if transaction.reversed_at is None:
        raise InvalidStateError(transaction.status, "REVERSE_BALANCE", entity="transaction")
    _require_same_customer(customer, transaction)

    delta = -signed_amount(transaction.transaction_type, transaction.total_amount_cents)
    balance_after = _adjust_balance(customer, delta)

    append_ledger_event(
        event_type="BALANCE_REVERSED",
        entity_type=ENTITY_CREDIT_TRANSACTION,
        entity_id=transaction.id,
        customer_id=customer.id,
        amount_cents=delta,
        balance_after_cents=balance_after,
        actor=actor,
        note=note or transaction.transaction_number,
    )
    current_app.logger.info(
        "Balance reversed for %s: %+d cents -> %d (customer %s)",
        transaction.transaction_number, delta, balance_after, customer.code,
    )
    return customer


def _require_same_customer(customer: Customer, transaction: CreditTransaction) -> None:
    if transaction.customer_id != customer.id:
        raise ValidationError(
            f"Transaction {transaction.transaction_number} does not belong to customer {customer.code}",
            details={"field": "customer_id"},
        )


def _adjust_balance(customer: Customer, delta: int) -> int:
    stmt = (
        update(Customer)
        .where(Customer.id == customer.id)
        .values(
            current_balance_cents=Customer.current_balance_cents + delta,
            version_id=Customer.version_id + 1,
        )
        .execution_options(synchronize_session=False)
    )
    db.session.execute(stmt)
    db.session.expire(customer)
    return customer.current_balance_cents


# =============================================================================
# REPLAY / DRIFT
# =============================================================================

def replay_balance(customer_id: int) -> int:
    """Recompute a customer's balance from its confirmed/invoiced transactions."""
    signed = case(
        (CreditTransaction.transaction_type == TransactionType.PICKUP.value, CreditTransaction.total_amount_cents),
        else_=-CreditTransaction.total_amount_cents,
    )
    total = (
        db.session.query(func.coalesce(func.sum(signed), 0))
        .filter(
            CreditTransaction.customer_id == customer_id,
            CreditTransaction.status.in_([s.value for s in BALANCE_AFFECTING_STATUSES]),
        )
        .scalar()
    )
    return int(total or 0)


def find_balance_drift() -> list[dict]:
    """Customers whose stored balance disagrees with a replay of their transactions."""
    drift = []
    for customer in db.session.query(Customer).order_by(Customer.code).all():
        replayed = replay_balance(customer.id)
        if replayed != customer.current_balance_cents:
            drift.append({
                "customer_id": customer.id,
                "customer_code": customer.code,
                "stored_balance_cents": customer.current_balance_cents,
                "replayed_balance_cents": replayed,
                "drift_cents": customer.current_balance_cents - replayed,
            })
    return drift


def repair_balance_drift(actor: str = "system") -> list[dict]:
    """Reset drifting balances to their replayed value, logging each correction."""
    drift = find_balance_drift()
    for row in drift:
        customer = db.session.get(Customer, row["customer_id"])
        delta = row["replayed_balance_cents"] - row["stored_balance_cents"]
        balance_after = _adjust_balance(customer, delta)
        append_ledger_event(
            event_type="BALANCE_CORRECTED",
            entity_type="CUSTOMER",
            entity_id=customer.id,
            customer_id=customer.id,
            amount_cents=delta,
            balance_after_cents=balance_after,
            actor=actor,
            note="Reset to replayed balance",
        )
    db.session.commit()
    return drift


# =============================================================================
# AUDIT LOG
# =============================================================================

def append_ledger_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    customer_id: int | None = None,
    amount_cents: int | None = None,
    balance_after_cents: int | None = None,
    actor: str | None = None,
    note: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
) -> LedgerEvent:
    """
    Append-only ledger event.

    - No domain logic here.
    - No deletes/updates of existing events.
    - Never commits; the caller's transaction decides.
    """
    ev = LedgerEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        customer_id=customer_id,
        amount_cents=amount_cents,
        balance_after_cents=balance_after_cents,
        actor=actor,
        note=note,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_ledger_events(
    *,
    customer_id: int | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    limit: int = 100,
) -> list[LedgerEvent]:
    q = db.session.query(LedgerEvent)
    if customer_id is not None:
        q = q.filter(LedgerEvent.customer_id == customer_id)
    if entity_type is not None:
        q = q.filter(LedgerEvent.entity_type == entity_type)
    if entity_id is not None:
        q = q.filter(LedgerEvent.entity_id == entity_id)
    return q.order_by(LedgerEvent.id.desc()).limit(limit).all()
