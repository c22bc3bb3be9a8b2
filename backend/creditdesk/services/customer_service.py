# Overview: Service-layer operations for customers and product lookups.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_, select

from ..extensions import db
from ..errors import InvalidStateError, NotFoundError, ValidationError
from ..models import Customer
from ..validation import normalize_code
from . import ledger_service


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if not customer:
        raise NotFoundError("Customer", customer_id)
    return customer


def get_customer_by_code(code: str) -> Customer:
    if not code or not code.strip():
        raise ValidationError("customer_code is required", {"field": "customer_code"})
    customer = db.session.query(Customer).filter_by(code=normalize_code(code)).first()
    if not customer:
        raise NotFoundError("Customer", normalize_code(code))
    return customer


def find_customer_ids_matching(q: str):
    """SELECT of customer ids whose code or name contains q (case-insensitive)."""
    pattern = f"%{q.strip().lower()}%"
    return select(Customer.id).where(
        or_(
            func.lower(Customer.code).like(pattern),
            func.lower(Customer.company_name).like(pattern),
            func.lower(Customer.first_name).like(pattern),
            func.lower(Customer.last_name).like(pattern),
        )
    )


def deactivate_customer(customer_id: int) -> Customer:
    """
    Deactivate a customer. Customers are never deleted.

    Existing transactions are untouched; new ones can no longer be opened.
    """
    customer = get_customer(customer_id)
    if not customer.is_active:
        raise InvalidStateError("INACTIVE", "DEACTIVATE", entity="customer")
    customer.is_active = False
    customer.version_id = customer.version_id + 1
    ledger_service.append_ledger_event(
        event_type="CUSTOMER_DEACTIVATED",
        entity_type="CUSTOMER",
        entity_id=customer.id,
        customer_id=customer.id,
        balance_after_cents=customer.current_balance_cents,
    )
    db.session.commit()
    current_app.logger.info("Customer %s deactivated", customer.code)
    return customer


def get_top_balances(limit: int = 10) -> dict:
    """
    Customers owing the most, with their credit summaries.

    Also reports how many active customers are currently over their limit.
    """
    customers = (
        db.session.query(Customer)
        .filter(Customer.is_active.is_(True), Customer.current_balance_cents > 0)
        .order_by(Customer.current_balance_cents.desc(), Customer.id.asc())
        .limit(limit)
        .all()
    )
    over_limit_count = (
        db.session.query(func.count(Customer.id))
        .filter(
            Customer.is_active.is_(True),
            Customer.current_balance_cents > Customer.credit_limit_cents,
        )
        .scalar()
    )
    return {
        "customers": [ledger_service.credit_summary(c) for c in customers],
        "over_limit_count": int(over_limit_count or 0),
    }
