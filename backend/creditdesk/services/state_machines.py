"""
Credit transaction and return case state machines.

================================================================================
Closed status enums with total transition tables.
================================================================================

Every (status, action) pair not listed in a table is illegal. Callers never
compare status strings directly; they ask `next_*_status()` for the target
state, which raises InvalidStateError naming the current state and the
attempted action.

CREDIT TRANSACTION:
    PENDING   --CONFIRM--> CONFIRMED --INVOICE--> INVOICED
    PENDING   --CANCEL---> CANCELLED
    CONFIRMED --REVERSE--> CANCELLED   (admin correction only)

RETURN CASE:
    PENDING    --APPROVE--> APPROVED --SHIP--> IN_TRANSIT --RECEIVE--> RECEIVED
    APPROVED   --RECEIVE--> RECEIVED
    RECEIVED   --INSPECT--> INSPECTED
    INSPECTED  --RESTOCK--> COMPLETED
    INSPECTED  --REFUND---> COMPLETED
    COMPLETED  --REFUND---> COMPLETED  (refund after restock, guarded by refund_status)
    COMPLETED  --RESTOCK--> COMPLETED  (restock after refund, guarded by restocked_at)
    PENDING    --REJECT---> REJECTED
================================================================================
"""

from __future__ import annotations

from enum import Enum

from ..errors import InvalidStateError


class TransactionType(str, Enum):
    PICKUP = "PICKUP"
    RETURN = "RETURN"


class TransactionStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    INVOICED = "INVOICED"
    CANCELLED = "CANCELLED"


class TransactionAction(str, Enum):
    CONFIRM = "CONFIRM"
    CANCEL = "CANCEL"
    INVOICE = "INVOICE"
    REVERSE = "REVERSE"


class PerformedByRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    EMPLOYEE = "EMPLOYEE"
    ADMINISTRATOR = "ADMINISTRATOR"


# Statuses whose amounts are reflected in the customer's balance
BALANCE_AFFECTING_STATUSES = (TransactionStatus.CONFIRMED, TransactionStatus.INVOICED)


TRANSACTION_TRANSITIONS: dict[tuple[TransactionStatus, TransactionAction], TransactionStatus] = {
    (TransactionStatus.PENDING, TransactionAction.CONFIRM): TransactionStatus.CONFIRMED,
    (TransactionStatus.PENDING, TransactionAction.CANCEL): TransactionStatus.CANCELLED,
    (TransactionStatus.CONFIRMED, TransactionAction.INVOICE): TransactionStatus.INVOICED,
    (TransactionStatus.CONFIRMED, TransactionAction.REVERSE): TransactionStatus.CANCELLED,
}


class ReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    IN_TRANSIT = "IN_TRANSIT"
    RECEIVED = "RECEIVED"
    INSPECTED = "INSPECTED"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


class ReturnAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SHIP = "SHIP"
    RECEIVE = "RECEIVE"
    INSPECT = "INSPECT"
    RESTOCK = "RESTOCK"
    REFUND = "REFUND"


class ReturnType(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class ProductCondition(str, Enum):
    UNKNOWN = "UNKNOWN"
    PERFECT = "PERFECT"
    GOOD = "GOOD"
    DAMAGED = "DAMAGED"
    DEFECTIVE = "DEFECTIVE"
    MISSING_PARTS = "MISSING_PARTS"


RESTOCKABLE_CONDITIONS = frozenset({ProductCondition.PERFECT, ProductCondition.GOOD})


class RefundStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


RETURN_TRANSITIONS: dict[tuple[ReturnStatus, ReturnAction], ReturnStatus] = {
    (ReturnStatus.PENDING, ReturnAction.APPROVE): ReturnStatus.APPROVED,
    (ReturnStatus.PENDING, ReturnAction.REJECT): ReturnStatus.REJECTED,
    (ReturnStatus.APPROVED, ReturnAction.SHIP): ReturnStatus.IN_TRANSIT,
    (ReturnStatus.APPROVED, ReturnAction.RECEIVE): ReturnStatus.RECEIVED,
    (ReturnStatus.IN_TRANSIT, ReturnAction.RECEIVE): ReturnStatus.RECEIVED,
    (ReturnStatus.RECEIVED, ReturnAction.INSPECT): ReturnStatus.INSPECTED,
    (ReturnStatus.INSPECTED, ReturnAction.RESTOCK): ReturnStatus.COMPLETED,
    (ReturnStatus.INSPECTED, ReturnAction.REFUND): ReturnStatus.COMPLETED,
    (ReturnStatus.COMPLETED, ReturnAction.REFUND): ReturnStatus.COMPLETED,
    (ReturnStatus.COMPLETED, ReturnAction.RESTOCK): ReturnStatus.COMPLETED,
}


def next_transaction_status(current: str | TransactionStatus, action: TransactionAction) -> TransactionStatus:
    status = TransactionStatus(current)
    target = TRANSACTION_TRANSITIONS.get((status, action))
    if target is None:
        raise InvalidStateError(status.value, action.value, entity="transaction")
    return target


def allowed_transaction_actions(current: str | TransactionStatus) -> list[TransactionAction]:
    status = TransactionStatus(current)
    return [action for (state, action) in TRANSACTION_TRANSITIONS if state == status]


def next_return_status(current: str | ReturnStatus, action: ReturnAction) -> ReturnStatus:
    status = ReturnStatus(current)
    target = RETURN_TRANSITIONS.get((status, action))
    if target is None:
        raise InvalidStateError(status.value, action.value, entity="return")
    return target


def allowed_return_actions(current: str | ReturnStatus) -> list[ReturnAction]:
    status = ReturnStatus(current)
    return [action for (state, action) in RETURN_TRANSITIONS if state == status]
