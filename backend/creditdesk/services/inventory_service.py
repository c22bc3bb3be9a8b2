# Overview: Service-layer operations for warehouse stock movements caused by returns.

from __future__ import annotations

from datetime import datetime

from sqlalchemy import func

from ..extensions import db
from ..models import InventoryTransaction, ReturnLine
from ..time_utils import utcnow
"""
Inventory Invariants (authoritative)

- Inventory is ledger-derived from InventoryTransaction rows; never stored as a
  mutable quantity field.
- Quantity on hand is SUM(quantity_delta) over movements (optionally as-of,
  inclusive: occurred_at <= as_of).
- A restocked return line writes exactly one RETURN movement; the line's
  `restocked` flag guards against writing it twice.
- Movements are appended inside the caller's DB transaction and never
  committed here.
"""


def get_quantity_on_hand(product_id: int, as_of: datetime | None = None) -> int:
    q = db.session.query(
        func.coalesce(func.sum(InventoryTransaction.quantity_delta), 0)
    ).filter(InventoryTransaction.product_id == product_id)
    if as_of is not None:
        q = q.filter(InventoryTransaction.occurred_at <= as_of)
    return int(q.scalar() or 0)


def restock_from_return(line: ReturnLine, *, return_number: str) -> InventoryTransaction:
    """
    Put the accepted quantity of an inspected return line back on the shelf.

    Caller is responsible for checking eligibility and committing.
    """
    tx = InventoryTransaction(
        product_id=line.product_id,
        type="RETURN",
        quantity_delta=line.quantity_accepted,
        return_line_id=line.id,
        note=f"Restock from {return_number}",
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    db.session.flush()
    return tx


def list_inventory_transactions(*, product_id: int, limit: int = 200) -> list[InventoryTransaction]:
    return (
        InventoryTransaction.query.filter_by(product_id=product_id)
        .order_by(
            InventoryTransaction.occurred_at.desc(),
            InventoryTransaction.id.desc(),
        )
        .limit(limit)
        .all()
    )
