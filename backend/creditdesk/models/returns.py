from __future__ import annotations

from ..extensions import db
from ..services.state_machines import RefundStatus, ReturnAction, allowed_return_actions
from ..time_utils import to_utc_z


class Order(db.Model):
    """
    Originating sales order for a return case.

    Orders are provisioned by the ordering system; this service only reads
    them to validate returned quantities and snapshot unit prices.
    """
    __tablename__ = "orders"
    __table_args__ = (
        db.UniqueConstraint("order_number", name="uq_orders_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(50), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    # Bumped whenever a return case is opened against the order
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    lines = db.relationship("OrderLine", back_populates="order", order_by="OrderLine.id", lazy=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_number": self.order_number,
            "customer_id": self.customer_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class OrderLine(db.Model):
    __tablename__ = "order_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    order = db.relationship("Order", back_populates="lines")
    product = db.relationship("Product")


class ReturnReason(db.Model):
    """
    Why goods come back. The reason decides whether an accepted line may be
    put back on the shelf at all.
    """
    __tablename__ = "return_reasons"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_return_reasons_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(50), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    requires_inspection = db.Column(db.Boolean, nullable=False, default=False)
    allows_restock = db.Column(db.Boolean, nullable=False, default=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "name": self.name,
            "description": self.description,
            "requires_inspection": self.requires_inspection,
            "allows_restock": self.allows_restock,
            "is_active": self.is_active,
        }


class ReturnCase(db.Model):
    """
    Full warehouse return of goods from a completed order.

    WHY: Separate from credit returns. Goods travel back, are inspected line
    by line, and only accepted quantities are refunded or restocked.

    LIFECYCLE:
    1. PENDING: Requested, awaiting approval
    2. APPROVED: Approved, goods expected within RETURN_EXPECTED_DAYS
    3. IN_TRANSIT: Shipped back by the customer (optional)
    4. RECEIVED: Physically in the warehouse
    5. INSPECTED: Every line counted as accepted/rejected, draft refund known
    6. COMPLETED: Restocked and/or refunded
    7. REJECTED: Refused while pending (terminal)
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_number", name="uq_returns_number"),
        db.Index("ix_returns_status_created", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number (e.g., "RET-000123")
    return_number = db.Column(db.String(50), nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    return_type = db.Column(db.String(16), nullable=False, default="PARTIAL")  # FULL, PARTIAL

    # Value of returned quantities at order prices
    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Draft refund from inspection (accepted quantities only)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    # Refund actually paid out
    refunded_amount_cents = db.Column(db.Integer, nullable=True)
    refund_status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    refund_method = db.Column(db.String(50), nullable=True)
    refund_reference = db.Column(db.String(255), nullable=True)
    refund_date = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    internal_notes = db.Column(db.Text, nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)
    requested_by = db.Column(db.String(200), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expected_date = db.Column(db.DateTime(timezone=True), nullable=True)
    shipped_at = db.Column(db.DateTime(timezone=True), nullable=True)
    received_at = db.Column(db.DateTime(timezone=True), nullable=True)
    inspected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejected_at = db.Column(db.DateTime(timezone=True), nullable=True)
    restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    order = db.relationship("Order", backref=db.backref("returns", lazy=True))
    customer = db.relationship("Customer", backref=db.backref("returns", lazy=True))
    lines = db.relationship(
        "ReturnLine",
        back_populates="return_case",
        order_by="ReturnLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def allowed_actions(self) -> list[str]:
        """Actions the case can take next; restock and refund drop out once done."""
        done = set()
        if self.restocked_at:
            done.add(ReturnAction.RESTOCK)
        if self.refund_status == RefundStatus.COMPLETED.value:
            done.add(ReturnAction.REFUND)
        return [action.value for action in allowed_return_actions(self.status) if action not in done]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "order_id": self.order_id,
            "order_number": self.order.order_number if self.order else None,
            "customer_id": self.customer_id,
            "customer_name": self.customer.display_name if self.customer else None,
            "status": self.status,
            "return_type": self.return_type,
            "total_amount_cents": self.total_amount_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "refunded_amount_cents": self.refunded_amount_cents,
            "refund_status": self.refund_status,
            "refund_method": self.refund_method,
            "refund_reference": self.refund_reference,
            "refund_date": to_utc_z(self.refund_date) if self.refund_date else None,
            "notes": self.notes,
            "internal_notes": self.internal_notes,
            "rejection_reason": self.rejection_reason,
            "requested_by": self.requested_by,
            "created_at": to_utc_z(self.created_at),
            "approved_at": to_utc_z(self.approved_at) if self.approved_at else None,
            "expected_date": to_utc_z(self.expected_date) if self.expected_date else None,
            "shipped_at": to_utc_z(self.shipped_at) if self.shipped_at else None,
            "received_at": to_utc_z(self.received_at) if self.received_at else None,
            "inspected_at": to_utc_z(self.inspected_at) if self.inspected_at else None,
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
            "rejected_at": to_utc_z(self.rejected_at) if self.rejected_at else None,
            "restocked_at": to_utc_z(self.restocked_at) if self.restocked_at else None,
            "version_id": self.version_id,
            "allowed_actions": self.allowed_actions(),
            "lines": [line.to_dict() for line in self.lines],
        }


class ReturnLine(db.Model):
    """
    Individual line on a return case.

    INVARIANT: quantity_accepted + quantity_rejected <= quantity_returned
    (equal once inspected).
    """
    __tablename__ = "return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    order_line_id = db.Column(db.Integer, db.ForeignKey("order_lines.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    reason_id = db.Column(db.Integer, db.ForeignKey("return_reasons.id"), nullable=False)

    quantity_ordered = db.Column(db.Integer, nullable=False)
    quantity_returned = db.Column(db.Integer, nullable=False)
    quantity_accepted = db.Column(db.Integer, nullable=False, default=0)
    quantity_rejected = db.Column(db.Integer, nullable=False, default=0)

    condition = db.Column(db.String(16), nullable=False, default="UNKNOWN", index=True)

    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)
    refund_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    restock_eligible = db.Column(db.Boolean, nullable=False, default=False)
    restocked = db.Column(db.Boolean, nullable=False, default=False, index=True)
    restocked_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    inspection_notes = db.Column(db.Text, nullable=True)

    return_case = db.relationship("ReturnCase", back_populates="lines")
    order_line = db.relationship("OrderLine")
    product = db.relationship("Product")
    reason = db.relationship("ReturnReason")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_line_id": self.order_line_id,
            "product_id": self.product_id,
            "product_code": self.product.code if self.product else None,
            "product_name": self.product.name if self.product else None,
            "reason_code": self.reason.code if self.reason else None,
            "quantity_ordered": self.quantity_ordered,
            "quantity_returned": self.quantity_returned,
            "quantity_accepted": self.quantity_accepted,
            "quantity_rejected": self.quantity_rejected,
            "condition": self.condition,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "refund_amount_cents": self.refund_amount_cents,
            "restock_eligible": self.restock_eligible,
            "restocked": self.restocked,
            "restocked_at": to_utc_z(self.restocked_at) if self.restocked_at else None,
            "notes": self.notes,
            "inspection_notes": self.inspection_notes,
        }
