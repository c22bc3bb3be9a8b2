from __future__ import annotations

from ..extensions import db
from ..services.state_machines import allowed_transaction_actions
from ..time_utils import to_utc_z


class CreditTransaction(db.Model):
    """
    Goods taken on credit (PICKUP) or given back (RETURN).

    WHY: Replaces the paper notebook of who took what on credit. A transaction
    only moves the customer's balance once a human confirms it with a
    signature.

    LIFECYCLE:
    1. PENDING: Created, lines editable by nobody, balance untouched
    2. CONFIRMED: Signed for, balance moved by the signed total
    3. INVOICED: Included in a billing cycle
    4. CANCELLED: Cancelled while pending (or reversed by an administrator)

    INVARIANT: total_amount_cents and total_items are recomputed from lines,
    never written independently.
    """
    __tablename__ = "credit_transactions"
    __table_args__ = (
        db.UniqueConstraint("transaction_number", name="uq_credit_txns_number"),
        db.Index("ix_credit_txns_customer_created", "customer_id", "created_at"),
        db.Index("ix_credit_txns_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Human-readable number: P-000123 for pickups, R-000045 for returns
    transaction_number = db.Column(db.String(50), nullable=False)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    transaction_type = db.Column(db.String(16), nullable=False, index=True)  # PICKUP, RETURN
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)  # PENDING, CONFIRMED, INVOICED, CANCELLED

    total_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_items = db.Column(db.Integer, nullable=False, default=0)

    # Who initiated the transaction (employee or customer self-service)
    performed_by = db.Column(db.String(200), nullable=False)
    performed_by_role = db.Column(db.String(20), nullable=False)  # CUSTOMER, EMPLOYEE, ADMINISTRATOR

    # Informational link for a return created from a pickup (not a foreign key)
    original_transaction_number = db.Column(db.String(50), nullable=True, index=True)

    # Confirmation
    confirmed_by = db.Column(db.String(200), nullable=True)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    signature_data = db.Column(db.Text, nullable=True)
    photo_data = db.Column(db.Text, nullable=True)

    notes = db.Column(db.Text, nullable=True)

    # Cancellation
    cancellation_reason = db.Column(db.Text, nullable=True)
    cancelled_by = db.Column(db.String(200), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Billing cycle
    invoiced_at = db.Column(db.DateTime(timezone=True), nullable=True)
    invoice_reference = db.Column(db.String(100), nullable=True)

    # Administrative reversal of a confirmed transaction
    reversed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    reversed_by = db.Column(db.String(200), nullable=True)
    reversal_reason = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer", backref=db.backref("credit_transactions", lazy=True))
    lines = db.relationship(
        "CreditTransactionLine",
        back_populates="transaction",
        order_by="CreditTransactionLine.id",
        cascade="all, delete-orphan",
        lazy=True,
    )

    def recalculate_totals(self) -> None:
        self.total_amount_cents = sum(line.line_total_cents for line in self.lines)
        self.total_items = sum(line.quantity for line in self.lines)

    def to_summary_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "customer_id": self.customer_id,
            "customer_code": self.customer.code if self.customer else None,
            "customer_name": self.customer.display_name if self.customer else None,
            "transaction_type": self.transaction_type,
            "status": self.status,
            "total_amount_cents": self.total_amount_cents,
            "total_items": self.total_items,
            "performed_by": self.performed_by,
            "created_at": to_utc_z(self.created_at),
        }

    def to_dict(self) -> dict:
        data = self.to_summary_dict()
        data.update({
            "performed_by_role": self.performed_by_role,
            "original_transaction_number": self.original_transaction_number,
            "confirmed_by": self.confirmed_by,
            "confirmed_at": to_utc_z(self.confirmed_at) if self.confirmed_at else None,
            "signature_data": self.signature_data,
            "photo_data": self.photo_data,
            "notes": self.notes,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_by": self.cancelled_by,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "invoiced_at": to_utc_z(self.invoiced_at) if self.invoiced_at else None,
            "invoice_reference": self.invoice_reference,
            "reversed_at": to_utc_z(self.reversed_at) if self.reversed_at else None,
            "reversed_by": self.reversed_by,
            "reversal_reason": self.reversal_reason,
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
            "allowed_actions": [action.value for action in allowed_transaction_actions(self.status)],
            "lines": [line.to_dict() for line in self.lines],
        })
        return data


class CreditTransactionLine(db.Model):
    """
    Individual line on a credit transaction.

    Product code, name and unit price are snapshots taken at creation so a
    later price change never alters an existing transaction.
    """
    __tablename__ = "credit_transaction_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("credit_transactions.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    product_code = db.Column(db.String(50), nullable=False)
    product_name = db.Column(db.String(500), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    notes = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("CreditTransaction", back_populates="lines")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_code": self.product_code,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "notes": self.notes,
        }
