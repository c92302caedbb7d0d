from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_sheet_datetime


class SaleTransaction(db.Model):
    """
    Sale header.

    Invariants:
    - grand_total_cents == subtotal_cents + delivery_charge_cents - discount_cents
    - subtotal_cents == SUM(lines.line_total_cents)
    - ACTIVE -> CANCELLED is the only status transition (terminal)
    """
    __tablename__ = "sale_transactions"
    __table_args__ = (
        db.Index("ix_sale_transactions_status_occurred", "status", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_number = db.Column(db.String(32), nullable=False, unique=True)

    # Client-supplied key making create_sale safely retryable
    idempotency_key = db.Column(db.String(128), nullable=True, unique=True)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)
    sale_type = db.Column(db.String(32), nullable=False, default="SALE")

    # Counterparty: NULL customer_id means the anonymous walk-in customer
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_code = db.Column(db.String(32), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cogs_cents = db.Column(db.Integer, nullable=False, default=0)

    # Paid at creation time and amount booked to the customer's balance
    paid_at_sale_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    returned_total_cents = db.Column(db.Integer, nullable=False, default=0)

    payment_mode = db.Column(db.String(16), nullable=False)
    status = db.Column(db.String(16), nullable=False, default="ACTIVE", index=True)
    fulfillment_status = db.Column(db.String(32), nullable=False, default="PENDING_RELEASE")
    amount_due_cents = db.Column(db.Integer, nullable=False, default=0)

    sold_by = db.Column(db.String(64), nullable=True)
    location = db.Column(db.String(128), nullable=True)
    tax_id = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.String(255), nullable=True)

    # Source quotation; the FK lives on quotations.converted_sale_id
    quotation_id = db.Column(db.Integer, nullable=True)

    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.String(64), nullable=True)
    cancel_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def delivery_status(self) -> str:
        if self.status == "CANCELLED":
            return "Cancelled"
        if self.fulfillment_status == "READY_FOR_PICKUP":
            return "Ready for Pickup"
        return f"Pending Release ({self.amount_due_cents / 100:.2f} due)"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_number": self.transaction_number,
            "occurred_at": to_utc_z(self.occurred_at),
            "sale_type": self.sale_type,
            "customer_id": self.customer_id,
            "customer_code": self.customer_code,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "delivery_charge_cents": self.delivery_charge_cents,
            "discount_cents": self.discount_cents,
            "grand_total_cents": self.grand_total_cents,
            "total_cogs_cents": self.total_cogs_cents,
            "paid_at_sale_cents": self.paid_at_sale_cents,
            "credit_amount_cents": self.credit_amount_cents,
            "returned_total_cents": self.returned_total_cents,
            "payment_mode": self.payment_mode,
            "status": self.status,
            "fulfillment_status": self.fulfillment_status,
            "amount_due_cents": self.amount_due_cents,
            "delivery_status": self.delivery_status,
            "sold_by": self.sold_by,
            "location": self.location,
            "tax_id": self.tax_id,
            "quotation_id": self.quotation_id,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
            "cancelled_by": self.cancelled_by,
            "cancel_reason": self.cancel_reason,
        }


class SaleLine(db.Model):
    """
    One row per batch allocation of a sale line.

    A requested line of 7 units served from two batches produces two
    SaleLine rows sharing line_number. SERVICE items have batch_id NULL.
    """
    __tablename__ = "sale_lines"
    __table_args__ = (
        db.CheckConstraint("returned_quantity <= quantity", name="ck_sale_lines_returned_le_sold"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    item_name = db.Column(db.String(255), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    unit_cost_cents = db.Column(db.Integer, nullable=False, default=0)
    cogs_cents = db.Column(db.Integer, nullable=False, default=0)

    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("SaleTransaction", backref=db.backref("lines", lazy=True, order_by="SaleLine.id"))
    item = db.relationship("Item")
    batch = db.relationship("StockBatch")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "line_number": self.line_number,
            "item_id": self.item_id,
            "item_name": self.item_name,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "unit_cost_cents": self.unit_cost_cents,
            "cogs_cents": self.cogs_cents,
            "returned_quantity": self.returned_quantity,
        }

    def to_row(self) -> dict:
        sale = self.sale
        return {
            "TransactionID": sale.transaction_number,
            "DateTime": to_sheet_datetime(sale.occurred_at),
            "Type": sale.sale_type,
            "CustomerID": sale.customer_code,
            "CustomerName": sale.customer_name or "",
            "ItemID": self.item.item_code if self.item else "",
            "ItemName": self.item_name,
            "BatchID": self.batch.batch_code if self.batch else "",
            "Qty": self.quantity,
            "UnitPrice": self.unit_price_cents,
            "LineTotal": self.line_total_cents,
            "Subtotal": sale.subtotal_cents,
            "DeliveryCharge": sale.delivery_charge_cents,
            "Discount": sale.discount_cents,
            "GrandTotal": sale.grand_total_cents,
            "PaymentMode": sale.payment_mode,
            "SoldBy": sale.sold_by or "",
            "Location": sale.location or "",
            "TaxID": sale.tax_id or "",
            "DeliveryStatus": sale.delivery_status,
        }


class Payment(db.Model):
    """
    Money movement record.

    Links to a sale, a purchase, or a standalone customer/supplier payment.
    Payments are never edited; a refund is a new OUT payment.

    KINDS:
    - SALE: tender taken when the sale was created
    - SALE_REFUND: offsetting payment on cancellation or return
    - CUSTOMER_PAYMENT: customer settling their balance
    - PURCHASE: paid to a supplier when the purchase was recorded
    - SUPPLIER_PAYMENT: shop settling a supplier balance
    """
    __tablename__ = "payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    payment_number = db.Column(db.String(32), nullable=False, unique=True)

    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=True, index=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=True, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=True, index=True)

    kind = db.Column(db.String(32), nullable=False)
    account = db.Column(db.String(64), nullable=False)
    direction = db.Column(db.String(3), nullable=False)  # IN / OUT
    amount_cents = db.Column(db.Integer, nullable=False)

    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)

    sale = db.relationship("SaleTransaction", backref=db.backref("payments", lazy=True, order_by="Payment.id"))

    @property
    def signed_amount_cents(self) -> int:
        return self.amount_cents if self.direction == "IN" else -self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "payment_number": self.payment_number,
            "sale_id": self.sale_id,
            "purchase_id": self.purchase_id,
            "customer_id": self.customer_id,
            "supplier_id": self.supplier_id,
            "kind": self.kind,
            "account": self.account,
            "direction": self.direction,
            "amount_cents": self.amount_cents,
            "ledger_entry_id": self.ledger_entry_id,
            "reference": self.reference,
            "note": self.note,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }


class SaleReturn(db.Model):
    """Return document: one per process_return call against a sale."""
    __tablename__ = "sale_returns"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_number = db.Column(db.String(32), nullable=False, unique=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=False, index=True)

    reason = db.Column(db.String(255), nullable=True)
    refund_total_cents = db.Column(db.Integer, nullable=False, default=0)
    cash_refund_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_note_cents = db.Column(db.Integer, nullable=False, default=0)
    cogs_reversed_cents = db.Column(db.Integer, nullable=False, default=0)
    refund_account = db.Column(db.String(64), nullable=True)

    created_by = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)

    sale = db.relationship("SaleTransaction", backref=db.backref("returns", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_number": self.return_number,
            "sale_id": self.sale_id,
            "reason": self.reason,
            "refund_total_cents": self.refund_total_cents,
            "cash_refund_cents": self.cash_refund_cents,
            "credit_note_cents": self.credit_note_cents,
            "cogs_reversed_cents": self.cogs_reversed_cents,
            "refund_account": self.refund_account,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class SaleReturnLine(db.Model):
    __tablename__ = "sale_return_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("sale_returns.id"), nullable=False, index=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey("sale_lines.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    refund_cents = db.Column(db.Integer, nullable=False)
    restocked_batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True)

    sale_return = db.relationship("SaleReturn", backref=db.backref("lines", lazy=True, order_by="SaleReturnLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_line_id": self.sale_line_id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "refund_cents": self.refund_cents,
            "restocked_batch_id": self.restocked_batch_id,
        }
