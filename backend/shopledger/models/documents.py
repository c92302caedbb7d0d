from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Quotation(db.Model):
    """
    Price quotation that may later be converted into a sale.

    LIFECYCLE: PENDING -> ACCEPTED | REJECTED | EXPIRED; PENDING/ACCEPTED -> CONVERTED.
    CONVERTED is immutable and carries converted_sale_id.
    """
    __tablename__ = "quotations"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quotation_number = db.Column(db.String(32), nullable=False, unique=True)

    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    customer_code = db.Column(db.String(32), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_charge_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    grand_total_cents = db.Column(db.Integer, nullable=False, default=0)

    valid_until = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(16), nullable=False, default="PENDING", index=True)
    converted_sale_id = db.Column(db.Integer, db.ForeignKey("sale_transactions.id"), nullable=True)
    converted_at = db.Column(db.DateTime, nullable=True)

    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "quotation_number": self.quotation_number,
            "customer_id": self.customer_id,
            "customer_code": self.customer_code,
            "customer_name": self.customer_name,
            "subtotal_cents": self.subtotal_cents,
            "delivery_charge_cents": self.delivery_charge_cents,
            "discount_cents": self.discount_cents,
            "grand_total_cents": self.grand_total_cents,
            "valid_until": to_utc_z(self.valid_until),
            "status": self.status,
            "converted_sale_id": self.converted_sale_id,
            "converted_at": to_utc_z(self.converted_at) if self.converted_at else None,
            "notes": self.notes,
            "created_by": self.created_by,
            "lines": [line.to_dict() for line in self.lines],
        }


class QuotationLine(db.Model):
    __tablename__ = "quotation_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    quotation_id = db.Column(db.Integer, db.ForeignKey("quotations.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    quotation = db.relationship("Quotation", backref=db.backref("lines", lazy=True, order_by="QuotationLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
        }


class Purchase(db.Model):
    """Supplier invoice that brings stock in as new FIFO batches."""
    __tablename__ = "purchases"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_number = db.Column(db.String(32), nullable=False, unique=True)
    supplier_id = db.Column(db.Integer, db.ForeignKey("suppliers.id"), nullable=False, index=True)
    supplier_invoice_no = db.Column(db.String(64), nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)
    paid_cents = db.Column(db.Integer, nullable=False, default=0)
    payment_account = db.Column(db.String(64), nullable=True)

    notes = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)

    supplier = db.relationship("Supplier")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "purchase_number": self.purchase_number,
            "supplier_id": self.supplier_id,
            "supplier_invoice_no": self.supplier_invoice_no,
            "total_cents": self.total_cents,
            "paid_cents": self.paid_cents,
            "balance_cents": self.total_cents - self.paid_cents,
            "payment_account": self.payment_account,
            "notes": self.notes,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
            "lines": [line.to_dict() for line in self.lines],
        }


class PurchaseLine(db.Model):
    __tablename__ = "purchase_lines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(db.Integer, db.ForeignKey("purchases.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey("stock_batches.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_cost_cents = db.Column(db.Integer, nullable=False)
    line_total_cents = db.Column(db.Integer, nullable=False)

    purchase = db.relationship("Purchase", backref=db.backref("lines", lazy=True, order_by="PurchaseLine.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "batch_id": self.batch_id,
            "quantity": self.quantity,
            "unit_cost_cents": self.unit_cost_cents,
            "line_total_cents": self.line_total_cents,
        }


class DocumentSequence(db.Model):
    """
    Persisted counter per sequence name.

    next_number is advanced with a single atomic UPDATE; gaps from rolled
    back allocations are acceptable, duplicates are not.
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sequence_name = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sequence_name": self.sequence_name,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
