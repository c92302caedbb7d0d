from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Customer(db.Model):
    """
    Registered customer with a running credit balance.

    current_balance_cents > 0 means the customer owes the shop.
    Balance, totals and loyalty fields are written only by credit_service.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    city = db.Column(db.String(128), nullable=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    total_invoiced_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    total_credited_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    purchase_count = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)
    last_purchase_at = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_code": self.customer_code,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "address": self.address,
            "city": self.city,
            "opening_balance_cents": self.opening_balance_cents,
            "total_invoiced_cents": self.total_invoiced_cents,
            "total_paid_cents": self.total_paid_cents,
            "total_credited_cents": self.total_credited_cents,
            "current_balance_cents": self.current_balance_cents,
            "loyalty_points": self.loyalty_points,
            "purchase_count": self.purchase_count,
            "total_purchases_cents": self.total_purchases_cents,
            "last_purchase_at": to_utc_z(self.last_purchase_at) if self.last_purchase_at else None,
            "status": self.status,
        }

    def to_row(self) -> dict:
        return {
            "ID": self.customer_code,
            "Name": self.name,
            "Phone": self.phone or "",
            "Email": self.email or "",
            "Address": self.address or "",
            "OpeningBalance": self.opening_balance_cents,
            "TotalInvoiced": self.total_invoiced_cents,
            "TotalPaid": self.total_paid_cents,
            "CurrentBalance": self.current_balance_cents,
            "LoyaltyPoints": self.loyalty_points,
            "Status": self.status,
        }


class Supplier(db.Model):
    """
    Supplier with a running payable balance.

    current_balance_cents > 0 means the shop owes the supplier.
    """
    __tablename__ = "suppliers"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    supplier_code = db.Column(db.String(32), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    contact_person = db.Column(db.String(255), nullable=True)
    address = db.Column(db.String(255), nullable=True)

    opening_balance_cents = db.Column(db.Integer, nullable=False, default=0)
    total_purchased_cents = db.Column(db.Integer, nullable=False, default=0)
    total_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    total_credited_cents = db.Column(db.Integer, nullable=False, default=0)
    current_balance_cents = db.Column(db.Integer, nullable=False, default=0)

    status = db.Column(db.String(16), nullable=False, default="ACTIVE")
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "supplier_code": self.supplier_code,
            "name": self.name,
            "phone": self.phone,
            "email": self.email,
            "contact_person": self.contact_person,
            "address": self.address,
            "opening_balance_cents": self.opening_balance_cents,
            "total_purchased_cents": self.total_purchased_cents,
            "total_paid_cents": self.total_paid_cents,
            "total_credited_cents": self.total_credited_cents,
            "current_balance_cents": self.current_balance_cents,
            "status": self.status,
        }

    def to_row(self) -> dict:
        return {
            "ID": self.supplier_code,
            "Name": self.name,
            "Phone": self.phone or "",
            "Email": self.email or "",
            "ContactPerson": self.contact_person or "",
            "OpeningBalance": self.opening_balance_cents,
            "TotalPurchased": self.total_purchased_cents,
            "TotalPaid": self.total_paid_cents,
            "CurrentBalance": self.current_balance_cents,
            "Status": self.status,
        }


class CounterpartyTransaction(db.Model):
    """
    Append-only movement on a customer or supplier balance.

    Written in the same DB transaction as the balance change it records,
    so statements can be rebuilt without trusting the denormalized totals.
    """
    __tablename__ = "counterparty_transactions"
    __table_args__ = (
        db.Index("ix_counterparty_tx_party", "party_type", "party_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    party_type = db.Column(db.String(16), nullable=False)  # CUSTOMER / SUPPLIER
    party_id = db.Column(db.Integer, nullable=False)

    # OPENING, INVOICE, PAYMENT, CREDIT_NOTE
    entry_type = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)
    # Portion dropped by the non-negative balance clamp
    clamped_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_after_cents = db.Column(db.Integer, nullable=False)

    reference = db.Column(db.String(64), nullable=True)
    note = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)
    occurred_at = db.Column(db.DateTime, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "party_type": self.party_type,
            "party_id": self.party_id,
            "entry_type": self.entry_type,
            "amount_cents": self.amount_cents,
            "clamped_cents": self.clamped_cents,
            "balance_after_cents": self.balance_after_cents,
            "reference": self.reference,
            "note": self.note,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }
