from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, to_sheet_datetime


class LedgerEntry(db.Model):
    """
    Immutable debit/credit record against a canonical account name.

    Exactly one of debit_cents / credit_cents is non-zero. Entries are never
    updated or deleted; a correction is a new offsetting entry.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint(
            "(debit_cents > 0 AND credit_cents = 0) OR (credit_cents > 0 AND debit_cents = 0)",
            name="ck_ledger_entries_one_sided",
        ),
        db.Index("ix_ledger_entries_account_occurred", "account", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Groups the entries of one business event (sale number, transfer number, ...)
    transaction_ref = db.Column(db.String(64), nullable=False, index=True)
    entry_type = db.Column(db.String(32), nullable=False)
    category = db.Column(db.String(64), nullable=True)

    account = db.Column(db.String(64), nullable=False)
    debit_cents = db.Column(db.Integer, nullable=False, default=0)
    credit_cents = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.String(255), nullable=True)
    counterparty_code = db.Column(db.String(32), nullable=True, index=True)
    payment_method = db.Column(db.String(32), nullable=True)
    payee = db.Column(db.String(255), nullable=True)
    receipt_no = db.Column(db.String(64), nullable=True)
    reference = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(16), nullable=False, default="POSTED")
    approved_by = db.Column(db.String(64), nullable=True)
    created_by = db.Column(db.String(64), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    @property
    def amount_cents(self) -> int:
        return self.debit_cents or self.credit_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_ref": self.transaction_ref,
            "entry_type": self.entry_type,
            "category": self.category,
            "account": self.account,
            "debit_cents": self.debit_cents,
            "credit_cents": self.credit_cents,
            "description": self.description,
            "counterparty_code": self.counterparty_code,
            "payment_method": self.payment_method,
            "payee": self.payee,
            "receipt_no": self.receipt_no,
            "reference": self.reference,
            "status": self.status,
            "approved_by": self.approved_by,
            "created_by": self.created_by,
            "occurred_at": to_utc_z(self.occurred_at),
        }

    def to_row(self) -> dict:
        return {
            "TransactionID": self.transaction_ref,
            "DateTime": to_sheet_datetime(self.occurred_at),
            "Type": self.entry_type,
            "CounterpartyID": self.counterparty_code or "",
            "Category": self.category or "",
            "Account": self.account,
            "Description": self.description or "",
            "Amount": self.amount_cents,
            "Debit": self.debit_cents,
            "Credit": self.credit_cents,
            # Derived on read; never persisted
            "Balance": "",
            "PaymentMethod": self.payment_method or "",
            "Payee": self.payee or "",
            "ReceiptNo": self.receipt_no or "",
            "Reference": self.reference or "",
            "Status": self.status,
            "ApprovedBy": self.approved_by or "",
            "User": self.created_by or "",
        }
