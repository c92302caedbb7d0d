# Overview: Customer and supplier credit ledger; running balances, totals and loyalty.

from __future__ import annotations

from flask import current_app

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Customer, Supplier, CounterpartyTransaction, Payment
from ..time_utils import utcnow
from ..validation import ModelValidationPolicy, validate_payload, require_amount, optional_amount
from .audit_service import append_audit_event
from .concurrency import lock_for_update, run_with_retry, finish
from .identifier_service import next_identifier
from . import ledger_service

"""
Credit Ledger Invariants (authoritative)

- This module is the only writer of balance, totals, loyalty and purchase
  stats on customers and suppliers.
- Every balance change appends a CounterpartyTransaction in the same DB
  transaction; statements replay those rows.
- Customer balance never goes below 0. A payment or credit note larger than
  the debt is clamped; the dropped amount is logged (WARNING), kept on the
  transaction row as clamped_cents and written to the audit log.
- Supplier balances are not clamped: a negative supplier balance is an
  advance paid to that supplier.
- A counterparty with a non-zero balance cannot be deleted.
"""

PARTY_CUSTOMER = "CUSTOMER"
PARTY_SUPPLIER = "SUPPLIER"

ENTRY_OPENING = "OPENING"
ENTRY_INVOICE = "INVOICE"
ENTRY_PAYMENT = "PAYMENT"
ENTRY_CREDIT_NOTE = "CREDIT_NOTE"

STATUS_ACTIVE = "ACTIVE"
STATUS_DELETED = "DELETED"

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "address", "city", "opening_balance_cents"},
    required_on_create={"name"},
)

SUPPLIER_POLICY = ModelValidationPolicy(
    writable_fields={"name", "phone", "email", "contact_person", "address", "opening_balance_cents"},
    required_on_create={"name"},
)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def get_customer(customer_id: int, *, lock: bool = False, include_deleted: bool = False) -> Customer:
    """include_deleted is for reversals (cancel, return, payment) on sales made before the delete."""
    query = db.session.query(Customer).filter_by(id=customer_id)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None or (customer.status == STATUS_DELETED and not include_deleted):
        raise NotFoundError(f"Customer {customer_id} not found", details={"customer_id": customer_id})
    return customer


def get_customer_by_code(customer_code: str, *, lock: bool = False) -> Customer:
    query = db.session.query(Customer).filter_by(customer_code=customer_code)
    if lock:
        query = lock_for_update(query)
    customer = query.first()
    if customer is None or customer.status == STATUS_DELETED:
        raise NotFoundError(f"Customer {customer_code} not found", details={"customer_code": customer_code})
    return customer


def get_supplier(supplier_id: int, *, lock: bool = False) -> Supplier:
    query = db.session.query(Supplier).filter_by(id=supplier_id)
    if lock:
        query = lock_for_update(query)
    supplier = query.first()
    if supplier is None or supplier.status == STATUS_DELETED:
        raise NotFoundError(f"Supplier {supplier_id} not found", details={"supplier_id": supplier_id})
    return supplier


def list_customers() -> list[Customer]:
    return (
        db.session.query(Customer)
        .filter(Customer.status != STATUS_DELETED)
        .order_by(Customer.name)
        .all()
    )


def list_suppliers() -> list[Supplier]:
    return (
        db.session.query(Supplier)
        .filter(Supplier.status != STATUS_DELETED)
        .order_by(Supplier.name)
        .all()
    )


# ---------------------------------------------------------------------------
# Balance primitives (caller's transaction, flush only)
# ---------------------------------------------------------------------------

def _append_tx(party_type, party_id, entry_type, amount, balance_after, *,
               clamped=0, reference=None, note=None, actor=None):
    tx = CounterpartyTransaction(
        party_type=party_type,
        party_id=party_id,
        entry_type=entry_type,
        amount_cents=amount,
        clamped_cents=clamped,
        balance_after_cents=balance_after,
        reference=reference,
        note=note[:255] if note else None,
        created_by=actor,
        occurred_at=utcnow(),
    )
    db.session.add(tx)
    return tx


def _reduce_customer_balance(customer: Customer, amount: int, entry_type: str, *,
                             reference, note, actor) -> dict:
    old_balance = customer.current_balance_cents
    applied = min(amount, max(old_balance, 0))
    clamped = amount - applied

    if clamped:
        current_app.logger.warning(
            "Customer %s balance clamped at 0: %s %s exceeds debt %s by %s",
            customer.customer_code, entry_type, amount, old_balance, clamped,
        )
        append_audit_event(
            event_type="customer.balance_clamped",
            entity_type="customer",
            entity_ref=customer.customer_code,
            actor=actor,
            note=f"{entry_type} exceeded balance by {clamped}",
            payload={"entry_type": entry_type, "amount_cents": amount,
                     "balance_before_cents": old_balance, "clamped_cents": clamped,
                     "reference": reference},
        )

    customer.current_balance_cents = old_balance - applied
    _append_tx(PARTY_CUSTOMER, customer.id, entry_type, amount, customer.current_balance_cents,
               clamped=clamped, reference=reference, note=note, actor=actor)
    db.session.flush()
    return {
        "old_balance_cents": old_balance,
        "new_balance_cents": customer.current_balance_cents,
        "applied_cents": applied,
        "clamped_cents": clamped,
    }


def apply_customer_invoice(customer: Customer, amount_cents, *, reference=None, note=None, actor=None) -> dict:
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    old_balance = customer.current_balance_cents
    customer.current_balance_cents = old_balance + amount
    customer.total_invoiced_cents += amount
    _append_tx(PARTY_CUSTOMER, customer.id, ENTRY_INVOICE, amount, customer.current_balance_cents,
               reference=reference, note=note, actor=actor)
    db.session.flush()
    return {"old_balance_cents": old_balance, "new_balance_cents": customer.current_balance_cents,
            "applied_cents": amount, "clamped_cents": 0}


def apply_customer_payment(customer: Customer, amount_cents, *, reference=None, note=None, actor=None) -> dict:
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    customer.total_paid_cents += amount
    return _reduce_customer_balance(customer, amount, ENTRY_PAYMENT,
                                    reference=reference, note=note, actor=actor)


def apply_customer_credit_note(customer: Customer, amount_cents, *, reference=None, note=None, actor=None) -> dict:
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    customer.total_credited_cents += amount
    return _reduce_customer_balance(customer, amount, ENTRY_CREDIT_NOTE,
                                    reference=reference, note=note, actor=actor)


def _move_supplier_balance(supplier: Supplier, delta: int, entry_type: str, amount: int, *,
                           reference, note, actor) -> dict:
    old_balance = supplier.current_balance_cents
    supplier.current_balance_cents = old_balance + delta
    _append_tx(PARTY_SUPPLIER, supplier.id, entry_type, amount, supplier.current_balance_cents,
               reference=reference, note=note, actor=actor)
    db.session.flush()
    return {"old_balance_cents": old_balance, "new_balance_cents": supplier.current_balance_cents,
            "applied_cents": amount, "clamped_cents": 0}


def apply_supplier_invoice(supplier: Supplier, amount_cents, *, reference=None, note=None, actor=None) -> dict:
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    supplier.total_purchased_cents += amount
    return _move_supplier_balance(supplier, amount, ENTRY_INVOICE, amount,
                                  reference=reference, note=note, actor=actor)


def apply_supplier_payment(supplier: Supplier, amount_cents, *, reference=None, note=None, actor=None) -> dict:
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    supplier.total_paid_cents += amount
    return _move_supplier_balance(supplier, -amount, ENTRY_PAYMENT, amount,
                                  reference=reference, note=note, actor=actor)


def apply_supplier_credit_note(supplier: Supplier, amount_cents, *, reference=None, note=None, actor=None) -> dict:
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    supplier.total_credited_cents += amount
    return _move_supplier_balance(supplier, -amount, ENTRY_CREDIT_NOTE, amount,
                                  reference=reference, note=note, actor=actor)


def record_sale_stats(customer: Customer, amount_cents: int, *, occurred_at=None, reverse: bool = False) -> None:
    """Purchase count/total for a sale; reverse=True undoes exactly one sale."""
    if reverse:
        customer.purchase_count = max(0, customer.purchase_count - 1)
        customer.total_purchases_cents -= amount_cents
    else:
        customer.purchase_count += 1
        customer.total_purchases_cents += amount_cents
        customer.last_purchase_at = occurred_at or utcnow()
    db.session.flush()


def adjust_loyalty(customer: Customer, points: int, *, reference=None, actor=None) -> int:
    if points == 0:
        return customer.loyalty_points
    customer.loyalty_points += points
    current_app.logger.info(
        "Loyalty %+d for customer %s (%s), now %s",
        points, customer.customer_code, reference, customer.loyalty_points,
    )
    db.session.flush()
    return customer.loyalty_points


# ---------------------------------------------------------------------------
# Counterparty records
# ---------------------------------------------------------------------------

def create_customer(payload: dict, *, actor: str | None = None) -> Customer:
    fields = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY)
    opening = optional_amount("opening_balance_cents", fields.pop("opening_balance_cents", None))

    def _op():
        customer = Customer(
            customer_code=next_identifier("CUSTOMER", "CUS"),
            opening_balance_cents=opening,
            current_balance_cents=opening,
            **fields,
        )
        db.session.add(customer)
        db.session.flush()
        if opening:
            _append_tx(PARTY_CUSTOMER, customer.id, ENTRY_OPENING, opening, opening,
                       note="Opening balance", actor=actor)
        append_audit_event(
            event_type="customer.created",
            entity_type="customer",
            entity_ref=customer.customer_code,
            actor=actor,
            payload={"opening_balance_cents": opening},
        )
        db.session.commit()
        return customer

    return run_with_retry(_op)


def create_supplier(payload: dict, *, actor: str | None = None) -> Supplier:
    fields = validate_payload(model=Supplier, payload=payload, policy=SUPPLIER_POLICY)
    opening = optional_amount("opening_balance_cents", fields.pop("opening_balance_cents", None))

    def _op():
        supplier = Supplier(
            supplier_code=next_identifier("SUPPLIER", "SUP"),
            opening_balance_cents=opening,
            current_balance_cents=opening,
            **fields,
        )
        db.session.add(supplier)
        db.session.flush()
        if opening:
            _append_tx(PARTY_SUPPLIER, supplier.id, ENTRY_OPENING, opening, opening,
                       note="Opening balance", actor=actor)
        append_audit_event(
            event_type="supplier.created",
            entity_type="supplier",
            entity_ref=supplier.supplier_code,
            actor=actor,
            payload={"opening_balance_cents": opening},
        )
        db.session.commit()
        return supplier

    return run_with_retry(_op)


def delete_customer(customer_id: int, *, actor: str | None = None) -> Customer:
    """Soft delete; sales and statements keep referencing the row."""
    def _op():
        customer = get_customer(customer_id, lock=True)
        if customer.current_balance_cents != 0:
            raise ConflictError(
                f"Customer {customer.customer_code} has an outstanding balance",
                details={"balance_cents": customer.current_balance_cents},
            )
        customer.status = STATUS_DELETED
        append_audit_event(event_type="customer.deleted", entity_type="customer",
                           entity_ref=customer.customer_code, actor=actor)
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_supplier(supplier_id: int, *, actor: str | None = None) -> Supplier:
    def _op():
        supplier = get_supplier(supplier_id, lock=True)
        if supplier.current_balance_cents != 0:
            raise ConflictError(
                f"Supplier {supplier.supplier_code} has an outstanding balance",
                details={"balance_cents": supplier.current_balance_cents},
            )
        supplier.status = STATUS_DELETED
        append_audit_event(event_type="supplier.deleted", entity_type="supplier",
                           entity_ref=supplier.supplier_code, actor=actor)
        db.session.commit()
        return supplier

    return run_with_retry(_op)


# ---------------------------------------------------------------------------
# Standalone payments
# ---------------------------------------------------------------------------

def _new_payment(**kwargs) -> Payment:
    payment = Payment(payment_number=next_identifier("PAYMENT", "PAY"), occurred_at=utcnow(), **kwargs)
    db.session.add(payment)
    db.session.flush()
    return payment


def record_customer_payment(
    customer_id: int,
    amount_cents,
    *,
    account: str | None = None,
    reference: str | None = None,
    note: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> dict:
    """
    Customer settles part of their balance.

    Payment row, ledger entry (IN to the tender account) and balance change
    are written in one transaction. Paying more than the balance is rejected.
    """
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    tender = ledger_service.canonical_payment_account(
        account or current_app.config.get("DEFAULT_PAYMENT_ACCOUNT", "Cash")
    )

    def _op():
        customer = get_customer(customer_id, lock=True)
        if amount > customer.current_balance_cents:
            raise ValidationError(
                "Payment exceeds outstanding balance",
                details={"amount_cents": amount, "balance_cents": customer.current_balance_cents},
            )

        payment = _new_payment(
            customer_id=customer.id, kind="CUSTOMER_PAYMENT", account=tender, direction="IN",
            amount_cents=amount, reference=reference, note=note, created_by=actor,
        )
        entry = ledger_service.post_entry(
            tender, amount, "IN",
            description=f"Payment from {customer.name}",
            reference=payment.payment_number,
            entry_type="CUSTOMER_PAYMENT",
            category="Customer Payment",
            counterparty_code=customer.customer_code,
            payment_method=tender,
            payee=customer.name,
            receipt_no=reference,
            actor=actor,
        )
        payment.ledger_entry_id = entry.id
        balance = apply_customer_payment(customer, amount, reference=payment.payment_number,
                                         note=note, actor=actor)
        append_audit_event(
            event_type="customer.payment",
            entity_type="customer",
            entity_ref=customer.customer_code,
            actor=actor,
            payload={"payment_number": payment.payment_number, "amount_cents": amount, "account": tender},
        )
        current_app.logger.info("Customer %s paid %s into %s", customer.customer_code, amount, tender)
        finish(commit)
        return {"payment": payment.to_dict(), "customer": customer.to_dict(), "balance": balance}

    if not commit:
        return _op()
    return run_with_retry(_op)


def record_supplier_payment(
    supplier_id: int,
    amount_cents,
    *,
    account: str | None = None,
    reference: str | None = None,
    note: str | None = None,
    actor: str | None = None,
    commit: bool = True,
) -> dict:
    """Shop pays a supplier: OUT of the tender account, supplier balance reduced."""
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    tender = ledger_service.canonical_payment_account(
        account or current_app.config.get("DEFAULT_PAYMENT_ACCOUNT", "Cash")
    )

    def _op():
        supplier = get_supplier(supplier_id, lock=True)

        payment = _new_payment(
            supplier_id=supplier.id, kind="SUPPLIER_PAYMENT", account=tender, direction="OUT",
            amount_cents=amount, reference=reference, note=note, created_by=actor,
        )
        entry = ledger_service.post_entry(
            tender, amount, "OUT",
            description=f"Payment to {supplier.name}",
            reference=payment.payment_number,
            entry_type="SUPPLIER_PAYMENT",
            category="Supplier Payment",
            counterparty_code=supplier.supplier_code,
            payment_method=tender,
            payee=supplier.name,
            receipt_no=reference,
            actor=actor,
        )
        ledger_service.post_entry(
            ledger_service.ACCOUNT_PAYABLE, amount, "DEBIT",
            description=f"Payable settled: {supplier.name}",
            reference=payment.payment_number,
            entry_type="SUPPLIER_PAYMENT",
            category="Supplier Payment",
            counterparty_code=supplier.supplier_code,
            actor=actor,
            occurred_at=entry.occurred_at,
        )
        payment.ledger_entry_id = entry.id
        balance = apply_supplier_payment(supplier, amount, reference=payment.payment_number,
                                         note=note, actor=actor)
        append_audit_event(
            event_type="supplier.payment",
            entity_type="supplier",
            entity_ref=supplier.supplier_code,
            actor=actor,
            payload={"payment_number": payment.payment_number, "amount_cents": amount, "account": tender},
        )
        finish(commit)
        return {"payment": payment.to_dict(), "supplier": supplier.to_dict(), "balance": balance}

    if not commit:
        return _op()
    return run_with_retry(_op)


def record_supplier_credit_note(
    supplier_id: int,
    amount_cents,
    *,
    reference: str | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> dict:
    """Supplier credits the shop (damaged delivery, rebate): payable reduced, no money moves."""
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)

    def _op():
        supplier = get_supplier(supplier_id, lock=True)
        ref = next_identifier("SUPPLIER_CREDIT", "SCN")
        ledger_service.post_entry(
            ledger_service.ACCOUNT_PAYABLE, amount, "DEBIT",
            description=f"Credit note from {supplier.name}",
            reference=ref,
            entry_type="SUPPLIER_CREDIT_NOTE",
            category="Supplier Credit",
            counterparty_code=supplier.supplier_code,
            receipt_no=reference,
            actor=actor,
        )
        balance = apply_supplier_credit_note(supplier, amount, reference=ref, note=note, actor=actor)
        append_audit_event(
            event_type="supplier.credit_note",
            entity_type="supplier",
            entity_ref=supplier.supplier_code,
            actor=actor,
            payload={"credit_note": ref, "amount_cents": amount, "supplier_reference": reference},
        )
        db.session.commit()
        return {"reference": ref, "supplier": supplier.to_dict(), "balance": balance}

    return run_with_retry(_op)
