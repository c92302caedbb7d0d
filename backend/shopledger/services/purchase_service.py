# Overview: Supplier purchases; new FIFO batches, inventory/payable postings and supplier balance.

from __future__ import annotations

from flask import current_app

from ..errors import NotFoundError, ValidationError
from ..extensions import db
from ..models import Payment, Purchase, PurchaseLine
from ..time_utils import utcnow, normalize_datetime
from ..validation import coerce_int, optional_amount, require_amount, require_positive_int
from . import credit_service, inventory_service, ledger_service
from .audit_service import append_audit_event
from .concurrency import begin_immediate, run_with_retry
from .identifier_service import next_identifier


def get_purchase(purchase_id: int) -> Purchase:
    purchase = db.session.query(Purchase).filter_by(id=purchase_id).first()
    if purchase is None:
        raise NotFoundError(f"Purchase {purchase_id} not found", details={"purchase_id": purchase_id})
    return purchase


def list_purchases(*, supplier_id: int | None = None) -> list[Purchase]:
    q = db.session.query(Purchase)
    if supplier_id is not None:
        q = q.filter(Purchase.supplier_id == supplier_id)
    return q.order_by(Purchase.id.desc()).all()


def create_purchase(payload: dict, *, actor: str | None = None) -> dict:
    """
    Record a supplier invoice.

    payload: supplier_id, lines [{item_id, quantity, unit_cost_cents}],
    amount_paid_cents (default 0), payment_account, supplier_invoice_no, notes.

    Each line becomes a new batch appended after existing ones. Ledger:
    Inventory Asset debited with the total; the paid part leaves the payment
    account and the unpaid part is credited to Accounts Payable. The supplier
    balance grows by the unpaid part.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    if payload.get("supplier_id") is None:
        raise ValidationError("supplier_id is required")
    supplier_id = coerce_int("supplier_id", payload["supplier_id"])

    raw_lines = payload.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("Purchase must have at least one line item")

    parsed = []
    for idx, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict) or raw.get("item_id") is None:
            raise ValidationError(f"Line {idx}: item_id is required")
        parsed.append({
            "item_id": coerce_int("item_id", raw["item_id"]),
            "quantity": require_positive_int(f"lines[{idx}].quantity", raw.get("quantity")),
            "unit_cost_cents": require_amount(f"lines[{idx}].unit_cost_cents", raw.get("unit_cost_cents")),
        })

    total = sum(line["quantity"] * line["unit_cost_cents"] for line in parsed)
    paid = optional_amount("amount_paid_cents", payload.get("amount_paid_cents"))
    if paid > total:
        raise ValidationError(
            "Amount paid exceeds purchase total",
            details={"total_cents": total, "paid_cents": paid},
        )
    account = None
    if paid:
        account = ledger_service.canonical_payment_account(
            payload.get("payment_account") or current_app.config.get("DEFAULT_PAYMENT_ACCOUNT", "Cash")
        )
    occurred_at = normalize_datetime(payload.get("occurred_at")) or utcnow()

    def _op():
        begin_immediate()
        supplier = credit_service.get_supplier(supplier_id, lock=True)

        items = []
        for line in parsed:
            item = inventory_service.get_item(line["item_id"], lock=True)
            if item.is_service:
                raise ValidationError(f"{item.name} is a service item and cannot be purchased into stock")
            items.append(item)

        purchase = Purchase(
            purchase_number=next_identifier("PURCHASE", "PUR"),
            supplier_id=supplier.id,
            supplier_invoice_no=payload.get("supplier_invoice_no"),
            total_cents=total,
            paid_cents=paid,
            payment_account=account,
            notes=payload.get("notes"),
            created_by=actor,
            occurred_at=occurred_at,
        )
        db.session.add(purchase)
        db.session.flush()

        for line, item in zip(parsed, items):
            result = inventory_service.increase_stock(
                item, line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                actor=actor,
                reference=purchase.purchase_number,
                source_type="PURCHASE",
            )
            db.session.add(PurchaseLine(
                purchase_id=purchase.id,
                item_id=item.id,
                batch_id=result["batch_id"],
                quantity=line["quantity"],
                unit_cost_cents=line["unit_cost_cents"],
                line_total_cents=line["quantity"] * line["unit_cost_cents"],
            ))

        ref = purchase.purchase_number
        common = {
            "reference": ref,
            "entry_type": "PURCHASE",
            "category": "Purchases",
            "counterparty_code": supplier.supplier_code,
            "payee": supplier.name,
            "receipt_no": purchase.supplier_invoice_no,
            "actor": actor,
            "occurred_at": occurred_at,
        }

        if total > 0:
            ledger_service.post_entry(
                ledger_service.ACCOUNT_INVENTORY, total, "DEBIT",
                description=f"Stock purchased from {supplier.name}", **common,
            )
            credit_service.apply_supplier_invoice(supplier, total, reference=ref, actor=actor)

        unpaid = total - paid
        if unpaid > 0:
            ledger_service.post_entry(
                ledger_service.ACCOUNT_PAYABLE, unpaid, "CREDIT",
                description=f"Owed to {supplier.name}", **common,
            )

        if paid > 0:
            entry = ledger_service.post_entry(
                account, paid, "OUT",
                description=f"Paid to {supplier.name}", payment_method=account, **common,
            )
            payment = Payment(
                payment_number=next_identifier("PAYMENT", "PAY"),
                purchase_id=purchase.id,
                supplier_id=supplier.id,
                kind="PURCHASE",
                account=account,
                direction="OUT",
                amount_cents=paid,
                ledger_entry_id=entry.id,
                reference=ref,
                created_by=actor,
                occurred_at=occurred_at,
            )
            db.session.add(payment)
            credit_service.apply_supplier_payment(supplier, paid, reference=ref, actor=actor)

        append_audit_event(
            event_type="purchase.created",
            entity_type="purchase",
            entity_ref=ref,
            actor=actor,
            payload={"supplier": supplier.supplier_code, "total_cents": total, "paid_cents": paid},
        )
        db.session.commit()
        current_app.logger.info(
            "Purchase %s from %s: total=%s paid=%s", ref, supplier.supplier_code, total, paid
        )
        return {"purchase": purchase.to_dict(), "supplier": supplier.to_dict()}

    return run_with_retry(_op)
