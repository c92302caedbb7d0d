# Overview: Sale transaction engine; create and cancel sales across stock, ledger and credit.

"""
Sales Service

Coordinates one sale across the inventory ledger, the account ledger and
the customer credit ledger.

ORDER OF WORK (create_sale):
1. Validate required fields; reject an empty line list.
2. Check stock for every STOCK line (aggregated per item) before any write.
3. subtotal = SUM(line totals); grand_total = subtotal + delivery - discount.
   The discount may not exceed subtotal + delivery, so only negative-priced
   SERVICE adjustment lines can make grand_total negative.
4. paid_now from payment mode: SPLIT sums explicit legs, CREDIT pays 0,
   any other mode pays amount_paid_cents or defaults to grand_total.
5. credit_amount = grand_total - paid_now. Credit for the walk-in customer
   is rejected here, still before any write.
6. Post one ledger entry + Payment per payment leg, then FIFO-decrease
   stock per line (one SaleLine per batch allocation).
7. Post COGS (debit Cost of Goods Sold, credit Inventory Asset) if > 0.
8. Registered customer: purchase stats, loyalty points, invoice for
   credit_amount.
9. Recompute fulfillment status from every payment referencing the sale.

ATOMICITY:
All steps run in one DB transaction and commit once; any failure rolls the
whole sale back. An optional idempotency_key makes retries safe: replaying a
key returns the original sale instead of decrementing stock again.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..errors import (
    AlreadyCancelledError,
    CreditNotAllowedForWalkInError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..extensions import db
from ..models import SaleTransaction, SaleLine, Payment, Customer, Item
from ..time_utils import utcnow, normalize_datetime
from ..validation import require_positive_int, require_amount, optional_amount, coerce_int
from . import credit_service, inventory_service, ledger_service
from .audit_service import append_audit_event
from .concurrency import begin_immediate, lock_for_update, run_with_retry, finish
from .identifier_service import next_identifier

MODE_CASH = "CASH"
MODE_MOBILE_MONEY = "MOBILE_MONEY"
MODE_BANK = "BANK"
MODE_CREDIT = "CREDIT"
MODE_SPLIT = "SPLIT"

PAYMENT_MODES = (MODE_CASH, MODE_MOBILE_MONEY, MODE_BANK, MODE_CREDIT, MODE_SPLIT)

# Tender account for single-leg modes
MODE_ACCOUNTS = {
    MODE_CASH: ledger_service.ACCOUNT_CASH,
    MODE_MOBILE_MONEY: ledger_service.ACCOUNT_MOBILE_MONEY,
    MODE_BANK: ledger_service.ACCOUNT_BANK,
}

MODE_ALIASES = {
    "cash": MODE_CASH,
    "credit": MODE_CREDIT,
    "split": MODE_SPLIT,
    "bank": MODE_BANK,
    "banktransfer": MODE_BANK,
    "cheque": MODE_BANK,
    "mpesa": MODE_MOBILE_MONEY,
    "mobilemoney": MODE_MOBILE_MONEY,
    "momo": MODE_MOBILE_MONEY,
}

STATUS_ACTIVE = "ACTIVE"
STATUS_CANCELLED = "CANCELLED"

FULFILLMENT_PENDING = "PENDING_RELEASE"
FULFILLMENT_READY = "READY_FOR_PICKUP"


class _Replayed(Exception):
    """Idempotency key already used; carries the existing sale id."""

    def __init__(self, sale_id: int):
        super().__init__(sale_id)
        self.sale_id = sale_id


def normalize_payment_mode(value) -> str:
    if value is None or not str(value).strip():
        raise ValidationError("payment_mode is required")
    mode = MODE_ALIASES.get(ledger_service.alias_key(str(value)))
    if mode is None:
        raise ValidationError(
            f"Invalid payment_mode: {value}",
            details={"payment_modes": list(PAYMENT_MODES)},
        )
    return mode


def walk_in_code() -> str:
    return current_app.config.get("WALK_IN_CUSTOMER_ID", "WALK-IN")


def is_walk_in(customer_ref) -> bool:
    if customer_ref is None:
        return True
    text = str(customer_ref).strip()
    return text == "" or text.upper() == walk_in_code().upper()


def resolve_customer(customer_ref, *, lock: bool = False) -> Customer | None:
    """None for the walk-in customer; ints are ids, strings are customer codes."""
    if is_walk_in(customer_ref):
        return None
    if isinstance(customer_ref, int) and not isinstance(customer_ref, bool):
        return credit_service.get_customer(customer_ref, lock=lock)
    return credit_service.get_customer_by_code(str(customer_ref).strip(), lock=lock)


def get_sale(sale_id: int, *, lock: bool = False) -> SaleTransaction:
    query = db.session.query(SaleTransaction).filter_by(id=sale_id)
    if lock:
        query = lock_for_update(query)
    sale = query.first()
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found", details={"sale_id": sale_id})
    return sale


def get_sale_by_number(transaction_number: str) -> SaleTransaction:
    sale = db.session.query(SaleTransaction).filter_by(transaction_number=str(transaction_number)).first()
    if sale is None:
        raise NotFoundError(f"Sale {transaction_number} not found")
    return sale


def list_sales(*, status: str | None = None, customer_id: int | None = None, limit: int = 100) -> list[SaleTransaction]:
    q = db.session.query(SaleTransaction)
    if status:
        q = q.filter(SaleTransaction.status == status.upper())
    if customer_id is not None:
        q = q.filter(SaleTransaction.customer_id == customer_id)
    limit = max(1, min(limit, 500))
    return q.order_by(SaleTransaction.id.desc()).limit(limit).all()


def sale_result(sale: SaleTransaction, *, replayed: bool = False) -> dict:
    return {
        "transaction_id": sale.transaction_number,
        "sale_id": sale.id,
        "grand_total_cents": sale.grand_total_cents,
        "paid_amount_cents": sale.paid_at_sale_cents,
        "balance_cents": sale.credit_amount_cents,
        "total_cogs_cents": sale.total_cogs_cents,
        "fulfillment_status": sale.fulfillment_status,
        "delivery_status": sale.delivery_status,
        "replayed": replayed,
        "sale": sale.to_dict(),
        "lines": [line.to_dict() for line in sale.lines],
    }


# ---------------------------------------------------------------------------
# Validation (no writes)
# ---------------------------------------------------------------------------

def _parse_lines(raw_lines) -> list[dict]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("Sale must have at least one line item")

    parsed = []
    for idx, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Line {idx} must be an object")
        item_id = raw.get("item_id")
        if item_id is None:
            raise ValidationError(f"Line {idx}: item_id is required")
        item = inventory_service.get_item(coerce_int("item_id", item_id), lock=True)
        if not item.is_active:
            raise ValidationError(f"Line {idx}: {item.name} is inactive")

        quantity = require_positive_int(f"lines[{idx}].quantity", raw.get("quantity"))

        price = raw.get("unit_price_cents")
        if price is None:
            price = item.selling_price_cents
        elif item.is_service:
            # Manual charge lines may carry a negative price (adjustments)
            price = coerce_int(f"lines[{idx}].unit_price_cents", price)
        else:
            price = require_amount(f"lines[{idx}].unit_price_cents", price)

        parsed.append({
            "line_number": idx,
            "item": item,
            "quantity": quantity,
            "unit_price_cents": price,
            "line_total_cents": quantity * price,
        })
    return parsed


def _check_all_stock(lines: list[dict]) -> None:
    requested: dict[int, int] = {}
    items: dict[int, Item] = {}
    for line in lines:
        item = line["item"]
        if item.is_service:
            continue
        requested[item.id] = requested.get(item.id, 0) + line["quantity"]
        items[item.id] = item

    short = []
    for item_id, qty in requested.items():
        check = inventory_service.check_stock(items[item_id], qty)
        if not check["sufficient"]:
            short.append({
                "item_id": item_id,
                "name": items[item_id].name,
                "requested": qty,
                "available": check["available"],
                "shortage": check["shortage"],
            })

    if short:
        raise InsufficientStockError(
            "Insufficient stock: " + ", ".join(f"{s['name']} (short {s['shortage']})" for s in short),
            details={"items": short},
        )


def _payment_legs(payload: dict, mode: str, grand_total: int) -> list[dict]:
    """
    Tender legs paid now: [{account, amount_cents, direction}].

    A negative grand total (adjustment sale) pays money back out in one leg.
    """
    if mode == MODE_CREDIT:
        if payload.get("amount_paid_cents") not in (None, "", 0):
            raise ValidationError("amount_paid_cents must be omitted for CREDIT sales")
        if grand_total < 0:
            raise ValidationError("A negative sale cannot be booked on credit")
        return []

    if mode == MODE_SPLIT:
        raw_legs = payload.get("payments")
        if not isinstance(raw_legs, list) or not raw_legs:
            raise ValidationError("SPLIT payment requires a non-empty payments list")
        if grand_total < 0:
            raise ValidationError("A negative sale cannot be split")
        legs = []
        for idx, raw in enumerate(raw_legs, start=1):
            if not isinstance(raw, dict):
                raise ValidationError(f"payments[{idx}] must be an object")
            account = ledger_service.canonical_payment_account(raw.get("account") or raw.get("method"))
            amount = require_amount(f"payments[{idx}].amount_cents", raw.get("amount_cents"), allow_zero=False)
            legs.append({"account": account, "amount_cents": amount, "direction": "IN"})
        return legs

    account = MODE_ACCOUNTS[mode]
    if grand_total < 0:
        if payload.get("amount_paid_cents") not in (None, "") and \
                coerce_int("amount_paid_cents", payload["amount_paid_cents"]) != -grand_total:
            raise ValidationError("A negative sale must be refunded in full")
        return [{"account": account, "amount_cents": -grand_total, "direction": "OUT"}]

    raw_paid = payload.get("amount_paid_cents")
    paid = grand_total if raw_paid in (None, "") else require_amount("amount_paid_cents", raw_paid)
    if paid == 0:
        return []
    return [{"account": account, "amount_cents": paid, "direction": "IN"}]


# ---------------------------------------------------------------------------
# Fulfillment
# ---------------------------------------------------------------------------

def net_paid_cents(sale_id: int) -> int:
    """Net money received for the sale: IN payments minus OUT refunds."""
    inflow = db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0)).filter(
        Payment.sale_id == sale_id, Payment.direction == "IN"
    ).scalar()
    outflow = db.session.query(func.coalesce(func.sum(Payment.amount_cents), 0)).filter(
        Payment.sale_id == sale_id, Payment.direction == "OUT"
    ).scalar()
    return int(inflow or 0) - int(outflow or 0)


def recompute_fulfillment(sale: SaleTransaction) -> SaleTransaction:
    """
    ReadyForPickup when fully paid, else PendingRelease with the amount due.

    due = grand_total - returned_total - net payments. Credit notes issued on
    returns are already inside returned_total.
    """
    if sale.grand_total_cents < 0:
        due = 0
    else:
        due = sale.grand_total_cents - sale.returned_total_cents - net_paid_cents(sale.id)
        due = max(due, 0)

    sale.amount_due_cents = due
    sale.fulfillment_status = FULFILLMENT_READY if due == 0 else FULFILLMENT_PENDING
    db.session.flush()
    return sale


def post_payment_leg(sale, leg, *, kind, actor, customer_code, payee, occurred_at, note=None) -> Payment:
    payment = Payment(
        payment_number=next_identifier("PAYMENT", "PAY"),
        sale_id=sale.id,
        customer_id=sale.customer_id,
        kind=kind,
        account=leg["account"],
        direction=leg["direction"],
        amount_cents=leg["amount_cents"],
        reference=sale.transaction_number,
        note=note,
        created_by=actor,
        occurred_at=occurred_at,
    )
    db.session.add(payment)
    db.session.flush()

    entry = ledger_service.post_entry(
        leg["account"],
        leg["amount_cents"],
        leg["direction"],
        description=note or f"Sale {sale.transaction_number}",
        reference=sale.transaction_number,
        entry_type=kind,
        category="Sales",
        counterparty_code=customer_code,
        payment_method=leg["account"],
        payee=payee,
        receipt_no=payment.payment_number,
        actor=actor,
        occurred_at=occurred_at,
    )
    payment.ledger_entry_id = entry.id
    return payment


# ---------------------------------------------------------------------------
# create_sale
# ---------------------------------------------------------------------------

def create_sale(payload: dict, *, actor: str | None = None, commit: bool = True) -> dict:
    """
    Create a sale and apply it to stock, ledger and customer credit.

    payload:
      customer_id          customer code / id, or WALK-IN (default)
      lines                [{item_id, quantity, unit_price_cents?}]
      payment_mode         CASH | MOBILE_MONEY | BANK | CREDIT | SPLIT (aliases accepted)
      amount_paid_cents    optional, single-tender modes
      payments             [{account, amount_cents}] for SPLIT
      delivery_charge_cents, discount_cents, location, tax_id, notes,
      occurred_at, idempotency_key, quotation_id

    Returns {transaction_id, grand_total_cents, paid_amount_cents,
    balance_cents, total_cogs_cents, ...}.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    mode = normalize_payment_mode(payload.get("payment_mode"))
    delivery = optional_amount("delivery_charge_cents", payload.get("delivery_charge_cents"))
    discount = optional_amount("discount_cents", payload.get("discount_cents"))
    occurred_at = normalize_datetime(payload.get("occurred_at")) or utcnow()
    idempotency_key = (str(payload.get("idempotency_key") or "").strip() or None)
    customer_ref = payload.get("customer_id")

    def _op():
        if commit:
            begin_immediate()

        if idempotency_key:
            existing = db.session.query(SaleTransaction.id).filter_by(idempotency_key=idempotency_key).scalar()
            if existing is not None:
                raise _Replayed(existing)

        # 1-2: validate everything before the first write
        customer = resolve_customer(customer_ref, lock=True)
        lines = _parse_lines(payload.get("lines"))
        _check_all_stock(lines)

        # 3
        subtotal = sum(line["line_total_cents"] for line in lines)
        if discount > max(subtotal + delivery, 0):
            raise ValidationError(
                "Discount exceeds sale total",
                details={"discount_cents": discount, "subtotal_cents": subtotal, "delivery_charge_cents": delivery},
            )
        grand_total = subtotal + delivery - discount

        # 4-5
        legs = _payment_legs(payload, mode, grand_total)
        paid_now = sum(leg["amount_cents"] if leg["direction"] == "IN" else -leg["amount_cents"] for leg in legs)
        if grand_total >= 0 and paid_now > grand_total:
            raise ValidationError(
                "Amount paid exceeds grand total",
                details={"grand_total_cents": grand_total, "paid_cents": paid_now},
            )
        credit_amount = grand_total - paid_now if grand_total >= 0 else 0
        if credit_amount > 0 and customer is None:
            raise CreditNotAllowedForWalkInError(
                "Credit sales are not allowed for walk-in customers",
                details={"credit_amount_cents": credit_amount},
            )

        customer_code = customer.customer_code if customer else walk_in_code()
        customer_name = customer.name if customer else (payload.get("customer_name") or "Walk-in Customer")

        sale = SaleTransaction(
            transaction_number=next_identifier("SALE", "SALE"),
            idempotency_key=idempotency_key,
            occurred_at=occurred_at,
            sale_type="SALE",
            customer_id=customer.id if customer else None,
            customer_code=customer_code,
            customer_name=customer_name,
            subtotal_cents=subtotal,
            delivery_charge_cents=delivery,
            discount_cents=discount,
            grand_total_cents=grand_total,
            paid_at_sale_cents=paid_now,
            credit_amount_cents=credit_amount,
            payment_mode=mode,
            status=STATUS_ACTIVE,
            sold_by=actor,
            location=payload.get("location"),
            tax_id=payload.get("tax_id"),
            notes=payload.get("notes"),
            quotation_id=payload.get("quotation_id"),
        )
        db.session.add(sale)
        db.session.flush()

        # 6: payments, then stock
        for leg in legs:
            post_payment_leg(
                sale, leg,
                kind="SALE" if leg["direction"] == "IN" else "SALE_REFUND",
                actor=actor, customer_code=customer_code, payee=customer_name,
                occurred_at=occurred_at,
            )

        total_cogs = 0
        for line in lines:
            item = line["item"]
            if item.is_service:
                db.session.add(SaleLine(
                    sale_id=sale.id,
                    line_number=line["line_number"],
                    item_id=item.id,
                    item_name=item.name,
                    batch_id=None,
                    quantity=line["quantity"],
                    unit_price_cents=line["unit_price_cents"],
                    line_total_cents=line["line_total_cents"],
                ))
                continue

            result = inventory_service.decrease_stock(
                item, line["quantity"], actor=actor,
                reference=sale.transaction_number, movement_type="SALE",
            )
            total_cogs += result["total_cogs_cents"]
            for alloc in result["batch_allocations"]:
                qty = alloc["qty_deducted"]
                db.session.add(SaleLine(
                    sale_id=sale.id,
                    line_number=line["line_number"],
                    item_id=item.id,
                    item_name=item.name,
                    batch_id=alloc["batch_id"],
                    quantity=qty,
                    unit_price_cents=line["unit_price_cents"],
                    line_total_cents=qty * line["unit_price_cents"],
                    unit_cost_cents=alloc["unit_cost_cents"],
                    cogs_cents=qty * alloc["unit_cost_cents"],
                ))

        sale.total_cogs_cents = total_cogs
        db.session.flush()

        # 7
        if total_cogs > 0:
            post_cogs(sale, total_cogs, actor=actor, reverse=False, occurred_at=occurred_at)

        # 8
        if customer is not None:
            credit_service.record_sale_stats(customer, grand_total, occurred_at=occurred_at)
            points = int(current_app.config.get("LOYALTY_POINTS_PER_SALE", 10))
            credit_service.adjust_loyalty(
                customer, -points if grand_total < 0 else points,
                reference=sale.transaction_number, actor=actor,
            )
            if credit_amount > 0:
                credit_service.apply_customer_invoice(
                    customer, credit_amount,
                    reference=sale.transaction_number,
                    note=f"Credit sale {sale.transaction_number}",
                    actor=actor,
                )

        # 9
        recompute_fulfillment(sale)

        append_audit_event(
            event_type="sale.created",
            entity_type="sale",
            entity_ref=sale.transaction_number,
            actor=actor,
            payload={
                "grand_total_cents": grand_total,
                "paid_cents": paid_now,
                "credit_cents": credit_amount,
                "cogs_cents": total_cogs,
                "payment_mode": mode,
                "customer": customer_code,
            },
        )
        finish(commit)
        current_app.logger.info(
            "Sale %s created: total=%s paid=%s credit=%s cogs=%s",
            sale.transaction_number, grand_total, paid_now, credit_amount, total_cogs,
        )
        return sale_result(sale)

    try:
        if not commit:
            return _op()
        return run_with_retry(_op)
    except _Replayed as replay:
        current_app.logger.info("Idempotent replay of sale %s (key %s)", replay.sale_id, idempotency_key)
        return sale_result(get_sale(replay.sale_id), replayed=True)
    except IntegrityError:
        if not idempotency_key or not commit:
            raise
        existing = db.session.query(SaleTransaction).filter_by(idempotency_key=idempotency_key).first()
        if existing is None:
            raise
        return sale_result(existing, replayed=True)


def post_cogs(
    sale: SaleTransaction,
    amount: int,
    *,
    actor,
    reverse: bool,
    reference: str | None = None,
    occurred_at=None,
) -> None:
    """COGS pair; reverse=True moves the cost back into inventory."""
    ref = reference or sale.transaction_number
    note = f"{'COGS reversal' if reverse else 'COGS'} for sale {sale.transaction_number}"
    cogs_side, inventory_side = ("CREDIT", "DEBIT") if reverse else ("DEBIT", "CREDIT")
    first = ledger_service.post_entry(
        ledger_service.ACCOUNT_COGS, amount, cogs_side,
        description=note, reference=ref, entry_type="COGS", category="COGS",
        counterparty_code=sale.customer_code, actor=actor, occurred_at=occurred_at,
    )
    ledger_service.post_entry(
        ledger_service.ACCOUNT_INVENTORY, amount, inventory_side,
        description=note, reference=ref, entry_type="COGS", category="COGS",
        counterparty_code=sale.customer_code, actor=actor, occurred_at=first.occurred_at,
    )


# ---------------------------------------------------------------------------
# cancel_sale
# ---------------------------------------------------------------------------

def cancel_sale(sale_id: int, *, reason: str | None = None, actor: str | None = None) -> dict:
    """
    Reverse a sale exactly and mark it CANCELLED, in one transaction.

    - Restock every line still out (sold - returned) as a new batch at the
      line's unit cost; reverse the matching COGS.
    - Refund every net payment per tender account (new OUT entries).
    - Credit note for the unpaid remainder on the customer's balance.
    - Reverse purchase stats and loyalty points.
    A second call fails with AlreadyCancelledError and changes nothing.
    """
    def _op():
        begin_immediate()
        sale = get_sale(sale_id, lock=True)
        if sale.status == STATUS_CANCELLED:
            raise AlreadyCancelledError(
                f"Sale {sale.transaction_number} is already cancelled",
                details={"sale_id": sale.id, "cancelled_at": str(sale.cancelled_at)},
            )

        customer = None
        if sale.customer_id is not None:
            customer = credit_service.get_customer(sale.customer_id, lock=True, include_deleted=True)

        now = utcnow()
        reference = f"CXL-{sale.transaction_number}"

        # Restock
        cogs_reversed = 0
        for line in sale.lines:
            outstanding = line.quantity - line.returned_quantity
            if outstanding <= 0 or line.item.is_service:
                continue
            item = inventory_service.get_item(line.item_id, lock=True)
            inventory_service.increase_stock(
                item, outstanding,
                unit_cost_cents=line.unit_cost_cents,
                actor=actor,
                reference=reference,
                source_type="RESTOCK",
                update_cost_price=False,
            )
            cogs_reversed += outstanding * line.unit_cost_cents

        if cogs_reversed > 0:
            post_cogs(sale, cogs_reversed, actor=actor, reverse=True, reference=reference)

        # Refund net payments per account
        net_by_account: dict[str, int] = {}
        for payment in sale.payments:
            net_by_account[payment.account] = net_by_account.get(payment.account, 0) + payment.signed_amount_cents

        refunded = 0
        for account, net in net_by_account.items():
            if net == 0:
                continue
            leg = {"account": account, "amount_cents": abs(net), "direction": "OUT" if net > 0 else "IN"}
            post_payment_leg(
                sale, leg, kind="SALE_REFUND", actor=actor,
                customer_code=sale.customer_code, payee=sale.customer_name,
                occurred_at=now, note=f"Refund on cancellation of sale {sale.transaction_number}",
            )
            refunded += net

        # Unpaid remainder comes off the customer's balance
        unpaid = sale.amount_due_cents
        if customer is not None:
            if unpaid > 0:
                credit_service.apply_customer_credit_note(
                    customer, unpaid, reference=reference,
                    note=f"Cancellation of sale {sale.transaction_number}", actor=actor,
                )
            credit_service.record_sale_stats(customer, sale.grand_total_cents, reverse=True)
            points = int(current_app.config.get("LOYALTY_POINTS_PER_SALE", 10))
            credit_service.adjust_loyalty(
                customer, points if sale.grand_total_cents < 0 else -points,
                reference=reference, actor=actor,
            )

        sale.status = STATUS_CANCELLED
        sale.cancelled_at = now
        sale.cancelled_by = actor
        sale.cancel_reason = (reason or "")[:255] or None
        sale.amount_due_cents = 0

        append_audit_event(
            event_type="sale.cancelled",
            entity_type="sale",
            entity_ref=sale.transaction_number,
            actor=actor,
            note=reason,
            payload={"refunded_cents": refunded, "credit_note_cents": unpaid if customer else 0,
                     "cogs_reversed_cents": cogs_reversed},
        )
        db.session.commit()
        current_app.logger.info("Sale %s cancelled by %s", sale.transaction_number, actor)
        return {
            "sale": sale.to_dict(),
            "refunded_cents": refunded,
            "credit_note_cents": unpaid if customer else 0,
            "cogs_reversed_cents": cogs_reversed,
        }

    return run_with_retry(_op)


def record_sale_payment(
    sale_id: int,
    amount_cents,
    *,
    account: str | None = None,
    actor: str | None = None,
    note: str | None = None,
) -> dict:
    """
    Payment against an outstanding sale (e.g. balance paid at pickup).

    The payment references the sale, so fulfillment is recomputed from it;
    a registered customer's balance is reduced by the same amount.
    """
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    tender = ledger_service.canonical_payment_account(
        account or current_app.config.get("DEFAULT_PAYMENT_ACCOUNT", "Cash")
    )

    def _op():
        begin_immediate()
        sale = get_sale(sale_id, lock=True)
        if sale.status == STATUS_CANCELLED:
            raise AlreadyCancelledError(f"Sale {sale.transaction_number} is cancelled")
        if amount > sale.amount_due_cents:
            raise ValidationError(
                "Payment exceeds amount due",
                details={"amount_cents": amount, "amount_due_cents": sale.amount_due_cents},
            )

        payment = post_payment_leg(
            sale, {"account": tender, "amount_cents": amount, "direction": "IN"},
            kind="CUSTOMER_PAYMENT", actor=actor, customer_code=sale.customer_code,
            payee=sale.customer_name, occurred_at=utcnow(),
            note=note or f"Payment on sale {sale.transaction_number}",
        )
        if sale.customer_id is not None:
            customer = credit_service.get_customer(sale.customer_id, lock=True, include_deleted=True)
            credit_service.apply_customer_payment(
                customer, amount, reference=payment.payment_number,
                note=f"Payment on sale {sale.transaction_number}", actor=actor,
            )
        recompute_fulfillment(sale)
        append_audit_event(
            event_type="sale.payment",
            entity_type="sale",
            entity_ref=sale.transaction_number,
            actor=actor,
            payload={"payment_number": payment.payment_number, "amount_cents": amount, "account": tender},
        )
        db.session.commit()
        return {"payment": payment.to_dict(), "sale": sale.to_dict()}

    return run_with_retry(_op)
