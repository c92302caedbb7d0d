# Overview: Quotations and their one-way conversion into sales.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..errors import (
    AlreadyConvertedError,
    NotFoundError,
    QuotationExpiredError,
    ValidationError,
)
from ..extensions import db
from ..models import Quotation, QuotationLine
from ..time_utils import utcnow, normalize_datetime
from ..validation import optional_amount, require_positive_int, require_amount, coerce_int
from . import inventory_service, sales_service
from .audit_service import append_audit_event
from .concurrency import begin_immediate, lock_for_update, run_with_retry
from .identifier_service import next_identifier

STATUS_PENDING = "PENDING"
STATUS_ACCEPTED = "ACCEPTED"
STATUS_REJECTED = "REJECTED"
STATUS_CONVERTED = "CONVERTED"
STATUS_EXPIRED = "EXPIRED"

CONVERTIBLE = (STATUS_PENDING, STATUS_ACCEPTED)

DEFAULT_VALIDITY_DAYS = 14


def get_quotation(quotation_id: int, *, lock: bool = False) -> Quotation:
    query = db.session.query(Quotation).filter_by(id=quotation_id)
    if lock:
        query = lock_for_update(query)
    quotation = query.first()
    if quotation is None:
        raise NotFoundError(f"Quotation {quotation_id} not found", details={"quotation_id": quotation_id})
    return quotation


def list_quotations(*, status: str | None = None) -> list[Quotation]:
    q = db.session.query(Quotation)
    if status:
        q = q.filter(Quotation.status == status.upper())
    return q.order_by(Quotation.id.desc()).all()


def is_expired(quotation: Quotation, now=None) -> bool:
    return quotation.valid_until < (now or utcnow())


def create_quotation(payload: dict, *, actor: str | None = None) -> Quotation:
    """
    payload: customer_id (code/id or WALK-IN), lines [{item_id, quantity,
    unit_price_cents?}], delivery_charge_cents, discount_cents, valid_until,
    notes. Stock is not reserved.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    raw_lines = payload.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("Quotation must have at least one line item")

    delivery = optional_amount("delivery_charge_cents", payload.get("delivery_charge_cents"))
    discount = optional_amount("discount_cents", payload.get("discount_cents"))
    try:
        valid_until = normalize_datetime(payload.get("valid_until"))
    except (TypeError, ValueError):
        raise ValidationError("valid_until must be an ISO-8601 datetime")
    if valid_until is None:
        valid_until = utcnow() + timedelta(days=DEFAULT_VALIDITY_DAYS)

    def _op():
        customer = sales_service.resolve_customer(payload.get("customer_id"))

        quotation = Quotation(
            quotation_number=next_identifier("QUOTATION", "QUO"),
            customer_id=customer.id if customer else None,
            customer_code=customer.customer_code if customer else sales_service.walk_in_code(),
            customer_name=customer.name if customer else (payload.get("customer_name") or "Walk-in Customer"),
            delivery_charge_cents=delivery,
            discount_cents=discount,
            valid_until=valid_until,
            status=STATUS_PENDING,
            notes=payload.get("notes"),
            created_by=actor,
        )
        db.session.add(quotation)
        db.session.flush()

        subtotal = 0
        for idx, raw in enumerate(raw_lines, start=1):
            if not isinstance(raw, dict) or raw.get("item_id") is None:
                raise ValidationError(f"Line {idx}: item_id is required")
            item = inventory_service.get_item(coerce_int("item_id", raw["item_id"]))
            qty = require_positive_int(f"lines[{idx}].quantity", raw.get("quantity"))
            price = raw.get("unit_price_cents")
            price = item.selling_price_cents if price is None else require_amount(f"lines[{idx}].unit_price_cents", price)
            db.session.add(QuotationLine(
                quotation_id=quotation.id,
                item_id=item.id,
                quantity=qty,
                unit_price_cents=price,
                line_total_cents=qty * price,
            ))
            subtotal += qty * price

        quotation.subtotal_cents = subtotal
        quotation.grand_total_cents = subtotal + delivery - discount
        append_audit_event(
            event_type="quotation.created",
            entity_type="quotation",
            entity_ref=quotation.quotation_number,
            actor=actor,
            payload={"grand_total_cents": quotation.grand_total_cents},
        )
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def _transition(quotation_id: int, target: str, *, actor: str | None) -> Quotation:
    def _op():
        quotation = get_quotation(quotation_id, lock=True)
        if quotation.status == STATUS_CONVERTED:
            raise AlreadyConvertedError(f"Quotation {quotation.quotation_number} is already converted")
        if quotation.status != STATUS_PENDING:
            raise ValidationError(
                f"Cannot move quotation from {quotation.status} to {target}",
                details={"status": quotation.status},
            )
        if target == STATUS_ACCEPTED and is_expired(quotation):
            raise QuotationExpiredError(
                f"Quotation {quotation.quotation_number} expired",
                details={"valid_until": str(quotation.valid_until)},
            )
        quotation.status = target
        append_audit_event(
            event_type=f"quotation.{target.lower()}",
            entity_type="quotation",
            entity_ref=quotation.quotation_number,
            actor=actor,
        )
        db.session.commit()
        return quotation

    return run_with_retry(_op)


def accept_quotation(quotation_id: int, *, actor: str | None = None) -> Quotation:
    return _transition(quotation_id, STATUS_ACCEPTED, actor=actor)


def reject_quotation(quotation_id: int, *, actor: str | None = None) -> Quotation:
    return _transition(quotation_id, STATUS_REJECTED, actor=actor)


def convert_quotation(
    quotation_id: int,
    payment_mode: str,
    *,
    actor: str | None = None,
    amount_paid_cents=None,
    payments: list | None = None,
    location: str | None = None,
) -> dict:
    """
    Convert a PENDING/ACCEPTED quotation into a sale.

    The quotation row is locked, the sale is created without committing, and
    the quotation is marked CONVERTED with the sale id; one commit covers
    both, so a second call always sees CONVERTED and fails fast.
    """
    def _op():
        begin_immediate()
        quotation = get_quotation(quotation_id, lock=True)

        if quotation.status == STATUS_CONVERTED or quotation.converted_sale_id is not None:
            raise AlreadyConvertedError(
                f"Quotation {quotation.quotation_number} was already converted",
                details={"converted_sale_id": quotation.converted_sale_id},
            )
        if quotation.status not in CONVERTIBLE:
            raise ValidationError(
                f"Quotation {quotation.quotation_number} is {quotation.status} and cannot be converted",
                details={"status": quotation.status},
            )
        if is_expired(quotation):
            raise QuotationExpiredError(
                f"Quotation {quotation.quotation_number} expired on {quotation.valid_until:%Y-%m-%d}",
                details={"valid_until": str(quotation.valid_until)},
            )

        sale_payload = {
            "customer_id": quotation.customer_code,
            "customer_name": quotation.customer_name,
            "lines": [
                {"item_id": line.item_id, "quantity": line.quantity, "unit_price_cents": line.unit_price_cents}
                for line in quotation.lines
            ],
            "delivery_charge_cents": quotation.delivery_charge_cents,
            "discount_cents": quotation.discount_cents,
            "payment_mode": payment_mode,
            "amount_paid_cents": amount_paid_cents,
            "payments": payments,
            "location": location,
            "quotation_id": quotation.id,
            "notes": f"From quotation {quotation.quotation_number}",
        }
        result = sales_service.create_sale(sale_payload, actor=actor, commit=False)

        quotation.status = STATUS_CONVERTED
        quotation.converted_sale_id = result["sale_id"]
        quotation.converted_at = utcnow()
        append_audit_event(
            event_type="quotation.converted",
            entity_type="quotation",
            entity_ref=quotation.quotation_number,
            actor=actor,
            payload={"sale": result["transaction_id"]},
        )
        db.session.commit()
        current_app.logger.info(
            "Quotation %s converted to sale %s", quotation.quotation_number, result["transaction_id"]
        )
        result["quotation"] = quotation.to_dict()
        return result

    return run_with_retry(_op)


def expire_quotations(*, now=None, actor: str | None = None) -> int:
    """Mark PENDING/ACCEPTED quotations past valid_until as EXPIRED."""
    now = normalize_datetime(now) or utcnow()

    def _op():
        stale = (
            lock_for_update(
                db.session.query(Quotation).filter(
                    Quotation.status.in_(CONVERTIBLE),
                    Quotation.valid_until < now,
                )
            )
            .all()
        )
        for quotation in stale:
            quotation.status = STATUS_EXPIRED
            append_audit_event(
                event_type="quotation.expired",
                entity_type="quotation",
                entity_ref=quotation.quotation_number,
                actor=actor,
            )
        db.session.commit()
        return len(stale)

    count = run_with_retry(_op)
    if count:
        current_app.logger.info("Expired %s quotations", count)
    return count
