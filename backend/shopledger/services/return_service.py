# Overview: Partial returns against a sale; restock, refund split and COGS reversal.

from __future__ import annotations

from flask import current_app

from ..errors import AlreadyCancelledError, NotFoundError, ValidationError
from ..extensions import db
from ..models import SaleLine, SaleReturn, SaleReturnLine
from ..time_utils import utcnow
from ..validation import coerce_int, require_positive_int
from . import credit_service, inventory_service, ledger_service
from .audit_service import append_audit_event
from .concurrency import begin_immediate, run_with_retry
from .identifier_service import next_identifier
from .sales_service import (
    STATUS_CANCELLED,
    get_sale,
    post_cogs,
    recompute_fulfillment,
    post_payment_leg,
)

"""
Return Invariants (authoritative)

- Returns never change the sale's top-level status; they append a
  SaleReturn document and compensating entries.
- Per sale line: returned_quantity (cumulative) <= quantity sold.
- Restock goes back into the batch the units came from when it is known,
  otherwise into a new batch at the line's unit cost.
- refund = SUM(qty * original unit price), capped by what is still
  refundable on the sale (grand_total - returned_total). A capped refund
  is spread over the lines in proportion to their value; stock and COGS
  are still reversed in full.
- Refund split: the part covering the sale's outstanding amount due is a
  credit note on the customer's balance; the rest is paid out of the
  refund account as an OUT ledger entry.
- COGS for the returned quantity is reversed at the line's unit cost.
"""


def _parse_return_lines(sale, raw_lines) -> list[tuple[SaleLine, int]]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("Return must have at least one line")

    by_id = {line.id: line for line in sale.lines}
    requested: dict[int, int] = {}
    for idx, raw in enumerate(raw_lines, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Return line {idx} must be an object")
        if raw.get("sale_line_id") is None:
            raise ValidationError(f"Return line {idx}: sale_line_id is required")
        line_id = coerce_int("sale_line_id", raw.get("sale_line_id"))
        if line_id not in by_id:
            raise NotFoundError(
                f"Sale line {line_id} does not belong to sale {sale.transaction_number}",
                details={"sale_line_id": line_id},
            )
        qty = require_positive_int(f"lines[{idx}].quantity", raw.get("quantity"))
        requested[line_id] = requested.get(line_id, 0) + qty

    parsed = []
    for line_id, qty in requested.items():
        line = by_id[line_id]
        if line.unit_price_cents < 0:
            raise ValidationError(f"Adjustment line {line_id} cannot be returned")
        returnable = line.quantity - line.returned_quantity
        if qty > returnable:
            raise ValidationError(
                f"Return quantity for {line.item_name} exceeds quantity sold",
                details={"sale_line_id": line_id, "requested": qty, "returnable": returnable},
            )
        parsed.append((line, qty))
    return parsed


def _split_refund(parsed, gross: int, refund: int) -> list[int]:
    """Per-line refunds summing to refund; the last line takes the rounding remainder."""
    values = [qty * line.unit_price_cents for line, qty in parsed]
    if refund == gross:
        return values
    shares = [value * refund // gross if gross else 0 for value in values[:-1]]
    shares.append(refund - sum(shares))
    return shares


def process_return(
    sale_id: int,
    lines: list[dict],
    *,
    reason: str | None = None,
    actor: str | None = None,
    refund_account: str | None = None,
) -> dict:
    """
    Return part of a sale.

    lines: [{sale_line_id, quantity}]
    refund_account: tender account for any cash refund (default from config).
    """
    account = ledger_service.canonical_payment_account(
        refund_account or current_app.config.get("DEFAULT_PAYMENT_ACCOUNT", "Cash")
    )

    def _op():
        begin_immediate()
        sale = get_sale(sale_id, lock=True)
        if sale.status == STATUS_CANCELLED:
            raise AlreadyCancelledError(
                f"Sale {sale.transaction_number} is cancelled; nothing to return",
                details={"sale_id": sale.id},
            )

        parsed = _parse_return_lines(sale, lines)
        gross = sum(qty * line.unit_price_cents for line, qty in parsed)
        refundable = max(sale.grand_total_cents - sale.returned_total_cents, 0)
        refund = min(gross, refundable)
        line_refunds = _split_refund(parsed, gross, refund)
        if refund < gross:
            current_app.logger.info(
                "Return on sale %s capped at %s (line value %s)",
                sale.transaction_number, refund, gross,
            )

        customer = None
        if sale.customer_id is not None:
            customer = credit_service.get_customer(sale.customer_id, lock=True, include_deleted=True)

        credit_note = min(refund, sale.amount_due_cents) if customer is not None else 0
        cash_refund = refund - credit_note
        now = utcnow()

        sale_return = SaleReturn(
            return_number=next_identifier("RETURN", "RET"),
            sale_id=sale.id,
            reason=(reason or "")[:255] or None,
            refund_total_cents=refund,
            cash_refund_cents=cash_refund,
            credit_note_cents=credit_note,
            refund_account=account if cash_refund else None,
            created_by=actor,
            occurred_at=now,
        )
        db.session.add(sale_return)
        db.session.flush()

        cogs_reversed = 0
        for (line, qty), line_refund in zip(parsed, line_refunds):
            restocked_batch_id = None
            if not line.item.is_service:
                item = inventory_service.get_item(line.item_id, lock=True)
                result = inventory_service.increase_stock_to_batch(
                    item, line.batch_id, qty,
                    actor=actor,
                    reference=sale_return.return_number,
                    movement_type="RETURN",
                    fallback_unit_cost_cents=line.unit_cost_cents,
                )
                restocked_batch_id = result["batch_id"]
                cogs_reversed += qty * line.unit_cost_cents

            line.returned_quantity += qty
            db.session.add(SaleReturnLine(
                return_id=sale_return.id,
                sale_line_id=line.id,
                item_id=line.item_id,
                quantity=qty,
                unit_price_cents=line.unit_price_cents,
                refund_cents=line_refund,
                restocked_batch_id=restocked_batch_id,
            ))

        sale_return.cogs_reversed_cents = cogs_reversed
        if cogs_reversed > 0:
            post_cogs(sale, cogs_reversed, actor=actor, reverse=True, reference=sale_return.return_number)

        if cash_refund > 0:
            post_payment_leg(
                sale, {"account": account, "amount_cents": cash_refund, "direction": "OUT"},
                kind="SALE_REFUND", actor=actor, customer_code=sale.customer_code,
                payee=sale.customer_name, occurred_at=now,
                note=f"Refund {sale_return.return_number} on sale {sale.transaction_number}",
            )

        if credit_note > 0:
            credit_service.apply_customer_credit_note(
                customer, credit_note,
                reference=sale_return.return_number,
                note=f"Return on sale {sale.transaction_number}",
                actor=actor,
            )

        sale.returned_total_cents += refund
        recompute_fulfillment(sale)

        append_audit_event(
            event_type="sale.returned",
            entity_type="sale",
            entity_ref=sale.transaction_number,
            actor=actor,
            note=reason,
            payload={
                "return_number": sale_return.return_number,
                "refund_cents": refund,
                "line_value_cents": gross,
                "cash_refund_cents": cash_refund,
                "credit_note_cents": credit_note,
                "cogs_reversed_cents": cogs_reversed,
            },
        )
        db.session.commit()
        current_app.logger.info(
            "Return %s on sale %s: refund=%s cash=%s credit=%s",
            sale_return.return_number, sale.transaction_number, refund, cash_refund, credit_note,
        )
        return {"return": sale_return.to_dict(), "sale": sale.to_dict()}

    return run_with_retry(_op)


def list_returns(sale_id: int) -> list[SaleReturn]:
    get_sale(sale_id)
    return (
        db.session.query(SaleReturn)
        .filter_by(sale_id=sale_id)
        .order_by(SaleReturn.id)
        .all()
    )
