# Overview: Customer and supplier statements replayed from counterparty transactions.

from __future__ import annotations

from ..errors import ValidationError
from ..extensions import db
from ..models import CounterpartyTransaction
from ..time_utils import normalize_datetime, to_utc_z
from . import credit_service
from .credit_service import PARTY_CUSTOMER, PARTY_SUPPLIER


def _statement(party_type: str, party_id: int, start=None, end=None) -> dict:
    start_dt = normalize_datetime(start)
    end_dt = normalize_datetime(end)
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be before end")

    base = db.session.query(CounterpartyTransaction).filter(
        CounterpartyTransaction.party_type == party_type,
        CounterpartyTransaction.party_id == party_id,
    )

    opening = 0
    if start_dt is not None:
        before = (
            base.filter(CounterpartyTransaction.occurred_at < start_dt)
            .order_by(CounterpartyTransaction.occurred_at.desc(), CounterpartyTransaction.id.desc())
            .first()
        )
        if before is not None:
            opening = before.balance_after_cents

    q = base
    if start_dt is not None:
        q = q.filter(CounterpartyTransaction.occurred_at >= start_dt)
    if end_dt is not None:
        q = q.filter(CounterpartyTransaction.occurred_at <= end_dt)

    rows = [tx.to_dict() for tx in q.order_by(CounterpartyTransaction.occurred_at, CounterpartyTransaction.id)]
    totals: dict[str, int] = {}
    for row in rows:
        totals[row["entry_type"]] = totals.get(row["entry_type"], 0) + row["amount_cents"]

    return {
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "opening_balance_cents": opening,
        "closing_balance_cents": rows[-1]["balance_after_cents"] if rows else opening,
        "totals": totals,
        "entries": rows,
    }


def customer_statement(customer_id: int, start=None, end=None) -> dict:
    customer = credit_service.get_customer(customer_id)
    statement = _statement(PARTY_CUSTOMER, customer.id, start, end)
    statement["customer"] = customer.to_dict()
    return statement


def supplier_statement(supplier_id: int, start=None, end=None) -> dict:
    supplier = credit_service.get_supplier(supplier_id)
    statement = _statement(PARTY_SUPPLIER, supplier.id, start, end)
    statement["supplier"] = supplier.to_dict()
    return statement
