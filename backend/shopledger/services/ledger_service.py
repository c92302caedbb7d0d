# Overview: Account ledger; canonical account names, append-only postings and replayed balances.

from __future__ import annotations

import re
from datetime import datetime

from sqlalchemy import func

from ..errors import UnknownAccountError, ValidationError
from ..extensions import db
from ..models import LedgerEntry
from ..time_utils import utcnow, normalize_datetime, to_utc_z
from ..validation import require_amount
from .audit_service import append_audit_event
from .concurrency import run_with_retry, finish
from .identifier_service import next_identifier

"""
Account Ledger Invariants (authoritative)

- Append-only: entries are never updated or deleted. A correction or refund
  is a new offsetting entry.
- Exactly one of debit_cents / credit_cents is non-zero per entry.
- Balances are never stored; they are replayed from entries:
    ASSET, EXPENSE            -> debit - credit
    LIABILITY, REVENUE, EQUITY -> credit - debit
- Every ledger-facing boundary passes account names through
  canonical_account(); unknown names raise UnknownAccountError.
- As-of filtering is inclusive: occurred_at <= as_of.
"""

ASSET = "ASSET"
LIABILITY = "LIABILITY"
REVENUE = "REVENUE"
EXPENSE = "EXPENSE"
EQUITY = "EQUITY"

DEBIT = "DEBIT"
CREDIT = "CREDIT"

# Money coming into an asset account is a debit; money leaving it is a credit
DIRECTIONS = {
    "IN": DEBIT,
    "OUT": CREDIT,
    DEBIT: DEBIT,
    CREDIT: CREDIT,
}

ACCOUNT_CASH = "Cash"
ACCOUNT_MOBILE_MONEY = "Mobile Money"
ACCOUNT_BANK = "Bank"
ACCOUNT_INVENTORY = "Inventory Asset"
ACCOUNT_PAYABLE = "Accounts Payable"
ACCOUNT_COGS = "Cost of Goods Sold"
ACCOUNT_SALES = "Sales Revenue"
ACCOUNT_EQUITY = "Owner's Equity"
ACCOUNT_EXPENSES = "Operating Expenses"

ACCOUNT_TYPES = {
    ACCOUNT_CASH: ASSET,
    ACCOUNT_MOBILE_MONEY: ASSET,
    ACCOUNT_BANK: ASSET,
    ACCOUNT_INVENTORY: ASSET,
    ACCOUNT_PAYABLE: LIABILITY,
    ACCOUNT_COGS: EXPENSE,
    ACCOUNT_SALES: REVENUE,
    ACCOUNT_EQUITY: EQUITY,
    ACCOUNT_EXPENSES: EXPENSE,
}

# Tender accounts money can physically be received into or paid out of
PAYMENT_ACCOUNTS = (ACCOUNT_CASH, ACCOUNT_MOBILE_MONEY, ACCOUNT_BANK)

# Keys are alias_key() forms: lowercase, alphanumerics only
ACCOUNT_ALIASES = {
    "cash": ACCOUNT_CASH,
    "cashonhand": ACCOUNT_CASH,
    "till": ACCOUNT_CASH,
    "pettycash": ACCOUNT_CASH,
    "mobilemoney": ACCOUNT_MOBILE_MONEY,
    "mpesa": ACCOUNT_MOBILE_MONEY,
    "momo": ACCOUNT_MOBILE_MONEY,
    "bank": ACCOUNT_BANK,
    "bankaccount": ACCOUNT_BANK,
    "banktransfer": ACCOUNT_BANK,
    "inventory": ACCOUNT_INVENTORY,
    "inventoryasset": ACCOUNT_INVENTORY,
    "stock": ACCOUNT_INVENTORY,
    "accountspayable": ACCOUNT_PAYABLE,
    "payables": ACCOUNT_PAYABLE,
    "ap": ACCOUNT_PAYABLE,
    "cogs": ACCOUNT_COGS,
    "costofgoodssold": ACCOUNT_COGS,
    "costofsales": ACCOUNT_COGS,
    "sales": ACCOUNT_SALES,
    "salesrevenue": ACCOUNT_SALES,
    "revenue": ACCOUNT_SALES,
    "ownersequity": ACCOUNT_EQUITY,
    "capital": ACCOUNT_EQUITY,
    "expenses": ACCOUNT_EXPENSES,
    "operatingexpenses": ACCOUNT_EXPENSES,
}

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def alias_key(name: str) -> str:
    return _NON_ALNUM.sub("", name.lower())


def canonical_account(name: str | None) -> str:
    """Resolve any alias/case/punctuation variant to the canonical account name."""
    if name is None or not str(name).strip():
        raise UnknownAccountError("Account name is required")
    canonical = ACCOUNT_ALIASES.get(alias_key(str(name)))
    if canonical is None:
        raise UnknownAccountError(
            f"Unknown account: {name}",
            details={"account": name, "known_accounts": sorted(ACCOUNT_TYPES)},
        )
    return canonical


def canonical_payment_account(name: str | None) -> str:
    account = canonical_account(name)
    if account not in PAYMENT_ACCOUNTS:
        raise ValidationError(
            f"{account} cannot take payments",
            details={"account": account, "payment_accounts": list(PAYMENT_ACCOUNTS)},
        )
    return account


def account_type(name: str) -> str:
    return ACCOUNT_TYPES[canonical_account(name)]


def _signed(account: str, debit: int, credit: int) -> int:
    if ACCOUNT_TYPES[account] in (ASSET, EXPENSE):
        return debit - credit
    return credit - debit


def post_entry(
    account: str,
    amount_cents: int,
    direction: str,
    *,
    description: str | None = None,
    reference: str,
    entry_type: str,
    category: str | None = None,
    counterparty_code: str | None = None,
    payment_method: str | None = None,
    payee: str | None = None,
    receipt_no: str | None = None,
    actor: str | None = None,
    occurred_at: datetime | None = None,
) -> LedgerEntry:
    """
    Append exactly one entry. Runs inside the caller's transaction (flush only).

    direction: IN / DEBIT or OUT / CREDIT.
    """
    canonical = canonical_account(account)
    side = DIRECTIONS.get(str(direction).upper())
    if side is None:
        raise ValidationError(f"Invalid direction: {direction}")
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)
    if not reference:
        raise ValidationError("reference is required for ledger postings")

    entry = LedgerEntry(
        transaction_ref=reference,
        entry_type=entry_type,
        category=category,
        account=canonical,
        debit_cents=amount if side == DEBIT else 0,
        credit_cents=amount if side == CREDIT else 0,
        description=description[:255] if description else None,
        counterparty_code=counterparty_code,
        payment_method=payment_method,
        payee=payee,
        receipt_no=receipt_no,
        reference=reference,
        created_by=actor,
        occurred_at=occurred_at or utcnow(),
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def get_balance(account: str, as_of=None) -> int:
    """Replay every entry for the account (optionally as-of, inclusive)."""
    canonical = canonical_account(account)
    q = db.session.query(
        func.coalesce(func.sum(LedgerEntry.debit_cents), 0),
        func.coalesce(func.sum(LedgerEntry.credit_cents), 0),
    ).filter(LedgerEntry.account == canonical)

    as_of_dt = normalize_datetime(as_of)
    if as_of_dt is not None:
        q = q.filter(LedgerEntry.occurred_at <= as_of_dt)

    debit, credit = q.one()
    return _signed(canonical, int(debit or 0), int(credit or 0))


def transfer(
    from_account: str,
    to_account: str,
    amount_cents,
    *,
    actor: str | None = None,
    description: str | None = None,
    commit: bool = True,
) -> dict:
    """
    Move money between two accounts under a single reference.

    Both postings are validated before either is written.
    """
    source = canonical_account(from_account)
    target = canonical_account(to_account)
    if source == target:
        raise ValidationError("Cannot transfer to the same account", details={"account": source})
    amount = require_amount("amount_cents", amount_cents, allow_zero=False)

    def _op():
        reference = next_identifier("TRANSFER", "TRF")
        note = description or f"Transfer {source} -> {target}"
        out_entry = post_entry(
            source, amount, "OUT",
            description=note, reference=reference, entry_type="TRANSFER",
            category="Transfer", actor=actor,
        )
        in_entry = post_entry(
            target, amount, "IN",
            description=note, reference=reference, entry_type="TRANSFER",
            category="Transfer", actor=actor, occurred_at=out_entry.occurred_at,
        )
        append_audit_event(
            event_type="ledger.transfer",
            entity_type="ledger",
            entity_ref=reference,
            actor=actor,
            payload={"from": source, "to": target, "amount_cents": amount},
        )
        finish(commit)
        return {
            "reference": reference,
            "from_account": source,
            "to_account": target,
            "amount_cents": amount,
            "entries": [out_entry.to_dict(), in_entry.to_dict()],
        }

    if not commit:
        return _op()
    return run_with_retry(_op)


def list_accounts() -> list[dict]:
    return [
        {"name": name, "type": acct_type, "balance_cents": get_balance(name)}
        for name, acct_type in ACCOUNT_TYPES.items()
    ]


def list_entries(*, reference: str | None = None, account: str | None = None, limit: int = 200) -> list[LedgerEntry]:
    q = db.session.query(LedgerEntry)
    if reference:
        q = q.filter(LedgerEntry.transaction_ref == reference)
    if account:
        q = q.filter(LedgerEntry.account == canonical_account(account))
    limit = max(1, min(limit, 1000))
    return q.order_by(LedgerEntry.id).limit(limit).all()


def account_statement(account: str, start=None, end=None) -> dict:
    """
    Entries for one account in [start, end] with running balance.

    opening_balance is the replayed balance strictly before start.
    """
    canonical = canonical_account(account)
    start_dt = normalize_datetime(start)
    end_dt = normalize_datetime(end)
    if start_dt and end_dt and start_dt > end_dt:
        raise ValidationError("start must be before end")

    opening = 0
    if start_dt is not None:
        debit, credit = db.session.query(
            func.coalesce(func.sum(LedgerEntry.debit_cents), 0),
            func.coalesce(func.sum(LedgerEntry.credit_cents), 0),
        ).filter(
            LedgerEntry.account == canonical,
            LedgerEntry.occurred_at < start_dt,
        ).one()
        opening = _signed(canonical, int(debit or 0), int(credit or 0))

    q = db.session.query(LedgerEntry).filter(LedgerEntry.account == canonical)
    if start_dt is not None:
        q = q.filter(LedgerEntry.occurred_at >= start_dt)
    if end_dt is not None:
        q = q.filter(LedgerEntry.occurred_at <= end_dt)

    running = opening
    rows = []
    for entry in q.order_by(LedgerEntry.occurred_at, LedgerEntry.id).all():
        running += _signed(canonical, entry.debit_cents, entry.credit_cents)
        row = entry.to_dict()
        row["balance_cents"] = running
        rows.append(row)

    return {
        "account": canonical,
        "account_type": ACCOUNT_TYPES[canonical],
        "start": to_utc_z(start_dt),
        "end": to_utc_z(end_dt),
        "opening_balance_cents": opening,
        "closing_balance_cents": running,
        "entries": rows,
    }
