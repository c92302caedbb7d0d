"""
Account ledger tests.

Verifies:
- Alias/case/punctuation variants resolve to one canonical account
- Unknown accounts are rejected, never auto-created
- Balances are replayed from entries with the right sign per account type
- Transfers post two entries under one reference or nothing at all
"""

from datetime import datetime

import pytest

from shopledger.errors import UnknownAccountError, ValidationError
from shopledger.extensions import db
from shopledger.models import LedgerEntry
from shopledger.services import ledger_service
from shopledger.services.ledger_service import (
    ACCOUNT_BANK,
    ACCOUNT_CASH,
    ACCOUNT_COGS,
    ACCOUNT_MOBILE_MONEY,
    ACCOUNT_PAYABLE,
    canonical_account,
)


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("Cash", ACCOUNT_CASH),
        ("cash", ACCOUNT_CASH),
        ("  CASH ", ACCOUNT_CASH),
        ("Mobile Money", ACCOUNT_MOBILE_MONEY),
        ("mobile_money", ACCOUNT_MOBILE_MONEY),
        ("M-Pesa", ACCOUNT_MOBILE_MONEY),
        ("mpesa", ACCOUNT_MOBILE_MONEY),
        ("Bank Transfer", ACCOUNT_BANK),
        ("COGS", ACCOUNT_COGS),
        ("accounts payable", ACCOUNT_PAYABLE),
    ],
)
def test_canonical_account_aliases(raw, expected):
    assert canonical_account(raw) == expected


@pytest.mark.parametrize("raw", [None, "", "Petty Dragons", "Casher"])
def test_unknown_account_rejected(raw):
    with pytest.raises(UnknownAccountError):
        canonical_account(raw)


def test_payment_account_must_be_tender():
    with pytest.raises(ValidationError):
        ledger_service.canonical_payment_account("COGS")
    assert ledger_service.canonical_payment_account("momo") == ACCOUNT_MOBILE_MONEY


class TestBalances:

    def test_asset_balance_is_debit_minus_credit(self, db_session):
        ledger_service.post_entry("cash", 1000, "IN", reference="T-1", entry_type="TEST")
        ledger_service.post_entry("Cash", 300, "OUT", reference="T-2", entry_type="TEST")
        db.session.commit()

        assert ledger_service.get_balance("CASH") == 700

    def test_liability_balance_is_credit_minus_debit(self, db_session):
        ledger_service.post_entry(ACCOUNT_PAYABLE, 500, "CREDIT", reference="T-1", entry_type="TEST")
        ledger_service.post_entry(ACCOUNT_PAYABLE, 200, "DEBIT", reference="T-2", entry_type="TEST")
        db.session.commit()

        assert ledger_service.get_balance("payables") == 300

    def test_entries_are_stored_under_canonical_name(self, db_session):
        ledger_service.post_entry("M-Pesa", 250, "IN", reference="T-1", entry_type="TEST")
        db.session.commit()

        entry = db.session.query(LedgerEntry).one()
        assert entry.account == ACCOUNT_MOBILE_MONEY
        assert entry.debit_cents == 250 and entry.credit_cents == 0

    def test_as_of_is_inclusive(self, db_session):
        first = datetime(2026, 3, 1, 9, 0, 0)
        second = datetime(2026, 3, 2, 9, 0, 0)
        ledger_service.post_entry("Cash", 100, "IN", reference="T-1", entry_type="TEST", occurred_at=first)
        ledger_service.post_entry("Cash", 50, "IN", reference="T-2", entry_type="TEST", occurred_at=second)
        db.session.commit()

        assert ledger_service.get_balance("Cash", as_of=first) == 100
        assert ledger_service.get_balance("Cash", as_of="2026-03-02T09:00:00Z") == 150
        assert ledger_service.get_balance("Cash", as_of=datetime(2026, 2, 28)) == 0

    def test_zero_amount_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.post_entry("Cash", 0, "IN", reference="T-1", entry_type="TEST")

    def test_bad_direction_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.post_entry("Cash", 10, "SIDEWAYS", reference="T-1", entry_type="TEST")


class TestTransfer:

    def test_transfer_moves_money_under_one_reference(self, db_session):
        ledger_service.post_entry("Cash", 5000, "IN", reference="OPEN", entry_type="TEST")
        db.session.commit()

        result = ledger_service.transfer("cash", "bank", 2000, actor="tester")

        assert ledger_service.get_balance("Cash") == 3000
        assert ledger_service.get_balance("Bank") == 2000
        entries = ledger_service.list_entries(reference=result["reference"])
        assert len(entries) == 2
        assert {e.account for e in entries} == {ACCOUNT_CASH, ACCOUNT_BANK}

    def test_same_account_transfer_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.transfer("Cash", "till", 100)
        assert db.session.query(LedgerEntry).count() == 0

    def test_non_positive_transfer_rejected(self, db_session):
        with pytest.raises(ValidationError):
            ledger_service.transfer("Cash", "Bank", 0)
        with pytest.raises(ValidationError):
            ledger_service.transfer("Cash", "Bank", -10)
        assert db.session.query(LedgerEntry).count() == 0

    def test_unknown_target_rejected_before_any_write(self, db_session):
        with pytest.raises(UnknownAccountError):
            ledger_service.transfer("Cash", "Offshore", 100)
        assert db.session.query(LedgerEntry).count() == 0


def test_account_statement_running_balance(db_session):
    ledger_service.post_entry("Cash", 100, "IN", reference="T-1", entry_type="TEST",
                              occurred_at=datetime(2026, 1, 1))
    ledger_service.post_entry("Cash", 400, "IN", reference="T-2", entry_type="TEST",
                              occurred_at=datetime(2026, 1, 5))
    ledger_service.post_entry("Cash", 150, "OUT", reference="T-3", entry_type="TEST",
                              occurred_at=datetime(2026, 1, 6))
    db.session.commit()

    statement = ledger_service.account_statement("till", start="2026-01-02", end="2026-01-31")

    assert statement["account"] == ACCOUNT_CASH
    assert statement["opening_balance_cents"] == 100
    assert [row["balance_cents"] for row in statement["entries"]] == [500, 350]
    assert statement["closing_balance_cents"] == 350


def test_statement_rejects_inverted_range(db_session):
    with pytest.raises(ValidationError):
        ledger_service.account_statement("Cash", start="2026-02-01", end="2026-01-01")
